import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.profile_service import ProfileService, serialize_profile

router = APIRouter()
logger = logging.getLogger(__name__)


def get_profile_service() -> ProfileService:
    return ProfileService()


class SignupRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    db: Session = Depends(get_db),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """
    Register a seller account. The client signs in with Firebase afterwards.
    Public endpoint - no authentication required.
    """
    logger.info(f"signup: Entry - {request.email}")

    try:
        profile = profile_service.signup(
            db, request.email, request.password, request.first_name, request.last_name
        )
        logger.info(f"signup: Success - {profile.id}")
        return {"profile": serialize_profile(profile)}
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"signup: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
