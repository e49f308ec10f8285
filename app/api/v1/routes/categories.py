import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.category_service import CategoryService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_category_service() -> CategoryService:
    return CategoryService()


@router.get("")
async def list_categories(
    db: Session = Depends(get_db),
    category_service: CategoryService = Depends(get_category_service)
):
    """Public endpoint - no authentication required."""
    try:
        return {"categories": category_service.list_categories(db)}
    except Exception as e:
        logger.error(f"list_categories: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
