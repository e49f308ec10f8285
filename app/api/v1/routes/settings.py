import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.settings_service import SettingsService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_settings_service() -> SettingsService:
    """Dependency to get settings service instance"""
    return SettingsService()


@router.get("/grid/{key}")
async def get_grid_settings(
    key: str,
    db: Session = Depends(get_db),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """
    Column counts of a package grid per breakpoint.
    Public endpoint - no authentication required.
    """
    logger.info(f"get_grid_settings: Entry - {key}")

    try:
        return {"key": key, "grid": settings_service.get_grid_settings(db, key)}
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"get_grid_settings: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/thank-you")
async def get_thank_you_content(
    db: Session = Depends(get_db),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """Public endpoint - no authentication required."""
    try:
        return {"content": settings_service.get_thank_you_content(db)}
    except Exception as e:
        logger.error(f"get_thank_you_content: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
