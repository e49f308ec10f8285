import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.catalogue_service import CatalogueService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_catalogue_service() -> CatalogueService:
    """Dependency to get catalogue service instance"""
    return CatalogueService()


@router.get("/packages")
async def list_packages(
    db: Session = Depends(get_db),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    """
    Active subscription packages ordered by price, with their running discounts.
    Public endpoint - no authentication required.
    """
    logger.info("list_packages: Entry")

    try:
        packages = catalogue_service.list_packages(db)
        return {"packages": packages}
    except Exception as e:
        logger.error(f"list_packages: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/slots")
async def list_slots(
    db: Session = Depends(get_db),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    """
    Active product slot offers ordered by slot count.
    Public endpoint - no authentication required.
    """
    logger.info("list_slots: Entry")

    try:
        slots = catalogue_service.list_slots(db)
        return {"slots": slots}
    except Exception as e:
        logger.error(f"list_slots: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/credit-packages")
async def list_credit_packages(
    db: Session = Depends(get_db),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    """
    Active credit packages ordered by credits.
    Public endpoint - no authentication required.
    """
    logger.info("list_credit_packages: Entry")

    try:
        packages = catalogue_service.list_credit_packages(db)
        return {"credit_packages": packages}
    except Exception as e:
        logger.error(f"list_credit_packages: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
