import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.middleware import get_current_profile, get_current_user, require_not_banned
from app.services.subscription_service import SubscriptionService, serialize_subscription

router = APIRouter()
logger = logging.getLogger(__name__)


def get_subscription_service() -> SubscriptionService:
    """Dependency to get subscription service instance"""
    return SubscriptionService()


class PurchasePackageRequest(BaseModel):
    package_id: str


class PurchaseSlotsRequest(BaseModel):
    slot_id: str
    quantity: int = Field(default=1, ge=1)


@router.get("/current")
async def get_current_subscription(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Get current user's active subscription, null when there is none.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"get_current_subscription: Entry - user: {user_id}")

    try:
        subscription = subscription_service.get_current_subscription(db, user_id)
        logger.info(f"get_current_subscription: Success - user: {user_id}")
        return {"subscription": subscription}
    except Exception as e:
        logger.error(f"get_current_subscription: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("/purchase")
async def purchase_package(
    request: PurchasePackageRequest,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    profile=Depends(get_current_profile),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Buy a subscription package. A running subscription is extended.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"purchase_package: Entry - user: {user_id}, package: {request.package_id}")

    try:
        subscription = subscription_service.purchase_package(db, user_id, request.package_id)
        logger.info(f"purchase_package: Success - user: {user_id}, subscription: {subscription.id}")
        return {"subscription": serialize_subscription(subscription)}
    except ValueError as e:
        logger.warning(f"purchase_package: Rejected - {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND if "not found" in str(e).lower() else status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"purchase_package: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("/slots")
async def purchase_slots(
    request: PurchaseSlotsRequest,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Buy extra product slots for the active subscription.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"purchase_slots: Entry - user: {user_id}, slot: {request.slot_id}")

    try:
        subscription = subscription_service.purchase_slots(db, user_id, request.slot_id, request.quantity)
        logger.info(f"purchase_slots: Success - user: {user_id}")
        return {"subscription": serialize_subscription(subscription)}
    except ValueError as e:
        logger.warning(f"purchase_slots: Rejected - {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND if "not found" in str(e).lower() else status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"purchase_slots: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("/cancel")
async def cancel_subscription(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Cancel the active subscription. Listing quota ends immediately.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"cancel_subscription: Entry - user: {user_id}")

    try:
        subscription = subscription_service.cancel_subscription(db, user_id)
        logger.info(f"cancel_subscription: Success - user: {user_id}")
        return {
            "message": "Subscription cancelled",
            "subscription": serialize_subscription(subscription)
        }
    except ValueError as e:
        logger.warning(f"cancel_subscription: No subscription - {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"cancel_subscription: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/history")
async def get_subscription_history(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Get user's subscription history.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"get_subscription_history: Entry - user: {user_id}")

    try:
        history = subscription_service.get_subscription_history(db, user_id)
        logger.info(f"get_subscription_history: Success - user: {user_id}, count: {len(history)}")
        return {"history": history}
    except Exception as e:
        logger.error(f"get_subscription_history: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
