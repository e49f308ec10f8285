import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.middleware import get_current_profile, get_current_user
from app.services.ban_service import BanService
from app.services.checkout_service import CheckoutService
from app.services.entitlement_service import EntitlementService
from app.services.payout_service import PayoutService
from app.services.profile_service import ProfileService, serialize_profile
from app.services.rules import to_naive_utc

router = APIRouter()
logger = logging.getLogger(__name__)


def get_profile_service() -> ProfileService:
    return ProfileService()


def get_entitlement_service() -> EntitlementService:
    return EntitlementService()


def get_ban_service() -> BanService:
    return BanService()


def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_payout_service() -> PayoutService:
    return PayoutService()


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


@router.get("")
async def get_profile(
    db: Session = Depends(get_db),
    profile=Depends(get_current_profile),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """Requires authentication."""
    try:
        return {"profile": profile_service.get_profile(db, profile.id)}
    except Exception as e:
        logger.error(f"get_profile: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.patch("")
async def update_profile(
    request: UpdateProfileRequest,
    db: Session = Depends(get_db),
    profile=Depends(get_current_profile),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """
    Update the caller's contact details.
    Requires authentication.
    """
    logger.info(f"update_profile: Entry - user: {profile.id}")

    try:
        updated = profile_service.update_profile(db, profile.id, request.model_dump(exclude_unset=True))
        return {"profile": serialize_profile(updated)}
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"update_profile: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/entitlement")
async def get_entitlement(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    entitlement_service: EntitlementService = Depends(get_entitlement_service)
):
    """
    Product limit, used and available listings of the caller.
    Requires authentication.
    """
    try:
        return entitlement_service.get_entitlement(db, current_user['uid'])
    except Exception as e:
        logger.error(f"get_entitlement: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/ban-status")
async def get_ban_status(
    db: Session = Depends(get_db),
    profile=Depends(get_current_profile),
    ban_service: BanService = Depends(get_ban_service)
):
    """Requires authentication."""
    try:
        return ban_service.get_ban_status(db, profile.id)
    except Exception as e:
        logger.error(f"get_ban_status: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/earnings")
async def get_earnings(
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Net earnings from completed sales in the given range.
    Requires authentication.
    """
    try:
        return checkout_service.get_earnings(db, current_user['uid'], to_naive_utc(since), to_naive_utc(until))
    except Exception as e:
        logger.error(f"get_earnings: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/orders")
async def list_orders(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Sales of the caller's products, newest first.
    Requires authentication.
    """
    try:
        return {"orders": checkout_service.list_seller_orders(db, current_user['uid'])}
    except Exception as e:
        logger.error(f"list_orders: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/payouts")
async def list_payouts(
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    payout_service: PayoutService = Depends(get_payout_service)
):
    """
    Payouts to the caller, newest first, with the balance still available.
    Requires authentication.
    """
    try:
        return {
            "balance": payout_service.get_balance(db, current_user['uid']),
            "payouts": payout_service.list_payouts(db, current_user['uid'], limit),
        }
    except Exception as e:
        logger.error(f"list_payouts: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
