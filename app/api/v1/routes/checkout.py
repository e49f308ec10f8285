import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.middleware import get_current_profile, require_not_banned
from app.services.checkout_service import CartItem, CheckoutService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_checkout_service() -> CheckoutService:
    """Dependency to get checkout service instance"""
    return CheckoutService()


class CartItemRequest(BaseModel):
    type: Literal['package', 'slot', 'credits', 'product']
    id: str
    quantity: int = Field(default=1, ge=1)


class CheckoutRequest(BaseModel):
    items: list[CartItemRequest]
    email: str
    email_confirm: str


@router.post("")
def checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    profile=Depends(get_current_profile),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Place an order for packages, product slots, credit packages and products.
    Payment is simulated. Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"checkout: Entry - user: {user_id}, items: {len(request.items)}")

    try:
        order = checkout_service.checkout(
            db,
            user_id,
            [CartItem(type=i.type, id=i.id, quantity=i.quantity) for i in request.items],
            request.email,
            request.email_confirm,
        )
        logger.info(f"checkout: Success - order: {order['order_id']}")
        return order
    except ValueError as e:
        logger.warning(f"checkout: Rejected - {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"checkout: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
