from datetime import datetime
from typing import Optional
import logging

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.models.product import Product
from app.models.subscription import Subscription, SubscriptionStatus
from app.services.analytics_service import AnalyticsService
from app.services.rules import Entitlement, compute_entitlement

logger = logging.getLogger(__name__)

NO_ENTITLEMENT_MESSAGE = (
    "You have no free product slots. Buy a subscription package at /packages "
    "or extra product slots at /product-slots to create more listings."
)


class EntitlementService:
    """
    Listing quota of a seller: the product_limit of their active subscription
    package plus bought slots, minus the listings they already have.
    """

    def __init__(self, analytics: AnalyticsService = None):
        self.analytics = analytics or AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def get_active_subscription(self, db: Session, user_id: str, now: datetime = None) -> Optional[Subscription]:
        """Most recent active subscription that has not expired"""
        now = now or datetime.utcnow()
        return db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.expires_at >= now
        ).order_by(Subscription.expires_at.desc()).first()

    def count_products(self, db: Session, user_id: str) -> int:
        return db.query(Product).filter(Product.user_id == user_id).count()

    def compute(self, db: Session, user_id: str, now: datetime = None) -> tuple[Entitlement, Optional[Subscription]]:
        subscription = self.get_active_subscription(db, user_id, now)
        product_limit = 0
        if subscription is not None:
            package_limit = subscription.package.product_limit if subscription.package else 0
            product_limit = package_limit + (subscription.extra_slots or 0)
        used = self.count_products(db, user_id)
        return compute_entitlement(product_limit, used), subscription

    def get_entitlement(self, db: Session, user_id: str) -> dict:
        """Entitlement report for the seller dashboard"""
        self.logger.info(f"get_entitlement: Entry - user: {user_id}")

        try:
            entitlement, subscription = self.compute(db, user_id)
            result = {
                **entitlement.to_dict(),
                'has_subscription': subscription is not None,
                'subscription_id': subscription.id if subscription else None,
                'expires_at': subscription.expires_at.isoformat() if subscription else None,
            }
            self.logger.info(
                f"get_entitlement: Success - user: {user_id}, "
                f"{entitlement.used_products}/{entitlement.product_limit}"
            )
            return result
        except Exception as e:
            self.analytics.log_failure(action='get_entitlement', error=str(e), user_id=user_id)
            self.logger.error(f"get_entitlement: Failure - {e}")
            raise

    def ensure_can_create(self, db: Session, user_id: str, required: int = 1) -> Entitlement:
        """Raise 403 unless the seller has `required` free slots. Performs no writes."""
        self.logger.info(f"ensure_can_create: Entry - user: {user_id}, required: {required}")

        entitlement, _ = self.compute(db, user_id)
        if not entitlement.can_create(required):
            self.logger.info(
                f"ensure_can_create: Denied - user: {user_id}, "
                f"available: {entitlement.available_products}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=NO_ENTITLEMENT_MESSAGE
            )
        self.logger.info(f"ensure_can_create: Allowed - user: {user_id}, available: {entitlement.available_products}")
        return entitlement
