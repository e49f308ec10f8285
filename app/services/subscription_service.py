import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.models.product_slot import ProductSlot
from app.models.profile import Profile
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_history import SubscriptionHistory
from app.models.subscription_package import SubscriptionPackage
from app.services.analytics_service import AnalyticsService
from app.services.entitlement_service import EntitlementService
from app.services.rules import active_price

logger = logging.getLogger(__name__)


def serialize_subscription(subscription: Subscription) -> dict:
    package = subscription.package
    return {
        'id': subscription.id,
        'user_id': subscription.user_id,
        'package_id': subscription.package_id,
        'package_name': package.name if package else None,
        'status': subscription.status.value,
        'product_limit': (package.product_limit if package else 0) + (subscription.extra_slots or 0),
        'extra_slots': subscription.extra_slots or 0,
        'amount_paid': float(subscription.amount_paid) if subscription.amount_paid is not None else None,
        'starts_at': subscription.starts_at.isoformat() if subscription.starts_at else None,
        'expires_at': subscription.expires_at.isoformat(),
    }


class SubscriptionService:
    def __init__(self, analytics: AnalyticsService = None, entitlements: EntitlementService = None):
        self.analytics = analytics or AnalyticsService()
        self.entitlements = entitlements or EntitlementService(self.analytics)
        self.logger = logging.getLogger(__name__)

    def _history(self, db: Session, subscription: Subscription, action: str, details: dict):
        db.add(SubscriptionHistory(
            id=str(uuid.uuid4()),
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            action=action,
            package_id=subscription.package_id,
            details=json.dumps(details, default=str)
        ))

    def get_current_subscription(self, db: Session, user_id: str) -> Optional[dict]:
        """Get user's current subscription, None when there is none"""
        self.logger.info(f"get_current_subscription: Entry - user: {user_id}")

        try:
            subscription = self.entitlements.get_active_subscription(db, user_id)
            result = serialize_subscription(subscription) if subscription else None
            self.logger.info(
                f"get_current_subscription: Success - user: {user_id}, "
                f"subscription: {subscription.id if subscription else None}")
            return result
        except Exception as e:
            self.analytics.log_failure(
                action='get_current_subscription',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"get_current_subscription: Failure - {e}")
            raise

    def apply_package(self, db: Session, user_id: str, package: SubscriptionPackage, now: datetime = None) -> Subscription:
        """
        Stage a package purchase without committing.

        With an active subscription the new one runs from the old expiry for
        another duration, carries its bought slots, and the old row becomes
        'replaced'. Otherwise it runs from now.
        """
        now = now or datetime.utcnow()
        duration = timedelta(days=package.duration_weeks * 7)
        current = self.entitlements.get_active_subscription(db, user_id, now)

        subscription = Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            package_id=package.id,
            status=SubscriptionStatus.ACTIVE,
            extra_slots=(current.extra_slots or 0) if current else 0,
            amount_paid=active_price(package, now),
            starts_at=now,
            expires_at=(current.expires_at if current else now) + duration,
            created_at=now,
            updated_at=now,
        )
        subscription.package = package

        if current:
            current.status = SubscriptionStatus.REPLACED
            current.updated_at = now
            self._history(db, current, 'replaced', {'replaced_by': subscription.id})

        db.add(subscription)
        package.sold_quantity = (package.sold_quantity or 0) + 1
        self._history(db, subscription, 'extended' if current else 'created', {
            'package': package.name,
            'amount_paid': str(subscription.amount_paid),
            'expires_at': subscription.expires_at.isoformat(),
            'previous_subscription': current.id if current else None,
        })
        return subscription

    def apply_slots(
        self,
        db: Session,
        user_id: str,
        slot: ProductSlot,
        quantity: int = 1,
        subscription: Optional[Subscription] = None,
        now: datetime = None,
    ) -> Subscription:
        """Stage a product slot purchase on the active subscription without committing"""
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        subscription = subscription or self.entitlements.get_active_subscription(db, user_id, now)
        if not subscription:
            raise ValueError("An active subscription is required to buy product slots")

        added = slot.slot_count * quantity
        subscription.extra_slots = (subscription.extra_slots or 0) + added
        subscription.updated_at = now or datetime.utcnow()
        slot.sold_quantity = (slot.sold_quantity or 0) + quantity
        self._history(db, subscription, 'slots_added', {
            'slot': slot.name,
            'slot_id': slot.id,
            'quantity': quantity,
            'added_slots': added,
            'amount_paid': str(active_price(slot, now) * quantity),
        })
        return subscription

    def _get_package(self, db: Session, package_id: str) -> SubscriptionPackage:
        package = db.query(SubscriptionPackage).filter(SubscriptionPackage.id == package_id).first()
        if not package or not package.is_active:
            raise ValueError("Package not found")
        return package

    def _get_slot(self, db: Session, slot_id: str) -> ProductSlot:
        slot = db.query(ProductSlot).filter(ProductSlot.id == slot_id).first()
        if not slot or not slot.is_active:
            raise ValueError("Product slot not found")
        return slot

    def purchase_package(self, db: Session, user_id: str, package_id: str) -> Subscription:
        """Buy a subscription package, extending a running subscription"""
        self.logger.info(f"purchase_package: Entry - user: {user_id}, package: {package_id}")

        try:
            if not db.query(Profile).filter(Profile.id == user_id).first():
                raise ValueError("User not found")
            package = self._get_package(db, package_id)
            subscription = self.apply_package(db, user_id, package)

            db.commit()
            db.refresh(subscription)

            self.analytics.log_success(
                action='purchase_package',
                user_id=user_id,
                parameters={
                    'package_id': package_id,
                    'amount_paid': float(subscription.amount_paid),
                    'expires_at': subscription.expires_at.isoformat()
                }
            )
            self.logger.info(
                f"purchase_package: Success - user: {user_id}, subscription: {subscription.id}")
            return subscription
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='purchase_package',
                error=str(e),
                user_id=user_id,
                parameters={'package_id': package_id}
            )
            self.logger.error(f"purchase_package: Failure - {e}")
            raise

    def purchase_slots(self, db: Session, user_id: str, slot_id: str, quantity: int = 1) -> Subscription:
        """Buy extra product slots for the active subscription"""
        self.logger.info(f"purchase_slots: Entry - user: {user_id}, slot: {slot_id}, quantity: {quantity}")

        try:
            slot = self._get_slot(db, slot_id)
            subscription = self.apply_slots(db, user_id, slot, quantity)

            db.commit()
            db.refresh(subscription)

            self.analytics.log_success(
                action='purchase_slots',
                user_id=user_id,
                parameters={'slot_id': slot_id, 'quantity': quantity}
            )
            self.logger.info(
                f"purchase_slots: Success - user: {user_id}, extra_slots: {subscription.extra_slots}")
            return subscription
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='purchase_slots',
                error=str(e),
                user_id=user_id,
                parameters={'slot_id': slot_id}
            )
            self.logger.error(f"purchase_slots: Failure - {e}")
            raise

    def cancel_subscription(self, db: Session, user_id: str) -> Subscription:
        """Cancel user's active subscription. The listing quota ends with it."""
        self.logger.info(f"cancel_subscription: Entry - user: {user_id}")

        try:
            subscription = self.entitlements.get_active_subscription(db, user_id)
            if not subscription:
                raise ValueError("No active subscription found")

            now = datetime.utcnow()
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.updated_at = now
            self._history(db, subscription, 'cancelled', {
                'cancelled_at': now.isoformat(),
                'expires_at': subscription.expires_at.isoformat()
            })

            db.commit()
            db.refresh(subscription)

            self.analytics.log_success(
                action='cancel_subscription',
                user_id=user_id,
                parameters={'subscription_id': subscription.id}
            )
            self.logger.info(
                f"cancel_subscription: Success - user: {user_id}, subscription: {subscription.id}")
            return subscription
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='cancel_subscription',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"cancel_subscription: Failure - {e}")
            raise

    def get_subscription_history(self, db: Session, user_id: str) -> list[dict]:
        """Get user's subscription history"""
        self.logger.info(f"get_subscription_history: Entry - user: {user_id}")

        try:
            history = db.query(SubscriptionHistory).filter(
                SubscriptionHistory.user_id == user_id
            ).order_by(SubscriptionHistory.created_at.desc()).all()

            result = []
            for entry in history:
                result.append({
                    'id': entry.id,
                    'subscription_id': entry.subscription_id,
                    'action': entry.action,
                    'package_id': entry.package_id,
                    'created_at': entry.created_at.isoformat(),
                    'details': json.loads(entry.details) if entry.details else None
                })

            self.logger.info(
                f"get_subscription_history: Success - user: {user_id}, count: {len(result)}")
            return result
        except Exception as e:
            self.analytics.log_failure(
                action='get_subscription_history',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"get_subscription_history: Failure - {e}")
            raise

    def check_expired_subscriptions(self, db: Session) -> int:
        """Mark active subscriptions that have passed expires_at as expired"""
        self.logger.info("check_expired_subscriptions: Entry")

        try:
            now = datetime.utcnow()
            expired_subs = db.query(Subscription).filter(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.expires_at < now
            ).all()

            for subscription in expired_subs:
                subscription.status = SubscriptionStatus.EXPIRED
                subscription.updated_at = now
                self._history(db, subscription, 'expired', {
                    'expired_at': now.isoformat(),
                    'expires_at': subscription.expires_at.isoformat()
                })

            db.commit()

            count = len(expired_subs)
            self.analytics.log_success(
                action='check_expired_subscriptions',
                parameters={'expired_count': count}
            )
            self.logger.info(
                f"check_expired_subscriptions: Success - expired: {count}")
            return count
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='check_expired_subscriptions',
                error=str(e)
            )
            self.logger.error(f"check_expired_subscriptions: Failure - {e}")
            raise
