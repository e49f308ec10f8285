import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.cache import get_cache, payout_lock_key
from app.models.audit_log import AuditLog
from app.models.payout import Payout, PayoutStatus
from app.models.profile import Profile
from app.services.analytics_service import AnalyticsService
from app.services.checkout_service import CENT, CheckoutService

logger = logging.getLogger(__name__)


def serialize_payout(payout: Payout) -> dict:
    return {
        'id': payout.id,
        'user_id': payout.user_id,
        'amount': float(payout.amount),
        'status': payout.status,
        'created_at': payout.created_at.isoformat() if payout.created_at else None,
        'updated_at': payout.updated_at.isoformat() if payout.updated_at else None,
    }


class PayoutService:
    """
    Seller payouts. A seller's balance is the net of their completed sales
    minus every payout that has not failed; a payout can never exceed it.
    """

    def __init__(self, analytics: AnalyticsService = None, checkout: CheckoutService = None):
        self.analytics = analytics or AnalyticsService()
        self.checkout = checkout or CheckoutService(self.analytics)
        self.logger = logging.getLogger(__name__)

    def paid_out(self, db: Session, seller_id: str) -> Decimal:
        """Sum of pending and paid payouts"""
        total = db.query(func.coalesce(func.sum(Payout.amount), 0)).filter(
            Payout.user_id == seller_id,
            Payout.status != PayoutStatus.FAILED.value
        ).scalar()
        return Decimal(str(total or 0))

    def get_balance(self, db: Session, seller_id: str) -> dict:
        earnings = self.checkout.get_earnings(db, seller_id)
        net = Decimal(str(earnings['net_earnings'])).quantize(CENT)
        paid = self.paid_out(db, seller_id).quantize(CENT)
        return {
            'seller_id': seller_id,
            'net_earnings': float(net),
            'paid_out': float(paid),
            'available': float(max(Decimal('0'), net - paid)),
        }

    def list_payouts(self, db: Session, seller_id: str, limit: Optional[int] = None) -> list[dict]:
        """Payouts of a seller, newest first"""
        query = db.query(Payout).filter(Payout.user_id == seller_id).order_by(Payout.created_at.desc())
        if limit:
            query = query.limit(limit)
        return [serialize_payout(p) for p in query.all()]

    def list_all_payouts(self, db: Session, status: Optional[str] = None, limit: int = 200) -> list[dict]:
        query = db.query(Payout)
        if status:
            query = query.filter(Payout.status == status)
        payouts = query.order_by(Payout.created_at.desc()).limit(limit).all()
        return [serialize_payout(p) for p in payouts]

    def create_payout(self, db: Session, seller_id: str, amount, actor_id: Optional[str] = None) -> Payout:
        """Record a pending payout to a seller, bounded by their available balance"""
        self.logger.info(f"create_payout: Entry - seller: {seller_id}, amount: {amount}")

        try:
            amount = Decimal(str(amount)).quantize(CENT)
        except (InvalidOperation, TypeError):
            raise ValueError("Enter a valid amount")
        if amount <= 0:
            raise ValueError("Payout amount must be greater than 0")
        if not db.query(Profile).filter(Profile.id == seller_id).first():
            raise ValueError("User not found")

        with get_cache().lock(payout_lock_key(seller_id)):
            balance = self.get_balance(db, seller_id)
            if amount > Decimal(str(balance['available'])):
                raise ValueError(f"Payout exceeds the available balance of {balance['available']:.2f}")

            try:
                now = datetime.utcnow()
                payout = Payout(
                    id=str(uuid.uuid4()),
                    user_id=seller_id,
                    amount=amount,
                    status=PayoutStatus.PENDING.value,
                    created_by=actor_id,
                    created_at=now,
                    updated_at=now,
                )
                db.add(payout)
                db.add(AuditLog(
                    id=str(uuid.uuid4()),
                    actor_id=actor_id,
                    action='create_payout',
                    resource_type='payout',
                    resource_id=payout.id,
                    details=json.dumps({'seller_id': seller_id, 'amount': str(amount)})
                ))
                db.commit()
                db.refresh(payout)
            except Exception as e:
                db.rollback()
                self.analytics.log_failure(action='create_payout', error=str(e), user_id=actor_id)
                self.logger.error(f"create_payout: Failure - {e}")
                raise

        self.analytics.log_success(
            action='create_payout',
            user_id=actor_id,
            parameters={'payout_id': payout.id, 'seller_id': seller_id, 'amount': float(amount)}
        )
        self.logger.info(f"create_payout: Success - {payout.id}")
        return payout

    def set_payout_status(self, db: Session, payout_id: str, new_status: str, actor_id: Optional[str] = None) -> Payout:
        """Settle a pending payout as paid or failed"""
        self.logger.info(f"set_payout_status: Entry - {payout_id} -> {new_status}")

        if new_status not in (PayoutStatus.PAID.value, PayoutStatus.FAILED.value):
            raise ValueError(f"Unknown payout status: {new_status}")
        payout = db.query(Payout).filter(Payout.id == payout_id).first()
        if not payout:
            raise ValueError("Payout not found")
        if payout.status != PayoutStatus.PENDING.value:
            raise ValueError(f"Payout is already {payout.status}")

        try:
            payout.status = new_status
            payout.updated_at = datetime.utcnow()
            db.add(AuditLog(
                id=str(uuid.uuid4()),
                actor_id=actor_id,
                action='set_payout_status',
                resource_type='payout',
                resource_id=payout_id,
                details=json.dumps({'status': new_status})
            ))
            db.commit()
            db.refresh(payout)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='set_payout_status', error=str(e), user_id=actor_id)
            self.logger.error(f"set_payout_status: Failure - {e}")
            raise

        self.analytics.log_success(
            action='set_payout_status',
            user_id=actor_id,
            parameters={'payout_id': payout_id, 'status': new_status}
        )
        self.logger.info(f"set_payout_status: Success - {payout_id}")
        return payout
