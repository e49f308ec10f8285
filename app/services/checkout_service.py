import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.credit_package import CreditPackage
from app.models.product import Product, ProductStatus
from app.models.product_slot import ProductSlot
from app.models.profile import Profile
from app.models.subscription_package import SubscriptionPackage
from app.models.transaction import Transaction, TransactionStatus
from app.services.analytics_service import AnalyticsService
from app.services.entitlement_service import EntitlementService
from app.services.rules import active_price, is_product_expired, normalize_email
from app.services.subscription_service import SubscriptionService, serialize_subscription

logger = logging.getLogger(__name__)

ITEM_TYPES = ('package', 'slot', 'credits', 'product')
CENT = Decimal('0.01')


@dataclass
class CartItem:
    type: str
    id: str
    quantity: int = 1


def commission_for(amount: Decimal, rate) -> Decimal:
    return (Decimal(amount) * Decimal(str(rate)) / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)


def serialize_transaction(transaction: Transaction) -> dict:
    return {
        'id': transaction.id,
        'seller_id': transaction.seller_id,
        'buyer_id': transaction.buyer_id,
        'product_id': transaction.product_id,
        'amount': float(transaction.amount),
        'commission_rate': float(transaction.commission_rate),
        'commission_amount': float(transaction.commission_amount),
        'net_amount': float(Decimal(transaction.amount) - Decimal(transaction.commission_amount)),
        'status': transaction.status,
        'created_at': transaction.created_at.isoformat() if transaction.created_at else None,
    }


class CheckoutService:
    """
    Simulated checkout of a cart of packages, product slots, credit packages
    and products.

    No payment gateway is involved: an order is accepted once the cart
    validates, and everything it buys is written in one transaction.
    """

    def __init__(
        self,
        analytics: AnalyticsService = None,
        subscriptions: SubscriptionService = None,
        entitlements: EntitlementService = None,
    ):
        self.analytics = analytics or AnalyticsService()
        self.entitlements = entitlements or EntitlementService(self.analytics)
        self.subscriptions = subscriptions or SubscriptionService(self.analytics, self.entitlements)
        self.logger = logging.getLogger(__name__)

    def _validate_cart(self, db: Session, user_id: str, items: list[CartItem], email: str, email_confirm: str):
        if not items:
            raise ValueError("Your cart is empty")
        for item in items:
            if item.type not in ITEM_TYPES:
                raise ValueError(f"Unknown cart item type: {item.type}")
            if item.quantity < 1:
                raise ValueError("Quantity must be at least 1")

        packages = [i for i in items if i.type == 'package']
        if len(packages) > 1 or (packages and packages[0].quantity != 1):
            raise ValueError("Only one subscription package can be bought per order")

        if (email or '').strip().lower() != (email_confirm or '').strip().lower():
            raise ValueError("Email addresses do not match")
        normalize_email(email)

        has_slots = any(i.type == 'slot' for i in items)
        if has_slots and not packages and not self.entitlements.get_active_subscription(db, user_id):
            raise ValueError(
                "Product slots can only be bought with an active subscription. "
                "Add a subscription package to your order."
            )

    def checkout(
        self,
        db: Session,
        user_id: str,
        items: list[CartItem],
        email: str,
        email_confirm: str,
    ) -> dict:
        """Place an order. Packages are applied before slots."""
        self.logger.info(f"checkout: Entry - user: {user_id}, items: {len(items)}")

        self._validate_cart(db, user_id, items, email, email_confirm)

        if settings.checkout_delay_seconds > 0:
            time.sleep(settings.checkout_delay_seconds)

        order_id = str(uuid.uuid4())
        now = datetime.utcnow()
        try:
            subscription = None
            lines = []
            total = Decimal('0')

            for item in (i for i in items if i.type == 'package'):
                package = db.query(SubscriptionPackage).filter(SubscriptionPackage.id == item.id).first()
                if not package or not package.is_active:
                    raise ValueError("Package not found")
                subscription = self.subscriptions.apply_package(db, user_id, package, now)
                price = active_price(package, now)
                total += price
                lines.append({'type': 'package', 'id': package.id, 'name': package.name,
                              'quantity': 1, 'amount': float(price)})

            for item in (i for i in items if i.type == 'slot'):
                slot = db.query(ProductSlot).filter(ProductSlot.id == item.id).first()
                if not slot or not slot.is_active:
                    raise ValueError("Product slot not found")
                subscription = self.subscriptions.apply_slots(
                    db, user_id, slot, item.quantity, subscription=subscription, now=now
                )
                amount = active_price(slot, now) * item.quantity
                total += amount
                lines.append({'type': 'slot', 'id': slot.id, 'name': slot.name,
                              'quantity': item.quantity, 'amount': float(amount)})

            credit_items = [i for i in items if i.type == 'credits']
            credits_added = 0
            if credit_items:
                profile = db.query(Profile).filter(Profile.id == user_id).first()
                if not profile:
                    raise ValueError("Profile not found")
                for item in credit_items:
                    credit_package = db.query(CreditPackage).filter(CreditPackage.id == item.id).first()
                    if not credit_package or not credit_package.is_active:
                        raise ValueError("Credit package not found")
                    added = credit_package.credits * item.quantity
                    profile.credits = (profile.credits or 0) + added
                    profile.updated_at = now
                    credit_package.sold_quantity = (credit_package.sold_quantity or 0) + item.quantity
                    credits_added += added
                    amount = active_price(credit_package, now) * item.quantity
                    total += amount
                    lines.append({'type': 'credits', 'id': credit_package.id, 'name': credit_package.name,
                                  'quantity': item.quantity, 'amount': float(amount), 'credits': added})

            transactions = []
            for item in (i for i in items if i.type == 'product'):
                product = db.query(Product).filter(Product.id == item.id).first()
                if not product or product.status != ProductStatus.ACTIVE.value or is_product_expired(product.expires_at, now):
                    raise ValueError("Product is not available")
                if product.user_id == user_id:
                    raise ValueError("You cannot buy your own product")

                amount = active_price(product, now) * item.quantity
                rate = Decimal(str(settings.default_commission_rate))
                transaction = Transaction(
                    id=str(uuid.uuid4()),
                    seller_id=product.user_id,
                    buyer_id=user_id,
                    product_id=product.id,
                    amount=amount,
                    commission_rate=rate,
                    commission_amount=commission_for(amount, rate),
                    status=TransactionStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
                db.add(transaction)
                transactions.append(transaction)
                product.status = ProductStatus.SOLD.value
                product.updated_at = now
                total += amount
                lines.append({'type': 'product', 'id': product.id, 'name': product.title,
                              'quantity': item.quantity, 'amount': float(amount),
                              'transaction_id': transaction.id})

            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='checkout',
                error=str(e),
                user_id=user_id,
                parameters={'order_id': order_id}
            )
            self.logger.error(f"checkout: Failure - {e}")
            raise

        self.analytics.log_success(
            action='checkout',
            user_id=user_id,
            parameters={'order_id': order_id, 'total': float(total), 'items': len(lines)}
        )
        self.logger.info(f"checkout: Success - user: {user_id}, order: {order_id}, total: {total}")
        return {
            'order_id': order_id,
            'email': email.strip(),
            'total': float(total),
            'items': lines,
            'subscription': serialize_subscription(subscription) if subscription else None,
            'credits_added': credits_added,
            'transactions': [serialize_transaction(t) for t in transactions],
        }

    def get_earnings(
        self,
        db: Session,
        seller_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> dict:
        """Net earnings of a seller over completed transactions in [since, until]"""
        self.logger.info(f"get_earnings: Entry - seller: {seller_id}")

        query = db.query(
            func.coalesce(func.sum(Transaction.amount - Transaction.commission_amount), 0),
            func.count(Transaction.id),
        ).filter(
            Transaction.seller_id == seller_id,
            Transaction.status == TransactionStatus.COMPLETED.value
        )
        if since:
            query = query.filter(Transaction.created_at >= since)
        if until:
            query = query.filter(Transaction.created_at <= until)
        net, count = query.one()

        self.logger.info(f"get_earnings: Success - seller: {seller_id}, net: {net}, count: {count}")
        return {
            'seller_id': seller_id,
            'net_earnings': float(net or 0),
            'completed_transactions': count,
            'since': since.isoformat() if since else None,
            'until': until.isoformat() if until else None,
        }

    def list_seller_orders(self, db: Session, seller_id: str) -> list[dict]:
        transactions = db.query(Transaction).filter(
            Transaction.seller_id == seller_id
        ).order_by(Transaction.created_at.desc()).all()
        return [serialize_transaction(t) for t in transactions]

    def list_all_orders(self, db: Session, limit: int = 200) -> list[dict]:
        transactions = db.query(Transaction).order_by(Transaction.created_at.desc()).limit(limit).all()
        return [serialize_transaction(t) for t in transactions]

    def set_transaction_status(self, db: Session, transaction_id: str, new_status: str, actor_id: Optional[str] = None) -> Transaction:
        """Admin settlement of an order (completed, refunded, failed)"""
        self.logger.info(f"set_transaction_status: Entry - {transaction_id} -> {new_status}")

        if new_status not in {s.value for s in TransactionStatus}:
            raise ValueError(f"Unknown transaction status: {new_status}")
        try:
            transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
            if not transaction:
                raise ValueError("Transaction not found")
            transaction.status = new_status
            transaction.updated_at = datetime.utcnow()
            if new_status == TransactionStatus.REFUNDED.value and transaction.product_id:
                product = db.query(Product).filter(Product.id == transaction.product_id).first()
                if product and product.status == ProductStatus.SOLD.value:
                    product.status = ProductStatus.ACTIVE.value
            db.commit()
            db.refresh(transaction)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='set_transaction_status', error=str(e), user_id=actor_id)
            self.logger.error(f"set_transaction_status: Failure - {e}")
            raise

        self.analytics.log_success(
            action='set_transaction_status',
            user_id=actor_id,
            parameters={'transaction_id': transaction_id, 'status': new_status}
        )
        self.logger.info(f"set_transaction_status: Success - {transaction_id}")
        return transaction
