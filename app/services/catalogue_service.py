import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from app.core.cache import get_cache, popular_lock_key
from app.models.audit_log import AuditLog
from app.models.credit_package import CreditPackage
from app.models.product_slot import ProductSlot
from app.models.subscription_package import SubscriptionPackage
from app.services.analytics_service import AnalyticsService
from app.services.rules import price_view, to_naive_utc, validate_discount

logger = logging.getLogger(__name__)

COMMON_FIELDS = {
    'name', 'description', 'price', 'discount_price', 'discount_start_date',
    'discount_end_date', 'is_active', 'is_popular', 'max_quantity',
}
PACKAGE_FIELDS = COMMON_FIELDS | {'duration_weeks', 'product_limit'}
SLOT_FIELDS = COMMON_FIELDS | {'slot_count'}
CREDIT_PACKAGE_FIELDS = COMMON_FIELDS | {'credits'}
NOT_NULL_FIELDS = {
    'name', 'price', 'is_active', 'is_popular',
    'duration_weeks', 'product_limit', 'slot_count', 'credits',
}


def _base_view(item) -> dict:
    sold_out = item.max_quantity is not None and (item.sold_quantity or 0) >= item.max_quantity
    return {
        'id': item.id,
        'name': item.name,
        'description': item.description,
        **price_view(item.price, item.discount_price, item.discount_start_date, item.discount_end_date),
        'is_active': item.is_active,
        'is_popular': item.is_popular,
        'max_quantity': item.max_quantity,
        'sold_quantity': item.sold_quantity or 0,
        'sold_out': sold_out,
        'created_at': item.created_at.isoformat() if item.created_at else None,
    }


def serialize_package(package: SubscriptionPackage) -> dict:
    return {
        **_base_view(package),
        'duration_weeks': package.duration_weeks,
        'product_limit': package.product_limit,
    }


def serialize_slot(slot: ProductSlot) -> dict:
    return {
        **_base_view(slot),
        'slot_count': slot.slot_count,
    }


def serialize_credit_package(package: CreditPackage) -> dict:
    return {
        **_base_view(package),
        'credits': package.credits,
    }


def _pick(data: dict, fields: set) -> dict:
    """Known fields only, without nulls for NOT NULL columns"""
    return {
        k: v for k, v in data.items()
        if k in fields and not (v is None and k in NOT_NULL_FIELDS)
    }


def _positive_int(data: dict, field: str, minimum: int = 1):
    if field not in data or data[field] is None:
        return
    try:
        value = int(data[field])
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a whole number")
    if value < minimum:
        raise ValueError(f"{field} must be at least {minimum}")
    data[field] = value


def _validate(data: dict, current=None):
    """Check the merged state of a package or slot row"""
    name = data.get('name', current.name if current else None)
    if not (name or '').strip():
        raise ValueError("Name is required")

    price = data.get('price', current.price if current else None)
    if price is None:
        raise ValueError("Price is required")
    try:
        if Decimal(str(price)) <= 0:
            raise ValueError("Price must be greater than 0")
    except InvalidOperation:
        raise ValueError("Enter a valid price")

    for field in ('duration_weeks', 'product_limit', 'slot_count', 'credits', 'max_quantity'):
        _positive_int(data, field)

    validate_discount(
        price,
        data.get('discount_price', current.discount_price if current else None),
        data.get('discount_start_date', current.discount_start_date if current else None),
        data.get('discount_end_date', current.discount_end_date if current else None),
    )


class CatalogueService:
    """
    Subscription packages, product slots and credit packages offered in the store.

    At most one row per table carries the popular badge: saving a row as
    popular clears the flag on every other row in the same transaction.
    """

    def __init__(self, analytics: AnalyticsService = None):
        self.analytics = analytics or AnalyticsService()
        self.logger = logging.getLogger(__name__)

    # --- Public listing ------------------------------------------------------

    def list_packages(self, db: Session, include_inactive: bool = False) -> list[dict]:
        self.logger.info(f"list_packages: Entry - include_inactive: {include_inactive}")
        query = db.query(SubscriptionPackage)
        if not include_inactive:
            query = query.filter(SubscriptionPackage.is_active == True)
        packages = query.order_by(SubscriptionPackage.price).all()
        self.logger.info(f"list_packages: Success - {len(packages)} packages")
        return [serialize_package(p) for p in packages]

    def list_slots(self, db: Session, include_inactive: bool = False) -> list[dict]:
        self.logger.info(f"list_slots: Entry - include_inactive: {include_inactive}")
        query = db.query(ProductSlot)
        if not include_inactive:
            query = query.filter(ProductSlot.is_active == True)
        slots = query.order_by(ProductSlot.slot_count).all()
        self.logger.info(f"list_slots: Success - {len(slots)} slots")
        return [serialize_slot(s) for s in slots]

    def list_credit_packages(self, db: Session, include_inactive: bool = False) -> list[dict]:
        self.logger.info(f"list_credit_packages: Entry - include_inactive: {include_inactive}")
        query = db.query(CreditPackage)
        if not include_inactive:
            query = query.filter(CreditPackage.is_active == True)
        packages = query.order_by(CreditPackage.credits).all()
        self.logger.info(f"list_credit_packages: Success - {len(packages)} packages")
        return [serialize_credit_package(p) for p in packages]

    def get_package(self, db: Session, package_id: str) -> SubscriptionPackage:
        package = db.query(SubscriptionPackage).filter(SubscriptionPackage.id == package_id).first()
        if not package:
            raise ValueError("Package not found")
        return package

    def get_slot(self, db: Session, slot_id: str) -> ProductSlot:
        slot = db.query(ProductSlot).filter(ProductSlot.id == slot_id).first()
        if not slot:
            raise ValueError("Product slot not found")
        return slot

    def get_credit_package(self, db: Session, package_id: str) -> CreditPackage:
        package = db.query(CreditPackage).filter(CreditPackage.id == package_id).first()
        if not package:
            raise ValueError("Credit package not found")
        return package

    # --- Administration ------------------------------------------------------

    def _clear_other_popular(self, db: Session, model, keep_id: str) -> int:
        return db.query(model).filter(
            model.id != keep_id,
            model.is_popular == True
        ).update({model.is_popular: False}, synchronize_session=False)

    def _audit(self, db: Session, actor_id: Optional[str], action: str, resource_type: str, resource_id: str, details: dict):
        db.add(AuditLog(
            id=str(uuid.uuid4()),
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=json.dumps(details, default=str)
        ))

    def _save(self, db: Session, model, item, data: dict, actor_id: Optional[str], action: str, resource_type: str):
        """Apply data to item and commit, clearing other popular rows when needed"""
        with get_cache().lock(popular_lock_key(model.__tablename__)):
            try:
                for field in ('discount_start_date', 'discount_end_date'):
                    if field in data:
                        data[field] = to_naive_utc(data[field])
                for field, value in data.items():
                    setattr(item, field, value)
                item.updated_at = datetime.utcnow()

                if item.id is None:
                    item.id = str(uuid.uuid4())
                    db.add(item)
                cleared = 0
                if item.is_popular:
                    cleared = self._clear_other_popular(db, model, item.id)

                self._audit(db, actor_id, action, resource_type, item.id, {
                    'fields': sorted(data),
                    'cleared_popular': cleared,
                })
                db.commit()
                db.refresh(item)
            except Exception as e:
                db.rollback()
                self.analytics.log_failure(action=action, error=str(e), user_id=actor_id)
                self.logger.error(f"{action}: Failure - {e}")
                raise

        self.analytics.log_success(action=action, user_id=actor_id, parameters={'id': item.id})
        self.logger.info(f"{action}: Success - {item.id}")
        return item

    def _delete(self, db: Session, item, actor_id: Optional[str], action: str, resource_type: str):
        try:
            db.delete(item)
            self._audit(db, actor_id, action, resource_type, item.id, {'name': item.name})
            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action=action, error=str(e), user_id=actor_id)
            self.logger.error(f"{action}: Failure - {e}")
            raise
        self.analytics.log_success(action=action, user_id=actor_id, parameters={'id': item.id})
        self.logger.info(f"{action}: Success - {item.id}")

    def create_package(self, db: Session, data: dict, actor_id: Optional[str] = None) -> SubscriptionPackage:
        self.logger.info(f"create_package: Entry - {data.get('name')}")
        data = _pick(data, PACKAGE_FIELDS)
        for field in ('duration_weeks', 'product_limit'):
            if data.get(field) is None:
                raise ValueError(f"{field} is required")
        _validate(data)
        package = SubscriptionPackage(id=None, is_active=True, is_popular=False, sold_quantity=0)
        return self._save(db, SubscriptionPackage, package, data, actor_id, 'create_package', 'package')

    def update_package(self, db: Session, package_id: str, data: dict, actor_id: Optional[str] = None) -> SubscriptionPackage:
        self.logger.info(f"update_package: Entry - {package_id}")
        package = self.get_package(db, package_id)
        data = _pick(data, PACKAGE_FIELDS)
        _validate(data, package)
        return self._save(db, SubscriptionPackage, package, data, actor_id, 'update_package', 'package')

    def delete_package(self, db: Session, package_id: str, actor_id: Optional[str] = None):
        self.logger.info(f"delete_package: Entry - {package_id}")
        self._delete(db, self.get_package(db, package_id), actor_id, 'delete_package', 'package')

    def create_slot(self, db: Session, data: dict, actor_id: Optional[str] = None) -> ProductSlot:
        self.logger.info(f"create_slot: Entry - {data.get('name')}")
        data = _pick(data, SLOT_FIELDS)
        if data.get('slot_count') is None:
            raise ValueError("slot_count is required")
        _validate(data)
        slot = ProductSlot(id=None, is_active=True, is_popular=False, sold_quantity=0)
        return self._save(db, ProductSlot, slot, data, actor_id, 'create_slot', 'slot')

    def update_slot(self, db: Session, slot_id: str, data: dict, actor_id: Optional[str] = None) -> ProductSlot:
        self.logger.info(f"update_slot: Entry - {slot_id}")
        slot = self.get_slot(db, slot_id)
        data = _pick(data, SLOT_FIELDS)
        _validate(data, slot)
        return self._save(db, ProductSlot, slot, data, actor_id, 'update_slot', 'slot')

    def delete_slot(self, db: Session, slot_id: str, actor_id: Optional[str] = None):
        self.logger.info(f"delete_slot: Entry - {slot_id}")
        self._delete(db, self.get_slot(db, slot_id), actor_id, 'delete_slot', 'slot')

    def create_credit_package(self, db: Session, data: dict, actor_id: Optional[str] = None) -> CreditPackage:
        self.logger.info(f"create_credit_package: Entry - {data.get('name')}")
        data = _pick(data, CREDIT_PACKAGE_FIELDS)
        if data.get('credits') is None:
            raise ValueError("credits is required")
        _validate(data)
        package = CreditPackage(id=None, is_active=True, is_popular=False, sold_quantity=0)
        return self._save(db, CreditPackage, package, data, actor_id, 'create_credit_package', 'credit_package')

    def update_credit_package(self, db: Session, package_id: str, data: dict, actor_id: Optional[str] = None) -> CreditPackage:
        self.logger.info(f"update_credit_package: Entry - {package_id}")
        package = self.get_credit_package(db, package_id)
        data = _pick(data, CREDIT_PACKAGE_FIELDS)
        _validate(data, package)
        return self._save(db, CreditPackage, package, data, actor_id, 'update_credit_package', 'credit_package')

    def delete_credit_package(self, db: Session, package_id: str, actor_id: Optional[str] = None):
        self.logger.info(f"delete_credit_package: Entry - {package_id}")
        self._delete(db, self.get_credit_package(db, package_id), actor_id, 'delete_credit_package', 'credit_package')
