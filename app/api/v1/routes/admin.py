from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.middleware import get_current_user, require_admin
from app.services.ban_service import BanService, serialize_ban
from app.services.catalogue_service import (
    CatalogueService,
    serialize_credit_package,
    serialize_package,
    serialize_slot,
)
from app.services.category_service import CategoryService, serialize_category
from app.services.checkout_service import CheckoutService, serialize_transaction
from app.services.payout_service import PayoutService, serialize_payout
from app.services.profile_service import ProfileService, serialize_profile
from app.services.settings_service import SettingsService
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_profile_service() -> ProfileService:
    return ProfileService()


def get_ban_service() -> BanService:
    return BanService()


def get_catalogue_service() -> CatalogueService:
    return CatalogueService()


def get_settings_service() -> SettingsService:
    return SettingsService()


def get_category_service() -> CategoryService:
    return CategoryService()


def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_payout_service() -> PayoutService:
    return PayoutService()


def _raise_http(action: str, e: Exception):
    """Translate a service error into the HTTP response for an admin action"""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, ValueError):
        logger.warning(f"{action}: Rejected - {e}")
        code = status.HTTP_404_NOT_FOUND if "not found" in str(e).lower() else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(e))
    logger.error(f"{action}: Failure - {e}")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )


class CreateUserRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    role: Literal['user', 'admin'] = 'user'


class SetRoleRequest(BaseModel):
    user_id: str
    role: Literal['user', 'admin']


class AdminUpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


class BanRequest(BaseModel):
    reason: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class OfferFields(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    discount_price: Optional[Decimal] = None
    discount_start_date: Optional[datetime] = None
    discount_end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None
    max_quantity: Optional[int] = Field(default=None, ge=1)


class PackageRequest(OfferFields):
    duration_weeks: Optional[int] = Field(default=None, ge=1)
    product_limit: Optional[int] = Field(default=None, ge=1)


class SlotRequest(OfferFields):
    slot_count: Optional[int] = Field(default=None, ge=1)


class CreditPackageRequest(OfferFields):
    credits: Optional[int] = Field(default=None, ge=1)


class SettingRequest(BaseModel):
    key: str
    value: Any


class CategoryRequest(BaseModel):
    name: str
    parent_id: Optional[str] = None


class TransactionStatusRequest(BaseModel):
    status: Literal['pending', 'completed', 'refunded', 'failed']


class PayoutRequest(BaseModel):
    user_id: str
    amount: Decimal = Field(gt=0)


class PayoutStatusRequest(BaseModel):
    status: Literal['paid', 'failed']


# --- Access ------------------------------------------------------------------

@router.get("/check")
async def check_admin(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """Whether the caller is an administrator. Requires authentication."""
    return {"is_admin": profile_service.is_admin(db, current_user['uid'])}


# --- Users -------------------------------------------------------------------

@router.get("/users")
async def list_users(
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """All users with their ban state. Admin only."""
    logger.info(f"list_users: Entry - admin: {admin['uid']}")
    try:
        users = profile_service.list_users(db)
        return {"count": len(users), "users": users}
    except Exception as e:
        _raise_http('list_users', e)


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """Create an account with a role. Admin only."""
    logger.info(f"create_user: Entry - {request.email}, role: {request.role}")
    try:
        profile = profile_service.signup(
            db, request.email, request.password, request.first_name, request.last_name,
            role=request.role, actor_id=admin['uid']
        )
        return {"profile": serialize_profile(profile)}
    except Exception as e:
        _raise_http('create_user', e)


@router.patch("/users/role")
async def set_user_role(
    request: SetRoleRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """Grant or revoke the admin role. Admin only."""
    logger.info(f"set_user_role: Entry - user: {request.user_id}, role: {request.role}")
    try:
        profile = profile_service.set_role(db, admin['uid'], request.user_id, request.role)
        return {"profile": serialize_profile(profile)}
    except Exception as e:
        _raise_http('set_user_role', e)


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    request: AdminUpdateProfileRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """Edit a user's contact details. Admin only."""
    try:
        profile = profile_service.update_profile(
            db, user_id, request.model_dump(exclude_unset=True), actor_id=admin['uid']
        )
        return {"profile": serialize_profile(profile)}
    except Exception as e:
        _raise_http('update_user', e)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    profile_service: ProfileService = Depends(get_profile_service)
):
    """Delete a user and everything they own. Admin only."""
    logger.info(f"delete_user: Entry - user: {user_id}")
    try:
        profile_service.delete_user(db, admin['uid'], user_id)
        return {"message": "User deleted", "user_id": user_id}
    except Exception as e:
        _raise_http('delete_user', e)


@router.get("/users/{user_id}/bans")
async def list_user_bans(
    user_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    ban_service: BanService = Depends(get_ban_service)
):
    try:
        return {
            **ban_service.get_ban_status(db, user_id),
            "bans": [serialize_ban(b) for b in ban_service.list_bans(db, user_id)],
        }
    except Exception as e:
        _raise_http('list_user_bans', e)


@router.post("/users/{user_id}/ban", status_code=status.HTTP_201_CREATED)
async def ban_user(
    user_id: str,
    request: BanRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    ban_service: BanService = Depends(get_ban_service)
):
    """Ban a user, one week unless an end date is given. Admin only."""
    logger.info(f"ban_user: Entry - user: {user_id}, admin: {admin['uid']}")
    try:
        ban = ban_service.create_ban(
            db, user_id, admin['uid'], request.reason, request.start_date, request.end_date
        )
        return {"ban": serialize_ban(ban)}
    except Exception as e:
        _raise_http('ban_user', e)


@router.delete("/users/{user_id}/ban")
async def lift_ban(
    user_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    ban_service: BanService = Depends(get_ban_service)
):
    """End every open ban of a user now. Admin only."""
    logger.info(f"lift_ban: Entry - user: {user_id}, admin: {admin['uid']}")
    try:
        closed = ban_service.lift_ban(db, user_id, admin['uid'])
        return {"message": "Ban lifted", "closed_bans": closed}
    except Exception as e:
        _raise_http('lift_ban', e)


# --- Catalogue ---------------------------------------------------------------

@router.get("/packages")
async def list_packages(
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        return {"packages": catalogue_service.list_packages(db, include_inactive=True)}
    except Exception as e:
        _raise_http('list_packages', e)


@router.post("/packages", status_code=status.HTTP_201_CREATED)
async def create_package(
    request: PackageRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        package = catalogue_service.create_package(db, request.model_dump(exclude_unset=True), admin['uid'])
        return {"package": serialize_package(package)}
    except Exception as e:
        _raise_http('create_package', e)


@router.patch("/packages/{package_id}")
async def update_package(
    package_id: str,
    request: PackageRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        package = catalogue_service.update_package(db, package_id, request.model_dump(exclude_unset=True), admin['uid'])
        return {"package": serialize_package(package)}
    except Exception as e:
        _raise_http('update_package', e)


@router.delete("/packages/{package_id}")
async def delete_package(
    package_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        catalogue_service.delete_package(db, package_id, admin['uid'])
        return {"message": "Package deleted", "package_id": package_id}
    except Exception as e:
        _raise_http('delete_package', e)


@router.get("/slots")
async def list_slots(
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        return {"slots": catalogue_service.list_slots(db, include_inactive=True)}
    except Exception as e:
        _raise_http('list_slots', e)


@router.post("/slots", status_code=status.HTTP_201_CREATED)
async def create_slot(
    request: SlotRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        slot = catalogue_service.create_slot(db, request.model_dump(exclude_unset=True), admin['uid'])
        return {"slot": serialize_slot(slot)}
    except Exception as e:
        _raise_http('create_slot', e)


@router.patch("/slots/{slot_id}")
async def update_slot(
    slot_id: str,
    request: SlotRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        slot = catalogue_service.update_slot(db, slot_id, request.model_dump(exclude_unset=True), admin['uid'])
        return {"slot": serialize_slot(slot)}
    except Exception as e:
        _raise_http('update_slot', e)


@router.delete("/slots/{slot_id}")
async def delete_slot(
    slot_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        catalogue_service.delete_slot(db, slot_id, admin['uid'])
        return {"message": "Product slot deleted", "slot_id": slot_id}
    except Exception as e:
        _raise_http('delete_slot', e)


@router.get("/credit-packages")
async def list_credit_packages(
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        return {"credit_packages": catalogue_service.list_credit_packages(db, include_inactive=True)}
    except Exception as e:
        _raise_http('list_credit_packages', e)


@router.post("/credit-packages", status_code=status.HTTP_201_CREATED)
async def create_credit_package(
    request: CreditPackageRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        package = catalogue_service.create_credit_package(db, request.model_dump(exclude_unset=True), admin['uid'])
        return {"credit_package": serialize_credit_package(package)}
    except Exception as e:
        _raise_http('create_credit_package', e)


@router.patch("/credit-packages/{package_id}")
async def update_credit_package(
    package_id: str,
    request: CreditPackageRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        package = catalogue_service.update_credit_package(
            db, package_id, request.model_dump(exclude_unset=True), admin['uid']
        )
        return {"credit_package": serialize_credit_package(package)}
    except Exception as e:
        _raise_http('update_credit_package', e)


@router.delete("/credit-packages/{package_id}")
async def delete_credit_package(
    package_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    catalogue_service: CatalogueService = Depends(get_catalogue_service)
):
    try:
        catalogue_service.delete_credit_package(db, package_id, admin['uid'])
        return {"message": "Credit package deleted", "package_id": package_id}
    except Exception as e:
        _raise_http('delete_credit_package', e)


# --- Settings, categories, orders --------------------------------------------

@router.get("/settings")
async def list_settings(
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """Every site setting, secret values masked. Admin only."""
    try:
        return {"settings": settings_service.list_settings(db)}
    except Exception as e:
        _raise_http('list_settings', e)


@router.put("/settings")
async def put_setting(
    request: SettingRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    settings_service: SettingsService = Depends(get_settings_service)
):
    """Create or replace a site setting. Admin only."""
    logger.info(f"put_setting: Entry - {request.key}")
    try:
        return {"setting": settings_service.set_setting(db, request.key, request.value, admin['uid'])}
    except Exception as e:
        _raise_http('put_setting', e)


@router.delete("/settings/{key}")
async def delete_setting(
    key: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    settings_service: SettingsService = Depends(get_settings_service)
):
    try:
        settings_service.delete_setting(db, key, admin['uid'])
        return {"message": "Setting deleted", "key": key}
    except Exception as e:
        _raise_http('delete_setting', e)


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    request: CategoryRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    category_service: CategoryService = Depends(get_category_service)
):
    try:
        category = category_service.create_category(db, request.name, request.parent_id, admin['uid'])
        return {"category": serialize_category(category)}
    except Exception as e:
        _raise_http('create_category', e)


@router.get("/orders")
async def list_orders(
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    try:
        return {"orders": checkout_service.list_all_orders(db)}
    except Exception as e:
        _raise_http('list_orders', e)


@router.patch("/orders/{transaction_id}")
async def set_order_status(
    transaction_id: str,
    request: TransactionStatusRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Settle an order: completed sales count towards seller earnings. Admin only."""
    try:
        transaction = checkout_service.set_transaction_status(db, transaction_id, request.status, admin['uid'])
        return {"order": serialize_transaction(transaction)}
    except Exception as e:
        _raise_http('set_order_status', e)


@router.get("/payouts")
async def list_payouts(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    payout_service: PayoutService = Depends(get_payout_service)
):
    try:
        return {"payouts": payout_service.list_all_payouts(db, status_filter)}
    except Exception as e:
        _raise_http('list_payouts', e)


@router.post("/payouts", status_code=status.HTTP_201_CREATED)
async def create_payout(
    request: PayoutRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    payout_service: PayoutService = Depends(get_payout_service)
):
    """Pay out part of a seller's available balance. Admin only."""
    logger.info(f"create_payout: Entry - seller: {request.user_id}, admin: {admin['uid']}")
    try:
        payout = payout_service.create_payout(db, request.user_id, request.amount, admin['uid'])
        return {"payout": serialize_payout(payout)}
    except Exception as e:
        _raise_http('create_payout', e)


@router.patch("/payouts/{payout_id}")
async def set_payout_status(
    payout_id: str,
    request: PayoutStatusRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    payout_service: PayoutService = Depends(get_payout_service)
):
    try:
        payout = payout_service.set_payout_status(db, payout_id, request.status, admin['uid'])
        return {"payout": serialize_payout(payout)}
    except Exception as e:
        _raise_http('set_payout_status', e)


@router.get("/audit-logs")
async def list_audit_logs(
    limit: int = 100,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
    profile_service: ProfileService = Depends(get_profile_service)
):
    try:
        return {"logs": profile_service.list_audit_logs(db, limit)}
    except Exception as e:
        _raise_http('list_audit_logs', e)
