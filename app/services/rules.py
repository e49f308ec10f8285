"""
Marketplace business rules shared by every service.

These are pure functions: they take plain values (and an optional ``now``)
and never touch the database, so the services and the API agree on one
definition of a running discount, an entitlement and an active ban.

All timestamps are compared as naive UTC. Timezone-aware values are
converted to UTC before comparison.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional, Union

from pydantic import EmailStr, TypeAdapter, ValidationError

from app.core.config import settings

Number = Union[int, float, Decimal]
DateLike = Union[datetime, str, None]

TITLE_MAX_LENGTH = 60
DESCRIPTION_MIN_LENGTH = 50


def to_naive_utc(value: DateLike) -> Optional[datetime]:
    """Normalise a datetime (or ISO-8601 string) to a naive UTC datetime"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    return datetime.utcnow()


def _money(value: Optional[Number]) -> Optional[float]:
    return float(value) if value is not None else None


# --- Discount window ---------------------------------------------------------

def is_discount_active(
    discount_price: Optional[Number],
    start_date: DateLike,
    end_date: DateLike,
    now: Optional[datetime] = None,
) -> bool:
    """True iff a discount price is set and now lies in [start_date, end_date]"""
    if discount_price is None or start_date is None or end_date is None:
        return False
    now = to_naive_utc(now) or utcnow()
    return to_naive_utc(start_date) <= now <= to_naive_utc(end_date)


def price_view(
    price: Number,
    discount_price: Optional[Number],
    start_date: DateLike,
    end_date: DateLike,
    now: Optional[datetime] = None,
) -> dict:
    """Prices as a storefront shows them: the active price plus the struck-through one"""
    active = is_discount_active(discount_price, start_date, end_date, now)
    return {
        'price': _money(price),
        'discount_price': _money(discount_price),
        'active_price': _money(discount_price if active else price),
        'strike_through_price': _money(price) if active else None,
        'is_discount_active': active,
        'discount_start_date': to_naive_utc(start_date).isoformat() if start_date else None,
        'discount_end_date': to_naive_utc(end_date).isoformat() if end_date else None,
    }


def active_price(item, now: Optional[datetime] = None) -> Decimal:
    """Price actually charged for a package, slot or product row"""
    if is_discount_active(item.discount_price, item.discount_start_date, item.discount_end_date, now):
        return Decimal(item.discount_price)
    return Decimal(item.price)


def validate_discount(price: Number, discount_price: Optional[Number], start_date: DateLike, end_date: DateLike):
    """Raise ValueError for a discount that can never make sense"""
    if discount_price is None:
        return
    if Decimal(str(discount_price)) <= 0:
        raise ValueError("Discount price must be greater than 0")
    if Decimal(str(discount_price)) >= Decimal(str(price)):
        raise ValueError("Discount price must be lower than the regular price")
    start, end = to_naive_utc(start_date), to_naive_utc(end_date)
    if start and end and end < start:
        raise ValueError("Discount end date must not be before the start date")


# --- Entitlement -------------------------------------------------------------

@dataclass(frozen=True)
class Entitlement:
    product_limit: int
    used_products: int
    available_products: int

    def can_create(self, required: int = 1) -> bool:
        return self.available_products >= required

    def to_dict(self) -> dict:
        return asdict(self)


def compute_entitlement(product_limit: Optional[int], used_products: Optional[int]) -> Entitlement:
    limit = product_limit or 0
    used = used_products or 0
    return Entitlement(
        product_limit=limit,
        used_products=used,
        available_products=max(0, limit - used),
    )


# --- Bans --------------------------------------------------------------------

def is_ban_row_active(start_date: DateLike, end_date: DateLike, now: Optional[datetime] = None) -> bool:
    now = to_naive_utc(now) or utcnow()
    return to_naive_utc(start_date) <= now <= to_naive_utc(end_date)


def is_banned(banned_until: DateLike, bans: Iterable, now: Optional[datetime] = None) -> bool:
    """
    Ban rows decide. banned_until is only a cache and is read solely for users
    that have no ban rows at all.
    """
    now = to_naive_utc(now) or utcnow()
    bans = list(bans or [])
    if bans:
        return any(is_ban_row_active(ban.start_date, ban.end_date, now) for ban in bans)
    cached = to_naive_utc(banned_until)
    return cached is not None and cached > now


def latest_ban_end(bans: Iterable, now: Optional[datetime] = None) -> Optional[datetime]:
    """Value for profiles.banned_until: latest end among bans that have not ended"""
    now = to_naive_utc(now) or utcnow()
    ends = [to_naive_utc(ban.end_date) for ban in bans or [] if to_naive_utc(ban.end_date) > now]
    return max(ends) if ends else None


# --- Listings ----------------------------------------------------------------

def default_product_expiry(now: Optional[datetime] = None) -> datetime:
    return (to_naive_utc(now) or utcnow()) + timedelta(days=settings.product_expiry_days)


def is_product_expired(expires_at: DateLike, now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return to_naive_utc(expires_at) < (to_naive_utc(now) or utcnow())


def validate_listing(
    title: Optional[str],
    description: Optional[str],
    price: Optional[Number],
    category: Optional[str],
    image_count: int,
    max_images: Optional[int] = None,
) -> dict:
    """Validate a new listing. Returns field -> message, empty when valid."""
    errors = {}
    max_images = max_images or settings.max_create_images

    title = (title or '').strip()
    if not title:
        errors['title'] = "Title is required"
    elif len(title) > TITLE_MAX_LENGTH:
        errors['title'] = f"Title must be at most {TITLE_MAX_LENGTH} characters"

    if len((description or '').strip()) < DESCRIPTION_MIN_LENGTH:
        errors['description'] = f"Description must be at least {DESCRIPTION_MIN_LENGTH} characters"

    if price is None:
        errors['price'] = "Price is required"
    else:
        try:
            if Decimal(str(price)) <= 0:
                errors['price'] = "Price must be greater than 0"
        except ArithmeticError:
            errors['price'] = "Enter a valid price"

    if not (category or '').strip():
        errors['category'] = "Category is required"

    if image_count < 1:
        errors['images'] = "Upload at least one image"
    elif image_count > max_images:
        errors['images'] = f"You can upload at most {max_images} images"

    return errors


def validate_listing_update(
    title: Optional[str] = None,
    description: Optional[str] = None,
    price: Optional[Number] = None,
) -> dict:
    """Validate only the fields present in an edit"""
    errors = {}
    if title is not None:
        stripped = title.strip()
        if not stripped:
            errors['title'] = "Title is required"
        elif len(stripped) > TITLE_MAX_LENGTH:
            errors['title'] = f"Title must be at most {TITLE_MAX_LENGTH} characters"
    if description is not None and len(description.strip()) < DESCRIPTION_MIN_LENGTH:
        errors['description'] = f"Description must be at least {DESCRIPTION_MIN_LENGTH} characters"
    if price is not None:
        try:
            if Decimal(str(price)) <= 0:
                errors['price'] = "Price must be greater than 0"
        except ArithmeticError:
            errors['price'] = "Enter a valid price"
    return errors


# --- Contact details ---------------------------------------------------------

_email_adapter = TypeAdapter(EmailStr)


def normalize_email(value: Optional[str]) -> str:
    """Validate an email address and return it trimmed. Raises ValueError."""
    try:
        return str(_email_adapter.validate_python((value or '').strip()))
    except ValidationError:
        raise ValueError(f"Invalid email address: {value}")
