import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.core.cache import entitlement_lock_key, get_cache
from app.core.config import settings
from app.models.product import Product, ProductImage, ProductStatus
from app.services.analytics_service import AnalyticsService
from app.services.ban_service import BanService
from app.services.entitlement_service import EntitlementService
from app.services.rules import (
    default_product_expiry,
    is_product_expired,
    price_view,
    to_naive_utc,
    validate_discount,
    validate_listing,
    validate_listing_update,
)
from app.services.storage_service import StorageService

logger = logging.getLogger(__name__)

# Status is not owner-editable: only checkout, settlement, renewal and the sweep move it
EDITABLE_FIELDS = {
    'title', 'description', 'price', 'category', 'location', 'tags',
    'discount_price', 'discount_start_date', 'discount_end_date',
}


class ListingValidationError(ValueError):
    """Listing form errors, keyed by field"""

    def __init__(self, errors: dict):
        self.errors = errors
        super().__init__("; ".join(f"{field}: {message}" for field, message in errors.items()))


@dataclass
class ImageUpload:
    data: bytes
    content_type: str
    filename: Optional[str] = None


def serialize_image(image: ProductImage) -> dict:
    return {
        'id': image.id,
        'url': image.url,
        'display_order': image.display_order,
        'is_cover': image.is_cover,
    }


def serialize_product(product: Product, now: datetime = None) -> dict:
    if product.image_rows:
        images = [serialize_image(row) for row in product.image_rows]
    else:
        images = [
            {'id': None, 'url': url, 'display_order': i, 'is_cover': i == 0}
            for i, url in enumerate(product.images or [])
        ]
    owner = product.owner
    return {
        'id': product.id,
        'user_id': product.user_id,
        'title': product.title,
        'description': product.description,
        **price_view(
            product.price,
            product.discount_price,
            product.discount_start_date,
            product.discount_end_date,
            now,
        ),
        'images': images,
        'tags': product.tags or [],
        'category': product.category,
        'location': product.location,
        'status': product.status,
        'expires_at': product.expires_at.isoformat() if product.expires_at else None,
        'is_expired': is_product_expired(product.expires_at, now),
        'created_at': product.created_at.isoformat() if product.created_at else None,
        'owner': {
            'id': owner.id,
            'name': owner.full_name,
            'avatar_url': owner.avatar_url,
        } if owner else None,
    }


def _discount_errors(price, discount_price, start_date, end_date) -> dict:
    try:
        validate_discount(price, discount_price, start_date, end_date)
    except (ValueError, ArithmeticError) as e:
        return {'discount_price': str(e)}
    return {}


class ProductService:
    """
    Listing lifecycle: create, edit, delete, renew and browse products.

    A listing's photos live in object storage; the product row keeps the
    ordered URL list and one product_images row per photo.
    """

    def __init__(
        self,
        analytics: AnalyticsService = None,
        storage: StorageService = None,
        entitlements: EntitlementService = None,
        bans: BanService = None,
    ):
        self.analytics = analytics or AnalyticsService()
        self.storage = storage or StorageService()
        self.entitlements = entitlements or EntitlementService(self.analytics)
        self.bans = bans or BanService(self.analytics)
        self.logger = logging.getLogger(__name__)

    def _ensure_not_banned(self, db: Session, user_id: str):
        if self.bans.is_user_banned(db, user_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your account is banned"
            )

    def _get_owned_product(self, db: Session, user_id: str, product_id: str, allow_admin: bool = False) -> Product:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or (product.user_id != user_id and not allow_admin):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Product not found"
            )
        return product

    def _upload_all(self, user_id: str, product_id: str, images: list[ImageUpload], uploaded: list):
        # Sequential so a failure leaves a known list to clean up
        for image in images:
            uploaded.append(self.storage.upload_image(
                user_id, product_id, image.data, image.content_type, image.filename
            ))

    def _sync_images(self, product: Product):
        for index, row in enumerate(product.image_rows):
            row.display_order = index
            row.is_cover = index == 0
        product.images = [row.url for row in product.image_rows]

    def create_product(
        self,
        db: Session,
        user_id: str,
        title: str,
        description: str,
        price,
        category: str,
        images: list[ImageUpload],
        location: Optional[str] = None,
        tags: Optional[list[str]] = None,
        discount_price=None,
        discount_start_date=None,
        discount_end_date=None,
    ) -> Product:
        """Create a listing under the seller's entitlement lock"""
        self.logger.info(f"create_product: Entry - user: {user_id}, images: {len(images)}")

        self._ensure_not_banned(db, user_id)

        errors = validate_listing(title, description, price, category, len(images), settings.max_create_images)
        if price is not None and 'price' not in errors:
            errors.update(_discount_errors(price, discount_price, discount_start_date, discount_end_date))
        if errors:
            self.logger.info(f"create_product: Invalid - user: {user_id}, fields: {sorted(errors)}")
            raise ListingValidationError(errors)

        with get_cache().lock(entitlement_lock_key(user_id)):
            self.entitlements.ensure_can_create(db, user_id)

            product_id = str(uuid.uuid4())
            uploaded = []
            try:
                self._upload_all(user_id, product_id, images, uploaded)

                now = datetime.utcnow()
                product = Product(
                    id=product_id,
                    user_id=user_id,
                    title=title.strip(),
                    description=description.strip(),
                    price=price,
                    discount_price=discount_price,
                    discount_start_date=to_naive_utc(discount_start_date),
                    discount_end_date=to_naive_utc(discount_end_date),
                    images=[u.url for u in uploaded],
                    tags=tags or [],
                    category=category.strip(),
                    location=location,
                    status=ProductStatus.ACTIVE.value,
                    expires_at=default_product_expiry(now),
                    created_at=now,
                    updated_at=now,
                )
                db.add(product)
                for index, upload in enumerate(uploaded):
                    db.add(ProductImage(
                        id=str(uuid.uuid4()),
                        product_id=product_id,
                        url=upload.url,
                        storage_path=upload.storage_path,
                        display_order=index,
                        is_cover=index == 0,
                    ))

                db.commit()
                db.refresh(product)
            except Exception as e:
                db.rollback()
                self.storage.delete_images([u.storage_path for u in uploaded])
                self.analytics.log_failure(
                    action='create_product',
                    error=str(e),
                    user_id=user_id,
                    parameters={'uploaded': len(uploaded)}
                )
                self.logger.error(f"create_product: Failure - {e}")
                raise

        self.analytics.log_success(
            action='create_product',
            user_id=user_id,
            parameters={'product_id': product.id, 'category': product.category}
        )
        self.logger.info(f"create_product: Success - user: {user_id}, product: {product.id}")
        return product

    def update_product(
        self,
        db: Session,
        user_id: str,
        product_id: str,
        updates: Optional[dict] = None,
        new_images: Optional[list[ImageUpload]] = None,
        remove_image_urls: Optional[list[str]] = None,
    ) -> Product:
        """
        Edit a listing owned by the caller. Field changes are re-validated,
        photos can be added and removed; expiry and entitlement are untouched.
        """
        self.logger.info(f"update_product: Entry - user: {user_id}, product: {product_id}")

        updates = {k: v for k, v in (updates or {}).items() if k in EDITABLE_FIELDS}
        for field in ('title', 'description', 'price', 'category'):
            if field in updates and updates[field] is None:
                del updates[field]
        new_images = new_images or []
        remove_image_urls = set(remove_image_urls or [])

        self._ensure_not_banned(db, user_id)
        product = self._get_owned_product(db, user_id, product_id)

        errors = validate_listing_update(
            updates.get('title'), updates.get('description'), updates.get('price')
        )
        if 'category' in updates and not (updates['category'] or '').strip():
            errors['category'] = "Category is required"
        if 'price' not in errors:
            errors.update(_discount_errors(
                updates.get('price', product.price),
                updates.get('discount_price', product.discount_price),
                updates.get('discount_start_date', product.discount_start_date),
                updates.get('discount_end_date', product.discount_end_date),
            ))

        removed = [row for row in product.image_rows if row.url in remove_image_urls]
        remaining = len(product.image_rows) - len(removed) + len(new_images)
        if remaining > settings.max_product_images:
            errors['images'] = f"A listing can have at most {settings.max_product_images} images"
        elif remaining < 1:
            errors['images'] = "A listing needs at least one image"

        if errors:
            raise ListingValidationError(errors)

        uploaded = []
        try:
            for field in ('title', 'description', 'category'):
                if field in updates:
                    updates[field] = updates[field].strip()
            for field in ('discount_start_date', 'discount_end_date'):
                if field in updates:
                    updates[field] = to_naive_utc(updates[field])
            for field, value in updates.items():
                setattr(product, field, value)

            for row in removed:
                product.image_rows.remove(row)

            self._upload_all(user_id, product_id, new_images, uploaded)
            for upload in uploaded:
                product.image_rows.append(ProductImage(
                    id=str(uuid.uuid4()),
                    product_id=product_id,
                    url=upload.url,
                    storage_path=upload.storage_path,
                ))
            self._sync_images(product)
            product.updated_at = datetime.utcnow()

            db.commit()
            db.refresh(product)
        except Exception as e:
            db.rollback()
            self.storage.delete_images([u.storage_path for u in uploaded])
            self.analytics.log_failure(
                action='update_product',
                error=str(e),
                user_id=user_id,
                parameters={'product_id': product_id}
            )
            self.logger.error(f"update_product: Failure - {e}")
            raise

        # Objects are removed only once the rows are gone
        self.storage.delete_images([row.storage_path for row in removed])

        self.analytics.log_success(
            action='update_product',
            user_id=user_id,
            parameters={
                'product_id': product_id,
                'fields': sorted(updates),
                'added_images': len(uploaded),
                'removed_images': len(removed),
            }
        )
        self.logger.info(f"update_product: Success - product: {product_id}")
        return product

    def delete_product(self, db: Session, user_id: str, product_id: str, is_admin: bool = False):
        """Delete a listing, its image rows and its stored photos"""
        self.logger.info(f"delete_product: Entry - user: {user_id}, product: {product_id}, admin: {is_admin}")

        product = self._get_owned_product(db, user_id, product_id, allow_admin=is_admin)
        paths = [row.storage_path for row in product.image_rows]

        try:
            db.delete(product)
            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='delete_product',
                error=str(e),
                user_id=user_id,
                parameters={'product_id': product_id}
            )
            self.logger.error(f"delete_product: Failure - {e}")
            raise

        failed = self.storage.delete_images(paths)
        if failed:
            self.logger.warning(f"delete_product: Orphaned objects - {failed}")

        self.analytics.log_success(
            action='delete_product',
            user_id=user_id,
            parameters={'product_id': product_id, 'by_admin': is_admin}
        )
        self.logger.info(f"delete_product: Success - product: {product_id}")

    def renew_product(self, db: Session, user_id: str, product_id: str) -> Product:
        """Push a listing's expiry to a fresh listing period from now"""
        self.logger.info(f"renew_product: Entry - user: {user_id}, product: {product_id}")

        self._ensure_not_banned(db, user_id)
        product = self._get_owned_product(db, user_id, product_id)
        if product.status == ProductStatus.SOLD.value:
            raise ValueError("Sold products cannot be renewed")

        try:
            now = datetime.utcnow()
            product.expires_at = default_product_expiry(now)
            product.status = ProductStatus.ACTIVE.value
            product.updated_at = now
            db.commit()
            db.refresh(product)

            self.analytics.log_success(
                action='renew_product',
                user_id=user_id,
                parameters={'product_id': product_id}
            )
            self.logger.info(f"renew_product: Success - product: {product_id}, expires: {product.expires_at}")
            return product
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='renew_product', error=str(e), user_id=user_id)
            self.logger.error(f"renew_product: Failure - {e}")
            raise

    def get_product(self, db: Session, product_id: str) -> dict:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ValueError("Product not found")
        return serialize_product(product)

    def list_products(
        self,
        db: Session,
        category: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        include_expired: bool = False,
    ) -> list[dict]:
        """Active listings, newest first"""
        self.logger.info(f"list_products: Entry - category: {category}, limit: {limit}")

        now = datetime.utcnow()
        query = db.query(Product).filter(Product.status == ProductStatus.ACTIVE.value)
        if category:
            query = query.filter(Product.category == category)
        if not include_expired:
            query = query.filter(Product.expires_at >= now)
        products = query.order_by(Product.created_at.desc()).offset(offset).limit(limit).all()

        self.logger.info(f"list_products: Success - {len(products)} products")
        return [serialize_product(p, now) for p in products]

    def search_products(self, db: Session, text: str, category: Optional[str] = None, limit: int = 50) -> list[dict]:
        """Active, unexpired listings whose title contains the text"""
        self.logger.info(f"search_products: Entry - '{text}'")

        now = datetime.utcnow()
        query = db.query(Product).filter(
            Product.status == ProductStatus.ACTIVE.value,
            Product.expires_at >= now,
            Product.title.ilike(f"%{text.strip()}%")
        )
        if category:
            query = query.filter(Product.category == category)
        products = query.order_by(Product.created_at.desc()).limit(limit).all()

        self.logger.info(f"search_products: Success - {len(products)} products")
        return [serialize_product(p, now) for p in products]

    def list_user_products(self, db: Session, user_id: str) -> list[dict]:
        """All listings of a seller, whatever their status"""
        products = db.query(Product).filter(
            Product.user_id == user_id
        ).order_by(Product.created_at.desc()).all()
        return [serialize_product(p) for p in products]

    def sweep_expired(self, db: Session) -> int:
        """Mark active listings past their expiry as expired"""
        self.logger.info("sweep_expired: Entry")

        try:
            now = datetime.utcnow()
            expired = db.query(Product).filter(
                Product.status == ProductStatus.ACTIVE.value,
                Product.expires_at < now
            ).all()
            for product in expired:
                product.status = ProductStatus.EXPIRED.value
                product.updated_at = now
            db.commit()

            self.analytics.log_success(action='sweep_expired_products', parameters={'expired_count': len(expired)})
            self.logger.info(f"sweep_expired: Success - expired: {len(expired)}")
            return len(expired)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='sweep_expired_products', error=str(e))
            self.logger.error(f"sweep_expired: Failure - {e}")
            raise
