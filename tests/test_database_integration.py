"""
Integration tests for database operations
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from app.models.product import Product, ProductImage
from app.models.profile import Profile
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_package import SubscriptionPackage
from app.models.user_ban import UserBan
from app.services.ban_service import BanService
from app.services.entitlement_service import EntitlementService


def _profile(db_session: Session, user_id: str) -> Profile:
    profile = Profile(id=user_id, email=f"{user_id}@example.com", role='user', is_admin=False, credits=0)
    db_session.add(profile)
    db_session.commit()
    return profile


def _product(user_id: str, product_id: str) -> Product:
    return Product(
        id=product_id,
        user_id=user_id,
        title="Road bike",
        description="A light aluminium road bike with new tyres and a fresh chain.",
        price=Decimal("250.00"),
        category="Sports & Outdoors",
        images=[f"https://cdn.test/{product_id}.jpg"],
        tags=[],
        expires_at=datetime.utcnow() + timedelta(days=14),
    )


@pytest.mark.integration
class TestDatabaseIntegration:
    """Integration tests for database operations"""

    def test_create_profile(self, db_session: Session):
        _profile(db_session, "db_user_1")

        retrieved = db_session.query(Profile).filter(Profile.id == "db_user_1").first()
        assert retrieved is not None
        assert retrieved.role == "user"
        assert retrieved.banned_until is None

    def test_product_with_images(self, db_session: Session):
        """Image rows come back in display order"""
        _profile(db_session, "db_user_2")
        product = _product("db_user_2", "db_prod_2")
        product.image_rows = [
            ProductImage(id="db_img_b", url="b", storage_path="b", display_order=1),
            ProductImage(id="db_img_a", url="a", storage_path="a", display_order=0, is_cover=True),
        ]
        db_session.add(product)
        db_session.commit()
        db_session.expire_all()

        retrieved = db_session.query(Product).filter(Product.id == "db_prod_2").first()
        assert [row.id for row in retrieved.image_rows] == ["db_img_a", "db_img_b"]
        assert retrieved.owner.id == "db_user_2"

    def test_entitlement_counts_listings(self, db_session: Session, mock_analytics):
        _profile(db_session, "db_user_3")
        package = SubscriptionPackage(
            id="db_pkg_3", name="Basic", duration_weeks=4, product_limit=2,
            price=Decimal("9.99"), is_active=True, is_popular=False, sold_quantity=0,
        )
        db_session.add(package)
        db_session.add(Subscription(
            id="db_sub_3", user_id="db_user_3", package_id=package.id,
            status=SubscriptionStatus.ACTIVE, extra_slots=1,
            expires_at=datetime.utcnow() + timedelta(days=28),
        ))
        db_session.add(_product("db_user_3", "db_prod_3"))
        db_session.commit()

        entitlement, subscription = EntitlementService(mock_analytics).compute(db_session, "db_user_3")

        assert subscription.id == "db_sub_3"
        assert entitlement.product_limit == 3
        assert entitlement.available_products == 2

    def test_ban_and_lift(self, db_session: Session, mock_analytics):
        """Ban rows and the banned_until cache move together"""
        _profile(db_session, "db_admin_4")
        profile = _profile(db_session, "db_user_4")
        bans = BanService(mock_analytics)

        bans.create_ban(db_session, "db_user_4", "db_admin_4", "spam", end_date=datetime.utcnow() + timedelta(days=2))
        assert bans.is_user_banned(db_session, "db_user_4") is True
        assert profile.banned_until is not None

        assert bans.lift_ban(db_session, "db_user_4", "db_admin_4") == 1
        assert bans.is_user_banned(db_session, "db_user_4") is False
        assert db_session.query(UserBan).filter(UserBan.user_id == "db_user_4").count() == 1
