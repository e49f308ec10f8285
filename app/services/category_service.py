import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from app.models.category import Category
from app.services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    "Electronics",
    "Furniture",
    "Clothing & fashion",
    "Sports & leisure",
    "Home & garden",
    "Cars & boat equipment",
    "Kids & baby",
    "Collectibles",
    "Games & toys",
    "Books & media",
    "Beauty & wellness",
    "Handmade",
    "Tools & machines",
    "Instruments",
    "Art & decoration",
]


def serialize_category(category: Category) -> dict:
    return {
        'id': category.id,
        'name': category.name,
        'parent_id': category.parent_id,
        'subcategories': [
            {'id': sub.id, 'name': sub.name, 'parent_id': sub.parent_id}
            for sub in sorted(category.subcategories, key=lambda c: c.name)
        ],
    }


class CategoryService:
    def __init__(self, analytics: AnalyticsService = None):
        self.analytics = analytics or AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def list_categories(self, db: Session) -> list[dict]:
        """Top-level categories ordered by name, each with its subcategories"""
        categories = db.query(Category).filter(
            Category.parent_id.is_(None)
        ).order_by(Category.name).all()
        return [serialize_category(c) for c in categories]

    def create_category(self, db: Session, name: str, parent_id: Optional[str] = None, actor_id: Optional[str] = None) -> Category:
        self.logger.info(f"create_category: Entry - {name}")

        name = (name or '').strip()
        if not name:
            raise ValueError("Category name is required")
        if db.query(Category).filter(Category.name == name).first():
            raise ValueError(f"Category already exists: {name}")
        if parent_id and not db.query(Category).filter(Category.id == parent_id).first():
            raise ValueError("Parent category not found")

        try:
            category = Category(id=str(uuid.uuid4()), name=name, parent_id=parent_id)
            db.add(category)
            db.commit()
            db.refresh(category)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='create_category', error=str(e), user_id=actor_id)
            self.logger.error(f"create_category: Failure - {e}")
            raise

        self.logger.info(f"create_category: Success - {category.id}")
        return category

    def seed_defaults(self, db: Session) -> int:
        """Insert the default categories that are missing. Returns how many were added."""
        self.logger.info("seed_defaults: Entry")

        try:
            existing = {name for (name,) in db.query(Category.name).all()}
            added = 0
            for name in DEFAULT_CATEGORIES:
                if name not in existing:
                    db.add(Category(id=str(uuid.uuid4()), name=name))
                    added += 1
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"seed_defaults: Failure - {e}")
            raise

        self.logger.info(f"seed_defaults: Success - added: {added}")
        return added
