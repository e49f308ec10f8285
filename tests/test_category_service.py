"""
Tests for CategoryService
"""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.orm import Session

from app.models.category import Category
from app.services.category_service import DEFAULT_CATEGORIES, CategoryService, serialize_category


@pytest.fixture
def mock_db():
    """Create a mock database session"""
    return MagicMock(spec=Session)


@pytest.fixture
def service(mock_analytics):
    return CategoryService(analytics=mock_analytics)


class TestCategoryService:
    """Test cases for CategoryService"""

    def test_seed_adds_only_missing(self, service, mock_db):
        mock_db.query.return_value.all.return_value = [("Electronics",), ("Furniture",)]

        added = service.seed_defaults(mock_db)

        assert added == len(DEFAULT_CATEGORIES) - 2
        names = {c.args[0].name for c in mock_db.add.call_args_list}
        assert "Electronics" not in names
        mock_db.commit.assert_called_once()

    def test_seed_is_idempotent(self, service, mock_db):
        mock_db.query.return_value.all.return_value = [(name,) for name in DEFAULT_CATEGORIES]

        assert service.seed_defaults(mock_db) == 0
        mock_db.add.assert_not_called()

    def test_create_category(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None

        category = service.create_category(mock_db, "  Vinyl  ")

        assert category.name == "Vinyl"
        assert category.parent_id is None
        mock_db.commit.assert_called_once()

    def test_duplicate_category(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = Category(id="c1", name="Vinyl")

        with pytest.raises(ValueError, match="already exists"):
            service.create_category(mock_db, "Vinyl")

    def test_missing_parent(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.side_effect = [None, None]

        with pytest.raises(ValueError, match="Parent category not found"):
            service.create_category(mock_db, "Vinyl", parent_id="missing")

    def test_serialize_sorts_subcategories(self):
        parent = Category(id="c1", name="Books & media")
        parent.subcategories = [
            Category(id="c3", name="Magazines", parent_id="c1"),
            Category(id="c2", name="Comics", parent_id="c1"),
        ]

        result = serialize_category(parent)

        assert [sub['name'] for sub in result['subcategories']] == ["Comics", "Magazines"]
