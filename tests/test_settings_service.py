"""
Tests for SettingsService and secret setting encryption
"""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.orm import Session

from app.core.security import decrypt_secret, encrypt_secret, is_secret_setting
from app.models.audit_log import AuditLog
from app.models.site_setting import SiteSetting
from app.services.settings_service import (
    DEFAULT_GRID,
    SettingsService,
    mask_secret,
    normalize_emails,
    normalize_grid,
)


@pytest.fixture
def mock_db():
    """Create a mock database session"""
    return MagicMock(spec=Session)


@pytest.fixture
def service(mock_analytics):
    return SettingsService(analytics=mock_analytics)


class TestNormalizers:
    """Value checks for known keys"""

    def test_grid_accepts_numeric_strings(self):
        assert normalize_grid({'lg': "4", 'md': 2, 'sm': 1}) == {'lg': 4, 'md': 2, 'sm': 1}

    @pytest.mark.parametrize("value", [
        None,
        {'lg': 3, 'md': 2},
        {'lg': 7, 'md': 2, 'sm': 1},
        {'lg': 0, 'md': 2, 'sm': 1},
        {'lg': True, 'md': 2, 'sm': 1},
        {'lg': "wide", 'md': 2, 'sm': 1},
    ])
    def test_grid_rejects_invalid(self, value):
        assert normalize_grid(value) is None

    def test_emails_are_deduplicated(self):
        result = normalize_emails("ops@example.com, OPS@example.com\nsales@example.com")
        assert result == ["ops@example.com", "sales@example.com"]

    def test_emails_reject_bad_address(self):
        with pytest.raises(ValueError):
            normalize_emails(["ops@example.com", "broken"])

    def test_mask_secret(self):
        assert mask_secret("sk_live_abcdef1234") == "••••••••1234"
        assert mask_secret("short") == "••••••••"
        assert mask_secret(None) is None


class TestSecrets:
    """Fernet encryption of secret settings"""

    def test_encrypt_round_trip(self):
        token = encrypt_secret("sk_test_123")
        assert token != "sk_test_123"
        assert decrypt_secret(token) == "sk_test_123"

    def test_secret_suffix(self):
        assert is_secret_setting("stripe_secret_key")
        assert not is_secret_setting("thank_you_content")


class TestSettingsService:
    """Test cases for SettingsService"""

    def test_grid_defaults_when_missing(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None

        assert service.get_grid_settings(mock_db, 'subscription_packages_grid') == DEFAULT_GRID

    def test_grid_defaults_when_invalid(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = SiteSetting(
            key='credit_packages_grid', value={'lg': 12, 'md': 2, 'sm': 1}
        )

        assert service.get_grid_settings(mock_db, 'credit_packages_grid') == DEFAULT_GRID

    def test_unknown_grid_key(self, service, mock_db):
        with pytest.raises(ValueError, match="Unknown grid"):
            service.get_grid_settings(mock_db, 'products_grid')

    def test_get_setting_uses_cache(self, service, mock_db, mock_cache):
        mock_cache.get.return_value = {'value': "Thanks for your order!"}

        assert service.get_thank_you_content(mock_db) == "Thanks for your order!"
        mock_db.query.assert_not_called()

    def test_get_setting_fills_cache(self, service, mock_db, mock_cache):
        mock_db.query.return_value.filter.return_value.first.return_value = SiteSetting(
            key='notification_emails', value=["ops@example.com"]
        )

        assert service.get_notification_emails(mock_db) == ["ops@example.com"]
        mock_cache.set.assert_called_once_with(
            "site_setting:notification_emails", {'value': ["ops@example.com"]}, 10
        )

    def test_secret_not_readable_publicly(self, service, mock_db):
        with pytest.raises(ValueError, match="Secret"):
            service.get_setting(mock_db, 'stripe_secret_key')

    def test_set_grid_setting(self, service, mock_db, mock_cache):
        result = service.set_setting(mock_db, 'subscription_packages_grid', {'lg': 4, 'md': 2, 'sm': 1}, "admin_1")

        assert result == {'key': 'subscription_packages_grid', 'value': {'lg': 4, 'md': 2, 'sm': 1}, 'is_secret': False}
        stored = mock_db.merge.call_args.args[0]
        assert stored.updated_by == "admin_1"
        assert isinstance(mock_db.add.call_args.args[0], AuditLog)
        mock_db.commit.assert_called_once()
        mock_cache.delete.assert_called_once_with("site_setting:subscription_packages_grid")

    def test_set_invalid_grid(self, service, mock_db):
        with pytest.raises(ValueError, match="column counts"):
            service.set_setting(mock_db, 'credit_packages_grid', {'lg': 9, 'md': 2, 'sm': 1})

        mock_db.merge.assert_not_called()

    def test_set_secret_is_encrypted_and_masked(self, service, mock_db):
        result = service.set_setting(mock_db, 'stripe_secret_key', "sk_live_abcdef1234", "admin_1")

        stored = mock_db.merge.call_args.args[0]
        assert stored.value != "sk_live_abcdef1234"
        assert decrypt_secret(stored.value) == "sk_live_abcdef1234"
        assert result['value'] == "••••••••1234"
        assert result['is_secret'] is True

    def test_invalid_key(self, service, mock_db):
        with pytest.raises(ValueError, match="Invalid setting key"):
            service.set_setting(mock_db, 'Bad Key!', "x")

    def test_list_settings_masks_secrets(self, service, mock_db):
        mock_db.query.return_value.order_by.return_value.all.return_value = [
            SiteSetting(key='stripe_secret_key', value=encrypt_secret("sk_live_abcdef1234")),
            SiteSetting(key='thank_you_content', value="Thanks!"),
        ]

        result = service.list_settings(mock_db)

        assert result[0]['value'] == "••••••••1234"
        assert result[0]['is_secret'] is True
        assert result[1]['value'] == "Thanks!"

    def test_get_secret_decrypts(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = SiteSetting(
            key='stripe_secret_key', value=encrypt_secret("sk_test_1")
        )

        assert service.get_secret(mock_db, 'stripe_secret_key') == "sk_test_1"

    def test_delete_missing_setting(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None

        with pytest.raises(ValueError, match="not found"):
            service.delete_setting(mock_db, 'thank_you_content')

        mock_db.rollback.assert_called_once()
