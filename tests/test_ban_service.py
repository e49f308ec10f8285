"""
Tests for BanService
"""

import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.models.profile import Profile
from app.models.user_ban import UserBan
from app.services.ban_service import BanService


@pytest.fixture
def mock_db():
    """Create a mock database session"""
    return MagicMock(spec=Session)


@pytest.fixture
def mock_profile():
    profile = MagicMock(spec=Profile)
    profile.id = "user_1"
    profile.banned_until = None
    return profile


def _added(mock_db, model):
    return [c.args[0] for c in mock_db.add.call_args_list if isinstance(c.args[0], model)]


class TestBanService:
    """Test cases for BanService"""

    def test_create_ban_writes_row_cache_and_audit(self, mock_db, mock_profile, mock_analytics):
        """A ban inserts the row, refreshes banned_until and audits in one commit"""
        end = datetime.utcnow() + timedelta(days=3)
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        mock_db.query.return_value.filter.return_value.order_by.return_value.all.return_value = [
            SimpleNamespace(start_date=datetime.utcnow(), end_date=end)
        ]
        service = BanService(analytics=mock_analytics)

        ban = service.create_ban(mock_db, "user_1", "admin_1", "spam", end_date=end)

        assert isinstance(ban, UserBan)
        assert ban.end_date == end
        assert ban.banned_by == "admin_1"
        assert mock_profile.banned_until == end
        assert len(_added(mock_db, AuditLog)) == 1
        mock_db.commit.assert_called_once()
        mock_analytics.log_success.assert_called_once()

    def test_create_ban_uses_default_length(self, mock_db, mock_profile, mock_analytics):
        """Without an end date the configured ban length applies"""
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        mock_db.query.return_value.filter.return_value.order_by.return_value.all.return_value = []
        service = BanService(analytics=mock_analytics)

        ban = service.create_ban(mock_db, "user_1", "admin_1")

        assert (ban.end_date - ban.start_date).days == 7

    def test_admin_cannot_ban_self(self, mock_db, mock_profile, mock_analytics):
        """Self bans are rejected and rolled back"""
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        service = BanService(analytics=mock_analytics)

        with pytest.raises(ValueError, match="themselves"):
            service.create_ban(mock_db, "user_1", "user_1")

        mock_db.rollback.assert_called_once()
        mock_db.commit.assert_not_called()
        mock_analytics.log_failure.assert_called_once()

    def test_end_before_start_rejected(self, mock_db, mock_profile, mock_analytics):
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        service = BanService(analytics=mock_analytics)
        start = datetime.utcnow() + timedelta(days=2)

        with pytest.raises(ValueError, match="after the start"):
            service.create_ban(mock_db, "user_1", "admin_1", start_date=start, end_date=start - timedelta(days=1))

    def test_create_ban_unknown_user(self, mock_db, mock_analytics):
        mock_db.query.return_value.filter.return_value.first.return_value = None
        service = BanService(analytics=mock_analytics)

        with pytest.raises(ValueError, match="User not found"):
            service.create_ban(mock_db, "ghost", "admin_1")

    def test_lift_ban_closes_open_rows(self, mock_db, mock_profile, mock_analytics):
        """Running bans end now, scheduled bans are cancelled, the cache is cleared"""
        now = datetime.utcnow()
        running = SimpleNamespace(id="b1", start_date=now - timedelta(days=1), end_date=now + timedelta(days=1))
        scheduled = SimpleNamespace(id="b2", start_date=now + timedelta(days=3), end_date=now + timedelta(days=5))
        mock_profile.banned_until = scheduled.end_date
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        mock_db.query.return_value.filter.return_value.all.return_value = [running, scheduled]
        service = BanService(analytics=mock_analytics)

        closed = service.lift_ban(mock_db, "user_1", "admin_1")

        assert closed == 2
        assert running.end_date <= datetime.utcnow()
        assert scheduled.start_date == scheduled.end_date
        assert mock_profile.banned_until is None
        mock_db.commit.assert_called_once()

    def test_lift_ban_when_not_banned(self, mock_db, mock_profile, mock_analytics):
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        mock_db.query.return_value.filter.return_value.all.return_value = []
        service = BanService(analytics=mock_analytics)

        with pytest.raises(ValueError, match="not banned"):
            service.lift_ban(mock_db, "user_1")

        mock_db.rollback.assert_called_once()

    def test_ban_status_prefers_rows(self, mock_db, mock_profile, mock_analytics):
        """An expired row wins over a stale banned_until"""
        now = datetime.utcnow()
        mock_profile.banned_until = now + timedelta(days=10)
        mock_db.query.return_value.filter.return_value.first.return_value = mock_profile
        mock_db.query.return_value.filter.return_value.order_by.return_value.all.return_value = [
            SimpleNamespace(start_date=now - timedelta(days=5), end_date=now - timedelta(days=1))
        ]
        service = BanService(analytics=mock_analytics)

        result = service.get_ban_status(mock_db, "user_1", now)

        assert result['is_banned'] is False
        assert result['active_ban'] is None
        assert result['banned_until'] is None

    def test_is_user_banned_unknown_profile(self, mock_db, mock_analytics):
        mock_db.query.return_value.filter.return_value.first.return_value = None
        service = BanService(analytics=mock_analytics)

        assert service.is_user_banned(mock_db, "ghost") is False
