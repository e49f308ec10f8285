"""
Tests for the admin CLI
"""

import pytest
from unittest.mock import MagicMock, patch
from click.testing import CliRunner

from app.cli.admin import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_session():
    with patch("app.cli.admin.SessionLocal") as session_local, \
         patch("app.cli.admin.init_firebase"):
        db = MagicMock()
        session_local.return_value = db
        yield db


class TestAdminCli:
    """Test cases for the admin CLI"""

    def test_set_role_requires_user(self, runner, mock_session):
        result = runner.invoke(cli, ['set-role', '--role', 'admin'])

        assert "Please provide --email or --id" in result.output
        mock_session.query.assert_not_called()

    @patch("app.cli.admin.ProfileService")
    def test_set_role(self, mock_profile_service, runner, mock_session):
        profile = MagicMock(id="user_1", email="a@example.com", role="user")
        mock_session.query.return_value.filter.return_value.first.return_value = profile

        result = runner.invoke(cli, ['set-role', '--email', 'a@example.com', '--role', 'admin'])

        assert result.exit_code == 0
        assert "Set role admin" in result.output
        mock_profile_service.return_value.set_role.assert_called_once_with(mock_session, None, "user_1", "admin")
        mock_session.close.assert_called_once()

    def test_set_role_unknown_user(self, runner, mock_session):
        mock_session.query.return_value.filter.return_value.first.return_value = None

        result = runner.invoke(cli, ['set-role', '--id', 'ghost', '--role', 'admin'])

        assert "User not found" in result.output

    @patch("app.cli.admin.BanService")
    def test_ban_with_days(self, mock_ban_service, runner, mock_session):
        mock_session.query.return_value.filter.return_value.first.return_value = MagicMock(id="user_1", email="a@example.com")

        result = runner.invoke(cli, ['ban', '--id', 'user_1', '--days', '3', '--reason', 'spam'])

        assert result.exit_code == 0
        args = mock_ban_service.return_value.create_ban.call_args
        assert args.args[:4] == (mock_session, "user_1", None, "spam")
        assert args.kwargs['end_date'] is not None

    @patch("app.cli.admin.SubscriptionService")
    def test_expire_subscriptions(self, mock_subscription_service, runner, mock_session):
        mock_subscription_service.return_value.check_expired_subscriptions.return_value = 4

        result = runner.invoke(cli, ['expire-subscriptions'])

        assert "Expired 4 subscriptions" in result.output

    @patch("app.cli.admin.CategoryService")
    def test_seed_categories(self, mock_category_service, runner, mock_session):
        mock_category_service.return_value.seed_defaults.return_value = 15

        result = runner.invoke(cli, ['seed-categories'])

        assert "Added 15 categories" in result.output
