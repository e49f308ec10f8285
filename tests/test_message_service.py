"""
Tests for MessageService
"""

import pytest
from datetime import datetime
from unittest.mock import MagicMock
from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.models.message import Message
from app.models.profile import Profile
from app.services.message_service import MAX_MESSAGE_LENGTH, MessageService


@pytest.fixture
def mock_db():
    """Create a mock database session"""
    return MagicMock(spec=Session)


@pytest.fixture
def service(mock_analytics):
    return MessageService(analytics=mock_analytics)


def _message(read=False):
    return Message(
        id="msg_1", sender_id="buyer_1", receiver_id="seller_1",
        content="Is the lamp still available?", read=read,
        created_at=datetime(2026, 5, 1, 12, 0),
    )


class TestSendMessage:
    """Sending messages"""

    def test_send_message(self, service, mock_db, mock_analytics):
        mock_db.query.return_value.filter.return_value.first.return_value = Profile(id="seller_1")

        message = service.send_message(mock_db, "buyer_1", "seller_1", "  Is the lamp still available? ")

        assert message.content == "Is the lamp still available?"
        assert message.read is False
        mock_db.add.assert_called_once_with(message)
        mock_db.commit.assert_called_once()
        mock_analytics.log_success.assert_called_once()

    @pytest.mark.parametrize("content, message", [
        ("   ", "empty"),
        ("x" * (MAX_MESSAGE_LENGTH + 1), "at most"),
    ])
    def test_invalid_content(self, service, mock_db, content, message):
        with pytest.raises(ValueError, match=message):
            service.send_message(mock_db, "buyer_1", "seller_1", content)

        mock_db.add.assert_not_called()

    def test_cannot_message_self(self, service, mock_db):
        with pytest.raises(ValueError, match="yourself"):
            service.send_message(mock_db, "buyer_1", "buyer_1", "Hello")

    def test_unknown_receiver(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None

        with pytest.raises(ValueError, match="Receiver not found"):
            service.send_message(mock_db, "buyer_1", "ghost", "Hello")

    def test_unknown_product(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.side_effect = [Profile(id="seller_1"), None]

        with pytest.raises(ValueError, match="Product not found"):
            service.send_message(mock_db, "buyer_1", "seller_1", "Hello", product_id="gone")

    def test_failed_commit_rolls_back(self, service, mock_db, mock_analytics):
        mock_db.query.return_value.filter.return_value.first.return_value = Profile(id="seller_1")
        mock_db.commit.side_effect = Exception("db down")

        with pytest.raises(Exception, match="db down"):
            service.send_message(mock_db, "buyer_1", "seller_1", "Hello")

        mock_db.rollback.assert_called_once()
        mock_analytics.log_failure.assert_called_once()


class TestReadMessages:
    """Listing and read receipts"""

    def test_list_messages(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.order_by.return_value.all.return_value = [_message()]

        result = service.list_messages(mock_db, "seller_1")

        assert result[0]['id'] == "msg_1"
        assert result[0]['created_at'] == "2026-05-01T12:00:00"

    def test_receiver_marks_read(self, service, mock_db):
        message = _message()
        mock_db.query.return_value.filter.return_value.first.return_value = message

        result = service.mark_read(mock_db, "seller_1", "msg_1")

        assert result.read is True
        mock_db.commit.assert_called_once()

    def test_sender_cannot_mark_read(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = _message()

        with pytest.raises(HTTPException) as exc_info:
            service.mark_read(mock_db, "buyer_1", "msg_1")

        assert exc_info.value.status_code == 404
        mock_db.commit.assert_not_called()

    def test_already_read_is_untouched(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = _message(read=True)

        service.mark_read(mock_db, "seller_1", "msg_1")

        mock_db.commit.assert_not_called()

    def test_count_unread(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.count.return_value = 3

        assert service.count_unread(mock_db, "seller_1") == 3
