import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.message import Message
from app.models.product import Product
from app.models.profile import Profile
from app.services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def serialize_message(message: Message) -> dict:
    return {
        'id': message.id,
        'sender_id': message.sender_id,
        'receiver_id': message.receiver_id,
        'product_id': message.product_id,
        'content': message.content,
        'read': message.read,
        'created_at': message.created_at.isoformat() if message.created_at else None,
    }


class MessageService:
    """Direct messages between buyers and sellers"""

    def __init__(self, analytics: AnalyticsService = None):
        self.analytics = analytics or AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def send_message(
        self,
        db: Session,
        sender_id: str,
        receiver_id: str,
        content: str,
        product_id: Optional[str] = None,
    ) -> Message:
        self.logger.info(f"send_message: Entry - from: {sender_id}, to: {receiver_id}")

        content = (content or '').strip()
        if not content:
            raise ValueError("Message cannot be empty")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message can be at most {MAX_MESSAGE_LENGTH} characters")
        if receiver_id == sender_id:
            raise ValueError("You cannot message yourself")
        if not db.query(Profile).filter(Profile.id == receiver_id).first():
            raise ValueError("Receiver not found")
        if product_id and not db.query(Product).filter(Product.id == product_id).first():
            raise ValueError("Product not found")

        try:
            now = datetime.utcnow()
            message = Message(
                id=str(uuid.uuid4()),
                sender_id=sender_id,
                receiver_id=receiver_id,
                product_id=product_id,
                content=content,
                read=False,
                created_at=now,
                updated_at=now,
            )
            db.add(message)
            db.commit()
            db.refresh(message)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='send_message', error=str(e), user_id=sender_id)
            self.logger.error(f"send_message: Failure - {e}")
            raise

        self.analytics.log_success(
            action='send_message',
            user_id=sender_id,
            parameters={'message_id': message.id, 'product_id': product_id}
        )
        self.logger.info(f"send_message: Success - {message.id}")
        return message

    def list_messages(self, db: Session, user_id: str, unread_only: bool = False) -> list[dict]:
        """Messages sent or received by the user, newest first"""
        query = db.query(Message).filter(
            or_(Message.sender_id == user_id, Message.receiver_id == user_id)
        )
        if unread_only:
            query = query.filter(Message.receiver_id == user_id, Message.read == False)
        messages = query.order_by(Message.created_at.desc()).all()
        return [serialize_message(m) for m in messages]

    def count_unread(self, db: Session, user_id: str) -> int:
        return db.query(Message).filter(
            Message.receiver_id == user_id,
            Message.read == False
        ).count()

    def mark_read(self, db: Session, user_id: str, message_id: str) -> Message:
        """Only the receiver can mark a message as read"""
        message = db.query(Message).filter(Message.id == message_id).first()
        if not message or message.receiver_id != user_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Message not found"
            )
        if message.read:
            return message

        try:
            message.read = True
            message.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(message)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='mark_message_read', error=str(e), user_id=user_id)
            self.logger.error(f"mark_read: Failure - {e}")
            raise

        self.logger.info(f"mark_read: Success - {message_id}")
        return message
