import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.middleware import get_current_user, require_not_banned
from app.services.message_service import MAX_MESSAGE_LENGTH, MessageService, serialize_message

router = APIRouter()
logger = logging.getLogger(__name__)


def get_message_service() -> MessageService:
    """Dependency to get message service instance"""
    return MessageService()


class SendMessageRequest(BaseModel):
    receiver_id: str
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    product_id: Optional[str] = None


@router.get("")
async def list_messages(
    unread: bool = False,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    message_service: MessageService = Depends(get_message_service)
):
    """
    Messages the caller sent or received, newest first.
    Requires authentication.
    """
    user_id = current_user['uid']
    try:
        return {
            "messages": message_service.list_messages(db, user_id, unread_only=unread),
            "unread_count": message_service.count_unread(db, user_id),
        }
    except Exception as e:
        logger.error(f"list_messages: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    request: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    message_service: MessageService = Depends(get_message_service)
):
    """
    Send a message to another user, optionally about a listing.
    Requires authentication; banned users cannot send.
    """
    logger.info(f"send_message: Entry - from: {current_user['uid']}, to: {request.receiver_id}")

    try:
        message = message_service.send_message(
            db, current_user['uid'], request.receiver_id, request.content, request.product_id
        )
        return {"message": serialize_message(message)}
    except ValueError as e:
        code = status.HTTP_404_NOT_FOUND if "not found" in str(e).lower() else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(e))
    except Exception as e:
        logger.error(f"send_message: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.patch("/{message_id}/read")
async def mark_message_read(
    message_id: str,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    message_service: MessageService = Depends(get_message_service)
):
    """Requires authentication. Only the receiver can mark a message as read."""
    try:
        message = message_service.mark_read(db, current_user['uid'], message_id)
        return {"message": serialize_message(message)}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"mark_message_read: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
