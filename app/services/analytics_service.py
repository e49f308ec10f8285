import logging
from datetime import datetime
from app.core.config import settings
from app.core.firebase_service import get_firestore_client

logger = logging.getLogger(__name__)


class AnalyticsService:
    """
    Marketplace analytics and error tracking stored in Firestore.

    Analytics failures are logged and swallowed: a listing must never fail
    to save because an event could not be recorded.
    """

    def __init__(self, firestore_client=None):
        self._db = firestore_client
        self.analytics_collection = settings.analytics_collection
        self.crashlytics_collection = settings.crashlytics_collection

    @property
    def db(self):
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def log_event(
        self,
        event_name: str,
        user_id: str = None,
        parameters: dict = None,
    ):
        """Record a product analytics event (listing created, package bought, ...)"""
        logger.debug(f"log_event: Entry - {event_name}, user: {user_id}")

        try:
            self.db.collection(self.analytics_collection).add({
                'event_name': event_name,
                'user_id': user_id,
                'parameters': parameters or {},
                'timestamp': datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"log_event: Failure - {e}")

    def log_crash(
        self,
        error: str,
        action: str,
        user_id: str = None,
        parameters: dict = None,
        fatal: bool = False
    ):
        """Record an error for monitoring"""
        try:
            self.db.collection(self.crashlytics_collection).add({
                'action': action,
                'user_id': user_id,
                'error_message': error,
                'parameters': parameters or {},
                'fatal': fatal,
                'timestamp': datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"log_crash: Failure - {e}")

    def log_success(self, action: str, user_id: str = None, parameters: dict = None):
        self.log_event(
            event_name=f'{action}_success',
            user_id=user_id,
            parameters={'status': 'success', **(parameters or {})}
        )

    def log_failure(self, action: str, error: str, user_id: str = None, parameters: dict = None):
        """Log a failed action both as an analytics event and as an error record"""
        self.log_event(
            event_name=f'{action}_failure',
            user_id=user_id,
            parameters={'status': 'failure', 'error': error, **(parameters or {})}
        )
        self.log_crash(error=error, action=action, user_id=user_id, parameters=parameters)
