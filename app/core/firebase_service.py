"""
Firebase service with dependency injection for better testability.

Wraps the three Firebase Admin products the marketplace uses: Auth (ID token
verification and account management), Firestore (analytics events) and
Cloud Storage (listing photos).
"""

from typing import Protocol, Optional
import firebase_admin
from firebase_admin import credentials, auth, firestore, storage
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)


class FirebaseAuthProvider(Protocol):
    """Protocol for Firebase authentication operations"""

    def verify_id_token(self, token: str) -> dict:
        ...

    def create_user(self, **kwargs):
        ...

    def delete_user(self, uid: str):
        ...


class FirebaseFirestoreProvider(Protocol):
    """Protocol for Firestore operations"""

    def client(self):
        ...


class FirebaseStorageProvider(Protocol):
    """Protocol for Cloud Storage operations"""

    def bucket(self, name: Optional[str] = None):
        ...


class FirebaseService:
    """Firebase service with dependency injection support"""

    def __init__(
        self,
        auth_provider: Optional[FirebaseAuthProvider] = None,
        firestore_provider: Optional[FirebaseFirestoreProvider] = None,
        storage_provider: Optional[FirebaseStorageProvider] = None,
    ):
        self.auth_provider = auth_provider or auth
        self.firestore_provider = firestore_provider or firestore
        self.storage_provider = storage_provider or storage
        self.logger = logging.getLogger(__name__)

    def verify_token(self, token: str) -> dict:
        """Verify Firebase JWT token and return decoded token"""
        self.logger.info("verify_token: Entry")

        try:
            decoded_token = self.auth_provider.verify_id_token(token)
            self.logger.info(f"verify_token: Success - {decoded_token.get('uid')}")
            return decoded_token
        except Exception as e:
            self.logger.error(f"verify_token: Failure - {e}")
            raise

    def create_user(self, email: str, password: str, display_name: Optional[str] = None) -> str:
        """Create a Firebase Auth account with a confirmed email, returns the uid"""
        self.logger.info(f"create_user: Entry - {email}")

        try:
            record = self.auth_provider.create_user(
                email=email,
                password=password,
                email_verified=True,
                display_name=display_name,
            )
            self.logger.info(f"create_user: Success - {record.uid}")
            return record.uid
        except Exception as e:
            self.logger.error(f"create_user: Failure - {e}")
            raise

    def delete_user(self, uid: str):
        """Delete a Firebase Auth account"""
        self.logger.info(f"delete_user: Entry - {uid}")

        try:
            self.auth_provider.delete_user(uid)
            self.logger.info(f"delete_user: Success - {uid}")
        except Exception as e:
            self.logger.error(f"delete_user: Failure - {e}")
            raise

    def get_firestore_client(self):
        """Get Firestore client instance"""
        return self.firestore_provider.client()

    def get_bucket(self):
        """Get the Cloud Storage bucket holding listing photos"""
        return self.storage_provider.bucket(settings.firebase_storage_bucket)


_firebase_service: Optional[FirebaseService] = None


def init_firebase():
    """Initialize Firebase Admin SDK"""
    logger.info("init_firebase: Entry")

    try:
        if not firebase_admin._apps:
            cred = credentials.Certificate(settings.firebase_credentials_path)
            options = {'projectId': settings.firebase_project_id}
            if settings.firebase_storage_bucket:
                options['storageBucket'] = settings.firebase_storage_bucket
            firebase_admin.initialize_app(cred, options)
            logger.info("init_firebase: Success")
        else:
            logger.info("init_firebase: Already initialized")
    except Exception as e:
        logger.error(f"init_firebase: Failure - {e}")
        raise


def get_firebase_service() -> FirebaseService:
    """Get Firebase service instance (singleton)"""
    global _firebase_service
    if _firebase_service is None:
        _firebase_service = FirebaseService()
    return _firebase_service


def set_firebase_service(service: Optional[FirebaseService]):
    """Set Firebase service instance (for testing)"""
    global _firebase_service
    _firebase_service = service


def verify_firebase_token(token: str) -> dict:
    """Verify Firebase JWT token and return decoded token."""
    return get_firebase_service().verify_token(token)


def get_firestore_client():
    """Get Firestore client instance"""
    return get_firebase_service().get_firestore_client()


def get_storage_bucket():
    """Get the listing photo bucket"""
    return get_firebase_service().get_bucket()
