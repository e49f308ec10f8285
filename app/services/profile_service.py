import json
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.firebase_service import FirebaseService, get_firebase_service
from app.models.audit_log import AuditLog
from app.models.product import ProductImage, Product
from app.models.profile import Profile
from app.services.analytics_service import AnalyticsService
from app.services.ban_service import BanService, serialize_ban
from app.services.rules import is_ban_row_active, is_banned, normalize_email
from app.services.storage_service import StorageService

logger = logging.getLogger(__name__)

ROLES = ('user', 'admin')
PROFILE_FIELDS = {'first_name', 'last_name', 'address', 'postal_code', 'phone', 'avatar_url'}
MIN_PASSWORD_LENGTH = 6


def serialize_profile(profile: Profile) -> dict:
    return {
        'id': profile.id,
        'email': profile.email,
        'first_name': profile.first_name,
        'last_name': profile.last_name,
        'full_name': profile.full_name,
        'address': profile.address,
        'postal_code': profile.postal_code,
        'phone': profile.phone,
        'avatar_url': profile.avatar_url,
        'credits': profile.credits or 0,
        'role': profile.role,
        'is_admin': profile.is_admin,
        'created_at': profile.created_at.isoformat() if profile.created_at else None,
    }


class ProfileService:
    """Seller profiles, signup and user administration"""

    def __init__(
        self,
        analytics: AnalyticsService = None,
        firebase: FirebaseService = None,
        bans: BanService = None,
        storage: StorageService = None,
    ):
        self.analytics = analytics or AnalyticsService()
        self._firebase = firebase
        self.bans = bans or BanService(self.analytics)
        self.storage = storage or StorageService()
        self.logger = logging.getLogger(__name__)

    @property
    def firebase(self) -> FirebaseService:
        if self._firebase is None:
            self._firebase = get_firebase_service()
        return self._firebase

    def _audit(self, db: Session, actor_id: Optional[str], action: str, user_id: str, details: dict = None):
        db.add(AuditLog(
            id=str(uuid.uuid4()),
            actor_id=actor_id,
            action=action,
            resource_type='profile',
            resource_id=user_id,
            details=json.dumps(details or {}, default=str)
        ))

    def get_profile_row(self, db: Session, user_id: str) -> Profile:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if not profile:
            raise ValueError("User not found")
        return profile

    def get_or_create_profile(self, db: Session, user_id: str, email: Optional[str] = None) -> Profile:
        """Get profile, creating it on the first authenticated visit"""
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if profile:
            return profile

        self.logger.info(f"get_or_create_profile: Creating profile - {user_id}")
        try:
            profile = Profile(id=user_id, email=email, role='user', is_admin=False, credits=0)
            db.add(profile)
            db.commit()
            db.refresh(profile)
            self.analytics.log_success(action='create_profile', user_id=user_id)
            return profile
        except IntegrityError:
            # A concurrent request created it first
            db.rollback()
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                raise
            return profile

    def get_profile(self, db: Session, user_id: str) -> dict:
        profile = self.get_profile_row(db, user_id)
        return {
            **serialize_profile(profile),
            'is_banned': self.bans.is_user_banned(db, user_id),
        }

    def update_profile(self, db: Session, user_id: str, data: dict, actor_id: Optional[str] = None) -> Profile:
        """Update contact details. Audited when an administrator does it."""
        self.logger.info(f"update_profile: Entry - user: {user_id}")

        try:
            profile = self.get_profile_row(db, user_id)
            changes = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
            for field, value in changes.items():
                setattr(profile, field, value.strip() if isinstance(value, str) else value)
            profile.updated_at = datetime.utcnow()
            if actor_id and actor_id != user_id:
                self._audit(db, actor_id, 'update_profile', user_id, {'fields': sorted(changes)})

            db.commit()
            db.refresh(profile)
            self.logger.info(f"update_profile: Success - user: {user_id}, fields: {sorted(changes)}")
            return profile
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='update_profile', error=str(e), user_id=actor_id or user_id)
            self.logger.error(f"update_profile: Failure - {e}")
            raise

    def signup(
        self,
        db: Session,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: str = 'user',
        actor_id: Optional[str] = None,
    ) -> Profile:
        """
        Create a Firebase account and its profile. If the profile cannot be
        written the Firebase account is deleted again.
        """
        self.logger.info(f"signup: Entry - {email}")

        if not all((email, password, first_name, last_name)):
            raise ValueError("Email, password, first name and last name are required")
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        email = normalize_email(email)
        if db.query(Profile).filter(Profile.email == email).first():
            raise ValueError("An account with this email already exists")

        uid = self.firebase.create_user(
            email=email,
            password=password,
            display_name=f"{first_name.strip()} {last_name.strip()}"
        )
        try:
            profile = Profile(
                id=uid,
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                role=role,
                is_admin=role == 'admin',
                credits=0,
            )
            db.add(profile)
            if actor_id:
                self._audit(db, actor_id, 'create_user', uid, {'email': email, 'role': role})
            db.commit()
            db.refresh(profile)
        except Exception as e:
            db.rollback()
            self.logger.error(f"signup: Failure - profile insert failed, removing auth user {uid}: {e}")
            try:
                self.firebase.delete_user(uid)
            except Exception as cleanup_error:
                self.logger.error(f"signup: Could not remove auth user {uid} - {cleanup_error}")
            self.analytics.log_failure(action='signup', error=str(e), user_id=actor_id)
            raise

        self.analytics.log_success(action='signup', user_id=uid, parameters={'role': role, 'by_admin': bool(actor_id)})
        self.logger.info(f"signup: Success - {uid}")
        return profile

    # --- Administration ------------------------------------------------------

    def is_admin(self, db: Session, user_id: str) -> bool:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        return bool(profile and profile.role == 'admin')

    def list_users(self, db: Session) -> list[dict]:
        """All users with their ban state, for the admin console"""
        self.logger.info("list_users: Entry")

        now = datetime.utcnow()
        profiles = db.query(Profile).order_by(Profile.created_at.desc()).all()
        active = {}
        for ban in self.bans.active_bans(db, now):
            active.setdefault(ban.user_id, ban)

        result = []
        for profile in profiles:
            ban = active.get(profile.id)
            result.append({
                **serialize_profile(profile),
                'is_banned': is_banned(profile.banned_until, profile.bans, now),
                'active_ban': serialize_ban(ban) if ban and is_ban_row_active(ban.start_date, ban.end_date, now) else None,
            })

        self.logger.info(f"list_users: Success - {len(result)} users")
        return result

    def set_role(self, db: Session, actor_id: str, user_id: str, role: str) -> Profile:
        """Change a user's role; is_admin follows the role"""
        self.logger.info(f"set_role: Entry - user: {user_id}, role: {role}")

        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        try:
            profile = self.get_profile_row(db, user_id)
            if actor_id == user_id and role != 'admin':
                raise ValueError("Administrators cannot remove their own admin role")

            previous = profile.role
            profile.role = role
            profile.is_admin = role == 'admin'
            profile.updated_at = datetime.utcnow()
            self._audit(db, actor_id, 'set_role', user_id, {'from': previous, 'to': role})

            db.commit()
            db.refresh(profile)

            self.analytics.log_success(action='set_role', user_id=actor_id, parameters={'target_user': user_id, 'role': role})
            self.logger.info(f"set_role: Success - user: {user_id}, {previous} -> {role}")
            return profile
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='set_role', error=str(e), user_id=actor_id)
            self.logger.error(f"set_role: Failure - {e}")
            raise

    def delete_user(self, db: Session, actor_id: Optional[str], user_id: str):
        """Delete a profile with its dependent rows, its photos and its auth account"""
        self.logger.info(f"delete_user: Entry - user: {user_id}")

        if actor_id == user_id:
            raise ValueError("Administrators cannot delete their own account")
        try:
            profile = self.get_profile_row(db, user_id)
            paths = [
                row.storage_path for row in db.query(ProductImage).join(Product).filter(
                    Product.user_id == user_id
                ).all()
            ]
            db.delete(profile)
            self._audit(db, actor_id, 'delete_user', user_id, {'email': profile.email})
            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='delete_user', error=str(e), user_id=actor_id)
            self.logger.error(f"delete_user: Failure - {e}")
            raise

        self.storage.delete_images(paths)
        try:
            self.firebase.delete_user(user_id)
        except Exception as e:
            self.logger.warning(f"delete_user: Auth account not removed - {user_id}: {e}")

        self.analytics.log_success(action='delete_user', user_id=actor_id, parameters={'target_user': user_id})
        self.logger.info(f"delete_user: Success - user: {user_id}")

    def list_audit_logs(self, db: Session, limit: int = 100) -> list[dict]:
        logs = db.query(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit).all()
        return [
            {
                'id': log.id,
                'actor_id': log.actor_id,
                'action': log.action,
                'resource_type': log.resource_type,
                'resource_id': log.resource_id,
                'details': json.loads(log.details) if log.details else None,
                'created_at': log.created_at.isoformat() if log.created_at else None,
            }
            for log in logs
        ]
