import json
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.cache import delete_cached_setting, get_cached_setting, set_cached_setting
from app.core.security import decrypt_secret, encrypt_secret, is_secret_setting
from app.models.audit_log import AuditLog
from app.models.site_setting import SiteSetting
from app.services.analytics_service import AnalyticsService
from app.services.rules import normalize_email

logger = logging.getLogger(__name__)

GRID_KEYS = ('credit_packages_grid', 'subscription_packages_grid')
GRID_BREAKPOINTS = ('lg', 'md', 'sm')
DEFAULT_GRID = {'lg': 3, 'md': 2, 'sm': 1}
GRID_MIN_COLUMNS = 1
GRID_MAX_COLUMNS = 6

THANK_YOU_KEY = 'thank_you_content'
NOTIFICATION_EMAILS_KEY = 'notification_emails'

KEY_PATTERN = re.compile(r'^[a-z0-9_]{1,64}$')


def normalize_grid(value: Any) -> Optional[dict]:
    """{lg, md, sm} as ints in 1..6, or None when the value is not a valid grid"""
    if not isinstance(value, dict):
        return None
    grid = {}
    for breakpoint in GRID_BREAKPOINTS:
        columns = value.get(breakpoint)
        if isinstance(columns, bool) or not isinstance(columns, (int, str)):
            return None
        try:
            columns = int(columns)
        except ValueError:
            return None
        if not GRID_MIN_COLUMNS <= columns <= GRID_MAX_COLUMNS:
            return None
        grid[breakpoint] = columns
    return grid


def normalize_emails(value: Any) -> list[str]:
    """Validate a list of addresses, dropping duplicates case-insensitively"""
    if isinstance(value, str):
        value = [part for part in re.split(r'[,\s]+', value) if part]
    if not isinstance(value, list):
        raise ValueError("notification_emails must be a list of email addresses")
    seen = set()
    emails = []
    for raw in value:
        email = normalize_email(raw)
        if email.lower() not in seen:
            seen.add(email.lower())
            emails.append(email)
    return emails


def mask_secret(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return '•' * 8 + value[-4:] if len(value) > 8 else '•' * 8


class SettingsService:
    """
    Site-wide key/value settings edited from the admin console.

    Keys ending in _secret_key are encrypted at rest and never served by the
    public endpoints. Reads of other keys are cached and invalidated on write.
    """

    def __init__(self, analytics: AnalyticsService = None):
        self.analytics = analytics or AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _load(self, db: Session, key: str) -> Optional[SiteSetting]:
        return db.query(SiteSetting).filter(SiteSetting.key == key).first()

    def get_setting(self, db: Session, key: str, default: Any = None) -> Any:
        """Value of a non-secret setting, default when it is missing"""
        if is_secret_setting(key):
            raise ValueError("Secret settings are not readable here")

        cached = get_cached_setting(key)
        if cached is not None:
            value = cached['value']
        else:
            row = self._load(db, key)
            value = row.value if row else None
            set_cached_setting(key, value)
        return default if value is None else value

    def get_secret(self, db: Session, key: str) -> Optional[str]:
        """Decrypted value of a secret setting, for server-side use only"""
        if not is_secret_setting(key):
            raise ValueError(f"{key} is not a secret setting")
        row = self._load(db, key)
        if not row or not row.value:
            return None
        return decrypt_secret(row.value)

    def get_grid_settings(self, db: Session, key: str) -> dict:
        """Column counts for a package grid; defaults when missing or invalid"""
        if key not in GRID_KEYS:
            raise ValueError(f"Unknown grid setting: {key}")
        grid = normalize_grid(self.get_setting(db, key))
        if grid is None:
            self.logger.info(f"get_grid_settings: Using defaults - {key}")
            return dict(DEFAULT_GRID)
        return grid

    def get_thank_you_content(self, db: Session) -> str:
        value = self.get_setting(db, THANK_YOU_KEY, '')
        return value if isinstance(value, str) else ''

    def get_notification_emails(self, db: Session) -> list[str]:
        value = self.get_setting(db, NOTIFICATION_EMAILS_KEY, [])
        return value if isinstance(value, list) else []

    def list_settings(self, db: Session) -> list[dict]:
        """Every setting for the admin console, secrets masked"""
        rows = db.query(SiteSetting).order_by(SiteSetting.key).all()
        result = []
        for row in rows:
            secret = is_secret_setting(row.key)
            value = row.value
            if secret:
                value = mask_secret(decrypt_secret(row.value)) if row.value else None
            result.append({
                'key': row.key,
                'value': value,
                'is_secret': secret,
                'updated_by': row.updated_by,
                'updated_at': row.updated_at.isoformat() if row.updated_at else None,
            })
        return result

    def _clean_value(self, key: str, value: Any) -> Any:
        if key in GRID_KEYS:
            grid = normalize_grid(value)
            if grid is None:
                raise ValueError(
                    f"{key} needs lg, md and sm column counts between "
                    f"{GRID_MIN_COLUMNS} and {GRID_MAX_COLUMNS}"
                )
            return grid
        if key == NOTIFICATION_EMAILS_KEY:
            return normalize_emails(value)
        if key == THANK_YOU_KEY:
            if not isinstance(value, str):
                raise ValueError("thank_you_content must be text")
            return value
        if is_secret_setting(key):
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{key} must be a non-empty string")
            return encrypt_secret(value.strip())
        return value

    def set_setting(self, db: Session, key: str, value: Any, actor_id: Optional[str] = None) -> dict:
        """Validate and upsert a setting by key"""
        self.logger.info(f"set_setting: Entry - {key}")

        if not KEY_PATTERN.match(key or ''):
            raise ValueError(f"Invalid setting key: {key}")
        stored = self._clean_value(key, value)

        try:
            db.merge(SiteSetting(key=key, value=stored, updated_by=actor_id, updated_at=datetime.utcnow()))
            db.add(AuditLog(
                id=str(uuid.uuid4()),
                actor_id=actor_id,
                action='set_setting',
                resource_type='setting',
                resource_id=key,
                details=json.dumps({'secret': is_secret_setting(key)})
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(action='set_setting', error=str(e), user_id=actor_id, parameters={'key': key})
            self.logger.error(f"set_setting: Failure - {e}")
            raise

        delete_cached_setting(key)
        self.analytics.log_success(action='set_setting', user_id=actor_id, parameters={'key': key})
        self.logger.info(f"set_setting: Success - {key}")
        if is_secret_setting(key):
            return {'key': key, 'value': mask_secret(value.strip()), 'is_secret': True}
        return {'key': key, 'value': stored, 'is_secret': False}

    def delete_setting(self, db: Session, key: str, actor_id: Optional[str] = None):
        self.logger.info(f"delete_setting: Entry - {key}")
        try:
            row = self._load(db, key)
            if not row:
                raise ValueError("Setting not found")
            db.delete(row)
            db.add(AuditLog(
                id=str(uuid.uuid4()),
                actor_id=actor_id,
                action='delete_setting',
                resource_type='setting',
                resource_id=key,
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"delete_setting: Failure - {e}")
            raise
        delete_cached_setting(key)
        self.logger.info(f"delete_setting: Success - {key}")
