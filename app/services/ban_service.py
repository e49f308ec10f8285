import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.audit_log import AuditLog
from app.models.profile import Profile
from app.models.user_ban import UserBan
from app.services.analytics_service import AnalyticsService
from app.services.rules import is_ban_row_active, is_banned, latest_ban_end, to_naive_utc

logger = logging.getLogger(__name__)


def serialize_ban(ban: UserBan) -> dict:
    return {
        'id': ban.id,
        'user_id': ban.user_id,
        'banned_by': ban.banned_by,
        'reason': ban.reason,
        'start_date': ban.start_date.isoformat(),
        'end_date': ban.end_date.isoformat(),
        'created_at': ban.created_at.isoformat() if ban.created_at else None,
    }


class BanService:
    """
    Creates, lifts and resolves user bans. Each operation writes the ban rows
    and the profile's banned_until cache in a single commit.
    """

    def __init__(self, analytics: AnalyticsService = None):
        self.analytics = analytics or AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _get_profile(self, db: Session, user_id: str) -> Profile:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if not profile:
            raise ValueError("User not found")
        return profile

    def list_bans(self, db: Session, user_id: str) -> list[UserBan]:
        return db.query(UserBan).filter(
            UserBan.user_id == user_id
        ).order_by(UserBan.start_date.desc()).all()

    def active_bans(self, db: Session, now: datetime = None) -> list[UserBan]:
        """All bans running right now, for the admin user list"""
        now = now or datetime.utcnow()
        return db.query(UserBan).filter(
            UserBan.start_date <= now,
            UserBan.end_date >= now
        ).all()

    def is_user_banned(self, db: Session, user_id: str, now: datetime = None) -> bool:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if not profile:
            return False
        return is_banned(profile.banned_until, self.list_bans(db, user_id), now)

    def get_ban_status(self, db: Session, user_id: str, now: datetime = None) -> dict:
        self.logger.info(f"get_ban_status: Entry - user: {user_id}")
        now = now or datetime.utcnow()

        profile = self._get_profile(db, user_id)
        bans = self.list_bans(db, user_id)
        banned = is_banned(profile.banned_until, bans, now)
        active = next((b for b in bans if is_ban_row_active(b.start_date, b.end_date, now)), None)

        self.logger.info(f"get_ban_status: Success - user: {user_id}, banned: {banned}")
        return {
            'user_id': user_id,
            'is_banned': banned,
            'banned_until': profile.banned_until.isoformat() if banned and profile.banned_until else None,
            'active_ban': serialize_ban(active) if active else None,
        }

    def create_ban(
        self,
        db: Session,
        user_id: str,
        banned_by: Optional[str],
        reason: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> UserBan:
        """Insert a ban row and refresh banned_until in one transaction"""
        self.logger.info(f"create_ban: Entry - user: {user_id}, by: {banned_by}")

        try:
            profile = self._get_profile(db, user_id)
            if banned_by and banned_by == user_id:
                raise ValueError("Administrators cannot ban themselves")

            now = datetime.utcnow()
            start = to_naive_utc(start_date) or now
            end = to_naive_utc(end_date) or start + timedelta(days=settings.default_ban_days)
            if end <= start:
                raise ValueError("Ban end date must be after the start date")

            ban = UserBan(
                id=str(uuid.uuid4()),
                user_id=user_id,
                banned_by=banned_by,
                reason=reason,
                start_date=start,
                end_date=end,
            )
            db.add(ban)
            db.flush()

            profile.banned_until = latest_ban_end(self.list_bans(db, user_id), now)
            profile.updated_at = now

            db.add(AuditLog(
                id=str(uuid.uuid4()),
                actor_id=banned_by,
                action='ban_user',
                resource_type='profile',
                resource_id=user_id,
                details=json.dumps({
                    'reason': reason,
                    'start_date': start.isoformat(),
                    'end_date': end.isoformat(),
                })
            ))

            db.commit()
            db.refresh(ban)

            self.analytics.log_success(
                action='create_ban',
                user_id=banned_by,
                parameters={'target_user': user_id, 'end_date': end.isoformat()}
            )
            self.logger.info(f"create_ban: Success - user: {user_id}, ban: {ban.id}")
            return ban
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='create_ban',
                error=str(e),
                user_id=banned_by,
                parameters={'target_user': user_id}
            )
            self.logger.error(f"create_ban: Failure - {e}")
            raise

    def lift_ban(self, db: Session, user_id: str, lifted_by: Optional[str] = None) -> int:
        """
        End every open ban of a user now and clear banned_until.
        Returns the number of ban rows closed.
        """
        self.logger.info(f"lift_ban: Entry - user: {user_id}")

        try:
            profile = self._get_profile(db, user_id)
            now = datetime.utcnow()

            open_bans = db.query(UserBan).filter(
                UserBan.user_id == user_id,
                UserBan.end_date >= now
            ).all()

            if not open_bans and not (profile.banned_until and profile.banned_until > now):
                raise ValueError("User is not banned")

            for ban in open_bans:
                # A ban scheduled for later is cancelled outright
                if ban.start_date > now:
                    ban.start_date = now
                ban.end_date = now

            profile.banned_until = None
            profile.updated_at = now

            db.add(AuditLog(
                id=str(uuid.uuid4()),
                actor_id=lifted_by,
                action='lift_ban',
                resource_type='profile',
                resource_id=user_id,
                details=json.dumps({'closed_bans': [b.id for b in open_bans]})
            ))

            db.commit()

            self.analytics.log_success(
                action='lift_ban',
                user_id=lifted_by,
                parameters={'target_user': user_id, 'closed': len(open_bans)}
            )
            self.logger.info(f"lift_ban: Success - user: {user_id}, closed: {len(open_bans)}")
            return len(open_bans)
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='lift_ban',
                error=str(e),
                user_id=lifted_by,
                parameters={'target_user': user_id}
            )
            self.logger.error(f"lift_ban: Failure - {e}")
            raise
