from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.firebase_service import verify_firebase_token
from app.models.profile import Profile
from app.services.ban_service import BanService
from app.services.profile_service import ProfileService
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    Dependency to get current authenticated user from Firebase token.
    Protects routes that require authentication.
    """
    logger.info("get_current_user: Entry")

    try:
        token = credentials.credentials
        decoded_token = verify_firebase_token(token)
        user_id = decoded_token.get('uid')

        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials"
            )

        logger.info(f"get_current_user: Success - {user_id}")
        return {
            'uid': user_id,
            'email': decoded_token.get('email'),
            'token': decoded_token
        }
    except Exception as e:
        logger.error(f"get_current_user: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_profile(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user)
) -> Profile:
    """Profile of the caller, created on their first authenticated request"""
    return ProfileService().get_or_create_profile(db, current_user['uid'], current_user.get('email'))


def require_admin(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user)
) -> dict:
    """Allow only callers whose profile has the admin role"""
    profile = db.query(Profile).filter(Profile.id == current_user['uid']).first()
    if not profile or profile.role != 'admin':
        logger.warning(f"require_admin: Unauthorized - user: {current_user['uid']}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


def require_not_banned(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user)
) -> dict:
    """Reject banned sellers on write operations"""
    if BanService().is_user_banned(db, current_user['uid']):
        logger.warning(f"require_not_banned: Banned user blocked - {current_user['uid']}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is banned"
        )
    return current_user
