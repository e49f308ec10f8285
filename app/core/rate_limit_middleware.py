from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from app.core.config import settings
from app.core.firebase_service import verify_firebase_token
from app.core.database import SessionLocal
from app.models.profile import Profile
from app.core.cache import get_cache
from datetime import datetime, timedelta
import logging

logger = logging.getLogger(__name__)

# Rate limit configuration per role
RATE_LIMITS = {
    'user': {
        'per_minute': 60,
        'per_hour': 1000,
    },
    'admin': {
        'per_minute': 240,
        'per_hour': 10000,
    }
}

# Default rate limits for unauthenticated requests (IP-based)
DEFAULT_IP_LIMITS = {
    'per_minute': 30,
    'per_hour': 500,
}

EXEMPT_PATHS = ['/health', '/docs', '/openapi.json', '/redoc']


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies per-minute and per-hour request limits by user role, or by
    client IP address for anonymous requests.
    """

    def __init__(self, app: ASGIApp, cache=None):
        super().__init__(app)
        self.cache = cache or get_cache()

    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        user_id = None
        user_role = None

        auth_header = request.headers.get('Authorization')
        if auth_header and auth_header.startswith('Bearer '):
            try:
                token = auth_header.split(' ')[1]
                decoded_token = verify_firebase_token(token)
                user_id = decoded_token.get('uid')

                if user_id:
                    user_role = self._get_user_role(user_id)
                    request.state.user_id = user_id
                    request.state.user_role = user_role
            except Exception as e:
                # The auth dependency reports invalid tokens, fall back to IP limits here
                logger.debug(f"Rate limit middleware: Could not verify token: {e}")
                user_id = None

        if user_id:
            if not self._check_user_rate_limit(user_id, user_role):
                limits = RATE_LIMITS.get(user_role, RATE_LIMITS['user'])
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "detail": f"Rate limit exceeded. You can make {limits['per_minute']} requests per minute. Please try again later.",
                        "retry_after": 60
                    },
                    headers={
                        "Retry-After": "60",
                        "X-RateLimit-Limit": str(limits['per_minute']),
                        "X-RateLimit-Remaining": "0",
                    }
                )
        else:
            client_ip = self._get_client_ip(request)
            if not self._check_ip_rate_limit(client_ip):
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "detail": "Rate limit exceeded. Please sign in or try again later.",
                        "retry_after": 60
                    },
                    headers={
                        "Retry-After": "60",
                    }
                )

        response = await call_next(request)

        if user_id:
            limits = RATE_LIMITS.get(user_role, RATE_LIMITS['user'])
            remaining = self._get_remaining_requests(user_id, user_role)
            response.headers["X-RateLimit-Limit"] = str(limits['per_minute'])
            response.headers["X-RateLimit-Remaining"] = str(remaining)
            response.headers["X-RateLimit-Reset"] = str(int((datetime.utcnow() + timedelta(minutes=1)).timestamp()))

        return response

    def _get_user_role(self, user_id: str) -> str:
        """Role from the profile; callers without a profile yet count as users"""
        db = SessionLocal()
        try:
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            return profile.role if profile and profile.role in RATE_LIMITS else 'user'
        finally:
            db.close()

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # First address in the proxy chain
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _check_limits(self, subject: str, limits: dict) -> bool:
        now = datetime.utcnow()
        minute_key = f"rate_limit:{subject}:minute:{now.replace(second=0, microsecond=0).isoformat()}"
        hour_key = f"rate_limit:{subject}:hour:{now.replace(minute=0, second=0, microsecond=0).isoformat()}"

        minute_count = self.cache.get_int(minute_key) or 0
        if minute_count >= limits['per_minute']:
            logger.warning(f"Rate limit exceeded (per minute) - {subject}")
            return False

        hour_count = self.cache.get_int(hour_key) or 0
        if hour_count >= limits['per_hour']:
            logger.warning(f"Rate limit exceeded (per hour) - {subject}")
            return False

        self.cache.incr(minute_key, ttl_seconds=60)
        self.cache.incr(hour_key, ttl_seconds=3600)
        return True

    def _check_user_rate_limit(self, user_id: str, user_role: str) -> bool:
        """Check if user is within rate limits for their role"""
        return self._check_limits(f"user:{user_id}", RATE_LIMITS.get(user_role, RATE_LIMITS['user']))

    def _check_ip_rate_limit(self, client_ip: str) -> bool:
        """Check if IP address is within rate limits"""
        return self._check_limits(f"ip:{client_ip}", DEFAULT_IP_LIMITS)

    def _get_remaining_requests(self, user_id: str, user_role: str) -> int:
        """Get remaining requests for the current minute"""
        limits = RATE_LIMITS.get(user_role, RATE_LIMITS['user'])
        current_minute = datetime.utcnow().replace(second=0, microsecond=0)
        minute_key = f"rate_limit:user:{user_id}:minute:{current_minute.isoformat()}"
        minute_count = self.cache.get_int(minute_key) or 0
        return max(0, limits['per_minute'] - minute_count)
