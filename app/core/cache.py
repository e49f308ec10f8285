import logging
from typing import Optional, Any
from app.core.config import settings
from app.core.redis_cache import RedisCache

logger = logging.getLogger(__name__)


# Global cache instance
_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get global Redis cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
    return _cache_instance


def set_cache(cache: Optional[RedisCache]):
    """Replace the global cache instance (for testing)"""
    global _cache_instance
    _cache_instance = cache


def _setting_cache_key(key: str) -> str:
    return f"site_setting:{key}"


def get_cached_setting(key: str) -> Optional[Any]:
    """Get a cached site setting value. Cached entries are wrapped so None values survive."""
    entry = get_cache().get(_setting_cache_key(key))
    if isinstance(entry, dict) and 'value' in entry:
        return entry
    return None


def set_cached_setting(key: str, value: Any):
    """Cache a site setting value"""
    get_cache().set(
        _setting_cache_key(key),
        {'value': value},
        settings.settings_cache_ttl_minutes,
    )


def delete_cached_setting(key: str):
    """Invalidate a cached site setting"""
    get_cache().delete(_setting_cache_key(key))


def entitlement_lock_key(user_id: str) -> str:
    return f"entitlement_lock:{user_id}"


def popular_lock_key(table: str) -> str:
    return f"popular_lock:{table}"


def payout_lock_key(user_id: str) -> str:
    return f"payout_lock:{user_id}"
