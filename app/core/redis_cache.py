import json
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Optional, Dict, Any, Union
import redis
from redis.exceptions import RedisError
from app.core.config import settings

logger = logging.getLogger(__name__)

JSONValue = Union[Dict[str, Any], list, str, int, float, bool]


class RedisCache:
    """Redis-backed cache for rate limit counters, site settings and marketplace locks"""

    def __init__(self, client: Optional[redis.Redis] = None):
        """Initialize Redis cache (lazy connection unless a client is injected)"""
        self._client: Optional[redis.Redis] = client
        self._connected = client is not None
        # Lock tokens we own, so we never delete a lock someone else re-acquired
        self._lock_tokens: Dict[str, str] = {}

    def _connect(self):
        """Connect to Redis server. Failures leave the cache disabled, not the app."""
        try:
            client_kwargs = {
                'decode_responses': False,
                'socket_connect_timeout': 2,
                'socket_timeout': 2,
                'retry_on_timeout': False,
                'health_check_interval': 0,
            }
            if settings.redis_password:
                client_kwargs['password'] = settings.redis_password

            self._client = redis.from_url(settings.redis_url, **client_kwargs)
            self._client.ping()
            self._connected = True
            logger.info("RedisCache: Connected to Redis")
        except RedisError as e:
            error_msg = str(e)
            if 'auth' in error_msg.lower() or 'password' in error_msg.lower():
                logger.error(f"RedisCache: Authentication failed - {error_msg}. Check REDIS_PASSWORD or REDIS_URL.")
            else:
                logger.error(f"RedisCache: Failed to connect to Redis - {error_msg}")
            self._connected = False
            self._client = None

    def _ensure_connected(self) -> bool:
        if self._connected and self._client is not None:
            return True
        self._connect()
        return self._client is not None

    def _on_error(self, action: str, key: str, error: Exception):
        logger.error(f"RedisCache: Error during {action} for key {key}: {error}")
        # Force a reconnect on the next call
        self._connected = False

    def get(self, key: str) -> Optional[JSONValue]:
        """Get a JSON value, None on miss or when Redis is unavailable"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot get key {key} - Redis not available")
            return None

        try:
            data = self._client.get(key)
            if data is None:
                logger.debug(f"Cache miss: {key}")
                return None
            try:
                decoded = json.loads(data.decode('utf-8'))
                logger.debug(f"Cache hit: {key}")
                return decoded
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"RedisCache: Failed to decode value for key {key}: {e}")
                self._client.delete(key)
                return None
        except RedisError as e:
            self._on_error('get', key, e)
            return None

    def get_int(self, key: str) -> Optional[int]:
        """Get an integer counter"""
        if not self._ensure_connected():
            return None

        try:
            data = self._client.get(key)
            if data is None:
                return None
            try:
                return int(data.decode('utf-8'))
            except (ValueError, UnicodeDecodeError):
                logger.warning(f"RedisCache: Non-integer value for key {key}, dropping it")
                self._client.delete(key)
                return None
        except RedisError as e:
            self._on_error('get_int', key, e)
            return None

    def set(self, key: str, value: JSONValue, ttl_minutes: int):
        """Set a value with TTL in minutes (integers are stored raw for counters)"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot set key {key} - Redis not available")
            return

        try:
            if isinstance(value, int) and not isinstance(value, bool):
                serialized = str(value).encode('utf-8')
            else:
                serialized = json.dumps(value).encode('utf-8')
            self._client.setex(key, ttl_minutes * 60, serialized)
            logger.debug(f"Cache set: {key}, TTL: {ttl_minutes} minutes")
        except RedisError as e:
            self._on_error('set', key, e)

    def delete(self, key: str):
        """Delete cache entry"""
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot delete key {key} - Redis not available")
            return

        try:
            self._client.delete(key)
            logger.debug(f"Cache deleted: {key}")
        except RedisError as e:
            self._on_error('delete', key, e)

    def incr(self, key: str, ttl_seconds: int) -> Optional[int]:
        """Atomically increment a counter, setting its expiry on first increment"""
        if not self._ensure_connected():
            return None

        try:
            new_value = self._client.incr(key)
            if new_value == 1:
                self._client.expire(key, ttl_seconds)
            return new_value
        except RedisError as e:
            self._on_error('incr', key, e)
            return None

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        if not self._ensure_connected():
            return False
        try:
            return bool(self._client.ping())
        except RedisError:
            self._connected = False
            return False

    def acquire_lock(self, lock_key: str, timeout_seconds: int = 10, block_seconds: int = 5) -> bool:
        """
        Acquire a distributed lock using SET NX EX.

        Args:
            lock_key: Unique key for the lock
            timeout_seconds: How long the lock is held before Redis releases it
            block_seconds: How long to keep retrying

        Returns:
            True if the lock was acquired, False otherwise (including Redis down)
        """
        if not self._ensure_connected():
            logger.warning(f"RedisCache: Cannot acquire lock {lock_key} - Redis not available")
            return False

        token = str(uuid.uuid4())
        deadline = time.monotonic() + block_seconds
        try:
            while True:
                if self._client.set(lock_key, token, nx=True, ex=timeout_seconds):
                    self._lock_tokens[lock_key] = token
                    logger.debug(f"RedisCache: Lock acquired - {lock_key}")
                    return True
                if time.monotonic() >= deadline:
                    break
                time.sleep(0.05)
            logger.debug(f"RedisCache: Failed to acquire lock - {lock_key}")
            return False
        except RedisError as e:
            self._on_error('acquire_lock', lock_key, e)
            return False

    def release_lock(self, lock_key: str):
        """Release a lock previously acquired by this instance"""
        token = self._lock_tokens.pop(lock_key, None)
        if token is None or not self._ensure_connected():
            return

        try:
            current = self._client.get(lock_key)
            if current is not None and current.decode('utf-8') == token:
                self._client.delete(lock_key)
                logger.debug(f"RedisCache: Lock released - {lock_key}")
        except RedisError as e:
            self._on_error('release_lock', lock_key, e)

    @contextmanager
    def lock(self, lock_key: str, timeout_seconds: int = 10, block_seconds: int = 5):
        """
        Context manager around acquire_lock/release_lock. Yields whether the lock
        was acquired; callers proceed either way and rely on the database
        transaction when Redis is unavailable.
        """
        acquired = self.acquire_lock(lock_key, timeout_seconds, block_seconds)
        if not acquired:
            logger.warning(f"RedisCache: Proceeding without lock - {lock_key}")
        try:
            yield acquired
        finally:
            if acquired:
                self.release_lock(lock_key)
