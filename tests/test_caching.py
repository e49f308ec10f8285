"""
Tests for the Redis cache wrapper and the cached site settings helpers
"""

import json
import pytest
from unittest.mock import MagicMock
from redis.exceptions import RedisError

from app.core.cache import (
    delete_cached_setting,
    entitlement_lock_key,
    get_cached_setting,
    popular_lock_key,
    set_cached_setting,
)
from app.core.redis_cache import RedisCache


@pytest.fixture
def mock_client():
    """Mock redis.Redis client"""
    return MagicMock()


@pytest.fixture
def cache(mock_client):
    return RedisCache(client=mock_client)


class TestRedisCache:
    """RedisCache against a mocked client"""

    def test_get_decodes_json(self, cache, mock_client):
        mock_client.get.return_value = json.dumps({'value': [1, 2]}).encode('utf-8')

        assert cache.get("key") == {'value': [1, 2]}

    def test_get_drops_corrupt_value(self, cache, mock_client):
        mock_client.get.return_value = b"\xff not json"

        assert cache.get("key") is None
        mock_client.delete.assert_called_once_with("key")

    def test_get_returns_none_on_redis_error(self, cache, mock_client):
        mock_client.get.side_effect = RedisError("connection reset")

        assert cache.get("key") is None

    def test_set_uses_ttl_in_seconds(self, cache, mock_client):
        cache.set("key", {'value': "x"}, 10)

        mock_client.setex.assert_called_once_with("key", 600, b'{"value": "x"}')

    def test_set_stores_ints_raw(self, cache, mock_client):
        cache.set("counter", 5, 1)

        mock_client.setex.assert_called_once_with("counter", 60, b"5")

    def test_get_int(self, cache, mock_client):
        mock_client.get.return_value = b"42"
        assert cache.get_int("counter") == 42

        mock_client.get.return_value = None
        assert cache.get_int("counter") is None

    def test_incr_sets_expiry_on_first_hit(self, cache, mock_client):
        mock_client.incr.return_value = 1
        assert cache.incr("counter", 60) == 1
        mock_client.expire.assert_called_once_with("counter", 60)

        mock_client.incr.return_value = 2
        assert cache.incr("counter", 60) == 2
        assert mock_client.expire.call_count == 1

    def test_lock_acquire_and_release(self, cache, mock_client):
        mock_client.set.return_value = True

        with cache.lock("entitlement_lock:user_1") as acquired:
            assert acquired is True
            token = mock_client.set.call_args.args[1]
            mock_client.get.return_value = token.encode('utf-8')

        mock_client.set.assert_called_once()
        assert mock_client.set.call_args.kwargs == {'nx': True, 'ex': 10}
        mock_client.delete.assert_called_once_with("entitlement_lock:user_1")

    def test_lock_not_released_when_taken_over(self, cache, mock_client):
        mock_client.set.return_value = True
        mock_client.get.return_value = b"someone-else"

        with cache.lock("popular_lock:subscription_packages"):
            pass

        mock_client.delete.assert_not_called()

    def test_lock_timeout_proceeds_without_lock(self, cache, mock_client):
        mock_client.set.return_value = None

        with cache.lock("entitlement_lock:user_1", block_seconds=0) as acquired:
            assert acquired is False

        mock_client.delete.assert_not_called()

    def test_unavailable_redis_disables_cache(self, monkeypatch):
        """Connection failures leave the cache empty instead of raising"""
        failing = MagicMock()
        failing.ping.side_effect = RedisError("refused")
        monkeypatch.setattr("app.core.redis_cache.redis.from_url", MagicMock(return_value=failing))
        cache = RedisCache()

        assert cache.get("key") is None
        assert cache.incr("counter", 60) is None
        assert cache.acquire_lock("lock", block_seconds=0) is False


class TestSettingCache:
    """Cached site setting helpers"""

    def test_round_trip_through_cache(self, mock_cache):
        set_cached_setting("thank_you_content", None)

        mock_cache.set.assert_called_once_with("site_setting:thank_you_content", {'value': None}, 10)

    def test_cached_entry_is_wrapped(self, mock_cache):
        mock_cache.get.return_value = {'value': None}
        assert get_cached_setting("thank_you_content") == {'value': None}

        mock_cache.get.return_value = "legacy"
        assert get_cached_setting("thank_you_content") is None

    def test_delete(self, mock_cache):
        delete_cached_setting("notification_emails")

        mock_cache.delete.assert_called_once_with("site_setting:notification_emails")

    def test_lock_keys(self):
        assert entitlement_lock_key("user_1") == "entitlement_lock:user_1"
        assert popular_lock_key("product_slots") == "popular_lock:product_slots"
