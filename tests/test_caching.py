"""Tests for Redis caching, rate limiting and principal resolution."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from clinichub.core.exceptions import Forbidden, Unauthorized
from clinichub.core.redis_client import CacheManager, RateLimiter, user_channel
from clinichub.core.security import create_access_token, decode_access_token
from clinichub.dependencies import principal_from_token, resolve_principal
from clinichub.schemas.users import Role
from clinichub.services.user_service import UserService


def test_cache_manager_get_json():
    """Test CacheManager get_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    assert cache_manager.get_json("test_key") is None
    mock_redis.get.assert_called_once_with("test_key")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = '{"name": "Test", "value": 123}'
    assert cache_manager.get_json("test_key") == {"name": "Test", "value": 123}


def test_cache_manager_set_json():
    """Test CacheManager set_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.set_json("test_key", {"id": uuid4()}) is True
    mock_redis.set.assert_called_once()

    mock_redis.reset_mock()
    assert cache_manager.set_json("test_key", {"value": 1}, ttl=300) is True
    mock_redis.setex.assert_called_once_with("test_key", 300, '{"value": 1}')


def test_cache_manager_survives_redis_errors():
    """Test that cache failures degrade to misses."""
    mock_redis = MagicMock()
    mock_redis.get.side_effect = ConnectionError("down")
    mock_redis.set.side_effect = ConnectionError("down")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.get_json("key") is None
    assert cache_manager.set_json("key", {"a": 1}) is False


def test_rate_limiter_counts_within_window():
    """Test the fixed-window counter."""
    mock_redis = MagicMock()
    limiter = RateLimiter(mock_redis)

    mock_redis.get.return_value = None
    assert limiter.check_rate_limit("rate", limit=2, window=60) is True
    mock_redis.setex.assert_called_once_with("rate", 60, 1)

    mock_redis.get.return_value = "1"
    assert limiter.check_rate_limit("rate", limit=2) is True
    mock_redis.incr.assert_called_once_with("rate")

    mock_redis.get.return_value = "2"
    assert limiter.check_rate_limit("rate", limit=2) is False


def test_rate_limiter_fails_open():
    """Test that Redis errors never block requests."""
    mock_redis = MagicMock()
    mock_redis.get.side_effect = ConnectionError("down")
    assert RateLimiter(mock_redis).check_rate_limit("rate", limit=1) is True


def test_user_channel_name():
    """Test the pub/sub channel naming."""
    user_id = uuid4()
    assert user_channel(user_id) == f"user:{user_id}"


def _user_row(role: str = "doctor", is_active: bool = True) -> dict:
    now = datetime.now(UTC)
    return {
        "id": uuid4(),
        "email": "house@example.com",
        "first_name": "Gregory",
        "last_name": "House",
        "phone": None,
        "role": role,
        "specialization": "Diagnostics",
        "is_active": is_active,
        "created_at": now,
        "updated_at": now,
    }


def _session_returning(row: dict | None) -> MagicMock:
    result = MagicMock()
    result.mappings.return_value.first.return_value = row
    db = MagicMock()
    db.execute = AsyncMock(return_value=result)
    return db


@pytest.mark.asyncio
async def test_user_lookup_is_cached():
    """Test that a user read from the database is cached with a TTL."""
    row = _user_row()
    db = _session_returning(row)
    cache = MagicMock()
    cache.get_json.return_value = None

    user = await UserService(db, cache).get_user_by_id(row["id"])

    assert user.role is Role.DOCTOR
    key, value = cache.set_json.call_args.args
    assert key == f"user:profile:{row['id']}"
    assert value["email"] == "house@example.com"
    assert cache.set_json.call_args.kwargs["ttl"] == 1800


@pytest.mark.asyncio
async def test_cached_user_skips_database():
    """Test that a cache hit does not query the database."""
    row = _user_row()
    db = _session_returning(None)
    cache = MagicMock()
    cache.get_json.return_value = json.loads(json.dumps(row, default=str))

    user = await UserService(db, cache).get_user_by_id(row["id"])

    assert user.id == row["id"]
    db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_user_is_not_cached():
    """Test that unknown users are not cached."""
    cache = MagicMock()
    cache.get_json.return_value = None

    assert await UserService(_session_returning(None), cache).get_user_by_id(uuid4()) is None
    cache.set_json.assert_not_called()


def test_token_round_trip():
    """Test that issued tokens resolve to their subject."""
    user_id = uuid4()
    token = create_access_token({"sub": str(user_id)})

    assert decode_access_token(token)["type"] == "access"
    assert principal_from_token(token) == user_id


@pytest.mark.parametrize("token", [None, "", "garbage"])
def test_invalid_tokens_are_unauthorized(token):
    """Test rejection of missing and malformed tokens."""
    with pytest.raises(Unauthorized):
        principal_from_token(token)


def test_token_with_bad_subject():
    """Test rejection of a token whose subject is not a user ID."""
    with pytest.raises(Unauthorized):
        principal_from_token(create_access_token({"sub": "not-a-uuid"}))


@pytest.mark.asyncio
async def test_resolve_principal():
    """Test principal resolution for active, inactive and unknown users."""
    row = _user_row(role="patient")
    principal = await resolve_principal(row["id"], UserService(_session_returning(row)))
    assert principal.id == row["id"]
    assert principal.role is Role.PATIENT

    inactive = _user_row(is_active=False)
    with pytest.raises(Forbidden):
        await resolve_principal(inactive["id"], UserService(_session_returning(inactive)))

    with pytest.raises(Unauthorized):
        await resolve_principal(uuid4(), UserService(_session_returning(None)))
