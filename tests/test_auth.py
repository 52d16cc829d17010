"""Tests for WebSocket token authentication."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from campuslink_backend.exceptions import WebSocketAuthError
from campuslink_backend.websocket.auth import (
    SESSION_PREFIX,
    Principal,
    RedisSessionAuthenticator,
    StaticTokenAuthenticator,
    create_authenticator,
    hash_token,
)


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.get = AsyncMock()
    client.expire = AsyncMock()
    return client


class TestStaticTokenAuthenticator:

    @pytest.mark.asyncio
    async def test_known_tokens(self):
        auth = StaticTokenAuthenticator({"t1": "alice", "t2": {"user_id": "carol", "role": "lecturer"}})
        assert await auth.authenticate("t1") == Principal(user_id="alice")
        assert await auth.authenticate("t2") == Principal(user_id="carol", role="lecturer")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "unknown"])
    async def test_rejected_tokens(self, token):
        auth = StaticTokenAuthenticator({"t1": "alice"})
        with pytest.raises(WebSocketAuthError) as exc_info:
            await auth.authenticate(token)
        assert exc_info.value.code == 4001


class TestRedisSessionAuthenticator:

    @pytest.mark.asyncio
    async def test_session_lookup_refreshes_ttl(self, redis_client):
        redis_client.get.return_value = json.dumps({"user_id": "alice", "role": "student"})
        auth = RedisSessionAuthenticator(session_ttl=60)

        with patch("campuslink_backend.websocket.auth.get_redis_client", AsyncMock(return_value=redis_client)):
            principal = await auth.authenticate("secret-token")

        key = f"{SESSION_PREFIX}{hash_token('secret-token')}"
        redis_client.get.assert_awaited_once_with(key)
        redis_client.expire.assert_awaited_once_with(key, 60)
        assert principal == Principal(user_id="alice", role="student")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stored", [None, "not json", json.dumps({"role": "student"})])
    async def test_missing_or_broken_session(self, redis_client, stored):
        redis_client.get.return_value = stored
        auth = RedisSessionAuthenticator()

        with patch("campuslink_backend.websocket.auth.get_redis_client", AsyncMock(return_value=redis_client)):
            with pytest.raises(WebSocketAuthError) as exc_info:
                await auth.authenticate("secret-token")

        assert exc_info.value.code == 4001
        redis_client.expire.assert_not_awaited()


def test_hash_token_is_sha256_hex():
    digest = hash_token("abc")
    assert len(digest) == 64
    assert digest == hash_token("abc")


def test_create_authenticator():
    assert isinstance(create_authenticator("redis"), RedisSessionAuthenticator)
    assert isinstance(create_authenticator("static"), StaticTokenAuthenticator)
    with pytest.raises(ValueError):
        create_authenticator("ldap")
