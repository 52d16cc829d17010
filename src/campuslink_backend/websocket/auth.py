"""
WebSocket authentication module.

Token issuance lives elsewhere; this module only resolves an opaque token
presented at connect time into a ``Principal``. Two resolvers are shipped:

1. ``RedisSessionAuthenticator`` - session tokens stored in Redis by the login
   service under ``ws_session:<sha256(token)>`` as JSON ``{"user_id", "role"}``
2. ``StaticTokenAuthenticator`` - a fixed token table (development and tests)
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Union

from campuslink_backend.exceptions import WebSocketAuthError
from campuslink_backend.redis_cache import get_redis_client
from campuslink_backend.settings import settings

logger = logging.getLogger(__name__)

SESSION_PREFIX = "ws_session:"

# Refreshed on every successful connect
SESSION_TTL = 60 * 60 * 24


@dataclass(frozen=True)
class Principal:
    """Authenticated identity behind a connection."""
    user_id: str
    role: Optional[str] = None


def hash_token(token: str) -> str:
    """SHA-256 hex digest, the form tokens are stored under."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenAuthenticator:
    """Resolves a token to a Principal or raises ``WebSocketAuthError``."""

    async def authenticate(self, token: Optional[str]) -> Principal:
        if not token:
            raise WebSocketAuthError(4001, "No token provided")
        return await self._authenticate(token)

    async def _authenticate(self, token: str) -> Principal:
        raise NotImplementedError


class StaticTokenAuthenticator(TokenAuthenticator):
    """
    Authenticate against a fixed token table.

    Values may be a user id string or a mapping with ``user_id`` and ``role``.
    """

    def __init__(self, tokens: Mapping[str, Union[str, Mapping[str, str]]]):
        self._tokens: Dict[str, Principal] = {}
        for token, entry in tokens.items():
            if isinstance(entry, str):
                self._tokens[token] = Principal(user_id=entry)
            else:
                self._tokens[token] = Principal(user_id=str(entry["user_id"]), role=entry.get("role"))

    async def _authenticate(self, token: str) -> Principal:
        principal = self._tokens.get(token)
        if principal is None:
            logger.warning("WebSocket auth failed: unknown static token")
            raise WebSocketAuthError(4001, "Invalid or expired token")
        return principal


class RedisSessionAuthenticator(TokenAuthenticator):
    """Authenticate using session tokens stored in Redis."""

    def __init__(self, session_ttl: int = SESSION_TTL):
        self._session_ttl = session_ttl

    async def _authenticate(self, token: str) -> Principal:
        redis_client = await get_redis_client()

        token_hash = hash_token(token)
        session_key = f"{SESSION_PREFIX}{token_hash}"

        session_data_raw = await redis_client.get(session_key)
        if not session_data_raw:
            logger.warning(f"WebSocket auth failed: session not found for token hash {token_hash[:8]}...")
            raise WebSocketAuthError(4001, "Invalid or expired token")

        try:
            session_data = json.loads(session_data_raw)
        except json.JSONDecodeError:
            logger.error("WebSocket auth failed: invalid session data format")
            raise WebSocketAuthError(4001, "Invalid session data")

        user_id = session_data.get("user_id") if isinstance(session_data, dict) else None
        if not user_id:
            raise WebSocketAuthError(4001, "Invalid session data")

        await redis_client.expire(session_key, self._session_ttl)

        logger.info(f"WebSocket session authentication successful for user {user_id}")
        return Principal(user_id=str(user_id), role=session_data.get("role"))


def create_authenticator(backend: Optional[str] = None) -> TokenAuthenticator:
    """Build the authenticator named by ``WS_AUTH_BACKEND``."""
    backend = (backend or settings.WS_AUTH_BACKEND).lower()
    if backend == "static":
        return StaticTokenAuthenticator(settings.WS_STATIC_TOKENS)
    if backend == "redis":
        return RedisSessionAuthenticator()
    raise ValueError(f"Unknown auth backend: {backend}")
