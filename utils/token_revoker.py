"""
Token revocation store.

Two kinds of entries:
- a literal token string, revoked for a fixed retention window (24h by default)
- a per-user sentinel ``user_<id>_all`` holding the revocation instant; any token
  for that user issued before the instant is rejected. Tokens issued at or
  after it pass, so a user who was just downgraded can keep working with a fresh token.

The in-memory store is process-local and lost on restart. The Redis store is
shared between instances and falls back to memory when Redis errors.
"""
import hashlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis

from config.plans import LONGEST_PLAN_DAYS, SECONDS_PER_DAY
from config.settings import settings

logger = logging.getLogger(__name__)

TOKEN_RETENTION_SECONDS = 24 * 3600
# No token for a user can outlive the longest plan, so neither can the sentinel
USER_RETENTION_SECONDS = LONGEST_PLAN_DAYS * SECONDS_PER_DAY


def user_sentinel(user_id: str) -> str:
    return f"user_{user_id}_all"


class TokenRevoker(ABC):
    """Revocation contract shared by every backend."""

    @abstractmethod
    def revoke(self, token: str, ttl_seconds: Optional[int] = None) -> None:
        """Reject this exact token until the retention window passes."""

    @abstractmethod
    def revoke_all_for_user(self, user_id: str) -> float:
        """Reject every token issued to the user up to now. Returns the cutoff instant."""

    @abstractmethod
    def is_revoked(self, token: str) -> bool:
        ...

    @abstractmethod
    def is_user_revoked(self, user_id: str, issued_at: Optional[float] = None) -> bool:
        """
        True if the user has a live sentinel and, when ``issued_at`` is given,
        the token was issued before the revocation instant.
        """

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop lapsed entries. Returns how many were removed."""


class InMemoryTokenRevoker(TokenRevoker):
    """Single-instance store: key -> (value, expires_at)."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, float]] = {}

    def _get(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def revoke(self, token: str, ttl_seconds: Optional[int] = None) -> None:
        now = self._clock()
        self._entries[token] = (now, now + (ttl_seconds or TOKEN_RETENTION_SECONDS))

    def revoke_all_for_user(self, user_id: str) -> float:
        now = self._clock()
        self._entries[user_sentinel(user_id)] = (now, now + USER_RETENTION_SECONDS)
        logger.info(f"Revoked all tokens issued to user {user_id} before {now:.3f}")
        return now

    def is_revoked(self, token: str) -> bool:
        return self._get(token) is not None

    def is_user_revoked(self, user_id: str, issued_at: Optional[float] = None) -> bool:
        cutoff = self._get(user_sentinel(user_id))
        if cutoff is None:
            return False
        if issued_at is None:
            return True
        return float(issued_at) < cutoff

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTokenRevoker(TokenRevoker):
    """
    Shared store backed by Redis key expiry.

    Token keys hold a digest rather than the token itself. Every Redis failure
    is logged and the operation is replayed against the in-memory fallback,
    which is also consulted on every check.
    """

    KEY_PREFIX = "revoked:"

    def __init__(self, client, fallback: Optional[InMemoryTokenRevoker] = None,
                 clock: Callable[[], float] = time.time):
        self._client = client
        self._clock = clock
        self._fallback = fallback if fallback is not None else InMemoryTokenRevoker(clock=clock)

    def _token_key(self, token: str) -> str:
        return self.KEY_PREFIX + "token:" + hashlib.sha256(token.encode("utf-8")).hexdigest()

    def _user_key(self, user_id: str) -> str:
        return self.KEY_PREFIX + user_sentinel(user_id)

    def revoke(self, token: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or TOKEN_RETENTION_SECONDS
        try:
            self._client.setex(self._token_key(token), ttl, "1")
        except redis.RedisError as e:
            logger.warning(f"Redis revoke failed: {e}. Falling back to in-memory revocation.")
            self._fallback.revoke(token, ttl)

    def revoke_all_for_user(self, user_id: str) -> float:
        now = self._clock()
        try:
            self._client.setex(self._user_key(user_id), USER_RETENTION_SECONDS, repr(now))
            logger.info(f"Revoked all tokens issued to user {user_id} before {now:.3f}")
        except redis.RedisError as e:
            logger.warning(f"Redis user revocation failed: {e}. Falling back to in-memory revocation.")
            now = self._fallback.revoke_all_for_user(user_id)
        return now

    def is_revoked(self, token: str) -> bool:
        try:
            if self._client.exists(self._token_key(token)):
                return True
        except redis.RedisError as e:
            logger.warning(f"Redis revocation check failed: {e}. Using in-memory revocation only.")
        return self._fallback.is_revoked(token)

    def is_user_revoked(self, user_id: str, issued_at: Optional[float] = None) -> bool:
        try:
            raw = self._client.get(self._user_key(user_id))
            if raw is not None:
                if issued_at is None or float(issued_at) < float(raw):
                    return True
        except redis.RedisError as e:
            logger.warning(f"Redis user revocation check failed: {e}. Using in-memory revocation only.")
        return self._fallback.is_user_revoked(user_id, issued_at)

    def purge_expired(self) -> int:
        # Redis expires its own keys
        return self._fallback.purge_expired()


_revoker: Optional[TokenRevoker] = None


def build_token_revoker() -> TokenRevoker:
    """Pick the backend from settings: Redis when configured and reachable, memory otherwise."""
    if settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url, decode_responses=True)
            client.ping()
            logger.info("Redis connected successfully for token revocation")
            return RedisTokenRevoker(client)
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-memory token revocation.")
    else:
        logger.info("REDIS_URL not set. Using in-memory token revocation.")
    return InMemoryTokenRevoker()


def get_token_revoker() -> TokenRevoker:
    """FastAPI dependency returning the process-wide revocation store."""
    global _revoker
    if _revoker is None:
        _revoker = build_token_revoker()
    return _revoker
