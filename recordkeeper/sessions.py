"""
Signed session tokens and the revocation set used for logout.

Tokens are Fernet tokens (AES-CBC with an HMAC-SHA256 signature and an
embedded issue timestamp) carrying the identity and its roles. Expiry is not
tracked anywhere: a token is expired when verification finds it older than
the configured lifetime.

The default revocation set lives in process memory and is lost on restart.
``RedisRevocationSet`` keeps revocations across restarts for the token
lifetime; it must be enabled explicitly since it changes logout semantics.
"""

from __future__ import annotations

import base64
import hashlib
import json
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Protocol, Set, Tuple

import redis
from cryptography.fernet import Fernet, InvalidToken
from redis import exceptions as redis_exceptions

from recordkeeper.errors import AuthenticationError, InfrastructureError, ValidationError

TOKEN_TTL = timedelta(days=7)


class RevocationStore(Protocol):
    def add(self, token: str, ttl_seconds: int) -> None:
        ...

    def contains(self, token: str) -> bool:
        ...


class InMemoryRevocationSet:
    """Process-wide, append-only set of revoked tokens."""

    def __init__(self):
        self._tokens: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, token: str, ttl_seconds: int) -> None:
        with self._lock:
            self._tokens.add(token)

    def contains(self, token: str) -> bool:
        with self._lock:
            return token in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


class RedisRevocationSet:
    """Revocations stored in Redis, each expiring with the token it names."""

    def __init__(self, url: str, key_prefix: str = "recordkeeper:revoked:"):
        self.url = url
        self.key_prefix = key_prefix
        self.client = redis.Redis.from_url(url)

    def _key(self, token: str) -> str:
        return self.key_prefix + hashlib.sha256(token.encode("utf-8")).hexdigest()

    def add(self, token: str, ttl_seconds: int) -> None:
        try:
            self.client.set(self._key(token), 1, ex=ttl_seconds)
        except redis_exceptions.RedisError as exc:
            raise InfrastructureError(f"Revocation store unavailable: {exc}") from exc

    def contains(self, token: str) -> bool:
        try:
            return bool(self.client.exists(self._key(token)))
        except redis_exceptions.RedisError as exc:
            raise InfrastructureError(f"Revocation store unavailable: {exc}") from exc


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    max_age: int


@dataclass(frozen=True)
class SessionClaims:
    identity: str
    roles: Tuple[str, ...]
    issued_at: datetime
    expires_at: datetime


def derive_key(secret: str) -> bytes:
    """Turn an arbitrary secret into a Fernet key."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class SessionTokenService:
    def __init__(
        self,
        secret: str,
        revocations: Optional[RevocationStore] = None,
        *,
        ttl: timedelta = TOKEN_TTL,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("A token secret is required")
        self._fernet = Fernet(derive_key(secret))
        self.revocations = revocations if revocations is not None else InMemoryRevocationSet()
        self.ttl_seconds = int(ttl.total_seconds())
        self._clock = clock

    def issue(self, identity: str, roles: Iterable[str]) -> IssuedToken:
        if not identity:
            raise ValidationError("A session identity is required")
        now = int(self._clock())
        payload = json.dumps({"sub": identity, "roles": list(roles)}).encode("utf-8")
        token = self._fernet.encrypt_at_time(payload, now).decode("ascii")
        return IssuedToken(
            token=token,
            expires_at=_utc(now + self.ttl_seconds),
            max_age=self.ttl_seconds,
        )

    def verify(self, token: str) -> SessionClaims:
        """Return the claims of a valid token, or raise ``AuthenticationError``."""
        if not token:
            raise AuthenticationError("You are not logged in")
        if self.is_revoked(token):
            raise AuthenticationError("Session has been revoked")
        try:
            payload = self._fernet.decrypt_at_time(
                token, ttl=self.ttl_seconds, current_time=int(self._clock())
            )
            issued_at = self._fernet.extract_timestamp(token)
        except (InvalidToken, ValueError, TypeError) as exc:
            raise AuthenticationError("Invalid or expired session token") from exc
        claims = json.loads(payload)
        return SessionClaims(
            identity=claims["sub"],
            roles=tuple(claims.get("roles") or ()),
            issued_at=_utc(issued_at),
            expires_at=_utc(issued_at + self.ttl_seconds),
        )

    def revoke(self, token: str) -> None:
        if not token:
            raise ValidationError("A token is required")
        self.revocations.add(token, self.ttl_seconds)

    def is_revoked(self, token: str) -> bool:
        return self.revocations.contains(token)


def _utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
