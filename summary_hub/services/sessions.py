"""Admin credential check and expiring session tokens."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional, Protocol


LOGGER = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 240_000
TOKEN_BYTES = 32


def hash_password(
    password: str,
    *,
    salt: Optional[bytes] = None,
    iterations: int = DEFAULT_ITERATIONS,
) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>`` for *password*."""

    salt = salt if salt is not None else secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
        if scheme != HASH_SCHEME:
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        LOGGER.error("Configured admin password hash is malformed")
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(candidate, expected)


class SessionStore(Protocol):
    """Storage for admin session tokens."""

    def create(self) -> str:
        """Mint and remember a new token."""

    def validate(self, token: str) -> bool:
        """Return ``True`` while *token* is known and not expired."""

    def revoke(self, token: str) -> bool:
        """Forget *token*; ``True`` if it was known."""

    def sweep_expired(self) -> int:
        """Drop expired tokens and return how many were removed."""


class InMemorySessionStore:
    """Process-wide token map with enforced expiry."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self) -> str:
        token = secrets.token_urlsafe(TOKEN_BYTES)
        with self._lock:
            self._sessions[token] = self._clock() + self._ttl
        return token

    def validate(self, token: str) -> bool:
        if not token:
            return False
        with self._lock:
            expires_at = self._sessions.get(token)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._sessions[token]
                return False
            return True

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [token for token, expires_at in self._sessions.items() if expires_at <= now]
            for token in expired:
                del self._sessions[token]
        if expired:
            LOGGER.debug("Swept %s expired admin session(s)", len(expired))
        return len(expired)


class AdminGuard:
    """Password login producing session tokens for admin-only routes."""

    def __init__(self, password_hash: str, sessions: SessionStore) -> None:
        self._password_hash = password_hash
        self._sessions = sessions
        if not password_hash:
            LOGGER.warning("No admin password configured; admin login is disabled")

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    def login(self, password: str) -> Optional[str]:
        if not self._password_hash or not password:
            return None
        if not verify_password(password, self._password_hash):
            LOGGER.warning("Rejected admin login attempt")
            return None
        self._sessions.sweep_expired()
        token = self._sessions.create()
        LOGGER.info("Admin session opened")
        return token

    def authorize(self, token: Optional[str]) -> bool:
        return bool(token) and self._sessions.validate(token)

    def logout(self, token: Optional[str]) -> bool:
        if not token:
            return False
        return self._sessions.revoke(token)


__all__ = [
    "AdminGuard",
    "InMemorySessionStore",
    "SessionStore",
    "hash_password",
    "verify_password",
]
