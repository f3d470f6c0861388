"""
security helpers:
- Argon2 password hashing via argon2-cffi, behind a concurrency bound
- JWT signing/verification via PyJWT with separate access and refresh keys
- SHA-256 digests used as lookup keys for high-entropy tokens at rest
"""
from __future__ import annotations

import hashlib
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Base class for codec failures."""


class ExpiredError(TokenError):
    pass


class MalformedError(TokenError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID)."""
    return str(uuid.uuid4())


def token_digest(raw_token: str) -> str:
    """Deterministic digest of a token value; the stored lookup key."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class CredentialHasher:
    """
    Salted argon2 hashing with a tunable work factor.

    At most ``max_concurrency`` hash/verify calls run at once in this
    process; further callers block until a slot frees up.
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536,
                 parallelism: int = 4, max_concurrency: int = 4):
        self._ph = PasswordHasher(
            time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism
        )
        self._slots = threading.BoundedSemaphore(max_concurrency)

    def hash(self, secret: str) -> str:
        with self._slots:
            return self._ph.hash(secret)

    def verify(self, secret: str, hashed: str | None) -> bool:
        """True if secret matches; False for mismatch or an unparseable hash."""
        if not hashed:
            return False
        with self._slots:
            try:
                return self._ph.verify(hashed, secret)
            except (VerifyMismatchError, VerificationError, InvalidHashError):
                return False


@dataclass(frozen=True)
class AccessClaims:
    subject_id: str
    username: str


class TokenCodec:
    """Signs and verifies access/refresh JWTs, each role with its own key."""

    def __init__(self, settings, clock: Callable[[], datetime] = utcnow):
        self._settings = settings
        self._clock = clock
        self._keys = {
            ACCESS: settings.access_token_secret,
            REFRESH: settings.refresh_token_secret,
        }
        self._ttls = {
            ACCESS: settings.access_token_ttl,
            REFRESH: settings.refresh_token_ttl,
        }

    def _encode(self, role: str, claims: Dict[str, Any]) -> str:
        now = self._clock()
        payload = {
            "iss": self._settings.jwt_issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttls[role]).timestamp()),
            "type": role,
            # keeps two tokens minted in the same second distinct
            "jti": generate_jti(),
            **claims,
        }
        return jwt.encode(payload, self._keys[role], algorithm=self._settings.jwt_algorithm)

    def sign_access(self, subject_id: str, username: str) -> str:
        return self._encode(ACCESS, {"sub": str(subject_id), "username": username})

    def sign_refresh(self, subject_id: str) -> str:
        return self._encode(REFRESH, {"sub": str(subject_id)})

    def expires_at(self, role: str) -> datetime:
        """Expiry a token of this role would get if signed now."""
        return self._clock() + self._ttls[role]

    def verify(self, token: str, role: str) -> Dict[str, Any]:
        """
        Decode and validate a JWT for the given role.
        Raises ExpiredError past its TTL, MalformedError for anything else wrong.
        Expiry is judged against this codec's clock, not the wall clock.
        """
        if role not in self._keys:
            raise ValueError(f"unknown token role: {role}")
        try:
            decoded = jwt.decode(
                token,
                self._keys[role],
                algorithms=[self._settings.jwt_algorithm],
                issuer=self._settings.jwt_issuer,
                options={
                    "require": ["exp", "sub", "type"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as exc:
            raise MalformedError(f"Invalid token: {exc}") from exc

        exp = decoded.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise MalformedError("Token expiry is not a timestamp")
        if exp <= self._clock().timestamp():
            raise ExpiredError("Token expired")
        if decoded.get("type") != role:
            raise MalformedError("Wrong token type")
        if not isinstance(decoded.get("sub"), str) or not decoded["sub"]:
            raise MalformedError("Token subject missing")
        return decoded
