"""
Persistent token stores.

Both stores keep only SHA-256 digests of the raw token values. Callers hand
in raw tokens and never see the digests.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from models.password_reset_token import PasswordResetToken
from models.refresh_token import RefreshToken
from utils.security import token_digest, utcnow

logger = logging.getLogger(__name__)

RESET_TOKEN_BYTES = 32


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RefreshTokenStore:
    """Stored halves of issued refresh tokens."""

    def __init__(self, storage, clock: Callable[[], datetime] = utcnow):
        self._storage = storage
        self._clock = clock

    def store(self, user_id: str, raw_token: str, expires_at: datetime) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            hashed_token=token_digest(raw_token),
            expires_at=expires_at,
        )
        self._storage.new(record)
        self._storage.save()
        return record

    def consume_if_valid(self, raw_token: str, user_id: str) -> RefreshToken | None:
        """
        Delete the record matching raw_token and user_id and return it.

        The row is gone before the caller looks at its expiry. Of two
        concurrent callers holding the same token only the one whose DELETE
        affected the row gets it back; the other sees None.
        """
        session = self._storage.get_session()
        record = (
            session.query(RefreshToken)
            .filter(RefreshToken.hashed_token == token_digest(raw_token),
                    RefreshToken.user_id == user_id)
            .first()
        )
        if record is None:
            return None
        session.expunge(record)
        deleted = (
            session.query(RefreshToken)
            .filter(RefreshToken.id == record.id)
            .delete(synchronize_session=False)
        )
        self._storage.save()
        if deleted != 1:
            logger.warning("Refresh token %s was consumed concurrently", record.id)
            return None
        return record

    def is_expired(self, record: RefreshToken) -> bool:
        return self._clock() > as_utc(record.expires_at)

    def revoke_one(self, raw_token: str) -> bool:
        session = self._storage.get_session()
        deleted = (
            session.query(RefreshToken)
            .filter(RefreshToken.hashed_token == token_digest(raw_token))
            .delete(synchronize_session=False)
        )
        self._storage.save()
        return deleted > 0

    def revoke_all_for_user(self, user_id: str) -> int:
        session = self._storage.get_session()
        deleted = (
            session.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self._storage.save()
        logger.info("All refresh tokens revoked for user %s (%d removed)", user_id, deleted)
        return deleted

    def purge_expired(self) -> int:
        session = self._storage.get_session()
        deleted = (
            session.query(RefreshToken)
            .filter(RefreshToken.expires_at < self._clock())
            .delete(synchronize_session=False)
        )
        self._storage.save()
        return deleted


@dataclass(frozen=True)
class IssuedResetToken:
    raw_token: str
    expires_at: datetime


class PasswordResetTokenStore:
    """Single-use reset tokens; issuing one replaces any earlier ones for the user."""

    def __init__(self, storage, ttl: timedelta, clock: Callable[[], datetime] = utcnow):
        self._storage = storage
        self._ttl = ttl
        self._clock = clock

    def issue(self, user_id: str) -> IssuedResetToken:
        raw_token = secrets.token_urlsafe(RESET_TOKEN_BYTES)
        expires_at = self._clock() + self._ttl

        session = self._storage.get_session()
        session.query(PasswordResetToken).filter(
            PasswordResetToken.user_id == user_id
        ).delete(synchronize_session=False)
        self._storage.new(PasswordResetToken(
            user_id=user_id,
            hashed_token=token_digest(raw_token),
            expires_at=expires_at,
        ))
        self._storage.save()
        return IssuedResetToken(raw_token=raw_token, expires_at=expires_at)

    def verify(self, raw_token: str) -> PasswordResetToken | None:
        """Live record for raw_token, or None whether it is unknown or expired."""
        if not raw_token:
            return None
        session = self._storage.get_session()
        record = (
            session.query(PasswordResetToken)
            .filter(PasswordResetToken.hashed_token == token_digest(raw_token))
            .first()
        )
        if record is None:
            logger.warning("Password reset token not found")
            return None
        if self.is_expired(record):
            logger.warning("Password reset token for user %s has expired", record.user_id)
            return None
        return record

    def consume(self, raw_token: str) -> PasswordResetToken | None:
        """
        Delete the record for raw_token and return it, expired or not.

        Same first-deleter-wins rule as refresh tokens: a concurrent caller
        holding the same token whose DELETE matched nothing gets None.
        Callers check is_expired on the returned record.
        """
        if not raw_token:
            return None
        session = self._storage.get_session()
        record = (
            session.query(PasswordResetToken)
            .filter(PasswordResetToken.hashed_token == token_digest(raw_token))
            .first()
        )
        if record is None:
            logger.warning("Password reset token not found")
            return None
        session.expunge(record)
        deleted = (
            session.query(PasswordResetToken)
            .filter(PasswordResetToken.id == record.id)
            .delete(synchronize_session=False)
        )
        self._storage.save()
        if deleted != 1:
            logger.warning("Password reset token %s was consumed concurrently", record.id)
            return None
        return record

    def is_expired(self, record: PasswordResetToken) -> bool:
        return self._clock() > as_utc(record.expires_at)

    def delete(self, record: PasswordResetToken) -> bool:
        session = self._storage.get_session()
        deleted = (
            session.query(PasswordResetToken)
            .filter(PasswordResetToken.id == record.id)
            .delete(synchronize_session=False)
        )
        self._storage.save()
        return deleted > 0

    def purge_expired(self) -> int:
        session = self._storage.get_session()
        deleted = (
            session.query(PasswordResetToken)
            .filter(PasswordResetToken.expires_at < self._clock())
            .delete(synchronize_session=False)
        )
        self._storage.save()
        return deleted
