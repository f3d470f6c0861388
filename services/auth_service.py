"""
Authentication service: login/registration, refresh-token rotation,
logout, and the forgot/reset password flows.

Refresh-token lineage: ISSUED -> CONSUMED (rotated into a new ISSUED),
REVOKED, or EXPIRED-AND-PURGED. A raw token value that left ISSUED is never
accepted again.
"""
from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from models.token_store import PasswordResetTokenStore, RefreshTokenStore
from models.user import User
from models.user_store import UserStore
from services.errors import (
    InternalError,
    InvalidCredentials,
    InvalidOrExpiredToken,
    RefreshTokenExpired,
    ReuseOrTamperDetected,
    Unauthorized,
)
from utils.security import (
    ACCESS,
    REFRESH,
    AccessClaims,
    CredentialHasher,
    ExpiredError,
    MalformedError,
    TokenCodec,
    TokenError,
    utcnow,
)

logger = logging.getLogger(__name__)

GENERIC_RESET_ACK = "If an account with that email exists, a password reset link has been sent."


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthResult:
    user: User
    access_token: str
    refresh_token: str


class AuthService:

    def __init__(self, storage, users: UserStore, refresh_tokens: RefreshTokenStore,
                 reset_tokens: PasswordResetTokenStore, hasher: CredentialHasher,
                 codec: TokenCodec, mailer):
        self.storage = storage
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.reset_tokens = reset_tokens
        self.hasher = hasher
        self.codec = codec
        self.mailer = mailer
        # compared against when the username is unknown so both failures cost one verify
        self._dummy_hash = hasher.hash(secrets.token_urlsafe(16))

    @classmethod
    def from_settings(cls, settings, storage, mailer,
                      clock: Callable[[], datetime] = utcnow) -> "AuthService":
        hasher = CredentialHasher(
            time_cost=settings.hash_time_cost,
            memory_cost=settings.hash_memory_cost,
            parallelism=settings.hash_parallelism,
            max_concurrency=settings.hash_max_concurrency,
        )
        return cls(
            storage=storage,
            users=UserStore(storage),
            refresh_tokens=RefreshTokenStore(storage, clock=clock),
            reset_tokens=PasswordResetTokenStore(storage, settings.password_reset_ttl, clock=clock),
            hasher=hasher,
            codec=TokenCodec(settings, clock=clock),
            mailer=mailer,
        )

    @contextmanager
    def _store_errors(self, operation: str):
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Store failure during %s", operation)
            raise InternalError() from exc

    def _issue_pair(self, user: User) -> TokenPair:
        expires_at = self.codec.expires_at(REFRESH)
        access_token = self.codec.sign_access(user.id, user.username)
        refresh_token = self.codec.sign_refresh(user.id)
        self.refresh_tokens.store(user.id, refresh_token, expires_at)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def register(self, username: str, email: str, password: str) -> AuthResult:
        """Create the account and log it in. Raises DuplicateError(field)."""
        password_hash = self.hasher.hash(password)
        with self._store_errors("register"):
            user = self.users.create(username, email, password_hash)
            pair = self._issue_pair(user)
        logger.info("User %s registered", user.id)
        return AuthResult(user, pair.access_token, pair.refresh_token)

    def login(self, username: str, password: str) -> AuthResult:
        with self._store_errors("login"):
            user = self.users.find_by_username(username)
            if user is None:
                self.hasher.verify(password, self._dummy_hash)
                logger.warning("Login failed: unknown username")
                raise InvalidCredentials()
            if not self.hasher.verify(password, user.password_hash):
                logger.warning("Login failed: wrong password for user %s", user.id)
                raise InvalidCredentials()
            pair = self._issue_pair(user)
        return AuthResult(user, pair.access_token, pair.refresh_token)

    def refresh(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token into a new access/refresh pair.

        The stored record is deleted before its expiry is checked, so a
        presented token always uses up its slot. A valid signature with no
        stored record means the token was already used or revoked: every
        refresh token of the subject is revoked.
        """
        try:
            claims = self.codec.verify(refresh_token, REFRESH)
        except ExpiredError:
            logger.warning("Refresh rejected: token signature expired")
            raise Unauthorized()
        except MalformedError as exc:
            logger.warning("Refresh rejected: %s", exc)
            raise Unauthorized()

        user_id = claims["sub"]
        with self._store_errors("refresh"):
            record = self.refresh_tokens.consume_if_valid(refresh_token, user_id)
            if record is None:
                logger.warning("Refresh token for user %s not found; possible replay, revoking all", user_id)
                self.refresh_tokens.revoke_all_for_user(user_id)
                raise ReuseOrTamperDetected()
            if self.refresh_tokens.is_expired(record):
                logger.warning("Used refresh token was expired for user %s; revoking all", user_id)
                self.refresh_tokens.revoke_all_for_user(user_id)
                raise RefreshTokenExpired()

            user = self.users.find_by_id(user_id)
            if user is None:
                logger.error("User %s not found after validating refresh token", user_id)
                raise Unauthorized()
            return self._issue_pair(user)

    def logout(self, refresh_token: str) -> None:
        with self._store_errors("logout"):
            revoked = self.refresh_tokens.revoke_one(refresh_token)
        logger.debug("Logout revoked=%s", revoked)

    def forgot_password(self, email: str) -> str:
        """Always returns GENERIC_RESET_ACK, whatever happens."""
        try:
            user = self.users.find_by_email(email)
            if user is None:
                logger.info("Password reset requested for unknown email")
            else:
                issued = self.reset_tokens.issue(user.id)
                self.mailer.send_password_reset(user.email, issued.raw_token)
        except Exception:
            logger.exception("Forgot password failed")
        return GENERIC_RESET_ACK

    def reset_password(self, token: str, new_password: str) -> None:
        """
        Consume the reset token, swap the password hash and revoke every
        refresh token of the user in one commit. Of two concurrent resets
        with the same token only the one that deleted the record succeeds.
        """
        new_hash = self.hasher.hash(new_password)
        with self._store_errors("reset_password"):
            with self.storage.atomic():
                record = self.reset_tokens.consume(token)
                if record is None:
                    raise InvalidOrExpiredToken()
                if self.reset_tokens.is_expired(record):
                    logger.warning("Password reset token for user %s has expired", record.user_id)
                    raise InvalidOrExpiredToken()
                user_id = record.user_id
                if not self.users.update_password_hash(user_id, new_hash):
                    logger.error("User %s vanished during password reset", user_id)
                    raise InvalidOrExpiredToken()
                self.refresh_tokens.revoke_all_for_user(user_id)
        logger.info("Password reset for user %s", user_id)

    def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        with self._store_errors("change_password"):
            user = self.users.find_by_id(user_id)
            if user is None or not self.hasher.verify(old_password, user.password_hash):
                logger.warning("Change password failed for user %s", user_id)
                raise InvalidCredentials()
            new_hash = self.hasher.hash(new_password)
            with self.storage.atomic():
                self.users.update_password_hash(user_id, new_hash)
                self.refresh_tokens.revoke_all_for_user(user_id)

    def verify_access_token(self, token: str) -> AccessClaims:
        try:
            claims = self.codec.verify(token, ACCESS)
        except TokenError as exc:
            logger.debug("Access token rejected: %s", exc)
            raise Unauthorized()
        username = claims.get("username")
        if not isinstance(username, str):
            logger.error("Access token verified but payload has no username")
            raise Unauthorized()
        return AccessClaims(subject_id=claims["sub"], username=username)

    def get_user(self, user_id: str) -> User | None:
        with self._store_errors("get_user"):
            return self.users.find_by_id(user_id)

    def purge_expired_tokens(self) -> dict:
        with self._store_errors("purge_expired_tokens"):
            return {
                "refresh_tokens": self.refresh_tokens.purge_expired(),
                "password_reset_tokens": self.reset_tokens.purge_expired(),
            }
