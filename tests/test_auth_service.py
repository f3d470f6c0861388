"""Tests for the session flows in AuthService."""

import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from models.db_storage import DBStorage
from models.refresh_token import RefreshToken
from services.auth_service import GENERIC_RESET_ACK, AuthService
from services.errors import (
    AuthError,
    DuplicateError,
    InternalError,
    InvalidCredentials,
    InvalidOrExpiredToken,
    RefreshTokenExpired,
    ReuseOrTamperDetected,
    Unauthorized,
)
from tests.conftest import RecordingMailer
from utils.security import utcnow


def _store_failure(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestRegisterAndLogin:

    def test_register_returns_user_and_usable_tokens(self, auth_service, registered):
        claims = auth_service.verify_access_token(registered.access_token)

        assert registered.user.username == "alice"
        assert claims.subject_id == registered.user.id
        assert claims.username == "alice"
        assert auth_service.refresh(registered.refresh_token).access_token

    def test_register_stores_a_password_hash(self, auth_service, registered):
        assert registered.user.password_hash != "CorrectHorse1"
        assert auth_service.hasher.verify("CorrectHorse1", registered.user.password_hash)

    def test_register_duplicate_email(self, auth_service, registered):
        with pytest.raises(DuplicateError) as exc:
            auth_service.register("alice2", "alice@example.com", "CorrectHorse1")
        assert exc.value.field == "email"

    def test_register_duplicate_username(self, auth_service, registered):
        with pytest.raises(DuplicateError) as exc:
            auth_service.register("alice", "other@example.com", "CorrectHorse1")
        assert exc.value.field == "username"

    def test_login_succeeds_with_correct_password(self, auth_service, registered):
        result = auth_service.login("alice", "CorrectHorse1")

        assert result.user.id == registered.user.id
        assert auth_service.verify_access_token(result.access_token).username == "alice"

    def test_login_failures_are_indistinguishable(self, auth_service, registered):
        with pytest.raises(InvalidCredentials) as wrong_password:
            auth_service.login("alice", "not-the-password")
        with pytest.raises(InvalidCredentials) as unknown_user:
            auth_service.login("mallory", "CorrectHorse1")

        assert wrong_password.value.message == unknown_user.value.message
        assert wrong_password.value.status == unknown_user.value.status == 401

    def test_store_failure_surfaces_as_internal_error(self, auth_service, registered, monkeypatch):
        monkeypatch.setattr(auth_service.users, "find_by_username", _store_failure)

        with pytest.raises(InternalError):
            auth_service.login("alice", "CorrectHorse1")


class TestRefresh:

    def test_refresh_rotates_the_token(self, auth_service, registered):
        pair = auth_service.refresh(registered.refresh_token)

        assert pair.refresh_token != registered.refresh_token
        assert auth_service.verify_access_token(pair.access_token).subject_id == registered.user.id

    def test_replayed_token_fails_and_revokes_the_lineage(self, auth_service, registered):
        rotated = auth_service.refresh(registered.refresh_token)

        with pytest.raises(ReuseOrTamperDetected):
            auth_service.refresh(registered.refresh_token)
        with pytest.raises(Unauthorized):
            auth_service.refresh(rotated.refresh_token)

    def test_replay_revokes_other_sessions_of_the_user(self, auth_service, registered):
        other_session = auth_service.login("alice", "CorrectHorse1")
        auth_service.refresh(registered.refresh_token)

        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.refresh_token)
        with pytest.raises(Unauthorized):
            auth_service.refresh(other_session.refresh_token)

    def test_losing_a_concurrent_rotation_revokes_the_subject(self, db, auth_service, registered,
                                                              competing_consumer):
        # a second live session for alice and an unrelated user
        auth_service.login("alice", "CorrectHorse1")
        bob = auth_service.register("bob", "bob@example.com", "CorrectHorse1")

        with pytest.raises(ReuseOrTamperDetected):
            auth_service.refresh(registered.refresh_token)

        assert len(competing_consumer) == 1
        session = db.get_session()
        assert session.query(RefreshToken).filter_by(user_id=registered.user.id).count() == 0
        assert session.query(RefreshToken).filter_by(user_id=bob.user.id).count() == 1

    def test_replay_does_not_touch_other_users(self, auth_service, registered):
        bob = auth_service.register("bob", "bob@example.com", "CorrectHorse1")
        auth_service.refresh(registered.refresh_token)

        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.refresh_token)
        assert auth_service.refresh(bob.refresh_token).refresh_token

    def test_expired_stored_record_is_consumed_and_revokes_all(self, auth_service, registered):
        user_id = registered.user.id
        stale = auth_service.codec.sign_refresh(user_id)
        auth_service.refresh_tokens.store(user_id, stale, utcnow() - timedelta(seconds=1))

        with pytest.raises(RefreshTokenExpired):
            auth_service.refresh(stale)
        # the stale slot is gone and so is the live session
        with pytest.raises(ReuseOrTamperDetected):
            auth_service.refresh(stale)
        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.refresh_token)

    def test_signature_expired_token_is_rejected(self, settings, auth_service, registered):
        from utils.security import TokenCodec

        old = TokenCodec(settings, clock=lambda: utcnow() - timedelta(days=30))

        with pytest.raises(Unauthorized):
            auth_service.refresh(old.sign_refresh(registered.user.id))

    @pytest.mark.parametrize("token", ["garbage", ""])
    def test_malformed_token_is_rejected(self, auth_service, token):
        with pytest.raises(Unauthorized):
            auth_service.refresh(token)

    def test_access_token_cannot_be_used_to_refresh(self, auth_service, registered):
        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.access_token)
        # nothing was consumed
        assert auth_service.refresh(registered.refresh_token).refresh_token

    def test_unauthorized_variants_look_the_same(self):
        assert ReuseOrTamperDetected().message == Unauthorized().message
        assert RefreshTokenExpired().message == Unauthorized().message
        assert ReuseOrTamperDetected().error == Unauthorized().error


class TestLogout:

    def test_logout_revokes_refresh_token(self, auth_service, registered):
        auth_service.logout(registered.refresh_token)

        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.refresh_token)

    def test_logout_is_idempotent(self, auth_service, registered):
        assert auth_service.logout(registered.refresh_token) is None
        assert auth_service.logout(registered.refresh_token) is None
        assert auth_service.logout("never-issued") is None


class TestForgotPassword:

    def test_known_email_sends_a_reset_token(self, auth_service, registered, mailer):
        assert auth_service.forgot_password("alice@example.com") == GENERIC_RESET_ACK
        assert mailer.sent[0][0] == "alice@example.com"

    def test_same_answer_for_unknown_known_and_failing(self, auth_service, registered, mailer, monkeypatch):
        unknown = auth_service.forgot_password("nobody@example.com")
        known = auth_service.forgot_password("alice@example.com")
        monkeypatch.setattr(auth_service.users, "find_by_email", _store_failure)
        failing = auth_service.forgot_password("alice@example.com")

        assert unknown == known == failing == GENERIC_RESET_ACK
        assert len(mailer.sent) == 1

    def test_mailer_failure_still_acknowledges(self, auth_service, registered, mailer, monkeypatch):
        def broken(*args):
            raise OSError("connection refused")

        monkeypatch.setattr(mailer, "send_password_reset", broken)

        assert auth_service.forgot_password("alice@example.com") == GENERIC_RESET_ACK

    def test_new_request_invalidates_previous_token(self, auth_service, registered, mailer):
        auth_service.forgot_password("alice@example.com")
        first = mailer.last_token
        auth_service.forgot_password("alice@example.com")

        assert auth_service.reset_tokens.verify(first) is None
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(first, "BrandNewPass1")


class TestResetPassword:

    def test_reset_logs_out_everywhere_and_swaps_password(self, auth_service, registered, mailer):
        second_session = auth_service.login("alice", "CorrectHorse1")
        auth_service.forgot_password("alice@example.com")

        auth_service.reset_password(mailer.last_token, "BrandNewPass1")

        for old in (registered.refresh_token, second_session.refresh_token):
            with pytest.raises(Unauthorized):
                auth_service.refresh(old)
        assert auth_service.login("alice", "BrandNewPass1").access_token
        with pytest.raises(InvalidCredentials):
            auth_service.login("alice", "CorrectHorse1")

    def test_reset_token_is_single_use(self, auth_service, registered, mailer):
        auth_service.forgot_password("alice@example.com")
        token = mailer.last_token
        auth_service.reset_password(token, "BrandNewPass1")

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(token, "AnotherPass1")

    def test_losing_a_concurrent_reset_changes_nothing(self, auth_service, registered, mailer,
                                                       competing_consumer):
        auth_service.forgot_password("alice@example.com")

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(mailer.last_token, "BrandNewPass1")

        assert len(competing_consumer) == 1
        assert auth_service.login("alice", "CorrectHorse1").access_token
        assert auth_service.refresh(registered.refresh_token).refresh_token

    def test_reset_is_all_or_nothing(self, auth_service, registered, mailer, monkeypatch):
        auth_service.forgot_password("alice@example.com")
        token = mailer.last_token

        with monkeypatch.context() as patch:
            patch.setattr(auth_service.refresh_tokens, "revoke_all_for_user", _store_failure)
            with pytest.raises(InternalError):
                auth_service.reset_password(token, "BrandNewPass1")

        # password untouched, token still usable, sessions still alive
        assert auth_service.login("alice", "CorrectHorse1").access_token
        auth_service.reset_password(token, "BrandNewPass1")
        assert auth_service.login("alice", "BrandNewPass1").access_token
        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.refresh_token)

    def test_concurrent_resets_with_one_token_have_one_winner(self, tmp_path, settings, monkeypatch):
        file_db = DBStorage(f"sqlite:///{tmp_path / 'reset-race.db'}")
        file_db.reload()
        mailer = RecordingMailer()
        service = AuthService.from_settings(settings, file_db, mailer)
        service.register("carol", "carol@example.com", "CorrectHorse1")
        service.forgot_password("carol@example.com")
        token = mailer.last_token
        file_db.close()

        # both requests have read the token row before either deletes it
        both_read = threading.Barrier(2, timeout=10)
        real_expunge = Session.expunge

        def expunge(session, instance):
            real_expunge(session, instance)
            both_read.wait()

        monkeypatch.setattr(Session, "expunge", expunge)
        outcomes = {}

        def attempt(password):
            try:
                service.reset_password(token, password)
                outcomes[password] = "ok"
            except AuthError as exc:
                outcomes[password] = exc.error
            finally:
                file_db.close()

        threads = [threading.Thread(target=attempt, args=(password,))
                   for password in ("FirstNewPass1", "SecondNewPass1")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        monkeypatch.undo()

        assert sorted(outcomes) == ["FirstNewPass1", "SecondNewPass1"]
        winners = [password for password, outcome in outcomes.items() if outcome == "ok"]
        assert len(winners) == 1
        loser = next(outcome for outcome in outcomes.values() if outcome != "ok")
        assert loser in ("INVALID_TOKEN", "INTERNAL_ERROR")
        assert service.login("carol", winners[0]).access_token
        file_db.close()
        file_db.drop_all()

    def test_unknown_and_expired_tokens_fail_the_same_way(self, auth_service, registered, mailer):
        auth_service.reset_tokens._clock = lambda: utcnow() - timedelta(hours=2)
        auth_service.forgot_password("alice@example.com")
        expired = mailer.last_token
        auth_service.reset_tokens._clock = utcnow

        with pytest.raises(InvalidOrExpiredToken) as expired_exc:
            auth_service.reset_password(expired, "BrandNewPass1")
        with pytest.raises(InvalidOrExpiredToken) as unknown_exc:
            auth_service.reset_password("not-a-token", "BrandNewPass1")

        assert expired_exc.value.message == unknown_exc.value.message
        assert auth_service.login("alice", "CorrectHorse1").access_token


class TestChangePassword:

    def test_change_password_revokes_sessions(self, auth_service, registered):
        auth_service.change_password(registered.user.id, "CorrectHorse1", "BrandNewPass1")

        with pytest.raises(Unauthorized):
            auth_service.refresh(registered.refresh_token)
        assert auth_service.login("alice", "BrandNewPass1").access_token

    def test_wrong_old_password(self, auth_service, registered):
        with pytest.raises(InvalidCredentials):
            auth_service.change_password(registered.user.id, "wrong", "BrandNewPass1")
        assert auth_service.refresh(registered.refresh_token).refresh_token


class TestAccessTokens:

    def test_refresh_token_is_not_an_access_token(self, auth_service, registered):
        with pytest.raises(Unauthorized):
            auth_service.verify_access_token(registered.refresh_token)

    def test_expired_access_token(self, settings, auth_service, registered):
        from utils.security import TokenCodec

        old = TokenCodec(settings, clock=lambda: utcnow() - timedelta(hours=1))

        with pytest.raises(Unauthorized):
            auth_service.verify_access_token(old.sign_access(registered.user.id, "alice"))


class TestPurge:

    def test_purge_expired_tokens(self, auth_service, registered):
        user_id = registered.user.id
        auth_service.refresh_tokens.store(user_id, "stale", utcnow() - timedelta(days=1))

        removed = auth_service.purge_expired_tokens()

        assert removed == {"refresh_tokens": 1, "password_reset_tokens": 0}
        assert auth_service.refresh(registered.refresh_token).refresh_token
