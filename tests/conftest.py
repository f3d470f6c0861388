import os

# Point the storage singleton at an in-memory database before models is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from api import create_app  # noqa: E402
from api.config import AuthSettings  # noqa: E402
from models import storage  # noqa: E402
from services.auth_service import AuthService  # noqa: E402
from services.mailer import ResetMailer  # noqa: E402

ACCESS_SECRET = "access-secret-for-tests-only-0123456789"
REFRESH_SECRET = "refresh-secret-for-tests-only-9876543210"

# Cheap argon2 parameters so the suite stays fast
TEST_OVERRIDES = {
    "ACCESS_TOKEN_SECRET": ACCESS_SECRET,
    "REFRESH_TOKEN_SECRET": REFRESH_SECRET,
    "HASH_TIME_COST": 1,
    "HASH_MEMORY_COST": 1024,
    "HASH_PARALLELISM": 1,
    "LOG_LEVEL": "WARNING",
}


class RecordingMailer(ResetMailer):
    """Keeps reset tokens instead of sending them."""

    def __init__(self):
        super().__init__("http://testserver/reset-password")
        self.sent = []

    def send_password_reset(self, to_email, raw_token):
        self.sent.append((to_email, raw_token))

    @property
    def last_token(self):
        return self.sent[-1][1]


@pytest.fixture(autouse=True)
def db():
    """Fresh schema for every test."""
    storage.drop_all()
    storage.reload()
    yield storage
    storage.close()


@pytest.fixture
def settings():
    return AuthSettings(
        access_token_secret=ACCESS_SECRET,
        refresh_token_secret=REFRESH_SECRET,
        hash_time_cost=1,
        hash_memory_cost=1024,
        hash_parallelism=1,
    )


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def auth_service(db, settings, mailer):
    return AuthService.from_settings(settings, db, mailer)


@pytest.fixture
def registered(auth_service):
    """A user registered through the service, with its first token pair."""
    return auth_service.register("alice", "alice@example.com", "CorrectHorse1")


@pytest.fixture
def app(mailer):
    return create_app("test", overrides=TEST_OVERRIDES, mailer=mailer)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def competing_consumer(monkeypatch):
    """
    Another caller deletes and commits the token row right after the next
    consume has read it, so that consume's own DELETE matches nothing.
    """
    real_expunge = Session.expunge
    fired = []

    def expunge(session, instance):
        real_expunge(session, instance)
        if not fired:
            fired.append(instance)
            model = type(instance)
            session.query(model).filter(model.id == instance.id).delete(synchronize_session=False)
            session.commit()

    monkeypatch.setattr(Session, "expunge", expunge)
    return fired
