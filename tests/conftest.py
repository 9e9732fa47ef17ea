"""
Shared test fixtures.

Every test gets its own in-memory SQLite database and a recording email
sender, so no network or Postgres is needed.
"""

import re
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.database import Database
from app.main import create_app
from app.models.user import User, UserRole, UserStatus
from app.services.auth import get_password_hash
from app.services.notifications import EmailSender

TEST_JWT_SECRET = "test-secret-key-for-testing-only"
TEST_BCRYPT_ROUNDS = 4
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

_CODE_RE = re.compile(r"Your OTP is (\d{6})\.")


class RecordingSender(EmailSender):
    """EmailSender that keeps messages in memory instead of calling a provider."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.accept = True
        self.outbox: list[dict] = []

    def send_email(self, to_email, subject, html_content, text_content=None):
        if not self.accept:
            return False
        self.outbox.append({"to": to_email, "subject": subject, "text": text_content or ""})
        return True

    def last_code(self, to_email: str) -> str:
        for message in reversed(self.outbox):
            if message["to"] == to_email:
                return _CODE_RE.search(message["text"]).group(1)
        raise AssertionError(f"no OTP email sent to {to_email}")

    def last_subject(self, to_email: str) -> str:
        return [m for m in self.outbox if m["to"] == to_email][-1]["subject"]


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_user(
    db,
    email: str = "reader@example.com",
    password: str = "secret123",
    verified: bool = True,
    full_name: str | None = "Reader One",
    role: UserRole = UserRole.user,
) -> User:
    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash(password, rounds=TEST_BCRYPT_ROUNDS),
        role=role,
        is_verified=verified,
        status=UserStatus.active if verified else UserStatus.pending,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret_key=TEST_JWT_SECRET,
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        mailgun_api_key="",
        mailgun_domain="",
        sendgrid_api_key="",
    )


@pytest.fixture
def sender(settings) -> RecordingSender:
    return RecordingSender(settings)


@pytest.fixture
def app(settings, sender):
    return create_app(settings=settings, email_sender=sender)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def app_db(app, client):
    """Session on the same database the running app uses."""
    db = app.state.database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def db():
    """Standalone session for service-level tests."""
    database = Database("sqlite://")
    database.create_all()
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()
        database.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
