import os
from datetime import datetime, timedelta, timezone
from typing import Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["FRONTEND_URL"] = "http://testserver"
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rythmix.config import settings
from rythmix.dependencies import get_mailer
from rythmix.main import app
from rythmix.models.database import Base, get_db
from rythmix.models.user import User
from rythmix.services.auth_service import AuthService, build_auth_service
from rythmix.services.passwords import get_password_hash

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@event.listens_for(test_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class RecordingMailer:
    """Mailer double that keeps every verification token it was asked to send."""

    def __init__(self):
        self.sent: list[dict[str, str]] = []
        self.fail = False

    def send_verify_email(self, to_email: str, username: str, token: str) -> None:
        if self.fail:
            raise RuntimeError("SMTP is down")
        self.sent.append({"to": to_email, "username": username, "token": token})

    @property
    def last_token(self) -> str:
        return self.sent[-1]["token"]


class FrozenClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def service(db: Session, mailer: RecordingMailer, clock: FrozenClock) -> AuthService:
    return build_auth_service(db, mailer, settings, clock=clock)


@pytest.fixture(scope="function")
def client(db: Session, mailer: RecordingMailer) -> Generator[TestClient, None, None]:
    """Create a test client with database and mailer overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(
    db: Session,
    email: str,
    username: str,
    password: str = "testpassword123",
    verified: bool = True,
    role: str = "user",
) -> User:
    user = User(
        email=email,
        username=username,
        first_name="Test",
        last_name="User",
        hashed_password=get_password_hash(password),
        role=role,
        email_verified_at=datetime.now(timezone.utc) if verified else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user_factory(db: Session):
    """Return a callable creating users in the test database."""

    def _make(email: str, username: str, **kwargs) -> User:
        return make_user(db, email, username, **kwargs)

    return _make


@pytest.fixture
def test_user(db: Session) -> User:
    """Create a verified test user."""
    return make_user(db, "test@example.com", "tester")


@pytest.fixture
def unverified_user(db: Session) -> User:
    return make_user(db, "pending@example.com", "pending", verified=False)


@pytest.fixture
def admin_user(db: Session) -> User:
    return make_user(db, "admin@example.com", "admin", role="admin")


@pytest.fixture
def login_tokens(client: TestClient, test_user: User) -> dict:
    """Log the test user in and return the token response."""
    response = client.post(
        "/api/auth/login",
        json={"email": "test@example.com", "password": "testpassword123"},
    )
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_headers(login_tokens: dict) -> dict[str, str]:
    """Get auth headers with token."""
    return {"Authorization": f"Bearer {login_tokens['accessToken']}"}
