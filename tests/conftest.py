"""
Pytest configuration and fixtures for the auth flows
"""
import os
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789"
os.environ["DB_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests
os.environ["GITHUB_CLIENT_ID"] = "MOCK_GITHUB_CLIENT_ID"
os.environ.pop("MAIL_SERVER", None)

# Import after setting env vars
from epic_notes.core.config import Settings  # noqa: E402
from epic_notes.core.security import hash_password  # noqa: E402
from epic_notes.db.database import Base, get_db  # noqa: E402
from epic_notes.main import create_app  # noqa: E402
from epic_notes.repositories import user_repo  # noqa: E402
from epic_notes.services.container import build_container  # noqa: E402
from epic_notes.services.email_service import EmailResult  # noqa: E402
from epic_notes.services.providers.base import ConnectionData, ProviderAuthError, ProviderUser  # noqa: E402

import epic_notes.models  # noqa: E402,F401

PASSWORD = "kodylovesyou"

_CODE_RE = re.compile(r"verification code: (\S{6})")


class FakeEmailSender:
    """Captures outgoing mail instead of talking to SMTP."""

    def __init__(self) -> None:
        self.outbox: List[Dict[str, str]] = []
        self.fail = False

    def send(self, *, to: str, subject: str, body: str) -> EmailResult:
        if self.fail:
            return EmailResult(status="error", error="Unable to send email. Please try again later.")
        self.outbox.append({"to": to, "subject": subject, "body": body})
        return EmailResult(status="success")

    def last_code(self) -> str:
        match = _CODE_RE.search(self.outbox[-1]["body"])
        assert match, self.outbox[-1]["body"]
        return match.group(1)


class FakeGitHubProvider:
    name = "github"
    label = "GitHub"

    def __init__(self) -> None:
        self.profile = ProviderUser(
            id="4242",
            email="kody@kcd.dev",
            username="Kody.The-Koala",
            name="Kody",
            image_url="https://avatars.example/kody.png",
        )
        self.fail = False
        self.image: Optional[Tuple[str, bytes]] = ("image/png", b"\x89PNG fake")
        self.downloaded: List[str] = []

    def authorization_url(self, state: str) -> str:
        return f"/auth/github/callback?{urlencode({'code': 'fake-code', 'state': state})}"

    def authenticate(self, code: str) -> ProviderUser:
        if self.fail:
            raise ProviderAuthError("token exchange failed")
        return self.profile

    def resolve_connection_data(self, provider_id: str) -> ConnectionData:
        return ConnectionData(display_name=f"gh-{provider_id}", link=f"https://github.com/gh-{provider_id}")

    def download_image(self, url: str) -> Optional[Tuple[str, bytes]]:
        self.downloaded.append(url)
        return self.image


@pytest.fixture(scope="function")
def test_engine():
    """In-memory SQLite shared by all connections of one test"""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def settings():
    return Settings()


@pytest.fixture(scope="function")
def email_sender():
    return FakeEmailSender()


@pytest.fixture(scope="function")
def github():
    return FakeGitHubProvider()


@pytest.fixture(scope="function")
def container(settings, email_sender, github):
    c = build_container(settings)
    c.email = email_sender
    c.providers = {"github": github}
    return c


@pytest.fixture(scope="function")
def app(container, session_factory):
    application = create_app(container.settings, container)

    # Override get_db dependency
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(app):
    """Create test client (redirects are asserted, not followed)"""
    return TestClient(app, follow_redirects=False)


@pytest.fixture(scope="function")
def make_user(db):
    def _make_user(username: str = "kody", email: Optional[str] = None, password: Optional[str] = PASSWORD):
        user = user_repo.add_user(
            db,
            username=username,
            email=email or f"{username}@kcd.dev",
            name=username.capitalize(),
            password_hash=hash_password(password) if password else None,
        )
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def user(make_user):
    return make_user()


@pytest.fixture(scope="function")
def login(client):
    def _login(username: str = "kody", password: str = PASSWORD, **extra):
        return client.post("/login", data={"username": username, "password": password, **extra})

    return _login
