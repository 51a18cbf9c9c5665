"""
Test configuration and fixtures.
Uses in-memory SQLite (aiosqlite) and fake Penora / ImageGene services
behind an httpx mock transport.
"""
import base64
import json
import os
import uuid as uuid_module

# Set test environment before any imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["PENORA_APP_URL"] = "http://penora.test"
os.environ["IMAGEGENE_BASE_URL"] = "http://imagegene.test"
os.environ["CREDITS_SYNC_API_KEY"] = "test-sync-key"
os.environ["ADMIN_PASSWORD"] = "admin-secret"
os.environ["CLIENT_URL"] = "http://client.test"
for _name in ("MAILERSEND_API_TOKEN", "GMAIL_USERNAME", "GMAIL_APP_PASSWORD", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"):
    os.environ.pop(_name, None)

import httpx
import pytest
from typing import AsyncGenerator, Dict, List

from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from itsdangerous import TimestampSigner
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from sukusuku.auth.passwords import hash_password
from sukusuku.exceptions import EmailDeliveryError
from sukusuku.models.base import Base
from sukusuku.models.user import AuthProvider, User
from sukusuku.services.credit_service import RemoteCreditClient
from sukusuku.services.email_service import EmailService


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "secret123"
SESSION_COOKIE = "sukusuku_session"


class FakeRemoteApps:
    """
    Stand-in for the Penora and ImageGene HTTP APIs.

    Each app answers with `credits[app]`; an app listed in `down` raises a
    connection error instead.
    """

    def __init__(self):
        self.credits: Dict[str, object] = {"penora": 80, "imagegene": 40}
        self.down: set = set()
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        app = "penora" if request.url.host == "penora.test" else "imagegene"
        if app in self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/api/unified/add-credits":
            return httpx.Response(200, json={"success": True, "credits_added": 10})
        return httpx.Response(200, json={"credits": self.credits[app]})

    def client(self) -> RemoteCreditClient:
        return RemoteCreditClient(
            penora_url="http://penora.test",
            imagegene_url="http://imagegene.test",
            timeout=1.0,
            transport=httpx.MockTransport(self.handler),
        )


class RecordingEmailService(EmailService):
    """Email service that records messages instead of delivering them."""

    def __init__(self):
        super().__init__(mailersend_api_token="test-token")
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    async def send(self, to, subject, html_body, text_body, reply_to=None, purpose="generic"):
        if self.fail:
            raise EmailDeliveryError(f"Email delivery failed for {purpose}")
        self.sent.append({"to": to, "subject": subject, "purpose": purpose, "text": text_body})
        return "mailersend"


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="function")
async def test_user(db_session: AsyncSession) -> User:
    """Create an email/password test user."""
    user = User(
        id=str(uuid_module.uuid4()),
        email="test@example.com",
        first_name="Test",
        last_name="User",
        password_hash=hash_password(TEST_PASSWORD),
        auth_provider=AuthProvider.EMAIL.value,
        penora_credits=100,
        imagegene_credits=50,
        total_credits_used=0,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
async def google_user(db_session: AsyncSession) -> User:
    """Create a user that signs in with Google."""
    user = User(
        id=str(uuid_module.uuid4()),
        email="google@example.com",
        first_name="Gina",
        auth_provider=AuthProvider.GOOGLE.value,
        is_email_verified=True,
        penora_credits=100,
        imagegene_credits=50,
        total_credits_used=0,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def remote_apps() -> FakeRemoteApps:
    return FakeRemoteApps()


@pytest.fixture
def email_service() -> RecordingEmailService:
    return RecordingEmailService()


def get_test_app(
    db_session: AsyncSession,
    remote_apps: FakeRemoteApps,
    email_service: RecordingEmailService,
) -> FastAPI:
    """Create a test FastAPI app with overridden dependencies."""
    from sukusuku.main import app
    from sukusuku.database import get_db
    from sukusuku.services.credit_service import get_remote_credit_client
    from sukusuku.services.email_service import get_email_service

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_remote_credit_client] = remote_apps.client
    app.dependency_overrides[get_email_service] = lambda: email_service

    return app


@pytest.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    remote_apps: FakeRemoteApps,
    email_service: RecordingEmailService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = get_test_app(db_session, remote_apps, email_service)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()


async def login(client: AsyncClient, email: str = "test@example.com", password: str = TEST_PASSWORD) -> str:
    """Log in through the API and return the session token from the cookie."""
    response = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.cookies["auth_token"]


@pytest.fixture
async def auth_headers(client: AsyncClient, test_user: User) -> Dict[str, str]:
    """Bearer header for test_user. The client's cookie jar is cleared so
    only the header authenticates."""
    token = await login(client)
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


def signed_session_cookie(data: Dict[str, object], secret: str = "test-session-secret") -> str:
    """Session cookie value in the format Starlette's SessionMiddleware writes."""
    payload = base64.b64encode(json.dumps(data).encode("utf-8"))
    return TimestampSigner(secret).sign(payload).decode("utf-8")


class FakeGoogleClient:
    """Authlib client double that completes the OAuth exchange with a fixed profile."""

    def __init__(self, userinfo: Dict[str, str]):
        self.userinfo = userinfo

    async def authorize_access_token(self, request):
        return {"access_token": "google-access-token", "userinfo": self.userinfo}
