"""
Tests for service layer business logic.
"""
import asyncio
import json

import httpx
import pytest
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from conftest import TEST_PASSWORD, RecordingEmailService
from sukusuku.auth.dependencies import SessionAuth, TokenAuth, get_optional_auth_context
from sukusuku.auth.google import profile_from_token
from sukusuku.auth.tokens import TokenIssuer
from sukusuku.exceptions import (
    DuplicateEmailError,
    EmailDeliveryError,
    InvalidCredentialsError,
    InvalidTokenError,
    ProviderMismatchError,
    UserNotFoundError,
)
from sukusuku.models.auth_token import TokenType
from sukusuku.models.user import AuthProvider, User
from sukusuku.repositories.token_repository import TokenRepository
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.services.auth_service import AuthService
from sukusuku.services.credit_service import (
    CreditService,
    CreditSource,
    RemoteCreditClient,
    reconcile,
)
from sukusuku.services.email_service import MAILERSEND_URL, EmailService


def make_auth_service(db_session: AsyncSession, email_service=None) -> AuthService:
    return AuthService(
        UserRepository(db_session),
        TokenRepository(db_session),
        TokenIssuer("test-jwt-secret"),
        email_service or RecordingEmailService(),
    )


def remote_client(handler, timeout: float = 1.0) -> RemoteCreditClient:
    return RemoteCreditClient(
        penora_url="http://penora.test",
        imagegene_url="http://imagegene.test",
        timeout=timeout,
        transport=httpx.MockTransport(handler),
    )


class TestUserRepository:
    """Tests for the credential store."""

    @pytest.mark.asyncio
    async def test_create_sets_default_balances(self, db_session: AsyncSession):
        user = await UserRepository(db_session).create(email="  Fresh@Example.com ", first_name="Fresh")

        assert user.email == "fresh@example.com"
        assert user.penora_credits == 100
        assert user.imagegene_credits == 50
        assert user.total_credits_used == 0

    @pytest.mark.asyncio
    async def test_create_duplicate(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(DuplicateEmailError):
            await UserRepository(db_session).create(email="Test@Example.com")

    @pytest.mark.asyncio
    async def test_find_by_email_case_insensitive(self, db_session: AsyncSession, test_user: User):
        user = await UserRepository(db_session).find_by_email("TEST@example.COM")

        assert user is not None
        assert user.id == test_user.id

    @pytest.mark.asyncio
    async def test_google_create_has_no_password(self, db_session: AsyncSession):
        user = await UserRepository(db_session).create(
            email="g@example.com",
            password_hash="should-not-be-kept",
            auth_provider=AuthProvider.GOOGLE,
        )

        assert user.password_hash is None
        assert user.uses_password is False

    @pytest.mark.asyncio
    async def test_upsert_oauth_creates(self, db_session: AsyncSession):
        user, created = await UserRepository(db_session).upsert_oauth_user(
            email="oauth@example.com", first_name="O", profile_image_url="http://img"
        )

        assert created is True
        assert user.auth_provider == AuthProvider.GOOGLE.value
        assert user.is_email_verified is True
        assert user.penora_credits == 100
        assert user.last_login_at is not None

    @pytest.mark.asyncio
    async def test_upsert_oauth_converts_password_account(self, db_session: AsyncSession, test_user: User):
        user, created = await UserRepository(db_session).upsert_oauth_user(email="test@example.com")

        assert created is False
        assert user.id == test_user.id
        assert user.password_hash is None
        assert user.auth_provider == AuthProvider.GOOGLE.value
        assert user.first_name == "Test"

    @pytest.mark.asyncio
    async def test_update_credits(self, db_session: AsyncSession, test_user: User):
        user = await UserRepository(db_session).update_credits(
            test_user.id, penora_credits=7, credits_used_delta=3
        )

        assert user.penora_credits == 7
        assert user.imagegene_credits == 50
        assert user.total_credits_used == 3

    @pytest.mark.asyncio
    async def test_update_credits_unknown_user(self, db_session: AsyncSession):
        assert await UserRepository(db_session).update_credits("missing", penora_credits=1) is None


class TestTokenRepository:
    """Tests for the token store."""

    @pytest.mark.asyncio
    async def test_delete_expired(self, db_session: AsyncSession, test_user: User):
        tokens = TokenRepository(db_session)
        now = datetime.utcnow()
        await tokens.create(test_user.id, "old", TokenType.SESSION, now - timedelta(hours=1))
        await tokens.create(test_user.id, "fresh", TokenType.SESSION, now + timedelta(hours=1))

        removed = await tokens.delete_expired()

        assert removed == 1
        assert await tokens.get("old") is None
        assert await tokens.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_delete_for_user_by_type(self, db_session: AsyncSession, test_user: User):
        tokens = TokenRepository(db_session)
        expires = datetime.utcnow() + timedelta(hours=1)
        await tokens.create(test_user.id, "session", TokenType.SESSION, expires)
        await tokens.create(test_user.id, "embed", TokenType.APP, expires)

        await tokens.delete_for_user(test_user.id, TokenType.SESSION)

        assert await tokens.get("session") is None
        assert await tokens.get("embed") is not None


class TestAuthService:
    """Tests for AuthService."""

    @pytest.mark.asyncio
    async def test_register_stores_hash_and_token(self, db_session: AsyncSession):
        email_service = RecordingEmailService()
        service = make_auth_service(db_session, email_service)

        result = await service.register("reg@example.com", "secret123", "Reg", "User")

        assert result.user.password_hash != "secret123"
        assert result.user.welcome_email_sent is True
        assert result.token.token_type == TokenType.SESSION
        assert await TokenRepository(db_session).get(result.token.token) is not None
        assert email_service.sent[0]["to"] == "reg@example.com"

    @pytest.mark.asyncio
    async def test_login_success(self, db_session: AsyncSession, test_user: User):
        result = await make_auth_service(db_session).login("test@example.com", TEST_PASSWORD)

        assert result.user.id == test_user.id
        assert result.user.last_login_at is not None

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(InvalidCredentialsError):
            await make_auth_service(db_session).login("test@example.com", "wrong-password")

    @pytest.mark.asyncio
    async def test_login_google_account(self, db_session: AsyncSession, google_user: User):
        with pytest.raises(ProviderMismatchError):
            await make_auth_service(db_session).login(google_user.email, TEST_PASSWORD)

    @pytest.mark.asyncio
    async def test_login_oauth_sends_welcome_once(self, db_session: AsyncSession):
        email_service = RecordingEmailService()
        service = make_auth_service(db_session, email_service)

        _, created_first = await service.login_oauth("oauth@example.com", "O")
        _, created_second = await service.login_oauth("oauth@example.com", "O")

        assert (created_first, created_second) == (True, False)
        assert len(email_service.sent) == 1

    @pytest.mark.asyncio
    async def test_authenticate_revoked_token(self, db_session: AsyncSession, test_user: User):
        service = make_auth_service(db_session)
        result = await service.login("test@example.com", TEST_PASSWORD)
        await service.logout(result.token.token)

        with pytest.raises(InvalidTokenError):
            await service.authenticate_token(result.token.token)

    @pytest.mark.asyncio
    async def test_authenticate_owner_mismatch(self, db_session: AsyncSession, test_user: User, google_user: User):
        """A token row must belong to the subject the token names."""
        issued = TokenIssuer("test-jwt-secret").issue_session_token(google_user.id)
        await TokenRepository(db_session).create(test_user.id, issued.token, TokenType.SESSION, issued.expires_at)

        with pytest.raises(InvalidTokenError):
            await make_auth_service(db_session).authenticate_token(issued.token)

    @pytest.mark.asyncio
    async def test_authenticate_rejects_app_token(self, db_session: AsyncSession, test_user: User):
        """Embed tokens are for the external apps, not for this API."""
        service = make_auth_service(db_session)
        issued = await service.issue_app_token(test_user.id, "penora")

        with pytest.raises(InvalidTokenError):
            await service.authenticate_token(issued.token)

    @pytest.mark.asyncio
    async def test_start_session_replaces_older_sessions(self, db_session: AsyncSession, google_user: User):
        service = make_auth_service(db_session)
        first = await service.start_session(google_user)
        second = await service.start_session(google_user)

        user, record = await service.authenticate_token(second.token)

        assert user.id == google_user.id
        assert record.type == TokenType.SESSION.value
        with pytest.raises(InvalidTokenError):
            await service.authenticate_token(first.token)

    @pytest.mark.asyncio
    async def test_logout_revokes_every_token(self, db_session: AsyncSession, test_user: User):
        service = make_auth_service(db_session)
        tokens = TokenRepository(db_session)
        result = await service.login("test@example.com", TEST_PASSWORD)
        extra = TokenIssuer("test-jwt-secret").issue_session_token(test_user.id)
        await tokens.create(test_user.id, extra.token, TokenType.SESSION, extra.expires_at)

        await service.logout(result.token.token, None, extra.token, result.token.token)

        assert await tokens.get(result.token.token) is None
        assert await tokens.get(extra.token) is None

    @pytest.mark.asyncio
    async def test_issue_app_token_unknown_user(self, db_session: AsyncSession):
        with pytest.raises(UserNotFoundError):
            await make_auth_service(db_session).issue_app_token("missing", "penora")

    @pytest.mark.asyncio
    async def test_cleanup_expired_tokens(self, db_session: AsyncSession, test_user: User):
        await TokenRepository(db_session).create(
            test_user.id, "stale", TokenType.APP, datetime.utcnow() - timedelta(seconds=1)
        )

        assert await make_auth_service(db_session).cleanup_expired_tokens() == 1


class TestAuthGatewayDependency:
    """Tests for the session path of the gateway."""

    @staticmethod
    def make_request(session: dict, headers=None) -> Request:
        return Request({"type": "http", "headers": headers or [], "session": session})

    @pytest.mark.asyncio
    async def test_session_token(self, db_session: AsyncSession, google_user: User):
        service = make_auth_service(db_session)
        issued = await service.start_session(google_user)
        request = self.make_request({"session_token": issued.token})

        context = await get_optional_auth_context(request, None, service)

        assert isinstance(context, SessionAuth)
        assert context.user.id == google_user.id

    @pytest.mark.asyncio
    async def test_bare_user_id_in_session_ignored(self, db_session: AsyncSession, google_user: User):
        """Only a stored token in the session authenticates, never a user id."""
        request = self.make_request({"user_id": google_user.id})

        context = await get_optional_auth_context(request, None, make_auth_service(db_session))

        assert context is None

    @pytest.mark.asyncio
    async def test_revoked_session_token(self, db_session: AsyncSession, google_user: User):
        service = make_auth_service(db_session)
        issued = await service.start_session(google_user)
        await service.logout(issued.token)
        session = {"session_token": issued.token}

        context = await get_optional_auth_context(self.make_request(session), None, service)

        assert context is None
        assert "session_token" not in session

    @pytest.mark.asyncio
    async def test_session_wins_over_token(self, db_session: AsyncSession, test_user: User, google_user: User):
        service = make_auth_service(db_session)
        result = await service.login("test@example.com", TEST_PASSWORD)
        issued = await service.start_session(google_user)
        request = self.make_request(
            {"session_token": issued.token},
            headers=[(b"cookie", f"auth_token={result.token.token}".encode())],
        )

        context = await get_optional_auth_context(request, None, service)

        assert context.user.id == google_user.id

    @pytest.mark.asyncio
    async def test_stale_session_falls_back_to_cookie(self, db_session: AsyncSession, test_user: User):
        service = make_auth_service(db_session)
        result = await service.login("test@example.com", TEST_PASSWORD)
        session = {"session_token": "not-a-token"}
        request = self.make_request(
            session,
            headers=[(b"cookie", f"auth_token={result.token.token}".encode())],
        )

        context = await get_optional_auth_context(request, None, service)

        assert isinstance(context, TokenAuth)
        assert context.token == result.token.token
        assert "session_token" not in session

    @pytest.mark.asyncio
    async def test_app_token_in_cookie_rejected(self, db_session: AsyncSession, test_user: User):
        service = make_auth_service(db_session)
        issued = await service.issue_app_token(test_user.id, "penora")
        request = self.make_request({}, headers=[(b"cookie", f"auth_token={issued.token}".encode())])

        assert await get_optional_auth_context(request, None, service) is None

    @pytest.mark.asyncio
    async def test_anonymous(self, db_session: AsyncSession):
        context = await get_optional_auth_context(self.make_request({}), None, make_auth_service(db_session))

        assert context is None


class TestReconcile:
    """Tests for the live / stale / default choice."""

    def test_remote_wins(self):
        assert reconcile(5, 100, 100).value == 5
        assert reconcile(5, 100, 100).source == CreditSource.LIVE

    def test_remote_zero_is_a_value(self):
        assert reconcile(0, 100, 100).source == CreditSource.LIVE

    def test_stored_when_remote_missing(self):
        value = reconcile(None, 0, 100)

        assert value.value == 0
        assert value.source == CreditSource.STALE

    def test_default_when_nothing_known(self):
        value = reconcile(None, None, 50)

        assert value.value == 50
        assert value.source == CreditSource.DEFAULT


class TestRemoteCreditClient:
    """Tests for remote balance lookups."""

    @pytest.mark.asyncio
    async def test_fetch_sends_user_and_key(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"credits": 42.0})

        client = RemoteCreditClient(
            penora_url="http://penora.test/",
            penora_api_key="penora-key",
            transport=httpx.MockTransport(handler),
        )

        assert await client.fetch_balance("penora", "user-1") == 42
        assert seen[0].url.params["user_id"] == "user-1"
        assert seen[0].headers["X-API-Key"] == "penora-key"
        assert str(seen[0].url).startswith("http://penora.test/api/unified/user-info")

    @pytest.mark.asyncio
    async def test_unconfigured_app(self):
        client = RemoteCreditClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        assert await client.fetch_balance("imagegene", "user-1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500, json={"credits": 10}),
        httpx.Response(200, json={"credits": True}),
        httpx.Response(200, json={"credits": "10"}),
        httpx.Response(200, json={"balance": 10}),
        httpx.Response(200, json=[1, 2]),
        httpx.Response(200, text="not json"),
        httpx.Response(200, content=b'{"credits": 1e400}', headers={"content-type": "application/json"}),
        httpx.Response(200, content=b'{"credits": Infinity}', headers={"content-type": "application/json"}),
        httpx.Response(200, content=b'{"credits": NaN}', headers={"content-type": "application/json"}),
    ])
    async def test_unusable_answers(self, response: httpx.Response):
        client = remote_client(lambda request: response)

        assert await client.fetch_balance("penora", "user-1") is None

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert await remote_client(handler).fetch_balance("imagegene", "user-1") is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json={"credits": 1})

        client = remote_client(handler, timeout=0.05)

        assert await client.fetch_balance("penora", "user-1") is None

    @pytest.mark.asyncio
    async def test_add_credits_payload(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        response = await remote_client(handler).add_penora_credits("user-1", 25, "Bundle")

        assert response.status_code == 200
        assert seen[0] == {
            "user_id": "user-1",
            "amount": 25,
            "transaction_type": "purchase",
            "description": "Bundle",
        }

    @pytest.mark.asyncio
    async def test_passthrough_unconfigured(self):
        with pytest.raises(RuntimeError):
            await RemoteCreditClient().get_penora_user_info("user-1")


class TestCreditService:
    """Tests for CreditService."""

    @pytest.mark.asyncio
    async def test_snapshot_mixed_sources(self, db_session: AsyncSession, test_user: User):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "penora.test":
                return httpx.Response(200, json={"credits": 12})
            return httpx.Response(503)

        service = CreditService(UserRepository(db_session), remote_client(handler))
        snapshot = await service.get_snapshot(test_user)

        assert snapshot.penora.value == 12
        assert snapshot.penora.source == CreditSource.LIVE
        assert snapshot.imagegene.value == 50
        assert snapshot.imagegene.source == CreditSource.STALE

    @pytest.mark.asyncio
    async def test_apply_usage(self, db_session: AsyncSession, test_user: User):
        service = CreditService(UserRepository(db_session), RemoteCreditClient())

        user = await service.apply_usage(test_user, penora_used=10, imagegene_used=60)

        assert user.penora_credits == 90
        assert user.imagegene_credits == 0
        assert user.total_credits_used == 60  # 10 + the 50 actually available

    @pytest.mark.asyncio
    async def test_apply_usage_negative(self, db_session: AsyncSession, test_user: User):
        service = CreditService(UserRepository(db_session), RemoteCreditClient())

        with pytest.raises(ValueError):
            await service.apply_usage(test_user, penora_used=-1)

    @pytest.mark.asyncio
    async def test_set_balances(self, db_session: AsyncSession, test_user: User):
        service = CreditService(UserRepository(db_session), RemoteCreditClient())

        user = await service.set_balances(test_user, imagegene_credits=5)

        assert user.penora_credits == 100
        assert user.imagegene_credits == 5
        assert user.total_credits_used == 0


class TestEmailService:
    """Tests for EmailService."""

    @pytest.mark.asyncio
    async def test_unconfigured_raises(self):
        with pytest.raises(EmailDeliveryError):
            await EmailService().send("a@example.com", "Hi", "<p>Hi</p>", "Hi")

    @pytest.mark.asyncio
    async def test_welcome_unconfigured_returns_false(self):
        assert await EmailService().send_welcome_email("a@example.com", "Ada") is False

    @pytest.mark.asyncio
    async def test_mailersend_request(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        service = EmailService(mailersend_api_token="ms-token", transport=httpx.MockTransport(handler))
        provider = await service.send("a@example.com", "Hi", "<p>Hi</p>", "Hi", reply_to="b@example.com")

        assert provider == "mailersend"
        assert str(seen[0].url) == MAILERSEND_URL
        assert seen[0].headers["Authorization"] == "Bearer ms-token"
        payload = json.loads(seen[0].content)
        assert payload["to"] == [{"email": "a@example.com"}]
        assert payload["reply_to"] == {"email": "b@example.com"}

    @pytest.mark.asyncio
    async def test_mailersend_failure_without_fallback(self):
        service = EmailService(
            mailersend_api_token="ms-token",
            transport=httpx.MockTransport(lambda request: httpx.Response(401)),
        )

        with pytest.raises(EmailDeliveryError):
            await service.send("a@example.com", "Hi", "<p>Hi</p>", "Hi")

    @pytest.mark.asyncio
    async def test_contact_sends_confirmation_and_notification(self):
        service = RecordingEmailService()

        await service.send_contact_emails("Eve", "eve@example.com", "<script>x</script>")

        assert len(service.sent) == 2
        notification = next(m for m in service.sent if m["to"] == "developers@sukusuku.ai")
        assert notification["subject"] == "New Contact Form Message from Eve"


class TestGoogleProfile:
    """Tests for OpenID profile extraction."""

    def test_profile_fields(self):
        profile = profile_from_token({"userinfo": {
            "email": "g@example.com",
            "given_name": "Gina",
            "family_name": "Lee",
            "picture": "http://img",
        }})

        assert profile == {
            "email": "g@example.com",
            "first_name": "Gina",
            "last_name": "Lee",
            "profile_image_url": "http://img",
        }

    def test_profile_without_email(self):
        assert profile_from_token({"userinfo": {"given_name": "Gina"}}) is None
