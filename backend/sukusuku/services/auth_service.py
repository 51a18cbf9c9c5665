"""
Account service: registration, login, Google sign-in, token lifecycle.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sukusuku.auth.passwords import hash_password, verify_password
from sukusuku.auth.tokens import IssuedToken, TokenIssuer
from sukusuku.exceptions import (
    InvalidCredentialsError,
    InvalidTokenError,
    ProviderMismatchError,
    UserNotFoundError,
)
from sukusuku.models.auth_token import AuthToken, TokenType
from sukusuku.models.user import AuthProvider, User
from sukusuku.repositories.token_repository import TokenRepository
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.services.email_service import EmailService
from sukusuku.utils.logging import (
    log_login_failed,
    log_token_issued,
    log_user_login,
    log_user_registered,
)
from sukusuku.utils.metrics import auth_events_total, tokens_issued_total

logger = logging.getLogger(__name__)

EMBED_APPS = ("penora", "imagegene")


@dataclass
class AuthResult:
    user: User
    token: IssuedToken


class AuthService:
    """Coordinates the credential store, the token issuer and welcome emails."""

    def __init__(
        self,
        users: UserRepository,
        tokens: TokenRepository,
        issuer: TokenIssuer,
        email_service: EmailService,
    ):
        self.users = users
        self.tokens = tokens
        self.issuer = issuer
        self.email_service = email_service

    async def _store(self, user_id: str, issued: IssuedToken) -> IssuedToken:
        await self.tokens.create(user_id, issued.token, issued.token_type, issued.expires_at)
        tokens_issued_total.labels(token_type=issued.token_type.value).inc()
        return issued

    async def _issue_session(self, user: User) -> IssuedToken:
        issued = await self._store(user.id, self.issuer.issue_session_token(user.id))
        log_token_issued(logger, user_id=user.id, token_type=issued.token_type.value)
        return issued

    async def _send_welcome(self, user: User) -> None:
        if user.email and await self.email_service.send_welcome_email(user.email, user.first_name):
            await self.users.mark_welcome_email_sent(user.id)

    async def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> AuthResult:
        """
        Create an email/password account and log it in.

        Raises:
            DuplicateEmailError: If the email is taken by any account
        """
        # bcrypt blocks, keep it off the event loop
        password_hash = await asyncio.to_thread(hash_password, password)
        user = await self.users.create(
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash,
            auth_provider=AuthProvider.EMAIL,
        )
        auth_events_total.labels(event="register", provider=AuthProvider.EMAIL.value).inc()
        log_user_registered(logger, user_id=user.id, provider=AuthProvider.EMAIL.value)

        issued = await self._issue_session(user)
        await self._send_welcome(user)
        return AuthResult(user=user, token=issued)

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Verify a password and issue a new session token.

        Previous session tokens of the user are revoked.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            ProviderMismatchError: The account signs in with Google
        """
        user = await self.users.find_by_email(email)
        if user is None:
            log_login_failed(logger, reason="unknown_email")
            raise InvalidCredentialsError()

        if not user.uses_password:
            log_login_failed(logger, reason="provider_mismatch", user_id=user.id)
            raise ProviderMismatchError()

        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            log_login_failed(logger, reason="bad_password", user_id=user.id)
            raise InvalidCredentialsError()

        await self.users.update_last_login(user.id)
        await self.tokens.delete_for_user(user.id, TokenType.SESSION)
        issued = await self._issue_session(user)

        auth_events_total.labels(event="login", provider=AuthProvider.EMAIL.value).inc()
        log_user_login(logger, user_id=user.id, provider=AuthProvider.EMAIL.value)
        return AuthResult(user=user, token=issued)

    async def login_oauth(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> Tuple[User, bool]:
        """
        Upsert the account for a Google sign-in.

        Returns:
            (user, created) tuple
        """
        user, created = await self.users.upsert_oauth_user(
            email=email,
            first_name=first_name,
            last_name=last_name,
            profile_image_url=profile_image_url,
        )
        provider = AuthProvider.GOOGLE.value
        if created:
            auth_events_total.labels(event="register", provider=provider).inc()
            log_user_registered(logger, user_id=user.id, provider=provider)
            await self._send_welcome(user)
        auth_events_total.labels(event="login", provider=provider).inc()
        log_user_login(logger, user_id=user.id, provider=provider)
        return user, created

    async def authenticate_token(self, token: str) -> Tuple[User, AuthToken]:
        """
        Resolve a session token to its user.

        The signature must verify and the token must still be present and
        unexpired in the token store. Embed tokens handed to the external
        apps are rejected.

        Raises:
            InvalidTokenError: If any of the checks fail
        """
        claims = self.issuer.decode(token)

        record = await self.tokens.get(token)
        if record is None:
            raise InvalidTokenError("Token has been revoked")
        if record.type != TokenType.SESSION.value:
            raise InvalidTokenError("Embed tokens cannot authenticate API requests")
        if record.is_expired():
            await self.tokens.delete(token)
            raise InvalidTokenError("Token expired")
        if record.user_id != claims["sub"]:
            raise InvalidTokenError("Token owner mismatch")

        user = await self.users.get(record.user_id)
        if user is None:
            raise InvalidTokenError("Token owner no longer exists")
        return user, record

    async def start_session(self, user: User) -> IssuedToken:
        """Record a session token for a Google sign-in, replacing older ones."""
        await self.tokens.delete_for_user(user.id, TokenType.SESSION)
        return await self._issue_session(user)

    async def logout(self, *tokens: Optional[str]) -> None:
        """Revoke every given token. Missing and unknown tokens are ignored."""
        for token in set(filter(None, tokens)):
            await self.tokens.delete(token)

    async def issue_app_token(self, user_id: str, app_name: str) -> IssuedToken:
        """
        Mint and record an embed token for an external app.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = await self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        issued = await self._store(user.id, self.issuer.issue_app_token(user, app_name))
        log_token_issued(logger, user_id=user.id, token_type=issued.token_type.value, app=app_name)
        return issued

    async def cleanup_expired_tokens(self) -> int:
        removed = await self.tokens.delete_expired()
        if removed:
            logger.info(f"Removed {removed} expired auth tokens")
        return removed
