"""
FastAPI dependencies for authentication.

Requests are authenticated once, here, by one of two mechanisms:
1. Google OAuth session: the signed session cookie carries a stored session
   token under `session_token`, so logout revokes it server-side
2. Session token from the Authorization header or the `auth_token` cookie,
   cross-checked against the token store

Embed tokens minted for the external apps never authenticate here.

Handlers receive an AuthContext and only ever look at `.user`.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from sukusuku.auth.tokens import TokenIssuer, get_token_issuer
from sukusuku.database import get_db
from sukusuku.exceptions import InvalidTokenError
from sukusuku.models.user import User
from sukusuku.repositories.token_repository import TokenRepository
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.services.auth_service import AuthService
from sukusuku.services.credit_service import CreditService, RemoteCreditClient, get_remote_credit_client
from sukusuku.services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)

AUTH_COOKIE = "auth_token"
SESSION_TOKEN_KEY = "session_token"
SESSION_ADMIN_KEY = "is_admin"

# auto_error=False so the cookie and session paths still get a chance
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionAuth:
    """Authenticated through the Google OAuth session."""
    user: User
    token: str


@dataclass(frozen=True)
class TokenAuth:
    """Authenticated through a bearer or cookie session token."""
    user: User
    token: str


AuthContext = Union[SessionAuth, TokenAuth]


# Store and service wiring

def get_user_repository(db: AsyncSession = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


def get_token_repository(db: AsyncSession = Depends(get_db)) -> TokenRepository:
    return TokenRepository(db)


def get_auth_service(
    users: UserRepository = Depends(get_user_repository),
    tokens: TokenRepository = Depends(get_token_repository),
    issuer: TokenIssuer = Depends(get_token_issuer),
    email_service: EmailService = Depends(get_email_service),
) -> AuthService:
    return AuthService(users, tokens, issuer, email_service)


def get_credit_service(
    users: UserRepository = Depends(get_user_repository),
    remote: RemoteCreditClient = Depends(get_remote_credit_client),
) -> CreditService:
    return CreditService(users, remote)


# Gateway

def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header wins over the cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(AUTH_COOKIE)


def session_of(request: Request) -> dict:
    """Request session, or an empty dict when SessionMiddleware is absent."""
    if "session" in request.scope:
        return request.session
    return {}


async def get_optional_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[AuthContext]:
    """Resolve the caller, or None if neither mechanism authenticates them."""
    session = session_of(request)
    session_token = session.get(SESSION_TOKEN_KEY)
    if session_token:
        try:
            user, _ = await auth_service.authenticate_token(session_token)
            return SessionAuth(user=user, token=session_token)
        except InvalidTokenError as e:
            logger.info(f"Session rejected: {e}")
            session.pop(SESSION_TOKEN_KEY, None)

    token = extract_token(request, credentials)
    if token:
        try:
            user, _ = await auth_service.authenticate_token(token)
            return TokenAuth(user=user, token=token)
        except InvalidTokenError as e:
            logger.info(f"Token rejected: {e}")

    return None


async def get_auth_context(
    context: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> AuthContext:
    """
    Require an authenticated caller.

    Raises:
        HTTPException 401: If neither the session nor a token authenticates
    """
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return context


async def get_current_user(context: AuthContext = Depends(get_auth_context)) -> User:
    return context.user


def require_admin(request: Request) -> None:
    """Admin routes are gated by a flag set in the session by /api/admin/login."""
    if not session_of(request).get(SESSION_ADMIN_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Admin access required",
        )
