"""
Authentication endpoints: email/password, Google OAuth, logout and token
minting for the embedded apps.
"""
import logging
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials

from sukusuku.auth.dependencies import (
    AUTH_COOKIE,
    SESSION_ADMIN_KEY,
    SESSION_TOKEN_KEY,
    get_auth_service,
    get_current_user,
    security,
    session_of,
)
from sukusuku.auth.google import CALLBACK_ROUTE_NAME, callback_url, get_google_client, profile_from_token
from sukusuku.auth.tokens import IssuedToken, SESSION_TOKEN_LIFETIME
from sukusuku.config import settings
from sukusuku.exceptions import (
    DuplicateEmailError,
    InvalidCredentialsError,
    ProviderMismatchError,
    UserNotFoundError,
)
from sukusuku.models.user import User
from sukusuku.schemas.auth import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    PublicUser,
    RegisterRequest,
    TokenResponse,
)
from sukusuku.services.auth_service import AuthService, EMBED_APPS

logger = logging.getLogger(__name__)

router = APIRouter()


def set_auth_cookie(response: Response, issued: IssuedToken) -> None:
    response.set_cookie(
        AUTH_COOKIE,
        issued.token,
        max_age=int(SESSION_TOKEN_LIFETIME.total_seconds()),
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def _after_login_url(error: Optional[str] = None) -> str:
    base = settings.client_url.rstrip("/") if settings.client_url else ""
    if error:
        return f"{base}/?error={error}"
    return base or "/"


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create an email/password account and sign it in with a cookie."""
    try:
        result = await auth_service.register(
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    except DuplicateEmailError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    set_auth_cookie(response, result.token)
    return AuthResponse(user=PublicUser.model_validate(result.user), message="Registration successful")


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    try:
        result = await auth_service.login(body.email, body.password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except ProviderMismatchError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    set_auth_cookie(response, result.token)
    return AuthResponse(user=PublicUser.model_validate(result.user), message="Login successful")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Revoke every session token the request carries (bearer header, cookie
    and OAuth session) and drop the session.
    Succeeds for anonymous callers too.
    """
    session = session_of(request)
    await auth_service.logout(
        credentials.credentials if credentials else None,
        request.cookies.get(AUTH_COOKIE),
        session.get(SESSION_TOKEN_KEY),
    )

    session.pop(SESSION_TOKEN_KEY, None)
    session.pop(SESSION_ADMIN_KEY, None)

    response.delete_cookie(AUTH_COOKIE, httponly=True, secure=settings.is_production, samesite="strict")
    return MessageResponse(message="Logged out successfully")


@router.get("/user", response_model=PublicUser)
async def get_user(current_user: User = Depends(get_current_user)):
    """Current user without the password hash."""
    return PublicUser.model_validate(current_user)


async def _mint_app_token(auth_service: AuthService, user: User, app_name: str) -> TokenResponse:
    try:
        issued = await auth_service.issue_app_token(user.id, app_name)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return TokenResponse(token=issued.token)


@router.get("/token", response_model=TokenResponse)
async def get_token(
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Short-lived token not bound to a specific app."""
    return await _mint_app_token(auth_service, current_user, "general")


@router.get("/app-token/{app_name}", response_model=TokenResponse)
async def get_app_token(
    app_name: str,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Embed token for Penora or ImageGene.

    The token carries the user's profile and balances as of now; it is not
    refreshed when balances change later.
    """
    app_name = app_name.lower()
    if app_name not in EMBED_APPS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid app name")
    return await _mint_app_token(auth_service, current_user, app_name)


@router.get("/google")
async def google_login(request: Request):
    """Start the Google OAuth flow."""
    client = get_google_client()
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google login is not configured",
        )
    return await client.authorize_redirect(request, callback_url(request))


@router.get("/google/callback", name=CALLBACK_ROUTE_NAME)
async def google_callback(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Finish the Google OAuth flow and store a session token in the session."""
    client = get_google_client()
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google login is not configured",
        )

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as e:
        logger.warning(f"Google OAuth callback failed: {e.error}")
        return RedirectResponse(_after_login_url("oauth_failed"), status_code=status.HTTP_302_FOUND)

    profile = profile_from_token(token)
    if profile is None:
        logger.warning("Google profile has no email address")
        return RedirectResponse(_after_login_url("no_email"), status_code=status.HTTP_302_FOUND)

    user, _ = await auth_service.login_oauth(**profile)
    issued = await auth_service.start_session(user)
    request.session[SESSION_TOKEN_KEY] = issued.token
    return RedirectResponse(_after_login_url(), status_code=status.HTTP_302_FOUND)
