"""
Google OAuth client (Authlib, Starlette integration).
Registered once at application startup when credentials are configured.
"""
import logging
from typing import Any, Dict, Optional

from authlib.integrations.starlette_client import OAuth
from starlette.requests import Request

from sukusuku.config import settings

logger = logging.getLogger(__name__)

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"
CALLBACK_ROUTE_NAME = "google_callback"

oauth = OAuth()
_initialized = False


def initialize_google_oauth() -> bool:
    """
    Register the Google client.

    Returns:
        False when GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are missing, in
        which case Google login is disabled
    """
    global _initialized

    if _initialized:
        return True

    if not settings.google_enabled:
        logger.warning("Google OAuth credentials not found - Google login will be disabled")
        return False

    oauth.register(
        name="google",
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={"scope": "openid email profile"},
    )
    _initialized = True
    logger.info("Google OAuth client registered")
    return True


def get_google_client():
    """Registered Google client, or None when Google login is disabled."""
    if not _initialized:
        return None
    return oauth.create_client("google")


def callback_url(request: Request) -> str:
    if settings.server_url:
        return f"{settings.server_url.rstrip('/')}/api/auth/google/callback"
    return str(request.url_for(CALLBACK_ROUTE_NAME))


def profile_from_token(token: Dict[str, Any]) -> Optional[Dict[str, Optional[str]]]:
    """
    Extract the fields we store from an OpenID Connect token response.

    Returns:
        None if the profile carries no email address
    """
    userinfo = token.get("userinfo") or {}
    email = userinfo.get("email")
    if not email:
        return None
    return {
        "email": email,
        "first_name": userinfo.get("given_name"),
        "last_name": userinfo.get("family_name"),
        "profile_image_url": userinfo.get("picture"),
    }
