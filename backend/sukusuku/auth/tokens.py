"""
Signed token issuance and verification (HS256 JWT via python-jose).

Two shapes are issued:
- session tokens: identify a user for API access, 7 day lifetime
- app tokens: embed a snapshot of the user's profile and credit balances for
  the Penora / ImageGene iframes, 1 hour lifetime

Signature checks alone do not make a token valid; callers must also find it
in the token store (see auth.dependencies).
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import JWTError, jwt

from sukusuku.config import settings
from sukusuku.exceptions import InvalidTokenError
from sukusuku.models.auth_token import TokenType
from sukusuku.models.user import User

ALGORITHM = "HS256"
SESSION_TOKEN_LIFETIME = timedelta(days=7)
APP_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass
class IssuedToken:
    """A freshly signed token and the metadata needed to store it."""
    token: str
    token_type: TokenType
    expires_at: datetime  # Naive UTC, matches the auth_tokens column

    @property
    def max_age_seconds(self) -> int:
        return int((self.expires_at - datetime.utcnow()).total_seconds())


class TokenIssuer:
    """Creates and verifies signed tokens with a shared secret."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("JWT_SECRET must be set to issue tokens")
        self._secret = secret

    def _sign(self, claims: Dict[str, Any], token_type: TokenType, lifetime: timedelta) -> IssuedToken:
        issued_at = datetime.now(timezone.utc)
        expires_at = issued_at + lifetime
        payload = {
            **claims,
            "type": token_type.value,
            "iat": issued_at,
            "exp": expires_at,
            "jti": uuid.uuid4().hex,  # Two tokens minted in the same second must differ
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return IssuedToken(
            token=token,
            token_type=token_type,
            expires_at=expires_at.replace(tzinfo=None),
        )

    def issue_session_token(self, user_id: str) -> IssuedToken:
        return self._sign({"sub": user_id}, TokenType.SESSION, SESSION_TOKEN_LIFETIME)

    def issue_app_token(self, user: User, app_name: str) -> IssuedToken:
        """
        Mint an embed token for an external app.

        The credit balances are copied at mint time; later balance changes are
        not reflected in an already issued token.
        """
        penora = user.penora_credits
        imagegene = user.imagegene_credits
        claims = {
            "sub": user.id,
            "userId": user.id,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "profileImageUrl": user.profile_image_url,
            "penoraCredits": penora if penora is not None else settings.default_penora_credits,
            "imagegeneCredits": imagegene if imagegene is not None else settings.default_imagegene_credits,
            "appName": app_name,
        }
        return self._sign(claims, TokenType.APP, APP_TOKEN_LIFETIME)

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify signature and expiry and return the claims.

        Raises:
            InvalidTokenError: If the token is malformed, badly signed or expired
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}")
        if not claims.get("sub"):
            raise InvalidTokenError("Invalid token: missing subject")
        return claims


def get_token_issuer() -> TokenIssuer:
    """FastAPI dependency returning an issuer bound to the configured secret."""
    return TokenIssuer(settings.jwt_secret)
