"""
Database models package.
"""
from sukusuku.models.base import Base
from sukusuku.models.user import User, AuthProvider
from sukusuku.models.auth_token import AuthToken, TokenType

__all__ = [
    "Base",
    "User",
    "AuthProvider",
    "AuthToken",
    "TokenType",
]
