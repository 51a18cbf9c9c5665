"""
Pydantic schemas for API request/response validation.
"""
from sukusuku.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    PublicUser,
    AuthResponse,
    TokenResponse,
    MessageResponse,
)
from sukusuku.schemas.contact import ContactRequest, ContactResponse

__all__ = [
    "RegisterRequest",
    "LoginRequest",
    "PublicUser",
    "AuthResponse",
    "TokenResponse",
    "MessageResponse",
    "ContactRequest",
    "ContactResponse",
]
