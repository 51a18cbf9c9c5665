"""
Pydantic schemas for authentication endpoints.
"""
from pydantic import EmailStr, Field, model_validator
from typing import Optional

from sukusuku.schemas.base import CamelModel


class RegisterRequest(CamelModel):
    """Schema for email/password registration."""
    email: EmailStr
    first_name: str = Field(..., min_length=1, description="First name is required")
    last_name: str = Field(..., min_length=1, description="Last name is required")
    password: str = Field(..., min_length=6, description="Password must be at least 6 characters")
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginRequest(CamelModel):
    """Schema for email/password login."""
    email: EmailStr
    password: str = Field(..., min_length=6)


class PublicUser(CamelModel):
    """User fields safe to return to the browser (no password hash)."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    penora_credits: Optional[int] = None
    imagegene_credits: Optional[int] = None


class AuthResponse(CamelModel):
    """Response for register and login. The token travels only in the cookie."""
    user: PublicUser
    message: str


class TokenResponse(CamelModel):
    """Response carrying an embed token."""
    token: str


class MessageResponse(CamelModel):
    message: str
