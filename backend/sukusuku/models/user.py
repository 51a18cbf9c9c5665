"""
User model with per-app credit balances.
Authenticated either by email/password or by Google OAuth.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from datetime import datetime
import enum

from sukusuku.models.base import Base, generate_uuid


class AuthProvider(str, enum.Enum):
    """How the account signs in."""
    EMAIL = "email"
    GOOGLE = "google"


class User(Base):
    """User account with Penora and ImageGene credit balances."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    profile_image_url = Column(String(1024), nullable=True)

    password_hash = Column(String(255), nullable=True)  # Only for email accounts
    auth_provider = Column(String(16), nullable=False, default=AuthProvider.EMAIL.value)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    welcome_email_sent = Column(Boolean, nullable=False, default=False)

    penora_credits = Column(Integer, nullable=True, default=100)
    imagegene_credits = Column(Integer, nullable=True, default=50)
    total_credits_used = Column(Integer, nullable=False, default=0)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def uses_password(self) -> bool:
        return self.auth_provider == AuthProvider.EMAIL.value and bool(self.password_hash)

    def __repr__(self):
        return (
            f"<User(id={self.id}, email={self.email}, "
            f"penora={self.penora_credits}, imagegene={self.imagegene_credits})>"
        )
