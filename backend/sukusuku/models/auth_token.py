"""
AuthToken model.
Every issued token is stored so it can be revoked before it expires.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from datetime import datetime
import enum

from sukusuku.models.base import Base, generate_uuid


class TokenType(str, enum.Enum):
    """Kind of token stored in auth_tokens."""
    SESSION = "jwt"  # Long-lived login token
    APP = "app"  # Short-lived embed token for Penora / ImageGene


class AuthToken(Base):
    """Issued token with owner and expiry."""

    __tablename__ = "auth_tokens"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    token = Column(String(2048), nullable=False, unique=True)
    type = Column(String(16), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_auth_tokens_user_id", "user_id"),
    )

    def is_expired(self, now: datetime = None) -> bool:
        return self.expires_at < (now or datetime.utcnow())

    def __repr__(self):
        return f"<AuthToken(user_id={self.user_id}, type={self.type}, expires_at={self.expires_at})>"
