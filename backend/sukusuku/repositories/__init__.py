"""
Repository layer for database operations.
"""
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.repositories.token_repository import TokenRepository

__all__ = ["UserRepository", "TokenRepository"]
