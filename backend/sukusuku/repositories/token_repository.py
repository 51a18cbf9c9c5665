"""
Repository for issued auth tokens.
A token authorizes requests only while its row exists and is unexpired.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from datetime import datetime
from typing import Optional

from sukusuku.models.auth_token import AuthToken, TokenType


class TokenRepository:
    """Token store backed by the auth_tokens table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: str,
        token: str,
        token_type: TokenType,
        expires_at: datetime,
    ) -> AuthToken:
        record = AuthToken(
            user_id=user_id,
            token=token,
            type=token_type.value,
            expires_at=expires_at,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get(self, token: str) -> Optional[AuthToken]:
        result = await self.db.execute(
            select(AuthToken).where(AuthToken.token == token)
        )
        return result.scalar_one_or_none()

    async def delete(self, token: str) -> None:
        await self.db.execute(delete(AuthToken).where(AuthToken.token == token))
        await self.db.commit()

    async def delete_for_user(self, user_id: str, token_type: Optional[TokenType] = None) -> None:
        statement = delete(AuthToken).where(AuthToken.user_id == user_id)
        if token_type is not None:
            statement = statement.where(AuthToken.type == token_type.value)
        await self.db.execute(statement)
        await self.db.commit()

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """
        Remove every token past its expiry.

        Returns:
            Number of deleted rows
        """
        result = await self.db.execute(
            delete(AuthToken).where(AuthToken.expires_at < (now or datetime.utcnow()))
        )
        await self.db.commit()
        return result.rowcount or 0
