"""
Repository for user rows.
Credit updates are plain field assignments: concurrent writers race and the
last one wins.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sukusuku.config import settings
from sukusuku.exceptions import DuplicateEmailError
from sukusuku.models.user import User, AuthProvider


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """Credential store backed by the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return await self.db.get(User, user_id)

    async def find_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        password_hash: Optional[str] = None,
        auth_provider: AuthProvider = AuthProvider.EMAIL,
        profile_image_url: Optional[str] = None,
        is_email_verified: bool = False,
    ) -> User:
        """
        Insert a new user with the default starting balances.

        Raises:
            DuplicateEmailError: If any account already uses this email
        """
        email = normalize_email(email)
        if await self.find_by_email(email) is not None:
            raise DuplicateEmailError(email)

        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash if auth_provider == AuthProvider.EMAIL else None,
            auth_provider=auth_provider.value,
            profile_image_url=profile_image_url,
            is_email_verified=is_email_verified,
            penora_credits=settings.default_penora_credits,
            imagegene_credits=settings.default_imagegene_credits,
            total_credits_used=0,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            await self.db.rollback()
            raise DuplicateEmailError(email)
        await self.db.refresh(user)
        return user

    async def upsert_oauth_user(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> Tuple[User, bool]:
        """
        Create or refresh the account for a Google sign-in.

        An existing email account is converted to a Google account and loses
        its password hash.

        Returns:
            (user, created) tuple
        """
        user = await self.find_by_email(email)
        if user is None:
            user = await self.create(
                email=email,
                first_name=first_name,
                last_name=last_name,
                auth_provider=AuthProvider.GOOGLE,
                profile_image_url=profile_image_url,
                is_email_verified=True,
            )
            user.last_login_at = datetime.utcnow()
            await self.db.commit()
            return user, True

        user.first_name = first_name or user.first_name
        user.last_name = last_name or user.last_name
        user.profile_image_url = profile_image_url or user.profile_image_url
        user.auth_provider = AuthProvider.GOOGLE.value
        user.password_hash = None
        user.is_email_verified = True
        user.last_login_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        return user, False

    async def update_credits(
        self,
        user_id: str,
        penora_credits: Optional[int] = None,
        imagegene_credits: Optional[int] = None,
        credits_used_delta: Optional[int] = None,
    ) -> Optional[User]:
        """
        Assign new balances. A positive delta is added to total_credits_used.

        Returns:
            Updated user, or None if the user does not exist
        """
        user = await self.get(user_id)
        if user is None:
            return None

        if penora_credits is not None:
            user.penora_credits = penora_credits
        if imagegene_credits is not None:
            user.imagegene_credits = imagegene_credits
        if credits_used_delta and credits_used_delta > 0:
            user.total_credits_used = (user.total_credits_used or 0) + credits_used_delta
        user.updated_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def update_last_login(self, user_id: str) -> None:
        user = await self.get(user_id)
        if user is not None:
            user.last_login_at = datetime.utcnow()
            await self.db.commit()

    async def mark_welcome_email_sent(self, user_id: str) -> None:
        user = await self.get(user_id)
        if user is not None:
            user.welcome_email_sent = True
            user.updated_at = datetime.utcnow()
            await self.db.commit()

    # Admin statistics

    async def count_users(self, created_after: Optional[datetime] = None) -> int:
        query = select(func.count()).select_from(User)
        if created_after is not None:
            query = query.where(User.created_at > created_after)
        result = await self.db.execute(query)
        return int(result.scalar() or 0)

    async def count_active_users(self, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(User).where(User.last_login_at > since)
        )
        return int(result.scalar() or 0)

    async def credit_aggregates(self) -> Dict[str, float]:
        result = await self.db.execute(
            select(
                func.sum(User.total_credits_used),
                func.avg(User.penora_credits),
                func.avg(User.imagegene_credits),
            )
        )
        total_used, avg_penora, avg_imagegene = result.one()
        return {
            "total_used": float(total_used or 0),
            "avg_penora": float(avg_penora or 0),
            "avg_imagegene": float(avg_imagegene or 0),
        }

    async def recent_users(self, limit: int = 10) -> List[User]:
        result = await self.db.execute(
            select(User).order_by(User.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def daily_registrations(self, days: int = 7) -> List[Dict[str, Any]]:
        since = datetime.utcnow() - timedelta(days=days)
        day = func.date(User.created_at)
        result = await self.db.execute(
            select(day.label("date"), func.count().label("count"))
            .where(User.created_at > since)
            .group_by(day)
            .order_by(day)
        )
        return [{"date": str(row.date), "count": int(row.count)} for row in result.all()]
