"""
Admin endpoints: password login and dashboard statistics.
"""
import logging
import secrets
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status

from sukusuku.auth.dependencies import SESSION_ADMIN_KEY, get_user_repository, require_admin
from sukusuku.config import settings
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.schemas.admin import (
    AdminLoginRequest,
    AdminOverview,
    AdminStatsResponse,
    DailyRegistration,
    RecentUser,
)
from sukusuku.schemas.auth import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter()

ACTIVE_WINDOW = timedelta(minutes=10)


@router.post("/login", response_model=MessageResponse)
async def admin_login(body: AdminLoginRequest, request: Request):
    """Check the admin password and flag the session."""
    if not settings.admin_password:
        logger.error("ADMIN_PASSWORD is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin login is not configured",
        )

    submitted = (body.password or "").strip()
    if not secrets.compare_digest(submitted.encode(), settings.admin_password.strip().encode()):
        logger.warning("Admin login rejected", extra={"event": "admin_login_failed"})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin password")

    request.session[SESSION_ADMIN_KEY] = True
    logger.info("Admin logged in", extra={"event": "admin_login"})
    return MessageResponse(message="Admin login successful")


@router.get("/stats", response_model=AdminStatsResponse, dependencies=[Depends(require_admin)])
async def admin_stats(users: UserRepository = Depends(get_user_repository)):
    now = datetime.utcnow()

    aggregates = await users.credit_aggregates()
    overview = AdminOverview(
        total_users=await users.count_users(),
        new_users_24h=await users.count_users(created_after=now - timedelta(hours=24)),
        active_users=await users.count_active_users(since=now - ACTIVE_WINDOW),
        total_credits_used=int(aggregates["total_used"]),
        avg_penora_credits=round(aggregates["avg_penora"]),
        avg_image_gene_credits=round(aggregates["avg_imagegene"]),
    )

    return AdminStatsResponse(
        overview=overview,
        recent_users=[RecentUser.model_validate(user) for user in await users.recent_users()],
        daily_registrations=[DailyRegistration(**row) for row in await users.daily_registrations()],
    )
