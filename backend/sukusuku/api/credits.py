"""
Credit endpoints: reconciled balances for the dashboard and usage reports
from the external tools.
"""
import logging
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from sukusuku.auth.dependencies import (
    AuthContext,
    get_credit_service,
    get_current_user,
    get_optional_auth_context,
    get_user_repository,
)
from sukusuku.config import settings
from sukusuku.models.user import User
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.schemas.credits import (
    CreditSources,
    CreditSyncRequest,
    CreditSyncResponse,
    CreditUpdateRequest,
    CreditsResponse,
)
from sukusuku.services.credit_service import CreditService, CreditSource
from sukusuku.utils.logging import log_credits_fetched

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/user/credits", response_model=CreditsResponse)
async def get_user_credits(
    current_user: User = Depends(get_current_user),
    credit_service: CreditService = Depends(get_credit_service),
):
    """
    Current balances, live from the external apps when they answer.
    Each balance is tagged with where it came from.
    """
    start_time = time.time()
    snapshot = await credit_service.get_snapshot(current_user)

    log_credits_fetched(
        logger,
        user_id=current_user.id,
        penora_credits=snapshot.penora.value,
        penora_source=snapshot.penora.source.value,
        imagegene_credits=snapshot.imagegene.value,
        imagegene_source=snapshot.imagegene.source.value,
        duration_ms=(time.time() - start_time) * 1000,
    )

    return CreditsResponse(
        penora_credits=snapshot.penora.value,
        imagegene_credits=snapshot.imagegene.value,
        total_credits_used=snapshot.total_credits_used,
        sources=CreditSources(penora=snapshot.penora.source, imagegene=snapshot.imagegene.source),
    )


@router.post("/user/credits/update", response_model=CreditsResponse)
async def update_user_credits(
    body: CreditUpdateRequest,
    current_user: User = Depends(get_current_user),
    credit_service: CreditService = Depends(get_credit_service),
):
    """Overwrite the caller's stored balances."""
    if body.penora_credits is None and body.imagegene_credits is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No credit values provided")

    user = await credit_service.set_balances(
        current_user,
        penora_credits=body.penora_credits,
        imagegene_credits=body.imagegene_credits,
    )
    return CreditsResponse(
        penora_credits=user.penora_credits if user.penora_credits is not None else settings.default_penora_credits,
        imagegene_credits=(
            user.imagegene_credits if user.imagegene_credits is not None else settings.default_imagegene_credits
        ),
        total_credits_used=user.total_credits_used or 0,
        sources=CreditSources(penora=CreditSource.STALE, imagegene=CreditSource.STALE),
    )


def _api_key_valid(api_key: Optional[str]) -> bool:
    expected = settings.credits_sync_api_key
    return bool(expected and api_key and secrets.compare_digest(api_key, expected))


async def _resolve_sync_user(
    body: CreditSyncRequest,
    context: Optional[AuthContext],
    api_key: Optional[str],
    users: UserRepository,
) -> User:
    """
    The reporting user is either the authenticated caller, or the body's
    userId when the trusted sync key is presented.
    """
    if context is not None:
        if body.user_id and body.user_id != context.user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot sync credits for another user")
        return context.user

    if _api_key_valid(api_key):
        if not body.user_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required")
        user = await users.get(body.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("/credits/sync", response_model=CreditSyncResponse)
async def sync_credits(
    body: CreditSyncRequest,
    context: Optional[AuthContext] = Depends(get_optional_auth_context),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    users: UserRepository = Depends(get_user_repository),
    credit_service: CreditService = Depends(get_credit_service),
):
    """
    Apply usage reported by Penora or ImageGene.

    Balances are decremented and floored at zero. A repeated report is
    applied again.
    """
    user = await _resolve_sync_user(body, context, x_api_key, users)

    updated = await credit_service.apply_usage(
        user,
        penora_used=body.penora_credits_used,
        imagegene_used=body.imagegene_credits_used,
    )
    return CreditSyncResponse(
        success=True,
        penora_credits=updated.penora_credits,
        imagegene_credits=updated.imagegene_credits,
        timestamp=body.timestamp if body.timestamp is not None else int(time.time() * 1000),
    )
