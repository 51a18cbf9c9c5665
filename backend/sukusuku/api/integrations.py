"""
Entry points into the external apps.

`link_router` is mounted at the application root (`/penora_link`,
`/imagegene_link`); `router` holds the Penora pass-through under `/api/penora`.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, RedirectResponse

from sukusuku.auth.dependencies import get_current_user
from sukusuku.config import settings
from sukusuku.models.user import User
from sukusuku.schemas.credits import PenoraAddCreditsRequest
from sukusuku.services.credit_service import RemoteCreditClient, get_remote_credit_client

logger = logging.getLogger(__name__)

link_router = APIRouter()
router = APIRouter()


def build_app_link(base_url: str, user: User) -> str:
    """App URL carrying the user's identity as query parameters."""
    query = urlencode({
        "user_id": user.id,
        "email": user.email or "",
        "first_name": user.first_name or "",
        "last_name": user.last_name or "",
    })
    return f"{base_url.rstrip('/')}/?{query}"


def _redirect_to(app_label: str, base_url: Optional[str], user: User) -> RedirectResponse:
    if not base_url:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{app_label} is not configured",
        )
    logger.info(f"Redirecting user {user.id} to {app_label}")
    return RedirectResponse(build_app_link(base_url, user))


@link_router.get("/penora_link")
async def penora_link(current_user: User = Depends(get_current_user)):
    return _redirect_to("Penora", settings.penora_app_url, current_user)


@link_router.get("/imagegene_link")
async def imagegene_link(current_user: User = Depends(get_current_user)):
    return _redirect_to("ImageGene", settings.imagegene_base_url, current_user)


def _ensure_own_account(user_id: str, current_user: User) -> None:
    if user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot access another user's credits")


async def _forward(call, failure_message: str) -> JSONResponse:
    """
    Run an upstream Penora call and relay its JSON.

    Raises:
        HTTPException 503: Penora is not configured
        HTTPException 502: Penora could not be reached
    """
    try:
        response = await call
    except RuntimeError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except httpx.HTTPError as e:
        logger.error(f"Penora request failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=failure_message)

    if not response.is_success:
        raise HTTPException(status_code=response.status_code, detail=failure_message)
    try:
        return JSONResponse(content=response.json())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=failure_message)


@router.get("/credits/{user_id}")
async def get_penora_credits(
    user_id: str,
    current_user: User = Depends(get_current_user),
    remote: RemoteCreditClient = Depends(get_remote_credit_client),
):
    """Penora's user-info payload for the caller."""
    _ensure_own_account(user_id, current_user)
    return await _forward(remote.get_penora_user_info(user_id), "Failed to fetch Penora credits")


@router.post("/add-credits")
async def add_penora_credits(
    body: PenoraAddCreditsRequest,
    current_user: User = Depends(get_current_user),
    remote: RemoteCreditClient = Depends(get_remote_credit_client),
):
    """Record a purchase in Penora for the caller."""
    _ensure_own_account(body.user_id, current_user)
    return await _forward(
        remote.add_penora_credits(body.user_id, body.amount, body.description),
        "Failed to add credits",
    )
