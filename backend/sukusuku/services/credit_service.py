"""
Credit reconciliation between the local database and the external apps.

Balances live in two places: the users table and the Penora / ImageGene
services. Reads prefer a live remote value and fall back to the stored one,
then to the configured default. Remote values are never written back here.

Usage reports from the external tools decrement stored balances, floored at
zero. There is no idempotency key: a duplicated report decrements twice.
"""
import asyncio
import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from sukusuku.config import settings
from sukusuku.models.user import User
from sukusuku.repositories.user_repository import UserRepository
from sukusuku.utils.logging import log_remote_credit_failure, log_credits_synced
from sukusuku.utils.metrics import (
    remote_credit_requests_total,
    remote_credit_latency_seconds,
    credits_synced_total,
)

logger = logging.getLogger(__name__)

PENORA = "penora"
IMAGEGENE = "imagegene"


class CreditSource(str, enum.Enum):
    """Where a displayed balance came from."""
    LIVE = "live"  # Remote service answered
    STALE = "stale"  # Remote unavailable, stored value used
    DEFAULT = "default"  # Neither source had a value


@dataclass(frozen=True)
class CreditValue:
    value: int
    source: CreditSource


@dataclass(frozen=True)
class CreditSnapshot:
    """Balances returned to the client. Derived, never persisted."""
    penora: CreditValue
    imagegene: CreditValue
    total_credits_used: int


def reconcile(remote: Optional[int], stored: Optional[int], default: int) -> CreditValue:
    """Pick the remote value, then the stored value, then the default."""
    if remote is not None:
        return CreditValue(remote, CreditSource.LIVE)
    if stored is not None:
        return CreditValue(stored, CreditSource.STALE)
    return CreditValue(default, CreditSource.DEFAULT)


def _parse_credits(data: Any) -> Optional[int]:
    """Extract a numeric `credits` field, rejecting booleans, strings and non-finite floats."""
    if not isinstance(data, dict):
        return None
    credits = data.get("credits")
    if isinstance(credits, bool) or not isinstance(credits, (int, float)):
        return None
    # json accepts 1e400 and Infinity, int() would overflow on them
    if isinstance(credits, float) and not math.isfinite(credits):
        return None
    return int(credits)


class RemoteCreditClient:
    """HTTP client for the Penora and ImageGene credit APIs."""

    def __init__(
        self,
        penora_url: Optional[str] = None,
        penora_api_key: Optional[str] = None,
        imagegene_url: Optional[str] = None,
        imagegene_api_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.penora_url = penora_url.rstrip("/") if penora_url else None
        self.penora_api_key = penora_api_key
        self.imagegene_url = imagegene_url.rstrip("/") if imagegene_url else None
        self.imagegene_api_key = imagegene_api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "RemoteCreditClient":
        return cls(
            penora_url=settings.penora_app_url,
            penora_api_key=settings.penora_api_key,
            imagegene_url=settings.imagegene_base_url,
            imagegene_api_key=settings.imagegene_api_key,
            timeout=settings.remote_credits_timeout,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @staticmethod
    def _headers(api_key: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        return headers

    def _balance_endpoint(self, app: str) -> Optional[tuple]:
        if app == PENORA and self.penora_url:
            return f"{self.penora_url}/api/unified/user-info", self.penora_api_key
        if app == IMAGEGENE and self.imagegene_url:
            return f"{self.imagegene_url}/api/user-credits", self.imagegene_api_key
        return None

    async def _get(self, url: str, params: Dict[str, str], api_key: Optional[str]) -> httpx.Response:
        async with self._client() as client:
            return await client.get(url, params=params, headers=self._headers(api_key))

    async def fetch_balance(self, app: str, user_id: str) -> Optional[int]:
        """
        Fetch the live balance for one app.

        Never raises: failures, timeouts, non-2xx answers and payloads without
        a numeric `credits` field all return None.
        """
        endpoint = self._balance_endpoint(app)
        if endpoint is None:
            return None
        url, api_key = endpoint

        start_time = time.time()
        try:
            # wait_for bounds the whole call, httpx timeouts only bound each phase
            response = await asyncio.wait_for(
                self._get(url, {"user_id": user_id}, api_key),
                timeout=self.timeout,
            )
            response.raise_for_status()
            credits = _parse_credits(response.json())
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as e:
            log_remote_credit_failure(
                logger,
                app=app,
                user_id=user_id,
                error=str(e) or type(e).__name__,
                duration_ms=(time.time() - start_time) * 1000,
            )
            return None
        finally:
            remote_credit_latency_seconds.labels(app=app).observe(time.time() - start_time)

        if credits is None:
            log_remote_credit_failure(logger, app=app, user_id=user_id, error="response has no numeric credits field")
        return credits

    async def get_penora_user_info(self, user_id: str) -> httpx.Response:
        """Raw Penora user-info lookup. Raises httpx.HTTPError on transport failure."""
        if not self.penora_url:
            raise RuntimeError("PENORA_APP_URL is not configured")
        return await self._get(
            f"{self.penora_url}/api/unified/user-info",
            {"user_id": user_id},
            self.penora_api_key,
        )

    async def add_penora_credits(self, user_id: str, amount: int, description: Optional[str] = None) -> httpx.Response:
        """Credit a purchase in Penora. Raises httpx.HTTPError on transport failure."""
        if not self.penora_url:
            raise RuntimeError("PENORA_APP_URL is not configured")
        async with self._client() as client:
            return await client.post(
                f"{self.penora_url}/api/unified/add-credits",
                headers=self._headers(self.penora_api_key),
                json={
                    "user_id": user_id,
                    "amount": amount,
                    "transaction_type": "purchase",
                    "description": description,
                },
            )


def get_remote_credit_client() -> RemoteCreditClient:
    """FastAPI dependency for the remote credit client."""
    return RemoteCreditClient.from_settings()


class CreditService:
    """Reads reconciled balances and applies usage reports."""

    def __init__(self, users: UserRepository, remote: RemoteCreditClient):
        self.users = users
        self.remote = remote

    async def get_snapshot(self, user: User) -> CreditSnapshot:
        """
        Reconcile stored and live balances for a user.

        Both remote calls run concurrently and independently; they may
        disagree with each other and with the database.
        """
        penora_remote, imagegene_remote = await asyncio.gather(
            self.remote.fetch_balance(PENORA, user.id),
            self.remote.fetch_balance(IMAGEGENE, user.id),
        )

        penora = reconcile(penora_remote, user.penora_credits, settings.default_penora_credits)
        imagegene = reconcile(imagegene_remote, user.imagegene_credits, settings.default_imagegene_credits)

        remote_credit_requests_total.labels(app=PENORA, source=penora.source.value).inc()
        remote_credit_requests_total.labels(app=IMAGEGENE, source=imagegene.source.value).inc()

        return CreditSnapshot(
            penora=penora,
            imagegene=imagegene,
            total_credits_used=user.total_credits_used or 0,
        )

    async def apply_usage(self, user: User, penora_used: int = 0, imagegene_used: int = 0) -> User:
        """
        Subtract reported usage from the stored balances, never below zero.

        This is a read-modify-write without locking: concurrent reports for
        the same user can lose an update.

        Raises:
            ValueError: If a usage amount is negative
        """
        if penora_used < 0 or imagegene_used < 0:
            raise ValueError("Credit usage cannot be negative")

        penora_before = user.penora_credits if user.penora_credits is not None else settings.default_penora_credits
        imagegene_before = (
            user.imagegene_credits if user.imagegene_credits is not None else settings.default_imagegene_credits
        )

        penora_after = max(0, penora_before - penora_used)
        imagegene_after = max(0, imagegene_before - imagegene_used)
        deducted = (penora_before - penora_after) + (imagegene_before - imagegene_after)

        updated = await self.users.update_credits(
            user.id,
            penora_credits=penora_after,
            imagegene_credits=imagegene_after,
            credits_used_delta=deducted,
        )

        if penora_used:
            credits_synced_total.labels(app=PENORA).inc()
        if imagegene_used:
            credits_synced_total.labels(app=IMAGEGENE).inc()
        log_credits_synced(
            logger,
            user_id=user.id,
            penora_credits=penora_after,
            imagegene_credits=imagegene_after,
            penora_used=penora_used,
            imagegene_used=imagegene_used,
        )
        return updated

    async def set_balances(
        self,
        user: User,
        penora_credits: Optional[int] = None,
        imagegene_credits: Optional[int] = None,
    ) -> User:
        """Overwrite stored balances with absolute values."""
        return await self.users.update_credits(
            user.id,
            penora_credits=penora_credits,
            imagegene_credits=imagegene_credits,
        )
