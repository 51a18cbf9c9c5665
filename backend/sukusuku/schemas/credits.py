"""
Pydantic schemas for credit endpoints.
"""
from pydantic import Field
from typing import Optional

from sukusuku.schemas.base import CamelModel
from sukusuku.services.credit_service import CreditSource


class CreditSources(CamelModel):
    """Which path produced each displayed balance."""
    penora: CreditSource
    imagegene: CreditSource


class CreditsResponse(CamelModel):
    """Reconciled credit snapshot."""
    penora_credits: int
    imagegene_credits: int
    total_credits_used: int
    sources: CreditSources


class CreditUpdateRequest(CamelModel):
    """Absolute balance update from the dashboard."""
    penora_credits: Optional[int] = Field(None, ge=0)
    imagegene_credits: Optional[int] = Field(None, ge=0)


class CreditSyncRequest(CamelModel):
    """Usage reported by an external tool."""
    penora_credits_used: int = Field(0, ge=0)
    imagegene_credits_used: int = Field(0, ge=0)
    timestamp: Optional[int] = None  # Milliseconds since epoch, echoed back
    user_id: Optional[str] = None  # Required when calling with X-API-Key


class CreditSyncResponse(CamelModel):
    success: bool
    penora_credits: int
    imagegene_credits: int
    timestamp: int


class PenoraAddCreditsRequest(CamelModel):
    """Pass-through purchase credited in Penora."""
    user_id: str
    amount: int = Field(..., gt=0)
    description: Optional[str] = None
