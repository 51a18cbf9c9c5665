"""
Pydantic schemas for admin endpoints.
"""
from datetime import datetime
from pydantic import Field
from typing import List, Optional

from sukusuku.schemas.base import CamelModel


class AdminLoginRequest(CamelModel):
    password: Optional[str] = None


class AdminOverview(CamelModel):
    total_users: int
    new_users_24h: int = Field(..., alias="newUsers24h")
    active_users: int
    total_credits_used: int
    avg_penora_credits: int
    avg_image_gene_credits: int


class RecentUser(CamelModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    total_credits_used: int = 0


class DailyRegistration(CamelModel):
    date: str
    count: int


class AdminStatsResponse(CamelModel):
    overview: AdminOverview
    recent_users: List[RecentUser]
    daily_registrations: List[DailyRegistration]
