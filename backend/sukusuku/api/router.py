"""
API router aggregator.
Includes all route modules mounted under /api.
"""
from fastapi import APIRouter
from sukusuku.api import admin, auth, contact, credits, health, integrations

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(credits.router, tags=["credits"])
api_router.include_router(integrations.router, prefix="/penora", tags=["integrations"])
api_router.include_router(contact.router, prefix="/contact", tags=["contact"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
