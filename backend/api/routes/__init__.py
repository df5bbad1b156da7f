"""API Routes."""

from fastapi import APIRouter

from .billing import router as billing_router
from .generation import router as generation_router
from .health import router as health_router
from .admin_offers import router as admin_offers_router
from .offers import router as offers_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(billing_router)
api_router.include_router(offers_router)
api_router.include_router(generation_router)
api_router.include_router(admin_offers_router)
