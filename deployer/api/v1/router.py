"""Main router for API v1."""

from fastapi import APIRouter

from deployer.api.v1 import health

router = APIRouter(prefix="/v1")

# Include sub-routers
router.include_router(health.router, tags=["health"])
