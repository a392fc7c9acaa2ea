"""
routers/health.py
Docker / load balancer health probe.
"""

from fastapi import APIRouter, Depends
from note_relay.models.response import HealthResponse
from note_relay.core.config import Settings, get_settings

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings)):
    return HealthResponse(
        status="ok",
        version=settings.APP_VERSION,
        upstream_url=settings.DIFY_API_URL,
        has_api_key=settings.has_api_key,
    )


@router.get("/")
async def root(settings: Settings = Depends(get_settings)):
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
