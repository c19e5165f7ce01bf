"""API v1 router configuration."""

from fastapi import APIRouter

from healthqueue.api.v1.endpoints import admin, health, queue, realtime

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(queue.router, prefix="/queue", tags=["Queue"])
api_router.include_router(admin.router, tags=["Admin"])
api_router.include_router(realtime.router, tags=["Realtime"])
