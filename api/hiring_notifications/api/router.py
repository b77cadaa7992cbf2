from fastapi import APIRouter

from hiring_notifications.api.routes import health, hiring, notifications

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["student"])
api_router.include_router(hiring.router, prefix="/company", tags=["company"])
