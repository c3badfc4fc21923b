"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from stockloyal.api.webhooks import router as webhooks_router
from stockloyal.api.webhook_admin import router as webhook_admin_router
from stockloyal.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(webhook_admin_router)
api_router.include_router(health_router)
