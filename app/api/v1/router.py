"""
API router
"""

from fastapi import APIRouter
from app.api.v1 import generations
from app.api.v1 import credits
from app.api.v1 import topup
from app.api.v1 import webhooks
from app.api.v1 import models
from app.api.v1 import health
from app.api.v1 import invites

api_router = APIRouter()

# User-facing endpoints (caller identity from X-User-Id)
api_router.include_router(generations.router, prefix="/generations", tags=["generations"])
api_router.include_router(credits.router, prefix="/credits", tags=["credits"])
api_router.include_router(topup.router, prefix="/topup", tags=["payments"])
api_router.include_router(invites.router, prefix="/invites", tags=["credits"])
api_router.include_router(models.router, prefix="/models", tags=["service"])
api_router.include_router(health.router, prefix="/health", tags=["service"])

# Provider and payment gateway callbacks
api_router.include_router(webhooks.router, prefix="/api/webhook", tags=["webhooks"])
