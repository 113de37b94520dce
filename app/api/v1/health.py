"""
Health check endpoint
"""

from fastapi import APIRouter, Depends
from app.api.deps import get_services
from app.core.config import settings
from app.services.container import Services

router = APIRouter()


@router.get("")
async def health(services: Services = Depends(get_services)):
    """
    Health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "provider_configured": services.provider.is_configured(),
        "webhook_url_configured": bool(settings.WEBHOOK_BASE_URL),
        "payment_service_configured": services.payments.is_configured(),
        "active_polls": services.poller.active_count,
    }
