"""
API key check for admin and test-only endpoints
"""

from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from app.core.config import settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Reject the request unless X-API-Key matches ADMIN_API_KEY"""
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=503, detail="Admin API key not configured")
    if api_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key
