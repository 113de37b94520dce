"""
Shared route dependencies
"""

from typing import Optional

from fastapi import Header, HTTPException, Request

from app.services.container import Services


def get_services(request: Request) -> Services:
    """Dependency to get the process-wide service container"""
    return request.app.state.services


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the authenticating gateway in X-User-Id"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id
