"""
Invite code endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_current_user_id, get_services
from app.core.exceptions import InviteCodeError, NotFoundError
from app.core.security import verify_api_key
from app.schemas.credits import TransactionListResponse
from app.schemas.invites import (
    CreateInviteRequest,
    InviteResponse,
    RedeemInviteRequest,
    RedeemInviteResponse,
    UpdateInviteRequest,
)
from app.services.container import Services

router = APIRouter()


@router.post("/redeem", response_model=RedeemInviteResponse)
async def redeem_invite(
    data: RedeemInviteRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    try:
        result = await services.invites.redeem(user_id, data.code)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InviteCodeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"credits": result["credits"], "balance": float(result["balance"])}


@router.get("", response_model=List[InviteResponse], dependencies=[Depends(verify_api_key)])
async def list_invites(services: Services = Depends(get_services)):
    return await services.invites.list_codes()


@router.post("", response_model=InviteResponse, status_code=201, dependencies=[Depends(verify_api_key)])
async def create_invite(
    data: CreateInviteRequest,
    services: Services = Depends(get_services)
):
    try:
        return await services.invites.create_code(
            data.code,
            data.credits,
            max_uses=data.max_uses,
            note=data.note,
            expires_at=data.expires_at,
        )
    except InviteCodeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch("/{invite_id}", response_model=InviteResponse, dependencies=[Depends(verify_api_key)])
async def update_invite(
    invite_id: str,
    data: UpdateInviteRequest,
    services: Services = Depends(get_services)
):
    """Activate or deactivate a code"""
    try:
        return await services.invites.set_active(invite_id, data.is_active)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get(
    "/{invite_id}/redemptions",
    response_model=TransactionListResponse,
    dependencies=[Depends(verify_api_key)],
)
async def list_redemptions(invite_id: str, services: Services = Depends(get_services)):
    """Ledger entries created by this code"""
    return {"transactions": await services.invites.list_redemptions(invite_id)}
