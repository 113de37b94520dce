"""
Credit balance and history endpoints
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_current_user_id, get_services
from app.core.exceptions import InsufficientBalance
from app.core.security import verify_api_key
from app.db.models.credit import LedgerKind
from app.schemas.credits import (
    AdjustCreditsRequest,
    AdjustCreditsResponse,
    BalanceResponse,
    TransactionListResponse,
)
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    balance = await services.ledger.get_balance(user_id)
    return {"user_id": user_id, "balance": float(balance)}


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(100, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Ledger entries, newest first"""
    entries = await services.ledger.list_transactions(user_id, limit=limit)
    return {"transactions": entries}


@router.post("/adjust", response_model=AdjustCreditsResponse, dependencies=[Depends(verify_api_key)])
async def adjust_credits(
    data: AdjustCreditsRequest,
    services: Services = Depends(get_services)
):
    """
    Admin adjustment of a user's balance.

    Negative amounts may not take the balance below zero (409).
    """
    if data.amount == 0:
        raise HTTPException(status_code=400, detail="Amount must be non-zero")
    try:
        entry = await services.ledger.add_credits(
            data.user_id,
            data.amount,
            LedgerKind.ADJUSTMENT,
            data.description,
            reference_id=data.reference_id,
        )
    except InsufficientBalance as e:
        raise HTTPException(status_code=409, detail=str(e))

    balance = await services.ledger.get_balance(data.user_id)
    logger.info(f"Admin adjustment of {data.amount} for user {data.user_id} (applied: {entry is not None})")
    return {
        "applied": entry is not None,
        "balance": float(balance),
        "transaction_id": entry.id if entry else None,
    }
