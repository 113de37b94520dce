"""
Credit top-up endpoints (Omise)
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_current_user_id, get_services
from app.core.exceptions import MalformedWebhookPayload, NotFoundError, PaymentError
from app.schemas.credits import ChargeResponse, CreateChargeRequest, TopupPackageResponse
from app.services.container import Services
from app.services.payment_service import TOPUP_PACKAGES

logger = logging.getLogger(__name__)
router = APIRouter()


def _charge_response(charge: Dict[str, Any]) -> Dict[str, Any]:
    source = charge.get("source") or {}
    qr_image = ((source.get("scannable_code") or {}).get("image") or {})
    return {
        "charge_id": charge.get("id"),
        "status": charge.get("status"),
        "paid": bool(charge.get("paid")),
        "amount": charge.get("amount"),
        "authorize_uri": charge.get("authorize_uri"),
        "qr_code_uri": qr_image.get("download_uri"),
    }


@router.get("/packages", response_model=List[TopupPackageResponse])
async def list_packages():
    return [p.model_dump() for p in TOPUP_PACKAGES]


@router.post("/charge", response_model=ChargeResponse)
async def create_charge(
    data: CreateChargeRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Create an Omise charge for a package.

    Credits are added when the charge completes, via the Omise webhook or
    GET /topup/charge/{charge_id}, whichever sees it first.
    """
    try:
        charge = await services.payments.create_charge(
            user_id,
            data.package_id,
            method=data.payment_method,
            token=data.token,
            return_url=data.return_url,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentError as e:
        logger.error(f"Charge creation failed for user {user_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    response = _charge_response(charge)
    # Card charges without 3-D Secure complete synchronously
    if charge.get("paid"):
        try:
            response.update(await services.payments.credit_charge(charge))
        except MalformedWebhookPayload as e:
            raise HTTPException(status_code=502, detail=str(e))
    return response


@router.get("/charge/{charge_id}", response_model=ChargeResponse)
async def get_charge_status(
    charge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Check a charge and credit it if it has completed"""
    try:
        charge = await services.payments.get_charge(charge_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=502, detail=str(e))

    if (charge.get("metadata") or {}).get("userId") != user_id:
        raise HTTPException(status_code=404, detail="Charge not found")

    response = _charge_response(charge)
    if charge.get("paid") and charge.get("status") == "successful":
        try:
            response.update(await services.payments.credit_charge(charge))
        except MalformedWebhookPayload as e:
            raise HTTPException(status_code=502, detail=str(e))
    return response
