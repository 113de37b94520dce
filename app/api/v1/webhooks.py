"""
Inbound webhooks from the generation provider and the payment gateway
"""

import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_services
from app.core.exceptions import MalformedWebhookPayload
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


async def _read_json(request: Request):
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/kie-callback")
async def kie_callback(request: Request, services: Services = Depends(get_services)):
    """
    Completion callback from Kie.ai.

    400 only for payloads without a task id or of unknown shape; everything
    else is acknowledged with 200 so the provider does not retry.
    """
    payload = await _read_json(request)
    try:
        ack = await services.webhooks.handle(payload)
    except MalformedWebhookPayload as e:
        logger.warning(f"Rejected provider callback: {e}")
        return JSONResponse(status_code=400, content={"error": str(e)})
    return ack.model_dump(exclude_none=True)


@router.post("/omise")
async def omise_webhook(request: Request, services: Services = Depends(get_services)):
    """Omise event webhook; credits completed charges once per charge id"""
    payload = await _read_json(request)
    try:
        result = await services.payments.handle_webhook(payload)
    except MalformedWebhookPayload as e:
        logger.warning(f"Rejected Omise webhook: {e}")
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception as e:
        logger.error(f"Error processing Omise webhook: {e}", exc_info=True)
        return {"received": True, "error": "Internal processing error"}
    return result
