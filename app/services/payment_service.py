"""
Payment service for Omise credit top-ups
"""

import logging
from typing import Dict, Any, List, Optional

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import MalformedWebhookPayload, NotFoundError, PaymentError
from app.db.models.credit import LedgerKind
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class TopupPackage(BaseModel):
    id: str
    price: int  # THB
    credits: int


TOPUP_PACKAGES: List[TopupPackage] = [
    TopupPackage(id="package_350", price=350, credits=350),
    TopupPackage(id="package_500", price=500, credits=500),
    TopupPackage(id="package_1000", price=1000, credits=1000),
]

PAYMENT_METHODS = ("credit_card", "promptpay")


def get_package(package_id: str) -> Optional[TopupPackage]:
    return next((p for p in TOPUP_PACKAGES if p.id == package_id), None)


class PaymentService:
    """Service for creating Omise charges and crediting completed ones"""
    
    def __init__(
        self,
        ledger: LedgerService,
        secret_key: Optional[str] = None,
        public_key: Optional[str] = None,
        api_base: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.ledger = ledger
        self.secret_key = secret_key if secret_key is not None else settings.OMISE_SECRET_KEY
        self.public_key = public_key if public_key is not None else settings.OMISE_PUBLIC_KEY
        self.api_base = (api_base or settings.OMISE_API_BASE).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=30.0)
    
    def is_configured(self) -> bool:
        """Check if payment gateway keys are present"""
        return bool(self.secret_key and self.public_key)
    
    async def aclose(self) -> None:
        await self._client.aclose()
    
    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentError("Omise API keys not configured")
        try:
            response = await self._client.request(
                method,
                f"{self.api_base}{path}",
                json=json,
                auth=(self.secret_key, ""),
            )
        except httpx.HTTPError as e:
            raise PaymentError(f"Payment gateway unreachable: {e}") from e
        
        data = response.json() if response.content else {}
        if response.status_code == 404:
            raise NotFoundError(data.get("message") or "Charge not found")
        if response.status_code >= 300 or data.get("object") == "error":
            logger.error(f"Omise error on {method} {path}: {data}")
            raise PaymentError(data.get("message") or f"Payment gateway returned HTTP {response.status_code}")
        return data
    
    async def create_charge(
        self,
        user_id: str,
        package_id: str,
        method: str = "credit_card",
        token: Optional[str] = None,
        return_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a charge for a top-up package.
        
        Args:
            user_id: Purchasing user
            package_id: One of TOPUP_PACKAGES
            method: credit_card (requires a card token) or promptpay
            token: Omise card token from the frontend
            return_url: 3-D Secure / redirect return URL
            
        Returns:
            Raw Omise charge object
        """
        package = get_package(package_id)
        if not package:
            raise NotFoundError(f"Invalid package ID: {package_id}")
        if method not in PAYMENT_METHODS:
            raise PaymentError(f"Unsupported payment method: {method}")
        
        body: Dict[str, Any] = {
            "amount": package.price * 100,  # satang
            "currency": "thb",
            "return_uri": return_url or settings.PAYMENT_RETURN_URL,
            "metadata": {
                "userId": user_id,
                "packageId": package.id,
                "credits": str(package.credits),
            },
        }
        if method == "credit_card":
            if not token:
                raise PaymentError("Card token is required for credit card payments")
            body["card"] = token
        else:
            body["source"] = {"type": "promptpay"}
        
        charge = await self._request("POST", "/charges", json=body)
        logger.info(f"Created {method} charge {charge.get('id')} for user {user_id} ({package.id})")
        return charge
    
    async def get_charge(self, charge_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/charges/{charge_id}")
    
    async def credit_charge(self, charge: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add the purchased credits for a successful charge, once per charge id.
        
        Raises:
            MalformedWebhookPayload: If a paid charge lacks userId/credits metadata
        """
        charge_id = charge.get("id")
        if not (charge.get("paid") and charge.get("status") == "successful"):
            logger.info(f"Charge {charge_id} not successful: {charge.get('status')}")
            return {"credited": False, "status": charge.get("status"), "message": "Charge not successful"}
        
        metadata = charge.get("metadata") or {}
        user_id = metadata.get("userId")
        try:
            credits = int(metadata.get("credits") or 0)
        except (TypeError, ValueError):
            credits = 0
        if not user_id or credits <= 0:
            logger.error(f"Charge {charge_id} missing metadata: {metadata}")
            raise MalformedWebhookPayload("Missing required metadata")
        
        entry = await self.ledger.add_credits(
            user_id,
            credits,
            LedgerKind.TOPUP,
            f"Top-up {credits} credits ({metadata.get('packageId')})",
            reference_id=charge_id,
            metadata={
                "chargeId": charge_id,
                "packageId": metadata.get("packageId"),
                "amountPaid": (charge.get("amount") or 0) / 100,
            },
        )
        if entry is None:
            logger.info(f"Charge {charge_id} already processed, skipping")
            return {"credited": False, "status": "successful", "message": "Charge already processed"}
        
        return {"credited": True, "status": "successful", "message": f"Added {credits} credits"}
    
    async def handle_webhook(self, event: Any) -> Dict[str, Any]:
        """
        Process an Omise event envelope {key, data: {id, ...}}.
        
        Only charge.complete affects balances; other events are acknowledged.
        """
        if not isinstance(event, dict) or not event.get("key") or not isinstance(event.get("data"), dict):
            raise MalformedWebhookPayload("Invalid event data")
        
        if event["key"] != "charge.complete":
            return {"received": True}
        
        charge_id = event["data"].get("id")
        if not charge_id:
            raise MalformedWebhookPayload("Invalid event data: missing charge id")
        
        # Re-fetch instead of trusting the webhook body
        charge = await self.get_charge(charge_id)
        result = await self.credit_charge(charge)
        return {"received": True, **result}
