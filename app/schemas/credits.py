"""
Credit and top-up Pydantic schemas
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class BalanceResponse(BaseModel):
    user_id: str
    balance: float


class TransactionResponse(BaseModel):
    """One ledger entry"""
    id: str
    kind: str = Field(..., description="deduction, topup, refund or adjustment")
    amount: float = Field(..., description="Signed amount, negative for deductions")
    balance_after: float
    description: str
    related_generation_id: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]


class AdjustCreditsRequest(BaseModel):
    """Admin balance adjustment"""
    user_id: str
    amount: float = Field(..., description="Signed amount; negative removes credits")
    description: str = Field("Manual adjustment", description="Shown in the user's history")
    reference_id: Optional[str] = Field(None, description="Optional idempotency key")


class AdjustCreditsResponse(BaseModel):
    applied: bool
    balance: float
    transaction_id: Optional[str] = None


class TopupPackageResponse(BaseModel):
    id: str
    price: int = Field(..., description="Price in THB")
    credits: int


class CreateChargeRequest(BaseModel):
    package_id: str
    payment_method: str = Field("credit_card", description="credit_card or promptpay")
    token: Optional[str] = Field(None, description="Omise card token, required for credit_card")
    return_url: Optional[str] = None


class ChargeResponse(BaseModel):
    """Subset of an Omise charge returned to the client"""
    charge_id: str
    status: Optional[str] = None
    paid: bool = False
    amount: Optional[int] = Field(None, description="Amount in satang")
    authorize_uri: Optional[str] = Field(None, description="3-D Secure redirect")
    qr_code_uri: Optional[str] = Field(None, description="PromptPay QR code image")
    credited: Optional[bool] = None
    message: Optional[str] = None
