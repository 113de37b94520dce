"""
Invite code Pydantic schemas
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class RedeemInviteRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class RedeemInviteResponse(BaseModel):
    credits: int
    balance: float


class CreateInviteRequest(BaseModel):
    """Admin: new invite code"""
    code: str = Field(..., min_length=1, max_length=64)
    credits: int = Field(100, gt=0)
    max_uses: int = Field(1, ge=1)
    note: Optional[str] = None
    expires_at: Optional[datetime] = None


class UpdateInviteRequest(BaseModel):
    is_active: bool


class InviteResponse(BaseModel):
    id: str
    code: str
    credits: int
    max_uses: int
    used_count: int
    is_active: bool
    note: Optional[str] = None
    created_by: str
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True
