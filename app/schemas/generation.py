"""
Generation-related Pydantic schemas
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class GenerationRequest(BaseModel):
    """Request model for submitting a generation"""
    model_id: str = Field(..., description="Catalogue id or provider model id (e.g. 'veo3_fast')")
    prompt: str = Field("", description="Text prompt")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Provider input parameters (aspect ratio, image URLs, ...)")

    class Config:
        protected_namespaces = ()


class GenerationResponse(BaseModel):
    """A generation job as seen by its owner"""
    id: str = Field(..., description="Generation identifier")
    model_id: str
    type: str = Field(..., description="image or video")
    prompt: str
    status: str = Field(..., description="pending, processing, completed or failed")
    result_url: Optional[str] = Field(None, description="First result URL")
    result_urls: Optional[List[str]] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    credits_charged: float
    refunded: bool
    is_hidden: bool
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        protected_namespaces = ()


class GenerationListResponse(BaseModel):
    generations: List[GenerationResponse]
    total: int


class RefundResponse(BaseModel):
    refunded: bool
    message: str
    amount: Optional[float] = None


class CancelReconciliationResponse(BaseModel):
    job_id: str
    cancelled: bool = Field(..., description="False when no poller was running")


class ModelResponse(BaseModel):
    """Active generation model and its price"""
    id: str
    model_id: str
    name: str
    type: str
    cost_per_generation: float

    class Config:
        from_attributes = True
        protected_namespaces = ()


class AdminModelResponse(ModelResponse):
    is_active: bool


class ModelUpdateRequest(BaseModel):
    """Admin price / availability change; omitted fields are left as they are"""
    cost_per_generation: Optional[float] = Field(None, ge=0, description="Credits charged per generation")
    is_active: Optional[bool] = None
