"""
Generation model catalogue endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_services
from app.core.exceptions import NotFoundError
from app.core.security import verify_api_key
from app.schemas.generation import AdminModelResponse, ModelResponse, ModelUpdateRequest
from app.services.container import Services

router = APIRouter()


@router.get("", response_model=List[ModelResponse])
async def list_models(services: Services = Depends(get_services)):
    """Active models and their price per generation"""
    return await services.jobs.list_models()


@router.get("/all", response_model=List[AdminModelResponse], dependencies=[Depends(verify_api_key)])
async def list_all_models(services: Services = Depends(get_services)):
    """Admin view of the catalogue, inactive models included"""
    return await services.jobs.list_all_models()


@router.patch("/{model_id:path}", response_model=AdminModelResponse, dependencies=[Depends(verify_api_key)])
async def update_model(
    model_id: str,
    data: ModelUpdateRequest,
    services: Services = Depends(get_services)
):
    """
    Admin price and availability change.

    New prices apply to generations submitted afterwards.
    """
    if data.cost_per_generation is None and data.is_active is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    try:
        return await services.jobs.update_model(
            model_id,
            cost_per_generation=data.cost_per_generation,
            is_active=data.is_active,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
