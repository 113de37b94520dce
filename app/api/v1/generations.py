"""
Generation endpoints
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from app.api.deps import get_current_user_id, get_services
from app.core.exceptions import InsufficientBalance, NotFoundError, ProviderSubmitFailure
from app.core.security import verify_api_key
from app.schemas.generation import (
    CancelReconciliationResponse,
    GenerationListResponse,
    GenerationRequest,
    GenerationResponse,
    RefundResponse,
)
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


async def _owned_job(services: Services, job_id: str, user_id: str):
    try:
        job = await services.jobs.get_job(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if job.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Generation {job_id} not found")
    return job


@router.post("", response_model=GenerationResponse, status_code=201)
async def create_generation(
    data: GenerationRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Charge the model price and submit a generation.

    The job comes back processing; poll GET /generations/{id} for the result.
    """
    try:
        job = await services.jobs.submit_job(user_id, data.model_id, data.prompt, data.parameters)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientBalance as e:
        return JSONResponse(
            status_code=402,
            content={
                "detail": str(e),
                "required": float(e.required),
                "available": float(e.available or 0),
            },
        )
    except ProviderSubmitFailure as e:
        return JSONResponse(
            status_code=502,
            content={"detail": f"Generation failed: {e}", "job_id": e.job_id, "refunded": e.refunded},
        )
    return job


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    include_hidden: bool = Query(False, description="Include soft-hidden generations"),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    jobs = await services.jobs.list_jobs(user_id, include_hidden=include_hidden)
    return {"generations": jobs, "total": len(jobs)}


@router.get("/{job_id}", response_model=GenerationResponse)
async def get_generation(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Current state of a generation owned by the caller"""
    return await _owned_job(services, job_id, user_id)


@router.post("/{job_id}/hide", response_model=GenerationResponse)
async def hide_generation(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    try:
        return await services.jobs.set_hidden(job_id, user_id, True)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{job_id}/unhide", response_model=GenerationResponse)
async def unhide_generation(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    try:
        return await services.jobs.set_hidden(job_id, user_id, False)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{job_id}/refund", response_model=RefundResponse)
async def refund_generation(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Refund a failed generation; a no-op result when it is not eligible"""
    await _owned_job(services, job_id, user_id)
    return await services.jobs.refund_job(job_id)


@router.post(
    "/{job_id}/cancel-reconciliation",
    response_model=CancelReconciliationResponse,
    dependencies=[Depends(verify_api_key)],
)
async def cancel_reconciliation(
    job_id: str,
    services: Services = Depends(get_services)
):
    """Stop the fallback poller of a job (admin / test hook)"""
    cancelled = services.jobs.cancel_reconciliation_for_testing(job_id)
    logger.info(f"Reconciliation cancel requested for {job_id} (was running: {cancelled})")
    return {"job_id": job_id, "cancelled": cancelled}
