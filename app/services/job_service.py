"""
Job service for generation requests
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.exceptions import NotFoundError, ProviderSubmitFailure
from app.db.models.ai_model import AIModel
from app.db.models.generation import Generation, GenerationStatus
from app.services.generation_store import GenerationStore
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class JobService:
    """Service for submitting and reading generation jobs"""
    
    def __init__(
        self,
        session_factory: async_sessionmaker,
        store: GenerationStore,
        ledger: LedgerService,
        provider,
        poller
    ):
        self.session_factory = session_factory
        self.store = store
        self.ledger = ledger
        self.provider = provider
        self.poller = poller
    
    async def list_models(self) -> List[AIModel]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(AIModel).where(AIModel.is_active.is_(True)).order_by(AIModel.type, AIModel.name)
            )
            return list(result.scalars().all())
    
    async def get_model(self, identifier: str) -> AIModel:
        """
        Get an active model by catalogue id or provider model id
        
        Raises:
            NotFoundError: If no active model matches
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(AIModel).where(or_(AIModel.id == identifier, AIModel.model_id == identifier))
            )
            model = result.scalars().first()
        if not model or not model.is_active:
            raise NotFoundError(f"Model {identifier} not found")
        return model
    
    async def list_all_models(self) -> List[AIModel]:
        """Every catalogue entry, inactive ones included (admin)"""
        async with self.session_factory() as db:
            result = await db.execute(select(AIModel).order_by(AIModel.type, AIModel.name))
            return list(result.scalars().all())
    
    async def update_model(
        self,
        identifier: str,
        cost_per_generation=None,
        is_active: Optional[bool] = None
    ) -> AIModel:
        """
        Change a model's price and/or active flag.
        
        Jobs already submitted keep the credits_charged they were created with.
        
        Raises:
            NotFoundError: If no model matches identifier
        """
        values: Dict[str, Any] = {}
        if cost_per_generation is not None:
            values["cost_per_generation"] = Decimal(str(cost_per_generation))
        if is_active is not None:
            values["is_active"] = is_active
        
        async with self.session_factory() as db:
            model = await db.scalar(
                select(AIModel).where(or_(AIModel.id == identifier, AIModel.model_id == identifier))
            )
            if model is None:
                raise NotFoundError(f"Model {identifier} not found")
            if values:
                await db.execute(
                    update(AIModel)
                    .where(AIModel.id == model.id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
            model = await db.scalar(
                select(AIModel).where(AIModel.id == model.id).execution_options(populate_existing=True)
            )
        
        logger.info(f"Updated model {model.model_id}: {values}")
        return model
    
    async def submit_job(
        self,
        user_id: str,
        model_id: str,
        prompt: str = "",
        parameters: Optional[Dict[str, Any]] = None
    ) -> Generation:
        """
        Charge the user, submit to the provider and start fallback polling.
        
        Completion is asynchronous: the returned job is processing and gets
        finalized later by the webhook or the poller.
        
        Raises:
            NotFoundError: Unknown or inactive model
            InsufficientBalance: Balance below the model price; nothing is written
            ProviderSubmitFailure: Provider rejected the task; the job is
                recorded as failed and already refunded
        """
        model = await self.get_model(model_id)
        cost = model.cost_per_generation
        job_id = f"gen_{uuid4().hex}"
        prompt = prompt or ""
        
        async with self.session_factory() as db:
            preview = prompt[:100] + ("..." if len(prompt) > 100 else "")
            await self.ledger.deduct(
                db,
                user_id,
                cost,
                f"{model.name}: {preview}",
                related_generation_id=job_id,
            )
            db.add(Generation(
                id=job_id,
                user_id=user_id,
                model_id=model.model_id,
                type=model.type,
                prompt=prompt,
                parameters=parameters or {},
                status=GenerationStatus.PENDING,
                credits_charged=cost,
                refunded=False,
                is_hidden=False,
            ))
            await db.commit()
        
        logger.info(f"Created generation {job_id} for user {user_id} ({model.model_id}, {cost} credits)")
        
        try:
            task_id = await self.provider.submit(model.model_id, prompt, parameters)
        except Exception as e:
            logger.error(f"Submission failed for generation {job_id}: {e}")
            await self.store.fail_submission(job_id, str(e))
            refunded = False
            try:
                refunded = (await self.ledger.refund(job_id))["refunded"]
            except Exception as refund_error:
                # Picked up by the startup sweep or a manual refund
                logger.error(f"Refund failed for generation {job_id}: {refund_error}", exc_info=True)
            raise ProviderSubmitFailure(job_id, str(e), refunded=refunded) from e
        
        if not await self.store.mark_processing(job_id, task_id):
            logger.error(f"Generation {job_id} was not pending when task {task_id} was recorded")
        else:
            self.poller.start(job_id, task_id, model.model_id)
        
        return await self.get_job(job_id)
    
    async def get_job(self, job_id: str) -> Generation:
        """
        Raises:
            NotFoundError: If the job does not exist
        """
        job = await self.store.get(job_id)
        if not job:
            raise NotFoundError(f"Generation {job_id} not found")
        return job
    
    async def list_jobs(self, user_id: str, include_hidden: bool = False) -> List[Generation]:
        return await self.store.list_for_user(user_id, include_hidden=include_hidden)
    
    async def set_hidden(self, job_id: str, user_id: str, hidden: bool) -> Generation:
        """Soft hide or unhide a job owned by user_id"""
        job = await self.get_job(job_id)
        if job.user_id != user_id:
            raise NotFoundError(f"Generation {job_id} not found")
        await self.store.set_hidden(job_id, hidden)
        return await self.get_job(job_id)
    
    async def refund_job(self, job_id: str) -> Dict[str, Any]:
        """Manual refund trigger; ineligible jobs give a no-op result"""
        await self.get_job(job_id)
        return await self.ledger.refund(job_id)
    
    def cancel_reconciliation_for_testing(self, job_id: str) -> bool:
        """Force-stop the fallback poller of a job"""
        return self.poller.cancel(job_id)
    
    async def recover_on_startup(self, stale_pending_after: Optional[float] = None) -> Dict[str, int]:
        """
        Resume reconciliation state lost with the previous process.
        
        - processing jobs get their poller back, with elapsed time taken from
          created_at so the lifetime deadline still applies
        - pending jobs older than the job lifetime never got a task id; they
          are failed and refunded
        - failed jobs whose refund never landed are refunded
        """
        now = datetime.now(timezone.utc)
        stale_after = stale_pending_after if stale_pending_after is not None else self.poller.max_lifetime_seconds
        counts = {"resumed": 0, "abandoned": 0, "refunded": 0}
        
        for job in await self.store.list_processing():
            elapsed = max(0.0, (now - _aware(job.created_at)).total_seconds())
            if self.poller.start(job.id, job.external_task_id, job.model_id, elapsed_seconds=elapsed):
                counts["resumed"] += 1
        
        for job in await self.store.list_pending(older_than=now - timedelta(seconds=stale_after)):
            if await self.store.fail_submission(job.id, "Submission interrupted by a server restart"):
                counts["abandoned"] += 1
        
        for job in await self.store.list_unrefunded_failures():
            try:
                if (await self.ledger.refund(job.id))["refunded"]:
                    counts["refunded"] += 1
            except Exception as e:
                logger.error(f"Startup refund failed for generation {job.id}: {e}", exc_info=True)
        
        logger.info(
            f"Startup reconciliation: {counts['resumed']} resumed, "
            f"{counts['abandoned']} abandoned, {counts['refunded']} refunded"
        )
        return counts


def _aware(value: datetime) -> datetime:
    # sqlite returns naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
