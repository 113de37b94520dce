"""
Completion reconciler

Applies a completion signal to a generation exactly once, no matter how many
times or from which path (webhook push, poll pull) it is delivered. The gate is
the conditional processing -> terminal UPDATE in GenerationStore.finalize; the
refund and thumbnail side effects run only for the caller that won it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.exceptions import NotFoundError
from app.db.models.generation import Generation, GenerationStatus
from app.schemas.completion import CompletionSignal
from app.services.generation_store import GenerationStore
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    """Finalized job plus whether this call performed the transition"""
    job: Generation
    applied: bool


class CompletionReconciler:
    """Single-commit application of completion signals"""
    
    def __init__(
        self,
        session_factory: async_sessionmaker,
        store: GenerationStore,
        ledger: LedgerService,
        thumbnailer=None
    ):
        self.session_factory = session_factory
        self.store = store
        self.ledger = ledger
        self.thumbnailer = thumbnailer
        self._background: Set[asyncio.Task] = set()
    
    async def apply_completion(self, job_id: str, signal: CompletionSignal) -> CompletionOutcome:
        """
        Apply signal to the job if it is still processing.
        
        A job that is already completed or failed is returned untouched with
        applied=False; duplicate and conflicting signals are not errors.
        
        Raises:
            NotFoundError: If the job does not exist
        """
        status = GenerationStatus.COMPLETED if signal.is_success else GenerationStatus.FAILED
        
        async with self.session_factory() as db:
            won = await self.store.finalize(
                db,
                job_id,
                status,
                result_urls=signal.result_urls,
                error_message=signal.error,
            )
            await db.commit()
        
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Generation {job_id} not found")
        
        if not won:
            logger.info(
                f"Ignoring {signal.outcome} signal from {signal.source} for generation {job_id}: "
                f"already {job.status}"
            )
            if job.status == GenerationStatus.FAILED and not job.refunded and job.credits_charged > 0:
                # previous refund attempt raised
                job = await self._refund(job)
            return CompletionOutcome(job=job, applied=False)
        
        logger.info(f"Generation {job_id} {status} via {signal.source}")
        
        if status == GenerationStatus.FAILED:
            job = await self._refund(job)
        elif job.type == "video" and job.result_url:
            self._schedule_thumbnail(job)
        
        return CompletionOutcome(job=job, applied=True)
    
    async def _refund(self, job: Generation) -> Generation:
        try:
            refund = await self.ledger.refund(job.id)
        except Exception as e:
            # Retried by the next signal for this job or the startup sweep
            logger.error(f"Refund failed for generation {job.id}: {e}", exc_info=True)
            return job
        if not refund["refunded"]:
            logger.info(f"No refund for generation {job.id}: {refund['message']}")
            return job
        return await self.store.get(job.id)
    
    def _schedule_thumbnail(self, job: Generation) -> None:
        """Fire-and-forget thumbnail extraction; never affects reconciliation"""
        if self.thumbnailer is None:
            return
        task = asyncio.create_task(self._run_thumbnail(job.id, job.user_id, job.result_url))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
    
    async def _run_thumbnail(self, job_id: str, user_id: str, video_url: str) -> Optional[str]:
        try:
            url = await self.thumbnailer.generate(video_url, user_id, job_id)
            await self.store.set_thumbnail(job_id, url)
            logger.info(f"Thumbnail stored for generation {job_id}")
            return url
        except Exception as e:
            logger.warning(f"Thumbnail generation failed for {job_id}: {e}")
            return None
    
    async def drain(self) -> None:
        """Wait for outstanding thumbnail tasks (shutdown and tests)"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
