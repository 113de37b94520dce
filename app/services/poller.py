"""
Fallback poll scheduler

Owns one asyncio task per processing generation. The webhook is the primary
completion path; this checks the provider on a coarse interval and forces a
timeout failure once the job outlives its maximum lifetime.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from app.core.config import settings
from app.core.exceptions import ProviderTransientError
from app.schemas.completion import CompletionSignal
from app.services.kie_service import TaskState

logger = logging.getLogger(__name__)


def timeout_message(max_lifetime_seconds: float) -> str:
    minutes = int(max_lifetime_seconds // 60)
    return (
        f"Generation timeout after {minutes} minutes. "
        "Please try again or contact support if the issue persists."
    )


class _PollHandle:
    def __init__(self, job_id: str, external_task_id: str, model_id: str, started_at: float):
        self.job_id = job_id
        self.external_task_id = external_task_id
        self.model_id = model_id
        self.started_at = started_at
        self.cancelled = asyncio.Event()
        self.task: Optional[asyncio.Task] = None


class PollerSupervisor:
    """
    Registry of fallback pollers keyed by generation id.
    
    Constructed once per process and injected; cancel() only sets a flag so a
    tick already inside the reconciler always finishes its transaction.
    """
    
    def __init__(
        self,
        reconciler,
        store,
        provider,
        interval_seconds: Optional[float] = None,
        max_lifetime_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.reconciler = reconciler
        self.store = store
        self.provider = provider
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.POLL_INTERVAL_SECONDS
        self.max_lifetime_seconds = (
            max_lifetime_seconds if max_lifetime_seconds is not None else settings.MAX_JOB_LIFETIME_SECONDS
        )
        self.clock = clock
        self._handles: Dict[str, _PollHandle] = {}
    
    def start(
        self,
        job_id: str,
        external_task_id: str,
        model_id: str,
        elapsed_seconds: float = 0.0
    ) -> bool:
        """
        Start polling a job. No-op if a poller for it is already running.
        
        Args:
            job_id: Generation id
            external_task_id: Provider task id
            model_id: Provider model id (selects the status endpoint)
            elapsed_seconds: Time the job has already spent processing, used
                when resuming after a restart so the deadline still holds
        """
        if job_id in self._handles:
            return False
        handle = _PollHandle(job_id, external_task_id, model_id, self.clock() - elapsed_seconds)
        handle.task = asyncio.create_task(self._run(handle))
        self._handles[job_id] = handle
        logger.info(
            f"Started fallback polling for {job_id} "
            f"(every {self.interval_seconds}s, max {self.max_lifetime_seconds}s), active polls: {len(self._handles)}"
        )
        return True
    
    def cancel(self, job_id: str) -> bool:
        """Stop polling a job. Idempotent; unknown ids are ignored."""
        handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        handle.cancelled.set()
        logger.info(f"Cancelled polling for generation {job_id}")
        return True
    
    def is_polling(self, job_id: str) -> bool:
        return job_id in self._handles
    
    @property
    def active_count(self) -> int:
        return len(self._handles)
    
    async def wait(self, job_id: str) -> None:
        """Wait until the poller for job_id exits (tests and shutdown)"""
        handle = self._handles.get(job_id)
        if handle is not None and handle.task is not None:
            await asyncio.gather(handle.task, return_exceptions=True)
    
    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        for handle in handles:
            self.cancel(handle.job_id)
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
    
    async def _run(self, handle: _PollHandle) -> None:
        try:
            while True:
                try:
                    await asyncio.wait_for(handle.cancelled.wait(), timeout=self.interval_seconds)
                    return
                except asyncio.TimeoutError:
                    pass
                
                if await self._tick(handle):
                    return
        finally:
            if self._handles.get(handle.job_id) is handle:
                del self._handles[handle.job_id]
    
    async def _tick(self, handle: _PollHandle) -> bool:
        """One poll. Returns True when polling should stop."""
        job_id = handle.job_id
        try:
            job = await self.store.get(job_id)
            if job is None:
                logger.warning(f"Generation {job_id} not found, stopping polling")
                return True
            if job.is_terminal:
                logger.info(f"Generation {job_id} already {job.status}, stopping polling")
                return True
            
            elapsed = self.clock() - handle.started_at
            if elapsed >= self.max_lifetime_seconds:
                logger.warning(f"Max lifetime reached for {job_id} after {elapsed:.0f}s, forcing timeout")
                signal = CompletionSignal.failure(timeout_message(self.max_lifetime_seconds), source="timeout")
                await self.reconciler.apply_completion(job_id, signal)
                return True
            
            status = await self.provider.poll(handle.external_task_id, handle.model_id)
            if status.state == TaskState.RUNNING:
                logger.info(f"Generation {job_id} still processing ({elapsed / 60:.1f} min elapsed)")
                return False
            
            if status.state == TaskState.SUCCESS:
                signal = CompletionSignal.success(status.result_urls, source="poller")
            else:
                signal = CompletionSignal.failure(status.error or "Generation failed", source="poller")
            outcome = await self.reconciler.apply_completion(job_id, signal)
            logger.info(f"Poller for {job_id} observed terminal state {outcome.job.status} (applied={outcome.applied})")
            return True
        except ProviderTransientError as e:
            logger.warning(f"Transient status check error for {job_id}, retrying next tick: {e}")
            return False
        except Exception as e:
            logger.error(f"Error polling generation {job_id}, retrying next tick: {e}", exc_info=True)
            return False
