"""
Job record store for generations

Reads are plain selects. Every status transition is a conditional UPDATE whose
rowcount tells the caller whether it won the transition; nothing here does
read-then-write on status.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.generation import Generation, GenerationStatus

logger = logging.getLogger(__name__)


class GenerationStore:
    """Persistence access for Generation rows"""
    
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
    
    async def get(self, job_id: str, db: Optional[AsyncSession] = None) -> Optional[Generation]:
        """Point-in-time read of a generation by internal id"""
        if db is not None:
            return await self._fresh(db, select(Generation).where(Generation.id == job_id))
        async with self.session_factory() as session:
            return await self._fresh(session, select(Generation).where(Generation.id == job_id))
    
    async def get_by_task_id(self, external_task_id: str) -> Optional[Generation]:
        """Read a generation by the provider task id"""
        async with self.session_factory() as session:
            return await self._fresh(
                session, select(Generation).where(Generation.external_task_id == external_task_id)
            )
    
    async def mark_processing(self, job_id: str, external_task_id: str) -> bool:
        """pending -> processing, recording the provider task id exactly once"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Generation)
                .where(
                    Generation.id == job_id,
                    Generation.status == GenerationStatus.PENDING,
                    Generation.external_task_id.is_(None),
                )
                .values(status=GenerationStatus.PROCESSING, external_task_id=external_task_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            won = result.rowcount == 1
            if won:
                logger.info(f"Generation {job_id} processing as task {external_task_id}")
            return won
    
    async def fail_submission(self, job_id: str, error_message: str) -> bool:
        """pending -> failed, for a job the provider never accepted"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Generation)
                .where(Generation.id == job_id, Generation.status == GenerationStatus.PENDING)
                .values(
                    status=GenerationStatus.FAILED,
                    error_message=error_message,
                    completed_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1
    
    async def finalize(
        self,
        db: AsyncSession,
        job_id: str,
        status: str,
        result_urls: Optional[List[str]] = None,
        error_message: Optional[str] = None
    ) -> bool:
        """
        Compare-and-swap processing -> completed|failed.
        
        Runs in the caller's transaction. Returns True only for the single
        caller whose UPDATE matched the row while it was still processing.
        """
        if status not in GenerationStatus.TERMINAL:
            raise ValueError(f"Not a terminal status: {status}")
        if status == GenerationStatus.COMPLETED and not result_urls:
            raise ValueError("A completed generation needs at least one result URL")
        
        values = {"status": status, "completed_at": func.now()}
        if status == GenerationStatus.COMPLETED:
            values["result_urls"] = list(result_urls)
            values["result_url"] = result_urls[0]
        else:
            values["error_message"] = error_message or "Generation failed"
        
        result = await db.execute(
            update(Generation)
            .where(Generation.id == job_id, Generation.status == GenerationStatus.PROCESSING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
    
    async def set_thumbnail(self, job_id: str, thumbnail_url: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Generation)
                .where(Generation.id == job_id)
                .values(thumbnail_url=thumbnail_url)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
    
    async def set_hidden(self, job_id: str, hidden: bool) -> bool:
        """Soft hide/unhide from user-facing listings"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Generation)
                .where(Generation.id == job_id)
                .values(is_hidden=hidden)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1
    
    async def list_for_user(self, user_id: str, include_hidden: bool = False) -> List[Generation]:
        query = select(Generation).where(Generation.user_id == user_id)
        if not include_hidden:
            query = query.where(Generation.is_hidden.is_(False))
        async with self.session_factory() as session:
            result = await session.execute(query.order_by(Generation.created_at.desc()))
            return list(result.scalars().all())
    
    async def list_processing(self) -> List[Generation]:
        """Jobs still waiting on a completion signal"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Generation).where(Generation.status == GenerationStatus.PROCESSING)
            )
            return list(result.scalars().all())
    
    async def list_pending(self, older_than: datetime) -> List[Generation]:
        """Jobs stuck before submission finished"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Generation).where(
                    Generation.status == GenerationStatus.PENDING,
                    Generation.created_at < older_than,
                )
            )
            return list(result.scalars().all())
    
    async def list_unrefunded_failures(self) -> List[Generation]:
        """Failed jobs with charged credits whose refund never landed"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Generation).where(
                    Generation.status == GenerationStatus.FAILED,
                    Generation.refunded.is_(False),
                    Generation.credits_charged > 0,
                )
            )
            return list(result.scalars().all())
    
    async def _fresh(self, db: AsyncSession, query) -> Optional[Generation]:
        # populate_existing: rows changed by bulk UPDATEs in this session must not be served stale
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()
