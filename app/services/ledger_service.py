"""
Credit ledger service

Balance mutations are single conditional UPDATEs on user_credits followed by an
append to credit_transactions inside the same transaction. The refund path uses
a conditional UPDATE on generations.refunded as its exactly-once gate.
"""

import logging
from decimal import Decimal
from typing import Dict, Any, List, Optional
from uuid import uuid4

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import InsufficientBalance
from app.db.models.credit import CreditTransaction, LedgerKind, UserCredits
from app.db.models.generation import Generation, GenerationStatus

logger = logging.getLogger(__name__)


def _to_decimal(amount) -> Decimal:
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


class LedgerService:
    """Service for credit balances and the append-only transaction log"""
    
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
    
    async def get_balance(self, user_id: str) -> Decimal:
        """Current balance, 0 for users without a credits row"""
        async with self.session_factory() as db:
            amount = await db.scalar(select(UserCredits.amount).where(UserCredits.user_id == user_id))
            return _to_decimal(amount or 0)
    
    async def list_transactions(self, user_id: str, limit: int = 100) -> List[CreditTransaction]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
    
    async def ledger_sum(self, user_id: str) -> Decimal:
        """Sum of all ledger entries for a user; always equals get_balance()"""
        async with self.session_factory() as db:
            total = await db.scalar(
                select(func.coalesce(func.sum(CreditTransaction.amount), 0))
                .where(CreditTransaction.user_id == user_id)
            )
            return _to_decimal(total)
    
    async def has_reference(self, reference_id: str, db: Optional[AsyncSession] = None) -> bool:
        """Whether a ledger entry already references this external id (e.g. a charge)"""
        query = select(CreditTransaction.id).where(CreditTransaction.reference_id == reference_id).limit(1)
        if db is not None:
            return (await db.scalar(query)) is not None
        async with self.session_factory() as session:
            return (await session.scalar(query)) is not None
    
    async def deduct(
        self,
        db: AsyncSession,
        user_id: str,
        amount,
        description: str,
        related_generation_id: Optional[str] = None
    ) -> CreditTransaction:
        """
        Deduct credits inside the caller's transaction.
        
        The caller commits, so the deduction and whatever it pays for (the job
        row) land together or not at all.
        
        Raises:
            InsufficientBalance: If the balance does not cover amount
        """
        amount = _to_decimal(amount)
        result = await db.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id, UserCredits.amount >= amount)
            .values(amount=UserCredits.amount - amount, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = await db.scalar(select(UserCredits.amount).where(UserCredits.user_id == user_id))
            raise InsufficientBalance(user_id, amount, available)
        
        entry = await self._append(
            db,
            user_id=user_id,
            kind=LedgerKind.DEDUCTION,
            amount=-amount,
            description=description,
            related_generation_id=related_generation_id,
        )
        logger.info(f"Deducted {amount} credits from user {user_id} (balance {entry.balance_after})")
        return entry
    
    async def add_credits(
        self,
        user_id: str,
        amount,
        kind: str,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        related_generation_id: Optional[str] = None,
        db: Optional[AsyncSession] = None
    ) -> Optional[CreditTransaction]:
        """
        Credit (or, for negative adjustments, debit) a user's balance.
        
        When reference_id is given the entry is idempotent on it: a second call
        with the same reference returns None without touching the balance.
        """
        if db is None:
            async with self.session_factory() as session:
                try:
                    entry = await self.add_credits(
                        user_id, amount, kind, description,
                        reference_id=reference_id,
                        metadata=metadata,
                        related_generation_id=related_generation_id,
                        db=session,
                    )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    if not reference_id:
                        raise
                    # Lost a race with a concurrent delivery of the same reference
                    logger.info(f"Concurrent ledger entry for reference {reference_id}, skipping")
                    return None
                return entry
        
        amount = _to_decimal(amount)
        if reference_id and await self.has_reference(reference_id, db):
            logger.info(f"Ledger entry for reference {reference_id} already exists, skipping")
            return None
        
        await self._increment_balance(db, user_id, amount)
        entry = await self._append(
            db,
            user_id=user_id,
            kind=kind,
            amount=amount,
            description=description,
            related_generation_id=related_generation_id,
            reference_id=reference_id,
            metadata=metadata,
        )
        
        logger.info(f"Added {amount} credits ({kind}) to user {user_id} (balance {entry.balance_after})")
        return entry
    
    async def refund(self, job_id: str, db: Optional[AsyncSession] = None) -> Dict[str, Any]:
        """
        Refund the credits charged for a failed generation, at most once.
        
        The refunded flag is flipped with a conditional UPDATE first; only the
        caller that wins that flip appends the refund entry. The flip, balance
        increment and ledger insert share one transaction.
        
        Returns:
            Dict with refunded (bool), message and, when refunded, amount
        """
        if db is None:
            async with self.session_factory() as session:
                outcome = await self.refund(job_id, db=session)
                await session.commit()
                return outcome
        
        result = await db.execute(
            update(Generation)
            .where(
                Generation.id == job_id,
                Generation.status == GenerationStatus.FAILED,
                Generation.refunded.is_(False),
                Generation.credits_charged > 0,
            )
            .values(refunded=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return {"refunded": False, "message": await self._refund_skip_reason(db, job_id)}
        
        row = (await db.execute(
            select(Generation.user_id, Generation.credits_charged, Generation.prompt)
            .where(Generation.id == job_id)
        )).one()
        
        amount = _to_decimal(row.credits_charged)
        await self._increment_balance(db, row.user_id, amount)
        await self._append(
            db,
            user_id=row.user_id,
            kind=LedgerKind.REFUND,
            amount=amount,
            description=f"Refund for failed generation: {(row.prompt or '')[:50]}",
            related_generation_id=job_id,
        )
        logger.info(f"Refunded {amount} credits to user {row.user_id} for generation {job_id}")
        return {"refunded": True, "message": "Credits refunded successfully", "amount": amount}
    
    async def _refund_skip_reason(self, db: AsyncSession, job_id: str) -> str:
        job = (await db.execute(
            select(Generation.status, Generation.refunded, Generation.credits_charged)
            .where(Generation.id == job_id)
        )).one_or_none()
        if job is None:
            return "Generation not found"
        if job.refunded:
            return "Generation already refunded"
        if job.status != GenerationStatus.FAILED:
            return "Only failed generations can be refunded"
        return "Nothing to refund"
    
    async def _increment_balance(self, db: AsyncSession, user_id: str, amount: Decimal) -> None:
        result = await db.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id, UserCredits.amount + amount >= 0)
            .values(amount=UserCredits.amount + amount, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        
        exists = await db.scalar(select(UserCredits.user_id).where(UserCredits.user_id == user_id))
        if exists is not None or amount < 0:
            raise InsufficientBalance(user_id, -amount)
        db.add(UserCredits(user_id=user_id, amount=amount))
        await db.flush()
    
    async def _append(
        self,
        db: AsyncSession,
        user_id: str,
        kind: str,
        amount: Decimal,
        description: str,
        related_generation_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> CreditTransaction:
        balance_after = await db.scalar(select(UserCredits.amount).where(UserCredits.user_id == user_id))
        entry = CreditTransaction(
            id=str(uuid4()),
            user_id=user_id,
            kind=kind,
            amount=amount,
            balance_after=balance_after,
            description=description,
            related_generation_id=related_generation_id,
            reference_id=reference_id,
            metadata_json=metadata,
        )
        db.add(entry)
        await db.flush()
        return entry
