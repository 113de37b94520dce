"""
Invite code service

Redemption increments used_count with a conditional UPDATE (used_count <
max_uses) and credits the ledger in the same transaction. Each user can redeem
a given code once; the ledger's unique reference_id enforces it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.exceptions import InviteCodeError, NotFoundError
from app.db.models.credit import CreditTransaction, LedgerKind
from app.db.models.invite_code import InviteCode
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def _reference_id(invite_id: str, user_id: str) -> str:
    return f"invite:{invite_id}:{user_id}"


def _is_expired(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        # sqlite hands back naive UTC
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) > expires_at


class InviteService:
    """Service for creating and redeeming invite codes"""
    
    def __init__(self, session_factory: async_sessionmaker, ledger: LedgerService):
        self.session_factory = session_factory
        self.ledger = ledger
    
    async def create_code(
        self,
        code: str,
        credits: int,
        max_uses: int = 1,
        created_by: str = "admin",
        note: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ) -> InviteCode:
        """
        Raises:
            InviteCodeError: If the code already exists
        """
        invite = InviteCode(
            id=f"inv_{uuid4().hex}",
            code=code,
            credits=credits,
            max_uses=max_uses,
            used_count=0,
            is_active=True,
            note=note,
            created_by=created_by,
            expires_at=expires_at,
        )
        async with self.session_factory() as db:
            db.add(invite)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise InviteCodeError(f"Invite code {code} already exists")
        logger.info(f"Created invite code {code} ({credits} credits, {max_uses} uses)")
        return invite
    
    async def list_codes(self) -> List[InviteCode]:
        async with self.session_factory() as db:
            result = await db.execute(select(InviteCode).order_by(InviteCode.created_at.desc()))
            return list(result.scalars().all())
    
    async def set_active(self, invite_id: str, active: bool) -> InviteCode:
        """
        Raises:
            NotFoundError: If the invite code does not exist
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(InviteCode)
                .where(InviteCode.id == invite_id)
                .values(is_active=active)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError(f"Invite code {invite_id} not found")
            await db.commit()
            return await db.scalar(
                select(InviteCode).where(InviteCode.id == invite_id).execution_options(populate_existing=True)
            )
    
    async def list_redemptions(self, invite_id: str) -> List[CreditTransaction]:
        """Ledger entries created by redeeming this code, newest first"""
        async with self.session_factory() as db:
            result = await db.execute(
                select(CreditTransaction)
                .where(CreditTransaction.reference_id.like(f"{_reference_id(invite_id, '')}%"))
                .order_by(CreditTransaction.created_at.desc())
            )
            return list(result.scalars().all())
    
    async def redeem(self, user_id: str, code: str) -> Dict[str, Any]:
        """
        Redeem a code for user_id.
        
        Returns:
            Dict with the credits granted and the new balance
            
        Raises:
            NotFoundError: Unknown code
            InviteCodeError: Inactive, expired, fully used, or already
                redeemed by this user
        """
        async with self.session_factory() as db:
            invite = await db.scalar(select(InviteCode).where(InviteCode.code == code))
            if invite is None:
                raise NotFoundError("Invalid invite code")
            if not invite.is_active:
                raise InviteCodeError("Invite code is inactive")
            if _is_expired(invite.expires_at):
                raise InviteCodeError("Invite code has expired")
            
            reference_id = _reference_id(invite.id, user_id)
            if await self.ledger.has_reference(reference_id, db):
                raise InviteCodeError("Invite code already redeemed")
            
            result = await db.execute(
                update(InviteCode)
                .where(
                    InviteCode.id == invite.id,
                    InviteCode.is_active.is_(True),
                    InviteCode.used_count < InviteCode.max_uses,
                )
                .values(used_count=InviteCode.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InviteCodeError("Invite code has been fully used")
            
            try:
                entry = await self.ledger.add_credits(
                    user_id,
                    invite.credits,
                    LedgerKind.TOPUP,
                    f"Redeemed code: {code}",
                    reference_id=reference_id,
                    metadata={"inviteCodeId": invite.id, "code": code},
                    db=db,
                )
                if entry is None:
                    raise InviteCodeError("Invite code already redeemed")
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise InviteCodeError("Invite code already redeemed")
        
        logger.info(f"User {user_id} redeemed invite code {code} for {invite.credits} credits")
        return {"credits": invite.credits, "balance": entry.balance_after}
