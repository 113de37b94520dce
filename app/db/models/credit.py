"""
Credit balance and ledger models
"""

from sqlalchemy import Column, String, Text, DateTime, Numeric, Index, CheckConstraint, text
from sqlalchemy.sql import func
from app.db.base import Base, JSONType


class LedgerKind:
    """Allowed values of CreditTransaction.kind"""
    DEDUCTION = "deduction"
    TOPUP = "topup"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class UserCredits(Base):
    """Current balance per user; only changed together with a ledger insert"""
    __tablename__ = "user_credits"
    
    user_id = Column(String(64), primary_key=True)
    amount = Column(Numeric(10, 1), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_user_credits_non_negative"),
    )
    
    def __repr__(self):
        return f"<UserCredits(user_id='{self.user_id}', amount={self.amount})>"


class CreditTransaction(Base):
    """
    Append-only ledger entry.
    
    Rows are never updated or deleted: the sum of amounts for a user equals the
    balance in user_credits.
    """
    __tablename__ = "credit_transactions"
    
    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(64), nullable=False)
    kind = Column(String(20), nullable=False)  # deduction, topup, refund, adjustment
    amount = Column(Numeric(10, 1), nullable=False)  # Signed: negative for deductions
    balance_after = Column(Numeric(10, 1), nullable=False)
    description = Column(Text, nullable=False, default="")
    
    # Back-references, never ownership links
    related_generation_id = Column(String(64), nullable=True)
    reference_id = Column(String(128), nullable=True)  # External id, e.g. payment charge id
    metadata_json = Column("metadata", JSONType, nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    __table_args__ = (
        Index('idx_credit_tx_user_created', 'user_id', 'created_at'),
        Index('idx_credit_tx_generation', 'related_generation_id'),
        Index('uq_credit_tx_reference', 'reference_id', unique=True),
        Index(
            'uq_credit_tx_refund_generation',
            'related_generation_id',
            unique=True,
            postgresql_where=text("kind = 'refund'"),
            sqlite_where=text("kind = 'refund'"),
        ),
    )
    
    def __repr__(self):
        return f"<CreditTransaction(kind='{self.kind}', amount={self.amount}, user_id='{self.user_id}')>"
