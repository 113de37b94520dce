"""
Generation database model
One row per generation request; the Job of the reconciliation lifecycle
"""

from sqlalchemy import Column, String, Text, DateTime, Numeric, Boolean, Index
from sqlalchemy.sql import func
from app.db.base import Base, JSONType


class GenerationStatus:
    """Allowed values of Generation.status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class Generation(Base):
    """
    Model for storing a generation job.
    
    status moves pending -> processing -> completed|failed. The transition out of
    processing and the refunded flag are only written through conditional
    updates in GenerationStore and LedgerService.
    """
    __tablename__ = "generations"
    
    # Primary key
    id = Column(String(64), primary_key=True)
    
    # Ownership and routing
    user_id = Column(String(64), nullable=False, index=True)
    model_id = Column(String(128), nullable=False)  # Provider model identifier, e.g. "veo3_fast"
    type = Column(String(10), nullable=False)  # image, video
    prompt = Column(Text, nullable=False, default="")
    parameters = Column(JSONType, nullable=True)
    
    # Provider task id, set once after a successful submit
    external_task_id = Column(String(128), nullable=True, unique=True)
    
    status = Column(String(20), nullable=False, default=GenerationStatus.PENDING)
    
    # Results
    result_url = Column(Text, nullable=True)  # First result, kept for single-result clients
    result_urls = Column(JSONType, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    
    # Billing
    credits_charged = Column(Numeric(10, 1), nullable=False, default=0)
    refunded = Column(Boolean, nullable=False, default=False)
    
    is_hidden = Column(Boolean, nullable=False, default=False)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    
    __table_args__ = (
        Index('idx_generations_status', 'status'),
        Index('idx_generations_user_created', 'user_id', 'created_at'),
    )
    
    @property
    def is_terminal(self) -> bool:
        return self.status in GenerationStatus.TERMINAL
    
    def __repr__(self):
        return f"<Generation(id='{self.id}', status='{self.status}')>"
