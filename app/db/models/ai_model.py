"""
Generation model catalogue
"""

from sqlalchemy import Column, String, DateTime, Numeric, Boolean
from sqlalchemy.sql import func
from app.db.base import Base


class AIModel(Base):
    """A provider model users can generate with, and its price in credits"""
    __tablename__ = "ai_models"
    
    id = Column(String(64), primary_key=True)
    model_id = Column(String(128), nullable=False, unique=True)  # Provider identifier
    name = Column(String(255), nullable=False)
    type = Column(String(10), nullable=False)  # image, video
    cost_per_generation = Column(Numeric(10, 1), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<AIModel(model_id='{self.model_id}', cost={self.cost_per_generation})>"
