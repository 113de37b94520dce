"""
Invite code model
"""

from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, CheckConstraint
from sqlalchemy.sql import func
from app.db.base import Base


class InviteCode(Base):
    """Redeemable code worth a fixed number of credits, limited to max_uses redemptions"""
    __tablename__ = "invite_codes"
    
    id = Column(String(64), primary_key=True)
    code = Column(String(64), nullable=False, unique=True)
    credits = Column(Integer, nullable=False, default=100)
    max_uses = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    note = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=False)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    
    __table_args__ = (
        CheckConstraint("used_count <= max_uses", name="ck_invite_codes_usage"),
    )
    
    def __repr__(self):
        return f"<InviteCode(code='{self.code}', used={self.used_count}/{self.max_uses})>"
