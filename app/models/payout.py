from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric
from app.core.database import Base
from datetime import datetime
import enum


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Payout(Base):
    """Money paid out to a seller from completed sales"""
    __tablename__ = "payouts"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default=PayoutStatus.PENDING.value, index=True)
    created_by = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
