from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime


class UserBan(Base):
    __tablename__ = "user_bans"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    banned_by = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    reason = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("Profile", back_populates="bans", foreign_keys=[user_id])
