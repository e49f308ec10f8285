from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, index=True)
    actor_id = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)  # 'ban_user', 'set_role', 'delete_user', ...
    resource_type = Column(String, nullable=False)  # 'profile', 'package', 'slot', 'setting'
    resource_id = Column(String, nullable=True)
    details = Column(Text)  # JSON string for additional data
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    actor = relationship("Profile")
