from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Integer, Numeric
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime
import enum


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REPLACED = "replaced"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    package_id = Column(String, ForeignKey("subscription_packages.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    extra_slots = Column(Integer, default=0, nullable=False)  # bought product slots
    amount_paid = Column(Numeric(10, 2), nullable=True)
    starts_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("Profile", back_populates="subscriptions")
    package = relationship("SubscriptionPackage")
