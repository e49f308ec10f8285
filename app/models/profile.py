from sqlalchemy import Column, String, DateTime, Boolean, Integer
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)  # Firebase UID
    email = Column(String, unique=True, index=True, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    address = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    credits = Column(Integer, default=0, nullable=False)
    role = Column(String, default='user', nullable=False, index=True)  # 'user', 'admin'
    is_admin = Column(Boolean, default=False, nullable=False)  # kept in sync with role
    banned_until = Column(DateTime, nullable=True)  # cache of the latest ban end, user_bans is authoritative
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    products = relationship("Product", back_populates="owner", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
    bans = relationship(
        "UserBan",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="UserBan.user_id",
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
