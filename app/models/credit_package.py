from sqlalchemy import Column, String, DateTime, Boolean, Integer, Numeric, Text
from app.core.database import Base
from datetime import datetime


class CreditPackage(Base):
    """Bundle of credits added to the buyer's profile balance"""
    __tablename__ = "credit_packages"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    credits = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2), nullable=True)
    discount_start_date = Column(DateTime, nullable=True)
    discount_end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_popular = Column(Boolean, default=False, nullable=False)
    max_quantity = Column(Integer, nullable=True)
    sold_quantity = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
