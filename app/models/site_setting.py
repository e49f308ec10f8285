from sqlalchemy import Column, String, DateTime, JSON
from app.core.database import Base
from datetime import datetime


class SiteSetting(Base):
    __tablename__ = "site_settings"

    key = Column(String, primary_key=True)  # 'subscription_packages_grid', 'thank_you_content', ...
    value = Column(JSON, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
