from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Numeric, JSON, Integer, Boolean
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime
import enum


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    SOLD = "sold"
    EXPIRED = "expired"


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(60), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2), nullable=True)
    discount_start_date = Column(DateTime, nullable=True)
    discount_end_date = Column(DateTime, nullable=True)
    images = Column(JSON, nullable=False, default=list)  # ordered URLs, mirrors product_images
    tags = Column(JSON, nullable=False, default=list)
    category = Column(String, nullable=False, index=True)
    location = Column(String, nullable=True)
    status = Column(String, nullable=False, default=ProductStatus.ACTIVE.value, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("Profile", back_populates="products")
    image_rows = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.display_order",
    )


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(String, primary_key=True, index=True)
    product_id = Column(String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String, nullable=False)
    storage_path = Column(String, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    is_cover = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    product = relationship("Product", back_populates="image_rows")
