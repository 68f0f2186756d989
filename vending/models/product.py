"""Product model"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from datetime import datetime, timezone
from vending.models.base import Base


class Product(Base):
    """Catalogue product (catalogue management lives outside this service)"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
