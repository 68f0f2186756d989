"""StockReservation model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from vending.models.base import Base


class StockReservation(Base):
    """Units of a slot earmarked for an order until payment completes"""
    __tablename__ = "stock_reservations"

    id = Column(Integer, primary_key=True, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), default="ACTIVE", nullable=False)  # ACTIVE, RELEASED, EXPIRED
    reserved_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    stock = relationship("Stock", back_populates="reservations")
    order = relationship("Order", back_populates="reservations")

    __table_args__ = (
        Index('ix_stock_reservations_status_expires', 'status', 'expires_at'),
    )
