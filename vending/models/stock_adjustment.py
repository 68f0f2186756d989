"""StockAdjustment model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from vending.models.base import Base


class StockAdjustment(Base):
    """Audit log for stock changes that do not go through a reservation"""
    __tablename__ = "stock_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    reason = Column(String(50), nullable=False)  # 'restock', 'restock_to_max', 'manual', 'order_release'
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    quantity_delta = Column(Integer, nullable=False)  # Positive for additions, negative for removals
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    stock = relationship("Stock")
