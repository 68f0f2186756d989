"""Order and OrderItem models"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from vending.models.base import Base


class Order(Base):
    """Customer order collected at a machine"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id"), nullable=True, index=True)
    # 'PENDING', 'REQUIRES_PAYMENT', 'PAID', 'ACTIVE', 'EXPIRED', 'USED', 'CANCELLED', 'FAILED', 'REFUNDED', 'ARCHIVED', 'DELETED'
    status = Column(String(50), default="PENDING", nullable=False, index=True)
    amount_total_cents = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payment = relationship("Payment", back_populates="order", uselist=False)
    reservations = relationship("StockReservation", back_populates="order")

    __table_args__ = (
        Index('ix_orders_status_expires', 'status', 'expires_at'),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status})>"


class OrderItem(Base):
    """Line of an order"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    slot_number = Column(Integer, nullable=True)
    unit_price_cents = Column(Integer, default=0, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
