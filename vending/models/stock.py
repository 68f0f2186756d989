"""Stock model"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from vending.models.base import Base


class Stock(Base):
    """One configured slot of a machine, bound to a single product"""
    __tablename__ = "stocks"

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, default=0, nullable=False)  # On-hand units, never negative
    slot_number = Column(Integer, nullable=False)  # 1..MACHINE_SLOT_CAPACITY
    max_capacity = Column(Integer, nullable=False)
    low_threshold = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    machine = relationship("Machine", back_populates="stocks")
    product = relationship("Product")
    reservations = relationship("StockReservation", back_populates="stock")

    __table_args__ = (
        UniqueConstraint('machine_id', 'slot_number', name='uq_stocks_machine_slot'),
        CheckConstraint('quantity >= 0', name='ck_stocks_quantity_non_negative'),
        CheckConstraint('quantity <= max_capacity', name='ck_stocks_quantity_within_capacity'),
        CheckConstraint('slot_number >= 1', name='ck_stocks_slot_number_positive'),
    )

    def __repr__(self):
        return f"<Stock(machine_id={self.machine_id}, slot={self.slot_number}, quantity={self.quantity}/{self.max_capacity})>"
