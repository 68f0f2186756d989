"""Machine model"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from vending.models.base import Base


class Machine(Base):
    """Physical vending machine"""
    __tablename__ = "machines"

    id = Column(Integer, primary_key=True, index=True)
    label = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False)
    status = Column(String(50), default="OFFLINE", nullable=False)  # ONLINE, OFFLINE, MAINTENANCE, OUT_OF_SERVICE
    contact = Column(String(255), nullable=True)
    last_update = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    stocks = relationship("Stock", back_populates="machine", order_by="Stock.slot_number")
    alerts = relationship("Alert", back_populates="machine")

    def __repr__(self):
        return f"<Machine(id={self.id}, label={self.label}, status={self.status})>"
