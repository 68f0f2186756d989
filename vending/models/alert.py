"""Alert model"""
from sqlalchemy import Column, Integer, String, Text, Boolean, JSON, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from vending.models.base import Base


class Alert(Base):
    """Machine alert. At most one row per machine has is_active=True."""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(50), nullable=False)  # LOW_STOCK, CRITICAL, INCOMPLETE, MACHINE_OFFLINE, MAINTENANCE_REQUIRED
    level = Column(String(20), nullable=False)  # INFO, WARNING, ERROR, CRITICAL
    status = Column(String(20), default="OPEN", nullable=False)  # OPEN, RESOLVED, IGNORED
    is_active = Column(Boolean, default=True, nullable=False)
    message = Column(Text, nullable=False, default="")
    alert_metadata = Column("metadata", JSON, default=dict)  # Snapshot of slot counts when written
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    machine = relationship("Machine", back_populates="alerts")

    __table_args__ = (
        Index('ix_alerts_machine_active', 'machine_id', 'is_active'),
    )

    def __repr__(self):
        return f"<Alert(machine_id={self.machine_id}, type={self.type}, active={self.is_active})>"
