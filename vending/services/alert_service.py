"""Machine alert calculation - single writer of Alert rows.

A machine has at most one active alert, picked by the precedence in
``vending.models.enums.ALERT_PRIORITY`` (CRITICAL > LOW_STOCK > INCOMPLETE).
"""
import logging
import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from vending.core.config import settings
from vending.core.exceptions import AlertNotFoundError, MachineNotFoundError
from vending.db.session import UnitOfWork
from vending.models.alert import Alert
from vending.models.enums import AlertLevel, AlertStatus, AlertType, alert_priority
from vending.models.machine import Machine
from vending.models.stock import Stock
from vending.tasks.utils import now_utc

logger = logging.getLogger(__name__)

# Level attached to each stock alert type
ALERT_LEVELS = {
    AlertType.CRITICAL.value: AlertLevel.CRITICAL.value,
    AlertType.LOW_STOCK.value: AlertLevel.WARNING.value,
    AlertType.INCOMPLETE.value: AlertLevel.WARNING.value,
}


@dataclass
class MachineAlertStatus:
    machine_id: Optional[int]
    alert_type: Optional[str]
    alert_level: Optional[str]
    configured_slots: int
    total_slots: int
    empty_slots: int
    low_stock_slots: int
    slots_at_threshold: int

    @property
    def metadata(self) -> Dict[str, Any]:
        if self.alert_type == AlertType.INCOMPLETE.value:
            return {
                "configured_slots": self.configured_slots,
                "total_slots": self.total_slots,
            }
        return {
            "empty_slots": self.empty_slots,
            "low_stock_slots": self.low_stock_slots,
            "total_slots": self.total_slots,
            "configured_slots": self.configured_slots,
            "slots_at_threshold": self.slots_at_threshold,
        }

    @property
    def message(self) -> str:
        if self.alert_type == AlertType.CRITICAL.value:
            return (f"Critical stock: {self.empty_slots} empty slot(s) out of "
                    f"{self.configured_slots} configured")
        if self.alert_type == AlertType.LOW_STOCK.value:
            return (f"Low stock: {self.slots_at_threshold}/{self.configured_slots} "
                    f"slots at or below threshold")
        if self.alert_type == AlertType.INCOMPLETE.value:
            return f"Incomplete machine: {self.configured_slots}/{self.total_slots} slots configured"
        return ""


def compute_machine_alert_status(
    stocks: Sequence[Stock],
    machine_id: Optional[int] = None,
    total_slots: Optional[int] = None,
    low_stock_ratio: Optional[float] = None
) -> MachineAlertStatus:
    """Derive the single alert a machine needs from its slot snapshot (pure)"""
    total_slots = total_slots if total_slots is not None else settings.MACHINE_SLOT_CAPACITY
    low_stock_ratio = low_stock_ratio if low_stock_ratio is not None else settings.LOW_STOCK_SLOT_RATIO

    configured_slots = len(stocks)
    empty_slots = sum(1 for s in stocks if s.quantity == 0)
    low_stock_slots = sum(1 for s in stocks if 0 < s.quantity <= s.low_threshold)
    slots_at_threshold = empty_slots + low_stock_slots

    candidates = []
    if empty_slots >= 1:
        candidates.append(AlertType.CRITICAL.value)
    if configured_slots > 0 and slots_at_threshold >= math.ceil(configured_slots * low_stock_ratio):
        candidates.append(AlertType.LOW_STOCK.value)
    if configured_slots < total_slots:
        candidates.append(AlertType.INCOMPLETE.value)

    alert_type = max(candidates, key=alert_priority) if candidates else None

    return MachineAlertStatus(
        machine_id=machine_id,
        alert_type=alert_type,
        alert_level=ALERT_LEVELS.get(alert_type) if alert_type else None,
        configured_slots=configured_slots,
        total_slots=total_slots,
        empty_slots=empty_slots,
        low_stock_slots=low_stock_slots,
        slots_at_threshold=slots_at_threshold,
    )


def calculate_machine_alert_status(db: Session, machine_id: int) -> MachineAlertStatus:
    stocks = db.query(Stock).filter(Stock.machine_id == machine_id).order_by(Stock.slot_number).all()
    return compute_machine_alert_status(stocks, machine_id=machine_id)


def _resolve(alert: Alert):
    alert.is_active = False
    alert.status = AlertStatus.RESOLVED.value
    alert.resolved_at = now_utc()


def update_machine_alerts(uow: UnitOfWork, machine_id: int) -> Optional[Alert]:
    """Bring the machine's active alert in line with its current stock.

    Reads the slots and the active alert and writes in one transaction.
    Returns the active alert afterwards, or None when the machine needs none.

    Raises:
        MachineNotFoundError: unknown machine id
    """
    with uow.begin() as db:
        if db.query(Machine.id).filter(Machine.id == machine_id).first() is None:
            raise MachineNotFoundError(f"Machine {machine_id} not found")

        alert_status = calculate_machine_alert_status(db, machine_id)
        existing = db.query(Alert).filter(
            Alert.machine_id == machine_id,
            Alert.is_active.is_(True)
        ).order_by(Alert.created_at.desc(), Alert.id.desc()).first()

        if alert_status.alert_type is None:
            if existing is not None:
                _resolve(existing)
                logger.info(f"Alert resolved for machine {machine_id}: {existing.type}")
            return None

        message = alert_status.message
        if existing is None or existing.type != alert_status.alert_type:
            if existing is not None:
                _resolve(existing)
                db.flush()
                logger.info(f"Alert changed for machine {machine_id}: {existing.type} -> {alert_status.alert_type}")
            else:
                logger.info(f"New alert for machine {machine_id}: {alert_status.alert_type}")

            alert = Alert(
                machine_id=machine_id,
                type=alert_status.alert_type,
                level=alert_status.alert_level,
                status=AlertStatus.OPEN.value,
                is_active=True,
                message=message,
                alert_metadata=alert_status.metadata,
                created_at=now_utc(),
            )
            db.add(alert)
            db.flush()
            return alert

        if existing.message != message:
            existing.message = message
            existing.alert_metadata = alert_status.metadata
            logger.info(f"Alert message updated for machine {machine_id}: {alert_status.alert_type}")
        return existing


def refresh_machine_alerts(uow: UnitOfWork, machine_id: int) -> bool:
    """Call update_machine_alerts after a stock change without letting it fail the change.

    Must be called after the stock mutation is committed. Returns False (and
    logs) on failure.
    """
    try:
        update_machine_alerts(uow, machine_id)
        return True
    except Exception as e:
        logger.error(f"Failed to update alerts for machine {machine_id}: {e}", exc_info=True)
        return False


def get_active_alerts(db: Session) -> List[Alert]:
    """All open active alerts, most severe first"""
    alerts = db.query(Alert).filter(
        Alert.is_active.is_(True),
        Alert.status == AlertStatus.OPEN.value
    ).order_by(Alert.created_at.desc()).all()
    return sorted(alerts, key=lambda a: alert_priority(a.type), reverse=True)


def get_machine_alerts(db: Session, machine_id: int) -> List[Alert]:
    return [a for a in get_active_alerts(db) if a.machine_id == machine_id]


def get_alerts_summary_by_machine(db: Session) -> List[Alert]:
    """One alert per machine: the highest-priority active one"""
    by_machine: Dict[int, Alert] = {}
    for alert in get_active_alerts(db):
        current = by_machine.get(alert.machine_id)
        if current is None or alert_priority(alert.type) > alert_priority(current.type):
            by_machine[alert.machine_id] = alert
    return list(by_machine.values())


def resolve_alert(uow: UnitOfWork, alert_id: int) -> Alert:
    """Operator resolution of an alert"""
    with uow.begin() as db:
        alert = db.query(Alert).filter(Alert.id == alert_id).first()
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        _resolve(alert)
    logger.info(f"Alert {alert_id} resolved manually")
    return alert


def recalculate_all_machine_alerts(uow: UnitOfWork) -> int:
    """Re-run update_machine_alerts for every machine, one after the other. Returns machines processed."""
    machine_ids = [row.id for row in uow.db.query(Machine.id).order_by(Machine.id).all()]
    for machine_id in machine_ids:
        update_machine_alerts(uow, machine_id)
    logger.info(f"Alerts recalculated for {len(machine_ids)} machines")
    return len(machine_ids)


def cleanup_duplicate_alerts(uow: UnitOfWork) -> Dict[str, int]:
    """Repair machines with several active alerts: keep the newest, resolve the rest"""
    total_cleaned = 0
    with uow.begin() as db:
        machine_ids = [row.id for row in db.query(Machine.id).order_by(Machine.id).all()]
        for machine_id in machine_ids:
            active_alerts = db.query(Alert).filter(
                Alert.machine_id == machine_id,
                Alert.is_active.is_(True)
            ).order_by(Alert.created_at.desc(), Alert.id.desc()).all()

            if len(active_alerts) > 1:
                for alert in active_alerts[1:]:
                    _resolve(alert)
                total_cleaned += len(active_alerts) - 1
                logger.info(f"Machine {machine_id}: resolved {len(active_alerts) - 1} duplicate alert(s)")

    logger.info(f"Duplicate cleanup finished: {total_cleaned} alerts resolved across {len(machine_ids)} machines")
    return {"cleaned": total_cleaned, "machines_processed": len(machine_ids)}


def alert_to_dict(alert: Alert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "machine_id": alert.machine_id,
        "stock_id": alert.stock_id,
        "type": alert.type,
        "level": alert.level,
        "status": alert.status,
        "is_active": alert.is_active,
        "message": alert.message,
        "metadata": alert.alert_metadata or {},
        "created_at": alert.created_at,
        "resolved_at": alert.resolved_at,
    }


def status_to_dict(alert_status: MachineAlertStatus) -> Dict[str, Any]:
    return asdict(alert_status)
