"""Status vocabularies stored as plain strings in the database"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    REQUIRES_PAYMENT = "REQUIRES_PAYMENT"
    PAID = "PAID"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    USED = "USED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


# Orders the expiration job may move to EXPIRED
PRE_PAYMENT_ORDER_STATUSES = (OrderStatus.PENDING.value, OrderStatus.REQUIRES_PAYMENT.value)
# Orders whose payment is orphaned from the business point of view
ARCHIVED_ORDER_STATUSES = (OrderStatus.DELETED.value, OrderStatus.ARCHIVED.value)


class PaymentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"


CANCELABLE_PAYMENT_STATUSES = (
    PaymentStatus.REQUIRES_PAYMENT_METHOD.value,
    PaymentStatus.REQUIRES_CONFIRMATION.value,
    PaymentStatus.REQUIRES_ACTION.value,
    PaymentStatus.PROCESSING.value,
)
FINAL_PAYMENT_STATUSES = (
    PaymentStatus.SUCCEEDED.value,
    PaymentStatus.CANCELED.value,
    PaymentStatus.FAILED.value,
)


class ReservationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


class MachineStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


class AlertType(str, Enum):
    LOW_STOCK = "LOW_STOCK"
    CRITICAL = "CRITICAL"
    INCOMPLETE = "INCOMPLETE"
    MACHINE_OFFLINE = "MACHINE_OFFLINE"
    MAINTENANCE_REQUIRED = "MAINTENANCE_REQUIRED"


class AlertLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"


# Single definition of stock alert precedence: CRITICAL > LOW_STOCK > INCOMPLETE > none.
# Used by the alert writer and by per-machine summaries.
ALERT_PRIORITY = {
    AlertType.CRITICAL.value: 3,
    AlertType.LOW_STOCK.value: 2,
    AlertType.INCOMPLETE.value: 1,
}


def alert_priority(alert_type) -> int:
    """Rank of an alert type; unknown or missing types rank 0"""
    if alert_type is None:
        return 0
    return ALERT_PRIORITY.get(getattr(alert_type, "value", alert_type), 0)
