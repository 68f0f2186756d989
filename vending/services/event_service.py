"""Audit event sink for local payment/order lifecycle events"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vending.models.payment_event import PaymentEvent

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def log_local_payment_event(
    db: Session,
    event_type: str,
    payload: Dict[str, Any],
    order_id: Optional[int] = None,
    payment_id: Optional[int] = None
) -> Optional[PaymentEvent]:
    """Append an audit event inside the caller's transaction.

    Best effort: the insert runs in a savepoint, so a failure rolls back only
    the event and leaves the caller's transaction usable. The failure is
    logged and swallowed. Returns the event, or None if it could not be
    written.

    Args:
        db: Session of the caller's transaction
        event_type: e.g. 'local.order.expired', 'local.payment.canceled'
        payload: JSON-serializable details (datetimes are converted)
        order_id: Order the event relates to, if any
        payment_id: Payment the event relates to, if any
    """
    event = PaymentEvent(
        event_id=f"local_{uuid.uuid4().hex}",
        event_type=event_type,
        payload=_json_safe(payload),
        order_id=order_id,
        payment_id=payment_id,
        created_at=datetime.now(timezone.utc),
    )
    try:
        with db.begin_nested():
            db.add(event)
        return event
    except SQLAlchemyError as e:
        logger.error(f"Failed to write local event {event_type} (order {order_id}): {e}")
        if event in db:
            db.expunge(event)
        return None
