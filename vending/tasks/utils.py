"""Shared helpers for scheduled jobs: batching, clock, payment status rules"""
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from vending.core.config import settings
from vending.models.enums import CANCELABLE_PAYMENT_STATUSES, FINAL_PAYMENT_STATUSES

T = TypeVar("T")


async def run_in_batches(
    items: Sequence[T],
    size: int,
    handler: Callable[[List[T]], Awaitable[None]]
) -> None:
    """Split items into consecutive chunks of ``size`` and await handler on each, one at a time.

    The last chunk may be shorter. Nothing runs concurrently: the next batch
    starts only after the previous handler returned.
    """
    if size <= 0:
        raise ValueError("Batch size must be positive")
    for start in range(0, len(items), size):
        await handler(list(items[start:start + size]))


def now_utc() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read back from the database to aware UTC.

    Some backends (SQLite) return naive values for timezone-aware columns;
    those are UTC by construction.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_local(value: Optional[datetime]) -> str:
    """Format a datetime in the configured display timezone"""
    if value is None:
        return "-"
    return as_utc(value).astimezone(ZoneInfo(settings.TIMEZONE)).strftime("%d/%m/%Y %H:%M:%S")


def get_minutes_difference(start: datetime, end: datetime) -> int:
    return int((as_utc(end) - as_utc(start)).total_seconds() // 60)


def is_expired(value: datetime) -> bool:
    return as_utc(value) < now_utc()


def can_safely_cancel_payment_intent(status: Optional[str]) -> bool:
    """True if a PaymentIntent in this status can still be canceled"""
    return status in CANCELABLE_PAYMENT_STATUSES


def is_payment_intent_final(status: Optional[str]) -> bool:
    """True if a PaymentIntent in this status will never change again"""
    return status in FINAL_PAYMENT_STATUSES


def get_job_status_info(
    job_name: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
    success: Optional[bool] = None,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Summary of a job run, suitable for a single log line"""
    duration = get_minutes_difference(start_time, end_time) if end_time else None
    return {
        "job_name": job_name,
        "start_time": format_local(start_time),
        "end_time": format_local(end_time) if end_time else None,
        "duration": f"{duration} minutes" if duration is not None else None,
        "success": success,
        "details": details,
        "timestamp": now_utc().isoformat(),
    }
