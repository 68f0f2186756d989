"""Background loops running the reconciliation jobs on a fixed cadence"""
import asyncio
import logging
from typing import Any, Dict, List

from vending.core.config import settings
from vending.db.session import SessionLocal, UnitOfWork
from vending.services.alert_service import refresh_machine_alerts
from vending.services.reservation_service import cleanup_expired_reservations_with_machines
from vending.tasks.cleanup_stale_payment_intents import CleanupStalePaymentIntentsJob
from vending.tasks.expire_stale_orders import ExpireStaleOrdersJob

logger = logging.getLogger(__name__)


def get_jobs_status() -> List[Dict[str, Any]]:
    """Describe the scheduled jobs (name, cadence, description)"""
    return [
        {
            "name": "expire-stale-orders",
            "interval_seconds": settings.EXPIRE_ORDERS_INTERVAL_SECONDS,
            "timezone": settings.TIMEZONE,
            "enabled": settings.SCHEDULER_ENABLED,
            "description": "Expire unpaid orders, release their stock and cancel their PaymentIntents",
        },
        {
            "name": "cleanup-stale-payment-intents",
            "interval_seconds": settings.PAYMENT_CLEANUP_INTERVAL_SECONDS,
            "timezone": settings.TIMEZONE,
            "enabled": settings.SCHEDULER_ENABLED,
            "description": "Cancel or resync payments that are orphaned or older than "
                           f"{settings.STALE_PAYMENT_MAX_AGE_DAYS} days",
        },
        {
            "name": "cleanup-expired-reservations",
            "interval_seconds": settings.RESERVATION_CLEANUP_INTERVAL_SECONDS,
            "timezone": settings.TIMEZONE,
            "enabled": settings.SCHEDULER_ENABLED,
            "description": "Return stock held by reservations past their expiry",
        },
    ]


def run_reservation_cleanup(session_factory=SessionLocal) -> int:
    """Expire overdue reservations, then refresh alerts of the machines they touched"""
    db = session_factory()
    try:
        uow = UnitOfWork(db)
        cleaned, machine_ids = cleanup_expired_reservations_with_machines(uow)
        if cleaned:
            for machine_id in sorted(machine_ids):
                refresh_machine_alerts(uow, machine_id)
            logger.info(f"Reservation cleanup: {cleaned} reservations expired, "
                        f"alerts refreshed for {len(machine_ids)} machines")
        return cleaned
    finally:
        db.close()


async def expire_stale_orders_task():
    """Run the order expiration job every EXPIRE_ORDERS_INTERVAL_SECONDS"""
    logger.info("Starting expire-stale-orders scheduler task...")
    job = ExpireStaleOrdersJob()
    while True:
        try:
            await asyncio.sleep(settings.EXPIRE_ORDERS_INTERVAL_SECONDS)
            result = await job.execute()
            if result.errors:
                logger.warning(f"expire-stale-orders finished with {len(result.errors)} error(s)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Fatal error in expire-stale-orders scheduler: {e}", exc_info=True)


async def cleanup_stale_payment_intents_task():
    """Run the payment cleanup job every PAYMENT_CLEANUP_INTERVAL_SECONDS (weekly by default)"""
    logger.info("Starting cleanup-stale-payment-intents scheduler task...")
    job = CleanupStalePaymentIntentsJob()
    while True:
        try:
            await asyncio.sleep(settings.PAYMENT_CLEANUP_INTERVAL_SECONDS)
            result = await job.execute()
            if result.errors:
                logger.warning(f"cleanup-stale-payment-intents finished with {len(result.errors)} error(s)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Fatal error in cleanup-stale-payment-intents scheduler: {e}", exc_info=True)


async def reservation_cleanup_task():
    """Hourly safety net for reservations whose order never reached the expiration job"""
    logger.info("Starting reservation cleanup scheduler task...")
    while True:
        try:
            await asyncio.sleep(settings.RESERVATION_CLEANUP_INTERVAL_SECONDS)
            await asyncio.to_thread(run_reservation_cleanup)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in reservation cleanup scheduler: {e}", exc_info=True)


def start_scheduler_tasks() -> List[asyncio.Task]:
    """Create the background tasks on the running event loop"""
    return [
        asyncio.create_task(expire_stale_orders_task()),
        asyncio.create_task(cleanup_stale_payment_intents_task()),
        asyncio.create_task(reservation_cleanup_task()),
    ]
