"""Expire unpaid orders whose expires_at has passed.

Each candidate order is handled in its own transaction: status to EXPIRED,
reserved stock credited back through the reservation ledger, the attached
PaymentIntent canceled when still possible, and a 'local.order.expired'
audit event. A failing order is recorded in the result and the sweep moves
on to the next one.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import selectinload

from vending.core.config import settings
from vending.core.logging import jobs_logger
from vending.core.metrics import JobMetrics, get_job_metrics
from vending.db.session import SessionLocal, UnitOfWork
from vending.models.enums import OrderStatus, PaymentStatus, PRE_PAYMENT_ORDER_STATUSES
from vending.models.order import Order
from vending.models.payment import Payment
from vending.services.alert_service import refresh_machine_alerts
from vending.services.event_service import log_local_payment_event
from vending.services.reservation_service import release_for_order_with_machines
from vending.services.stripe_service import get_payment_provider
from vending.tasks.utils import (
    as_utc, can_safely_cancel_payment_intent, format_local, get_job_status_info, now_utc, run_in_batches
)

JOB_NAME = "expire-stale-orders"


@dataclass
class ExpireStaleOrdersResult:
    orders_expired: int = 0
    payment_intents_canceled: int = 0
    stock_released: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time: int = 0  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExpireStaleOrdersJob:
    """Sweep moving PENDING / REQUIRES_PAYMENT orders past their expiry to EXPIRED"""

    def __init__(self, session_factory=SessionLocal, payment_provider=None,
                 metrics: Optional[JobMetrics] = None, batch_size: Optional[int] = None):
        self.session_factory = session_factory
        self.payment_provider = payment_provider or get_payment_provider()
        self.metrics = metrics or get_job_metrics()
        self.batch_size = batch_size or settings.ORDER_EXPIRATION_BATCH_SIZE

    async def execute(self) -> ExpireStaleOrdersResult:
        """Run the sweep once. Never raises: failures end up in ``result.errors``."""
        start_time = now_utc()
        jobs_logger.info(f"Starting job {JOB_NAME}")
        result = ExpireStaleOrdersResult()

        db = self.session_factory()
        try:
            uow = UnitOfWork(db)
            expired_orders = self._get_expired_orders(db)

            if not expired_orders:
                jobs_logger.info("No expired orders found")
                return self._finalize_result(result, start_time)

            jobs_logger.info(f"{len(expired_orders)} expired orders found")

            async def process_batch(batch: List[Order]):
                for order in batch:
                    await self._process_order_safely(uow, order, result)

            await run_in_batches(expired_orders, self.batch_size, process_batch)

            jobs_logger.info(
                f"Processing finished: {result.orders_expired} orders expired, "
                f"{result.payment_intents_canceled} PaymentIntents canceled"
            )
        except Exception as e:
            error_message = f"Fatal error while running {JOB_NAME}: {e}"
            jobs_logger.error(error_message, exc_info=True)
            result.errors.append(error_message)
        finally:
            db.close()

        return self._finalize_result(result, start_time)

    async def execute_manually(self) -> ExpireStaleOrdersResult:
        """Manual trigger, same code path as the scheduled run"""
        jobs_logger.info(f"Manual run of job {JOB_NAME}")
        return await self.execute()

    def _get_expired_orders(self, db) -> List[Order]:
        return db.query(Order).options(
            selectinload(Order.items),
            selectinload(Order.payment)
        ).filter(
            Order.status.in_(PRE_PAYMENT_ORDER_STATUSES),
            Order.expires_at < now_utc()
        ).order_by(Order.expires_at.asc()).all()

    async def _process_order_safely(self, uow: UnitOfWork, order: Order, result: ExpireStaleOrdersResult):
        order_id = order.id
        try:
            outcome = await self._process_expired_order(uow, order_id)
        except Exception as e:
            error_message = f"Error while processing order {order_id}: {e}"
            jobs_logger.error(error_message, exc_info=True)
            result.errors.append(error_message)
            return

        if outcome is None:
            return

        stock_released, intents_canceled, machine_ids = outcome
        result.orders_expired += 1
        result.stock_released += stock_released
        result.payment_intents_canceled += intents_canceled

        self.metrics.increment_expired_orders()
        if stock_released:
            self.metrics.increment_released_stock(stock_released)
        if intents_canceled:
            self.metrics.increment_canceled_payment_intents(intents_canceled)

        for machine_id in sorted(machine_ids):
            refresh_machine_alerts(uow, machine_id)

        jobs_logger.info(f"Order {order_id} expired successfully")

    async def _process_expired_order(self, uow: UnitOfWork, order_id: int) -> Optional[Tuple[int, int, Set[int]]]:
        """Expire one order in a single transaction.

        Returns (units released, intents canceled, touched machine ids), or None
        when the order left the pre-payment statuses since the candidate query.
        """
        with uow.begin() as db:
            order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
            if order is None or order.status not in PRE_PAYMENT_ORDER_STATUSES:
                jobs_logger.info(f"Order {order_id} is no longer pending, skipped")
                return None

            jobs_logger.info(f"Processing expired order {order_id} (expired {format_local(order.expires_at)})")

            order.status = OrderStatus.EXPIRED.value
            db.flush()

            stock_released, machine_ids = release_for_order_with_machines(uow, order_id)

            intents_canceled = 0
            if order.payment is not None:
                intents_canceled = await self._cancel_stale_payment_intent(order.payment)

            log_local_payment_event(
                db,
                "local.order.expired",
                {
                    "orderId": order_id,
                    "expiredAt": as_utc(order.expires_at),
                    "stockReleased": stock_released,
                    "paymentIntentsCanceled": intents_canceled,
                },
                order_id=order_id,
            )

        return stock_released, intents_canceled, machine_ids

    async def _cancel_stale_payment_intent(self, payment: Payment) -> int:
        """Cancel the order's PaymentIntent if both sides still allow it.

        A remote failure still closes the local payment; the payment cleanup
        sweep reconciles whatever Stripe ends up holding.
        """
        intent_id = payment.stripe_payment_intent_id
        if not intent_id or not can_safely_cancel_payment_intent(payment.status):
            return 0

        try:
            remote = await self.payment_provider.retrieve_intent(intent_id)
            if remote is None:
                jobs_logger.warning(f"PaymentIntent {intent_id} not found on Stripe, closing payment {payment.id} locally")
                self._mark_canceled(payment, "stripe_not_found")
                return 1

            if not can_safely_cancel_payment_intent(remote.status):
                jobs_logger.warning(
                    f"PaymentIntent {intent_id} is {remote.status} on Stripe, payment {payment.id} left as {payment.status}"
                )
                return 0

            await self.payment_provider.cancel_intent(intent_id, "abandoned")
            self._mark_canceled(payment, "order_expired")
            jobs_logger.info(f"PaymentIntent {intent_id} canceled")
            return 1
        except Exception as e:
            jobs_logger.warning(f"Could not cancel PaymentIntent {intent_id}, closing payment {payment.id} locally: {e}")
            self._mark_canceled(payment, "stripe_error")
            return 1

    @staticmethod
    def _mark_canceled(payment: Payment, reason: str):
        payment.status = PaymentStatus.CANCELED.value
        payment.last_error_message = reason
        payment.updated_at = now_utc()

    def _finalize_result(self, result: ExpireStaleOrdersResult, start_time) -> ExpireStaleOrdersResult:
        end_time = now_utc()
        result.execution_time = int((end_time - start_time).total_seconds() * 1000)
        success = not result.errors
        self.metrics.update_job_execution_time(result.execution_time, job=JOB_NAME, success=success)

        status_info = get_job_status_info(JOB_NAME, start_time, end_time, success, result.to_dict())
        jobs_logger.info(f"Execution summary: {status_info}")
        return result
