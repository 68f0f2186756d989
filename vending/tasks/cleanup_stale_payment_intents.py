"""Close payments whose PaymentIntent is stale.

Candidates are non-final payments that are orphaned (no order, or an
ARCHIVED / DELETED one) or older than STALE_PAYMENT_MAX_AGE_DAYS. Stripe is the
source of truth when it answers; when it does not, the payment is closed
locally with the reason recorded in last_error_message.
"""
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from vending.core.config import settings
from vending.core.logging import jobs_logger
from vending.core.metrics import JobMetrics, get_job_metrics
from vending.db.session import SessionLocal, UnitOfWork
from vending.models.enums import ARCHIVED_ORDER_STATUSES, FINAL_PAYMENT_STATUSES, PaymentStatus
from vending.models.order import Order
from vending.models.payment import Payment
from vending.services.event_service import log_local_payment_event
from vending.services.stripe_service import get_payment_provider
from vending.tasks.utils import (
    can_safely_cancel_payment_intent, format_local, get_job_status_info, is_payment_intent_final,
    now_utc, run_in_batches
)

JOB_NAME = "cleanup-stale-payment-intents"

# last_error_message values written when a payment is closed locally
REASON_NO_STRIPE_PI = "no_stripe_pi"
REASON_STRIPE_NOT_FOUND = "stripe_not_found"
REASON_ABANDONED = "abandoned"
REASON_CANCEL_FAILED = "cancel_failed"
REASON_STRIPE_ERROR = "stripe_error"


@dataclass
class CleanupStalePaymentIntentsResult:
    payment_intents_canceled: int = 0
    payments_updated: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time: int = 0  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CleanupStalePaymentIntentsJob:
    """Weekly backstop reconciling local payments with Stripe"""

    def __init__(self, session_factory=SessionLocal, payment_provider=None,
                 metrics: Optional[JobMetrics] = None, batch_size: Optional[int] = None,
                 max_age_days: Optional[int] = None):
        self.session_factory = session_factory
        self.payment_provider = payment_provider or get_payment_provider()
        self.metrics = metrics or get_job_metrics()
        self.batch_size = batch_size or settings.PAYMENT_CLEANUP_BATCH_SIZE
        self.max_age_days = max_age_days if max_age_days is not None else settings.STALE_PAYMENT_MAX_AGE_DAYS

    async def execute(self) -> CleanupStalePaymentIntentsResult:
        """Run the sweep once. Never raises: failures end up in ``result.errors``."""
        start_time = now_utc()
        jobs_logger.info(f"Starting job {JOB_NAME}")
        result = CleanupStalePaymentIntentsResult()

        db = self.session_factory()
        try:
            uow = UnitOfWork(db)
            stale_payments = self._get_stale_payments(db)

            if not stale_payments:
                jobs_logger.info("No stale PaymentIntents found")
                return self._finalize_result(result, start_time)

            jobs_logger.info(f"{len(stale_payments)} stale PaymentIntents found")

            async def process_batch(batch: List[Payment]):
                for payment in batch:
                    payment_id = payment.id
                    try:
                        await self._process_stale_payment(uow, payment, result)
                    except Exception as e:
                        error_message = f"Error while processing payment {payment_id}: {e}"
                        jobs_logger.error(error_message, exc_info=True)
                        result.errors.append(error_message)

            await run_in_batches(stale_payments, self.batch_size, process_batch)

            jobs_logger.info(
                f"Processing finished: {result.payment_intents_canceled} PaymentIntents canceled, "
                f"{result.payments_updated} payments updated"
            )
        except Exception as e:
            error_message = f"Fatal error while running {JOB_NAME}: {e}"
            jobs_logger.error(error_message, exc_info=True)
            result.errors.append(error_message)
        finally:
            db.close()

        return self._finalize_result(result, start_time)

    async def execute_manually(self) -> CleanupStalePaymentIntentsResult:
        """Manual trigger, same code path as the scheduled run"""
        jobs_logger.info(f"Manual run of job {JOB_NAME}")
        return await self.execute()

    def _get_stale_payments(self, db) -> List[Payment]:
        cutoff = now_utc() - timedelta(days=self.max_age_days)
        return db.query(Payment).outerjoin(Order, Payment.order_id == Order.id).filter(
            Payment.status.notin_(FINAL_PAYMENT_STATUSES),
            or_(
                Payment.order_id.is_(None),
                Order.status.in_(ARCHIVED_ORDER_STATUSES),
                Payment.created_at < cutoff
            )
        ).order_by(Payment.created_at.asc(), Payment.id.asc()).all()

    async def _process_stale_payment(self, uow: UnitOfWork, payment: Payment, result: CleanupStalePaymentIntentsResult):
        payment_id = payment.id
        intent_id = payment.stripe_payment_intent_id
        jobs_logger.info(f"Processing stale payment {payment_id} (created {format_local(payment.created_at)})")

        if not intent_id:
            jobs_logger.info(f"Payment {payment_id} has no Stripe PaymentIntent, marking canceled")
            if self._mark_payment_as_canceled(uow, payment_id, REASON_NO_STRIPE_PI):
                result.payments_updated += 1
            return

        try:
            remote = await self.payment_provider.retrieve_intent(intent_id)
        except Exception as e:
            jobs_logger.error(f"Stripe error for payment {payment_id}: {e}", exc_info=True)
            if self._mark_payment_as_canceled(uow, payment_id, REASON_STRIPE_ERROR):
                result.payments_updated += 1
            return

        if remote is None:
            jobs_logger.warning(f"PaymentIntent {intent_id} not found on Stripe")
            if self._mark_payment_as_canceled(uow, payment_id, REASON_STRIPE_NOT_FOUND):
                result.payments_updated += 1
            return

        if can_safely_cancel_payment_intent(remote.status):
            try:
                await self.payment_provider.cancel_intent(intent_id, REASON_ABANDONED)
            except Exception as e:
                jobs_logger.error(f"Failed to cancel PaymentIntent {intent_id}: {e}", exc_info=True)
                if self._mark_payment_as_canceled(uow, payment_id, REASON_CANCEL_FAILED):
                    result.payments_updated += 1
                return

            if self._mark_payment_as_canceled(uow, payment_id, REASON_ABANDONED):
                result.payment_intents_canceled += 1
                result.payments_updated += 1
                self.metrics.increment_canceled_payment_intents()
            jobs_logger.info(f"PaymentIntent {intent_id} canceled")
        elif is_payment_intent_final(remote.status):
            jobs_logger.info(f"PaymentIntent {intent_id} is final on Stripe: {remote.status}")
            if self._sync_payment_status(uow, payment_id, remote.status):
                result.payments_updated += 1
        else:
            jobs_logger.info(f"PaymentIntent {intent_id} is not cancelable ({remote.status}), left untouched")

    def _mark_payment_as_canceled(self, uow: UnitOfWork, payment_id: int, reason: str) -> bool:
        """Close the payment locally and audit it. False if it was already final."""
        with uow.begin() as db:
            payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
            if payment is None or is_payment_intent_final(payment.status):
                jobs_logger.info(f"Payment {payment_id} already closed, skipped")
                return False

            payment.status = PaymentStatus.CANCELED.value
            payment.last_error_message = reason
            payment.updated_at = now_utc()

            log_local_payment_event(
                db,
                "local.payment.canceled",
                {
                    "paymentId": payment.id,
                    "orderId": payment.order_id,
                    "canceledReason": reason,
                    "canceledBy": f"{JOB_NAME}-job",
                },
                order_id=payment.order_id,
                payment_id=payment.id,
            )
        return True

    def _sync_payment_status(self, uow: UnitOfWork, payment_id: int, remote_status: str) -> bool:
        """Copy a final Stripe status onto the local payment. False if nothing changed."""
        with uow.begin() as db:
            payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
            if payment is None or payment.status == remote_status:
                return False

            previous_status = payment.status
            payment.status = remote_status
            payment.updated_at = now_utc()

            log_local_payment_event(
                db,
                "local.payment.synced",
                {
                    "paymentId": payment.id,
                    "orderId": payment.order_id,
                    "previousStatus": previous_status,
                    "stripeStatus": remote_status,
                },
                order_id=payment.order_id,
                payment_id=payment.id,
            )

        jobs_logger.info(f"Payment {payment_id} status synced: {previous_status} -> {remote_status}")
        return True

    def _finalize_result(self, result: CleanupStalePaymentIntentsResult, start_time) -> CleanupStalePaymentIntentsResult:
        end_time = now_utc()
        result.execution_time = int((end_time - start_time).total_seconds() * 1000)
        success = not result.errors
        self.metrics.update_job_execution_time(result.execution_time, job=JOB_NAME, success=success)

        status_info = get_job_status_info(JOB_NAME, start_time, end_time, success, result.to_dict())
        jobs_logger.info(f"Execution summary: {status_info}")
        return result
