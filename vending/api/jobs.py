"""Job API routes: manual triggers, schedule status and job metrics"""
import logging

from fastapi import APIRouter, Depends

from vending.core.metrics import JobMetrics, get_job_metrics
from vending.tasks.cleanup_stale_payment_intents import CleanupStalePaymentIntentsJob
from vending.tasks.expire_stale_orders import ExpireStaleOrdersJob
from vending.tasks.scheduler import get_jobs_status
from vending.tasks.utils import format_local

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
logger = logging.getLogger(__name__)


def get_expire_stale_orders_job() -> ExpireStaleOrdersJob:
    return ExpireStaleOrdersJob()


def get_cleanup_stale_payment_intents_job() -> CleanupStalePaymentIntentsJob:
    return CleanupStalePaymentIntentsJob()


@router.post("/expire-stale-orders/run")
async def run_expire_stale_orders(job: ExpireStaleOrdersJob = Depends(get_expire_stale_orders_job)):
    """Run the order expiration job now"""
    result = await job.execute_manually()
    return {
        "success": not result.errors,
        "result": result.to_dict(),
    }


@router.post("/cleanup-stale-payment-intents/run")
async def run_cleanup_stale_payment_intents(
    job: CleanupStalePaymentIntentsJob = Depends(get_cleanup_stale_payment_intents_job)
):
    """Run the stale payment cleanup job now"""
    result = await job.execute_manually()
    return {
        "success": not result.errors,
        "result": result.to_dict(),
    }


@router.get("/status")
def jobs_status():
    return {"jobs": get_jobs_status()}


@router.get("/metrics")
def job_metrics(metrics: JobMetrics = Depends(get_job_metrics)):
    """Snapshot of the cumulative job counters"""
    snapshot = metrics.snapshot()
    return {
        "orders_expired_total": snapshot.orders_expired_total,
        "payment_intents_canceled_total": snapshot.payment_intents_canceled_total,
        "stock_released_total": snapshot.stock_released_total,
        "job_execution_time_ms": snapshot.job_execution_time_ms,
        "last_execution_time": snapshot.last_execution_time,
        "last_execution_time_local": format_local(snapshot.last_execution_time),
    }


@router.post("/metrics/reset")
def reset_job_metrics(metrics: JobMetrics = Depends(get_job_metrics)):
    metrics.reset()
    logger.info("Job metrics reset")
    return {"message": "Job metrics reset"}
