"""Job metrics: injected counter state mirrored to Prometheus"""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from prometheus_client import Counter, Gauge, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        # Already registered (module reloaded in tests)
        return REGISTRY._names_to_collectors.get(name)


def _gauge(name: str, documentation: str, labelnames=()):
    try:
        return Gauge(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Prometheus collectors (counter names are exported with a _total suffix)
orders_expired_counter = _counter(
    'vending_orders_expired',
    'Total number of orders expired by the expiration job'
)
payment_intents_canceled_counter = _counter(
    'vending_payment_intents_canceled',
    'Total number of payment intents canceled by jobs'
)
stock_released_counter = _counter(
    'vending_stock_released',
    'Total number of stock units released back to machine slots'
)
job_runs_counter = _counter(
    'vending_job_runs',
    'Total number of job runs',
    ['job', 'status']
)
job_duration_gauge = _gauge(
    'vending_job_duration_seconds',
    'Duration of the last job run in seconds',
    ['job']
)


@dataclass(frozen=True)
class JobMetricsSnapshot:
    orders_expired_total: int = 0
    payment_intents_canceled_total: int = 0
    stock_released_total: int = 0
    job_execution_time_ms: float = 0.0
    last_execution_time: Optional[datetime] = None


class JobMetrics:
    """Cumulative counters for sweep activity.

    Created once at process start and passed to each job. Writers are the
    jobs themselves; readers get an immutable snapshot. ``reset()`` clears the
    local counters only - Prometheus counters are monotonic.
    """

    def __init__(self):
        self._lock = Lock()
        self._state = JobMetricsSnapshot(last_execution_time=datetime.now(timezone.utc))

    def increment_expired_orders(self, count: int = 1):
        with self._lock:
            self._state = replace(self._state, orders_expired_total=self._state.orders_expired_total + count)
        orders_expired_counter.inc(count)

    def increment_canceled_payment_intents(self, count: int = 1):
        with self._lock:
            self._state = replace(
                self._state,
                payment_intents_canceled_total=self._state.payment_intents_canceled_total + count
            )
        payment_intents_canceled_counter.inc(count)

    def increment_released_stock(self, count: int = 1):
        with self._lock:
            self._state = replace(self._state, stock_released_total=self._state.stock_released_total + count)
        stock_released_counter.inc(count)

    def update_job_execution_time(self, execution_time_ms: float, job: str = "unknown", success: bool = True):
        with self._lock:
            self._state = replace(
                self._state,
                job_execution_time_ms=execution_time_ms,
                last_execution_time=datetime.now(timezone.utc)
            )
        job_duration_gauge.labels(job=job).set(execution_time_ms / 1000.0)
        job_runs_counter.labels(job=job, status="success" if success else "failure").inc()

    def snapshot(self) -> JobMetricsSnapshot:
        with self._lock:
            return self._state

    def reset(self):
        with self._lock:
            self._state = JobMetricsSnapshot(last_execution_time=datetime.now(timezone.utc))


_job_metrics: Optional[JobMetrics] = None


def get_job_metrics() -> JobMetrics:
    """Process-wide JobMetrics instance"""
    global _job_metrics
    if _job_metrics is None:
        _job_metrics = JobMetrics()
    return _job_metrics
