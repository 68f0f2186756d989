"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vending.core.config import settings
from vending.core.logging import setup_logging
from vending.db.session import init_db
from vending.models import Base  # noqa: F401  registers all models with Base.metadata

from vending.api import alerts, jobs, monitoring, stocks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    tasks = []
    if settings.SCHEDULER_ENABLED:
        logger.info("Starting scheduler tasks...")
        from vending.tasks.scheduler import start_scheduler_tasks

        tasks = start_scheduler_tasks()
        logger.info(f"{len(tasks)} scheduler tasks started")
    else:
        logger.info("Scheduler disabled")

    yield

    # Shutdown
    logger.info("Shutting down...")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


# Create FastAPI app
app = FastAPI(
    title="Vending Backend",
    description="Order, stock and payment reconciliation for vending machines",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(monitoring.router)
app.include_router(jobs.router)
app.include_router(alerts.router)
app.include_router(stocks.router)
