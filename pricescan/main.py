"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from pricescan.api.routes import alerts, catalog, currency, imports, results, scans, sources
from pricescan.config import settings
from pricescan.currency.converter import CurrencyConverter
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.db.session import AsyncSessionLocal, init_db
from pricescan.logging_config import setup_logging
from pricescan.worker.scheduler import setup_scheduler
from pricescan.worker.tasks import ScanTaskRunner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting price scan service...")

    await init_db()

    repository = SqlAlchemyRepository(AsyncSessionLocal)
    app.state.converter = CurrencyConverter(repository)
    app.state.task_runner = ScanTaskRunner(repository, app.state.converter)

    scheduler = setup_scheduler(app.state.task_runner)
    scheduler.start()
    logger.info("Scheduler started")

    yield

    logger.info("Shutting down...")
    scheduler.shutdown()
    await app.state.task_runner.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Price Scan",
    description="Compare supplier wholesale prices against retail listings",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(scans.router)
app.include_router(results.router)
app.include_router(sources.router)
app.include_router(alerts.router)
app.include_router(imports.router)
app.include_router(currency.router)
app.include_router(catalog.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    uvicorn.run(
        "pricescan.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
