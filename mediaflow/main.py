# Host process entry point

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
import uvicorn

from mediaflow import __version__
from mediaflow.catalog.database import check_database_connection, get_session_factory
from mediaflow.common.logging_config import setup_logging
from mediaflow.common.metrics import get_metrics, get_metrics_content_type
from mediaflow.config.settings import get_settings
from mediaflow.pipeline.factory import build_dispatcher, build_orchestrator, build_sweep
from mediaflow.queue.manager import close_queues, get_dispatcher, set_dispatcher

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    setup_logging(settings.log_level, settings.log_json)
    session_factory = get_session_factory()
    orchestrator = build_orchestrator(settings, session_factory)

    logger.info("Starting queue dispatcher...")
    dispatcher = build_dispatcher(settings, orchestrator, session_factory)
    dispatcher.start()
    set_dispatcher(dispatcher)

    sweep = build_sweep(settings, orchestrator, session_factory)
    sweep.start()
    logger.info(f"Dispatcher started with {len(dispatcher.workers)} workers")

    yield

    # Shutdown
    logger.info("Stopping dispatcher and sweep...")
    sweep.stop()
    dispatcher.stop()
    set_dispatcher(None)
    close_queues()
    orchestrator.ledger.close()
    orchestrator.profile_notifier.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="MediaFlow",
    description="Media ingest and processing orchestrator",
    version=__version__,
    lifespan=lifespan
)


@app.get("/health")
async def health():
    """Health check endpoint (alias for /live)"""
    return {"status": "healthy"}


@app.get("/live")
async def liveness():
    """Liveness check endpoint"""
    return {"status": "alive"}


@app.get("/ready")
async def readiness():
    """Readiness check endpoint"""
    db_healthy = check_database_connection()
    dispatcher = get_dispatcher()
    workers_running = dispatcher is not None and dispatcher.running

    return {
        "status": "ready" if db_healthy and workers_running else "not_ready",
        "database": "connected" if db_healthy else "disconnected",
        "workers": "running" if workers_running else "stopped",
    }


@app.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint"""
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


if __name__ == "__main__":
    uvicorn.run(
        "mediaflow.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug
    )
