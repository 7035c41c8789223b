# notification_service/main.py
"""
Application entrypoint with Redis, engine registry and retention sweep lifecycle.
"""

import asyncio
import time
from contextlib import asynccontextmanager, suppress

import structlog
from fastapi import FastAPI, Request

from notification_service.config import settings
from notification_service.features.notifications.api.router import router as notifications_router
from notification_service.features.notifications.jobs.retention_sweep_job import (
    RetentionSweepJob,
    start_retention_sweep_scheduler,
)
from notification_service.features.notifications.services.registry import EngineRegistry
from notification_service.infrastructure.observability.logging import get_logger, setup_logging
from notification_service.routes import health
from notification_service.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []
    # A host may inject its own read-state backend before startup
    store_factory = getattr(app.state, "store_factory", None)

    try:
        if store_factory is None:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        registry = EngineRegistry(store_factory=store_factory)
        app.state.engine_registry = registry
        startup_tasks.append("engine_registry")

        sweep_job = RetentionSweepJob(registry)
        sweep_task = None
        if sweep_job.policy is not None:
            sweep_task = asyncio.create_task(start_retention_sweep_scheduler(sweep_job))
            startup_tasks.append("retention_sweep")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task

    # Close engines first so in-flight read-state writes can still reach Redis
    try:
        logger.info("Closing notification sessions")
        await registry.close_all()
    except Exception as e:
        logger.error("Error closing notification sessions", error=str(e))
        shutdown_errors.append(f"Engines: {e}")
    app.state.engine_registry = None

    if "redis" in startup_tasks:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Notification Service",
    description="Reconciles raw domain change events into a deduplicated notification feed",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(notifications_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    structlog.contextvars.clear_contextvars()
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
