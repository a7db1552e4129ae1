import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from .api import events, jobs, pool
from .config import Settings
from .context import build_context
from .domains.execution.batch_executor import BatchJobExecutor
from .logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    settings: Settings = app.state.settings
    setup_logging(settings)

    config_info = settings.config_file_info
    logging.info(f"Configuration loaded from: {config_info['active_config_file']}")
    logging.info(f"Running on hostname: {config_info['hostname']}")
    if len(config_info["all_available_configs"]) > 1:
        logging.info(
            f"Available config files: {', '.join(config_info['all_available_configs'])}"
        )

    logging.info("Vendor Feed Dispatcher starting up...")
    logging.info(f"Job queue: {settings.job_queue_name} (stage={settings.stage})")
    logging.info(f"Compute environment: {settings.min_vcpus}-{settings.max_vcpus} vCPUs")

    context = await build_context(settings)
    app.state.context = context

    background_tasks = []

    await context.resource_pool.start()

    scheduler_task = asyncio.create_task(context.scheduler.start_scheduling())
    background_tasks.append(scheduler_task)
    logging.info("JobScheduler startet som background task")

    if isinstance(context.executor, BatchJobExecutor):
        polling_task = asyncio.create_task(context.executor.start_polling())
        background_tasks.append(polling_task)
        logging.info("Batch status polling startet som background task")

    yield

    # Shutdown
    logging.info("Vendor Feed Dispatcher shutting down...")

    context.scheduler.stop_scheduling()
    await context.executor.shutdown()
    await context.resource_pool.stop()

    # Cancel alle background tasks
    for task in background_tasks:
        task.cancel()

    # Vent på at tasks bliver cancelled
    if background_tasks:
        await asyncio.gather(*background_tasks, return_exceptions=True)

    logging.info("Alle background tasks stoppet")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(
        title="Vendor Feed Dispatcher",
        description="Dispatches vendor feed files to containerised processing jobs",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        # Health probes arrive every few seconds; keep them out of INFO
        log = logging.debug if request.url.path == "/health" else logging.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)",
            extra={
                "operation": "http_request",
                "status_code": response.status_code,
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        return response

    app.include_router(events.router)
    app.include_router(jobs.router)
    app.include_router(pool.router)

    @app.get("/health")
    async def health(request: Request):
        """Detaljeret health check."""
        context = getattr(request.app.state, "context", None)
        scheduler_running = context is not None and context.scheduler.is_running
        return {
            "status": "healthy" if scheduler_running else "starting",
            "service": "vendor-feed-dispatcher",
            "scheduler_running": scheduler_running,
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "feed_dispatch.main:app", host="0.0.0.0", port=8000, reload=False, log_level="info"
    )
