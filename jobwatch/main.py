# jobwatch/main.py
# @ai-rules:
# 1. [Pattern]: lifespan() owns the stop Event. Shutdown sets it and awaits the worker task.
# 2. [Constraint]: Batch client failure aborts startup (raise in lifespan). uvicorn exits non-zero.
# 3. [Pattern]: /ready returns 503 until the job cache has synced; /health only proves the loop is alive.
"""
Job watch agent - FastAPI application

Hosts the jobs worker (watch -> aggregate -> flush pipeline) and exposes
liveness, readiness and status endpoints for Kubernetes probes.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, HTTPException

from . import __version__
from .appd import ControllerClient, RestClient
from .config import AgentBag
from .dependencies import get_worker, set_worker
from .models import HealthResponse, StatusResponse
from .observers import JobCache, LoggingNotifier, WatcherInitError
from .workers import JobsWorker

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Squelch noisy client loggers
for noisy in ("kubernetes.client.rest", "urllib3.connectionpool", "httpx", "httpcore"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the job cache, backend clients and worker on startup, runs the
    worker until shutdown, then stops it and closes HTTP clients.
    """
    logger.info("Job watch agent starting up...")
    bag = AgentBag.from_env()
    logger.info(f"Configuration: {bag.describe()}")

    cache = JobCache(
        notifier=LoggingNotifier(),
        watch_timeout=bag.watch_timeout,
        resync_period=bag.resync_period,
    )
    if not cache.init_client():
        raise WatcherInitError("Cannot build the Kubernetes Batch API client. Aborting startup.")

    controller = ControllerClient(bag)
    rest_client = RestClient(bag)
    worker = JobsWorker(cache, bag, controller, rest_client)
    set_worker(worker)

    stop = asyncio.Event()
    worker_task = asyncio.create_task(worker.observe(stop), name="jobs-worker")
    app.state.stop = stop
    logger.info("Job watch agent ready")

    yield  # Application runs here

    logger.info("Job watch agent shutting down...")
    stop.set()
    try:
        await worker_task
    except Exception as e:
        logger.error(f"Jobs worker exited with error: {e}")
    await controller.close()
    await rest_client.close()
    set_worker(None)
    logger.info("Backend clients closed")


app = FastAPI(
    title="Job Watch Agent",
    description="Kubernetes batch Job metrics and events for AppDynamics",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(status="agent_online")


@app.get("/ready", response_model=HealthResponse, tags=["health"])
async def readiness_check(worker: JobsWorker = Depends(get_worker)) -> HealthResponse:
    """
    Readiness probe.

    Returns 503 Service Unavailable until the job cache has synced.
    """
    if not worker.cache.has_synced():
        raise HTTPException(status_code=503, detail="Job cache not synced yet")
    return HealthResponse(status="ready")


@app.get("/status", response_model=StatusResponse, tags=["status"])
async def pipeline_status(worker: JobsWorker = Depends(get_worker)) -> StatusResponse:
    """Current worker state, cache size and queue depth."""
    return StatusResponse(
        state=worker.state,
        synced=worker.cache.has_synced(),
        cached_jobs=len(worker.cache),
        queue_length=len(worker.queue),
        last_metrics_pass=worker.last_metrics_pass,
        last_flush=worker.last_flush,
    )


def main() -> None:
    uvicorn.run(
        "jobwatch.main:app",
        host=os.getenv("JOBWATCH_HOST", "0.0.0.0"),
        port=int(os.getenv("JOBWATCH_PORT", "8080")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
