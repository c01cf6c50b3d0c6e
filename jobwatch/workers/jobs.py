# jobwatch/workers/jobs.py
# @ai-rules:
# 1. [Pattern]: Three background tasks (watch, metrics ticker, flush ticker) share ONE asyncio.Event stop signal.
# 2. [Constraint]: Summary buckets are built inside build_metrics() and never stored on self.
# 3. [Pattern]: Flush drains with Done+Forget per item at dequeue time. Failed posts are dropped, not retried.
# 4. [Gotcha]: Queue draining runs in the default executor; the queue uses threading primitives.
# 5. [Pattern]: observe() raises WatcherInitError only when the Batch client cannot be built. Everything else logs.
"""
Jobs worker.

Orchestrates the job cache, the periodic metrics pass and the periodic event
queue flush:

    observe(stop)
      -> cache.run(stop)                   background task
      -> wait for cache.has_synced()
      -> metrics ticker (metrics_interval) background task
      -> flush ticker (flush_interval)     background task
      -> block on stop, shut the queue down, join tasks
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from ..config import AgentBag
from ..models import AppDMetricList, JobRecord, WorkerState, job_schema_wrapper
from ..observers.job_cache import WatcherInitError
from ..state.work_queue import RateLimitingQueue
from .summary import build_metric_list, build_record, build_summaries

if TYPE_CHECKING:
    from ..appd.controller import ControllerClient
    from ..appd.rest_client import RestClient
    from ..observers.job_cache import JobCache

logger = logging.getLogger(__name__)


class JobsWorker:
    """Watches batch Jobs and ships metrics and job records to the backend."""

    def __init__(
        self,
        cache: "JobCache",
        bag: AgentBag,
        controller: "ControllerClient",
        rest_client: "RestClient",
        queue: Optional[RateLimitingQueue] = None,
    ):
        self.cache = cache
        self.bag = bag
        self.controller = controller
        self.rest_client = rest_client
        self.queue = queue or RateLimitingQueue(
            key_func=lambda r: r.key,
            max_len=bag.event_queue_max,
            name="job-events",
        )

        self.state = WorkerState.INITIALIZING
        self.last_metrics_pass: Optional[float] = None
        self.last_flush: Optional[float] = None
        self._tasks: list[asyncio.Task] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def observe(self, stop: asyncio.Event) -> None:
        """Run the whole pipeline until *stop* is set."""
        if not self.cache.available and not self.cache.init_client():
            self.state = WorkerState.STOPPED
            raise WatcherInitError("Batch API client unavailable; job watcher not started")

        self.state = WorkerState.SYNCING
        self._tasks = [asyncio.create_task(self.cache.run(stop), name="job-cache")]
        try:
            if await self._wait_for_sync(stop):
                logger.info("Cache synchronized. Starting the processing...")
                self.state = WorkerState.RUNNING
                self._tasks.append(asyncio.create_task(
                    self._ticker(stop, self.bag.metrics_interval, self.build_metrics), name="job-metrics"
                ))
                self._tasks.append(asyncio.create_task(
                    self._ticker(stop, self.bag.flush_interval, self.flush_queue), name="job-events-flush"
                ))
            else:
                logger.error("Timed out waiting for caches to sync")
            await stop.wait()
        finally:
            self.state = WorkerState.STOPPING
            stop.set()
            self.queue.shut_down()
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for task, result in zip(self._tasks, results):
                if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                    logger.error(f"Task {task.get_name()} ended with error: {result}")
            self._tasks = []
            self.state = WorkerState.STOPPED
            logger.info("Jobs worker stopped")

    async def _wait_for_sync(self, stop: asyncio.Event) -> bool:
        """Poll has_synced until True or *stop* fires. Not a hard deadline."""
        while not self.cache.has_synced():
            if stop.is_set():
                return False
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.bag.sync_poll_interval)
            except asyncio.TimeoutError:
                pass
        return True

    async def _ticker(
        self,
        stop: asyncio.Event,
        interval: float,
        tick: Callable[[], Awaitable[None]],
    ) -> None:
        """Call *tick* every *interval* seconds until *stop* is set."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await tick()
            except Exception as e:
                logger.error(f"{tick.__name__} failed: {e}")

    # -------------------------------------------------------------------------
    # Metrics pass
    # -------------------------------------------------------------------------

    async def build_metrics(self) -> AppDMetricList:
        """One aggregation pass: snapshot -> records -> buckets -> metrics -> sink."""
        bth = self.controller.start_bt("SendJobMetrics")
        try:
            records: list[JobRecord] = []
            for job in self.cache.list():
                try:
                    record = build_record(job, self.bag.app_name)
                except Exception as e:
                    logger.warning(f"Skipping job that could not be normalized: {e}")
                    continue
                self.queue.add(record)
                records.append(record)
            logger.info(f"Time to send job metrics. Jobs in cache: {len(records)}")

            summaries = build_summaries(records, self.bag.tier_name, self.bag.default_namespace)
            metrics = build_metric_list(summaries)
            logger.info(f"Ready to push {len(metrics.items)} metrics")
            await self.controller.post_metrics(metrics)
            self.last_metrics_pass = time.time()
            return metrics
        finally:
            self.controller.stop_bt(bth)

    # -------------------------------------------------------------------------
    # Event queue flush
    # -------------------------------------------------------------------------

    def _drain(self, count: int) -> list[JobRecord]:
        """Take up to min(count, event_api_limit) records. Runs in a worker thread."""
        limit = min(count, self.bag.event_api_limit)
        batch: list[JobRecord] = []
        while len(batch) < limit:
            if self.queue.shutting_down:
                logger.info("Queue shut down")
                break
            record, shutting_down = self.queue.get(block=False)
            if shutting_down:
                logger.info("Queue shut down")
                break
            if record is None:
                break
            self.queue.done(record)
            self.queue.forget(record)
            batch.append(record)
        return batch

    async def flush_queue(self) -> int:
        """Post pending job records. Returns the number of records posted."""
        count = len(self.queue)
        logger.debug(f"Flushing the queue of {count} records")
        if count == 0:
            return 0

        bth = self.controller.start_bt("FlushJobEventsQueue")
        try:
            batch = await asyncio.get_event_loop().run_in_executor(None, self._drain, count)
            if not batch:
                return 0
            return await self.post_job_records(batch)
        finally:
            self.controller.stop_bt(bth)

    async def post_job_records(self, batch: list[JobRecord]) -> int:
        schema_name = self.bag.job_schema_name
        try:
            data = json.dumps([r.to_event() for r in batch]).encode()
            schema_def = json.dumps(job_schema_wrapper()).encode()
        except (TypeError, ValueError) as e:
            logger.error(f"Problems when serializing array of job records, dropping {len(batch)}: {e}")
            return 0

        if not await self.rest_client.schema_exists(schema_name):
            logger.info(f"Creating schema {schema_name}")
            if await self.rest_client.create_schema(schema_name, schema_def):
                logger.info(f"Schema {schema_name} created")
            else:
                logger.warning(f"Schema {schema_name} not created; the post may be rejected")
        else:
            logger.debug(f"Schema {schema_name} exists")

        logger.info(f"Sending {len(batch)} records to AppD events API")
        if not await self.rest_client.post_events(schema_name, data):
            return 0
        self.last_flush = time.time()
        return len(batch)
