# jobwatch/observers/job_cache.py
# @ai-rules:
# 1. [Constraint]: This module and notifier.py are the only Kubernetes touchpoints. Workers never import kubernetes.
# 2. [Pattern]: List-then-watch. The watch stream runs in a daemon thread; the store is guarded by a threading.Lock.
# 3. [Gotcha]: 410 Gone means the resourceVersion expired. Re-list immediately, no back-off.
# 4. [Pattern]: Notifier failures are logged and swallowed. They must never stop the watch loop.
"""
Kubernetes Job cache.

Keeps an eventually-consistent local copy of every batch/v1 Job in the
cluster. A full list seeds the store (and flips has_synced), then a watch
stream applies ADDED/MODIFIED/DELETED events from the list's
resourceVersion. Stream errors trigger a re-list after exponential back-off.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .notifier import ChangeNotifier, LoggingNotifier

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 300
STOP_GRACE_SECONDS = 2.0


class WatcherInitError(RuntimeError):
    """The typed Kubernetes client could not be built; the cache is inert."""


def object_key(obj: Any) -> str:
    return f"{obj.metadata.namespace}/{obj.metadata.name}"


class JobCache:
    """
    Indexed snapshot of cluster Jobs fed by list + watch.

    list() and has_synced() are safe to call from any thread or the event
    loop while the watch thread is running.
    """

    def __init__(
        self,
        notifier: Optional[ChangeNotifier] = None,
        watch_timeout: int = 60,
        resync_period: float = 0.0,
        batch_api: Any = None,
    ):
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.watch_timeout = watch_timeout
        self.resync_period = resync_period

        self._batch_api = batch_api
        self._store: dict[str, Any] = {}
        self._ns_index: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._resource_version: Optional[str] = None
        self._watch: Optional[watch.Watch] = None

    # -------------------------------------------------------------------------
    # Client setup
    # -------------------------------------------------------------------------

    def init_client(self) -> bool:
        """
        Build the BatchV1 client.

        Returns True if successful, False otherwise. A False return leaves
        the cache inert; callers must abort startup.
        """
        if self._batch_api is not None:
            return True
        try:
            # Try in-cluster config first (when running in a pod)
            try:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes config")
            except config.ConfigException:
                # Fall back to kubeconfig (for local development)
                config.load_kube_config()
                logger.info("Loaded kubeconfig")
            self._batch_api = client.BatchV1Api()
            return True
        except Exception as e:
            logger.error(f"Issues when initializing Batch API client: {e}")
            return False

    @property
    def available(self) -> bool:
        return self._batch_api is not None

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def list(self) -> list[Any]:
        """Snapshot of all known Jobs at call time."""
        with self._lock:
            return list(self._store.values())

    def by_namespace(self, namespace: str) -> list[Any]:
        with self._lock:
            return [self._store[k] for k in self._ns_index.get(namespace, ())]

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # -------------------------------------------------------------------------
    # Run loop
    # -------------------------------------------------------------------------

    async def run(self, stop: asyncio.Event) -> None:
        """Watch until *stop* is set. Never raises for transient API errors."""
        if self._batch_api is None:
            logger.error("JobCache has no Batch API client; nothing to watch")
            return

        thread = threading.Thread(target=self._run_blocking, name="job-watch", daemon=True)
        thread.start()
        try:
            await stop.wait()
        finally:
            self._stop.set()
            if self._watch is not None:
                self._watch.stop()
            deadline = time.monotonic() + STOP_GRACE_SECONDS
            while thread.is_alive() and time.monotonic() < deadline:
                await asyncio.sleep(0.05)
            if thread.is_alive():
                # Blocked on the API socket; the daemon thread dies with the process.
                logger.info("Job watch thread still draining its stream; leaving it behind")
            else:
                logger.info("Job watch stopped")

    def _run_blocking(self) -> None:
        retry_count = 0
        while not self._stop.is_set():
            try:
                self._list_and_replace()
                retry_count = 0
                self._watch_until_resync()
            except ApiException as e:
                if e.status == 410:
                    logger.info("Job watch resourceVersion expired; re-listing")
                    continue
                retry_count = self._backoff(retry_count, e)
            except Exception as e:
                retry_count = self._backoff(retry_count, e)

    def _backoff(self, retry_count: int, error: Exception) -> int:
        retry_count += 1
        backoff_time = min(2 ** min(retry_count, 8), MAX_BACKOFF_SECONDS)
        logger.error(f"Job watcher error (attempt {retry_count}): {error}")
        logger.info(f"Job watcher retrying in {backoff_time} seconds...")
        self._stop.wait(backoff_time)
        return retry_count

    def _list_and_replace(self) -> None:
        """Full enumeration. Replaces the store atomically and diffs for the notifier."""
        resp = self._batch_api.list_job_for_all_namespaces()
        items = resp.items or []
        fresh = {object_key(obj): obj for obj in items}

        with self._lock:
            previous = self._store
            self._store = fresh
            self._ns_index = {}
            for key, obj in fresh.items():
                self._ns_index.setdefault(obj.metadata.namespace, set()).add(key)

        self._resource_version = resp.metadata.resource_version if resp.metadata else None

        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._notify("on_add", obj)
            elif old.metadata.resource_version != obj.metadata.resource_version:
                self._notify("on_update", old, obj)
        for key, obj in previous.items():
            if key not in fresh:
                self._notify("on_delete", obj)

        if not self._synced.is_set():
            self._synced.set()
            logger.info(f"Job cache synced: {len(fresh)} jobs")
        else:
            logger.debug(f"Job cache re-listed: {len(fresh)} jobs")

    def _watch_until_resync(self) -> None:
        """Consume watch streams until a resync is due, stop is set, or an error escapes."""
        listed_at = time.monotonic()
        while not self._stop.is_set():
            if self.resync_period and time.monotonic() - listed_at >= self.resync_period:
                logger.debug("Periodic resync of job cache")
                return
            w = watch.Watch()
            self._watch = w
            for event in w.stream(
                self._batch_api.list_job_for_all_namespaces,
                resource_version=self._resource_version,
                timeout_seconds=self.watch_timeout,
            ):
                if self._stop.is_set():
                    w.stop()
                    break
                self.handle_event(event["type"], event["object"])
                if w.resource_version:
                    self._resource_version = w.resource_version

    def handle_event(self, event_type: str, obj: Any) -> None:
        """Apply one ADDED/MODIFIED/DELETED event. Watch.stream raises ERROR events as ApiException."""
        key = object_key(obj)
        namespace = obj.metadata.namespace
        if event_type == "DELETED":
            with self._lock:
                old = self._store.pop(key, None)
                self._ns_index.get(namespace, set()).discard(key)
            self._notify("on_delete", old if old is not None else obj)
            return

        with self._lock:
            old = self._store.get(key)
            self._store[key] = obj
            self._ns_index.setdefault(namespace, set()).add(key)
        if old is None:
            self._notify("on_add", obj)
        else:
            self._notify("on_update", old, obj)

    def _notify(self, method: str, *args: Any) -> None:
        try:
            getattr(self.notifier, method)(*args)
        except Exception as e:
            logger.warning(f"Job change notifier {method} failed: {e}")
