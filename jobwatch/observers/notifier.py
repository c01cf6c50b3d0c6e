# jobwatch/observers/notifier.py
"""Change notification hooks invoked by the job cache on add/update/delete."""
from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ChangeNotifier(Protocol):
    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old: Any, new: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


def _job_name(obj: Any) -> str:
    # Raises AttributeError on anything that is not a Job-shaped object;
    # the cache logs it and keeps watching.
    meta = obj.metadata
    return f"{meta.namespace}/{meta.name}"


class LoggingNotifier:
    """Observability only. Aggregation reads the snapshot, not these events."""

    def on_add(self, obj: Any) -> None:
        logger.info(f"Added Job: {_job_name(obj)}")

    def on_update(self, old: Any, new: Any) -> None:
        logger.debug(f"Updated Job: {_job_name(new)}")

    def on_delete(self, obj: Any) -> None:
        logger.info(f"Deleted Job: {_job_name(obj)}")
