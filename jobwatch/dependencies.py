# jobwatch/dependencies.py
"""FastAPI dependency injection for the job watch agent."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .workers.jobs import JobsWorker

# Global instance (initialized in main.py lifespan)
_worker: Optional["JobsWorker"] = None


def set_worker(worker: Optional["JobsWorker"]) -> None:
    """Set (or clear) the global JobsWorker instance."""
    global _worker
    _worker = worker


async def get_worker() -> "JobsWorker":
    """
    Get the JobsWorker instance.

    FastAPI dependency.
    """
    if _worker is None:
        raise RuntimeError("JobsWorker not initialized. Check startup sequence.")
    return _worker
