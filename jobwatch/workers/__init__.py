# jobwatch/workers/__init__.py
"""Periodic workers: metrics aggregation and event queue flushing."""
from .jobs import JobsWorker

__all__ = ["JobsWorker"]
