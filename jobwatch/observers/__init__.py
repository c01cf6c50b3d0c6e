# jobwatch/observers/__init__.py
"""
Cluster observers.

Observers keep a local view of Kubernetes objects and notify hooks on change.
They run independently of the periodic workers.
"""
from .job_cache import JobCache, WatcherInitError
from .notifier import ChangeNotifier, LoggingNotifier

__all__ = ["JobCache", "WatcherInitError", "ChangeNotifier", "LoggingNotifier"]
