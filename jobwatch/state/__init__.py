# jobwatch/state/__init__.py
"""In-memory state shared between the watch thread and the periodic workers."""
from .work_queue import RateLimitingQueue, default_controller_rate_limiter

__all__ = ["RateLimitingQueue", "default_controller_rate_limiter"]
