# jobwatch/state/work_queue.py
# @ai-rules:
# 1. [Pattern]: Controller-style work queue: dirty set + processing set. An item is never in the queue twice.
# 2. [Constraint]: All state guarded by one threading.Condition. Producers may be threads or the event loop.
# 3. [Gotcha]: get() blocks by default. Async callers drain via run_in_executor or pass block=False.
# 4. [Pattern]: Identity is key_func(item). Re-adding a pending key replaces the payload (latest wins).
"""
Rate-limited work queue.

Semantics follow the Kubernetes controller work queue: add is idempotent per
key while pending, get hands out each key to one consumer at a time, done
releases it (re-queueing if it was re-added meanwhile), and shut_down lets
consumers drain what is left before get reports shutdown.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Hashable, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Rate limiters
# =============================================================================

class ItemExponentialFailureRateLimiter:
    """Per-item back-off: base * 2^failures, capped at max_delay."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(key, 0)
            self._failures[key] = exp + 1
        # 2**exp overflows float long before it matters; clamp the exponent
        return min(self.base_delay * (2 ** min(exp, 62)), self.max_delay)

    def num_requeues(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)


class BucketRateLimiter:
    """Overall token bucket: qps refill, burst capacity. Not per item."""

    def __init__(self, qps: float = 10.0, burst: int = 100, clock: Callable[[], float] = time.monotonic):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def num_requeues(self, key: Hashable) -> int:
        return 0

    def forget(self, key: Hashable) -> None:
        pass


class MaxOfRateLimiter:
    """Worst delay across several limiters."""

    def __init__(self, *limiters):
        self.limiters = limiters

    def when(self, key: Hashable) -> float:
        return max(limiter.when(key) for limiter in self.limiters)

    def num_requeues(self, key: Hashable) -> int:
        return max(limiter.num_requeues(key) for limiter in self.limiters)

    def forget(self, key: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(key)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


# =============================================================================
# Queue
# =============================================================================

class RateLimitingQueue:
    """Thread-safe, de-duplicating FIFO with delayed and rate-limited adds."""

    def __init__(
        self,
        rate_limiter=None,
        key_func: Optional[Callable[[Any], Hashable]] = None,
        max_len: Optional[int] = None,
        name: str = "queue",
    ):
        self.name = name
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()
        self.max_len = max_len
        self._key = key_func or (lambda item: item)

        self._cond = threading.Condition()
        self._queue: deque = deque()
        self._payloads: dict[Hashable, Any] = {}
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._shutting_down = False
        self._timers: set[threading.Timer] = set()
        self.dropped = 0

    def add(self, item: Any) -> bool:
        """Queue *item* unless its key is already pending. Returns True if queued or refreshed."""
        key = self._key(item)
        with self._cond:
            if self._shutting_down:
                return False
            if key in self._dirty:
                self._payloads[key] = item
                return True
            if self.max_len is not None and len(self._dirty) >= self.max_len:
                self.dropped += 1
                logger.warning(f"{self.name}: at capacity ({self.max_len}), dropping {key}")
                return False
            self._dirty.add(key)
            self._payloads[key] = item
            if key in self._processing:
                return True
            self._queue.append(key)
            self._cond.notify()
            return True

    def get(self, block: bool = True, timeout: Optional[float] = None) -> tuple[Any, bool]:
        """
        Take the next item.

        Returns (item, shutting_down). With block=False (or on timeout) an
        empty, running queue yields (None, False). A shut down queue keeps
        handing out what is left and then yields (None, True).
        """
        with self._cond:
            if block:
                deadline = None if timeout is None else time.monotonic() + timeout
                while not self._queue and not self._shutting_down:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        return None, False
                    self._cond.wait(remaining)
            if not self._queue:
                return None, self._shutting_down
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return self._payloads.pop(key), False

    def done(self, item: Any) -> None:
        """Mark *item* processed. Re-queues it if it was added again meanwhile."""
        key = self._key(item)
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, item: Any, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return

            def fire() -> None:
                with self._cond:
                    self._timers.discard(timer)
                self.add(item)

            timer = threading.Timer(delay, fire)
            timer.daemon = True
            self._timers.add(timer)
        timer.start()

    def add_rate_limited(self, item: Any) -> None:
        self.add_after(item, self.rate_limiter.when(self._key(item)))

    def forget(self, item: Any) -> None:
        """Clear retry back-off for *item*."""
        self.rate_limiter.forget(self._key(item))

    def num_requeues(self, item: Any) -> int:
        return self.rate_limiter.num_requeues(self._key(item))

    def shut_down(self) -> None:
        """Stop accepting adds and wake every waiting consumer."""
        with self._cond:
            self._shutting_down = True
            timers, self._timers = self._timers, set()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
        logger.info(f"{self.name}: shut down with {len(self)} items pending")

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
