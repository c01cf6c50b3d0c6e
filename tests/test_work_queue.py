# tests/test_work_queue.py
# @ai-rules:
# 1. [Constraint]: No sleeps longer than 0.2s. Threaded tests always join with a timeout.
# 2. [Pattern]: Items are plain strings unless the test is about key_func.
"""Unit tests for RateLimitingQueue and its rate limiters."""
from __future__ import annotations

import threading
import time

from jobwatch.state.work_queue import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimitingQueue,
)


class TestAddGetDone:
    def test_fifo_order(self):
        q = RateLimitingQueue()
        for item in ("a", "b", "c"):
            q.add(item)
        assert [q.get()[0] for _ in range(3)] == ["a", "b", "c"]

    def test_add_is_idempotent_while_pending(self):
        q = RateLimitingQueue()
        q.add("a")
        q.add("a")
        assert len(q) == 1

    def test_newer_payload_replaces_pending(self):
        q = RateLimitingQueue(key_func=lambda d: d["key"])
        q.add({"key": "ns/job", "v": 1})
        q.add({"key": "ns/job", "v": 2})
        item, _ = q.get()
        assert item["v"] == 2
        assert len(q) == 0

    def test_readd_while_processing_waits_for_done(self):
        q = RateLimitingQueue()
        q.add("a")
        item, _ = q.get()
        q.add("a")
        assert len(q) == 0
        q.done(item)
        assert len(q) == 1

    def test_done_without_readd_does_not_requeue(self):
        q = RateLimitingQueue()
        q.add("a")
        item, _ = q.get()
        q.done(item)
        assert len(q) == 0

    def test_nonblocking_get_on_empty(self):
        q = RateLimitingQueue()
        assert q.get(block=False) == (None, False)

    def test_get_timeout(self):
        q = RateLimitingQueue()
        started = time.monotonic()
        assert q.get(timeout=0.05) == (None, False)
        assert time.monotonic() - started >= 0.04

    def test_capacity_drops_new_keys(self):
        q = RateLimitingQueue(max_len=2)
        assert q.add("a")
        assert q.add("b")
        assert not q.add("c")
        assert len(q) == 2
        assert q.dropped == 1

    def test_capacity_counts_keys_readded_while_processing(self):
        q = RateLimitingQueue(max_len=1)
        q.add("a")
        item, _ = q.get()
        assert q.add("a")
        assert not q.add("b")
        q.done(item)
        assert len(q) == 1
        assert q.get(block=False) == ("a", False)


class TestShutdown:
    def test_drains_then_reports_shutdown(self):
        q = RateLimitingQueue()
        q.add("a")
        q.shut_down()
        assert q.shutting_down
        assert q.get() == ("a", False)
        assert q.get() == (None, True)

    def test_add_after_shutdown_is_ignored(self):
        q = RateLimitingQueue()
        q.shut_down()
        assert not q.add("a")
        assert len(q) == 0

    def test_shutdown_wakes_blocked_consumer(self):
        q = RateLimitingQueue()
        result: list = []
        t = threading.Thread(target=lambda: result.append(q.get()))
        t.start()
        time.sleep(0.05)
        q.shut_down()
        t.join(timeout=2)
        assert result == [(None, True)]

    def test_blocked_consumer_receives_item(self):
        q = RateLimitingQueue()
        result: list = []
        t = threading.Thread(target=lambda: result.append(q.get()))
        t.start()
        time.sleep(0.05)
        q.add("x")
        t.join(timeout=2)
        assert result == [("x", False)]


class TestRateLimiting:
    def test_exponential_backoff_per_item(self):
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=0.05)
        assert limiter.when("a") == 0.01
        assert limiter.when("a") == 0.02
        assert limiter.when("a") == 0.04
        assert limiter.when("a") == 0.05
        assert limiter.when("b") == 0.01
        assert limiter.num_requeues("a") == 4
        limiter.forget("a")
        assert limiter.num_requeues("a") == 0

    def test_bucket_allows_burst_then_delays(self):
        now = [100.0]
        limiter = BucketRateLimiter(qps=10.0, burst=2, clock=lambda: now[0])
        assert limiter.when("a") == 0.0
        assert limiter.when("b") == 0.0
        assert limiter.when("c") > 0.0
        now[0] += 10.0
        assert limiter.when("d") == 0.0

    def test_max_of_picks_worst(self):
        limiter = MaxOfRateLimiter(
            ItemExponentialFailureRateLimiter(0.5, 10.0),
            BucketRateLimiter(qps=1000.0, burst=100),
        )
        assert limiter.when("a") == 0.5

    def test_add_rate_limited_delays_then_adds(self):
        q = RateLimitingQueue(rate_limiter=ItemExponentialFailureRateLimiter(0.02, 1.0))
        q.add_rate_limited("a")
        assert len(q) == 0
        assert q.get(timeout=1.0) == ("a", False)
        assert q.num_requeues("a") == 1
        q.forget("a")
        assert q.num_requeues("a") == 0

    def test_shutdown_cancels_delayed_adds(self):
        q = RateLimitingQueue()
        q.add_after("a", 0.1)
        q.shut_down()
        time.sleep(0.15)
        assert len(q) == 0
