# jobwatch/appd/controller.py
# @ai-rules:
# 1. [Pattern]: start_bt/stop_bt bracket a whole worker pass. Handles are opaque to callers.
# 2. [Constraint]: post_metrics sends one HTTP request per pass, never one per metric.
"""Metrics sink: custom metrics to the Machine Agent HTTP listener, plus pass timing."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field

import httpx

from ..config import AgentBag
from ..models import AppDMetricList

logger = logging.getLogger(__name__)


@dataclass
class BTHandle:
    """Begin/end marker around one worker pass."""

    name: str
    started: float = field(default_factory=time.monotonic)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class ControllerClient:
    """Posts metric batches and times worker passes."""

    def __init__(self, bag: AgentBag, timeout: float = 10.0):
        self.bag = bag
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.bag.machine_agent_url, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def start_bt(self, name: str) -> BTHandle:
        handle = BTHandle(name=name)
        logger.debug(f"BT {name} [{handle.id}] started")
        return handle

    def stop_bt(self, handle: BTHandle) -> float:
        elapsed = time.monotonic() - handle.started
        logger.debug(f"BT {handle.name} [{handle.id}] finished in {elapsed:.3f}s")
        return elapsed

    async def post_metrics(self, metrics: AppDMetricList) -> bool:
        if not metrics.items:
            return True
        client = await self._get_client()
        try:
            resp = await client.post(
                "/api/v1/metrics",
                json=[m.to_machine_agent() for m in metrics.items],
            )
        except httpx.HTTPError as e:
            logger.error(f"Posting {len(metrics.items)} metrics failed: {e}")
            return False
        if resp.is_success:
            return True
        logger.error(f"Posting metrics returned {resp.status_code}: {resp.text[:200]}")
        return False
