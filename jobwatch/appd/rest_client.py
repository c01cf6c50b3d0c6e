# jobwatch/appd/rest_client.py
# @ai-rules:
# 1. [Constraint]: Uses httpx only. Analytics Events API at bag.event_service_url.
# 2. [Pattern]: Every call returns a bool and logs failures. Callers never see httpx exceptions.
# 3. [Gotcha]: create_schema treats 409 as success (another agent created it first).
"""
Thin async wrapper around the Analytics Events API.

Three operations: schema existence check, schema creation, event publish.
Bodies are passed pre-serialized (bytes) so the flusher controls encoding.
"""
from __future__ import annotations

import logging

import httpx

from ..config import AgentBag

logger = logging.getLogger(__name__)

EVENTS_CONTENT_TYPE = "application/vnd.appd.events+json;v=2"


class RestClient:
    """Async Events API client."""

    def __init__(self, bag: AgentBag, timeout: float = 30.0):
        self.bag = bag
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.bag.event_service_url,
                timeout=self.timeout,
                verify=self.bag.verify_ssl,
                headers={
                    "X-Events-API-AccountName": self.bag.global_account,
                    "X-Events-API-Key": self.bag.event_key,
                    "Content-Type": EVENTS_CONTENT_TYPE,
                    "Accept": EVENTS_CONTENT_TYPE,
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def schema_exists(self, name: str) -> bool:
        client = await self._get_client()
        try:
            resp = await client.get(f"/events/schema/{name}")
        except httpx.HTTPError as e:
            logger.error(f"Schema check for {name} failed: {e}")
            return False
        if resp.status_code == 200:
            return True
        if resp.status_code != 404:
            logger.warning(f"Schema check for {name} returned {resp.status_code}: {resp.text[:200]}")
        return False

    async def create_schema(self, name: str, schema: bytes) -> bool:
        client = await self._get_client()
        try:
            resp = await client.post(f"/events/schema/{name}", content=schema)
        except httpx.HTTPError as e:
            logger.error(f"Schema create for {name} failed: {e}")
            return False
        if resp.status_code in (200, 201, 409):
            return True
        logger.error(f"Schema create for {name} returned {resp.status_code}: {resp.text[:200]}")
        return False

    async def post_events(self, name: str, data: bytes) -> bool:
        client = await self._get_client()
        try:
            resp = await client.post(f"/events/publish/{name}", content=data)
        except httpx.HTTPError as e:
            logger.error(f"Publishing events to {name} failed: {e}")
            return False
        if resp.is_success:
            return True
        logger.error(f"Publishing events to {name} returned {resp.status_code}: {resp.text[:200]}")
        return False
