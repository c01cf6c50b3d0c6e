# tests/test_rest_client.py
# @ai-rules:
# 1. [Constraint]: No network. httpx.MockTransport is injected into the lazy _client slot.
# 2. [Pattern]: Handlers record requests into a list for assertions.
"""Unit tests for the Events API client and the Machine Agent metrics sink."""
from __future__ import annotations

import json

import httpx
import pytest

from jobwatch.appd import ControllerClient, RestClient
from jobwatch.appd.rest_client import EVENTS_CONTENT_TYPE
from jobwatch.config import AgentBag
from jobwatch.models import AppDMetric, AppDMetricList

EVENTS_URL = "https://events.example.com"


def _bag() -> AgentBag:
    return AgentBag(
        event_service_url=EVENTS_URL + "/",
        global_account="acme_1234",
        event_key="secret",
        machine_agent_url="http://machine-agent:8293",
    )


def _rest_client(handler) -> RestClient:
    rc = RestClient(_bag())
    rc._client = httpx.AsyncClient(base_url=EVENTS_URL, transport=httpx.MockTransport(handler))
    return rc


class TestRestClient:
    @pytest.mark.asyncio
    async def test_lazy_client_carries_account_headers(self):
        rc = RestClient(_bag())
        client = await rc._get_client()
        try:
            assert client.headers["X-Events-API-AccountName"] == "acme_1234"
            assert client.headers["X-Events-API-Key"] == "secret"
            assert client.headers["Content-Type"] == EVENTS_CONTENT_TYPE
            assert str(client.base_url).rstrip("/") == EVENTS_URL
            assert await rc._get_client() is client
        finally:
            await rc.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [(200, True), (404, False), (500, False)])
    async def test_schema_exists(self, status, expected):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(status)

        rc = _rest_client(handler)
        assert await rc.schema_exists("job_schema") is expected
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/events/schema/job_schema"
        await rc.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [(201, True), (409, True), (400, False)])
    async def test_create_schema(self, status, expected):
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(status)

        rc = _rest_client(handler)
        schema = json.dumps({"schema": {"jobName": "string"}}).encode()
        assert await rc.create_schema("job_schema", schema) is expected
        assert bodies == [schema]
        await rc.close()

    @pytest.mark.asyncio
    async def test_post_events(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        rc = _rest_client(handler)
        assert await rc.post_events("job_schema", b'[{"jobName": "etl"}]')
        assert seen[0].url.path == "/events/publish/job_schema"
        assert json.loads(seen[0].content) == [{"jobName": "etl"}]
        await rc.close()

    @pytest.mark.asyncio
    async def test_post_rejected_is_logged(self, caplog):
        rc = _rest_client(lambda request: httpx.Response(413, text="payload too large"))
        assert not await rc.post_events("job_schema", b"[]")
        assert "returned 413" in caplog.text
        await rc.close()

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        rc = _rest_client(handler)
        assert not await rc.schema_exists("job_schema")
        assert not await rc.post_events("job_schema", b"[]")
        assert "connection refused" in caplog.text
        await rc.close()


class TestControllerClient:
    @pytest.mark.asyncio
    async def test_post_metrics_sends_one_request(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        controller = ControllerClient(_bag())
        controller._client = httpx.AsyncClient(
            base_url="http://machine-agent:8293", transport=httpx.MockTransport(handler)
        )
        metrics = AppDMetricList(items=[
            AppDMetric.for_bucket("JobCount", 3, "Server|Component:T|Custom Metrics|Cluster Stats|Jobs|all|"),
            AppDMetric.for_bucket("ActiveCount", 1, "Server|Component:T|Custom Metrics|Cluster Stats|Jobs|all|"),
        ])

        assert await controller.post_metrics(metrics)
        assert len(seen) == 1
        assert seen[0].url.path == "/api/v1/metrics"
        body = json.loads(seen[0].content)
        assert body[0] == {
            "metricName": "Server|Component:T|Custom Metrics|Cluster Stats|Jobs|all|JobCount",
            "aggregatorType": "OBSERVATION",
            "value": 3,
        }
        await controller.close()

    @pytest.mark.asyncio
    async def test_empty_list_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        controller = ControllerClient(_bag())
        controller._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        assert await controller.post_metrics(AppDMetricList())
        await controller.close()

    def test_bt_bracket_measures_elapsed(self):
        controller = ControllerClient(_bag())
        handle = controller.start_bt("SendJobMetrics")
        assert handle.name == "SendJobMetrics"
        assert controller.stop_bt(handle) >= 0.0
