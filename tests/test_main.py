# tests/test_main.py
# @ai-rules:
# 1. [Constraint]: TestClient is used WITHOUT a context manager so the lifespan (Kubernetes client) never runs.
# 2. [Pattern]: get_worker is replaced via app.dependency_overrides; always cleared in teardown.
"""HTTP surface tests: liveness, readiness and status endpoints."""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from jobwatch.dependencies import get_worker
from jobwatch.main import app
from jobwatch.models import WorkerState


class FakeCache:
    def __init__(self, synced: bool, size: int = 0):
        self.synced = synced
        self.size = size

    def has_synced(self) -> bool:
        return self.synced

    def __len__(self) -> int:
        return self.size


def _fake_worker(synced: bool, state: WorkerState = WorkerState.RUNNING):
    return SimpleNamespace(
        cache=FakeCache(synced, size=4),
        queue=[1, 2],
        state=state,
        last_metrics_pass=1714564800.0,
        last_flush=None,
    )


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_needs_no_worker(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "agent_online"


def test_ready_before_sync_is_503(client):
    app.dependency_overrides[get_worker] = lambda: _fake_worker(synced=False, state=WorkerState.SYNCING)
    resp = client.get("/ready")
    assert resp.status_code == 503


def test_ready_after_sync(client):
    app.dependency_overrides[get_worker] = lambda: _fake_worker(synced=True)
    resp = client.get("/ready")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"


def test_status_reports_pipeline(client):
    app.dependency_overrides[get_worker] = lambda: _fake_worker(synced=True)
    body = client.get("/status").json()
    assert body["state"] == "running"
    assert body["synced"] is True
    assert body["cached_jobs"] == 4
    assert body["queue_length"] == 2
    assert body["last_metrics_pass"] == 1714564800.0
    assert body["last_flush"] is None
