# jobwatch/config.py
# @ai-rules:
# 1. [Pattern]: Every setting reads os.getenv at call time via AgentBag.from_env(), never at import time.
# 2. [Constraint]: The Events API key never appears in describe() output.
"""Agent configuration bag, populated from environment variables."""
from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


class AgentBag(BaseModel):
    """Identity, backend coordinates and pipeline tuning for the agent."""

    app_name: str = Field("cluster-agent", description="Application name; also the fallback cluster name")
    tier_name: str = Field("ClusterAgent", description="Tier used in the metric root path")
    global_account: str = Field("", description="Global account name for the Events API")

    machine_agent_url: str = Field("http://localhost:8293", description="Machine Agent HTTP metric listener")
    event_service_url: str = Field("", description="Analytics Events API base URL")
    event_key: str = Field("", description="Analytics Events API key")
    verify_ssl: bool = Field(True, description="Verify TLS certificates on backend calls")

    event_api_limit: int = Field(100, ge=1, description="Max records posted per flush")
    job_schema_name: str = Field("job_schema", description="Events API schema for job records")
    event_queue_max: int = Field(10_000, ge=1, description="Max pending records in the event queue")

    default_namespace: str = Field("default", description="Namespace bucket always present in summaries")
    metrics_interval: float = Field(45.0, gt=0, description="Seconds between aggregation passes")
    flush_interval: float = Field(15.0, gt=0, description="Seconds between queue flushes")
    resync_period: float = Field(0.0, ge=0, description="Seconds between forced re-lists (0 disables)")
    watch_timeout: int = Field(60, ge=1, description="Server-side timeout for one watch stream")
    sync_poll_interval: float = Field(0.1, gt=0, description="Seconds between has_synced checks at startup")

    @field_validator("event_service_url", "machine_agent_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def from_env(cls) -> "AgentBag":
        """Build the bag from APPD_* / JOBWATCH_* environment variables."""
        return cls(
            app_name=os.getenv("APPD_APP_NAME", "cluster-agent"),
            tier_name=os.getenv("APPD_TIER_NAME", "ClusterAgent"),
            global_account=os.getenv("APPD_GLOBAL_ACCOUNT", ""),
            machine_agent_url=os.getenv("APPD_MACHINE_AGENT_URL", "http://localhost:8293"),
            event_service_url=os.getenv("APPD_EVENT_SERVICE_URL", ""),
            event_key=os.getenv("APPD_EVENT_KEY", ""),
            verify_ssl=_env_bool("APPD_VERIFY_SSL", True),
            event_api_limit=_env_int("JOBWATCH_EVENT_API_LIMIT", 100),
            job_schema_name=os.getenv("JOBWATCH_JOB_SCHEMA_NAME", "job_schema"),
            event_queue_max=_env_int("JOBWATCH_EVENT_QUEUE_MAX", 10_000),
            default_namespace=os.getenv("JOBWATCH_DEFAULT_NAMESPACE", "default"),
            metrics_interval=float(os.getenv("JOBWATCH_METRICS_INTERVAL", "45")),
            flush_interval=float(os.getenv("JOBWATCH_FLUSH_INTERVAL", "15")),
            resync_period=float(os.getenv("JOBWATCH_RESYNC_PERIOD", "0")),
            watch_timeout=_env_int("JOBWATCH_WATCH_TIMEOUT", 60),
        )

    def describe(self) -> dict:
        """Non-secret view of the configuration for logs and /status."""
        return self.model_dump(exclude={"event_key"})
