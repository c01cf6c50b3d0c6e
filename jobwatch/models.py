# jobwatch/models.py
# @ai-rules:
# 1. [Constraint]: All models are Pydantic BaseModel. Use Field() for defaults and descriptions.
# 2. [Pattern]: JobRecord serializes with camelCase aliases; JOB_SCHEMA_DEFINITION must list exactly those aliases.
# 3. [Pattern]: ClusterJobMetrics.METRIC_FIELDS is the closed list of emitted metrics. Add a field there or it is not sent.
"""Pydantic schemas for job records, summary buckets and flat metrics."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Metric path constants
# =============================================================================

ROOT_PATH = "Server|Component:{tier}|Custom Metrics|Cluster Stats|"
ALL = "all"
METRIC_SEPARATOR = "|"
METRIC_PATH_JOBS = "Jobs"

# Summary map key of the cluster-wide bucket. "*" is not a legal namespace name.
GLOBAL_KEY = "*"
# Path segment for a real namespace named "all"; "_" is not legal in namespace names.
NAMESPACE_ALL_SEGMENT = "namespace_all"


def namespace_segment(namespace: str) -> str:
    """Path segment for a namespace bucket; never collides with the cluster bucket."""
    return NAMESPACE_ALL_SEGMENT if namespace == ALL else namespace


def job_metrics_path(tier: str, segment: str) -> str:
    """Metric folder for one summary bucket, e.g. ``...|Cluster Stats|Jobs|all|``."""
    return (
        ROOT_PATH.format(tier=tier)
        + METRIC_PATH_JOBS + METRIC_SEPARATOR
        + segment + METRIC_SEPARATOR
    )


# =============================================================================
# Per-object record (Events API payload)
# =============================================================================

class JobRecord(BaseModel):
    """Flattened view of one batch Job, posted to the Events API."""
    model_config = ConfigDict(populate_by_name=True)

    cluster_name: str = Field("", alias="clusterName")
    namespace: str = Field("", alias="namespace")
    name: str = Field("", alias="jobName")
    labels: str = Field("", alias="labels", description="k:v; pairs")
    annotations: str = Field("", alias="annotations", description="k:v; pairs")
    active: int = Field(0, alias="active")
    success: int = Field(0, alias="success")
    failed: int = Field(0, alias="failed")
    start_time: Optional[datetime] = Field(None, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    duration: float = Field(0.0, alias="duration", description="Seconds; measured to now while running")
    active_deadline_seconds: int = Field(0, alias="activeDeadlineSeconds")
    completions: int = Field(0, alias="completions")
    backoff_limit: int = Field(0, alias="backoffLimit")
    parallelism: int = Field(0, alias="parallelism")

    @property
    def key(self) -> str:
        """Queue identity: one pending record per job."""
        return f"{self.namespace}/{self.name}"

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Events API schema for JobRecord. Structural only, independent of data.
JOB_SCHEMA_DEFINITION: dict[str, str] = {
    "clusterName": "string",
    "namespace": "string",
    "jobName": "string",
    "labels": "string",
    "annotations": "string",
    "active": "integer",
    "success": "integer",
    "failed": "integer",
    "startTime": "date",
    "endTime": "date",
    "duration": "float",
    "activeDeadlineSeconds": "integer",
    "completions": "integer",
    "backoffLimit": "integer",
    "parallelism": "integer",
}


def job_schema_wrapper() -> dict[str, Any]:
    """Body for the create-schema call."""
    return {"schema": dict(JOB_SCHEMA_DEFINITION)}


# =============================================================================
# Summary buckets (Metrics sink)
# =============================================================================

class ClusterJobMetrics(BaseModel):
    """Running totals for one group of jobs: the whole cluster or one namespace."""
    namespace: str = Field(GLOBAL_KEY, description="Namespace name, or GLOBAL_KEY for the cluster bucket")
    path: str = Field(..., description="Metric folder this bucket reports under")
    job_count: int = 0
    active_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    duration: int = Field(0, description="Sum of whole seconds across jobs")

    METRIC_FIELDS: ClassVar[tuple] = (
        ("JobCount", lambda m: m.job_count),
        ("ActiveCount", lambda m: m.active_count),
        ("SuccessCount", lambda m: m.success_count),
        ("FailedCount", lambda m: m.failed_count),
        ("Duration", lambda m: m.duration),
    )

    def add(self, record: JobRecord) -> None:
        self.job_count += 1
        self.active_count += record.active
        self.success_count += record.success
        self.failed_count += record.failed
        self.duration += int(record.duration)


class AppDMetric(BaseModel):
    """A single named value at a full metric path."""
    name: str
    value: int
    path: str
    aggregation_type: str = "OBSERVATION"
    time_rollup_type: str = "CURRENT"
    cluster_rollup_type: str = "INDIVIDUAL"

    @classmethod
    def for_bucket(cls, name: str, value: int, folder: str) -> "AppDMetric":
        return cls(name=name, value=value, path=f"{folder}{name}")

    def to_machine_agent(self) -> dict[str, Any]:
        """Machine Agent HTTP listener format."""
        return {
            "metricName": self.path,
            "aggregatorType": self.aggregation_type,
            "value": self.value,
        }


class AppDMetricList(BaseModel):
    items: list[AppDMetric] = Field(default_factory=list)


# =============================================================================
# Lifecycle / health
# =============================================================================

class WorkerState(str, Enum):
    """Supervisor states of the jobs worker."""
    INITIALIZING = "initializing"
    SYNCING = "syncing"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "agent_online"


class StatusResponse(BaseModel):
    """Pipeline status for operators."""
    state: WorkerState
    synced: bool
    cached_jobs: int
    queue_length: int
    last_metrics_pass: Optional[float] = Field(None, description="Unix time of the last aggregation pass")
    last_flush: Optional[float] = Field(None, description="Unix time of the last flush that posted records")
