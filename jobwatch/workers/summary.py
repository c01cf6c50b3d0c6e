# jobwatch/workers/summary.py
# @ai-rules:
# 1. [Pattern]: Pure functions. No I/O, no shared state. The summary map is a local value per pass.
# 2. [Gotcha]: Absent optional Job spec fields default to 0 with a warning. Never dereference them blindly.
# 3. [Constraint]: Every record lands in exactly two buckets: GLOBAL_KEY and its namespace. Never key the global bucket by a namespace-legal name.
"""Job normalization and summary folding for the metrics pass."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..models import (
    ALL,
    GLOBAL_KEY,
    AppDMetric,
    AppDMetricList,
    ClusterJobMetrics,
    JobRecord,
    job_metrics_path,
    namespace_segment,
)

logger = logging.getLogger(__name__)

OPTIONAL_SPEC_FIELDS = ("active_deadline_seconds", "completions", "backoff_limit", "parallelism")


def _pairs(mapping: Optional[dict]) -> str:
    """Serialize labels/annotations as ``k:v;`` pairs in key order."""
    if not mapping:
        return ""
    return "".join(f"{k}:{v};" for k, v in sorted(mapping.items()))


def build_record(job: Any, fallback_cluster: str, now: Optional[datetime] = None) -> JobRecord:
    """Flatten one V1Job into a JobRecord."""
    now = now or datetime.now(timezone.utc)
    meta = job.metadata
    status = job.status
    spec = job.spec
    key = f"{meta.namespace}/{meta.name}"

    record = JobRecord(
        cluster_name=getattr(meta, "cluster_name", None) or fallback_cluster,
        namespace=meta.namespace or "",
        name=meta.name or "",
        labels=_pairs(meta.labels),
        annotations=_pairs(meta.annotations),
    )

    if status is not None:
        record.active = status.active or 0
        record.success = status.succeeded or 0
        record.failed = status.failed or 0
        record.start_time = status.start_time
        record.end_time = status.completion_time

    if record.start_time is not None:
        # Still running when completion_time is unset
        end = record.end_time or now
        record.duration = (end - record.start_time).total_seconds()

    for field_name in OPTIONAL_SPEC_FIELDS:
        value = getattr(spec, field_name, None) if spec is not None else None
        if value is None:
            logger.warning(f"Job {key}: spec.{field_name} not set, defaulting to 0")
            value = 0
        setattr(record, field_name, value)

    return record


def new_summaries(tier: str, default_namespace: str) -> dict[str, ClusterJobMetrics]:
    """Fresh bucket map. The global and default-namespace buckets always exist."""
    return {
        GLOBAL_KEY: ClusterJobMetrics(namespace=GLOBAL_KEY, path=job_metrics_path(tier, ALL)),
        default_namespace: _namespace_bucket(tier, default_namespace),
    }


def _namespace_bucket(tier: str, namespace: str) -> ClusterJobMetrics:
    segment = namespace_segment(namespace)
    if segment != namespace:
        logger.warning(f"Namespace {namespace!r} collides with the cluster bucket; reporting it as {segment!r}")
    return ClusterJobMetrics(namespace=namespace, path=job_metrics_path(tier, segment))


def summarize(summaries: dict[str, ClusterJobMetrics], record: JobRecord, tier: str) -> None:
    """Fold *record* into the global bucket and its namespace bucket."""
    summaries[GLOBAL_KEY].add(record)
    bucket = summaries.get(record.namespace)
    if bucket is None:
        bucket = _namespace_bucket(tier, record.namespace)
        summaries[record.namespace] = bucket
    bucket.add(record)


def build_summaries(
    records: Iterable[JobRecord], tier: str, default_namespace: str
) -> dict[str, ClusterJobMetrics]:
    summaries = new_summaries(tier, default_namespace)
    for record in records:
        summarize(summaries, record, tier)
    return summaries


def build_metric_list(summaries: dict[str, ClusterJobMetrics]) -> AppDMetricList:
    """One AppDMetric per (bucket, numeric field)."""
    items = [
        AppDMetric.for_bucket(name, accessor(bucket), bucket.path)
        for bucket in summaries.values()
        for name, accessor in ClusterJobMetrics.METRIC_FIELDS
    ]
    return AppDMetricList(items=items)
