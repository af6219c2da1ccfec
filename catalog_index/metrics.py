"""
Prometheus metrics for the catalog index rebuild.

The rebuild normally runs inside a Celery worker (see tasks.py). The worker
exposes these metrics over HTTP once it is ready, when
CATALOG_INDEX_METRICS_PORT is set. Outside a worker the counters still
accumulate in-process and can be scraped by whatever hosts the job.
"""

from __future__ import annotations

from celery import signals
from prometheus_client import Counter, Histogram, start_http_server

from catalog_index.config import CATALOG_INDEX_METRICS_PORT


REBUILD_DURATION_SECONDS = Histogram(
    "catalog_index_rebuild_duration_seconds",
    "Full index rebuild wall-clock time in seconds.",
    labelnames=("status",),
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600, 7200),
)

REBUILD_RUNS_TOTAL = Counter(
    "catalog_index_rebuild_runs_total",
    "Total index rebuilds, by final status.",
    labelnames=("status",),
)

DOCUMENTS_INDEXED_TOTAL = Counter(
    "catalog_index_documents_indexed_total",
    "Total documents written to the standby generation.",
)

FIELD_RESOLUTION_FAILURES_TOTAL = Counter(
    "catalog_index_field_resolution_failures_total",
    "Total descriptors skipped on a document because their value could not be resolved.",
    labelnames=("field",),
)

GENERATION_SWAPS_TOTAL = Counter(
    "catalog_index_generation_swaps_total",
    "Total promotions of a rebuilt generation to active.",
)


def record_rebuild(status: str, duration_s: float) -> None:
    REBUILD_RUNS_TOTAL.labels(status=status).inc()
    REBUILD_DURATION_SECONDS.labels(status=status).observe(max(0.0, duration_s))


def record_documents_indexed(count: int) -> None:
    if count > 0:
        DOCUMENTS_INDEXED_TOTAL.inc(count)


def record_field_resolution_failure(field_name: str) -> None:
    FIELD_RESOLUTION_FAILURES_TOTAL.labels(field=field_name).inc()


def record_generation_swap() -> None:
    GENERATION_SWAPS_TOTAL.inc()


@signals.worker_ready.connect
def _start_metrics_server(**_kwargs):
    if not CATALOG_INDEX_METRICS_PORT:
        return
    try:
        start_http_server(int(CATALOG_INDEX_METRICS_PORT))
    except (OSError, ValueError):
        # A taken or invalid port must not stop the worker from consuming tasks.
        return
