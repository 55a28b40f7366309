"""
Prometheus Metrics for Observability

Tracks pipeline stage latency, inference calls and project outcomes.
Exposes /api/v1/metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "proshot_pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Total Pipeline Duration
pipeline_total_duration = Histogram(
    "proshot_pipeline_total_duration_seconds",
    "Total time for one pipeline invocation",
    labelnames=["status"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

# Inference Calls
inference_calls_total = Counter(
    "proshot_inference_calls_total",
    "Total number of remote inference calls",
    labelnames=["endpoint", "status", "http_status"]
)

# Project outcomes
projects_total = Counter(
    "proshot_projects_total",
    "Total number of pipeline invocations by outcome",
    labelnames=["status", "failure_stage"]
)

# In-flight invocations
active_projects_gauge = Gauge(
    "proshot_active_projects",
    "Number of currently processing projects"
)

# Skipped trigger events
events_skipped_total = Counter(
    "proshot_events_skipped_total",
    "Trigger events ignored by the event filter",
    labelnames=["reason"]
)

# API Request Metrics
http_requests_total = Counter(
    "proshot_http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "proshot_http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "proshot_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("synthesis"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_inference_call(endpoint: str, status: str, http_status: int = 200):
    """Record a remote inference call."""
    inference_calls_total.labels(
        endpoint=endpoint,
        status=status,
        http_status=str(http_status)
    ).inc()


def record_project_started():
    """Record that an invocation entered processing."""
    active_projects_gauge.inc()


def record_project_completion(status: str, failure_stage: str = "none", in_flight: bool = True):
    """Record a terminal outcome. ``in_flight`` is False when no running invocation is ending."""
    projects_total.labels(status=status, failure_stage=failure_stage).inc()
    if in_flight:
        active_projects_gauge.dec()


def record_event_skipped(reason: str):
    """Record a trigger event ignored by the filter."""
    events_skipped_total.labels(reason=reason).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


# Initialize app info on module load
set_app_info(version="1.0.0", environment="development")
