"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from proshot.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - proshot_pipeline_latency_seconds (per stage)
    - proshot_inference_calls_total
    - proshot_projects_total
    - proshot_events_skipped_total
    - proshot_http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
