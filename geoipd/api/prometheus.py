"""
Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse
from ..metrics import prometheus_metrics

router = APIRouter(tags=["metrics"])


@router.get("/metrics/prometheus", summary="Prometheus metrics")
async def get_prometheus_metrics() -> Response:
    """Metrics in Prometheus exposition format."""
    return PlainTextResponse(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type()
    )
