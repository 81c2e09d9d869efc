"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response

from iot_cicd.metrics import CONTENT_TYPE_LATEST, render_metrics

router = APIRouter()


@router.get("")
def get_metrics() -> Response:
    """Export build request counters in the Prometheus text format."""
    return Response(content=render_metrics(), media_type=CONTENT_TYPE_LATEST)
