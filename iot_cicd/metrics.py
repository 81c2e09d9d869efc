"""Prometheus metrics for build requests.

The core only increments counters; exposition is handled by
prometheus_client and served by the web layer.
"""

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

from iot_cicd.types import HTTP_FAILED_DEPENDENCY, HTTP_OK

registry = CollectorRegistry()

requests_total = Counter(
    "http_requests",
    "How many HTTP requests processed, partitioned by status code",
    ["code"],
    registry=registry,
)

# Pre-create both series so they are exported as 0 before the first build
requests_total.labels(code=str(HTTP_OK))
requests_total.labels(code=str(HTTP_FAILED_DEPENDENCY))


def record_request(status_code: int) -> None:
    """Count one processed build request."""
    requests_total.labels(code=str(status_code)).inc()


def request_count(status_code: int) -> float:
    """Return the current count for a status code."""
    value = registry.get_sample_value("http_requests_total", {"code": str(status_code)})
    return value or 0.0


def render_metrics() -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(registry)


__all__ = [
    "CONTENT_TYPE_LATEST",
    "record_request",
    "registry",
    "render_metrics",
    "request_count",
    "requests_total",
]
