"""
Prometheus metrics for the front door service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Call transition counter (transition)
- Door bell message counter (sender)
- Scanner run counter and routed-per-run histogram

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# transition: rung, answered, ended, routed
call_transitions_total = Counter(
    "call_transitions_total",
    "Door bell call session transitions",
    labelnames=["transition"]
)

# sender: guest, household
door_bell_messages_total = Counter(
    "door_bell_messages_total",
    "Messages posted to connected calls",
    labelnames=["sender"]
)

scanner_runs_total = Counter(
    "scanner_runs_total",
    "Timeout scanner invocations"
)

scanner_routed_per_run = Histogram(
    "scanner_routed_per_run",
    "Calls routed to the front desk per scanner run",
    buckets=(0, 1, 2, 5, 10, 25, 50, 100)
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when matched, raw path otherwise
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(
        method=method,
        path=path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=path
    ).observe(latency_seconds)


def record_call_transition(transition: str) -> None:
    call_transitions_total.labels(transition=transition).inc()


def record_message(sender: str) -> None:
    door_bell_messages_total.labels(sender=sender).inc()


def record_scanner_run(routed_count: int) -> None:
    scanner_runs_total.inc()
    scanner_routed_per_run.observe(routed_count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
