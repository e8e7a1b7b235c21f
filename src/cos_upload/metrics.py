"""Prometheus metrics definitions for cos-upload.

All metrics use the ``cos_upload_`` prefix. They are client-side counters:
one increment per HTTP exchange with COS, bytes sent in request bodies, and
multipart parts uploaded.

Metrics are opt-in. Until :func:`init_metrics` is called the module-level
references stay ``None``, nothing is registered in the global
prometheus_client registry, and the ``record_*`` helpers do nothing.
"""

from __future__ import annotations

from prometheus_client import Counter

_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter  (labels: operation, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte and part counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None
parts_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; later calls are no-ops.
    """
    global _initialized
    global requests_total, bytes_sent_total, parts_total

    if _initialized:
        return

    requests_total = Counter(
        "cos_upload_requests_total",
        "Total COS requests by operation and outcome",
        ["operation", "status"],
    )

    bytes_sent_total = Counter(
        "cos_upload_bytes_sent_total",
        "Total bytes sent to COS in request bodies",
    )

    parts_total = Counter(
        "cos_upload_parts_total",
        "Total multipart parts uploaded successfully",
    )

    _initialized = True


def record_request(operation: str, status: int | str, sent: int = 0) -> None:
    """Count one COS exchange and the body bytes it sent."""
    if requests_total is not None:
        requests_total.labels(operation=operation, status=str(status)).inc()
    if sent > 0 and bytes_sent_total is not None:
        bytes_sent_total.inc(sent)


def record_part() -> None:
    if parts_total is not None:
        parts_total.inc()
