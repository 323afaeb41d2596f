"""Prometheus metrics definitions for multipartkit.

All metrics use the ``multipartkit_`` prefix. They are created by
init_metrics() only when enabled in config; until then every reference
stays ``None`` and the record_* helpers are no-ops, so library users who
never enable metrics register nothing in the global registry.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# Part transfers (labels: status = ok | error)
parts_total: Counter | None = None

# Session outcomes (labels: outcome = completed | aborted)
sessions_total: Counter | None = None

bytes_uploaded_total: Counter | None = None

# Uploads aborted by SessionReconciler sweeps
swept_uploads_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics. Safe to call twice."""
    global _initialized
    global parts_total, sessions_total, bytes_uploaded_total, swept_uploads_total

    if _initialized:
        return

    parts_total = Counter(
        "multipartkit_parts_total",
        "Part transfers by outcome",
        ["status"],
    )

    sessions_total = Counter(
        "multipartkit_sessions_total",
        "Multipart sessions reaching a terminal state",
        ["outcome"],
    )

    bytes_uploaded_total = Counter(
        "multipartkit_bytes_uploaded_total",
        "Total part bytes accepted by the store",
    )

    swept_uploads_total = Counter(
        "multipartkit_swept_uploads_total",
        "Abandoned multipart uploads aborted by reconciliation sweeps",
    )

    _initialized = True


def record_part(status: str, size: int = 0) -> None:
    if parts_total is not None:
        parts_total.labels(status=status).inc()
    if status == "ok" and size and bytes_uploaded_total is not None:
        bytes_uploaded_total.inc(size)


def record_session(outcome: str) -> None:
    if sessions_total is not None:
        sessions_total.labels(outcome=outcome).inc()


def record_swept(count: int) -> None:
    if count and swept_uploads_total is not None:
        swept_uploads_total.inc(count)
