"""Prometheus metrics helpers for contact uploads."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_uploads_submitted = Counter(
    "contact_uploads_submitted_total",
    "Bulk contact uploads accepted for processing, by file format.",
    ["file_format"],
)
_uploads_finished = Counter(
    "contact_uploads_finished_total",
    "Bulk contact uploads that reached a terminal state, by status.",
    ["status"],
)
_rows_processed = Counter(
    "contact_upload_rows_total",
    "Spreadsheet rows processed by the upload worker, by outcome.",
    ["outcome"],
)
_processing_duration = Histogram(
    "contact_upload_duration_seconds",
    "Wall-clock duration of bulk contact upload processing in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, 1800),
)


def record_upload_submitted(file_format: str) -> None:
    """Increment the submitted uploads counter."""

    _uploads_submitted.labels(file_format=(file_format or "unknown").lower()).inc()


def record_upload_finished(
    *,
    status: Literal["completed", "failed"],
    duration_seconds: float,
    accepted: int = 0,
    rejected: int = 0,
) -> None:
    """Capture metrics for a finished upload."""

    _uploads_finished.labels(status=status).inc()
    _processing_duration.observe(max(duration_seconds, 0.0))
    if accepted:
        _rows_processed.labels(outcome="accepted").inc(accepted)
    if rejected:
        _rows_processed.labels(outcome="rejected").inc(rejected)
