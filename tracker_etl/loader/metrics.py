"""Prometheus metrics helpers for the loader."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_batch_counter = Counter(
    "tracker_loader_batches_total",
    "Number of export batches processed by status.",
    ["status"],
)
_batch_duration = Histogram(
    "tracker_loader_batch_duration_seconds",
    "Duration of export batch loading in seconds.",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
)
_rows_inserted = Counter(
    "tracker_loader_rows_inserted_total",
    "Rows inserted by the merge loader, per table.",
    ["table"],
)
_rows_skipped = Counter(
    "tracker_loader_rows_skipped_total",
    "Rows skipped as duplicates by the merge loader, per table.",
    ["table"],
)
_items_rejected = Counter(
    "tracker_loader_items_rejected_total",
    "Export items rejected by the record mapper.",
)
_promotion_rows = Counter(
    "tracker_loader_promotion_rows_total",
    "Rows touched by field promotion, by operation.",
    ["operation"],
)
_promotion_failures = Counter(
    "tracker_loader_promotion_failures_total",
    "Field-promotion mappings that failed, by destination column.",
    ["column"],
)


def record_batch(*, status: Literal["loaded", "skipped"], duration_seconds: float) -> None:
    """Capture the outcome of one export batch."""

    _batch_counter.labels(status=status).inc()
    _batch_duration.observe(duration_seconds)


def record_rows(table: str, *, inserted: int, skipped: int) -> None:
    if inserted:
        _rows_inserted.labels(table=table).inc(inserted)
    if skipped:
        _rows_skipped.labels(table=table).inc(skipped)


def record_rejected_items(count: int) -> None:
    if count:
        _items_rejected.inc(count)


def record_promotion(*, rows_updated: int, rows_deleted: int) -> None:
    """Increment promotion counters for one migrator run."""

    if rows_updated:
        _promotion_rows.labels(operation="update").inc(rows_updated)
    if rows_deleted:
        _promotion_rows.labels(operation="delete").inc(rows_deleted)


def record_promotion_failure(column: str) -> None:
    _promotion_failures.labels(column=column).inc()
