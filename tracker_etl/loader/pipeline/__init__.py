"""Loader pipeline stages."""

from __future__ import annotations

from .mapping import CommentRow, FieldValueRow, IssueRow, MappedItem, compute_checksum, map_item, parse_timestamp
from .merge import (
    BatchLoadSummary,
    FirstSeenResult,
    MergeLoader,
    MergeLoadSummary,
    bulk_insert,
    load_batches,
    order_batches,
    select_first_seen,
)
from .promotion import PromotionSummary, promote_fields
from .run import LoadRunSummary, LoadSettings, run_load
from .schema import KeySequence, KeySequences, SchemaManager
from .transactions import atomic, foreign_keys_relaxed

__all__ = [
    "BatchLoadSummary",
    "CommentRow",
    "FieldValueRow",
    "FirstSeenResult",
    "IssueRow",
    "KeySequence",
    "KeySequences",
    "LoadRunSummary",
    "LoadSettings",
    "MappedItem",
    "MergeLoadSummary",
    "MergeLoader",
    "PromotionSummary",
    "SchemaManager",
    "atomic",
    "bulk_insert",
    "compute_checksum",
    "foreign_keys_relaxed",
    "load_batches",
    "map_item",
    "order_batches",
    "parse_timestamp",
    "promote_fields",
    "run_load",
    "select_first_seen",
]
