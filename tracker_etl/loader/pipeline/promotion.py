"""
Field promotion: copies custom-field values onto typed ``issues`` columns.

Runs once after every batch has loaded. Each mapping is one set-based UPDATE
with a correlated subquery, committed on its own, so an interrupted run leaves
every mapping either applied or not applied. Issues without a matching
field-value row keep whatever the column already holds. When several rows
match the same issue and field id the database returns one of them; which one
is not defined.

After the updates, source rows for every mapped field id are removed in one
DELETE unless the caller asks to keep them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from sqlalchemy import and_, delete, func, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.field_mappings import FieldMappingDefinition
from tracker_etl.loader import metrics
from tracker_etl.loader.errors import PromotionMappingError
from tracker_etl.models import PROMOTED_COLUMNS, FieldValueRecord, IssueRecord

from .transactions import atomic

logger = logging.getLogger(__name__)

HTML_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    # Decoded last so "&amp;lt;" becomes "&lt;" rather than "<".
    ("&amp;", "&"),
)


@dataclass
class PromotionSummary:
    """Counts reported by one promotion pass."""

    rows_updated: int = 0
    rows_deleted: int = 0
    column_counts: dict[str, int] = field(default_factory=dict)
    failed_columns: tuple[str, ...] = ()
    source_retained: bool = False
    source_missing: bool = False
    delete_failed: bool = False
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_updated": self.rows_updated,
            "rows_deleted": self.rows_deleted,
            "column_counts": dict(self.column_counts),
            "failed_columns": list(self.failed_columns),
            "source_retained": self.source_retained,
            "source_missing": self.source_missing,
            "delete_failed": self.delete_failed,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


def sanitized(expression):
    """SQL expression: drop CR/LF, trim, decode a few HTML entities, null to ''."""

    expression = func.replace(expression, "\r", "")
    expression = func.replace(expression, "\n", "")
    expression = func.trim(expression)
    for entity, character in HTML_ENTITIES:
        expression = func.replace(expression, entity, character)
    return func.coalesce(expression, "")


def build_promotion_update(mapping: FieldMappingDefinition):
    """Return the UPDATE statement for one mapping; raises on a bad column."""

    if mapping.column not in PROMOTED_COLUMNS:
        raise PromotionMappingError(mapping.column, "not a promotable issues column")
    issues = IssueRecord.__table__
    field_values = FieldValueRecord.__table__
    try:
        target = issues.c[mapping.column]
    except KeyError as exc:
        raise PromotionMappingError(mapping.column, "column does not exist") from exc

    matches = and_(field_values.c.issue_id == issues.c.id, field_values.c.field_id == mapping.field_id)
    value = sanitized(field_values.c.field_value) if mapping.sanitize else field_values.c.field_value
    source = select(value).where(matches).limit(1).scalar_subquery()
    return update(issues).values({target: source}).where(select(field_values.c.id).where(matches).exists())


def _field_table_present(session: Session) -> bool:
    return inspect(session.get_bind()).has_table(FieldValueRecord.__tablename__)


def promote_fields(
    session: Session,
    mappings: Sequence[FieldMappingDefinition],
    *,
    keep_source: bool = False,
    echo: Callable[[str], None] | None = None,
) -> PromotionSummary:
    """
    Apply every mapping, then delete the promoted source rows.

    A mapping that fails is logged and skipped; the rest still run, and the
    final delete still covers every field id in ``mappings``. A failed delete
    is logged and reported through ``delete_failed``; the updates stay
    committed. Re-running after a successful pass updates and deletes nothing.
    """

    started = time.monotonic()
    summary = PromotionSummary(source_retained=keep_source)

    if not _field_table_present(session):
        logger.warning("Field value table is absent; nothing to promote")
        summary.source_missing = True
        return summary

    failed: list[str] = []
    for mapping in mappings:
        log_extra = {"loader_column": mapping.column, "loader_field_id": mapping.field_id}
        try:
            statement = build_promotion_update(mapping)
            with atomic(session):
                result = session.execute(statement)
        except (PromotionMappingError, SQLAlchemyError) as exc:
            failed.append(mapping.column)
            metrics.record_promotion_failure(mapping.column)
            logger.error("Failed to promote %s into %s: %s", mapping.field_id, mapping.column, exc, extra=log_extra)
            if echo is not None:
                echo(f"  {mapping.column}: failed ({exc})")
            continue

        updated = max(result.rowcount or 0, 0)
        summary.column_counts[mapping.column] = updated
        summary.rows_updated += updated
        logger.info("Promoted %s into %s: %s rows", mapping.field_id, mapping.column, updated, extra=log_extra)
        if echo is not None:
            echo(f"  {mapping.column}: {updated} rows updated")

    summary.failed_columns = tuple(failed)

    field_ids = sorted({mapping.field_id for mapping in mappings})
    if keep_source:
        logger.info("Keeping promoted field value rows")
    elif field_ids:
        field_values = FieldValueRecord.__table__
        try:
            statement = delete(field_values).where(field_values.c.field_id.in_(field_ids))
            with atomic(session):
                result = session.execute(statement)
        except SQLAlchemyError as exc:
            summary.delete_failed = True
            logger.error("Failed to delete promoted field value rows: %s", exc, extra={"loader_field_ids": field_ids})
            if echo is not None:
                echo(f"  cleanup: failed ({exc})")
        else:
            summary.rows_deleted = max(result.rowcount or 0, 0)
            logger.info("Deleted %s promoted field value rows", summary.rows_deleted)

    summary.elapsed_ms = (time.monotonic() - started) * 1000
    metrics.record_promotion(rows_updated=summary.rows_updated, rows_deleted=summary.rows_deleted)
    return summary
