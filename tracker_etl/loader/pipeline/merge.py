"""
Merge loader: inserts mapped rows batch by batch with first-seen deduplication.

Batches are ordered newest first (by file name, descending). Within a table a
row is inserted only if neither its surrogate key nor its natural key is
already present in the store or earlier in the run, so the first copy seen of
any natural key wins. Combined with the ordering this makes the freshest
batch authoritative, provided export files are named so that newer files sort
after older ones.

Issues are never updated once inserted. When an issue copy is skipped, its
field-value and comment rows are skipped with it, so a stored issue only
ever carries the children of the copy that won.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generic, Hashable, Iterable, Sequence, TypeVar

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from tracker_etl.loader import metrics
from tracker_etl.loader.adapters.jira_xml import JiraXmlAdapter
from tracker_etl.loader.errors import BatchError, MissingNaturalKey
from tracker_etl.models import CommentRecord, FieldValueRecord, IssueRecord, db

from .mapping import CommentRow, FieldValueRow, IssueRow, MappedItem, map_item
from .schema import KeySequences
from .transactions import atomic

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500

RowT = TypeVar("RowT")


def order_batches(paths: Iterable[Path]) -> list[Path]:
    """Most recent batch first: file names sorted lexicographically, descending."""

    return sorted((Path(path) for path in paths), key=lambda path: (path.name, str(path)), reverse=True)


@dataclass
class FirstSeenResult(Generic[RowT]):
    accepted: list[RowT] = field(default_factory=list)
    skipped: list[RowT] = field(default_factory=list)


def select_first_seen(
    rows: Iterable[RowT],
    *,
    existing_keys: set[Hashable],
    existing_ids: set[int],
    natural_key: Callable[[RowT], Hashable] = lambda row: row.natural_key,  # type: ignore[attr-defined]
) -> FirstSeenResult[RowT]:
    """
    Keep the first occurrence of every natural key; skip the rest.

    A row is skipped when its natural key or surrogate id is already stored,
    or when an earlier row in ``rows`` carried the same natural key. Neither
    set passed in is modified.
    """

    result: FirstSeenResult[RowT] = FirstSeenResult()
    seen_keys: set[Hashable] = set()
    seen_ids: set[int] = set()
    for row in rows:
        key = natural_key(row)
        row_id = row.id  # type: ignore[attr-defined]
        if key in existing_keys or key in seen_keys or row_id in existing_ids or row_id in seen_ids:
            result.skipped.append(row)
            continue
        seen_keys.add(key)
        seen_ids.add(row_id)
        result.accepted.append(row)
    return result


def _chunked(values: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def bulk_insert(
    session: Session,
    model: type[db.Model],
    rows: Sequence[Any],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Insert ``rows`` into ``model``'s table as one atomic unit.

    Row dictionaries are filtered to the table's declared columns, so any row
    shape exposing ``as_row()`` can be passed.
    """

    if not rows:
        return 0
    table = model.__table__
    columns = set(table.columns.keys())
    payload = [{name: value for name, value in row.as_row().items() if name in columns} for row in rows]
    with atomic(session):
        for chunk in _chunked(payload, chunk_size):
            session.execute(insert(table), list(chunk))
    return len(payload)


@dataclass
class BatchLoadSummary:
    """Outcome of loading one export file."""

    batch: str
    status: str = "loaded"
    items_read: int = 0
    items_rejected: int = 0
    issues_inserted: int = 0
    issues_skipped: int = 0
    field_values_inserted: int = 0
    field_values_skipped: int = 0
    comments_inserted: int = 0
    comments_skipped: int = 0
    empty_comments: int = 0
    error: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch": self.batch,
            "status": self.status,
            "items_read": self.items_read,
            "items_rejected": self.items_rejected,
            "issues": {"inserted": self.issues_inserted, "skipped": self.issues_skipped},
            "field_values": {"inserted": self.field_values_inserted, "skipped": self.field_values_skipped},
            "comments": {
                "inserted": self.comments_inserted,
                "skipped": self.comments_skipped,
                "empty": self.empty_comments,
            },
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class MergeLoadSummary:
    batches: list[BatchLoadSummary] = field(default_factory=list)

    @property
    def batches_loaded(self) -> int:
        return sum(1 for batch in self.batches if batch.status == "loaded")

    @property
    def batches_skipped(self) -> int:
        return sum(1 for batch in self.batches if batch.status == "skipped")

    def total(self, attribute: str) -> int:
        return sum(getattr(batch, attribute) for batch in self.batches)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batches_loaded": self.batches_loaded,
            "batches_skipped": self.batches_skipped,
            "issues_inserted": self.total("issues_inserted"),
            "field_values_inserted": self.total("field_values_inserted"),
            "comments_inserted": self.total("comments_inserted"),
            "items_rejected": self.total("items_rejected"),
            "batches": [batch.to_dict() for batch in self.batches],
        }


class MergeLoader:
    """Loads export batches into the store in freshest-first order."""

    def __init__(
        self,
        session: Session,
        sequences: KeySequences,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self.session = session
        self.sequences = sequences
        self.chunk_size = max(1, int(chunk_size))
        self.echo = echo

    def load_batches(self, files: Iterable[Path]) -> MergeLoadSummary:
        summary = MergeLoadSummary()
        for path in order_batches(files):
            batch_summary = self.load_batch(path)
            summary.batches.append(batch_summary)
            if self.echo is not None:
                self.echo(format_batch_line(batch_summary))
        return summary

    def load_batch(self, path: Path) -> BatchLoadSummary:
        started = time.monotonic()
        summary = BatchLoadSummary(batch=path.name)
        log_extra = {"loader_batch": path.name}

        try:
            items = JiraXmlAdapter(path).read_items()
        except BatchError as exc:
            summary.status = "skipped"
            summary.error = str(exc)
            summary.duration_seconds = time.monotonic() - started
            logger.warning("Skipping batch %s: %s", path.name, exc, extra=log_extra)
            metrics.record_batch(status="skipped", duration_seconds=summary.duration_seconds)
            return summary

        summary.items_read = len(items)
        mapped: list[MappedItem] = []
        for item in items:
            try:
                mapped.append(map_item(item, self.sequences, source_batch=path.name))
            except MissingNaturalKey as exc:
                summary.items_rejected += 1
                logger.warning("Skipping item in %s: %s", path.name, exc, extra=log_extra)
        metrics.record_rejected_items(summary.items_rejected)

        issues, field_values, comments = self._resolve(mapped, summary)

        summary.issues_inserted = bulk_insert(self.session, IssueRecord, issues, chunk_size=self.chunk_size)
        summary.field_values_inserted = bulk_insert(
            self.session, FieldValueRecord, field_values, chunk_size=self.chunk_size
        )
        summary.comments_inserted = bulk_insert(self.session, CommentRecord, comments, chunk_size=self.chunk_size)

        metrics.record_rows(IssueRecord.__tablename__, inserted=summary.issues_inserted, skipped=summary.issues_skipped)
        metrics.record_rows(
            FieldValueRecord.__tablename__,
            inserted=summary.field_values_inserted,
            skipped=summary.field_values_skipped,
        )
        metrics.record_rows(
            CommentRecord.__tablename__, inserted=summary.comments_inserted, skipped=summary.comments_skipped
        )

        summary.duration_seconds = time.monotonic() - started
        metrics.record_batch(status="loaded", duration_seconds=summary.duration_seconds)
        logger.info(
            "Loaded batch %s: %s issues, %s field values, %s comments",
            path.name,
            summary.issues_inserted,
            summary.field_values_inserted,
            summary.comments_inserted,
            extra={**log_extra, "loader_counts": summary.to_dict()},
        )
        return summary

    def _resolve(
        self,
        mapped: list[MappedItem],
        summary: BatchLoadSummary,
    ) -> tuple[list[IssueRow], list[FieldValueRow], list[CommentRow]]:
        """Apply first-seen dedup per table; children follow their issue copy."""

        issues = IssueRecord.__table__
        issue_rows = [entry.issue for entry in mapped]
        stored_keys = self._existing_values(issues.c.key, [row.key for row in issue_rows])
        issue_result = select_first_seen(
            issue_rows,
            existing_keys=set(stored_keys),
            existing_ids=self._existing_ids(IssueRecord, [row.id for row in issue_rows]),
        )
        summary.issues_skipped = len(issue_result.skipped)

        accepted_ids = {row.id for row in issue_result.accepted}

        field_rows: list[FieldValueRow] = []
        comment_rows: list[CommentRow] = []
        for entry in mapped:
            summary.empty_comments += entry.empty_comments
            if entry.issue.id not in accepted_ids:
                summary.field_values_skipped += len(entry.field_values)
                summary.comments_skipped += len(entry.comments)
                continue
            field_rows.extend(entry.field_values)
            comment_rows.extend(entry.comments)

        field_result = select_first_seen(
            field_rows,
            existing_keys=self._existing_field_keys({row.issue_key for row in field_rows}),
            existing_ids=self._existing_ids(FieldValueRecord, [row.id for row in field_rows]),
        )
        summary.field_values_skipped += len(field_result.skipped)

        comment_table = CommentRecord.__table__
        comment_keys = self._existing_values(comment_table.c.comment_key, [row.comment_key for row in comment_rows])
        comment_result = select_first_seen(
            comment_rows,
            existing_keys=set(comment_keys),
            existing_ids=self._existing_ids(CommentRecord, [row.id for row in comment_rows]),
        )
        summary.comments_skipped += len(comment_result.skipped)

        return issue_result.accepted, field_result.accepted, comment_result.accepted

    def _existing_values(self, column, values: Sequence[Any]) -> list[Any]:
        found: list[Any] = []
        unique = list(dict.fromkeys(values))
        for chunk in _chunked(unique, self.chunk_size):
            found.extend(self.session.execute(select(column).where(column.in_(chunk))).scalars())
        return found

    def _existing_ids(self, model: type[db.Model], ids: Sequence[int]) -> set[int]:
        return set(self._existing_values(model.__table__.c.id, ids))

    def _existing_field_keys(self, issue_keys: set[str]) -> set[tuple[str, str]]:
        table = FieldValueRecord.__table__
        keys: set[tuple[str, str]] = set()
        for chunk in _chunked(sorted(issue_keys), self.chunk_size):
            statement = select(table.c.issue_key, table.c.field_id, table.c.field_name).where(
                table.c.issue_key.in_(chunk)
            )
            for issue_key, field_id, field_name in self.session.execute(statement):
                keys.add((issue_key, field_id or field_name or ""))
        return keys


def format_batch_line(summary: BatchLoadSummary) -> str:
    if summary.status == "skipped":
        return f"{summary.batch}: skipped ({summary.error})"
    return (
        f"{summary.batch}: {summary.issues_inserted} issues, "
        f"{summary.field_values_inserted} field values, "
        f"{summary.comments_inserted} comments inserted "
        f"({summary.issues_skipped} issues already loaded, "
        f"{summary.items_rejected} items rejected, {summary.empty_comments} empty comments dropped)"
    )


def load_batches(
    files: Iterable[Path],
    session: Session,
    sequences: KeySequences,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    echo: Callable[[str], None] | None = None,
) -> MergeLoadSummary:
    """Load every file in ``files`` (any order; sorted internally)."""

    return MergeLoader(session, sequences, chunk_size=chunk_size, echo=echo).load_batches(files)
