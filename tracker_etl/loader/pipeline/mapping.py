"""
Record mapper: converts parsed export items into insertable rows.

``map_item`` performs no I/O. Surrogate keys are drawn from the
``KeySequences`` handle passed in by the caller, so the mapped rows already
carry the ids they will be inserted with.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

from tracker_etl.loader.adapters.jira_xml import JiraComment, JiraCustomField, JiraItem
from tracker_etl.loader.errors import MissingNaturalKey

from .schema import KeySequences

UNRESOLVED_NAME = "Unresolved"
UNRESOLVED_ID = -1
MULTI_VALUE_SEPARATOR = ", "


@dataclass(frozen=True)
class IssueRow:
    id: int
    key: str
    jira_id: int | None = None
    title: str | None = None
    link: str | None = None
    project_id: int | None = None
    project_key: str | None = None
    description: str | None = None
    summary: str | None = None
    type: str | None = None
    type_id: int | None = None
    priority: str | None = None
    priority_id: int | None = None
    status: str | None = None
    status_id: int | None = None
    status_category_id: int | None = None
    status_category_key: str | None = None
    status_category_color: str | None = None
    resolution: str | None = None
    resolution_id: int | None = None
    assignee: str | None = None
    reporter: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    watches: int | None = None
    source_batch: str | None = None

    @property
    def natural_key(self) -> str:
        return self.key

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FieldValueRow:
    id: int
    issue_id: int
    issue_key: str
    field_id: str | None
    field_key: str | None
    field_name: str | None
    field_value: str | None

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.issue_key, self.field_id or self.field_name or "")

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CommentRow:
    id: int
    issue_id: int
    issue_key: str
    comment_key: str
    author: str | None
    created_at: datetime | None
    body: str

    @property
    def natural_key(self) -> str:
        return self.comment_key

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MappedItem:
    """Rows produced from one export item."""

    issue: IssueRow
    field_values: list[FieldValueRow] = field(default_factory=list)
    comments: list[CommentRow] = field(default_factory=list)
    empty_comments: int = 0
    dropped_fields: int = 0


def compute_checksum(payload: dict[str, object | None]) -> str:
    """Return a stable checksum for a payload."""

    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse an export timestamp (e.g. ``Mon, 8 Jan 2024 10:15:00 -0600``) to UTC.

    Naive values are assumed to already be UTC. Unparseable input gives ``None``.
    """

    if value is None or not value.strip():
        return None
    try:
        parsed = date_parser.parse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clean_title(title: str | None, project_key: str | None) -> str | None:
    """Strip a leading ``[PROJ-123]`` marker when it names the item's project."""

    if not title:
        return title
    if project_key and title.startswith("[" + project_key):
        closing = title.find("]")
        if closing > 0:
            return title[closing + 1 :].strip()
    return title


def join_field_values(values: tuple[str, ...] | list[str]) -> str | None:
    if not values:
        return None
    if len(values) == 1:
        return _blank_to_none(values[0])
    return _blank_to_none(MULTI_VALUE_SEPARATOR.join(values))


def comment_natural_key(issue_key: str, comment: JiraComment) -> str:
    if comment.comment_id and comment.comment_id.strip():
        return comment.comment_id.strip()
    return compute_checksum(
        {
            "issue_key": issue_key,
            "author": comment.author,
            "created": comment.created,
            "body": comment.body,
        }
    )


def map_issue(
    item: JiraItem,
    sequences: KeySequences,
    *,
    source_batch: str | None = None,
) -> IssueRow:
    key = (item.key or "").strip()
    if not key:
        raise MissingNaturalKey(item.title)

    has_resolution = _blank_to_none(item.resolution) is not None
    return IssueRow(
        id=sequences.issues.next(),
        key=key,
        jira_id=item.key_id,
        title=clean_title(item.title, item.project_key),
        link=item.link,
        project_id=item.project_id,
        project_key=item.project_key,
        description=item.description,
        summary=_blank_to_none(item.summary),
        type=item.type_name,
        type_id=item.type_id,
        priority=_blank_to_none(item.priority),
        priority_id=item.priority_id,
        status=_blank_to_none(item.status),
        status_id=item.status_id,
        status_category_id=item.status_category_id,
        status_category_key=item.status_category_key,
        status_category_color=item.status_category_color,
        resolution=item.resolution if has_resolution else UNRESOLVED_NAME,
        resolution_id=item.resolution_id if item.resolution_id is not None else UNRESOLVED_ID,
        assignee=_blank_to_none(item.assignee),
        reporter=_blank_to_none(item.reporter),
        created_at=parse_timestamp(item.created),
        updated_at=parse_timestamp(item.updated),
        resolved_at=parse_timestamp(item.resolved),
        watches=item.watches or None,
        source_batch=source_batch,
    )


def map_field_value(custom_field: JiraCustomField, issue: IssueRow, sequences: KeySequences) -> FieldValueRow | None:
    field_id = _blank_to_none(custom_field.field_id)
    field_name = _blank_to_none(custom_field.field_name)
    if field_id is None and field_name is None:
        return None
    return FieldValueRow(
        id=sequences.field_values.next(),
        issue_id=issue.id,
        issue_key=issue.key,
        field_id=field_id,
        field_key=_blank_to_none(custom_field.field_key),
        field_name=field_name,
        field_value=join_field_values(custom_field.values),
    )


def map_comment(
    comment: JiraComment,
    issue: IssueRow,
    sequences: KeySequences,
    *,
    loaded_at: datetime,
) -> CommentRow | None:
    if comment.body is None or not comment.body.strip():
        return None
    return CommentRow(
        id=sequences.comments.next(),
        issue_id=issue.id,
        issue_key=issue.key,
        comment_key=comment_natural_key(issue.key, comment),
        author=_blank_to_none(comment.author),
        created_at=parse_timestamp(comment.created) or loaded_at,
        body=comment.body,
    )


def map_item(
    item: JiraItem,
    sequences: KeySequences,
    *,
    source_batch: str | None = None,
    loaded_at: datetime | None = None,
) -> MappedItem:
    """
    Map one export item to an issue row plus its field-value and comment rows.

    Raises ``MissingNaturalKey`` when the item has no usable key; nothing is
    drawn from the sequences in that case.
    """

    loaded_at = loaded_at or datetime.now(timezone.utc)
    issue = map_issue(item, sequences, source_batch=source_batch)
    mapped = MappedItem(issue=issue)

    for custom_field in item.custom_fields:
        row = map_field_value(custom_field, issue, sequences)
        if row is None:
            mapped.dropped_fields += 1
            continue
        mapped.field_values.append(row)

    for comment in item.comments:
        row = map_comment(comment, issue, sequences, loaded_at=loaded_at)
        if row is None:
            mapped.empty_comments += 1
            continue
        mapped.comments.append(row)

    return mapped
