"""
Tables produced by the export loader.

``issues`` holds one row per natural key (the tracker's issue key). Custom
field values land in ``field_values`` and comments in ``comments``; both point
back at the issue's surrogate key. Surrogate keys are always assigned by the
loader before insert, never by the database.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db

PROMOTED_COLUMNS: tuple[str, ...] = (
    "specification",
    "applied_for_version",
    "change_category",
    "change_impact",
    "duplicate_issue",
    "grouping",
    "raised_in_version",
    "related_issues",
    "related_artifacts",
    "related_pages",
    "related_sections",
    "related_url",
    "resolution_description",
    "vote_date",
    "vote",
    "work_group",
)


class IssueRecord(BaseModel):
    """Primary record for a tracker issue."""

    __tablename__ = "issues"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=False)
    key: Mapped[str] = mapped_column(db.String(64), nullable=False, unique=True)
    jira_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    title: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    link: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    project_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    project_key: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    type: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    type_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    priority: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    priority_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    status: Mapped[str | None] = mapped_column(db.String(100), nullable=True, index=True)
    status_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    status_category_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    status_category_key: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    status_category_color: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    resolution: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    resolution_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    assignee: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    reporter: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    watches: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    source_batch: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    # Promoted custom-field columns, populated after load by the promotion step.
    specification: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    applied_for_version: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    change_category: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    change_impact: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    duplicate_issue: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    grouping: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    raised_in_version: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    related_issues: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    related_artifacts: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    related_pages: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    related_sections: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    related_url: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    resolution_description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    vote_date: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    vote: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    work_group: Mapped[str | None] = mapped_column(db.Text, nullable=True)


class FieldValueRecord(BaseModel):
    """
    Raw custom-field value attached to an issue.

    Rows for fields listed in the promotion catalogue are removed once their
    value has been copied onto the issue.
    """

    __tablename__ = "field_values"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=False)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id"), nullable=False)
    issue_key: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    field_id: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    field_key: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    field_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    field_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    __table_args__ = (Index("idx_field_values_issue_field", "issue_id", "field_id"),)


class CommentRecord(BaseModel):
    """A non-empty comment on an issue."""

    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=False)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id"), nullable=False, index=True)
    issue_key: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    comment_key: Mapped[str] = mapped_column(db.String(100), nullable=False, unique=True)
    author: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    body: Mapped[str] = mapped_column(db.Text, nullable=False)


LOADER_MODELS = (IssueRecord, FieldValueRecord, CommentRecord)
