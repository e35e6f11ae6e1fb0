"""Jira XML export adapter.

Discovers export files under a directory tree and deserializes each one (the
RSS-shaped ``<rss><channel><item>`` document Jira produces) into ``JiraItem``
objects. A file that cannot be parsed raises ``BatchParseError``; a file with
no items raises ``EmptyBatchError`` so callers can tell the two apart and never
see a partial item list.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from tracker_etl.loader.errors import BatchParseError, EmptyBatchError

DEFAULT_EXPORT_GLOB = "*.xml"


@dataclass(frozen=True)
class JiraCustomField:
    field_id: str | None
    field_key: str | None
    field_name: str | None
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class JiraComment:
    comment_id: str | None
    author: str | None
    created: str | None
    body: str | None


@dataclass(frozen=True)
class JiraItem:
    """One issue as it appears in an export file."""

    key: str | None
    key_id: int | None = None
    title: str | None = None
    link: str | None = None
    project_id: int | None = None
    project_key: str | None = None
    description: str | None = None
    summary: str | None = None
    type_name: str | None = None
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
    created: str | None = None
    updated: str | None = None
    resolved: str | None = None
    watches: int | None = None
    custom_fields: tuple[JiraCustomField, ...] = ()
    comments: tuple[JiraComment, ...] = ()


@dataclass
class JiraXmlStatistics:
    """Counters gathered while reading one export file."""

    items_read: int = 0
    custom_fields_read: int = 0
    comments_read: int = 0


def discover_export_files(root: Path, pattern: str = DEFAULT_EXPORT_GLOB) -> list[Path]:
    """Return every export file below ``root`` (recursive), in no particular order."""

    return [path for path in Path(root).rglob(pattern) if path.is_file()]


def _text(element: ET.Element | None) -> str | None:
    if element is None:
        return None
    return "".join(element.itertext())


def _to_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _attr_int(element: ET.Element | None, name: str) -> int | None:
    if element is None:
        return None
    return _to_int(element.get(name))


def _attr(element: ET.Element | None, name: str) -> str | None:
    if element is None:
        return None
    return element.get(name)


class JiraXmlAdapter:
    """Reader for a single Jira XML export file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.statistics = JiraXmlStatistics()

    def _load_channel(self) -> ET.Element:
        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            raise BatchParseError(self.path, f"unable to read file: {exc}") from exc
        if not raw.strip():
            raise EmptyBatchError(self.path)

        try:
            root = ET.fromstring(raw)
        except ET.ParseError as exc:
            raise BatchParseError(self.path, f"malformed XML: {exc}") from exc

        if root.tag != "rss":
            raise BatchParseError(self.path, f"unexpected root element <{root.tag}>")
        channel = root.find("channel")
        if channel is None:
            raise BatchParseError(self.path, "missing <channel> element")
        return channel

    def read_items(self) -> list[JiraItem]:
        """Parse the whole file; raises rather than returning a partial list."""

        channel = self._load_channel()
        items = [self._parse_item(element) for element in channel.iterfind("item")]
        if not items:
            raise EmptyBatchError(self.path)
        return items

    def _parse_item(self, element: ET.Element) -> JiraItem:
        self.statistics.items_read += 1
        key_el = element.find("key")
        project_el = element.find("project")
        type_el = element.find("type")
        priority_el = element.find("priority")
        status_el = element.find("status")
        category_el = status_el.find("statusCategory") if status_el is not None else None
        resolution_el = element.find("resolution")

        return JiraItem(
            key=_text(key_el),
            key_id=_attr_int(key_el, "id"),
            title=_text(element.find("title")),
            link=_text(element.find("link")),
            project_id=_attr_int(project_el, "id"),
            project_key=_attr(project_el, "key"),
            description=_text(element.find("description")),
            summary=_text(element.find("summary")),
            type_name=_text(type_el),
            type_id=_attr_int(type_el, "id"),
            priority=_text(priority_el),
            priority_id=_attr_int(priority_el, "id"),
            status=status_el.text if status_el is not None else None,
            status_id=_attr_int(status_el, "id"),
            status_category_id=_attr_int(category_el, "id"),
            status_category_key=_attr(category_el, "key"),
            status_category_color=_attr(category_el, "colorName"),
            resolution=_text(resolution_el),
            resolution_id=_attr_int(resolution_el, "id"),
            assignee=_attr(element.find("assignee"), "username"),
            reporter=_attr(element.find("reporter"), "username"),
            created=_text(element.find("created")),
            updated=_text(element.find("updated")),
            resolved=_text(element.find("resolved")),
            watches=_to_int(_text(element.find("watches"))),
            custom_fields=tuple(self._parse_custom_fields(element)),
            comments=tuple(self._parse_comments(element)),
        )

    def _parse_custom_fields(self, element: ET.Element) -> Iterator[JiraCustomField]:
        for field_el in element.iterfind("customfields/customfield"):
            self.statistics.custom_fields_read += 1
            values = tuple(
                _text(value_el) or ""
                for value_el in field_el.iterfind("customfieldvalues/customfieldvalue")
            )
            yield JiraCustomField(
                field_id=field_el.get("id"),
                field_key=field_el.get("key"),
                field_name=_text(field_el.find("customfieldname")),
                values=values,
            )

    def _parse_comments(self, element: ET.Element) -> Iterator[JiraComment]:
        for comment_el in element.iterfind("comments/comment"):
            self.statistics.comments_read += 1
            yield JiraComment(
                comment_id=comment_el.get("id"),
                author=comment_el.get("author"),
                created=comment_el.get("created"),
                body=_text(comment_el),
            )
