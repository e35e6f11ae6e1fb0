from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import pytest

from tracker_etl.loader.pipeline import SchemaManager
from tracker_etl.models import db


def _sub(parent: ET.Element, tag: str, text: str | None = None, **attrs: Any) -> ET.Element:
    element = ET.SubElement(parent, tag, {name: str(value) for name, value in attrs.items() if value is not None})
    if text is not None:
        element.text = text
    return element


def build_export_xml(items: Iterable[Mapping[str, Any]]) -> str:
    """
    Render an RSS export document for ``items``.

    Each item mapping accepts ``key``, ``key_id``, ``title``, ``project_key``,
    ``summary``, ``status``, ``resolution``, ``assignee``, ``created``,
    ``watches``, ``custom_fields`` (dicts with ``id``/``key``/``name``/``values``)
    and ``comments`` (dicts with ``id``/``author``/``created``/``body``).
    """

    rss = ET.Element("rss", {"version": "0.92"})
    channel = _sub(rss, "channel")
    _sub(channel, "title", "Issue tracker export")
    for entry in items:
        item = _sub(channel, "item")
        project_key = entry.get("project_key", "FHIR")
        key = entry.get("key")
        _sub(item, "title", entry.get("title", f"[{key}] Issue {key}"))
        _sub(item, "link", f"https://tracker.example.org/browse/{key}")
        _sub(item, "project", "FHIR Core", id=entry.get("project_id", 10000), key=project_key)
        _sub(item, "description", entry.get("description", "<p>Description</p>"))
        if key is not None:
            _sub(item, "key", key, id=entry.get("key_id", 40000))
        _sub(item, "summary", entry.get("summary", f"Summary of {key}"))
        _sub(item, "type", "Change Request", id=10600)
        _sub(item, "priority", entry.get("priority", "Medium"), id=3)
        status = _sub(item, "status", entry.get("status", "Triaged"), id=10101)
        _sub(status, "statusCategory", id=4, key="indeterminate", colorName="inprogress")
        if entry.get("resolution") is not None:
            _sub(item, "resolution", entry["resolution"], id=entry.get("resolution_id", 10000))
        _sub(item, "assignee", entry.get("assignee_name", "Unassigned"), username=entry.get("assignee", "-1"))
        _sub(item, "reporter", "Reporter", username=entry.get("reporter", "reporter1"))
        _sub(item, "created", entry.get("created", "Mon, 8 Jan 2024 10:15:00 -0600"))
        _sub(item, "updated", entry.get("updated", "Tue, 9 Jan 2024 11:00:00 -0600"))
        _sub(item, "watches", str(entry.get("watches", 0)))

        comments = entry.get("comments") or ()
        if comments:
            comments_el = _sub(item, "comments")
            for comment in comments:
                _sub(
                    comments_el,
                    "comment",
                    comment.get("body", ""),
                    id=comment.get("id"),
                    author=comment.get("author", "commenter"),
                    created=comment.get("created", "Wed, 10 Jan 2024 09:00:00 +0000"),
                )

        custom_fields = entry.get("custom_fields") or ()
        if custom_fields:
            fields_el = _sub(item, "customfields")
            for custom_field in custom_fields:
                field_el = _sub(fields_el, "customfield", id=custom_field.get("id"), key=custom_field.get("key"))
                _sub(field_el, "customfieldname", custom_field.get("name", custom_field.get("id")))
                values_el = _sub(field_el, "customfieldvalues")
                for value in custom_field.get("values", ()):
                    _sub(values_el, "customfieldvalue", value)

    return ET.tostring(rss, encoding="unicode")


@pytest.fixture
def export_dir(tmp_path) -> Path:
    directory = tmp_path / "bulk"
    directory.mkdir()
    return directory


@pytest.fixture
def export_writer(export_dir) -> Callable[..., Path]:
    """Write an export file below ``export_dir`` and return its path."""

    def _write(name: str, items: Iterable[Mapping[str, Any]] = (), *, raw: str | None = None) -> Path:
        path = export_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(raw if raw is not None else build_export_xml(items), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def schema(app) -> SchemaManager:
    manager = SchemaManager(db.session)
    manager.bootstrap()
    return manager
