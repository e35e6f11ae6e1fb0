"""
Field-promotion catalogue for the export loader.

Each ``FieldMappingDefinition`` names a custom-field identifier found in the
exports and the ``issues`` column its value is promoted into after loading.
Definitions flagged ``sanitize`` have line breaks removed, surrounding
whitespace trimmed and a handful of HTML entities decoded on the way in.

Configuration is file-backed. Operators can replace the built-in catalogue by
pointing ``LOADER_FIELD_MAPPINGS_PATH`` at a JSON or YAML file shaped like::

    mappings:
      - field_id: customfield_11302
        column: specification
        field_name: Specification
      - field_id: customfield_11400
        column: work_group
        sanitize: true
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import yaml


@dataclass(frozen=True)
class FieldMappingDefinition:
    """
    Promotion rule for a single custom field.

    Attributes:
        field_id: Custom-field identifier as it appears in the export
            (``customfield_NNNNN``).
        column: Destination column on the ``issues`` table.
        field_key: Plugin type key reported by the export, informational only.
        field_name: Human-readable field name, informational only.
        sanitize: When true the value is cleaned before it is written.
    """

    field_id: str
    column: str
    field_key: str | None = None
    field_name: str | None = None
    sanitize: bool = False


_NFEED = "com.valiantys.jira.plugins.SQLFeed:nfeed-standard-customfield-type"
_SELECT = "com.atlassian.jira.plugin.system.customfieldtypes:select"
_LABELS = "com.atlassian.jira.plugin.system.customfieldtypes:labels"
_TEXTFIELD = "com.atlassian.jira.plugin.system.customfieldtypes:textfield"
_TEXTAREA = "com.atlassian.jira.plugin.system.customfieldtypes:textarea"
_URL = "com.atlassian.jira.plugin.system.customfieldtypes:url"
_DATEPICKER = "com.atlassian.jira.plugin.system.customfieldtypes:datepicker"
_SINGLE_ISSUE = "com.onresolve.jira.groovy.groovyrunner:single-issue-picker-cf"
_MULTI_ISSUE = "com.onresolve.jira.groovy.groovyrunner:multiple-issue-picker-cf"

DEFAULT_FIELD_MAPPINGS: tuple[FieldMappingDefinition, ...] = (
    FieldMappingDefinition("customfield_11302", "specification", _NFEED, "Specification"),
    FieldMappingDefinition("customfield_11807", "applied_for_version", _NFEED, "Applied for version"),
    FieldMappingDefinition("customfield_10512", "change_category", _SELECT, "Change Category"),
    FieldMappingDefinition("customfield_10511", "change_impact", _SELECT, "Change Impact"),
    FieldMappingDefinition("customfield_14909", "duplicate_issue", _SINGLE_ISSUE, "Duplicate Issue"),
    FieldMappingDefinition("customfield_11402", "grouping", _LABELS, "Grouping"),
    FieldMappingDefinition("customfield_11808", "raised_in_version", _NFEED, "Raised in version"),
    FieldMappingDefinition("customfield_14905", "related_issues", _MULTI_ISSUE, "Related Issues"),
    FieldMappingDefinition("customfield_11300", "related_artifacts", _NFEED, "Related Artifact(s)", sanitize=True),
    FieldMappingDefinition("customfield_11301", "related_pages", _NFEED, "Related Page(s)", sanitize=True),
    FieldMappingDefinition("customfield_10518", "related_sections", _TEXTFIELD, "Related Section(s)"),
    FieldMappingDefinition("customfield_10612", "related_url", _URL, "Related URL"),
    FieldMappingDefinition("customfield_10618", "resolution_description", _TEXTAREA, "Resolution Description"),
    FieldMappingDefinition("customfield_10525", "vote_date", _DATEPICKER, "Vote Date"),
    FieldMappingDefinition("customfield_10510", "vote", _TEXTFIELD, "Resolution Vote"),
    FieldMappingDefinition("customfield_11400", "work_group", _NFEED, "Work Group", sanitize=True),
)


class FieldMappingConfigError(RuntimeError):
    """Raised when a field-mapping override cannot be parsed."""


def _load_override(path: Path) -> object:
    if not path.exists():
        raise FieldMappingConfigError(f"Field mapping override file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise FieldMappingConfigError(f"Unable to read field mapping override file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(text)
        return json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise FieldMappingConfigError(f"Field mapping override file {path} is not valid: {exc}") from exc


def _optional_str(raw: Mapping[str, object], name: str) -> str | None:
    value = raw.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_definition(raw: object, position: int) -> FieldMappingDefinition:
    if not isinstance(raw, Mapping):
        raise FieldMappingConfigError(f"Mapping #{position} must be an object.")
    field_id = _optional_str(raw, "field_id")
    column = _optional_str(raw, "column")
    if not field_id:
        raise FieldMappingConfigError(f"Mapping #{position} requires a non-empty field_id.")
    if not column:
        raise FieldMappingConfigError(f"Mapping #{position} ({field_id}) requires a non-empty column.")
    return FieldMappingDefinition(
        field_id=field_id,
        column=column,
        field_key=_optional_str(raw, "field_key"),
        field_name=_optional_str(raw, "field_name"),
        sanitize=bool(raw.get("sanitize", False)),
    )


def _coerce_catalogue(data: object) -> tuple[FieldMappingDefinition, ...]:
    raw_mappings: object = data
    if isinstance(data, Mapping):
        raw_mappings = data.get("mappings")
    if not isinstance(raw_mappings, Sequence) or isinstance(raw_mappings, (str, bytes)):
        raise FieldMappingConfigError("Field mapping override must be a list or an object with a 'mappings' list.")

    definitions = tuple(_coerce_definition(raw, index) for index, raw in enumerate(raw_mappings, start=1))
    if not definitions:
        raise FieldMappingConfigError("Field mapping override contains no mappings.")

    seen: set[str] = set()
    for definition in definitions:
        if definition.field_id in seen:
            raise FieldMappingConfigError(f"Field id {definition.field_id} is mapped more than once.")
        seen.add(definition.field_id)
    return definitions


def load_field_mappings(env: Mapping[str, str] | None = None) -> tuple[FieldMappingDefinition, ...]:
    """
    Load the active field-mapping catalogue.

    If ``LOADER_FIELD_MAPPINGS_PATH`` is set, its JSON/YAML content replaces
    the built-in catalogue. Otherwise the defaults are used.
    """

    env_map = env or {}
    override_path = env_map.get("LOADER_FIELD_MAPPINGS_PATH")
    if not override_path:
        return DEFAULT_FIELD_MAPPINGS
    return _coerce_catalogue(_load_override(Path(override_path)))


__all__ = [
    "DEFAULT_FIELD_MAPPINGS",
    "FieldMappingConfigError",
    "FieldMappingDefinition",
    "load_field_mappings",
]
