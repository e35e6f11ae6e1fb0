"""Export-file adapters used by the loader."""

from __future__ import annotations

from .jira_xml import (
    DEFAULT_EXPORT_GLOB,
    JiraComment,
    JiraCustomField,
    JiraItem,
    JiraXmlAdapter,
    JiraXmlStatistics,
    discover_export_files,
)

__all__ = [
    "DEFAULT_EXPORT_GLOB",
    "JiraComment",
    "JiraCustomField",
    "JiraItem",
    "JiraXmlAdapter",
    "JiraXmlStatistics",
    "discover_export_files",
]
