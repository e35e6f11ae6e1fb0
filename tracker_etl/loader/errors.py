"""
Exception taxonomy for the export loader.

Configuration and schema errors are fatal for a run. Batch and item errors are
recorded and skipped by the merge loader.
"""

from __future__ import annotations

from pathlib import Path


class LoaderError(Exception):
    """Base class for loader failures."""


class LoaderConfigurationError(LoaderError):
    """Raised when run settings are unusable; nothing has been mutated yet."""


class ExportDirectoryNotFound(LoaderConfigurationError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Export directory '{path}' not found.")
        self.path = path


class BatchError(LoaderError):
    """A single export file could not be turned into items."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class BatchParseError(BatchError):
    """The export file is not well-formed or not an export document."""


class EmptyBatchError(BatchError):
    """The export file parsed but contains no items."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, "no items found")


class MissingNaturalKey(ValueError):
    """Raised when an item carries no usable issue key."""

    def __init__(self, title: str | None) -> None:
        super().__init__(f"Item '{title or 'Unknown Title'}' has no issue key.")
        self.title = title


class SchemaError(LoaderError):
    """Base class for schema-manager failures."""


class IntegrityToggleError(SchemaError):
    """Foreign-key enforcement could not be switched off; nothing was dropped."""


class SchemaDropError(SchemaError):
    """A table drop failed and the whole drop was rolled back."""

    def __init__(self, table: str, cause: Exception) -> None:
        super().__init__(f"Failed to drop table '{table}': {cause}")
        self.table = table
        self.cause = cause


class SchemaNotReady(SchemaError):
    """Key sequences were requested before the schema was bootstrapped."""


class PromotionMappingError(LoaderError):
    """One field-promotion mapping could not be applied."""

    def __init__(self, column: str, message: str) -> None:
        super().__init__(f"Cannot promote into column '{column}': {message}")
        self.column = column
