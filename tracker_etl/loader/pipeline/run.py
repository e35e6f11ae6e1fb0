"""End-to-end loader run: bootstrap, merge every batch, promote fields."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from config.field_mappings import (
    DEFAULT_FIELD_MAPPINGS,
    FieldMappingConfigError,
    FieldMappingDefinition,
    load_field_mappings,
)
from tracker_etl.loader.adapters.jira_xml import DEFAULT_EXPORT_GLOB, discover_export_files
from tracker_etl.loader.errors import ExportDirectoryNotFound, LoaderConfigurationError
from tracker_etl.models import FieldValueRecord, db

from .merge import DEFAULT_CHUNK_SIZE, MergeLoadSummary, load_batches
from .promotion import PromotionSummary, promote_fields
from .schema import SchemaManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadSettings:
    """Options for one loader run."""

    export_dir: Path
    export_glob: str = DEFAULT_EXPORT_GLOB
    drop_tables: bool = False
    keep_field_source: bool = False
    drop_field_table: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    mappings: tuple[FieldMappingDefinition, ...] = DEFAULT_FIELD_MAPPINGS

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **overrides: Any) -> "LoadSettings":
        """
        Build settings from ``LOADER_*`` config keys; ``None`` overrides are ignored.

        Raises ``LoaderConfigurationError`` when the field-mapping override is
        unusable, before anything touches the store.
        """

        try:
            mappings = load_field_mappings(
                {"LOADER_FIELD_MAPPINGS_PATH": config.get("LOADER_FIELD_MAPPINGS_PATH") or ""}
            )
        except FieldMappingConfigError as exc:
            raise LoaderConfigurationError(str(exc)) from exc

        values: dict[str, Any] = {
            "export_dir": Path(config.get("LOADER_EXPORT_DIR") or "bulk"),
            "export_glob": config.get("LOADER_EXPORT_GLOB") or DEFAULT_EXPORT_GLOB,
            "drop_tables": bool(config.get("LOADER_DROP_TABLES", False)),
            "keep_field_source": bool(config.get("LOADER_KEEP_FIELD_SOURCE", False)),
            "drop_field_table": bool(config.get("LOADER_DROP_FIELD_TABLE", False)),
            "chunk_size": int(config.get("LOADER_INSERT_CHUNK_SIZE") or DEFAULT_CHUNK_SIZE),
            "mappings": tuple(mappings),
        }
        for name, value in overrides.items():
            if value is None:
                continue
            values[name] = Path(value) if name == "export_dir" else value
        return cls(**values)


@dataclass
class LoadRunSummary:
    export_dir: str
    files_found: int = 0
    dropped_tables: tuple[str, ...] = ()
    merge: MergeLoadSummary = field(default_factory=MergeLoadSummary)
    promotion: PromotionSummary = field(default_factory=PromotionSummary)
    field_table_dropped: bool = False
    next_keys: dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "export_dir": self.export_dir,
            "files_found": self.files_found,
            "dropped_tables": list(self.dropped_tables),
            "merge": self.merge.to_dict(),
            "promotion": self.promotion.to_dict(),
            "field_table_dropped": self.field_table_dropped,
            "next_keys": dict(self.next_keys),
            "duration_seconds": round(self.duration_seconds, 3),
        }


def run_load(
    settings: LoadSettings,
    *,
    session: Session | None = None,
    echo: Callable[[str], None] | None = None,
) -> LoadRunSummary:
    """
    Run the full pipeline against ``session`` (defaults to ``db.session``).

    A missing export directory raises ``ExportDirectoryNotFound`` before the
    store is touched.
    """

    started = time.monotonic()
    session = session or db.session
    export_dir = Path(settings.export_dir)
    if not export_dir.is_dir():
        raise ExportDirectoryNotFound(export_dir)

    summary = LoadRunSummary(export_dir=str(export_dir))
    schema = SchemaManager(session)

    if settings.drop_tables:
        summary.dropped_tables = schema.drop_all()
        if echo is not None:
            echo(f"Dropped {len(summary.dropped_tables)} tables")

    sequences = schema.bootstrap()

    files = discover_export_files(export_dir, settings.export_glob)
    summary.files_found = len(files)
    if not files:
        logger.warning("No export files matching %s under %s", settings.export_glob, export_dir)
    if echo is not None:
        echo(f"Found {len(files)} export files in {export_dir}")

    summary.merge = load_batches(files, session, sequences, chunk_size=settings.chunk_size, echo=echo)

    if echo is not None:
        echo("Promoting custom fields")
    summary.promotion = promote_fields(
        session,
        settings.mappings,
        keep_source=settings.keep_field_source,
        echo=echo,
    )

    if settings.drop_field_table:
        schema.drop_table(FieldValueRecord)
        summary.field_table_dropped = True

    summary.next_keys = {name: value + 1 for name, value in sequences.snapshot().items()}
    summary.duration_seconds = time.monotonic() - started
    logger.info(
        "Loader run finished: %s batches loaded, %s skipped",
        summary.merge.batches_loaded,
        summary.merge.batches_skipped,
        extra={"loader_summary": summary.to_dict()},
    )
    return summary
