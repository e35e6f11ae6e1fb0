"""
Schema manager for the loader tables.

Creates and drops the tables and owns the per-table surrogate key sequences.
Sequences are seeded from the current ``MAX(id)`` of each table so keys handed
out by one process run never collide with rows written by an earlier run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from tracker_etl.loader.errors import SchemaDropError, SchemaNotReady
from tracker_etl.models import LOADER_MODELS, CommentRecord, FieldValueRecord, IssueRecord, db

from .transactions import foreign_keys_relaxed, quote_table, read_foreign_keys

logger = logging.getLogger(__name__)


@dataclass
class KeySequence:
    """Monotonic surrogate key counter for one table."""

    table: str
    current: int = 0

    def next(self) -> int:
        self.current += 1
        return self.current


class KeySequences:
    """Handle over the per-table sequences, passed to the record mapper."""

    def __init__(self, sequences: Mapping[str, KeySequence]) -> None:
        self._sequences = dict(sequences)

    def __getitem__(self, table: str) -> KeySequence:
        return self._sequences[table]

    @property
    def issues(self) -> KeySequence:
        return self._sequences[IssueRecord.__tablename__]

    @property
    def field_values(self) -> KeySequence:
        return self._sequences[FieldValueRecord.__tablename__]

    @property
    def comments(self) -> KeySequence:
        return self._sequences[CommentRecord.__tablename__]

    def snapshot(self) -> dict[str, int]:
        return {name: sequence.current for name, sequence in self._sequences.items()}


class SchemaManager:
    """Bootstraps, inspects and drops the loader schema."""

    def __init__(self, session: Session, models: Sequence[type[db.Model]] = LOADER_MODELS) -> None:
        self.session = session
        self.models = tuple(models)
        self._sequences: KeySequences | None = None

    @property
    def engine(self):
        return self.session.get_bind()

    @property
    def sequences(self) -> KeySequences:
        if self._sequences is None:
            raise SchemaNotReady("Schema has not been bootstrapped; call bootstrap() first.")
        return self._sequences

    @property
    def is_ready(self) -> bool:
        return self._sequences is not None

    def bootstrap(self) -> KeySequences:
        """Create missing tables and indexes, then seed key sequences."""

        logger.info("Initializing database schema")
        tables = [model.__table__ for model in self.models]
        db.metadata.create_all(bind=self.engine, tables=tables, checkfirst=True)

        sequences = {
            model.__tablename__: KeySequence(model.__tablename__, self._max_key(model)) for model in self.models
        }
        self.session.commit()

        self._sequences = KeySequences(sequences)
        logger.info("Database schema is ready", extra={"loader_sequences": self._sequences.snapshot()})
        return self._sequences

    def drop_all(self) -> tuple[str, ...]:
        """
        Drop every user table in one transaction with foreign keys relaxed.

        Either every table is dropped or none is. Key sequences are discarded
        on success, so ``bootstrap()`` must run again before loading.
        """

        self.session.close()
        dropped: list[str] = []
        with self.engine.connect() as connection:
            with foreign_keys_relaxed(connection):
                with connection.begin():
                    table_names = inspect(connection).get_table_names()
                    if not table_names:
                        logger.info("No user tables found")
                    for name in table_names:
                        try:
                            self._drop_table(connection, name)
                        except Exception as exc:
                            logger.error(
                                "Failed to drop table %s; rolling back drop",
                                name,
                                extra={"loader_table": name},
                            )
                            raise SchemaDropError(name, exc) from exc
                        dropped.append(name)
                        logger.info("Dropped table %s", name, extra={"loader_table": name})

        self._sequences = None
        return tuple(dropped)

    def drop_table(self, model: type[db.Model]) -> None:
        """Drop a single loader table (children only; parents stay referenced)."""

        self.session.close()
        with self.engine.begin() as connection:
            model.__table__.drop(bind=connection, checkfirst=True)
        logger.info("Dropped table %s", model.__tablename__, extra={"loader_table": model.__tablename__})

    def table_counts(self) -> dict[str, int | None]:
        """Row count per loader table; ``None`` when the table is absent."""

        existing = set(inspect(self.engine).get_table_names())
        counts: dict[str, int | None] = {}
        for model in self.models:
            if model.__tablename__ not in existing:
                counts[model.__tablename__] = None
                continue
            counts[model.__tablename__] = self.session.execute(
                select(func.count()).select_from(model.__table__)
            ).scalar_one()
        return counts

    def next_keys(self) -> dict[str, int | None]:
        """Key the next inserted row would receive; ``None`` when the table is absent."""

        existing = set(inspect(self.engine).get_table_names())
        return {
            model.__tablename__: self._max_key(model) + 1 if model.__tablename__ in existing else None
            for model in self.models
        }

    def foreign_keys_enabled(self) -> bool:
        with self.engine.connect() as connection:
            return read_foreign_keys(connection)

    def _max_key(self, model: type[db.Model]) -> int:
        max_key = self.session.execute(select(func.max(model.__table__.c.id))).scalar()
        return int(max_key or 0)

    @staticmethod
    def _drop_table(connection: Connection, name: str) -> None:
        if connection.dialect.name == "sqlite":
            connection.exec_driver_sql(f"DROP TABLE IF EXISTS {quote_table(connection, name)}")
        else:
            connection.exec_driver_sql(f"DROP TABLE IF EXISTS {quote_table(connection, name)} CASCADE")

