"""
Transaction and integrity-pragma helpers for destructive store operations.

SQLite ignores ``PRAGMA foreign_keys`` inside an open transaction, so the
toggle is issued on the raw driver connection before the caller begins its
transaction and restored after that transaction has ended.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from tracker_etl.loader.errors import IntegrityToggleError

logger = logging.getLogger(__name__)


def _is_sqlite(connection: Connection) -> bool:
    return connection.dialect.name == "sqlite"


def read_foreign_keys(connection: Connection) -> bool:
    """Return the current foreign-key enforcement flag (always True off SQLite)."""

    if not _is_sqlite(connection):
        return True
    driver = connection.connection.driver_connection
    row = driver.execute("PRAGMA foreign_keys").fetchone()
    return bool(row and row[0])


def _set_foreign_keys(connection: Connection, enabled: bool) -> None:
    driver = connection.connection.driver_connection
    driver.execute(f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'}")


@contextmanager
def foreign_keys_relaxed(connection: Connection) -> Iterator[None]:
    """
    Disable foreign-key enforcement for the duration of the block.

    Raises ``IntegrityToggleError`` before yielding when enforcement cannot be
    switched off. The previous setting is restored on every exit path; a
    failed restore is logged and never replaces an error raised in the block.
    """

    if not _is_sqlite(connection):
        yield
        return

    if connection.in_transaction():
        raise IntegrityToggleError("Cannot relax foreign keys while a transaction is open.")

    previous = read_foreign_keys(connection)
    try:
        _set_foreign_keys(connection, False)
    except sqlite3.Error as exc:
        raise IntegrityToggleError(f"Failed to disable foreign keys: {exc}") from exc
    if read_foreign_keys(connection):
        raise IntegrityToggleError("Foreign-key enforcement is still active after PRAGMA foreign_keys = OFF.")

    logger.debug("Foreign-key enforcement disabled")
    try:
        yield
    except BaseException:
        # The error raised inside the block wins over a failed restore.
        _restore_foreign_keys(connection, previous)
        raise
    if not _restore_foreign_keys(connection, previous):
        raise IntegrityToggleError("Failed to restore foreign-key enforcement.")


def _restore_foreign_keys(connection: Connection, previous: bool) -> bool:
    try:
        _set_foreign_keys(connection, previous)
    except sqlite3.Error as exc:
        logger.error("Failed to restore foreign-key enforcement: %s", exc, extra={"loader_foreign_keys": previous})
        return False
    logger.debug("Foreign-key enforcement restored", extra={"loader_foreign_keys": previous})
    return True


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Commit the block as one unit; roll back on any exit other than success."""

    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def quote_table(connection: Connection, name: str) -> str:
    return connection.dialect.identifier_preparer.quote_identifier(name)
