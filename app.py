# app.py

import logging
import os
import sqlite3

from dotenv import load_dotenv
from flask import Flask
from sqlalchemy import event
from sqlalchemy.engine import make_url

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from tracker_etl.loader import init_loader  # noqa: E402
from tracker_etl.models import db  # noqa: E402
from tracker_etl.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

_ENVIRONMENTS = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}


def _configure_sqlite_connection_factory(*, enable_foreign_keys: bool):
    """Return a connection hook applying concurrency-friendly pragmas."""

    def _configure_sqlite_connection(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        # Transactions are opened by the "begin" hook below, so DDL is transactional too.
        dbapi_connection.isolation_level = None
        try:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)

    return _configure_sqlite_connection


def _begin_sqlite_transaction(connection):  # pragma: no cover - instrumentation
    connection.exec_driver_sql("BEGIN")


def _ensure_sqlite_directory(uri: str) -> None:
    url = make_url(uri)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return
    directory = os.path.dirname(os.path.abspath(url.database))
    os.makedirs(directory, exist_ok=True)


def create_app(config_object=None, monitoring_object=None, **overrides) -> Flask:
    """
    Build the Flask application.

    The configuration is chosen from ``FLASK_ENV`` unless ``config_object`` is
    given; keyword overrides are applied last.
    """
    flask_env = os.environ.get("FLASK_ENV", "development")
    default_config, default_monitoring = _ENVIRONMENTS.get(flask_env, _ENVIRONMENTS["development"])

    # Validate environment variables (only in production)
    if config_object is None and flask_env == "production":
        validate_and_exit(flask_env)

    app = Flask(__name__)
    app.config.from_object(config_object or default_config)
    app.config.from_object(monitoring_object or default_monitoring)
    app.config.update(overrides)

    _ensure_sqlite_directory(app.config["SQLALCHEMY_DATABASE_URI"])
    db.init_app(app)

    setup_logging(app)

    with app.app_context():
        engine = db.engine
        if engine.url.drivername.startswith("sqlite"):
            if not getattr(engine, "_sqlite_pragmas_configured", False):
                pragma_hook = _configure_sqlite_connection_factory(
                    enable_foreign_keys=bool(app.config.get("LOADER_ENFORCE_FOREIGN_KEYS", True))
                )
                event.listen(engine, "connect", pragma_hook)
                event.listen(engine, "begin", _begin_sqlite_transaction)
                engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]

    init_loader(app)
    return app


app = create_app()


if __name__ == "__main__":
    from flask.cli import ScriptInfo

    from tracker_etl.loader.cli import loader_cli

    loader_cli(obj=ScriptInfo(create_app=lambda: app))
