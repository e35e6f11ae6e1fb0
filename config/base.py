# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=1):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, number)


def _sqlite_uri(path):
    # Windows needs forward slashes in the URI; three slashes + absolute path.
    normalized = os.path.abspath(path).replace("\\", "/")
    return f"sqlite:///{normalized}"


def _resolve_database_uri(default_path):
    uri = os.environ.get("DATABASE_URL")
    if uri:
        if uri.startswith("postgres://"):
            uri = uri.replace("postgres://", "postgresql://", 1)
        return uri
    db_path = os.environ.get("LOADER_DB_PATH") or default_path
    return _sqlite_uri(db_path)


_config_dir = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(_config_dir)
INSTANCE_PATH = os.path.join(PROJECT_ROOT, "instance")
DEFAULT_DB_PATH = os.path.join(INSTANCE_PATH, "jira_issues.sqlite")

SQLITE_CONNECT_ARGS = {
    "check_same_thread": False,
    "timeout": 5,
}


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SQLALCHEMY_DATABASE_URI = _resolve_database_uri(DEFAULT_DB_PATH)

    # Loader configuration
    LOADER_EXPORT_DIR = os.environ.get("LOADER_EXPORT_DIR", "bulk")
    LOADER_EXPORT_GLOB = os.environ.get("LOADER_EXPORT_GLOB", "*.xml")
    LOADER_DROP_TABLES = _coerce_bool(os.environ.get("LOADER_DROP_TABLES"), default=False)
    LOADER_KEEP_FIELD_SOURCE = _coerce_bool(os.environ.get("LOADER_KEEP_FIELD_SOURCE"), default=False)
    LOADER_DROP_FIELD_TABLE = _coerce_bool(os.environ.get("LOADER_DROP_FIELD_TABLE"), default=False)
    LOADER_INSERT_CHUNK_SIZE = _coerce_int(os.environ.get("LOADER_INSERT_CHUNK_SIZE"), 500)
    LOADER_ENFORCE_FOREIGN_KEYS = _coerce_bool(os.environ.get("LOADER_ENFORCE_FOREIGN_KEYS"), default=True)
    LOADER_FIELD_MAPPINGS_PATH = os.environ.get("LOADER_FIELD_MAPPINGS_PATH")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if Config.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": dict(SQLITE_CONNECT_ARGS)}


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"  # In-memory database for testing
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": dict(SQLITE_CONNECT_ARGS)}
    LOADER_FIELD_MAPPINGS_PATH = None


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_ECHO = False
    if Config.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": dict(SQLITE_CONNECT_ARGS)}
