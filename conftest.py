# conftest.py

import os
import tempfile
import uuid

import pytest

# Set testing environment BEFORE importing app so the module-level app
# picks TestingConfig and never touches the development database.
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import create_app  # noqa: E402
from config import TestingConfig  # noqa: E402
from config.monitoring import TestingMonitoringConfig  # noqa: E402
from tracker_etl.models import db  # noqa: E402


def _remove_database_files(path):
    # WAL mode leaves side files next to the database.
    for candidate in (path, f"{path}-wal", f"{path}-shm"):
        try:
            if os.path.exists(candidate):
                os.unlink(candidate)
        except OSError:
            pass


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    # Create a unique temporary database file for each test
    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        flask_app = create_app(
            TestingConfig,
            TestingMonitoringConfig,
            SQLALCHEMY_DATABASE_URI=f"sqlite:///{temp_db}",
            LOG_LEVEL="DEBUG",
            LOADER_FIELD_MAPPINGS_PATH=None,
        )
        with flask_app.app_context():
            yield flask_app
            # Clean up: release pooled connections before the file goes away
            db.session.remove()
            db.engine.dispose()
    finally:
        # Always close and remove the temporary database file, even on error
        try:
            os.close(db_fd)
        except OSError:
            pass
        _remove_database_files(temp_db)


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers"""
    for item in items:
        # Add slow marker to integration tests
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.slow)
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
