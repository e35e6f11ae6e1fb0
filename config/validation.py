# config/validation.py

"""
Environment variable validation for the loader.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    if not os.environ.get("DATABASE_URL") and not os.environ.get("LOADER_DB_PATH"):
        errors.append(
            "DATABASE_URL or LOADER_DB_PATH is required in production. "
            "Point it at the store the exports should be merged into."
        )

    mappings_path = os.environ.get("LOADER_FIELD_MAPPINGS_PATH")
    if mappings_path and not os.path.isfile(mappings_path):
        errors.append(f"LOADER_FIELD_MAPPINGS_PATH points at '{mappings_path}', which is not a file.")

    chunk_size = os.environ.get("LOADER_INSERT_CHUNK_SIZE")
    if chunk_size is not None:
        try:
            if int(chunk_size) < 1:
                raise ValueError(chunk_size)
        except ValueError:
            errors.append("LOADER_INSERT_CHUNK_SIZE must be a positive integer.")

    log_format = os.environ.get("LOG_FORMAT")
    if log_format and log_format.lower() not in {"json", "text"}:
        errors.append("LOG_FORMAT must be 'json' or 'text'.")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
