"""
Export loader package.

Registers the ``flask loader`` CLI group and records loader settings inside
``app.extensions['loader']`` for the CLI and other helpers.
"""

from __future__ import annotations

from flask import Flask

LOADER_EXTENSION_KEY = "loader"

__all__ = ["init_loader", "LOADER_EXTENSION_KEY"]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        LOADER_EXTENSION_KEY,
        {
            "export_dir": None,
            "foreign_keys": True,
            "field_mapping_override": None,
        },
    )


def init_loader(app: Flask) -> None:
    """Mount the loader CLI group and record the configured loader settings."""
    from .cli import loader_cli

    state = _ensure_extension_state(app)
    state.update(
        {
            "export_dir": app.config.get("LOADER_EXPORT_DIR"),
            "foreign_keys": bool(app.config.get("LOADER_ENFORCE_FOREIGN_KEYS", True)),
            "field_mapping_override": app.config.get("LOADER_FIELD_MAPPINGS_PATH"),
        }
    )

    # Avoid duplicate registrations when running tests
    if loader_cli.name in app.cli.commands:
        app.cli.commands.pop(loader_cli.name)
    app.cli.add_command(loader_cli)
    app.logger.info("Loader CLI registered (export dir: %s)", state["export_dir"])
