"""
CLI commands for the export loader (``flask loader ...``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from flask.cli import ScriptInfo
from sqlalchemy.exc import SQLAlchemyError

from tracker_etl.loader import LOADER_EXTENSION_KEY
from tracker_etl.loader.errors import LoaderConfigurationError, SchemaError
from tracker_etl.loader.pipeline import (
    LoadRunSummary,
    LoadSettings,
    PromotionSummary,
    SchemaManager,
    promote_fields,
    run_load,
)
from tracker_etl.models import db


@click.group(name="loader", invoke_without_command=True)
@click.pass_context
def loader_cli(ctx):
    """
    Export loader commands.

    Displays the effective loader configuration when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if ctx.invoked_subcommand is None:
        try:
            settings = LoadSettings.from_config(app.config)
        except LoaderConfigurationError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo("Loader configuration:")
        click.echo(f"  database          : {app.config.get('SQLALCHEMY_DATABASE_URI')}")
        click.echo(f"  export_dir        : {settings.export_dir}")
        click.echo(f"  export_glob       : {settings.export_glob}")
        click.echo(f"  drop_tables       : {settings.drop_tables}")
        click.echo(f"  keep_field_source : {settings.keep_field_source}")
        click.echo(f"  drop_field_table  : {settings.drop_field_table}")
        click.echo(f"  field_mappings    : {len(settings.mappings)}")
        state = app.extensions.get(LOADER_EXTENSION_KEY, {})
        click.echo(f"  foreign_keys      : {'on' if state.get('foreign_keys', True) else 'off'}")
        click.echo(f"  mapping_override  : {state.get('field_mapping_override') or 'none'}")


def _format_summary(summary: LoadRunSummary) -> str:
    merge = summary.merge
    promotion = summary.promotion
    failed = ", ".join(promotion.failed_columns) if promotion.failed_columns else "none"
    return (
        f"Loaded {merge.batches_loaded} of {summary.files_found} export files from {summary.export_dir}.\n"
        f"  batches_skipped       : {merge.batches_skipped}\n"
        f"  issues_inserted       : {merge.total('issues_inserted')}\n"
        f"  issues_already_loaded : {merge.total('issues_skipped')}\n"
        f"  field_values_inserted : {merge.total('field_values_inserted')}\n"
        f"  comments_inserted     : {merge.total('comments_inserted')}\n"
        f"  items_rejected        : {merge.total('items_rejected')}\n"
        f"  empty_comments        : {merge.total('empty_comments')}\n"
        f"  promotion_updated     : {promotion.rows_updated}\n"
        f"  promotion_deleted     : {promotion.rows_deleted}\n"
        f"  promotion_cleanup     : {'failed' if promotion.delete_failed else 'ok'}\n"
        f"  promotion_failed      : {failed}\n"
        f"  field_table_dropped   : {summary.field_table_dropped}"
    )


def _format_promotion(summary: PromotionSummary) -> str:
    if summary.source_missing:
        return "Field value table is absent; nothing was promoted."
    failed = ", ".join(summary.failed_columns) if summary.failed_columns else "none"
    return (
        f"Promoted {summary.rows_updated} values across {len(summary.column_counts)} columns.\n"
        f"  rows_deleted    : {summary.rows_deleted}\n"
        f"  cleanup         : {'failed' if summary.delete_failed else 'ok'}\n"
        f"  source_retained : {summary.source_retained}\n"
        f"  failed_columns  : {failed}"
    )


@loader_cli.command("run")
@click.option(
    "--export-dir",
    type=click.Path(path_type=Path, file_okay=False),
    help="Directory searched recursively for export files (default: LOADER_EXPORT_DIR).",
)
@click.option("--drop-tables/--no-drop-tables", default=None, help="Drop every table before loading.")
@click.option(
    "--keep-field-source/--no-keep-field-source",
    default=None,
    help="Keep field value rows after they are promoted onto issues.",
)
@click.option("--drop-field-table", is_flag=True, default=None, help="Drop the field value table after promotion.")
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload after completion.")
@click.pass_context
def loader_run(
    ctx,
    export_dir: Optional[Path],
    drop_tables: Optional[bool],
    keep_field_source: Optional[bool],
    drop_field_table: Optional[bool],
    summary_json: bool,
):
    """Load every export file, then promote custom fields onto issues."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            settings = LoadSettings.from_config(
                app.config,
                export_dir=export_dir,
                drop_tables=drop_tables,
                keep_field_source=keep_field_source,
                drop_field_table=drop_field_table or None,
            )
            summary = run_load(settings, session=db.session, echo=click.echo)
        except LoaderConfigurationError as exc:
            raise click.ClickException(str(exc)) from exc
        except SchemaError as exc:
            db.session.rollback()
            raise click.ClickException(f"Schema operation failed: {exc}") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise click.ClickException(f"Loader run failed: {exc}") from exc

    click.echo(_format_summary(summary))
    if summary_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))


@loader_cli.command("drop-tables")
@click.confirmation_option(prompt="Drop every table in the configured database?")
@click.pass_context
def loader_drop_tables(ctx):
    """Drop every table in one transaction with foreign keys relaxed."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            dropped = SchemaManager(db.session).drop_all()
        except SchemaError as exc:
            raise click.ClickException(f"Drop failed; no table was removed: {exc}") from exc
    if not dropped:
        click.echo("No tables to drop.")
        return
    click.echo(f"Dropped {len(dropped)} table(s): {', '.join(dropped)}")


@loader_cli.command("promote")
@click.option(
    "--keep-field-source/--no-keep-field-source",
    default=None,
    help="Keep field value rows after they are promoted onto issues.",
)
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload after completion.")
@click.pass_context
def loader_promote(ctx, keep_field_source: Optional[bool], summary_json: bool):
    """Promote custom-field values onto issue columns without loading."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            settings = LoadSettings.from_config(app.config, keep_field_source=keep_field_source)
            SchemaManager(db.session).bootstrap()
            summary = promote_fields(
                db.session,
                settings.mappings,
                keep_source=settings.keep_field_source,
                echo=click.echo,
            )
        except LoaderConfigurationError as exc:
            raise click.ClickException(str(exc)) from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise click.ClickException(f"Promotion failed: {exc}") from exc

    click.echo(_format_promotion(summary))
    if summary_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))


@loader_cli.command("status")
@click.pass_context
def loader_status(ctx):
    """Show row counts, next surrogate keys and foreign-key enforcement."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        schema = SchemaManager(db.session)
        counts = schema.table_counts()
        next_keys = schema.next_keys()
        foreign_keys = schema.foreign_keys_enabled()

    click.echo("Loader tables:")
    for table, count in counts.items():
        if count is None:
            click.echo(f"  {table:<13}: absent")
            continue
        click.echo(f"  {table:<13}: {count} rows (next id {next_keys[table]})")
    click.echo(f"  foreign_keys : {'on' if foreign_keys else 'off'}")
