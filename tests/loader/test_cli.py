import json

from sqlalchemy import insert, inspect, select

from tracker_etl.loader import LOADER_EXTENSION_KEY, init_loader
from tracker_etl.models import FieldValueRecord, IssueRecord, db


def _json_payload(output):
    return json.loads(output[output.index("\n{") + 1 :])


def _table_names():
    return set(inspect(db.engine).get_table_names())


def test_init_loader_records_extension_state(app):
    state = app.extensions[LOADER_EXTENSION_KEY]

    assert state["foreign_keys"] is True
    assert state["field_mapping_override"] is None
    assert "loader" in app.cli.commands


def test_loader_group_prints_configuration(runner):
    result = runner.invoke(args=["loader"])

    assert result.exit_code == 0, result.output
    assert "Loader configuration:" in result.output
    assert "field_mappings    : 16" in result.output
    assert "foreign_keys      : on" in result.output
    assert "mapping_override  : none" in result.output


def test_loader_group_reflects_registered_settings(app, runner):
    app.config["LOADER_ENFORCE_FOREIGN_KEYS"] = False
    init_loader(app)

    result = runner.invoke(args=["loader"])

    assert app.extensions[LOADER_EXTENSION_KEY]["foreign_keys"] is False
    assert "foreign_keys      : off" in result.output


def test_run_loads_exports_and_reports_summary(runner, export_dir, export_writer):
    export_writer(
        "2024-01-07.xml",
        [
            {"key": "FHIR-1", "custom_fields": [{"id": "customfield_11302", "values": ["Stale"]}]},
            {"key": "FHIR-2"},
        ],
    )
    export_writer(
        "nested/2024-01-14.xml",
        [
            {
                "key": "FHIR-1",
                "custom_fields": [{"id": "customfield_11302", "values": ["FHIR Core"]}],
                "comments": [{"id": "7", "body": "Agreed"}],
            }
        ],
    )

    result = runner.invoke(args=["loader", "run", "--export-dir", str(export_dir), "--summary-json"])

    assert result.exit_code == 0, result.output
    assert "Loaded 2 of 2 export files" in result.output
    payload = _json_payload(result.output)
    assert payload["files_found"] == 2
    assert payload["merge"]["issues_inserted"] == 2
    assert payload["merge"]["comments_inserted"] == 1
    assert payload["promotion"]["column_counts"]["specification"] == 1
    assert payload["next_keys"]["issues"] == 4

    issue = db.session.execute(select(IssueRecord).where(IssueRecord.key == "FHIR-1")).scalar_one()
    assert issue.specification == "FHIR Core"
    assert issue.source_batch == "2024-01-14.xml"


def test_run_with_missing_export_dir_touches_nothing(runner, tmp_path):
    result = runner.invoke(args=["loader", "run", "--export-dir", str(tmp_path / "missing")])

    assert result.exit_code != 0
    assert "not found" in result.output
    assert _table_names() == set()


def test_run_rejects_unusable_mapping_override(app, runner, export_dir, tmp_path):
    override = tmp_path / "mappings.json"
    override.write_text("{not json", encoding="utf-8")
    app.config["LOADER_FIELD_MAPPINGS_PATH"] = str(override)

    result = runner.invoke(args=["loader", "run", "--export-dir", str(export_dir)])

    assert result.exit_code != 0
    assert "is not valid" in result.output
    assert _table_names() == set()


def test_run_can_drop_field_table(runner, export_dir, export_writer):
    export_writer("2024-01-07.xml", [{"key": "FHIR-1"}])

    result = runner.invoke(args=["loader", "run", "--export-dir", str(export_dir), "--drop-field-table"])

    assert result.exit_code == 0, result.output
    assert "field_table_dropped   : True" in result.output
    assert _table_names() == {"issues", "comments"}


def test_drop_tables_command(runner, schema):
    result = runner.invoke(args=["loader", "drop-tables", "--yes"])

    assert result.exit_code == 0, result.output
    assert "Dropped 3 table(s)" in result.output
    assert _table_names() == set()

    again = runner.invoke(args=["loader", "drop-tables", "--yes"])
    assert "No tables to drop." in again.output


def test_drop_tables_requires_confirmation(runner, schema):
    result = runner.invoke(args=["loader", "drop-tables"], input="n\n")

    assert result.exit_code != 0
    assert {"issues", "field_values", "comments"} <= _table_names()


def test_promote_command(runner, schema):
    db.session.execute(insert(IssueRecord.__table__), [{"id": 1, "key": "FHIR-1"}])
    db.session.execute(
        insert(FieldValueRecord.__table__),
        [
            {
                "id": 1,
                "issue_id": 1,
                "issue_key": "FHIR-1",
                "field_id": "customfield_11400",
                "field_value": " Orders &amp; Observations\n",
            }
        ],
    )
    db.session.commit()

    result = runner.invoke(args=["loader", "promote", "--summary-json"])

    assert result.exit_code == 0, result.output
    assert "Promoted 1 values across 16 columns." in result.output
    assert _json_payload(result.output)["rows_deleted"] == 1
    db.session.expire_all()
    issue = db.session.execute(select(IssueRecord).where(IssueRecord.key == "FHIR-1")).scalar_one()
    assert issue.work_group == "Orders & Observations"


def test_status_command(runner, export_dir, export_writer):
    before = runner.invoke(args=["loader", "status"])
    assert before.exit_code == 0, before.output
    assert before.output.count("absent") == 3

    export_writer("2024-01-07.xml", [{"key": "FHIR-1"}, {"key": "FHIR-2"}])
    runner.invoke(args=["loader", "run", "--export-dir", str(export_dir)])

    after = runner.invoke(args=["loader", "status"])
    assert "2 rows (next id 3)" in after.output
    assert "foreign_keys : on" in after.output
