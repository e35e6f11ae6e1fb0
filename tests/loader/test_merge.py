from pathlib import Path

from sqlalchemy import func, select

from tracker_etl.loader.pipeline import (
    IssueRow,
    MergeLoader,
    SchemaManager,
    load_batches,
    order_batches,
    select_first_seen,
)
from tracker_etl.models import CommentRecord, FieldValueRecord, IssueRecord, db


def _issues():
    return {issue.key: issue for issue in db.session.scalars(select(IssueRecord))}


def _count(model):
    return db.session.execute(select(func.count()).select_from(model.__table__)).scalar_one()


def _field_rows():
    rows = db.session.scalars(select(FieldValueRecord).order_by(FieldValueRecord.id))
    return [(row.issue_key, row.issue_id, row.field_id, row.field_value) for row in rows]


def test_order_batches_sorts_by_file_name_descending():
    paths = [Path("a/2024-01-07.xml"), Path("b/2024-01-14.xml"), Path("2023-12-31.xml")]

    ordered = order_batches(paths)

    assert [path.name for path in ordered] == ["2024-01-14.xml", "2024-01-07.xml", "2023-12-31.xml"]


def test_select_first_seen_keeps_first_occurrence():
    rows = [IssueRow(id=1, key="A"), IssueRow(id=2, key="B"), IssueRow(id=3, key="A"), IssueRow(id=4, key="C")]

    result = select_first_seen(rows, existing_keys={"C"}, existing_ids=set())

    assert [row.id for row in result.accepted] == [1, 2]
    assert [row.id for row in result.skipped] == [3, 4]


def test_select_first_seen_skips_surrogate_collisions():
    existing_keys = {"Z"}
    rows = [IssueRow(id=5, key="A"), IssueRow(id=6, key="B")]

    result = select_first_seen(rows, existing_keys=existing_keys, existing_ids={5})

    assert [row.key for row in result.accepted] == ["B"]
    assert [row.key for row in result.skipped] == ["A"]
    assert existing_keys == {"Z"}


def test_freshest_batch_wins_regardless_of_input_order(schema, export_writer):
    older = export_writer("2024-01-07.xml", [{"key": "X-1", "summary": "Stale"}, {"key": "X-2"}])
    newer = export_writer("2024-01-14.xml", [{"key": "X-1", "summary": "Fresh"}])

    summary = load_batches([older, newer], db.session, schema.sequences)

    issues = _issues()
    assert issues["X-1"].summary == "Fresh"
    assert issues["X-1"].source_batch == "2024-01-14.xml"
    assert issues["X-2"].source_batch == "2024-01-07.xml"
    assert [batch.batch for batch in summary.batches] == ["2024-01-14.xml", "2024-01-07.xml"]
    assert summary.batches[1].issues_skipped == 1
    assert summary.total("issues_inserted") == 2


def test_rerunning_the_same_batches_changes_nothing(schema, export_writer):
    files = [
        export_writer(
            "2024-01-07.xml",
            [
                {
                    "key": "X-1",
                    "custom_fields": [{"id": "customfield_1", "values": ["one"]}],
                    "comments": [{"id": "100", "body": "hello"}],
                },
                {"key": "X-2"},
            ],
        ),
        export_writer("2024-01-14.xml", [{"key": "X-3"}]),
    ]

    first = MergeLoader(db.session, schema.sequences, chunk_size=1).load_batches(files)
    counts = (_count(IssueRecord), _count(FieldValueRecord), _count(CommentRecord))
    second = MergeLoader(db.session, schema.sequences, chunk_size=1).load_batches(files)

    assert counts == (3, 1, 1)
    assert (_count(IssueRecord), _count(FieldValueRecord), _count(CommentRecord)) == counts
    assert first.total("issues_inserted") == 3
    assert second.total("issues_inserted") == 0
    assert second.total("issues_skipped") == 3
    assert second.total("field_values_skipped") == 1
    assert second.total("comments_skipped") == 1


def test_surrogate_keys_continue_across_runs(app, export_writer):
    first_manager = SchemaManager(db.session)
    first_manager.bootstrap()
    first_file = export_writer("2024-01-07.xml", [{"key": "X-1"}, {"key": "X-2"}])
    load_batches([first_file], db.session, first_manager.sequences)

    second_manager = SchemaManager(db.session)
    second_manager.bootstrap()
    load_batches([export_writer("2024-01-14.xml", [{"key": "X-3"}])], db.session, second_manager.sequences)

    issues = _issues()
    assert sorted(issue.id for issue in issues.values()) == [1, 2, 3]
    assert issues["X-3"].id == 3


def test_unreadable_batches_are_skipped_and_the_run_continues(schema, export_writer):
    files = [
        export_writer("2024-01-21.xml", raw="<rss><channel><item>"),
        export_writer("2024-01-14.xml", raw=""),
        export_writer("2024-01-07.xml", [{"key": "X-1"}]),
    ]

    summary = load_batches(files, db.session, schema.sequences)

    assert summary.batches_loaded == 1
    assert summary.batches_skipped == 2
    statuses = {batch.batch: (batch.status, batch.error is not None) for batch in summary.batches}
    assert statuses == {
        "2024-01-21.xml": ("skipped", True),
        "2024-01-14.xml": ("skipped", True),
        "2024-01-07.xml": ("loaded", False),
    }
    assert set(_issues()) == {"X-1"}


def test_items_without_key_are_rejected_individually(schema, export_writer):
    path = export_writer("2024-01-07.xml", [{"key": "X-1"}, {"key": None, "title": "No key here"}, {"key": "X-2"}])

    summary = load_batches([path], db.session, schema.sequences)

    batch = summary.batches[0]
    assert batch.items_read == 3
    assert batch.items_rejected == 1
    assert batch.issues_inserted == 2
    assert set(_issues()) == {"X-1", "X-2"}
    assert sorted(issue.id for issue in _issues().values()) == [1, 2]


def test_empty_comments_are_not_stored(schema, export_writer):
    path = export_writer(
        "2024-01-07.xml",
        [
            {
                "key": "X-1",
                "comments": [
                    {"id": "1", "body": "Real comment"},
                    {"id": "2", "body": "   "},
                    {"id": "3", "body": ""},
                ],
            }
        ],
    )

    summary = load_batches([path], db.session, schema.sequences)

    assert summary.batches[0].comments_inserted == 1
    assert summary.batches[0].empty_comments == 2
    bodies = list(db.session.scalars(select(CommentRecord.body)))
    assert bodies == ["Real comment"]


def test_children_of_skipped_issue_copies_are_skipped(schema, export_writer):
    older = export_writer(
        "2024-01-07.xml",
        [
            {
                "key": "X-1",
                "custom_fields": [
                    {"id": "customfield_1", "values": ["old"]},
                    {"id": "customfield_9", "values": ["only in old"]},
                ],
                "comments": [{"id": "10", "body": "shared"}, {"id": "11", "body": "older only"}],
            }
        ],
    )
    newer = export_writer(
        "2024-01-14.xml",
        [
            {
                "key": "X-1",
                "custom_fields": [{"id": "customfield_1", "values": ["new"]}],
                "comments": [{"id": "10", "body": "shared"}],
            }
        ],
    )

    summary = load_batches([older, newer], db.session, schema.sequences)

    surviving_id = _issues()["X-1"].id
    assert _field_rows() == [("X-1", surviving_id, "customfield_1", "new")]
    comments = list(db.session.scalars(select(CommentRecord).order_by(CommentRecord.comment_key)))
    assert [(comment.comment_key, comment.issue_id) for comment in comments] == [("10", surviving_id)]
    older_summary = summary.batches[1]
    assert older_summary.issues_skipped == 1
    assert older_summary.field_values_inserted == 0
    assert older_summary.field_values_skipped == 2
    assert older_summary.comments_inserted == 0
    assert older_summary.comments_skipped == 2


def test_field_cleared_in_newest_copy_stays_cleared(schema, export_writer):
    older = export_writer(
        "2024-01-07.xml",
        [{"key": "X-1", "summary": "Old", "custom_fields": [{"id": "customfield_1", "values": ["Alpha"]}]}],
    )
    newer = export_writer("2024-01-14.xml", [{"key": "X-1", "summary": "New"}])

    load_batches([older, newer], db.session, schema.sequences)

    assert _issues()["X-1"].summary == "New"
    assert _field_rows() == []


def test_later_run_skips_children_of_stored_issue(schema, export_writer):
    load_batches(
        [export_writer("2024-01-07.xml", [{"key": "X-1", "summary": "Original"}])],
        db.session,
        schema.sequences,
    )

    older = export_writer(
        "2023-12-31.xml",
        [{"key": "X-1", "summary": "Stale", "custom_fields": [{"id": "customfield_5", "values": ["v"]}]}],
    )
    summary = load_batches([older], db.session, schema.sequences)

    assert _issues()["X-1"].summary == "Original"
    assert summary.batches[0].issues_skipped == 1
    assert summary.batches[0].field_values_skipped == 1
    assert _field_rows() == []


def test_echo_receives_one_line_per_batch(schema, export_writer):
    lines = []
    files = [export_writer("2024-01-07.xml", [{"key": "X-1"}]), export_writer("bad.xml", raw="<nope")]

    load_batches(files, db.session, schema.sequences, echo=lines.append)

    assert len(lines) == 2
    assert lines[0].startswith("bad.xml: skipped")
    assert lines[1].startswith("2024-01-07.xml: 1 issues")
