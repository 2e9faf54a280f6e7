import contextlib
import datetime as dt
import sqlite3

import pytest

import beads_tui as bt


def test_missing_database_raises(tmp_path):
    with pytest.raises(bt.StoreError):
        bt.IssueStore(str(tmp_path / "nope.db"))


def test_loads_issues_with_labels_dependencies_and_comments(seed, beads_db):
    seed.issue("bd-1", "Epic", issue_type="epic", priority=1, created_at="2024-03-01T10:00:00Z")
    seed.issue("bd-2", "Child", description="Do it", assignee="sam", created_by="kim")
    seed.issue("bd-3", "Blocker", status="in_progress")
    seed.label("bd-2", "ui")
    seed.label("bd-2", "deferred")
    seed.dep("bd-2", "bd-1", "parent-child")
    seed.dep("bd-2", "bd-3", "blocks")
    seed.dep("bd-3", "bd-1", "related")
    seed.comment("bd-2", "second", author="bo", created_at="2024-03-02T00:00:00Z")
    seed.comment("bd-2", "first", author="al", created_at="2024-03-01T00:00:00Z")

    issues = {i.id: i for i in bt.IssueStore(beads_db).load_all()}
    child = issues["bd-2"]
    assert child.labels == ("ui", "deferred")
    assert child.is_deferred
    assert child.parent_ids == ("bd-1",)
    assert child.blocked_by == ("bd-3",)
    assert child.is_blocked
    assert child.assignee == "sam" and child.created_by == "kim"
    assert [c.text for c in child.comments] == ["first", "second"]
    assert issues["bd-3"].blocks == ("bd-2",)
    assert issues["bd-3"].blocked_by == ()
    assert issues["bd-1"].issue_type is bt.IssueType.EPIC
    assert issues["bd-1"].created_at == dt.datetime(2024, 3, 1, 10, 0, tzinfo=dt.timezone.utc)


def test_load_order_status_priority_then_closed(seed, beads_db):
    seed.issue("a", "Open low", priority=3)
    seed.issue("b", "Busy", status="in_progress", priority=4)
    seed.issue("c", "Open high", priority=0)
    seed.issue("d", "Stuck", status="blocked", priority=0)
    seed.issue("e", "Closed old", status="closed", closed_at="2024-01-01T00:00:00Z")
    seed.issue("f", "Closed new", status="closed", closed_at="2024-06-01T00:00:00Z")
    ids = [i.id for i in bt.IssueStore(beads_db).load_all()]
    assert ids == ["b", "c", "a", "d", "f", "e"]


def test_unknown_enum_values_fall_back(seed, beads_db):
    seed.issue("x", "Odd", status="tombstoned", issue_type="chore", priority=9)
    seed.dep("x", "y", "discovered-from")
    issue = bt.IssueStore(beads_db).load_all()[0]
    assert issue.status is bt.IssueStatus.OPEN
    assert issue.issue_type is bt.IssueType.TASK
    assert issue.priority == 4
    assert issue.parent_ids == () and issue.blocked_by == ()


def test_json_labels_column_is_supported(tmp_path):
    path = tmp_path / "alt.db"
    with contextlib.closing(sqlite3.connect(str(path))) as conn:
        conn.execute("CREATE TABLE issues (id TEXT, title TEXT, status TEXT, priority INTEGER, "
                     "issue_type TEXT, labels TEXT)")
        conn.execute("INSERT INTO issues VALUES ('q-1', 'T', 'open', 2, 'bug', '[\"a\", \"b\"]')")
        conn.commit()
    issue = bt.IssueStore(str(path)).load_all()[0]
    assert issue.labels == ("a", "b")
    assert issue.comments == ()


def test_missing_required_column_is_a_store_error(tmp_path):
    path = tmp_path / "bad.db"
    with contextlib.closing(sqlite3.connect(str(path))) as conn:
        conn.execute("CREATE TABLE issues (id TEXT, title TEXT)")
        conn.commit()
    with pytest.raises(bt.StoreError):
        bt.IssueStore(str(path)).load_all()


def test_store_never_writes(seed, beads_db):
    seed.issue("a", "One")
    store = bt.IssueStore(beads_db)
    with store._connect() as conn:
        with pytest.raises(sqlite3.OperationalError):
            conn.execute("DELETE FROM issues")


def test_get_by_id(seed, beads_db):
    seed.issue("a", "One")
    store = bt.IssueStore(beads_db)
    assert store.get("a").title == "One"
    assert store.get("zzz") is None


def test_get_matches_full_load_for_that_issue(seed, beads_db):
    seed.issue("a", "Parent")
    seed.issue("b", "Middle")
    seed.issue("c", "Blocked")
    seed.issue("d", "Unrelated")
    seed.dep("b", "a", "parent-child")
    seed.dep("c", "b", "blocks")
    seed.dep("d", "a", "blocks")
    seed.label("b", "ui")
    seed.label("d", "other")
    seed.comment("b", "note", created_at="2024-01-01T00:00:00Z")
    seed.comment("d", "elsewhere")
    store = bt.IssueStore(beads_db)
    from_all = {issue.id: issue for issue in store.load_all()}
    single = store.get("b")
    assert single == from_all["b"]
    assert single.parent_ids == ("a",)
    assert single.blocks == ("c",)
    assert single.labels == ("ui",)
    assert [c.text for c in single.comments] == ["note"]


@pytest.mark.parametrize("raw, expected", [
    ("2024-05-06T07:08:09Z", dt.datetime(2024, 5, 6, 7, 8, 9, tzinfo=dt.timezone.utc)),
    ("2024-05-06T09:08:09.123456789+02:00", dt.datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=dt.timezone.utc)),
    ("2024-05-06 07:08:09", dt.datetime(2024, 5, 6, 7, 8, 9, tzinfo=dt.timezone.utc)),
    ("", None),
    ("yesterday", None),
])
def test_parse_timestamp(raw, expected):
    assert bt._parse_timestamp(raw) == expected
