import pytest

import beads_tui as bt


def _ids(entries):
    return [(e.issue.id, e.depth) for e in entries]


def test_parent_child_nests_child(make_issue):
    a = make_issue("A", "Parent")
    b = make_issue("B", "Child", parent_ids=["A"])
    assert _ids(bt.build_view_order([a, b], hide_closed=False, filter_text=None)) == [("A", 0), ("B", 1)]


def test_blocked_issue_nests_under_blocker(make_issue):
    c = make_issue("C", "Blocked work", blocked_by=["D"])
    d = make_issue("D", "Blocker")
    assert _ids(bt.build_view_order([c, d], hide_closed=False, filter_text=None)) == [("D", 0), ("C", 1)]


def test_closed_issues_hidden_or_appended_last(make_issue):
    fix = make_issue("bd-2", "Fix bug", priority=4)
    old = make_issue("bd-1", "Old task", status=bt.IssueStatus.CLOSED, priority=0)

    hidden = bt.build_view_order([old, fix], hide_closed=True, filter_text=None)
    assert [e.issue.title for e in hidden] == ["Fix bug"]

    shown = bt.build_view_order([old, fix], hide_closed=False, filter_text=None)
    assert [e.issue.title for e in shown] == ["Fix bug", "Old task"]
    assert shown[-1].depth == 0


def test_issue_reachable_twice_appears_once(make_issue):
    root = make_issue("R", "Root")
    other = make_issue("O", "Other root")
    child = make_issue("X", "Child", parent_ids=["R"], blocked_by=["O"])
    entries = bt.build_view_order([root, other, child], hide_closed=False, filter_text=None)
    ids = [e.issue.id for e in entries]
    assert sorted(ids) == ["O", "R", "X"]
    assert ids.count("X") == 1


def test_roots_sorted_deferred_last_then_priority_then_title(make_issue):
    issues = [
        make_issue("a", "Zeta", priority=1),
        make_issue("b", "Alpha", priority=1),
        make_issue("c", "Urgent", priority=0, labels=["deferred"]),
        make_issue("d", "Low", priority=3),
    ]
    entries = bt.build_view_order(issues, hide_closed=False, filter_text=None)
    assert [e.issue.id for e in entries] == ["b", "a", "d", "c"]


def test_siblings_ascending_priority_then_title(make_issue):
    issues = [
        make_issue("p", "Parent"),
        make_issue("k1", "b-kid", priority=2, parent_ids=["p"]),
        make_issue("k2", "a-kid", priority=2, parent_ids=["p"]),
        make_issue("k3", "z-kid", priority=0, parent_ids=["p"]),
    ]
    entries = bt.build_view_order(issues, hide_closed=False, filter_text=None)
    assert _ids(entries) == [("p", 0), ("k3", 1), ("k2", 1), ("k1", 1)]


def test_grandchildren_depth_increments(make_issue):
    issues = [
        make_issue("e", "Epic"),
        make_issue("f", "Feature", parent_ids=["e"]),
        make_issue("t", "Task", parent_ids=["f"]),
    ]
    assert _ids(bt.build_view_order(issues, False, None)) == [("e", 0), ("f", 1), ("t", 2)]


def test_missing_parent_makes_child_a_root(make_issue):
    # parent filtered out (closed and hidden) -> child is promoted
    parent = make_issue("P", "Done parent", status=bt.IssueStatus.CLOSED)
    child = make_issue("C", "Orphan", parent_ids=["P"])
    assert _ids(bt.build_view_order([parent, child], True, None)) == [("C", 0)]


def test_closed_parent_does_not_adopt_children(make_issue):
    parent = make_issue("P", "Done parent", status=bt.IssueStatus.CLOSED)
    child = make_issue("C", "Still open", parent_ids=["P"])
    assert _ids(bt.build_view_order([parent, child], False, None)) == [("C", 0), ("P", 0)]


def test_filter_matches_title_or_id_case_insensitively(make_issue):
    issues = [
        make_issue("bd-12", "Login page"),
        make_issue("bd-7", "Fix LOGOUT"),
        make_issue("xy-1", "Unrelated"),
    ]
    assert [e.issue.id for e in bt.build_view_order(issues, False, "log")] == ["bd-7", "bd-12"]
    assert [e.issue.id for e in bt.build_view_order(issues, False, "BD-1")] == ["bd-12"]


def test_filter_is_idempotent_and_deterministic(make_issue):
    issues = [make_issue(f"bd-{i}", f"Item {i % 3}", priority=i % 5) for i in range(12)]
    first = bt.build_view_order(issues, False, "item 1")
    second = bt.build_view_order(issues, False, "item 1")
    assert first == second
    assert len(first) == 4


def test_empty_filter_keeps_everything(make_issue):
    issues = [make_issue("a", "One"), make_issue("b", "Two")]
    assert len(bt.build_view_order(issues, False, "")) == 2


def test_dependency_cycle_members_still_listed(make_issue):
    a = make_issue("A", "First", blocked_by=["B"])
    b = make_issue("B", "Second", blocked_by=["A"])
    entries = bt.build_view_order([a, b], False, None)
    assert sorted(e.issue.id for e in entries) == ["A", "B"]
    assert entries[0].depth == 0


@pytest.mark.parametrize("hide_closed", [True, False])
def test_every_issue_listed_once(make_issue, hide_closed):
    issues = [
        make_issue("r1", "Root one"),
        make_issue("r2", "Root two", priority=1),
        make_issue("c1", "Child", parent_ids=["r1"], blocked_by=["r2"]),
        make_issue("c2", "Grandchild", parent_ids=["c1"], blocked_by=["r1"]),
        make_issue("z", "Closed", status=bt.IssueStatus.CLOSED, parent_ids=["r1"]),
    ]
    entries = bt.build_view_order(issues, hide_closed, None)
    ids = [e.issue.id for e in entries]
    assert len(ids) == len(set(ids))
    expected = {"r1", "r2", "c1", "c2"} | (set() if hide_closed else {"z"})
    assert set(ids) == expected
