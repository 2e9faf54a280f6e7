import contextlib
import os
import sqlite3
import sys

import pytest

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import beads_tui as bt  # noqa: E402


BEADS_SCHEMA = """
CREATE TABLE issues (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    priority INTEGER NOT NULL DEFAULT 2,
    issue_type TEXT NOT NULL DEFAULT 'task',
    assignee TEXT,
    created_by TEXT,
    created_at TEXT,
    updated_at TEXT,
    closed_at TEXT,
    close_reason TEXT
);
CREATE TABLE labels (
    issue_id TEXT NOT NULL,
    label TEXT NOT NULL,
    PRIMARY KEY (issue_id, label)
);
CREATE TABLE dependencies (
    issue_id TEXT NOT NULL,
    depends_on_id TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'blocks',
    created_at TEXT
);
CREATE TABLE comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT NOT NULL,
    author TEXT,
    text TEXT NOT NULL,
    created_at TEXT
);
"""


class BeadsSeeder:
    def __init__(self, path: str):
        self.path = path

    def _exec(self, sql, params=()):
        with contextlib.closing(sqlite3.connect(self.path)) as conn:
            conn.execute(sql, params)
            conn.commit()

    def issue(self, issue_id, title, status="open", priority=2, issue_type="task", **extra):
        cols = {"id": issue_id, "title": title, "status": status, "priority": priority, "issue_type": issue_type}
        cols.update(extra)
        names = ", ".join(cols)
        marks = ", ".join("?" for _ in cols)
        self._exec(f"INSERT INTO issues ({names}) VALUES ({marks})", tuple(cols.values()))

    def label(self, issue_id, label):
        self._exec("INSERT INTO labels (issue_id, label) VALUES (?, ?)", (issue_id, label))

    def dep(self, issue_id, depends_on_id, kind="blocks"):
        self._exec("INSERT INTO dependencies (issue_id, depends_on_id, type) VALUES (?, ?, ?)",
                   (issue_id, depends_on_id, kind))

    def comment(self, issue_id, text, author="alice", created_at=None):
        self._exec("INSERT INTO comments (issue_id, author, text, created_at) VALUES (?, ?, ?, ?)",
                   (issue_id, author, text, created_at))


@pytest.fixture
def beads_db(tmp_path):
    path = tmp_path / ".beads" / "beads.db"
    path.parent.mkdir()
    with contextlib.closing(sqlite3.connect(str(path))) as conn:
        conn.executescript(BEADS_SCHEMA)
        conn.commit()
    return str(path)


@pytest.fixture
def seed(beads_db):
    return BeadsSeeder(beads_db)


@pytest.fixture
def make_issue():
    def _make(issue_id, title=None, **overrides):
        for key in ("labels", "parent_ids", "blocked_by", "blocks", "comments"):
            if key in overrides:
                overrides[key] = tuple(overrides[key])
        return bt.Issue(id=issue_id, title=title if title is not None else f"Issue {issue_id}", **overrides)
    return _make


class FakeStore:
    def __init__(self, issues=()):
        self.issues = list(issues)
        self.loads = 0
        self.error = None

    def load_all(self):
        self.loads += 1
        if self.error is not None:
            raise self.error
        return list(self.issues)


class FakeBackend:
    """Records every call; `fail` maps a method name to the error message it should raise."""

    def __init__(self):
        self.calls = []
        self.fail = {}
        self.next_id = "bd-new"
        self.on_create = None

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise bt.MutationError(self.fail[name])

    def names(self):
        return [c[0] for c in self.calls]

    def create(self, title, issue_type, priority, description=None, parent_id=None):
        self._record("create", title, issue_type, priority, description)
        if self.on_create is not None:
            self.on_create(self.next_id, title)
        return self.next_id

    def update_status(self, issue_id, status):
        self._record("update_status", issue_id, status)

    def update_field(self, issue_id, field_name, value):
        self._record("update_field", issue_id, field_name, value)

    def close(self, issue_id, reason=None):
        self._record("close", issue_id, reason)

    def add_dependency(self, issue_id, depends_on, kind):
        self._record("add_dependency", issue_id, depends_on, kind)

    def add_label(self, issue_id, label):
        self._record("add_label", issue_id, label)

    def remove_label(self, issue_id, label):
        self._record("remove_label", issue_id, label)

    def add_comment(self, issue_id, text):
        self._record("add_comment", issue_id, text)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_browser(fake_store, fake_backend, clock):
    def _make(issues=(), **config_overrides):
        fake_store.issues = list(issues)
        cfg = bt.Config(**config_overrides)
        browser = bt.IssueBrowser(fake_store, fake_backend, cfg, clock=clock)
        browser.refresh()
        return browser
    return _make


def parse_key(name: str) -> bt.KeyPress:
    """'j' -> j, 'enter' -> Enter, 'c-s' -> Ctrl+S, 'm-b' -> Alt+B, 's-enter' -> Shift+Enter."""
    if len(name) > 2 and name[1] == "-" and name[0] in "cms":
        mod, name = name[0], name[2:]
        return bt.KeyPress(name, ctrl=mod == "c", alt=mod == "m", shift=mod == "s")
    return bt.KeyPress(name)


@pytest.fixture
def press():
    def _press(target, *keys):
        for key in keys:
            target.handle_key(parse_key(key))
    return _press


@pytest.fixture
def type_text():
    def _type(target, text):
        for ch in text:
            target.handle_key(bt.KeyPress(ch))
    return _type
