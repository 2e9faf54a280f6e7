#!/usr/bin/env python3
# beads_tui: terminal dashboard for browsing and editing a beads issue database
#
# Hotkeys (list pane)
#   j/k, arrows    move selection            u/d, b/f  page up/down (10 rows)
#   g/G            first / last issue        Enter/l   open detail pane
#   Tab            switch pane focus         < / >     shrink / grow list pane
#   /              filter by title or id     Esc       clear filter
#   a              add issue                 c         show / hide closed issues
#   L              toggle labels             t         cycle theme
#   r              refresh                   ?         help
#   q, Ctrl+C      quit                      Ctrl+Z    suspend
#
# Hotkeys (detail pane)
#   e  edit issue    x  close / reopen    c  add comment    D  toggle deferred
#   Esc/h  close the detail pane
#
# Notes
# - The SQLite database is opened read-only; every write goes through the
#   `br` command and is followed by a full reload.
# - Optional YAML config at ~/.config/beads_tui.yml (see Config below).
# - Extra theme presets: YAML files under ~/.config/beads_tui/themes/.

from __future__ import annotations

import argparse
import asyncio
import contextlib
import datetime as dt
import json
import logging
import logging.handlers
import os
from pathlib import Path
import re
import sqlite3
import subprocess
import sys
import textwrap
import time
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Set, Tuple

import yaml
from prompt_toolkit import Application
from prompt_toolkit.application.current import get_app
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, VSplit, Layout, Window
from prompt_toolkit.layout.containers import ConditionalContainer, Float, FloatContainer
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.mouse_events import MouseButton, MouseEventType
from prompt_toolkit.styles import Style
from prompt_toolkit.utils import get_cwidth

__version__ = "0.3.0"

logger = logging.getLogger('beads_tui')


# -----------------------------
# Config
# -----------------------------
DEFAULT_DB_PATH = os.path.join(".beads", "beads.db")
DEFAULT_CONFIG_PATH = os.path.expanduser("~/.config/beads_tui.yml")
DEFAULT_THEME_DIR = os.path.expanduser("~/.config/beads_tui/themes")
DEFAULT_STATE_PATH = os.path.expanduser("~/.beads_tui.ui.json")
DEFAULT_LOG_PATH = os.path.expanduser("~/.beads_tui.log")

MIN_SPLIT_PERCENT = 20
MAX_SPLIT_PERCENT = 80


@dataclass
class Config:
    db_path: str = DEFAULT_DB_PATH
    refresh_seconds: int = 3          # 0 disables auto-refresh
    br_command: str = "br"
    hide_closed: bool = True
    show_labels: bool = True
    split_percent: int = 40           # width of the list pane
    theme: Optional[str] = None       # preset name; None => first preset
    theme_dir: str = DEFAULT_THEME_DIR
    state_path: str = DEFAULT_STATE_PATH
    log_path: str = DEFAULT_LOG_PATH
    log_level: str = "ERROR"


_CONFIG_TYPES: Dict[str, type] = {
    "db_path": str,
    "refresh_seconds": int,
    "br_command": str,
    "hide_closed": bool,
    "show_labels": bool,
    "split_percent": int,
    "theme": str,
    "theme_dir": str,
    "state_path": str,
    "log_path": str,
    "log_level": str,
}
_PATH_KEYS = ("db_path", "theme_dir", "state_path", "log_path")


def clamp_split(percent: int) -> int:
    return max(MIN_SPLIT_PERCENT, min(MAX_SPLIT_PERCENT, int(percent)))


def load_config(path: str) -> Config:
    """Read a YAML config file. Unknown keys are ignored, mistyped ones rejected."""
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config: expected a mapping in {path}")
    cfg = Config()
    for key, expected in _CONFIG_TYPES.items():
        value = raw.get(key)
        if value is None:
            continue
        # YAML booleans are not ints here
        if (expected is int and isinstance(value, bool)) or not isinstance(value, expected):
            raise ValueError(f"Config: '{key}' must be {expected.__name__}, got {value!r}")
        setattr(cfg, key, value)
    if cfg.refresh_seconds < 0:
        raise ValueError("Config: 'refresh_seconds' must be >= 0")
    cfg.split_percent = clamp_split(cfg.split_percent)
    for key in _PATH_KEYS:
        setattr(cfg, key, os.path.expanduser(getattr(cfg, key)))
    return cfg


def load_ui_state(path: str) -> dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def save_ui_state(path: str, data: dict) -> None:
    try:
        d = os.path.dirname(path)
        if d and not os.path.isdir(d):
            os.makedirs(d, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
    except OSError:
        logger.warning("Unable to write UI state to %s", path, exc_info=True)


def setup_logging(log_path: str, log_level: str = 'ERROR') -> None:
    # Always reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    d = os.path.dirname(log_path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)
    fh = logging.handlers.RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(log_level).upper(), None)
    fh.setLevel(lvl if isinstance(lvl, int) else logging.ERROR)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)


# -----------------------------
# Themes
# -----------------------------


@dataclass
class ThemePreset:
    name: str
    style: Dict[str, str]
    description: Optional[str] = None


def _palette_style(bg: str, fg: str, muted: str, accent: str, border: str, focused: str,
                   selection: str, in_progress: str, blocked: str, closed: str,
                   priorities: Tuple[str, str, str, str]) -> Dict[str, str]:
    bg_rule = f" bg:{bg}" if bg else ""
    return {
        'pane': f"{fg}{bg_rule}",
        'text': fg,
        'title': f"bold {fg}",
        'muted': muted,
        'accent': accent,
        'border': border,
        'border.focused': focused,
        'selected': f"bg:{selection}",
        'cursor': accent,
        'field.focused': f"bold reverse {accent}",
        'status.open': fg,
        'status.in_progress': in_progress,
        'status.blocked': blocked,
        'status.closed': closed,
        'priority.critical': priorities[0],
        'priority.high': priorities[1],
        'priority.medium': priorities[2],
        'priority.low': priorities[3],
        'footer.key': accent,
        'footer.desc': muted,
        'footer.sep': border,
        'footer.message': f"bold {priorities[1]}",
    }


# lazygit look: neutral colors, green border on the focused pane
BASE_THEME_STYLE: Dict[str, str] = _palette_style(
    bg='', fg='ansiwhite', muted='ansigray', accent='ansicyan', border='ansibrightblack',
    focused='ansigreen', selection='ansibrightblack', in_progress='ansicyan', blocked='ansired',
    closed='ansigreen', priorities=('ansired', 'ansiyellow', 'ansiwhite', 'ansigray'),
)

BUILTIN_THEMES: List[ThemePreset] = [
    ThemePreset(name="Lazygit", style=BASE_THEME_STYLE),
    ThemePreset(name="Tokyo Night", style=_palette_style(
        bg='#1a1b26', fg='#a9b1d6', muted='#565f89', accent='#7aa2f7', border='#3b4261',
        focused='#9ece6a', selection='#292e42', in_progress='#7dcfff', blocked='#f7768e',
        closed='#9ece6a', priorities=('#f7768e', '#ff9e64', '#e0af68', '#9ece6a'),
    )),
    ThemePreset(name="Dracula", style=_palette_style(
        bg='#282a36', fg='#f8f8f2', muted='#6272a4', accent='#bd93f9', border='#44475a',
        focused='#50fa7b', selection='#44475a', in_progress='#8be9fd', blocked='#ff5555',
        closed='#50fa7b', priorities=('#ff5555', '#ffb86c', '#f1fa8c', '#50fa7b'),
    )),
    ThemePreset(name="Nord", style=_palette_style(
        bg='#2e3440', fg='#d8dee9', muted='#4c566a', accent='#88c0d0', border='#3b4252',
        focused='#a3be8c', selection='#434c5e', in_progress='#88c0d0', blocked='#bf616a',
        closed='#a3be8c', priorities=('#bf616a', '#d08770', '#ebcb8b', '#a3be8c'),
    )),
]


def _load_theme_presets(theme_dir: Path) -> List[ThemePreset]:
    presets = [ThemePreset(name=p.name, style=dict(p.style), description=p.description) for p in BUILTIN_THEMES]
    by_name = {p.name.lower(): i for i, p in enumerate(presets)}
    if not theme_dir.is_dir():
        return presets
    candidates = sorted(theme_dir.glob("*.yml")) + sorted(theme_dir.glob("*.yaml"))
    for path in candidates:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError):
            logger.warning("Failed to load theme file %s", path, exc_info=True)
            continue
        if not isinstance(data, dict):
            continue
        name = str(data.get("name") or path.stem).strip() or path.stem
        base_idx = by_name.get(str(data.get("base") or name).lower(), 0)
        style_dict = dict(presets[base_idx].style)
        overrides = data.get("style")
        if isinstance(overrides, dict):
            for key, value in overrides.items():
                if isinstance(key, str) and isinstance(value, str):
                    style_dict[key] = value
        preset = ThemePreset(name=name, style=style_dict, description=data.get("description"))
        lowered = name.lower()
        if lowered in by_name:
            presets[by_name[lowered]] = preset
            continue
        by_name[lowered] = len(presets)
        presets.append(preset)
    return presets


# -----------------------------
# Data model
# -----------------------------
DEFERRED_LABEL = "deferred"
DEFAULT_PRIORITY = 2
MAX_PRIORITY = 4


class IssueStatus(Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "IssueStatus":
        key = str(raw or "").strip().lower().replace("-", "_")
        if key == "inprogress":
            key = "in_progress"
        for status in cls:
            if status.value == key:
                return status
        logger.debug("Unknown status %r, treating as open", raw)
        return cls.OPEN

    @property
    def icon(self) -> str:
        return _STATUS_ICONS[self]

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_ICONS = {
    IssueStatus.OPEN: "○",
    IssueStatus.IN_PROGRESS: "●",
    IssueStatus.BLOCKED: "■",
    IssueStatus.CLOSED: "✓",
}
_STATUS_RANK = {
    IssueStatus.IN_PROGRESS: 0,
    IssueStatus.OPEN: 1,
    IssueStatus.BLOCKED: 2,
    IssueStatus.CLOSED: 3,
}


class IssueType(Enum):
    TASK = "task"
    BUG = "bug"
    FEATURE = "feature"
    EPIC = "epic"
    STORY = "story"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "IssueType":
        key = str(raw or "").strip().lower()
        for kind in cls:
            if kind.value == key:
                return kind
        logger.debug("Unknown issue type %r, treating as task", raw)
        return cls.TASK

    def cycle(self, step: int) -> "IssueType":
        members = list(IssueType)
        return members[(members.index(self) + step) % len(members)]

    def icon_for(self, status: IssueStatus) -> str:
        """Shape encodes the type; open/blocked use the outline glyph, others the filled one."""
        outline, filled, closed = _TYPE_ICONS[self]
        if status is IssueStatus.IN_PROGRESS:
            return filled
        if status is IssueStatus.CLOSED:
            return closed
        return outline


# (outline, filled, closed)
_TYPE_ICONS = {
    IssueType.TASK: ("▷", "▶", "▶"),
    IssueType.BUG: ("⊘", "●", "●"),
    IssueType.FEATURE: ("☆", "★", "★"),
    IssueType.EPIC: ("◇", "◆", "◆"),
    IssueType.STORY: ("☰", "◤", "■"),
}


class DependencyKind(Enum):
    BLOCKS = "blocks"
    PARENT_CHILD = "parent-child"
    RELATED = "related"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "DependencyKind":
        key = str(raw or "").strip().lower().replace("_", "-")
        for kind in cls:
            if kind.value == key:
                return kind
        logger.debug("Unknown dependency type %r, treating as related", raw)
        return cls.RELATED


@dataclass(frozen=True)
class Comment:
    author: str
    text: str
    created_at: Optional[dt.datetime] = None


@dataclass(frozen=True)
class Issue:
    id: str
    title: str
    status: IssueStatus = IssueStatus.OPEN
    priority: int = DEFAULT_PRIORITY   # 0 = critical, 4 = backlog
    issue_type: IssueType = IssueType.TASK
    description: Optional[str] = None
    labels: Tuple[str, ...] = ()
    created_by: Optional[str] = None
    assignee: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    closed_at: Optional[dt.datetime] = None
    close_reason: Optional[str] = None
    parent_ids: Tuple[str, ...] = ()
    blocked_by: Tuple[str, ...] = ()
    blocks: Tuple[str, ...] = ()
    comments: Tuple[Comment, ...] = ()

    @property
    def is_closed(self) -> bool:
        return self.status is IssueStatus.CLOSED

    @property
    def is_blocked(self) -> bool:
        return self.status is IssueStatus.BLOCKED or bool(self.blocked_by)

    @property
    def is_deferred(self) -> bool:
        return DEFERRED_LABEL in self.labels

    @property
    def priority_label(self) -> str:
        return f"P{self.priority}"


# -----------------------------
# Store (read-only)
# -----------------------------
class StoreError(RuntimeError):
    pass


_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _parse_timestamp(raw: object) -> Optional[dt.datetime]:
    if not raw:
        return None
    text = str(raw).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    try:
        value = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _coerce_priority(raw: object) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY
    return max(0, min(MAX_PRIORITY, value))


def _json_labels(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return [str(x) for x in data if x]


def sort_issues(issues: Sequence[Issue]) -> List[Issue]:
    """Load-time order: status rank, priority, title; closed issues last, newest close first."""
    active = sorted((i for i in issues if not i.is_closed), key=lambda i: (i.status.rank, i.priority, i.title))
    closed = sorted(
        (i for i in issues if i.is_closed),
        key=lambda i: (i.closed_at is None, -i.closed_at.timestamp() if i.closed_at else 0.0, i.title),
    )
    return active + closed


class IssueStore:
    """Reads issues, labels, comments and dependency edges from a beads SQLite file."""

    REQUIRED_COLUMNS = ("id", "title", "status", "priority", "issue_type")
    OPTIONAL_COLUMNS = (
        "description", "labels", "created_by", "assignee",
        "created_at", "updated_at", "closed_at", "close_reason",
    )

    def __init__(self, path: str):
        self.path = path
        if not os.path.exists(path):
            raise StoreError(f"Database not found at {path}")

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        uri = Path(os.path.abspath(self.path)).as_uri() + "?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to open database {self.path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def _cols(conn: sqlite3.Connection, table: str) -> List[str]:
        try:
            return [r[1] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()]
        except sqlite3.OperationalError:
            return []

    def load_all(self) -> List[Issue]:
        return sort_issues(self._load())

    def get(self, issue_id: str) -> Optional[Issue]:
        found = self._load(issue_id)
        return found[0] if found else None

    def _load(self, issue_id: Optional[str] = None) -> List[Issue]:
        try:
            with self._connect() as conn:
                rows, label_column = self._load_issue_rows(conn, issue_id)
                label_map = {} if label_column else self._load_label_table(conn, issue_id)
                comment_map = self._load_comments(conn, issue_id)
                deps = self._load_dependencies(conn, issue_id)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to load issues from {self.path}: {exc}") from exc

        parents: Dict[str, List[str]] = {}
        blocked_by: Dict[str, List[str]] = {}
        blocks: Dict[str, List[str]] = {}
        for from_id, to_id, kind in deps:
            if kind is DependencyKind.PARENT_CHILD:
                parents.setdefault(from_id, []).append(to_id)
            elif kind is DependencyKind.BLOCKS:
                blocked_by.setdefault(from_id, []).append(to_id)
                blocks.setdefault(to_id, []).append(from_id)

        issues: List[Issue] = []
        for row in rows:
            keys = row.keys()

            def col(name: str):
                return row[name] if name in keys else None

            row_id = str(row["id"])
            labels = _json_labels(col("labels")) if label_column else label_map.get(row_id, [])
            issues.append(Issue(
                id=row_id,
                title=str(row["title"] or ""),
                status=IssueStatus.parse(row["status"]),
                priority=_coerce_priority(row["priority"]),
                issue_type=IssueType.parse(row["issue_type"]),
                description=col("description") or None,
                labels=tuple(dict.fromkeys(labels)),
                created_by=col("created_by") or None,
                assignee=col("assignee") or None,
                created_at=_parse_timestamp(col("created_at")),
                updated_at=_parse_timestamp(col("updated_at")),
                closed_at=_parse_timestamp(col("closed_at")),
                close_reason=col("close_reason") or None,
                parent_ids=tuple(parents.get(row_id, ())),
                blocked_by=tuple(blocked_by.get(row_id, ())),
                blocks=tuple(blocks.get(row_id, ())),
                comments=tuple(comment_map.get(row_id, ())),
            ))
        return issues

    def _load_issue_rows(self, conn: sqlite3.Connection,
                         issue_id: Optional[str] = None) -> Tuple[List[sqlite3.Row], bool]:
        cols = self._cols(conn, "issues")
        missing = [c for c in self.REQUIRED_COLUMNS if c not in cols]
        if missing:
            raise StoreError(f"{self.path}: issues table lacks column(s) {', '.join(missing)}")
        wanted = list(self.REQUIRED_COLUMNS) + [c for c in self.OPTIONAL_COLUMNS if c in cols]
        query = f"SELECT {', '.join(wanted)} FROM issues"
        if issue_id is not None:
            return conn.execute(query + " WHERE id = ?", (issue_id,)).fetchall(), "labels" in cols
        return conn.execute(query).fetchall(), "labels" in cols

    def _load_label_table(self, conn: sqlite3.Connection, issue_id: Optional[str] = None) -> Dict[str, List[str]]:
        cols = self._cols(conn, "labels")
        if "issue_id" not in cols or "label" not in cols:
            return {}
        where, params = ("WHERE issue_id = ?", (issue_id,)) if issue_id is not None else ("", ())
        out: Dict[str, List[str]] = {}
        for owner, label in conn.execute(f"SELECT issue_id, label FROM labels {where} ORDER BY rowid", params):
            if label:
                out.setdefault(str(owner), []).append(str(label))
        return out

    def _load_comments(self, conn: sqlite3.Connection, issue_id: Optional[str] = None) -> Dict[str, List[Comment]]:
        cols = self._cols(conn, "comments")
        if "issue_id" not in cols or "text" not in cols:
            return {}
        author_col = "author" if "author" in cols else "NULL"
        created_col = "created_at" if "created_at" in cols else "NULL"
        where, params = ("WHERE issue_id = ?", (issue_id,)) if issue_id is not None else ("", ())
        out: Dict[str, List[Comment]] = {}
        query = (f"SELECT issue_id, {author_col}, text, {created_col} FROM comments {where} "
                 f"ORDER BY {created_col}, rowid")
        for owner, author, text, created in conn.execute(query, params):
            out.setdefault(str(owner), []).append(
                Comment(author=str(author or "unknown"), text=str(text or ""), created_at=_parse_timestamp(created))
            )
        return out

    def _load_dependencies(self, conn: sqlite3.Connection,
                           issue_id: Optional[str] = None) -> List[Tuple[str, str, DependencyKind]]:
        cols = self._cols(conn, "dependencies")
        if not {"issue_id", "depends_on_id", "type"} <= set(cols):
            return []
        query = "SELECT issue_id, depends_on_id, type FROM dependencies"
        params: Tuple[str, ...] = ()
        if issue_id is not None:
            # both directions: `blocks` comes from edges pointing at the issue
            query += " WHERE issue_id = ? OR depends_on_id = ?"
            params = (issue_id, issue_id)
        return [
            (str(from_id), str(to_id), DependencyKind.parse(kind))
            for from_id, to_id, kind in conn.execute(query, params)
        ]


# -----------------------------
# Mutation backend (`br` CLI)
# -----------------------------
class MutationError(RuntimeError):
    pass


_CREATED_ID_RE = re.compile(r"\b([A-Za-z][A-Za-z0-9_]*-[A-Za-z0-9.]*[A-Za-z0-9])\b")


def parse_created_id(stdout: str) -> str:
    """Pick the new issue id out of `br create` output ("Created issue: bd-a1b2 ...")."""
    lines = [ln.strip() for ln in (stdout or "").splitlines() if ln.strip()]
    preferred = [ln for ln in lines if "created" in ln.lower()]
    for line in preferred + lines:
        candidate = line.split(":", 1)[1] if ":" in line else line
        m = _CREATED_ID_RE.search(candidate) or _CREATED_ID_RE.search(line)
        if m:
            return m.group(1)
    return ""


def workspace_dir(db_path: str) -> Optional[str]:
    """Directory `br` should run in: the parent of a `.beads/` database directory."""
    parent = os.path.dirname(os.path.abspath(db_path))
    if os.path.basename(parent) == ".beads":
        return os.path.dirname(parent)
    return None


class BrCli:
    def __init__(self, command: str = "br", cwd: Optional[str] = None, timeout: float = 30.0):
        self.command = command
        self.cwd = cwd
        self.timeout = timeout

    def _run(self, args: List[str], what: str) -> str:
        argv = [self.command] + args
        logger.debug("run %s", argv)
        try:
            proc = subprocess.run(argv, cwd=self.cwd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("%s %s could not run: %s", self.command, what, exc)
            raise MutationError(f"Failed to execute {self.command} {what}: {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            logger.warning("%s %s failed (%s): %s", self.command, what, proc.returncode, stderr)
            raise MutationError(f"{self.command} {what} failed: {stderr}")
        return proc.stdout or ""

    def create(self, title: str, issue_type: IssueType, priority: int,
               description: Optional[str] = None, parent_id: Optional[str] = None) -> str:
        args = ["create", f"--title={title}", "--type", issue_type.value, "--priority", str(priority)]
        if description:
            args.append(f"--description={description}")
        new_id = parse_created_id(self._run(args, "create"))
        if new_id and parent_id:
            self.add_dependency(new_id, parent_id, DependencyKind.PARENT_CHILD)
        return new_id

    def update_status(self, issue_id: str, status: str) -> None:
        self._run(["update", issue_id, "--status", status], "update")

    def update_field(self, issue_id: str, field_name: str, value: str) -> None:
        self._run(["update", issue_id, f"--{field_name}={value}"], "update")

    def close(self, issue_id: str, reason: Optional[str] = None) -> None:
        args = ["close", issue_id]
        if reason:
            args.append(f"--reason={reason}")
        self._run(args, "close")

    def add_dependency(self, issue_id: str, depends_on: str, kind: DependencyKind) -> None:
        self._run(["dep", "add", issue_id, depends_on, "--type", kind.value], "dep add")

    def add_label(self, issue_id: str, label: str) -> None:
        self._run(["update", issue_id, f"--add-label={label}"], "label add")

    def remove_label(self, issue_id: str, label: str) -> None:
        self._run(["update", issue_id, f"--remove-label={label}"], "label remove")

    def add_comment(self, issue_id: str, text: str) -> None:
        self._run(["comments", "add", issue_id, "--", text], "comments add")

    def sync(self) -> None:
        self._run(["sync"], "sync")

    def is_available(self) -> bool:
        try:
            proc = subprocess.run([self.command, "--version"], cwd=self.cwd, capture_output=True,
                                  text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return proc.returncode == 0


# -----------------------------
# View order (forest of issues)
# -----------------------------
class ViewEntry(NamedTuple):
    issue: Issue
    depth: int


def build_view_order(issues: Sequence[Issue], hide_closed: bool, filter_text: Optional[str]) -> List[ViewEntry]:
    """Flatten issues into display rows: non-closed issues as a forest, closed ones appended flat.

    An issue's parents are its parent-child targets and its blockers, counted only
    when they survive filtering. Roots are ordered deferred-last, then by priority
    and title; siblings under a parent follow by ascending priority, then title.
    """
    needle = (filter_text or "").lower()
    kept: List[Issue] = []
    for issue in issues:
        if hide_closed and issue.is_closed:
            continue
        if needle and needle not in issue.title.lower() and needle not in issue.id.lower():
            continue
        kept.append(issue)

    non_closed = [i for i in kept if not i.is_closed]
    closed = [i for i in kept if i.is_closed]
    present = {i.id for i in non_closed}
    children: Dict[str, List[Issue]] = {}
    has_parent: Set[str] = set()
    for issue in non_closed:
        for parent_id in issue.parent_ids + issue.blocked_by:
            if parent_id in present:
                children.setdefault(parent_id, []).append(issue)
                has_parent.add(issue.id)

    def root_key(i: Issue):
        return (i.is_deferred, i.priority, i.title)

    out: List[ViewEntry] = []
    visited: Set[str] = set()

    def walk(roots: List[Issue]) -> None:
        stack = [(root, 0) for root in reversed(roots)]
        while stack:
            issue, depth = stack.pop()
            if issue.id in visited:
                continue
            visited.add(issue.id)
            out.append(ViewEntry(issue, depth))
            kids = sorted(children.get(issue.id, ()), key=lambda i: (i.priority, i.title), reverse=True)
            stack.extend((kid, depth + 1) for kid in kids)

    walk(sorted((i for i in non_closed if i.id not in has_parent), key=root_key))
    # dependency cycles leave members without a root; surface them at top level
    stranded = [i for i in non_closed if i.id not in visited]
    if stranded:
        walk(sorted(stranded, key=root_key))
    out.extend(ViewEntry(i, 0) for i in closed)
    return out


# -----------------------------
# Input events
# -----------------------------
@dataclass(frozen=True)
class KeyPress:
    """A key with modifiers. `key` is one printable character or a name like 'enter'."""
    key: str
    ctrl: bool = False
    alt: bool = False
    shift: bool = False

    @property
    def char(self) -> Optional[str]:
        if len(self.key) == 1 and not self.ctrl and not self.alt:
            return self.key
        return None

    @property
    def is_newline(self) -> bool:
        return (self.key == "enter" and (self.shift or self.alt)) or (self.key == "j" and self.ctrl)


MOUSE_DOWN = "down"
MOUSE_DRAG = "drag"
MOUSE_UP = "up"
MOUSE_SCROLL_UP = "scroll_up"
MOUSE_SCROLL_DOWN = "scroll_down"


@dataclass(frozen=True)
class MouseInput:
    kind: str
    x: int
    y: int


class SuspendRequested(Exception):
    """Raised by the key handler when the user asks to suspend (Ctrl+Z)."""


# -----------------------------
# Text buffer
# -----------------------------
class TextBuffer:
    """Editable text with a cursor (a string index) and terminal-style editing keys."""

    def __init__(self, text: str = "", cursor: Optional[int] = None):
        self._text = text
        self._cursor = len(text) if cursor is None else max(0, min(cursor, len(text)))

    @property
    def text(self) -> str:
        return self._text

    @property
    def cursor(self) -> int:
        return self._cursor

    @cursor.setter
    def cursor(self, value: int) -> None:
        self._cursor = max(0, min(value, len(self._text)))

    def __repr__(self) -> str:
        return f"TextBuffer({self._text!r}, cursor={self._cursor})"

    def is_empty(self) -> bool:
        return not self._text

    def set_text(self, text: str) -> None:
        self._text = text
        self._cursor = len(text)

    def clear(self) -> None:
        self.set_text("")

    def insert(self, text: str) -> None:
        self._text = self._text[:self._cursor] + text + self._text[self._cursor:]
        self._cursor += len(text)

    def delete_before(self) -> None:
        if self._cursor == 0:
            return
        self._text = self._text[:self._cursor - 1] + self._text[self._cursor:]
        self._cursor -= 1

    def delete_after(self) -> None:
        if self._cursor >= len(self._text):
            return
        self._text = self._text[:self._cursor] + self._text[self._cursor + 1:]

    def _word_start_before(self, pos: int) -> int:
        while pos > 0 and self._text[pos - 1].isspace():
            pos -= 1
        while pos > 0 and not self._text[pos - 1].isspace():
            pos -= 1
        return pos

    def _word_end_after(self, pos: int) -> int:
        n = len(self._text)
        while pos < n and not self._text[pos].isspace():
            pos += 1
        while pos < n and self._text[pos].isspace():
            pos += 1
        return pos

    def delete_word_before(self) -> None:
        start = self._word_start_before(self._cursor)
        self._text = self._text[:start] + self._text[self._cursor:]
        self._cursor = start

    def _line_start(self, pos: int) -> int:
        return self._text.rfind("\n", 0, pos) + 1

    def _line_end(self, pos: int) -> int:
        idx = self._text.find("\n", pos)
        return len(self._text) if idx < 0 else idx

    def delete_to_line_start(self) -> None:
        start = self._line_start(self._cursor)
        self._text = self._text[:start] + self._text[self._cursor:]
        self._cursor = start

    def delete_to_line_end(self) -> None:
        self._text = self._text[:self._cursor] + self._text[self._line_end(self._cursor):]

    def move_left(self) -> None:
        self._cursor = max(0, self._cursor - 1)

    def move_right(self) -> None:
        self._cursor = min(len(self._text), self._cursor + 1)

    def move_word_left(self) -> None:
        self._cursor = self._word_start_before(self._cursor)

    def move_word_right(self) -> None:
        self._cursor = self._word_end_after(self._cursor)

    def move_line_start(self) -> None:
        self._cursor = self._line_start(self._cursor)

    def move_line_end(self) -> None:
        self._cursor = self._line_end(self._cursor)

    def move_up(self) -> None:
        start = self._line_start(self._cursor)
        if start == 0:
            return
        col = self._cursor - start
        prev_end = start - 1
        prev_start = self._line_start(prev_end)
        self._cursor = prev_start + min(col, prev_end - prev_start)

    def move_down(self) -> None:
        end = self._line_end(self._cursor)
        if end >= len(self._text):
            return
        col = self._cursor - self._line_start(self._cursor)
        next_start = end + 1
        self._cursor = next_start + min(col, self._line_end(next_start) - next_start)

    def lines(self) -> List[str]:
        return self._text.split("\n")

    def cursor_row_col(self) -> Tuple[int, int]:
        row = self._text.count("\n", 0, self._cursor)
        return row, self._cursor - self._line_start(self._cursor)

    def handle_key(self, key: KeyPress, multiline: bool = False) -> bool:
        """Apply an editing key; returns False when the key means nothing here."""
        k = key.key
        if key.is_newline:
            if multiline:
                self.insert("\n")
            return multiline
        if key.char is not None:
            self.insert(key.char)
            return True
        if key.ctrl:
            actions = {
                "a": self.move_line_start,
                "e": self.move_line_end,
                "b": self.move_left,
                "f": self.move_right,
                "w": self.delete_word_before,
                "u": self.delete_to_line_start,
                "k": self.delete_to_line_end,
                "h": self.delete_before,
            }
        elif key.alt:
            actions = {"b": self.move_word_left, "f": self.move_word_right}
        else:
            actions = {
                "left": self.move_left,
                "right": self.move_right,
                "home": self.move_line_start,
                "end": self.move_line_end,
                "backspace": self.delete_before,
                "delete": self.delete_after,
            }
            if multiline:
                actions.update({"up": self.move_up, "down": self.move_down})
        action = actions.get(k)
        if action is None:
            return False
        action()
        return True


# -----------------------------
# Pane layout
# -----------------------------
MIN_DUAL_PANE_WIDTH = 60
SPLIT_STEP = 5


class Focus(Enum):
    LIST = "list"
    DETAIL = "detail"


@dataclass(frozen=True)
class Rect:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains(self, x: int, y: int) -> bool:
        return self.x <= x < self.right and self.y <= y < self.bottom


def compute_pane_rects(columns: int, rows: int, split_percent: int, show_detail: bool) -> Tuple[Rect, Rect]:
    """List and detail rectangles for a terminal; the bottom row is the footer."""
    area = Rect(0, 0, max(0, columns), max(0, rows - 1))
    if not show_detail:
        return area, Rect()
    if area.width < MIN_DUAL_PANE_WIDTH:
        return Rect(), area
    list_width = area.width * clamp_split(split_percent) // 100
    return (Rect(0, 0, list_width, area.height),
            Rect(list_width, 0, area.width - list_width, area.height))


class PaneLayout:
    """Split ratio plus the pane rectangles of the last frame, used for mouse hit-testing."""

    def __init__(self, split_percent: int = 40):
        self.split_percent = clamp_split(split_percent)
        self.list_area = Rect()
        self.detail_area = Rect()
        self.resizing = False

    def update(self, columns: int, rows: int, show_detail: bool) -> None:
        self.list_area, self.detail_area = compute_pane_rects(columns, rows, self.split_percent, show_detail)

    def adjust_split(self, delta: int) -> None:
        self.split_percent = clamp_split(self.split_percent + delta)

    def is_split(self) -> bool:
        return not self.list_area.is_empty() and not self.detail_area.is_empty()

    def is_on_split_handle(self, x: int, y: int) -> bool:
        if not self.is_split():
            return False
        top = min(self.list_area.y, self.detail_area.y)
        bottom = max(self.list_area.bottom, self.detail_area.bottom)
        if not top <= y < bottom:
            return False
        return x in (self.list_area.right - 1, self.detail_area.x)

    def split_from_mouse(self, x: int) -> None:
        if not self.is_split():
            return
        left = self.list_area.x
        total = self.detail_area.right - left
        if total <= 0:
            return
        x = max(left, min(x, self.detail_area.right - 1))
        self.split_percent = clamp_split((x - left + 1) * 100 // total)

    def hit_test(self, x: int, y: int) -> Optional[Focus]:
        if self.list_area.contains(x, y):
            return Focus.LIST
        if self.detail_area.contains(x, y):
            return Focus.DETAIL
        return None


@dataclass
class DetailScroll:
    offset: int = 0
    content_height: int = 0
    viewport_height: int = 0

    @property
    def max_offset(self) -> int:
        return max(0, self.content_height - self.viewport_height)

    def scroll_up(self, n: int = 1) -> None:
        self.offset = max(0, self.offset - n)

    def scroll_down(self, n: int = 1) -> None:
        self.offset = min(self.max_offset, self.offset + n)

    def reset(self) -> None:
        self.offset = 0

    def to_end(self) -> None:
        self.offset = self.max_offset

    def fit(self, content_height: int, viewport_height: int) -> None:
        self.content_height = max(0, content_height)
        self.viewport_height = max(0, viewport_height)
        self.offset = min(self.offset, self.max_offset)


# -----------------------------
# Issue form (create / edit)
# -----------------------------
class FormField(Enum):
    TITLE = "Title"
    DESCRIPTION = "Description"
    TYPE = "Type"
    PRIORITY = "Priority"
    LABELS = "Labels"


FORM_FIELDS: List[FormField] = list(FormField)


class FormAction(Enum):
    NONE = "none"
    SUBMIT = "submit"
    CANCELLED = "cancelled"


_PREV_KEYS = ("left", "up", "h", "k")
_NEXT_KEYS = ("right", "down", "l", "j")


def split_labels(text: str) -> List[str]:
    return list(dict.fromkeys(part.strip() for part in text.split(",") if part.strip()))


class IssueForm:
    def __init__(self, title: str = "", description: str = "", issue_type: IssueType = IssueType.TASK,
                 priority: int = DEFAULT_PRIORITY, labels: Sequence[str] = ()):
        self.title = TextBuffer(title)
        self.description = TextBuffer(description)
        self.issue_type = issue_type
        self.priority = max(0, min(MAX_PRIORITY, priority))
        self.labels = TextBuffer(", ".join(labels))
        self._initial_labels = list(dict.fromkeys(labels))
        self._initial_labels_text = self.labels.text
        self.focus = FormField.TITLE

    @classmethod
    def from_issue(cls, issue: Issue) -> "IssueForm":
        return cls(issue.title, issue.description or "", issue.issue_type, issue.priority, issue.labels)

    def focus_next(self) -> None:
        self.focus = FORM_FIELDS[(FORM_FIELDS.index(self.focus) + 1) % len(FORM_FIELDS)]

    def focus_prev(self) -> None:
        self.focus = FORM_FIELDS[(FORM_FIELDS.index(self.focus) - 1) % len(FORM_FIELDS)]

    def can_submit(self) -> bool:
        return bool(self.title.text.strip())

    def title_value(self) -> str:
        return self.title.text

    def description_value(self) -> Optional[str]:
        return self.description.text if self.description.text.strip() else None

    def label_values(self) -> List[str]:
        # untouched text keeps labels that themselves contain commas
        if self.labels.text == self._initial_labels_text:
            return list(self._initial_labels)
        return split_labels(self.labels.text)

    def handle_paste(self, text: str) -> None:
        if self.focus is FormField.TITLE:
            self.title.insert(" ".join(line.rstrip() for line in text.splitlines()))
        elif self.focus is FormField.DESCRIPTION:
            self.description.insert(text)
        elif self.focus is FormField.LABELS:
            self.labels.insert(", ".join(line.strip() for line in text.splitlines() if line.strip()))

    def handle_key(self, key: KeyPress) -> FormAction:
        k = key.key
        if k == "escape":
            return FormAction.CANCELLED
        if (k == "s" and key.ctrl) or (k == "enter" and key.ctrl):
            return FormAction.SUBMIT if self.can_submit() else FormAction.NONE
        if k == "backtab" or (k == "tab" and key.shift):
            self.focus_prev()
            return FormAction.NONE
        if k == "tab":
            self.focus_next()
            return FormAction.NONE

        if self.focus is FormField.TITLE:
            if k == "enter" and not key.is_newline:
                self.focus = FormField.DESCRIPTION
            else:
                self.title.handle_key(key, multiline=True)
        elif self.focus is FormField.DESCRIPTION:
            if k == "enter":
                self.description.insert("\n")
            else:
                self.description.handle_key(key, multiline=True)
        elif self.focus is FormField.TYPE:
            if key.ctrl or key.alt:
                return FormAction.NONE
            if k in _PREV_KEYS:
                self.issue_type = self.issue_type.cycle(-1)
            elif k in _NEXT_KEYS:
                self.issue_type = self.issue_type.cycle(1)
        elif self.focus is FormField.PRIORITY:
            if key.ctrl or key.alt:
                return FormAction.NONE
            if k in _PREV_KEYS:
                self.priority = max(0, self.priority - 1)
            elif k in _NEXT_KEYS:
                self.priority = min(MAX_PRIORITY, self.priority + 1)
            elif len(k) == 1 and k in "01234":
                self.priority = int(k)
        elif self.focus is FormField.LABELS:
            if k != "enter":
                self.labels.handle_key(key)
        return FormAction.NONE


class IssueChanges(NamedTuple):
    fields: List[Tuple[str, str]]
    labels_added: List[str]
    labels_removed: List[str]

    def is_empty(self) -> bool:
        return not (self.fields or self.labels_added or self.labels_removed)


def diff_issue(original: Issue, form: IssueForm) -> IssueChanges:
    """Only what the form actually changed: field updates plus label set differences."""
    fields: List[Tuple[str, str]] = []
    if form.title_value() != original.title:
        fields.append(("title", form.title_value()))
    new_description = form.description.text
    if new_description != (original.description or ""):
        fields.append(("description", new_description))
    if form.issue_type is not original.issue_type:
        fields.append(("type", form.issue_type.value))
    if form.priority != original.priority:
        fields.append(("priority", str(form.priority)))
    new_labels = form.label_values()
    old_labels = set(original.labels)
    return IssueChanges(
        fields=fields,
        labels_added=[l for l in new_labels if l not in old_labels],
        labels_removed=sorted(old_labels - set(new_labels)),
    )


# -----------------------------
# Mutations
# -----------------------------
class MutationDispatcher:
    """Runs user mutations through the backend, reloading the store after each one."""

    def __init__(self, backend: BrCli, reload: Callable[[], None]):
        self.backend = backend
        self.reload = reload

    @contextlib.contextmanager
    def _mutation(self, what: str) -> Iterator[None]:
        logger.info("Mutation: %s", what)
        try:
            yield
        except MutationError:
            logger.error("Mutation %s failed", what, exc_info=True)
            raise
        finally:
            self.reload()

    def _try_label(self, op: Callable[[str, str], None], issue_id: str, label: str) -> None:
        try:
            op(issue_id, label)
        except MutationError:
            logger.warning("Label %r on %s not applied", label, issue_id, exc_info=True)

    def create_issue(self, form: IssueForm, parent_id: Optional[str] = None) -> str:
        with self._mutation("create"):
            new_id = self.backend.create(form.title_value(), form.issue_type, form.priority,
                                         form.description_value(), parent_id=parent_id)
            if new_id:
                for label in form.label_values():
                    self._try_label(self.backend.add_label, new_id, label)
        return new_id

    def update_issue(self, original: Issue, form: IssueForm) -> IssueChanges:
        changes = diff_issue(original, form)
        if changes.is_empty():
            return changes
        with self._mutation(f"update {original.id}"):
            for field_name, value in changes.fields:
                self.backend.update_field(original.id, field_name, value)
            for label in changes.labels_added:
                self._try_label(self.backend.add_label, original.id, label)
            for label in changes.labels_removed:
                self._try_label(self.backend.remove_label, original.id, label)
        return changes

    def close_issue(self, issue_id: str, reason: str = "") -> None:
        with self._mutation(f"close {issue_id}"):
            self.backend.close(issue_id, reason.strip() or None)

    def reopen_issue(self, issue_id: str, reason: str = "") -> None:
        with self._mutation(f"reopen {issue_id}"):
            self.backend.update_status(issue_id, IssueStatus.OPEN.value)
            if reason.strip():
                try:
                    self.backend.add_comment(issue_id, f"Reopened: {reason.strip()}")
                except MutationError:
                    logger.warning("Reopen comment on %s not added", issue_id, exc_info=True)

    def add_comment(self, issue_id: str, text: str) -> bool:
        if not text.strip():
            return False
        with self._mutation(f"comment {issue_id}"):
            self.backend.add_comment(issue_id, text)
        return True

    def toggle_deferred(self, issue: Issue) -> bool:
        """Returns the new deferred state."""
        with self._mutation(f"defer {issue.id}"):
            if issue.is_deferred:
                self.backend.remove_label(issue.id, DEFERRED_LABEL)
            else:
                self.backend.add_label(issue.id, DEFERRED_LABEL)
        return not issue.is_deferred


# -----------------------------
# Input modes
# -----------------------------
class InputMode(Enum):
    NORMAL = "normal"
    SEARCH = "search"
    CREATING = "creating"
    EDITING = "editing"
    CLOSING = "closing"
    REOPENING = "reopening"
    COMMENTING = "commenting"


class NormalMode:
    input_mode = InputMode.NORMAL


@dataclass
class SearchMode:
    buffer: TextBuffer = field(default_factory=TextBuffer)
    input_mode = InputMode.SEARCH


@dataclass
class FormMode:
    form: IssueForm
    original: Optional[Issue] = None   # snapshot taken when editing began

    @property
    def input_mode(self) -> InputMode:
        return InputMode.CREATING if self.original is None else InputMode.EDITING


@dataclass
class PromptMode:
    input_mode: InputMode   # CLOSING, REOPENING or COMMENTING
    issue_id: str
    buffer: TextBuffer = field(default_factory=TextBuffer)


# -----------------------------
# Browser (interaction core)
# -----------------------------
LIST_PAGE = 10
DETAIL_PAGE = 10
WHEEL_DETAIL_STEP = 3


class IssueBrowser:
    """All UI state plus the rules that turn key, paste and mouse input into changes.

    Nothing here touches the terminal; the prompt_toolkit glue in run_ui() feeds
    events in and reads state back out for drawing.
    """

    def __init__(self, store, backend: BrCli, config: Optional[Config] = None,
                 themes: Optional[List[ThemePreset]] = None,
                 clock: Callable[[], float] = time.monotonic):
        cfg = config or Config()
        self.store = store
        self.dispatcher = MutationDispatcher(backend, self.refresh)
        self.themes = themes or list(BUILTIN_THEMES)
        self.theme_index = 0
        if cfg.theme:
            for i, preset in enumerate(self.themes):
                if preset.name.lower() == cfg.theme.lower():
                    self.theme_index = i
                    break
        self.issues: List[Issue] = []
        self.mode = NormalMode()
        self.focus = Focus.LIST
        self.layout = PaneLayout(cfg.split_percent)
        self.selected: Optional[int] = 0
        self.list_offset = 0
        self.detail_scroll = DetailScroll()
        self.hide_closed = cfg.hide_closed
        self.show_labels = cfg.show_labels
        self.show_detail = False
        self.show_help = False
        self.should_quit = False
        self.filter_text = ""
        self.status_message = ""
        self.refresh_interval = cfg.refresh_seconds
        self._clock = clock
        self.last_refresh = clock()

    # ---- derived state ----
    @property
    def current_theme(self) -> ThemePreset:
        return self.themes[self.theme_index]

    def active_filter(self) -> Optional[str]:
        text = self.mode.buffer.text if isinstance(self.mode, SearchMode) else self.filter_text
        return text or None

    def view(self) -> List[ViewEntry]:
        return build_view_order(self.issues, self.hide_closed, self.active_filter())

    def selected_issue(self) -> Optional[Issue]:
        view = self.view()
        if self.selected is None or not 0 <= self.selected < len(view):
            return None
        return view[self.selected].issue

    def snapshot_ui_state(self) -> dict:
        return {
            "theme_index": self.theme_index,
            "theme_name": self.current_theme.name,
            "hide_closed": self.hide_closed,
            "show_labels": self.show_labels,
            "split_percent": self.layout.split_percent,
        }

    def apply_ui_state(self, data: dict) -> None:
        name = data.get("theme_name")
        idx = data.get("theme_index")
        names = [p.name for p in self.themes]
        if isinstance(name, str) and name in names:
            self.theme_index = names.index(name)
        elif isinstance(idx, int) and 0 <= idx < len(self.themes):
            self.theme_index = idx
        if isinstance(data.get("hide_closed"), bool):
            self.hide_closed = data["hide_closed"]
        if isinstance(data.get("show_labels"), bool):
            self.show_labels = data["show_labels"]
        split = data.get("split_percent")
        if isinstance(split, int) and not isinstance(split, bool):
            self.layout.split_percent = clamp_split(split)

    # ---- selection ----
    def _clamp_selection(self) -> None:
        n = len(self.view())
        if n == 0:
            self.selected = None
        elif self.selected is None:
            self.selected = 0
        elif self.selected >= n:
            self.selected = n - 1

    def select_issue(self, issue_id: str) -> bool:
        for i, entry in enumerate(self.view()):
            if entry.issue.id == issue_id:
                self.selected = i
                return True
        return False

    def _step_selection(self, delta: int) -> None:
        n = len(self.view())
        if n == 0:
            return
        self.selected = 0 if self.selected is None else (self.selected + delta) % n

    def _page_selection(self, delta: int) -> None:
        n = len(self.view())
        if n == 0:
            return
        self.selected = max(0, min(n - 1, (self.selected or 0) + delta))

    def ensure_selection_visible(self, rows: int) -> None:
        n = len(self.view())
        if rows <= 0:
            return
        sel = self.selected or 0
        if sel < self.list_offset:
            self.list_offset = sel
        elif sel >= self.list_offset + rows:
            self.list_offset = sel - rows + 1
        self.list_offset = max(0, min(self.list_offset, max(0, n - rows)))

    # ---- refresh ----
    def refresh(self) -> None:
        self.issues = self.store.load_all()
        self.last_refresh = self._clock()
        logger.debug("Loaded %d issues", len(self.issues))
        self._clamp_selection()

    def tick(self, now: Optional[float] = None) -> bool:
        """Auto-refresh when the interval has elapsed; returns True if a reload was attempted."""
        if self.refresh_interval <= 0:
            return False
        now = self._clock() if now is None else now
        if now - self.last_refresh < self.refresh_interval:
            return False
        try:
            self.refresh()
        except StoreError as exc:
            logger.warning("Auto-refresh failed: %s", exc)
            self.status_message = f"Refresh failed: {exc}"
            self.last_refresh = now
        return True

    def cycle_theme(self) -> ThemePreset:
        self.theme_index = (self.theme_index + 1) % len(self.themes)
        self.status_message = f"Theme: {self.current_theme.name}"
        return self.current_theme

    # ---- input ----
    def handle_key(self, key: KeyPress) -> None:
        if self.show_help:
            self.show_help = False
            return
        mode = self.mode
        try:
            if isinstance(mode, SearchMode):
                self._handle_search_key(mode, key)
            elif isinstance(mode, FormMode):
                self._handle_form_key(mode, key)
            elif isinstance(mode, PromptMode):
                self._handle_prompt_key(mode, key)
            else:
                self._handle_normal_key(key)
        finally:
            self._clamp_selection()

    def handle_paste(self, text: str) -> None:
        if self.show_help:
            self.show_help = False
            return
        mode = self.mode
        if isinstance(mode, SearchMode):
            before = len(mode.buffer.text)
            mode.buffer.insert(" ".join(line.rstrip() for line in text.splitlines()))
            if len(mode.buffer.text) != before:
                self.selected = 0
        elif isinstance(mode, FormMode):
            mode.form.handle_paste(text)
        elif isinstance(mode, PromptMode):
            mode.buffer.insert(text)
        self._clamp_selection()

    def _commit(self, action: Callable[[], Optional[str]]) -> None:
        try:
            message = action()
        except MutationError as exc:
            self.status_message = str(exc)
            return
        if message:
            self.status_message = message

    def _handle_search_key(self, mode: SearchMode, key: KeyPress) -> None:
        if key.key == "escape":
            self.filter_text = ""
            self.mode = NormalMode()
        elif key.key == "enter" and not key.is_newline:
            self.filter_text = mode.buffer.text
            self.mode = NormalMode()
        else:
            before = len(mode.buffer.text)
            mode.buffer.handle_key(key)
            if len(mode.buffer.text) != before:
                self.selected = 0

    def _handle_form_key(self, mode: FormMode, key: KeyPress) -> None:
        action = mode.form.handle_key(key)
        if action is FormAction.CANCELLED:
            self.mode = NormalMode()
        elif action is FormAction.SUBMIT:
            self.mode = NormalMode()
            if mode.original is None:
                self._commit(lambda: self._create(mode.form))
            else:
                self._commit(lambda: self._update(mode.original, mode.form))

    def _create(self, form: IssueForm) -> str:
        new_id = self.dispatcher.create_issue(form)
        if not (new_id and self.select_issue(new_id)):
            self.selected = 0
        return f"Created {new_id}" if new_id else "Created issue"

    def _update(self, original: Issue, form: IssueForm) -> str:
        changes = self.dispatcher.update_issue(original, form)
        if changes.is_empty():
            return "No changes"
        return f"Updated {original.id}"

    def _handle_prompt_key(self, mode: PromptMode, key: KeyPress) -> None:
        if key.key == "escape":
            self.mode = NormalMode()
            return
        if key.key == "enter" and not key.is_newline:
            self.mode = NormalMode()
            text = mode.buffer.text
            if mode.input_mode is InputMode.CLOSING:
                self._commit(lambda: self._close(mode.issue_id, text))
            elif mode.input_mode is InputMode.REOPENING:
                self._commit(lambda: self._reopen(mode.issue_id, text))
            else:
                self._commit(lambda: self._comment(mode.issue_id, text))
            return
        mode.buffer.handle_key(key, multiline=True)

    def _close(self, issue_id: str, reason: str) -> str:
        self.dispatcher.close_issue(issue_id, reason)
        return f"Closed {issue_id}"

    def _reopen(self, issue_id: str, reason: str) -> str:
        self.dispatcher.reopen_issue(issue_id, reason)
        self.select_issue(issue_id)
        return f"Reopened {issue_id}"

    def _comment(self, issue_id: str, text: str) -> Optional[str]:
        if self.dispatcher.add_comment(issue_id, text):
            return f"Commented on {issue_id}"
        return None

    def _toggle_deferred(self, issue: Issue) -> str:
        deferred = self.dispatcher.toggle_deferred(issue)
        return f"{issue.id} {'deferred' if deferred else 'no longer deferred'}"

    def _open_detail(self) -> None:
        self.show_detail = True
        self.focus = Focus.DETAIL
        self.detail_scroll.reset()

    def _close_detail(self) -> None:
        self.show_detail = False
        self.focus = Focus.LIST

    def _handle_normal_key(self, key: KeyPress) -> None:
        k, ctrl = key.key, key.ctrl
        in_detail = self.focus is Focus.DETAIL
        if key.alt:
            return
        if (k == "q" and not ctrl) or (k == "c" and ctrl):
            self.should_quit = True
        elif k == "z" and ctrl:
            raise SuspendRequested()
        elif k in ("up", "k") and not ctrl:
            if in_detail:
                self.detail_scroll.scroll_up(1)
            else:
                self._step_selection(-1)
        elif k in ("down", "j") and not ctrl:
            if in_detail:
                self.detail_scroll.scroll_down(1)
            else:
                self._step_selection(1)
        elif (k in ("u", "b", "pageup") and not ctrl) or (k == "k" and ctrl):
            if in_detail:
                self.detail_scroll.scroll_up(DETAIL_PAGE)
            else:
                self._page_selection(-LIST_PAGE)
        elif (k in ("d", "f", "pagedown") and not ctrl) or (k == "j" and ctrl):
            if in_detail:
                self.detail_scroll.scroll_down(DETAIL_PAGE)
            else:
                self._page_selection(LIST_PAGE)
        elif ctrl:
            return
        elif k in ("home", "g"):
            if in_detail:
                self.detail_scroll.reset()
            else:
                self.selected = 0
        elif k in ("end", "G"):
            if in_detail:
                self.detail_scroll.to_end()
            else:
                self.selected = max(0, len(self.view()) - 1)
        elif k in ("enter", "l", "right") and not in_detail:
            if self.selected_issue() is not None:
                self._open_detail()
        elif k in ("escape", "h", "left") and in_detail:
            self._close_detail()
        elif k == "escape":
            self.filter_text = ""
        elif k == "tab" and self.show_detail:
            self.focus = Focus.LIST if in_detail else Focus.DETAIL
            if self.focus is Focus.DETAIL:
                self.detail_scroll.reset()
        elif k == "<" and self.show_detail:
            self.layout.adjust_split(-SPLIT_STEP)
        elif k == ">" and self.show_detail:
            self.layout.adjust_split(SPLIT_STEP)
        elif k == "/":
            self.mode = SearchMode(TextBuffer(self.filter_text))
        elif k == "a":
            self.mode = FormMode(IssueForm())
        elif k == "e" and in_detail:
            issue = self.selected_issue()
            if issue is not None:
                self.mode = FormMode(IssueForm.from_issue(issue), original=issue)
        elif k == "x" and in_detail:
            issue = self.selected_issue()
            if issue is not None:
                kind = InputMode.REOPENING if issue.is_closed else InputMode.CLOSING
                self.mode = PromptMode(kind, issue.id)
        elif k == "c" and in_detail:
            issue = self.selected_issue()
            if issue is not None:
                self.mode = PromptMode(InputMode.COMMENTING, issue.id)
        elif k == "c":
            self.hide_closed = not self.hide_closed
            self.status_message = "Hiding closed issues" if self.hide_closed else "Showing closed issues"
        elif k == "D" and in_detail:
            issue = self.selected_issue()
            if issue is not None:
                self._commit(lambda: self._toggle_deferred(issue))
        elif k == "L":
            self.show_labels = not self.show_labels
        elif k == "t":
            self.cycle_theme()
        elif k == "r":
            self.refresh()
            self.status_message = f"Refreshed {len(self.issues)} issues"
        elif k == "?":
            self.show_help = True

    def handle_mouse(self, event: MouseInput) -> None:
        if self.show_help:
            self.show_help = False
            return
        if not isinstance(self.mode, NormalMode):
            return
        lay = self.layout
        x, y = event.x, event.y
        if event.kind == MOUSE_DOWN:
            if lay.is_on_split_handle(x, y):
                lay.resizing = True
                lay.split_from_mouse(x)
                return
            lay.resizing = False
            pane = lay.hit_test(x, y)
            if pane is Focus.LIST:
                row = y - lay.list_area.y - 1
                idx = self.list_offset + row
                if 0 <= row < lay.list_area.height - 2 and idx < len(self.view()):
                    self.selected = idx
                    self._open_detail()
            elif pane is Focus.DETAIL:
                self.focus = Focus.DETAIL
        elif event.kind == MOUSE_DRAG:
            if lay.resizing:
                lay.split_from_mouse(x)
        elif event.kind == MOUSE_UP:
            lay.resizing = False
        elif event.kind in (MOUSE_SCROLL_UP, MOUSE_SCROLL_DOWN):
            up = event.kind == MOUSE_SCROLL_UP
            pane = lay.hit_test(x, y)
            if pane is Focus.DETAIL:
                if up:
                    self.detail_scroll.scroll_up(WHEEL_DETAIL_STEP)
                else:
                    self.detail_scroll.scroll_down(WHEEL_DETAIL_STEP)
            elif pane is Focus.LIST:
                self._step_selection(-1 if up else 1)
        self._clamp_selection()


# -----------------------------
# Rendering helpers
# -----------------------------
Fragment = Tuple[str, str]

CURSOR_GLYPH = "█"
PRIORITY_NAMES = ("critical", "high", "medium", "low", "backlog")
STATUS_STYLES = {
    IssueStatus.OPEN: 'class:status.open',
    IssueStatus.IN_PROGRESS: 'class:status.in_progress',
    IssueStatus.BLOCKED: 'class:status.blocked',
    IssueStatus.CLOSED: 'class:status.closed',
}


def _priority_style(priority: int) -> str:
    if priority <= 0:
        return 'class:priority.critical'
    if priority == 1:
        return 'class:priority.high'
    if priority == 2:
        return 'class:priority.medium'
    return 'class:priority.low'


def _char_width(ch: str) -> int:
    """Return printable cell width for a single character."""
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    fallback = 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    width = get_cwidth(ch)
    return width if width > fallback else fallback


def _display_width(text: str) -> int:
    return sum(_char_width(ch) for ch in text)


def _sanitize_cell_text(s: Optional[str]) -> str:
    return (s or "").replace("\n", " ").replace("\r", " ").replace("\t", " ")


def _truncate(s: str, maxlen: int) -> str:
    """Truncate string to a maximum display width, preserving whole glyphs."""
    s = _sanitize_cell_text(s)
    if maxlen <= 0:
        return ""
    if _display_width(s) <= maxlen:
        return s
    ellipsis = "…"
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = _char_width(ch)
        if width + ch_w + 1 > maxlen:
            break
        out.append(ch)
        width += ch_w
    return "".join(out) + ellipsis


def _fit_fragments(frags: Sequence[Fragment], width: int, fill_style: str = '') -> List[Fragment]:
    """Cut a line of fragments to `width` cells and pad it with spaces to exactly that width."""
    out: List[Fragment] = []
    used = 0
    for style, text in frags:
        chunk: List[str] = []
        full = False
        for ch in _sanitize_cell_text(text):
            w = _char_width(ch)
            if used + w > width:
                full = True
                break
            chunk.append(ch)
            used += w
        if chunk:
            out.append((style, "".join(chunk)))
        if full:
            break
    if used < width:
        out.append((fill_style, " " * (width - used)))
    return out


def _wrap(text: str, width: int) -> List[str]:
    out: List[str] = []
    for line in text.split("\n"):
        out.extend(textwrap.wrap(line, width=max(1, width)) or [""])
    return out


def _box_rows(width: int, height: int, title: str, body: Sequence[Sequence[Fragment]],
              focused: bool) -> List[List[Fragment]]:
    """A rounded box of exactly width x height cells with `title` in the top border."""
    if width < 2 or height < 2:
        return [[('', " " * max(0, width))] for _ in range(max(0, height))]
    border = 'class:border.focused' if focused else 'class:border'
    inner = width - 2
    title_text = _truncate(title, inner)
    rows: List[List[Fragment]] = [[
        (border, "╭"),
        ('class:title', title_text),
        (border, "─" * (inner - _display_width(title_text)) + "╮"),
    ]]
    for i in range(height - 2):
        line = body[i] if i < len(body) else []
        rows.append([(border, "│")] + _fit_fragments(line, inner) + [(border, "│")])
    rows.append([(border, "╰" + "─" * inner + "╯")])
    return rows


def _rows_to_fragments(rows: Sequence[Sequence[Fragment]], handler=None) -> list:
    out: List[Fragment] = []
    for i, row in enumerate(rows):
        if i:
            out.append(('', "\n"))
        out.extend(row)
    if handler is None:
        return out
    return [(style, text, handler) for style, text in out]


def _buffer_rows(buffer: TextBuffer, show_cursor: bool, width: int, height: int) -> List[List[Fragment]]:
    """Lines of a text buffer with a block cursor, scrolled to keep the cursor visible."""
    cur_row, cur_col = buffer.cursor_row_col()
    rows: List[List[Fragment]] = []
    for i, line in enumerate(buffer.lines()):
        if not (show_cursor and i == cur_row):
            rows.append([('class:text', line)])
            continue
        before = line[:cur_col]
        while before and _display_width(before) > max(0, width - 1):
            before = before[1:]
        rows.append([('class:text', before), ('class:cursor', CURSOR_GLYPH), ('class:text', line[cur_col:])])
    if height > 0 and cur_row >= height:
        rows = rows[cur_row - height + 1:]
    return rows


def issue_row_fragments(entry: ViewEntry, show_labels: bool) -> List[Fragment]:
    issue = entry.issue
    dim = issue.is_closed or issue.is_deferred
    frags: List[Fragment] = []
    if entry.depth:
        frags.append(('class:muted', "  " * entry.depth))
    frags.append((STATUS_STYLES[issue.status], issue.issue_type.icon_for(issue.status) + " "))
    frags.append((f"bold {_priority_style(issue.priority)}", f"{issue.priority_label} "))
    frags.append(('class:muted', issue.id))
    frags.append(('class:muted' if dim else 'class:text', f": {issue.title}"))
    if show_labels and issue.labels:
        frags.append(('class:accent', " " + " ".join(f"[{label}]" for label in issue.labels)))
    return frags


def _fmt_time(ts: Optional[dt.datetime]) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M") if ts else "-"


def detail_lines(issue: Optional[Issue], width: int) -> List[List[Fragment]]:
    if issue is None:
        return [[('class:muted', "No issue selected")]]
    width = max(1, width)
    lines: List[List[Fragment]] = [[('class:title', ln)] for ln in _wrap(issue.title, width)]
    lines.append([])

    def meta(label: str, *frags: Fragment) -> None:
        lines.append([('class:muted', f"{label:<10}")] + list(frags))

    meta("ID", ('class:accent', issue.id))
    meta("Status", (STATUS_STYLES[issue.status], f"{issue.status.icon} {issue.status.value}"))
    meta("Type", ('class:text', f"{issue.issue_type.icon_for(issue.status)} {issue.issue_type.value}"))
    meta("Priority", (_priority_style(issue.priority),
                      f"{issue.priority_label} ({PRIORITY_NAMES[min(issue.priority, MAX_PRIORITY)]})"))
    if issue.labels:
        meta("Labels", ('class:accent', ", ".join(issue.labels)))
    if issue.assignee:
        meta("Assignee", ('class:text', issue.assignee))
    if issue.created_by:
        meta("Author", ('class:text', issue.created_by))
    meta("Created", ('class:text', _fmt_time(issue.created_at)))
    meta("Updated", ('class:text', _fmt_time(issue.updated_at)))
    if issue.is_closed:
        meta("Closed", ('class:status.closed', _fmt_time(issue.closed_at)))
        if issue.close_reason:
            meta("Reason", ('class:text', issue.close_reason))

    for label, ids in (("Parent", issue.parent_ids), ("Blocked by", issue.blocked_by), ("Blocks", issue.blocks)):
        if ids:
            style = 'class:status.blocked' if label == "Blocked by" else 'class:accent'
            meta(label, (style, ", ".join(ids)))

    lines.append([])
    lines.append([('class:accent', "Description")])
    if issue.description:
        lines.extend([('class:text', ln)] for ln in _wrap(issue.description, width))
    else:
        lines.append([('class:muted', "(none)")])

    if issue.comments:
        lines.append([])
        lines.append([('class:accent', f"Comments ({len(issue.comments)})")])
        for comment in issue.comments:
            lines.append([('class:title', comment.author), ('class:muted', f"  {_fmt_time(comment.created_at)}")])
            lines.extend([('class:text', "  " + ln)] for ln in _wrap(comment.text, width - 2))
    return lines


def render_list_pane(browser: IssueBrowser, handler=None) -> list:
    area = browser.layout.list_area
    if area.is_empty():
        return []
    view = browser.view()
    inner = max(0, area.width - 2)
    rows = max(0, area.height - 2)
    browser.ensure_selection_visible(rows)
    body: List[List[Fragment]] = []
    if not view:
        hint = "No issues match the filter." if browser.active_filter() else "No issues."
        body.append([('class:muted', hint)])
    for idx in range(browser.list_offset, min(len(view), browser.list_offset + rows)):
        frags = issue_row_fragments(view[idx], browser.show_labels)
        if idx == browser.selected:
            frags = [(f"{style} class:selected", text) for style, text in _fit_fragments(frags, inner)]
        body.append(frags)
    title = f" Issues ({len(view)}) "
    return _rows_to_fragments(_box_rows(area.width, area.height, title, body, browser.focus is Focus.LIST), handler)


def render_detail_pane(browser: IssueBrowser, handler=None) -> list:
    area = browser.layout.detail_area
    if area.is_empty():
        return []
    lines = detail_lines(browser.selected_issue(), area.width - 2)
    browser.detail_scroll.fit(len(lines), area.height - 2)
    body = lines[browser.detail_scroll.offset:]
    focused = browser.focus is Focus.DETAIL
    return _rows_to_fragments(_box_rows(area.width, area.height, " Detail ", body, focused), handler)


_LIST_HINTS = [("j/k", "nav"), ("Enter", "open"), ("a", "add"), ("c", "closed"), ("/", "filter"),
               ("t", "theme"), ("?", "help"), ("q", "quit")]
_DETAIL_HINTS = [("j/k", "scroll"), ("e", "edit"), ("x", "close/reopen"), ("c", "comment"),
                 ("D", "defer"), ("Esc", "back"), ("?", "help"), ("q", "quit")]
_PROMPT_HINTS = [("Enter", "confirm"), ("A-Enter/C-j", "newline"), ("Esc", "cancel")]
_MODE_HINTS = {
    InputMode.SEARCH: [("Enter", "apply"), ("Esc", "clear")],
    InputMode.CREATING: [("Tab", "next field"), ("C-s", "create"), ("Esc", "cancel")],
    InputMode.EDITING: [("Tab", "next field"), ("C-s", "save"), ("Esc", "cancel")],
    InputMode.CLOSING: _PROMPT_HINTS,
    InputMode.REOPENING: _PROMPT_HINTS,
    InputMode.COMMENTING: _PROMPT_HINTS,
}


def footer_hints(browser: IssueBrowser) -> List[Tuple[str, str]]:
    mode = browser.mode.input_mode
    if mode is InputMode.NORMAL:
        return _DETAIL_HINTS if browser.focus is Focus.DETAIL else _LIST_HINTS
    return _MODE_HINTS[mode]


def render_footer(browser: IssueBrowser, width: int) -> List[Fragment]:
    frags: List[Fragment] = []
    if isinstance(browser.mode, SearchMode):
        buf = browser.mode.buffer
        frags += [('class:accent', "/"), ('class:text', buf.text[:buf.cursor]), ('class:cursor', CURSOR_GLYPH),
                  ('class:text', buf.text[buf.cursor:]), ('', "  ")]
    for i, (key, desc) in enumerate(footer_hints(browser)):
        if i:
            frags.append(('class:footer.sep', " │ "))
        frags += [('class:footer.key', key), ('class:footer.desc', f" {desc}")]
    if browser.filter_text and not isinstance(browser.mode, SearchMode):
        frags.append(('class:accent', f"  filter: {browser.filter_text}"))
    if browser.status_message:
        frags.append(('class:footer.message', f"  {browser.status_message}"))
    version = f" beads-tui {__version__} "
    used = sum(_display_width(text) for _, text in frags)
    if used + _display_width(version) <= width:
        frags.append(('', " " * (width - used - _display_width(version))))
        frags.append(('class:muted', version))
    return _fit_fragments(frags, width)


HELP_SECTIONS = [
    ("Navigation", [
        ("j/k, ↑/↓", "move selection (list) or scroll (detail)"),
        ("u/d, b/f, PgUp/PgDn", "page up / down"),
        ("g/G, Home/End", "first / last"),
        ("Enter, l", "open detail pane"),
        ("Esc, h", "close detail pane (or clear filter)"),
        ("Tab", "switch pane focus"),
        ("< / >", "resize panes"),
        ("mouse", "click to open, drag divider, wheel to scroll"),
    ]),
    ("Issues", [
        ("a", "add issue"),
        ("e", "edit issue (detail)"),
        ("x", "close / reopen issue (detail)"),
        ("c", "comment (detail) / show closed (list)"),
        ("D", "toggle deferred (detail)"),
    ]),
    ("View", [
        ("/", "filter by title or id"),
        ("L", "toggle labels"),
        ("t", "cycle theme"),
        ("r", "refresh"),
        ("q, Ctrl+C", "quit"),
        ("Ctrl+Z", "suspend"),
    ]),
]


def help_size(columns: int, rows: int) -> Tuple[int, int]:
    needed = sum(len(items) + 2 for _, items in HELP_SECTIONS) + 3
    return max(20, min(64, columns - 4)), max(6, min(needed, rows - 2))


def render_help(width: int, height: int) -> List[Fragment]:
    body: List[List[Fragment]] = []
    for title, items in HELP_SECTIONS:
        if body:
            body.append([])
        body.append([('class:accent', title)])
        for keys, desc in items:
            body.append([('class:footer.key', f"  {keys:<22}"), ('class:text', desc)])
    body.append([])
    body.append([('class:muted', "Press any key to close")])
    return _rows_to_fragments(_box_rows(width, height, " Help ", body, True))


def form_size(columns: int, rows: int) -> Tuple[int, int]:
    return max(30, min(80, columns - 4)), max(14, min(24, rows - 2))


def _option_fragments(label: str, value: str, focused: bool) -> List[Fragment]:
    style = 'class:field.focused' if focused else 'class:text'
    return [('class:muted', f"{label}: "), (style, f"◀ {value} ▶"), ('', "    ")]


def render_form(mode: FormMode, width: int, height: int) -> List[Fragment]:
    form = mode.form
    inner = width - 2
    heading = f" Edit {mode.original.id} " if mode.original is not None else " New issue "
    desc_h = max(3, height - 10)
    focus = form.focus
    rows: List[List[Fragment]] = [_fit_fragments([('class:title', heading)], width)]
    rows += _box_rows(width, 3, " Title ", _buffer_rows(form.title, focus is FormField.TITLE, inner, 1),
                      focus is FormField.TITLE)
    rows += _box_rows(width, desc_h, " Description ",
                      _buffer_rows(form.description, focus is FormField.DESCRIPTION, inner, desc_h - 2),
                      focus is FormField.DESCRIPTION)
    options = (_option_fragments("Type", f"{form.issue_type.icon_for(IssueStatus.OPEN)} {form.issue_type.value}",
                                 focus is FormField.TYPE)
               + _option_fragments("Priority", f"P{form.priority}", focus is FormField.PRIORITY))
    rows += _box_rows(width, 3, " Options ", [options], focus in (FormField.TYPE, FormField.PRIORITY))
    rows += _box_rows(width, 3, " Labels (comma separated) ",
                      _buffer_rows(form.labels, focus is FormField.LABELS, inner, 1), focus is FormField.LABELS)
    return _rows_to_fragments(rows)


_PROMPT_TITLES = {
    InputMode.CLOSING: " Close {id} ",
    InputMode.REOPENING: " Reopen {id} ",
    InputMode.COMMENTING: " Comment on {id} ",
}
_PROMPT_LABELS = {
    InputMode.CLOSING: "Reason (optional)",
    InputMode.REOPENING: "Reason (optional)",
    InputMode.COMMENTING: "Comment",
}


def prompt_height(mode: PromptMode) -> int:
    return min(8, max(1, len(mode.buffer.lines()))) + 3


def render_prompt(mode: PromptMode, width: int) -> List[Fragment]:
    inner_h = prompt_height(mode) - 3
    title = _PROMPT_TITLES[mode.input_mode].format(id=mode.issue_id)
    rows = _box_rows(width, inner_h + 2, title, _buffer_rows(mode.buffer, True, width - 2, inner_h), True)
    rows.append(_fit_fragments([('class:muted', f" {_PROMPT_LABELS[mode.input_mode]}")], width))
    return _rows_to_fragments(rows)


def format_tree(entries: Sequence[ViewEntry]) -> List[str]:
    """Plain-text rendering of the issue forest, for --no-ui."""
    out = []
    for entry in entries:
        issue = entry.issue
        icon = issue.issue_type.icon_for(issue.status)
        labels = " " + " ".join(f"[{l}]" for l in issue.labels) if issue.labels else ""
        out.append(f"{'  ' * entry.depth}{icon} {issue.priority_label} {issue.id}: {issue.title}"
                   f" ({issue.status.value}){labels}")
    return out


# -----------------------------
# UI
# -----------------------------
TICK_SECONDS = 0.1

_NAMED_KEYS: Dict[object, KeyPress] = {
    'escape': KeyPress("escape"),
    'c-m': KeyPress("enter"),
    'c-i': KeyPress("tab"),
    's-tab': KeyPress("backtab"),
    'c-h': KeyPress("backspace"),
    'c-j': KeyPress("j", ctrl=True),
    'up': KeyPress("up"),
    'down': KeyPress("down"),
    'left': KeyPress("left"),
    'right': KeyPress("right"),
    'home': KeyPress("home"),
    'end': KeyPress("end"),
    'pageup': KeyPress("pageup"),
    'pagedown': KeyPress("pagedown"),
    'delete': KeyPress("delete"),
    ('escape', 'b'): KeyPress("b", alt=True),
    ('escape', 'f'): KeyPress("f", alt=True),
    ('escape', 'c-m'): KeyPress("enter", alt=True),
}
for _letter in "abcdefgklnopqrstuvwxyz":
    _NAMED_KEYS['c-' + _letter] = KeyPress(_letter, ctrl=True)

_MOUSE_KINDS = {
    MouseEventType.MOUSE_DOWN: MOUSE_DOWN,
    MouseEventType.MOUSE_UP: MOUSE_UP,
    MouseEventType.SCROLL_UP: MOUSE_SCROLL_UP,
    MouseEventType.SCROLL_DOWN: MOUSE_SCROLL_DOWN,
}


def _mouse_input(mouse_event, origin: Rect) -> Optional[MouseInput]:
    """Translate a prompt_toolkit mouse event (control-relative) into screen coordinates."""
    kind = _MOUSE_KINDS.get(mouse_event.event_type)
    if mouse_event.event_type == MouseEventType.MOUSE_MOVE and mouse_event.button == MouseButton.LEFT:
        kind = MOUSE_DRAG
    if kind is None:
        return None
    pos = mouse_event.position
    return MouseInput(kind, origin.x + pos.x, origin.y + pos.y)


def run_ui(browser: IssueBrowser, state_path: str) -> None:
    applied_theme = [browser.theme_index]

    def style_for() -> Style:
        return Style.from_dict(browser.current_theme.style)

    def save_state() -> None:
        save_ui_state(state_path, browser.snapshot_ui_state())

    def after_input(app: Application) -> None:
        if browser.theme_index != applied_theme[0]:
            applied_theme[0] = browser.theme_index
            app.style = style_for()
            logger.info("Theme changed to %s", browser.current_theme.name)
            save_state()
        if browser.should_quit:
            save_state()
            app.exit()
            return
        app.invalidate()

    def dispatch(event, call: Callable[[], None]) -> None:
        try:
            call()
        except SuspendRequested:
            event.app.suspend_to_background()
        except Exception as exc:
            logger.exception("Input handler failed")
            event.app.exit(exception=exc)
            return
        after_input(event.app)

    kb = KeyBindings()

    def bind(keys, press: KeyPress) -> None:
        names = keys if isinstance(keys, tuple) else (keys,)

        @kb.add(*names)
        def _(event):
            dispatch(event, lambda: browser.handle_key(press))

    for keys, press in _NAMED_KEYS.items():
        bind(keys, press)

    @kb.add(Keys.Any)
    def _(event):
        key = event.key_sequence[0].key
        if not (isinstance(key, str) and len(key) == 1 and key.isprintable()):
            return
        dispatch(event, lambda: browser.handle_key(KeyPress(key)))

    @kb.add(Keys.BracketedPaste)
    def _(event):
        text = event.data.replace("\r\n", "\n").replace("\r", "\n")
        dispatch(event, lambda: browser.handle_paste(text))

    def mouse_handler(area: Callable[[], Rect]):
        def handler(mouse_event):
            m = _mouse_input(mouse_event, area())
            if m is None:
                return NotImplemented
            browser.handle_mouse(m)
            get_app().invalidate()
            return None
        return handler

    list_handler = mouse_handler(lambda: browser.layout.list_area)
    detail_handler = mouse_handler(lambda: browser.layout.detail_area)

    def screen_size() -> Tuple[int, int]:
        size = get_app().output.get_size()
        return size.columns, size.rows

    list_window = Window(
        FormattedTextControl(lambda: render_list_pane(browser, list_handler), show_cursor=False),
        width=lambda: Dimension.exact(browser.layout.list_area.width),
        style='class:pane',
    )
    detail_window = Window(
        FormattedTextControl(lambda: render_detail_pane(browser, detail_handler), show_cursor=False),
        width=lambda: Dimension.exact(browser.layout.detail_area.width),
        style='class:pane',
    )
    footer_window = Window(
        FormattedTextControl(lambda: render_footer(browser, screen_size()[0]), show_cursor=False),
        height=1,
        style='class:pane',
    )
    body = VSplit([
        ConditionalContainer(list_window, filter=Condition(lambda: not browser.layout.list_area.is_empty())),
        ConditionalContainer(detail_window, filter=Condition(lambda: not browser.layout.detail_area.is_empty())),
    ])

    form_window = Window(
        FormattedTextControl(
            lambda: render_form(browser.mode, *form_size(*screen_size())) if isinstance(browser.mode, FormMode) else [],
            show_cursor=False),
        width=lambda: Dimension.exact(form_size(*screen_size())[0]),
        height=lambda: Dimension.exact(form_size(*screen_size())[1]),
        style='class:pane',
    )

    def prompt_width() -> int:
        return max(30, min(70, screen_size()[0] - 4))

    prompt_window = Window(
        FormattedTextControl(
            lambda: render_prompt(browser.mode, prompt_width()) if isinstance(browser.mode, PromptMode) else [],
            show_cursor=False),
        width=lambda: Dimension.exact(prompt_width()),
        height=lambda: Dimension.exact(prompt_height(browser.mode) if isinstance(browser.mode, PromptMode) else 1),
        style='class:pane',
    )
    help_window = Window(
        FormattedTextControl(lambda: render_help(*help_size(*screen_size())), show_cursor=False),
        width=lambda: Dimension.exact(help_size(*screen_size())[0]),
        height=lambda: Dimension.exact(help_size(*screen_size())[1]),
        style='class:pane',
    )
    root = FloatContainer(
        content=HSplit([body, footer_window]),
        floats=[
            Float(content=ConditionalContainer(form_window, filter=Condition(lambda: isinstance(browser.mode, FormMode)))),
            Float(content=ConditionalContainer(prompt_window, filter=Condition(lambda: isinstance(browser.mode, PromptMode)))),
            Float(content=ConditionalContainer(help_window, filter=Condition(lambda: browser.show_help))),
        ],
    )

    app = Application(layout=Layout(root), key_bindings=kb, full_screen=True, mouse_support=True, style=style_for())
    app.ttimeoutlen = 0.05

    def sync_layout(_app) -> None:
        columns, rows = screen_size()
        browser.layout.update(columns, rows, browser.show_detail)

    app.before_render += sync_layout

    async def _ticker():
        while True:
            await asyncio.sleep(TICK_SECONDS)
            if browser.tick():
                app.invalidate()

    app.run(pre_run=lambda: app.create_background_task(_ticker()))
    save_state()


# -----------------------------
# CLI
# -----------------------------
def resolve_config(args: argparse.Namespace) -> Config:
    """Defaults, then the YAML file, then command-line flags."""
    if args.config:
        cfg = load_config(args.config)
    elif os.path.isfile(DEFAULT_CONFIG_PATH):
        cfg = load_config(DEFAULT_CONFIG_PATH)
    else:
        cfg = Config()
    if args.db:
        cfg.db_path = os.path.expanduser(args.db)
    if args.refresh is not None:
        if args.refresh < 0:
            raise ValueError("--refresh must be >= 0")
        cfg.refresh_seconds = args.refresh
    if args.br_command:
        cfg.br_command = args.br_command
    if args.theme:
        cfg.theme = args.theme
    if args.log_level:
        cfg.log_level = args.log_level
    return cfg


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="bu", description="Terminal dashboard for a beads issue database")
    ap.add_argument("--db", help=f"Path to the beads SQLite database (default: {DEFAULT_DB_PATH})")
    ap.add_argument("--config", help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH} if present)")
    ap.add_argument("--refresh", type=int, help="Auto-refresh interval in seconds; 0 disables it")
    ap.add_argument("--br", dest="br_command", help="Command used for writes (default: br)")
    ap.add_argument("--theme", help="Theme preset name")
    ap.add_argument("--no-ui", action="store_true", help="Print the issue tree and exit")
    ap.add_argument("--log-level", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = ap.parse_args(argv)

    try:
        cfg = resolve_config(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        sys.exit(1)
    setup_logging(cfg.log_path, cfg.log_level)

    if not os.path.exists(cfg.db_path):
        print(f"No beads database at {cfg.db_path}. Run 'br init' in your project, or pass --db.", file=sys.stderr)
        sys.exit(1)
    store = IssueStore(cfg.db_path)

    if args.no_ui:
        try:
            issues = store.load_all()
        except StoreError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        for line in format_tree(build_view_order(issues, cfg.hide_closed, None)):
            print(line)
        return

    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        print("bu needs an interactive terminal (use --no-ui for plain output).", file=sys.stderr)
        sys.exit(1)

    backend = BrCli(cfg.br_command, cwd=workspace_dir(cfg.db_path))
    if not backend.is_available():
        logger.warning("%s is not runnable; edits will fail", cfg.br_command)
    browser = IssueBrowser(store, backend, cfg, _load_theme_presets(Path(cfg.theme_dir)))
    browser.apply_ui_state(load_ui_state(cfg.state_path))
    logger.info("Starting on %s (refresh %ss)", cfg.db_path, cfg.refresh_seconds)
    try:
        browser.refresh()
        run_ui(browser, cfg.state_path)
    except Exception as exc:
        logger.exception("Fatal error")
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
