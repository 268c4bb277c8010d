from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .ids import generate_id, generate_slug, unique_slug

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".mindpm" / "memory.db"
SCHEMA_VERSION = 2

# Used as the activity cutoff for projects that have never had a session.
EPOCH_SENTINEL = "1970-01-01"

_SQL_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

_clock_lock = threading.Lock()
_last_ms = 0


def now_iso() -> str:
    """UTC timestamp in the same shape SQLite defaults produce, never repeating."""

    global _last_ms
    with _clock_lock:
        ms = int(time.time() * 1000)
        if ms <= _last_ms:
            ms = _last_ms + 1
        _last_ms = ms
    stamp = dt.datetime.fromtimestamp(ms // 1000, dt.UTC)
    return f"{stamp.strftime('%Y-%m-%dT%H:%M:%S')}.{ms % 1000:03d}Z"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA wal_autocheckpoint = 100")
    return conn


def close(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    except sqlite3.Error as exc:
        logger.warning("wal checkpoint failed on close", exc_info=exc)
    conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block as one write transaction; joins an already open one."""

    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def _schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def initialize_schema(conn: sqlite3.Connection) -> None:
    if _schema_version(conn) >= SCHEMA_VERSION:
        return
    _create_tables(conn)
    applied = apply_migrations(conn)
    _create_triggers(conn)
    if applied:
        logger.info("applied schema migrations: %s", ", ".join(applied))
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def _create_tables(conn: sqlite3.Connection) -> None:
    # Indexes on columns that older files lack (projects.slug, tasks.seq,
    # decisions.task_id) are created by the migrations once the column exists.
    conn.executescript(
        f"""
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            slug TEXT,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'active'
                CHECK(status IN ('active', 'paused', 'completed', 'archived')),
            repo_path TEXT,
            tech_stack TEXT,
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW}),
            updated_at TEXT NOT NULL DEFAULT ({_SQL_NOW})
        );

        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            seq INTEGER,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'todo'
                CHECK(status IN ('todo', 'in_progress', 'blocked', 'done', 'cancelled')),
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK(priority IN ('critical', 'high', 'medium', 'low')),
            tags TEXT,
            parent_task_id TEXT REFERENCES tasks(id),
            blocked_by TEXT,
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW}),
            updated_at TEXT NOT NULL DEFAULT ({_SQL_NOW}),
            completed_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
        CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
        CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at);
        CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_task_id);

        CREATE TABLE IF NOT EXISTS task_history (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL REFERENCES tasks(id),
            event TEXT NOT NULL,
            old_value TEXT,
            new_value TEXT,
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW})
        );
        CREATE INDEX IF NOT EXISTS idx_task_history_task_id ON task_history(task_id);
        CREATE INDEX IF NOT EXISTS idx_task_history_created_at ON task_history(created_at);

        CREATE TABLE IF NOT EXISTS decisions (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            task_id TEXT REFERENCES tasks(id),
            title TEXT NOT NULL,
            decision TEXT NOT NULL,
            reasoning TEXT,
            alternatives TEXT,
            tags TEXT,
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW})
        );
        CREATE INDEX IF NOT EXISTS idx_decisions_project_id ON decisions(project_id);
        CREATE INDEX IF NOT EXISTS idx_decisions_created_at ON decisions(created_at);

        CREATE TABLE IF NOT EXISTS notes (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            task_id TEXT REFERENCES tasks(id),
            content TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'general'
                CHECK(category IN ('general', 'architecture', 'bug', 'idea', 'research', 'meeting', 'review')),
            tags TEXT,
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW})
        );
        CREATE INDEX IF NOT EXISTS idx_notes_project_id ON notes(project_id);
        CREATE INDEX IF NOT EXISTS idx_notes_task_id ON notes(task_id);
        CREATE INDEX IF NOT EXISTS idx_notes_category ON notes(category);
        CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes(created_at);

        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            summary TEXT NOT NULL,
            tasks_worked_on TEXT,
            decisions_made TEXT,
            next_steps TEXT,
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW})
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_project_id ON sessions(project_id);
        CREATE INDEX IF NOT EXISTS idx_sessions_created_at ON sessions(created_at);

        CREATE TABLE IF NOT EXISTS context (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'general',
            created_at TEXT NOT NULL DEFAULT ({_SQL_NOW}),
            updated_at TEXT NOT NULL DEFAULT ({_SQL_NOW}),
            UNIQUE(project_id, key)
        );
        CREATE INDEX IF NOT EXISTS idx_context_project_id ON context(project_id);
        """
    )


def _create_triggers(conn: sqlite3.Connection) -> None:
    # Created after the migrations so that backfills keep legacy timestamps.
    conn.executescript(
        f"""
        CREATE TRIGGER IF NOT EXISTS trg_projects_updated_at
        AFTER UPDATE ON projects FOR EACH ROW
        WHEN NEW.updated_at = OLD.updated_at
        BEGIN
            UPDATE projects SET updated_at = {_SQL_NOW} WHERE id = NEW.id;
        END;

        CREATE TRIGGER IF NOT EXISTS trg_tasks_updated_at
        AFTER UPDATE ON tasks FOR EACH ROW
        WHEN NEW.updated_at = OLD.updated_at
        BEGIN
            UPDATE tasks SET updated_at = {_SQL_NOW} WHERE id = NEW.id;
        END;

        CREATE TRIGGER IF NOT EXISTS trg_context_updated_at
        AFTER UPDATE ON context FOR EACH ROW
        WHEN NEW.updated_at = OLD.updated_at
        BEGIN
            UPDATE context SET updated_at = {_SQL_NOW} WHERE id = NEW.id;
        END;
        """
    )


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _index_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = ?", (name,)
    ).fetchone()
    return row is not None


@dataclass(frozen=True)
class Migration:
    name: str
    needed: Callable[[sqlite3.Connection], bool]
    apply: Callable[[sqlite3.Connection], None]


def _add_project_slugs(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE projects ADD COLUMN slug TEXT")
    taken: set[str] = set()
    rows = conn.execute("SELECT id, name FROM projects ORDER BY id").fetchall()
    for row in rows:
        slug = unique_slug(generate_slug(row["name"]), taken)
        taken.add(slug)
        conn.execute("UPDATE projects SET slug = ? WHERE id = ?", (slug, row["id"]))


def _add_task_seq(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE tasks ADD COLUMN seq INTEGER")
    projects = conn.execute("SELECT DISTINCT project_id FROM tasks").fetchall()
    for project in projects:
        rows = conn.execute(
            "SELECT id FROM tasks WHERE project_id = ? ORDER BY created_at ASC, id ASC",
            (project["project_id"],),
        ).fetchall()
        for seq, row in enumerate(rows, start=1):
            conn.execute("UPDATE tasks SET seq = ? WHERE id = ?", (seq, row["id"]))


def _backfill_created_history(conn: sqlite3.Connection) -> None:
    rows = conn.execute("SELECT id, status, priority, created_at FROM tasks").fetchall()
    for row in rows:
        conn.execute(
            """
            INSERT INTO task_history(id, task_id, event, old_value, new_value, created_at)
            VALUES (?, ?, 'created', NULL, ?, ?)
            """,
            (
                generate_id(),
                row["id"],
                json.dumps({"status": row["status"], "priority": row["priority"]}),
                row["created_at"],
            ),
        )


def _history_backfill_needed(conn: sqlite3.Connection) -> bool:
    if conn.execute("SELECT 1 FROM task_history LIMIT 1").fetchone() is not None:
        return False
    return conn.execute("SELECT 1 FROM tasks LIMIT 1").fetchone() is not None


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        "projects_slug",
        lambda conn: "slug" not in _columns(conn, "projects"),
        _add_project_slugs,
    ),
    Migration(
        "projects_slug_index",
        lambda conn: not _index_exists(conn, "idx_projects_slug"),
        lambda conn: conn.execute("CREATE UNIQUE INDEX idx_projects_slug ON projects(slug)"),
    ),
    Migration(
        "tasks_seq",
        lambda conn: "seq" not in _columns(conn, "tasks"),
        _add_task_seq,
    ),
    Migration(
        "tasks_seq_index",
        lambda conn: not _index_exists(conn, "idx_tasks_seq"),
        lambda conn: conn.execute("CREATE INDEX idx_tasks_seq ON tasks(project_id, seq)"),
    ),
    Migration(
        "decisions_task_id",
        lambda conn: "task_id" not in _columns(conn, "decisions"),
        lambda conn: conn.execute(
            "ALTER TABLE decisions ADD COLUMN task_id TEXT REFERENCES tasks(id)"
        ),
    ),
    Migration(
        "decisions_task_id_index",
        lambda conn: not _index_exists(conn, "idx_decisions_task_id"),
        lambda conn: conn.execute("CREATE INDEX idx_decisions_task_id ON decisions(task_id)"),
    ),
    Migration("task_history_backfill", _history_backfill_needed, _backfill_created_history),
)


def apply_migrations(conn: sqlite3.Connection) -> list[str]:
    """Run every migration whose precondition holds, in order.

    Returns the names of the steps that ran; an up-to-date file yields [].
    """

    applied: list[str] = []
    for migration in MIGRATIONS:
        if not migration.needed(conn):
            continue
        with transaction(conn):
            migration.apply(conn)
        applied.append(migration.name)
    return applied


def to_json_list(values: Iterable[Any] | None) -> str | None:
    if values is None:
        return None
    return json.dumps(list(values), ensure_ascii=False)


def from_json_list(text: str | None) -> list[Any]:
    if not text:
        return []
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(data, list):
        return []
    return data


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
