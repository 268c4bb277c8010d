"""Session reconciliation.

At the start of work on a project, activity recorded since the project's
latest session is folded into a synthetic session row, and a snapshot of the
project state is assembled for the caller.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..ids import generate_id
from ..session_gate import SessionGate
from . import projects as store_projects
from . import records as store_records
from . import tasks as store_tasks
from .types import ActivityItem, LastSession, NotFoundError, Snapshot

if TYPE_CHECKING:
    from ._store import MindpmStore

logger = logging.getLogger(__name__)

AUTO_SESSION_PREFIX = "Auto-generated:"
RECENT_ACTIVITY_LIMIT = 20
RECENT_DECISIONS_LIMIT = 5
NOTE_TITLE_CHARS = 80

TASK_EVENT_TYPES = ("task_created", "task_updated")


def latest_session(conn: sqlite3.Connection, project_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT * FROM sessions
        WHERE project_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT 1
        """,
        (project_id,),
    ).fetchone()
    return decode_session(row) if row else None


def decode_session(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["tasks_worked_on"] = db.from_json_list(item.get("tasks_worked_on"))
    item["decisions_made"] = db.from_json_list(item.get("decisions_made"))
    return item


def activity_since(
    conn: sqlite3.Connection, project_id: str, cutoff: str
) -> list[ActivityItem]:
    """Everything created or updated after ``cutoff``, newest first."""

    rows = conn.execute(
        f"""
        SELECT 'task_created' AS type, id, title, created_at AS timestamp
        FROM tasks WHERE project_id = :pid AND created_at > :cutoff
        UNION ALL
        SELECT 'task_updated' AS type, id, title, updated_at AS timestamp
        FROM tasks
        WHERE project_id = :pid AND updated_at > :cutoff AND updated_at != created_at
        UNION ALL
        SELECT 'decision' AS type, id, title, created_at AS timestamp
        FROM decisions WHERE project_id = :pid AND created_at > :cutoff
        UNION ALL
        SELECT 'note' AS type, id, substr(content, 1, {NOTE_TITLE_CHARS}) AS title,
               created_at AS timestamp
        FROM notes WHERE project_id = :pid AND created_at > :cutoff
        ORDER BY timestamp DESC
        """,
        {"pid": project_id, "cutoff": cutoff},
    ).fetchall()
    return [
        ActivityItem(
            type=str(row["type"]),
            id=str(row["id"]),
            title=str(row["title"]),
            timestamp=str(row["timestamp"]),
        )
        for row in rows
    ]


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def insert_session(
    conn: sqlite3.Connection,
    project_id: str,
    summary: str,
    *,
    tasks_worked_on: list[str] | None = None,
    decisions_made: list[str] | None = None,
    next_steps: str | None = None,
) -> str:
    session_id = generate_id()
    conn.execute(
        """
        INSERT INTO sessions(id, project_id, summary, tasks_worked_on, decisions_made, next_steps, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            project_id,
            summary,
            db.to_json_list(tasks_worked_on) if tasks_worked_on else None,
            db.to_json_list(decisions_made) if decisions_made else None,
            next_steps,
            db.now_iso(),
        ),
    )
    return session_id


def _synthesize_session(
    conn: sqlite3.Connection, project_id: str, activity: list[ActivityItem]
) -> str:
    task_ids = _unique([item["id"] for item in activity if item["type"] in TASK_EVENT_TYPES])
    decision_ids = _unique([item["id"] for item in activity if item["type"] == "decision"])
    session_id = insert_session(
        conn,
        project_id,
        f"{AUTO_SESSION_PREFIX} {len(activity)} activities since last session",
        tasks_worked_on=task_ids,
        decisions_made=decision_ids,
    )
    logger.info(
        "recorded synthetic session %s for project %s (%d activities)",
        session_id,
        project_id,
        len(activity),
    )
    return session_id


def reconcile(
    store: MindpmStore, project_id: str, *, kanban_url: str | None = None
) -> Snapshot:
    """Fold unrecorded activity into a session and return the project snapshot."""

    conn = store.conn
    with db.transaction(conn):
        if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
            raise NotFoundError(f'Project "{project_id}" not found.')
        last = latest_session(conn, project_id)
        cutoff = last["created_at"] if last else db.EPOCH_SENTINEL
        activity = activity_since(conn, project_id, cutoff)
        if activity:
            _synthesize_session(conn, project_id, activity)
            last = latest_session(conn, project_id)
        store_projects.touch_project(store, project_id, commit=False)

        project = store_projects.get_project(store, project_id)
        assert project is not None
        last_session: LastSession | None = None
        if last is not None:
            last_session = LastSession(
                summary=last["summary"],
                next_steps=last["next_steps"],
                when=last["created_at"],
            )
        snapshot = Snapshot(
            kanban_url=kanban_url,
            project=project,
            last_session=last_session,
            recent_activity=activity[:RECENT_ACTIVITY_LIMIT],
            task_summary=store_projects.task_counts(store, project_id),
            active_tasks=store_tasks.active_tasks(store, project_id),
            blocked_tasks=[
                {"id": task["id"], "title": task["title"], "blocked_by": task["blocked_by"]}
                for task in store_tasks.blocked_tasks(store, project_id)
            ],
            recent_decisions=store_records.recent_decisions(
                store, project_id, limit=RECENT_DECISIONS_LIMIT
            ),
            context=store_records.get_context(store, project_id),
        )
    return snapshot


def start_session(
    store: MindpmStore,
    gate: SessionGate,
    project_id: str,
    *,
    kanban_url: str | None = None,
) -> Snapshot:
    """Always reconcile, and mark the project as started for this gate."""

    gate.mark(project_id)
    return reconcile(store, project_id, kanban_url=kanban_url)


def maybe_reconcile(
    store: MindpmStore,
    gate: SessionGate,
    project_id: str,
    *,
    kanban_url: str | None = None,
) -> Snapshot | None:
    """Reconcile only on the first call for ``project_id`` through ``gate``."""

    if not gate.claim(project_id):
        return None
    try:
        return reconcile(store, project_id, kanban_url=kanban_url)
    except Exception:
        gate.release(project_id)
        raise


def end_session(
    store: MindpmStore,
    project_id: str,
    summary: str,
    *,
    tasks_worked_on: list[str] | None = None,
    decisions_made: list[str] | None = None,
    next_steps: str | None = None,
) -> dict[str, Any]:
    if not (summary or "").strip():
        raise ValueError("Session summary is required")
    conn = store.conn
    with db.transaction(conn):
        if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
            raise NotFoundError(f'Project "{project_id}" not found.')
        session_id = insert_session(
            conn,
            project_id,
            summary,
            tasks_worked_on=tasks_worked_on,
            decisions_made=decisions_made,
            next_steps=next_steps,
        )
    row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    return decode_session(row)


def list_sessions(
    store: MindpmStore, project_id: str, *, limit: int = 20
) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        """
        SELECT * FROM sessions WHERE project_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
        """,
        (project_id, int(limit)),
    ).fetchall()
    return [decode_session(row) for row in rows]


def is_synthetic(session: dict[str, Any]) -> bool:
    return str(session.get("summary") or "").startswith(AUTO_SESSION_PREFIX)
