from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..ids import generate_id

if TYPE_CHECKING:
    from ._store import MindpmStore

# Field name -> history event emitted when the value changes on update.
TRACKED_FIELDS: dict[str, str] = {
    "status": "status_changed",
    "priority": "priority_changed",
    "title": "title_changed",
}


def record_event(
    conn: sqlite3.Connection,
    task_id: str,
    event: str,
    *,
    old_value: str | None = None,
    new_value: str | None = None,
    created_at: str | None = None,
) -> str:
    event_id = generate_id()
    conn.execute(
        """
        INSERT INTO task_history(id, task_id, event, old_value, new_value, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (event_id, task_id, event, old_value, new_value, created_at or db.now_iso()),
    )
    return event_id


def record_created(
    conn: sqlite3.Connection, task_id: str, *, status: str, priority: str, created_at: str
) -> str:
    return record_event(
        conn,
        task_id,
        "created",
        new_value=json.dumps({"status": status, "priority": priority}),
        created_at=created_at,
    )


def record_changes(
    conn: sqlite3.Connection,
    task_id: str,
    before: dict[str, Any],
    after: dict[str, Any],
    *,
    created_at: str,
) -> list[str]:
    """Append one event per tracked field whose value actually changed."""

    events: list[str] = []
    for field, event in TRACKED_FIELDS.items():
        if field not in after:
            continue
        old = before.get(field)
        new = after[field]
        if old == new:
            continue
        record_event(conn, task_id, event, old_value=old, new_value=new, created_at=created_at)
        events.append(event)
    return events


def task_history(store: MindpmStore, task_id: str) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        """
        SELECT id, task_id, event, old_value, new_value, created_at
        FROM task_history
        WHERE task_id = ?
        ORDER BY created_at ASC, rowid ASC
        """,
        (task_id,),
    ).fetchall()
    return db.rows_to_dicts(rows)
