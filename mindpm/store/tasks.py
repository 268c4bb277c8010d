from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..enums import (
    CLOSED_TASK_STATUSES,
    NEXT_TASK_STATUSES,
    priority_rank_sql,
    validate_priority,
    validate_task_status,
)
from ..ids import generate_id, short_id
from . import history as store_history
from .types import NotFoundError

if TYPE_CHECKING:
    from ._store import MindpmStore

_TASK_SELECT = """
    SELECT t.*, p.slug AS project_slug
    FROM tasks t
    JOIN projects p ON p.id = t.project_id
"""


def decode_task(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    item = dict(row)
    item["tags"] = db.from_json_list(item.get("tags"))
    item["blocked_by"] = db.from_json_list(item.get("blocked_by"))
    item["short_id"] = short_id(item.pop("project_slug", None), item.get("seq"))
    return item


def _decode_all(rows: list[sqlite3.Row]) -> list[dict[str, Any]]:
    return [item for item in (decode_task(row) for row in rows) if item is not None]


def _closed_sql() -> str:
    return ", ".join(f"'{status}'" for status in CLOSED_TASK_STATUSES)


def _effective_status(status: str | None, blocked_by: list[str] | None) -> str | None:
    if status is not None:
        return validate_task_status(status)
    if blocked_by:
        return "blocked"
    return None


def get_task(store: MindpmStore, task_id: str) -> dict[str, Any] | None:
    row = store.conn.execute(f"{_TASK_SELECT} WHERE t.id = ?", (task_id,)).fetchone()
    return decode_task(row)


def get_task_detail(store: MindpmStore, task_id: str) -> dict[str, Any] | None:
    """Task with its direct subtasks and attached notes."""

    task = get_task(store, task_id)
    if task is None:
        return None
    subtasks = store.conn.execute(
        f"{_TASK_SELECT} WHERE t.parent_task_id = ? ORDER BY t.seq ASC", (task_id,)
    ).fetchall()
    notes = store.conn.execute(
        "SELECT * FROM notes WHERE task_id = ? ORDER BY created_at DESC", (task_id,)
    ).fetchall()
    task["subtasks"] = _decode_all(subtasks)
    task["notes"] = [
        {**dict(note), "tags": db.from_json_list(note["tags"])} for note in notes
    ]
    return task


def create_task(
    store: MindpmStore,
    project_id: str,
    title: str,
    *,
    description: str | None = None,
    priority: str | None = None,
    status: str | None = None,
    tags: list[str] | None = None,
    parent_task_id: str | None = None,
    blocked_by: list[str] | None = None,
) -> dict[str, Any]:
    title = (title or "").strip()
    if not title:
        raise ValueError("Task title is required")
    priority = validate_priority(priority or "medium")
    status = _effective_status(status, blocked_by) or "todo"
    conn = store.conn
    task_id = generate_id()
    with db.transaction(conn):
        now = db.now_iso()
        if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
            raise NotFoundError(f'Project "{project_id}" not found.')
        if parent_task_id:
            parent = conn.execute(
                "SELECT 1 FROM tasks WHERE id = ? AND project_id = ?",
                (parent_task_id, project_id),
            ).fetchone()
            if parent is None:
                raise NotFoundError(f'Parent task "{parent_task_id}" not found.')
        seq = conn.execute(
            "SELECT COALESCE(MAX(seq), 0) + 1 FROM tasks WHERE project_id = ?", (project_id,)
        ).fetchone()[0]
        conn.execute(
            """
            INSERT INTO tasks(
                id, project_id, seq, title, description, status, priority, tags,
                parent_task_id, blocked_by, created_at, updated_at, completed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                project_id,
                int(seq),
                title,
                description,
                status,
                priority,
                db.to_json_list(tags),
                parent_task_id or None,
                db.to_json_list(blocked_by),
                now,
                now,
                now if status == "done" else None,
            ),
        )
        store_history.record_created(
            conn, task_id, status=status, priority=priority, created_at=now
        )
    task = get_task(store, task_id)
    assert task is not None
    return task


def update_task(
    store: MindpmStore,
    task_id: str,
    *,
    title: str | None = None,
    description: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    tags: list[str] | None = None,
    blocked_by: list[str] | None = None,
) -> dict[str, Any]:
    """Apply the given fields; ``None`` means "leave unchanged".

    A non-empty ``blocked_by`` without an explicit ``status`` forces ``blocked``.
    Moving to ``done`` stamps ``completed_at``; any other status clears it.
    """

    changes: dict[str, Any] = {}
    if title is not None:
        title = title.strip()
        if not title:
            raise ValueError("Task title cannot be empty")
        changes["title"] = title
    if description is not None:
        changes["description"] = description
    if priority is not None:
        changes["priority"] = validate_priority(priority)
    if tags is not None:
        changes["tags"] = db.to_json_list(tags)
    if blocked_by is not None:
        changes["blocked_by"] = db.to_json_list(blocked_by)
    new_status = _effective_status(status, blocked_by)
    if new_status is not None:
        changes["status"] = new_status
    if not changes:
        raise ValueError("No updates provided")

    conn = store.conn
    with db.transaction(conn):
        now = db.now_iso()
        before = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if before is None:
            raise NotFoundError(f'Task "{task_id}" not found.')
        if new_status is not None:
            changes["completed_at"] = now if new_status == "done" else None
        changes["updated_at"] = now
        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn.execute(
            f"UPDATE tasks SET {assignments} WHERE id = ?", (*changes.values(), task_id)
        )
        store_history.record_changes(conn, task_id, dict(before), changes, created_at=now)
    task = get_task(store, task_id)
    assert task is not None
    return task


def list_tasks(
    store: MindpmStore,
    project_id: str,
    *,
    status: str | None = None,
    priority: str | None = None,
    tag: str | None = None,
    include_done: bool = False,
) -> list[dict[str, Any]]:
    conditions = ["t.project_id = ?"]
    params: list[Any] = [project_id]
    if status:
        conditions.append("t.status = ?")
        params.append(validate_task_status(status))
    elif not include_done:
        conditions.append(f"t.status NOT IN ({_closed_sql()})")
    if priority:
        conditions.append("t.priority = ?")
        params.append(validate_priority(priority))
    if tag:
        conditions.append(
            """
            EXISTS (
                SELECT 1 FROM json_each(
                    CASE WHEN json_valid(t.tags) AND json_type(t.tags) = 'array'
                         THEN t.tags ELSE '[]' END
                ) WHERE value = ?
            )
            """
        )
        params.append(tag)
    rows = store.conn.execute(
        f"""
        {_TASK_SELECT}
        WHERE {" AND ".join(conditions)}
        ORDER BY {priority_rank_sql("t.priority")} ASC, t.created_at DESC, t.seq DESC
        """,
        params,
    ).fetchall()
    return _decode_all(rows)


def next_tasks(store: MindpmStore, project_id: str, *, limit: int = 5) -> list[dict[str, Any]]:
    """Oldest outstanding work first within each priority band."""

    statuses = ", ".join(f"'{status}'" for status in NEXT_TASK_STATUSES)
    rows = store.conn.execute(
        f"""
        {_TASK_SELECT}
        WHERE t.project_id = ? AND t.status IN ({statuses})
        ORDER BY {priority_rank_sql("t.priority")} ASC, t.created_at ASC, t.seq ASC
        LIMIT ?
        """,
        (project_id, int(limit)),
    ).fetchall()
    return _decode_all(rows)


def active_tasks(store: MindpmStore, project_id: str) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        f"""
        {_TASK_SELECT}
        WHERE t.project_id = ? AND t.status NOT IN ({_closed_sql()})
        ORDER BY {priority_rank_sql("t.priority")} ASC, t.created_at ASC
        """,
        (project_id,),
    ).fetchall()
    return [
        {
            "id": task["id"],
            "short_id": task["short_id"],
            "title": task["title"],
            "status": task["status"],
            "priority": task["priority"],
            "tags": task["tags"],
        }
        for task in _decode_all(rows)
    ]


def blocked_tasks(store: MindpmStore, project_id: str) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        f"{_TASK_SELECT} WHERE t.project_id = ? AND t.status = 'blocked' ORDER BY t.seq ASC",
        (project_id,),
    ).fetchall()
    return _decode_all(rows)


def delete_task(store: MindpmStore, task_id: str) -> list[str]:
    """Delete a task, its direct subtasks, and their notes and history.

    Returns the ids of the deleted task rows. Decisions that pointed at a
    deleted task are kept with ``task_id`` cleared.
    """

    conn = store.conn
    with db.transaction(conn):
        now = db.now_iso()
        if conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is None:
            raise NotFoundError(f'Task "{task_id}" not found.')
        subtask_ids = [
            str(row["id"])
            for row in conn.execute(
                "SELECT id FROM tasks WHERE parent_task_id = ?", (task_id,)
            ).fetchall()
        ]
        doomed = [*subtask_ids, task_id]
        marks = ", ".join("?" for _ in doomed)
        conn.execute(
            f"""
            UPDATE tasks SET parent_task_id = NULL, updated_at = ?
            WHERE parent_task_id IN ({marks}) AND id NOT IN ({marks})
            """,
            (now, *doomed, *doomed),
        )
        conn.execute(f"UPDATE decisions SET task_id = NULL WHERE task_id IN ({marks})", doomed)
        conn.execute(f"DELETE FROM task_history WHERE task_id IN ({marks})", doomed)
        conn.execute(f"DELETE FROM notes WHERE task_id IN ({marks})", doomed)
        if subtask_ids:
            sub_marks = ", ".join("?" for _ in subtask_ids)
            conn.execute(f"DELETE FROM tasks WHERE id IN ({sub_marks})", subtask_ids)
        conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    return doomed
