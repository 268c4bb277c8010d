"""Decisions, notes and context entries: the append-only project record."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..enums import validate_note_category
from ..ids import generate_id
from .types import NotFoundError

if TYPE_CHECKING:
    from ._store import MindpmStore

_TAG_MATCH = """
    EXISTS (
        SELECT 1 FROM json_each(
            CASE WHEN json_valid(tags) AND json_type(tags) = 'array' THEN tags ELSE '[]' END
        ) WHERE value = ?
    )
"""


def decode_decision(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["alternatives"] = db.from_json_list(item.get("alternatives"))
    item["tags"] = db.from_json_list(item.get("tags"))
    return item


def decode_note(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["tags"] = db.from_json_list(item.get("tags"))
    return item


def _require_task(conn: sqlite3.Connection, project_id: str, task_id: str | None) -> None:
    if not task_id:
        return
    row = conn.execute(
        "SELECT 1 FROM tasks WHERE id = ? AND project_id = ?", (task_id, project_id)
    ).fetchone()
    if row is None:
        raise NotFoundError(f'Task "{task_id}" not found.')


def log_decision(
    store: MindpmStore,
    project_id: str,
    title: str,
    decision: str,
    *,
    reasoning: str | None = None,
    alternatives: list[str] | None = None,
    tags: list[str] | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    if not (title or "").strip() or not (decision or "").strip():
        raise ValueError("Decision title and decision text are required")
    conn = store.conn
    decision_id = generate_id()
    with db.transaction(conn):
        _require_task(conn, project_id, task_id)
        conn.execute(
            """
            INSERT INTO decisions(id, project_id, task_id, title, decision, reasoning, alternatives, tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                decision_id,
                project_id,
                task_id or None,
                title.strip(),
                decision,
                reasoning,
                db.to_json_list(alternatives),
                db.to_json_list(tags),
                db.now_iso(),
            ),
        )
    row = conn.execute("SELECT * FROM decisions WHERE id = ?", (decision_id,)).fetchone()
    return decode_decision(row)


def list_decisions(
    store: MindpmStore, project_id: str, *, tag: str | None = None, limit: int = 20
) -> list[dict[str, Any]]:
    sql = "SELECT * FROM decisions WHERE project_id = ?"
    params: list[Any] = [project_id]
    if tag:
        sql += f" AND {_TAG_MATCH}"
        params.append(tag)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
    params.append(int(limit))
    return [decode_decision(row) for row in store.conn.execute(sql, params).fetchall()]


def recent_decisions(store: MindpmStore, project_id: str, *, limit: int = 5) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        """
        SELECT id, title, decision, created_at FROM decisions
        WHERE project_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
        """,
        (project_id, int(limit)),
    ).fetchall()
    return db.rows_to_dicts(rows)


def add_note(
    store: MindpmStore,
    project_id: str,
    content: str,
    *,
    category: str | None = None,
    tags: list[str] | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    if not (content or "").strip():
        raise ValueError("Note content is required")
    category = validate_note_category(category or "general")
    conn = store.conn
    note_id = generate_id()
    with db.transaction(conn):
        _require_task(conn, project_id, task_id)
        conn.execute(
            """
            INSERT INTO notes(id, project_id, task_id, content, category, tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                note_id,
                project_id,
                task_id or None,
                content,
                category,
                db.to_json_list(tags),
                db.now_iso(),
            ),
        )
    row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
    return decode_note(row)


def search_notes(
    store: MindpmStore,
    project_id: str,
    *,
    query: str | None = None,
    category: str | None = None,
    limit: int = 20,
) -> list[dict[str, Any]]:
    sql = "SELECT * FROM notes WHERE project_id = ?"
    params: list[Any] = [project_id]
    if query:
        sql += " AND content LIKE '%' || ? || '%'"
        params.append(query)
    if category:
        sql += " AND category = ?"
        params.append(validate_note_category(category))
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
    params.append(int(limit))
    return [decode_note(row) for row in store.conn.execute(sql, params).fetchall()]


def set_context(
    store: MindpmStore,
    project_id: str,
    key: str,
    value: str,
    *,
    category: str | None = None,
) -> dict[str, Any]:
    key = (key or "").strip()
    if not key:
        raise ValueError("Context key is required")
    conn = store.conn
    with db.transaction(conn):
        now = db.now_iso()
        conn.execute(
            """
            INSERT INTO context(id, project_id, key, value, category, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, key) DO UPDATE SET
                value = excluded.value,
                category = excluded.category,
                updated_at = excluded.updated_at
            """,
            (generate_id(), project_id, key, value, category or "general", now, now),
        )
    row = conn.execute(
        "SELECT * FROM context WHERE project_id = ? AND key = ?", (project_id, key)
    ).fetchone()
    return dict(row)


def get_context(
    store: MindpmStore, project_id: str, *, key: str | None = None
) -> list[dict[str, Any]]:
    if key:
        rows = store.conn.execute(
            "SELECT * FROM context WHERE project_id = ? AND key = ?", (project_id, key)
        ).fetchall()
    else:
        rows = store.conn.execute(
            "SELECT * FROM context WHERE project_id = ? ORDER BY category, key", (project_id,)
        ).fetchall()
    return db.rows_to_dicts(rows)
