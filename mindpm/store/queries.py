from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..enums import priority_rank_sql
from . import projects as store_projects
from . import tasks as store_tasks

if TYPE_CHECKING:
    from ._store import MindpmStore

READ_ONLY_PREFIXES = ("SELECT", "WITH")
SUMMARY_WINDOW = "-7 days"
TABLES = ("projects", "tasks", "task_history", "decisions", "notes", "sessions", "context")


def project_summary(store: MindpmStore, project_id: str) -> dict[str, Any]:
    conn = store.conn
    upcoming = conn.execute(
        f"""
        SELECT id, title, priority, status FROM tasks
        WHERE project_id = ? AND status IN ('todo', 'in_progress')
        ORDER BY {priority_rank_sql()} ASC, created_at ASC
        LIMIT 10
        """,
        (project_id,),
    ).fetchall()
    since = f"strftime('%Y-%m-%dT%H:%M:%fZ', 'now', '{SUMMARY_WINDOW}')"
    recent = conn.execute(
        f"""
        SELECT 'task' AS type, title, updated_at FROM tasks
        WHERE project_id = :pid AND updated_at > {since}
        UNION ALL
        SELECT 'decision' AS type, title, created_at AS updated_at FROM decisions
        WHERE project_id = :pid AND created_at > {since}
        UNION ALL
        SELECT 'note' AS type, substr(content, 1, 50) AS title, created_at AS updated_at FROM notes
        WHERE project_id = :pid AND created_at > {since}
        ORDER BY updated_at DESC
        LIMIT 20
        """,
        {"pid": project_id},
    ).fetchall()
    totals = {
        table: int(
            conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE project_id = ?", (project_id,)
            ).fetchone()[0]
        )
        for table in ("notes", "decisions", "sessions")
    }
    return {
        "tasks_by_status": store_projects.task_counts(store, project_id),
        "blockers": [
            {"id": task["id"], "title": task["title"], "blocked_by": task["blocked_by"]}
            for task in store_tasks.blocked_tasks(store, project_id)
        ],
        "upcoming_priorities": db.rows_to_dicts(upcoming),
        "recent_activity": db.rows_to_dicts(recent),
        "totals": totals,
    }


def blockers(store: MindpmStore, project_id: str) -> list[dict[str, Any]]:
    """Blocked tasks, each with the blocking tasks resolved to id/title/status."""

    enriched: list[dict[str, Any]] = []
    for task in store_tasks.blocked_tasks(store, project_id):
        blocking: list[dict[str, Any]] = []
        for blocker_id in task["blocked_by"]:
            row = store.conn.execute(
                "SELECT id, title, status FROM tasks WHERE id = ?", (str(blocker_id),)
            ).fetchone()
            if row is None:
                blocking.append({"id": blocker_id, "title": "Unknown task", "status": "unknown"})
            else:
                blocking.append(dict(row))
        enriched.append({**task, "blocking_tasks": blocking})
    return enriched


def search(store: MindpmStore, project_id: str, query: str) -> dict[str, Any]:
    pattern = f"%{query}%"
    conn = store.conn
    tasks = conn.execute(
        """
        SELECT id, title, description, status, priority, 'task' AS type FROM tasks
        WHERE project_id = ? AND (title LIKE ? OR description LIKE ?)
        """,
        (project_id, pattern, pattern),
    ).fetchall()
    notes = conn.execute(
        """
        SELECT id, content, category, 'note' AS type FROM notes
        WHERE project_id = ? AND content LIKE ?
        """,
        (project_id, pattern),
    ).fetchall()
    decisions = conn.execute(
        """
        SELECT id, title, decision, reasoning, 'decision' AS type FROM decisions
        WHERE project_id = ? AND (title LIKE ? OR decision LIKE ? OR reasoning LIKE ?)
        """,
        (project_id, pattern, pattern, pattern),
    ).fetchall()
    results = {
        "tasks": db.rows_to_dicts(tasks),
        "notes": db.rows_to_dicts(notes),
        "decisions": db.rows_to_dicts(decisions),
    }
    return {
        "query": query,
        "results": results,
        "total": sum(len(items) for items in results.values()),
    }


def read_only_query(store: MindpmStore, sql: str) -> dict[str, Any]:
    """Run one SELECT statement with writes disabled on the connection."""

    statement = (sql or "").strip().rstrip(";").strip()
    if not statement.upper().startswith(READ_ONLY_PREFIXES):
        raise ValueError("Only SELECT queries are allowed.")
    conn = store.conn
    if conn.in_transaction:
        conn.commit()
    conn.execute("PRAGMA query_only = ON")
    try:
        rows = conn.execute(statement).fetchall()
    except sqlite3.Error as exc:
        raise ValueError(f"Query error: {exc}") from exc
    finally:
        conn.execute("PRAGMA query_only = OFF")
    items = db.rows_to_dicts(rows)
    return {"rows": items, "count": len(items)}


def stats(store: MindpmStore) -> dict[str, Any]:
    counts = {
        table: int(store.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        for table in TABLES
    }
    size_bytes = store.db_path.stat().st_size if store.db_path.exists() else 0
    return {"path": str(store.db_path), "size_bytes": size_bytes, "counts": counts}
