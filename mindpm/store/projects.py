from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from ..enums import CLOSED_TASK_STATUSES, validate_project_status
from ..ids import generate_id, generate_slug, unique_slug
from .types import DuplicateNameError, NoDefaultProjectError, NotFoundError

if TYPE_CHECKING:
    from ._store import MindpmStore


def decode_project(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    item = dict(row)
    item["tech_stack"] = db.from_json_list(item.get("tech_stack"))
    return item


def _name_taken(
    conn: sqlite3.Connection, name: str, *, exclude_id: str | None = None
) -> bool:
    row = conn.execute(
        "SELECT id FROM projects WHERE LOWER(name) = LOWER(?) AND id != COALESCE(?, '')",
        (name, exclude_id),
    ).fetchone()
    return row is not None


def _allocate_slug(conn: sqlite3.Connection, name: str) -> str:
    base = generate_slug(name)
    rows = conn.execute(
        "SELECT slug FROM projects WHERE slug = ? OR slug LIKE ?", (base, f"{base}%")
    ).fetchall()
    return unique_slug(base, {row["slug"] for row in rows})


def create_project(
    store: MindpmStore,
    name: str,
    *,
    description: str | None = None,
    repo_path: str | None = None,
    tech_stack: list[str] | None = None,
) -> dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise ValueError("Project name is required")
    conn = store.conn
    project_id = generate_id()
    try:
        with db.transaction(conn):
            now = db.now_iso()
            if _name_taken(conn, name):
                raise DuplicateNameError(name)
            conn.execute(
                """
                INSERT INTO projects(id, name, slug, description, repo_path, tech_stack, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    project_id,
                    name,
                    _allocate_slug(conn, name),
                    description,
                    repo_path,
                    db.to_json_list(tech_stack),
                    now,
                    now,
                ),
            )
    except sqlite3.IntegrityError as exc:
        if "projects.name" in str(exc):
            raise DuplicateNameError(name) from exc
        raise
    project = get_project(store, project_id)
    assert project is not None
    return project


def get_project(store: MindpmStore, project_id: str) -> dict[str, Any] | None:
    row = store.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return decode_project(row)


def resolve_project_id(store: MindpmStore, ref: str) -> str | None:
    """Resolve an id or a name (any case) to a project id."""

    ref = (ref or "").strip()
    if not ref:
        return None
    row = store.conn.execute("SELECT id FROM projects WHERE id = ?", (ref,)).fetchone()
    if row is None:
        row = store.conn.execute(
            "SELECT id FROM projects WHERE LOWER(name) = LOWER(?) ORDER BY created_at LIMIT 1",
            (ref,),
        ).fetchone()
    return str(row["id"]) if row else None


def resolve_project_or_default(store: MindpmStore, ref: str | None = None) -> dict[str, Any]:
    if ref:
        project_id = resolve_project_id(store, ref)
        if project_id is None:
            raise NotFoundError(f'Project "{ref}" not found.')
        project = get_project(store, project_id)
    else:
        row = store.conn.execute(
            """
            SELECT * FROM projects
            WHERE status = 'active'
            ORDER BY updated_at DESC, rowid DESC
            LIMIT 1
            """
        ).fetchone()
        project = decode_project(row)
        if project is None:
            raise NoDefaultProjectError()
    assert project is not None
    return project


def list_projects(store: MindpmStore, *, status: str | None = None) -> list[dict[str, Any]]:
    closed = ", ".join(f"'{s}'" for s in CLOSED_TASK_STATUSES)
    sql = f"""
        SELECT p.*,
               (SELECT COUNT(*) FROM tasks t
                WHERE t.project_id = p.id AND t.status NOT IN ({closed})) AS active_task_count,
               (SELECT COUNT(*) FROM tasks t
                WHERE t.project_id = p.id AND t.status = 'done') AS done_task_count
        FROM projects p
    """
    params: list[Any] = []
    if status:
        sql += " WHERE p.status = ?"
        params.append(validate_project_status(status))
    sql += " ORDER BY p.updated_at DESC, p.rowid DESC"
    rows = store.conn.execute(sql, params).fetchall()
    return [item for item in (decode_project(row) for row in rows) if item is not None]


def task_counts(store: MindpmStore, project_id: str) -> dict[str, int]:
    rows = store.conn.execute(
        "SELECT status, COUNT(*) AS count FROM tasks WHERE project_id = ? GROUP BY status",
        (project_id,),
    ).fetchall()
    return {str(row["status"]): int(row["count"]) for row in rows}


def update_project(
    store: MindpmStore,
    project_id: str,
    *,
    name: str | None = None,
    description: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    conn = store.conn
    if get_project(store, project_id) is None:
        raise NotFoundError(f'Project "{project_id}" not found.')
    assignments: list[str] = []
    params: list[Any] = []
    if name is not None:
        name = name.strip()
        if not name:
            raise ValueError("Project name is required")
        if _name_taken(conn, name, exclude_id=project_id):
            raise DuplicateNameError(name)
        assignments.append("name = ?")
        params.append(name)
    if description is not None:
        assignments.append("description = ?")
        params.append(description)
    if status is not None:
        assignments.append("status = ?")
        params.append(validate_project_status(status))
    if not assignments:
        raise ValueError("No updates provided")
    assignments.append("updated_at = ?")
    try:
        with db.transaction(conn):
            conn.execute(
                f"UPDATE projects SET {', '.join(assignments)} WHERE id = ?",
                (*params, db.now_iso(), project_id),
            )
    except sqlite3.IntegrityError as exc:
        if name is not None and "projects.name" in str(exc):
            raise DuplicateNameError(name) from exc
        raise
    project = get_project(store, project_id)
    assert project is not None
    return project


def touch_project(store: MindpmStore, project_id: str, *, commit: bool = True) -> None:
    """Bump updated_at so the project becomes the most recently active one."""

    store.conn.execute(
        "UPDATE projects SET updated_at = ? WHERE id = ?", (db.now_iso(), project_id)
    )
    if commit:
        store.conn.commit()
