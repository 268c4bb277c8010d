from __future__ import annotations

import atexit
import logging
import sqlite3
import threading
import weakref
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

try:
    from mcp.server.fastmcp import FastMCP
    from mcp.server.fastmcp.exceptions import ToolError
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "mcp package is required for the MCP server. Install with `pip install -e .`"
    ) from exc

from .config import load_config
from .instructions import AGENT_INSTRUCTIONS
from .session_gate import SessionGate
from .store import MindpmError, MindpmStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_store(db_path: Path | str | None = None, *, check_same_thread: bool = True) -> MindpmStore:
    path = db_path or load_config().db_path
    return MindpmStore(Path(path), check_same_thread=check_same_thread)


def build_server(
    *,
    db_path: Path | str | None = None,
    gate: SessionGate | None = None,
    kanban_base_url: str | None = None,
) -> FastMCP:
    mcp = FastMCP("mindpm")
    session_gate = gate or SessionGate()
    thread_local = threading.local()
    store_lock = threading.Lock()
    store_pool: weakref.WeakSet[MindpmStore] = weakref.WeakSet()

    def get_store() -> MindpmStore:
        store = getattr(thread_local, "store", None)
        if store is None:
            store = build_store(db_path)
            thread_local.store = store
            with store_lock:
                store_pool.add(store)
        return store

    def close_all_stores() -> None:
        with store_lock:
            stores = list(store_pool)
        for store in stores:
            try:
                store.close()
            except sqlite3.Error:
                continue

    atexit.register(close_all_stores)

    def with_store(handler: Callable[[MindpmStore], T]) -> T:
        try:
            return handler(get_store())
        except (MindpmError, ValueError) as exc:
            raise ToolError(str(exc)) from exc
        except sqlite3.IntegrityError as exc:
            raise ToolError(f"Constraint violation: {exc}") from exc

    def kanban_url(project_id: str) -> Optional[str]:
        if not kanban_base_url:
            return None
        return f"{kanban_base_url.rstrip('/')}/?project={project_id}"

    def with_session_context(
        store: MindpmStore, project_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        # Must run before the caller's own write so that write lands in the
        # next session window, not in the synthetic one.
        snapshot = store.maybe_reconcile(
            session_gate, project_id, kanban_url=kanban_url(project_id)
        )
        if snapshot is None:
            return payload
        return {"session_context": snapshot, **payload}

    def first_touch(store: MindpmStore, project_id: str) -> Dict[str, Any]:
        return with_session_context(store, project_id, {})

    @mcp.tool()
    def create_project(
        name: str,
        description: Optional[str] = None,
        repo_path: Optional[str] = None,
        tech_stack: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Create a new project to track tasks, decisions and notes."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            project = store.create_project(
                name, description=description, repo_path=repo_path, tech_stack=tech_stack
            )
            return {
                "project_id": project["id"],
                "slug": project["slug"],
                "message": f'Project "{project["name"]}" created.',
            }

        return with_store(handler)

    @mcp.tool()
    def list_projects(status: Optional[str] = None) -> Dict[str, Any]:
        """List projects, most recently active first."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            return {"projects": store.list_projects(status=status)}

        return with_store(handler)

    @mcp.tool()
    def get_project_status(project: Optional[str] = None) -> Dict[str, Any]:
        """Overview of a project: active tasks, blockers, recent decisions, last session."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            return {**context, **store.project_status(resolved["id"])}

        return with_store(handler)

    @mcp.tool()
    def create_task(
        title: str,
        project: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None,
        parent_task_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a task. Priority is one of critical, high, medium (default), low."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            task = store.create_task(
                resolved["id"],
                title,
                description=description,
                priority=priority,
                tags=tags,
                parent_task_id=parent_task_id,
            )
            return {
                **context,
                "task_id": task["id"],
                "short_id": task["short_id"],
                "message": (
                    f'Task created: "{task["title"]}" in {resolved["name"]} '
                    f'(priority: {task["priority"]})'
                ),
            }

        return with_store(handler)

    @mcp.tool()
    def update_task(
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None,
        blocked_by: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Update task fields. A non-empty blocked_by without a status marks the task blocked."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            existing = store.get_task(task_id)
            if existing is None:
                raise ToolError(f'Task "{task_id}" not found.')
            context = first_touch(store, existing["project_id"])
            task = store.update_task(
                task_id,
                title=title,
                description=description,
                status=status,
                priority=priority,
                tags=tags,
                blocked_by=blocked_by,
            )
            return {
                **context,
                "task_id": task["id"],
                "short_id": task["short_id"],
                "status": task["status"],
                "message": f'Task "{existing["title"]}" updated.',
            }

        return with_store(handler)

    @mcp.tool()
    def list_tasks(
        project: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        tag: Optional[str] = None,
        include_done: bool = False,
    ) -> Dict[str, Any]:
        """List tasks by priority, newest first. Done and cancelled tasks are hidden by default."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            tasks = store.list_tasks(
                resolved["id"],
                status=status,
                priority=priority,
                tag=tag,
                include_done=include_done,
            )
            return {**context, "project": resolved["name"], "tasks": tasks, "count": len(tasks)}

        return with_store(handler)

    @mcp.tool()
    def get_task(task_id: str) -> Dict[str, Any]:
        """Full task details including subtasks and notes."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            task = store.get_task_detail(task_id)
            if task is None:
                raise ToolError(f'Task "{task_id}" not found.')
            context = first_touch(store, task["project_id"])
            return {**context, "task": task}

        return with_store(handler)

    @mcp.tool()
    def get_next_tasks(project: Optional[str] = None, limit: int = 5) -> Dict[str, Any]:
        """Highest priority unblocked work, oldest first within a priority."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            tasks = store.next_tasks(resolved["id"], limit=limit)
            return {**context, "project": resolved["name"], "tasks": tasks}

        return with_store(handler)

    @mcp.tool()
    def log_decision(
        title: str,
        decision: str,
        project: Optional[str] = None,
        reasoning: Optional[str] = None,
        alternatives: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        task_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record an architectural or technical decision with its reasoning."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            item = store.log_decision(
                resolved["id"],
                title,
                decision,
                reasoning=reasoning,
                alternatives=alternatives,
                tags=tags,
                task_id=task_id,
            )
            return {"decision_id": item["id"], "message": f'Decision logged: "{item["title"]}"'}

        return with_store(handler)

    @mcp.tool()
    def list_decisions(
        project: Optional[str] = None, tag: Optional[str] = None, limit: int = 20
    ) -> Dict[str, Any]:
        """List past decisions, newest first."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            decisions = store.list_decisions(resolved["id"], tag=tag, limit=limit)
            return {**context, "project": resolved["name"], "decisions": decisions}

        return with_store(handler)

    @mcp.tool()
    def add_note(
        content: str,
        project: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        task_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Add a note. Categories: general, architecture, bug, idea, research, meeting, review."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            note = store.add_note(
                resolved["id"], content, category=category, tags=tags, task_id=task_id
            )
            return {"note_id": note["id"], "message": f"Note added to {resolved['name']}."}

        return with_store(handler)

    @mcp.tool()
    def search_notes(
        query: Optional[str] = None,
        project: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Search notes by text and/or category."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            notes = store.search_notes(resolved["id"], query=query, category=category, limit=limit)
            return {**context, "project": resolved["name"], "notes": notes}

        return with_store(handler)

    @mcp.tool()
    def set_context(
        key: str,
        value: str,
        project: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store a key/value fact about the project; an existing key is overwritten."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            entry = store.set_context(resolved["id"], key, value, category=category)
            return {"context": entry, "message": f'Context "{entry["key"]}" saved.'}

        return with_store(handler)

    @mcp.tool()
    def get_context(project: Optional[str] = None, key: Optional[str] = None) -> Dict[str, Any]:
        """Read one context entry by key, or all entries for the project."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            context = first_touch(store, resolved["id"])
            entries = store.get_context(resolved["id"], key=key)
            return {**context, "project": resolved["name"], "context": entries}

        return with_store(handler)

    @mcp.tool()
    def start_session(project: Optional[str] = None) -> Dict[str, Any]:
        """Begin a work session: returns the catch-up snapshot for the project.

        Call at the start of every conversation and show the kanban_url to the user.
        """

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            snapshot = store.start_session(
                session_gate, resolved["id"], kanban_url=kanban_url(resolved["id"])
            )
            return dict(snapshot)

        return with_store(handler)

    @mcp.tool()
    def end_session(
        summary: str,
        project: Optional[str] = None,
        tasks_worked_on: Optional[List[str]] = None,
        decisions_made: Optional[List[str]] = None,
        next_steps: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Close a work session with a summary and next steps."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            session = store.end_session(
                resolved["id"],
                summary,
                tasks_worked_on=tasks_worked_on,
                decisions_made=decisions_made,
                next_steps=next_steps,
            )
            return {
                "session_id": session["id"],
                "message": f"Session ended for {resolved['name']}. Summary saved.",
            }

        return with_store(handler)

    @mcp.tool()
    def query(sql: str) -> Dict[str, Any]:
        """Run a read-only SQL SELECT against the database."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            return store.read_only_query(sql)

        return with_store(handler)

    @mcp.tool()
    def get_project_summary(project: Optional[str] = None) -> Dict[str, Any]:
        """Task counts, blockers, upcoming priorities and the last 7 days of activity."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            return {"project": resolved["name"], **store.project_summary(resolved["id"])}

        return with_store(handler)

    @mcp.tool()
    def get_blockers(project: Optional[str] = None) -> Dict[str, Any]:
        """Blocked tasks with the tasks that block them."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            return {"project": resolved["name"], "blockers": store.blockers(resolved["id"])}

        return with_store(handler)

    @mcp.tool()
    def search(query: str, project: Optional[str] = None) -> Dict[str, Any]:
        """Search tasks, notes and decisions for a phrase."""

        def handler(store: MindpmStore) -> Dict[str, Any]:
            resolved = store.resolve_project_or_default(project)
            return {"project": resolved["name"], **store.search(resolved["id"], query)}

        return with_store(handler)

    @mcp.tool()
    def get_agent_instructions() -> Dict[str, Any]:
        """Recommended instructions for using mindpm; share them with other clients."""

        return {"instructions": AGENT_INSTRUCTIONS}

    return mcp


def run(*, db_path: Path | str | None = None, kanban_base_url: str | None = None) -> None:
    server = build_server(db_path=db_path, kanban_base_url=kanban_base_url)
    logger.info("mcp server listening on stdio")
    server.run()


if __name__ == "__main__":
    run()
