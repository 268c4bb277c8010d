from __future__ import annotations

from pathlib import Path
from typing import Any

from .. import db
from ..session_gate import SessionGate
from . import history as store_history
from . import projects as store_projects
from . import queries as store_queries
from . import records as store_records
from . import sessions as store_sessions
from . import tasks as store_tasks
from .types import NotFoundError, Snapshot


class MindpmStore:
    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)

    def close(self) -> None:
        db.close(self.conn)

    def __enter__(self) -> MindpmStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Projects

    def create_project(
        self,
        name: str,
        *,
        description: str | None = None,
        repo_path: str | None = None,
        tech_stack: list[str] | None = None,
    ) -> dict[str, Any]:
        return store_projects.create_project(
            self, name, description=description, repo_path=repo_path, tech_stack=tech_stack
        )

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        return store_projects.get_project(self, project_id)

    def require_project(self, project_id: str) -> dict[str, Any]:
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(f'Project "{project_id}" not found.')
        return project

    def resolve_project_id(self, ref: str) -> str | None:
        return store_projects.resolve_project_id(self, ref)

    def resolve_project_or_default(self, ref: str | None = None) -> dict[str, Any]:
        return store_projects.resolve_project_or_default(self, ref)

    def list_projects(self, *, status: str | None = None) -> list[dict[str, Any]]:
        return store_projects.list_projects(self, status=status)

    def update_project(
        self,
        project_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        return store_projects.update_project(
            self, project_id, name=name, description=description, status=status
        )

    def touch_project(self, project_id: str) -> None:
        store_projects.touch_project(self, project_id)

    def task_counts(self, project_id: str) -> dict[str, int]:
        return store_projects.task_counts(self, project_id)

    def project_status(self, project_id: str) -> dict[str, Any]:
        """Overview of a project without touching its session history."""

        project = self.require_project(project_id)
        last = store_sessions.latest_session(self.conn, project_id)
        return {
            "project": project,
            "task_counts": self.task_counts(project_id),
            "active_tasks": store_tasks.active_tasks(self, project_id),
            "blocked_tasks": [
                {"id": task["id"], "title": task["title"], "blocked_by": task["blocked_by"]}
                for task in store_tasks.blocked_tasks(self, project_id)
            ],
            "recent_decisions": store_records.recent_decisions(self, project_id),
            "last_session": last,
        }

    # Tasks

    def create_task(
        self,
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
        return store_tasks.create_task(
            self,
            project_id,
            title,
            description=description,
            priority=priority,
            status=status,
            tags=tags,
            parent_task_id=parent_task_id,
            blocked_by=blocked_by,
        )

    def update_task(self, task_id: str, **fields: Any) -> dict[str, Any]:
        return store_tasks.update_task(self, task_id, **fields)

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        return store_tasks.get_task(self, task_id)

    def get_task_detail(self, task_id: str) -> dict[str, Any] | None:
        return store_tasks.get_task_detail(self, task_id)

    def list_tasks(
        self,
        project_id: str,
        *,
        status: str | None = None,
        priority: str | None = None,
        tag: str | None = None,
        include_done: bool = False,
    ) -> list[dict[str, Any]]:
        return store_tasks.list_tasks(
            self,
            project_id,
            status=status,
            priority=priority,
            tag=tag,
            include_done=include_done,
        )

    def next_tasks(self, project_id: str, *, limit: int = 5) -> list[dict[str, Any]]:
        return store_tasks.next_tasks(self, project_id, limit=limit)

    def delete_task(self, task_id: str) -> list[str]:
        return store_tasks.delete_task(self, task_id)

    def task_history(self, task_id: str) -> list[dict[str, Any]]:
        return store_history.task_history(self, task_id)

    # Decisions, notes, context

    def log_decision(self, project_id: str, title: str, decision: str, **fields: Any) -> dict[str, Any]:
        return store_records.log_decision(self, project_id, title, decision, **fields)

    def list_decisions(
        self, project_id: str, *, tag: str | None = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        return store_records.list_decisions(self, project_id, tag=tag, limit=limit)

    def add_note(self, project_id: str, content: str, **fields: Any) -> dict[str, Any]:
        return store_records.add_note(self, project_id, content, **fields)

    def search_notes(
        self,
        project_id: str,
        *,
        query: str | None = None,
        category: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        return store_records.search_notes(
            self, project_id, query=query, category=category, limit=limit
        )

    def set_context(
        self, project_id: str, key: str, value: str, *, category: str | None = None
    ) -> dict[str, Any]:
        return store_records.set_context(self, project_id, key, value, category=category)

    def get_context(self, project_id: str, *, key: str | None = None) -> list[dict[str, Any]]:
        return store_records.get_context(self, project_id, key=key)

    # Sessions

    def reconcile(self, project_id: str, *, kanban_url: str | None = None) -> Snapshot:
        return store_sessions.reconcile(self, project_id, kanban_url=kanban_url)

    def start_session(
        self, gate: SessionGate, project_id: str, *, kanban_url: str | None = None
    ) -> Snapshot:
        return store_sessions.start_session(self, gate, project_id, kanban_url=kanban_url)

    def maybe_reconcile(
        self, gate: SessionGate, project_id: str, *, kanban_url: str | None = None
    ) -> Snapshot | None:
        return store_sessions.maybe_reconcile(self, gate, project_id, kanban_url=kanban_url)

    def end_session(self, project_id: str, summary: str, **fields: Any) -> dict[str, Any]:
        return store_sessions.end_session(self, project_id, summary, **fields)

    def list_sessions(self, project_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        return store_sessions.list_sessions(self, project_id, limit=limit)

    # Queries

    def project_summary(self, project_id: str) -> dict[str, Any]:
        return store_queries.project_summary(self, project_id)

    def blockers(self, project_id: str) -> list[dict[str, Any]]:
        return store_queries.blockers(self, project_id)

    def search(self, project_id: str, query: str) -> dict[str, Any]:
        return store_queries.search(self, project_id, query)

    def read_only_query(self, sql: str) -> dict[str, Any]:
        return store_queries.read_only_query(self, sql)

    def stats(self) -> dict[str, Any]:
        return store_queries.stats(self)
