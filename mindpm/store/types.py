from __future__ import annotations

from typing import Any, TypedDict


class MindpmError(Exception):
    """Base class for operations the store declines."""


class NotFoundError(MindpmError, LookupError):
    pass


class NoDefaultProjectError(NotFoundError):
    def __init__(self, message: str = "No active projects found. Create a project first.") -> None:
        super().__init__(message)


class DuplicateNameError(MindpmError, ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Project "{name}" already exists.')
        self.name = name


class ActivityItem(TypedDict):
    type: str
    id: str
    title: str
    timestamp: str


class LastSession(TypedDict):
    summary: str
    next_steps: str | None
    when: str


class Snapshot(TypedDict):
    kanban_url: str | None
    project: dict[str, Any]
    last_session: LastSession | None
    recent_activity: list[ActivityItem]
    task_summary: dict[str, int]
    active_tasks: list[dict[str, Any]]
    blocked_tasks: list[dict[str, Any]]
    recent_decisions: list[dict[str, Any]]
    context: list[dict[str, Any]]
