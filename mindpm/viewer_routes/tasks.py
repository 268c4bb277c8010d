from __future__ import annotations

import re
from typing import Any, Protocol
from urllib.parse import parse_qs

from ..store import MindpmStore, NotFoundError
from ..viewer_http import NOT_FOUND, optional_text, required_text, text_list

_PROJECT_TASKS = re.compile(r"^/api/projects/([^/]+)/tasks$")
_TASK = re.compile(r"^/api/tasks/([^/]+)$")
_TASK_HISTORY = re.compile(r"^/api/tasks/([^/]+)/history$")

_TRUTHY = {"1", "true", "yes", "on"}


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...

    def _read_json(self) -> dict[str, Any]: ...


def _reply_error(handler: _ViewerHandler, status: int, message: str) -> bool:
    handler._send_json({"error": message}, status=status)
    return True


def handle_get(handler: _ViewerHandler, store: MindpmStore, path: str, query: str) -> bool:
    match = _PROJECT_TASKS.match(path)
    if match:
        project_id = match.group(1)
        if store.get_project(project_id) is None:
            return _reply_error(handler, 404, NOT_FOUND)
        include_done = (parse_qs(query).get("include_done") or ["0"])[0].lower() in _TRUTHY
        handler._send_json({"tasks": store.list_tasks(project_id, include_done=include_done)})
        return True

    match = _TASK_HISTORY.match(path)
    if match:
        task_id = match.group(1)
        if store.get_task(task_id) is None:
            return _reply_error(handler, 404, NOT_FOUND)
        handler._send_json({"history": store.task_history(task_id)})
        return True

    match = _TASK.match(path)
    if match:
        task = store.get_task_detail(match.group(1))
        if task is None:
            return _reply_error(handler, 404, NOT_FOUND)
        handler._send_json({"task": task})
        return True
    return False


def handle_post(handler: _ViewerHandler, store: MindpmStore, path: str) -> bool:
    match = _PROJECT_TASKS.match(path)
    if not match:
        return False
    try:
        payload = handler._read_json()
        task = store.create_task(
            match.group(1),
            required_text(payload, "title"),
            description=optional_text(payload, "description"),
            priority=optional_text(payload, "priority"),
            status=optional_text(payload, "status"),
            tags=text_list(payload, "tags"),
            parent_task_id=optional_text(payload, "parent_task_id"),
        )
    except NotFoundError:
        return _reply_error(handler, 404, NOT_FOUND)
    except ValueError as exc:
        return _reply_error(handler, 400, str(exc))
    handler._send_json({"task": task}, status=201)
    return True


def handle_patch(handler: _ViewerHandler, store: MindpmStore, path: str) -> bool:
    """Card edits and drags between columns."""

    match = _TASK.match(path)
    if not match:
        return False
    try:
        payload = handler._read_json()
        task = store.update_task(
            match.group(1),
            title=optional_text(payload, "title"),
            description=optional_text(payload, "description"),
            status=optional_text(payload, "status"),
            priority=optional_text(payload, "priority"),
            tags=text_list(payload, "tags"),
            blocked_by=text_list(payload, "blocked_by"),
        )
    except NotFoundError:
        return _reply_error(handler, 404, NOT_FOUND)
    except ValueError as exc:
        return _reply_error(handler, 400, str(exc))
    handler._send_json({"task": task})
    return True


def handle_delete(handler: _ViewerHandler, store: MindpmStore, path: str) -> bool:
    match = _TASK.match(path)
    if not match:
        return False
    try:
        deleted = store.delete_task(match.group(1))
    except NotFoundError:
        return _reply_error(handler, 404, NOT_FOUND)
    handler._send_json({"deleted": deleted})
    return True
