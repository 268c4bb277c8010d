from __future__ import annotations

import re
from typing import Any, Protocol
from urllib.parse import parse_qs

from ..store import DuplicateNameError, MindpmStore, NotFoundError
from ..viewer_http import NOT_FOUND, optional_text, required_text, text_list

_PROJECT = re.compile(r"^/api/projects/([^/]+)$")
_PROJECT_DECISIONS = re.compile(r"^/api/projects/([^/]+)/decisions$")
_PROJECT_SESSIONS = re.compile(r"^/api/projects/([^/]+)/sessions$")


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...

    def _read_json(self) -> dict[str, Any]: ...


def _reply_error(handler: _ViewerHandler, status: int, message: str) -> bool:
    handler._send_json({"error": message}, status=status)
    return True


def handle_get(handler: _ViewerHandler, store: MindpmStore, path: str, query: str) -> bool:
    if path == "/api/projects":
        status = (parse_qs(query).get("status") or [None])[0]
        try:
            projects = store.list_projects(status=status or None)
        except ValueError as exc:
            return _reply_error(handler, 400, str(exc))
        handler._send_json({"projects": projects})
        return True

    match = _PROJECT_DECISIONS.match(path)
    if match:
        project_id = match.group(1)
        if store.get_project(project_id) is None:
            return _reply_error(handler, 404, NOT_FOUND)
        handler._send_json({"decisions": store.list_decisions(project_id)})
        return True

    match = _PROJECT_SESSIONS.match(path)
    if match:
        project_id = match.group(1)
        if store.get_project(project_id) is None:
            return _reply_error(handler, 404, NOT_FOUND)
        handler._send_json({"sessions": store.list_sessions(project_id)})
        return True

    match = _PROJECT.match(path)
    if match:
        project = store.get_project(match.group(1))
        if project is None:
            return _reply_error(handler, 404, NOT_FOUND)
        project["task_counts"] = store.task_counts(project["id"])
        handler._send_json({"project": project})
        return True
    return False


def handle_patch(handler: _ViewerHandler, store: MindpmStore, path: str) -> bool:
    match = _PROJECT.match(path)
    if not match:
        return False
    try:
        payload = handler._read_json()
        project = store.update_project(
            match.group(1),
            name=optional_text(payload, "name"),
            description=optional_text(payload, "description"),
            status=optional_text(payload, "status"),
        )
    except NotFoundError:
        return _reply_error(handler, 404, NOT_FOUND)
    except DuplicateNameError as exc:
        return _reply_error(handler, 409, str(exc))
    except ValueError as exc:
        return _reply_error(handler, 400, str(exc))
    handler._send_json({"project": project})
    return True


def handle_post(handler: _ViewerHandler, store: MindpmStore, path: str) -> bool:
    """Close the current session with a summary written from the board."""

    match = _PROJECT_SESSIONS.match(path)
    if not match:
        return False
    try:
        payload = handler._read_json()
        session = store.end_session(
            match.group(1),
            required_text(payload, "summary"),
            tasks_worked_on=text_list(payload, "tasks_worked_on"),
            decisions_made=text_list(payload, "decisions_made"),
            next_steps=optional_text(payload, "next_steps"),
        )
    except NotFoundError:
        return _reply_error(handler, 404, NOT_FOUND)
    except ValueError as exc:
        return _reply_error(handler, 400, str(exc))
    handler._send_json({"session": session}, status=201)
    return True
