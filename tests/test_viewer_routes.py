from __future__ import annotations

import http.client
import json
import threading
from http.server import ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest

from mindpm.store import MindpmStore
from mindpm.viewer import ViewerHandler
from mindpm.viewer_routes import projects as project_routes
from mindpm.viewer_routes import tasks as task_routes


class DummyHandler:
    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self.payload = payload if payload is not None else {}
        self.responses: list[tuple[int, dict[str, Any]]] = []

    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None:
        self.responses.append((status, payload))

    def _read_json(self) -> dict[str, Any]:
        return self.payload

    @property
    def last(self) -> tuple[int, dict[str, Any]]:
        return self.responses[-1]


@pytest.fixture
def project(store: MindpmStore) -> dict:
    return store.create_project("Proj")


def test_list_projects_route(store: MindpmStore, project: dict) -> None:
    handler = DummyHandler()

    assert project_routes.handle_get(handler, store, "/api/projects", "status=active") is True
    status, body = handler.last
    assert status == 200
    assert [p["id"] for p in body["projects"]] == [project["id"]]

    assert project_routes.handle_get(handler, store, "/api/projects", "status=bogus") is True
    assert handler.last[0] == 400


def test_get_project_route(store: MindpmStore, project: dict) -> None:
    store.create_task(project["id"], "x")
    handler = DummyHandler()

    project_routes.handle_get(handler, store, f"/api/projects/{project['id']}", "")
    assert handler.last == (200, {"project": {**store.require_project(project["id"]), "task_counts": {"todo": 1}}})

    project_routes.handle_get(handler, store, "/api/projects/missing", "")
    assert handler.last == (404, {"error": "not_found"})


def test_project_routes_ignore_unknown_paths(store: MindpmStore) -> None:
    handler = DummyHandler()

    assert project_routes.handle_get(handler, store, "/api/elsewhere", "") is False
    assert project_routes.handle_patch(handler, store, "/api/tasks/x") is False
    assert handler.responses == []


def test_patch_project_route(store: MindpmStore, project: dict) -> None:
    store.create_project("Other")
    path = f"/api/projects/{project['id']}"

    ok = DummyHandler({"status": "paused"})
    project_routes.handle_patch(ok, store, path)
    assert ok.last[0] == 200
    assert ok.last[1]["project"]["status"] == "paused"

    duplicate = DummyHandler({"name": "other"})
    project_routes.handle_patch(duplicate, store, path)
    assert duplicate.last[0] == 409

    empty = DummyHandler({})
    project_routes.handle_patch(empty, store, path)
    assert empty.last == (400, {"error": "No updates provided"})

    missing = DummyHandler({"status": "paused"})
    project_routes.handle_patch(missing, store, "/api/projects/missing")
    assert missing.last[0] == 404


def test_decisions_and_sessions_routes(store: MindpmStore, project: dict) -> None:
    store.log_decision(project["id"], "Pick", "this")
    base = f"/api/projects/{project['id']}"

    handler = DummyHandler({"summary": "wrapped", "next_steps": "ship"})
    project_routes.handle_post(handler, store, f"{base}/sessions")
    status, body = handler.last
    assert status == 201
    assert body["session"]["next_steps"] == "ship"

    project_routes.handle_get(handler, store, f"{base}/sessions", "")
    assert [s["summary"] for s in handler.last[1]["sessions"]] == ["wrapped"]
    project_routes.handle_get(handler, store, f"{base}/decisions", "")
    assert [d["title"] for d in handler.last[1]["decisions"]] == ["Pick"]

    bad = DummyHandler({})
    project_routes.handle_post(bad, store, f"{base}/sessions")
    assert bad.last[0] == 400
    project_routes.handle_get(bad, store, "/api/projects/missing/decisions", "")
    assert bad.last[0] == 404


def test_task_routes_crud(store: MindpmStore, project: dict) -> None:
    tasks_path = f"/api/projects/{project['id']}/tasks"

    create = DummyHandler({"title": "Do X", "priority": "high", "tags": ["ui"]})
    assert task_routes.handle_post(create, store, tasks_path) is True
    status, body = create.last
    assert status == 201
    task = body["task"]
    assert task["short_id"] == "prj-1"
    assert task["tags"] == ["ui"]

    patch = DummyHandler({"status": "done"})
    task_routes.handle_patch(patch, store, f"/api/tasks/{task['id']}")
    assert patch.last[1]["task"]["status"] == "done"

    listing = DummyHandler()
    task_routes.handle_get(listing, store, tasks_path, "")
    assert listing.last[1]["tasks"] == []
    task_routes.handle_get(listing, store, tasks_path, "include_done=1")
    assert [t["id"] for t in listing.last[1]["tasks"]] == [task["id"]]

    task_routes.handle_get(listing, store, f"/api/tasks/{task['id']}/history", "")
    assert [e["event"] for e in listing.last[1]["history"]] == ["created", "status_changed"]
    task_routes.handle_get(listing, store, f"/api/tasks/{task['id']}", "")
    assert listing.last[1]["task"]["subtasks"] == []

    delete = DummyHandler()
    task_routes.handle_delete(delete, store, f"/api/tasks/{task['id']}")
    assert delete.last == (200, {"deleted": [task["id"]]})
    task_routes.handle_delete(delete, store, f"/api/tasks/{task['id']}")
    assert delete.last == (404, {"error": "not_found"})


def test_task_routes_validation(store: MindpmStore, project: dict) -> None:
    tasks_path = f"/api/projects/{project['id']}/tasks"

    missing_title = DummyHandler({"title": " "})
    task_routes.handle_post(missing_title, store, tasks_path)
    assert missing_title.last == (400, {"error": "title is required"})

    bad_priority = DummyHandler({"title": "x", "priority": "urgent"})
    task_routes.handle_post(bad_priority, store, tasks_path)
    assert bad_priority.last[0] == 400

    bad_tags = DummyHandler({"title": "x", "tags": "ui"})
    task_routes.handle_post(bad_tags, store, tasks_path)
    assert bad_tags.last[0] == 400

    unknown_project = DummyHandler({"title": "x"})
    task_routes.handle_post(unknown_project, store, "/api/projects/missing/tasks")
    assert unknown_project.last[0] == 404

    no_fields = DummyHandler({})
    task_routes.handle_patch(no_fields, store, "/api/tasks/missing")
    assert no_fields.last[0] == 400
    unknown_task = DummyHandler({"status": "done"})
    task_routes.handle_patch(unknown_task, store, "/api/tasks/missing")
    assert unknown_task.last[0] == 404


@pytest.mark.parametrize(
    "payload",
    [{"title": 5}, {"title": "x", "priority": 3}, {"title": "x", "status": ["done"]}],
)
def test_create_task_rejects_non_text_fields(
    store: MindpmStore, project: dict, payload: dict
) -> None:
    handler = DummyHandler(payload)

    task_routes.handle_post(handler, store, f"/api/projects/{project['id']}/tasks")

    assert handler.last[0] == 400
    assert store.list_tasks(project["id"], include_done=True) == []


def test_update_routes_reject_non_text_fields(store: MindpmStore, project: dict) -> None:
    task = store.create_task(project["id"], "x")

    title = DummyHandler({"title": 5})
    task_routes.handle_patch(title, store, f"/api/tasks/{task['id']}")
    assert title.last == (400, {"error": "title must be a string"})

    blocked_by = DummyHandler({"blocked_by": [1, 2]})
    task_routes.handle_patch(blocked_by, store, f"/api/tasks/{task['id']}")
    assert blocked_by.last == (400, {"error": "blocked_by must be a list of strings"})

    name = DummyHandler({"name": {"first": "x"}})
    project_routes.handle_patch(name, store, f"/api/projects/{project['id']}")
    assert name.last == (400, {"error": "name must be a string"})

    summary = DummyHandler({"summary": 7})
    project_routes.handle_post(summary, store, f"/api/projects/{project['id']}/sessions")
    assert summary.last[0] == 400

    assert store.get_task(task["id"])["title"] == "x"
    assert store.require_project(project["id"])["name"] == "Proj"


def _request(
    port: int,
    method: str,
    path: str,
    body: dict[str, Any] | bytes | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, bytes]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        payload = json.dumps(body).encode("utf-8") if isinstance(body, dict) else body
        conn.request(method, path, body=payload, headers=headers or {})
        resp = conn.getresponse()
        return resp.status, resp.read()
    finally:
        conn.close()


def test_viewer_server_end_to_end(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    db_path = tmp_path / "viewer.sqlite"
    monkeypatch.setenv("MINDPM_DB_PATH", str(db_path))
    with MindpmStore(db_path) as store:
        project = store.create_project("Proj")

    server = ThreadingHTTPServer(("127.0.0.1", 0), ViewerHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    port = int(server.server_address[1])
    try:
        status, raw = _request(port, "GET", "/api/projects")
        assert status == 200
        assert [p["id"] for p in json.loads(raw)["projects"]] == [project["id"]]

        status, raw = _request(
            port,
            "POST",
            f"/api/projects/{project['id']}/tasks",
            {"title": "From the board"},
            {"Content-Type": "application/json", "Origin": f"http://127.0.0.1:{port}"},
        )
        assert status == 201
        task_id = json.loads(raw)["task"]["id"]

        status, _ = _request(
            port,
            "PATCH",
            f"/api/tasks/{task_id}",
            {"status": "in_progress"},
            {"Content-Type": "application/json", "Origin": "https://evil.test"},
        )
        assert status == 403

        status, raw = _request(port, "GET", "/api/nothing-here")
        assert status == 404

        status, raw = _request(
            port,
            "POST",
            f"/api/projects/{project['id']}/tasks",
            b"{title: unquoted}",
            {"Content-Type": "application/json"},
        )
        assert status == 400
        assert json.loads(raw) == {"error": "request body must be JSON"}

        status, raw = _request(port, "GET", "/assets/app.css")
        assert status == 200
        status, raw = _request(port, "GET", "/assets/../../pyproject.toml")
        assert status == 404
        assert json.loads(raw) == {"error": "not_found"}

        status, raw = _request(port, "GET", f"/board/{project['id']}")
        assert status == 200
        assert b"<html" in raw.lower()
    finally:
        server.shutdown()
        server.server_close()

    with MindpmStore(db_path) as store:
        task = store.get_task(task_id)
    assert task is not None
    assert task["status"] == "todo"
