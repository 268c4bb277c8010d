from __future__ import annotations

import logging
import os
import socket
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlparse

from . import viewer_assets
from .config import DEFAULT_VIEWER_HOST, DEFAULT_VIEWER_PORT
from .db import DEFAULT_DB_PATH
from .store import MindpmStore
from .viewer_http import (
    NOT_FOUND,
    foreign_origin,
    read_payload,
    send_file,
    send_json,
    send_json_error,
)
from .viewer_routes import projects as viewer_routes_projects
from .viewer_routes import tasks as viewer_routes_tasks

logger = logging.getLogger(__name__)


def _open_store() -> MindpmStore:
    return MindpmStore(os.environ.get("MINDPM_DB_PATH") or DEFAULT_DB_PATH)


class ViewerHandler(BaseHTTPRequestHandler):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None:
        send_json(self, payload, status=status)

    def _read_json(self) -> dict[str, Any]:
        return read_payload(self)

    def _send_page_file(self, name: str) -> None:
        try:
            body, content_type = viewer_assets.load_page_file(name)
        except KeyError:
            send_json_error(self, 404, NOT_FOUND)
            return
        send_file(self, body, content_type)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        if os.environ.get("MINDPM_VIEWER_LOGS") == "1":
            super().log_message(format, *args)

    def _send_server_error(self, exc: Exception) -> None:
        logger.exception("viewer request failed: %s %s", self.command, self.path)
        payload: dict[str, Any] = {"error": "internal server error"}
        if os.environ.get("MINDPM_VIEWER_DEBUG") == "1":
            payload["detail"] = str(exc)
        self._send_json(payload, status=500)

    def _dispatch_api(self, method: str, path: str, query: str) -> None:
        store: MindpmStore | None = None
        try:
            store = _open_store()
            handled = False
            if method == "GET":
                handled = viewer_routes_projects.handle_get(
                    self, store, path, query
                ) or viewer_routes_tasks.handle_get(self, store, path, query)
            elif method == "POST":
                handled = viewer_routes_tasks.handle_post(
                    self, store, path
                ) or viewer_routes_projects.handle_post(self, store, path)
            elif method == "PATCH":
                handled = viewer_routes_projects.handle_patch(
                    self, store, path
                ) or viewer_routes_tasks.handle_patch(self, store, path)
            elif method == "DELETE":
                handled = viewer_routes_tasks.handle_delete(self, store, path)
            if not handled:
                send_json_error(self, 404, NOT_FOUND)
        except Exception as exc:  # noqa: BLE001
            self._send_server_error(exc)
        finally:
            if store is not None:
                store.close()

    def _dispatch_write(self, method: str) -> None:
        if foreign_origin(self):
            send_json_error(self, 403, "forbidden")
            return
        parsed = urlparse(self.path)
        self._dispatch_api(method, parsed.path, parsed.query)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path.startswith("/api/"):
            self._dispatch_api("GET", parsed.path, parsed.query)
            return
        if parsed.path.startswith("/assets/"):
            self._send_page_file(parsed.path[len("/assets/") :])
            return
        # Client-side routes fall back to the single page.
        self._send_page_file(viewer_assets.INDEX_PAGE)

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch_write("POST")

    def do_PATCH(self) -> None:  # noqa: N802
        self._dispatch_write("PATCH")

    def do_DELETE(self) -> None:  # noqa: N802
        self._dispatch_write("DELETE")


def _serve(host: str, port: int) -> None:
    server = ThreadingHTTPServer((host, port), ViewerHandler)
    logger.info("kanban board at http://%s:%s", host, port)
    server.serve_forever()


def _serve_logged(host: str, port: int) -> None:
    try:
        _serve(host, port)
    except OSError as exc:
        logger.warning("viewer could not start on %s:%s", host, port, exc_info=exc)


def port_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.2)
        try:
            return sock.connect_ex((host, port)) == 0
        except OSError:
            return False


def start_viewer(
    host: str = DEFAULT_VIEWER_HOST,
    port: int = DEFAULT_VIEWER_PORT,
    background: bool = False,
) -> bool:
    """Serve the dashboard. Returns False when something already listens on the port."""

    if port_in_use(host, port):
        logger.info("viewer already running at http://%s:%s", host, port)
        return False
    if background:
        thread = threading.Thread(target=_serve_logged, args=(host, port), daemon=True)
        thread.start()
    else:
        _serve(host, port)
    return True


def open_in_browser(url: str) -> None:
    try:
        webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("could not open browser for %s", url, exc_info=exc)
