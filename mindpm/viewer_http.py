"""Request and response helpers for the dashboard API.

Every API answer is JSON. Failures carry ``{"error": <message>}``; a missing
resource always reads ``{"error": "not_found"}``.
"""

from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import urlparse

NOT_FOUND = "not_found"
LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})
_LOCAL_FETCH_SITES = frozenset({"", "same-origin", "same-site", "none"})


class BadRequest(ValueError):
    """A request body the dashboard cannot act on (answered with 400)."""


def send_json(handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int = 200) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def send_json_error(handler: BaseHTTPRequestHandler, status: int, message: str) -> None:
    send_json(handler, {"error": message}, status=status)


def send_file(handler: BaseHTTPRequestHandler, body: bytes, content_type: str) -> None:
    handler.send_response(200)
    handler.send_header("Content-Type", content_type)
    handler.send_header("Content-Length", str(len(body)))
    handler.send_header("Cache-Control", "no-cache")
    handler.end_headers()
    handler.wfile.write(body)


def read_payload(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    """Decode the request body as a JSON object. An empty body reads as ``{}``."""

    try:
        length = int(handler.headers.get("Content-Length") or 0)
    except ValueError as exc:
        raise BadRequest("invalid Content-Length") from exc
    raw = handler.rfile.read(length) if length > 0 else b""
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BadRequest("request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise BadRequest("request body must be a JSON object")
    return payload


def optional_text(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or isinstance(value, str):
        return value
    raise BadRequest(f"{key} must be a string")


def required_text(payload: dict[str, Any], key: str) -> str:
    value = optional_text(payload, key)
    if value is None or not value.strip():
        raise BadRequest(f"{key} is required")
    return value


def text_list(payload: dict[str, Any], key: str) -> list[str] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise BadRequest(f"{key} must be a list of strings")
    return value


def is_loopback_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        host = parsed.hostname
        parsed.port  # noqa: B018 - raises on a malformed port
    except ValueError:
        return False
    return parsed.scheme == "http" and "@" not in parsed.netloc and host in LOOPBACK_HOSTS


def foreign_origin(handler: BaseHTTPRequestHandler) -> bool:
    """True when a page served from somewhere other than this machine sent the request.

    Clients that send neither ``Origin`` nor fetch metadata (curl, scripts)
    are treated as local.
    """

    origin = handler.headers.get("Origin")
    if origin:
        return not is_loopback_url(origin)
    site = (handler.headers.get("Sec-Fetch-Site") or "").strip().lower()
    return site not in _LOCAL_FETCH_SITES
