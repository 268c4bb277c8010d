from __future__ import annotations

from functools import cache
from importlib import resources

INDEX_PAGE = "index.html"
PAGE_FILES = {
    INDEX_PAGE: "text/html; charset=utf-8",
    "app.js": "text/javascript; charset=utf-8",
    "app.css": "text/css; charset=utf-8",
}


@cache
def load_page_file(name: str) -> tuple[bytes, str]:
    """Bytes and content type of one kanban page file.

    Only the names in ``PAGE_FILES`` are served; anything else raises
    ``KeyError`` without touching the package.
    """

    content_type = PAGE_FILES[name]
    body = resources.files(__package__).joinpath("viewer_static", name).read_bytes()
    return body, content_type
