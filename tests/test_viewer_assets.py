from __future__ import annotations

import pytest

from mindpm import viewer_assets


def test_index_page_links_its_assets() -> None:
    body, content_type = viewer_assets.load_page_file(viewer_assets.INDEX_PAGE)

    assert content_type == "text/html; charset=utf-8"
    assert body.lstrip().lower().startswith(b"<!doctype html>")
    assert b"/assets/app.js" in body
    assert b"/assets/app.css" in body


@pytest.mark.parametrize(
    ("name", "content_type"),
    [("app.js", "text/javascript; charset=utf-8"), ("app.css", "text/css; charset=utf-8")],
)
def test_page_assets_are_packaged(name: str, content_type: str) -> None:
    body, served_type = viewer_assets.load_page_file(name)

    assert body
    assert served_type == content_type


@pytest.mark.parametrize("name", ["", "nope.js", "../pyproject.toml", "viewer_static/app.js"])
def test_only_page_files_are_served(name: str) -> None:
    with pytest.raises(KeyError):
        viewer_assets.load_page_file(name)
