from __future__ import annotations

import re

import pytest

from mindpm.ids import generate_id, generate_slug, short_id, unique_slug


def test_generate_id_is_short_hex() -> None:
    ids = {generate_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(re.fullmatch(r"[0-9a-f]{8}", value) for value in ids)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Side Quest", "sq"),
        ("my big shiny new app", "mbsn"),
        ("Proj", "prj"),
        ("mindpm", "mndp"),
        ("Aeon", "aeon"),
        ("io", "io"),
        ("hello-world_app", "hwa"),
        ("!!!", "prj"),
        ("", "prj"),
    ],
)
def test_generate_slug(name: str, expected: str) -> None:
    assert generate_slug(name) == expected


def test_unique_slug_appends_counter() -> None:
    assert unique_slug("prj", set()) == "prj"
    assert unique_slug("prj", {"prj"}) == "prj2"
    assert unique_slug("prj", {"prj", "prj2", "prj3"}) == "prj4"


def test_short_id_requires_slug_and_seq() -> None:
    assert short_id("prj", 3) == "prj-3"
    assert short_id(None, 3) is None
    assert short_id("prj", None) is None
