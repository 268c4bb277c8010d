from __future__ import annotations

import re
import secrets
from collections.abc import Container

DEFAULT_SLUG = "prj"
MAX_SLUG_LETTERS = 4


def generate_id() -> str:
    """Return an 8 character lowercase hex token."""

    return secrets.token_hex(4)


def generate_slug(name: str) -> str:
    normalized = re.sub(r"[^a-z0-9]+", " ", (name or "").lower()).strip()
    words = normalized.split()
    if len(words) > 1:
        slug = "".join(word[0] for word in words[:MAX_SLUG_LETTERS])
    else:
        consonants = re.sub(r"[aeiou]", "", normalized)
        if len(consonants) >= 2:
            slug = consonants[:MAX_SLUG_LETTERS]
        else:
            slug = normalized[:MAX_SLUG_LETTERS]
    return slug or normalized[:MAX_SLUG_LETTERS] or DEFAULT_SLUG


def unique_slug(base: str, taken: Container[str]) -> str:
    """Append 2, 3, ... to ``base`` until it is not in ``taken``."""

    candidate = base
    n = 2
    while candidate in taken:
        candidate = f"{base}{n}"
        n += 1
    return candidate


def short_id(slug: str | None, seq: int | None) -> str | None:
    if not slug or seq is None:
        return None
    return f"{slug}-{seq}"
