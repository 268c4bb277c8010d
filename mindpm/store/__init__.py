from __future__ import annotations

from ._store import MindpmStore
from .sessions import AUTO_SESSION_PREFIX, is_synthetic
from .types import (
    ActivityItem,
    DuplicateNameError,
    MindpmError,
    NoDefaultProjectError,
    NotFoundError,
    Snapshot,
)

__all__ = [
    "AUTO_SESSION_PREFIX",
    "ActivityItem",
    "DuplicateNameError",
    "MindpmError",
    "MindpmStore",
    "NoDefaultProjectError",
    "NotFoundError",
    "Snapshot",
    "is_synthetic",
]
