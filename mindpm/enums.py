from __future__ import annotations

from typing import Final

PROJECT_STATUSES: Final[tuple[str, ...]] = ("active", "paused", "completed", "archived")
TASK_STATUSES: Final[tuple[str, ...]] = ("todo", "in_progress", "blocked", "done", "cancelled")
# Ordered by rank: earlier entries sort first.
TASK_PRIORITIES: Final[tuple[str, ...]] = ("critical", "high", "medium", "low")
NOTE_CATEGORIES: Final[tuple[str, ...]] = (
    "general",
    "architecture",
    "bug",
    "idea",
    "research",
    "meeting",
    "review",
)

CLOSED_TASK_STATUSES: Final[tuple[str, ...]] = ("done", "cancelled")
NEXT_TASK_STATUSES: Final[tuple[str, ...]] = ("todo", "in_progress")


def priority_rank_sql(column: str = "priority") -> str:
    cases = " ".join(f"WHEN '{name}' THEN {rank}" for rank, name in enumerate(TASK_PRIORITIES))
    return f"CASE {column} {cases} ELSE {len(TASK_PRIORITIES)} END"


def _validate(value: str, allowed: tuple[str, ...], label: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in allowed:
        return normalized
    raise ValueError(f"Invalid {label} '{value}'. Allowed values: {', '.join(allowed)}")


def validate_project_status(value: str) -> str:
    return _validate(value, PROJECT_STATUSES, "project status")


def validate_task_status(value: str) -> str:
    return _validate(value, TASK_STATUSES, "task status")


def validate_priority(value: str) -> str:
    return _validate(value, TASK_PRIORITIES, "priority")


def validate_note_category(value: str) -> str:
    return _validate(value, NOTE_CATEGORIES, "note category")
