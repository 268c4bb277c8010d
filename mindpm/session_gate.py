from __future__ import annotations

import threading


class SessionGate:
    """Remembers which projects already surfaced their catch-up snapshot.

    One gate belongs to one server instance. ``claim`` is an atomic
    check-and-set, so concurrent first calls for a project cannot both win.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started: set[str] = set()

    def claim(self, project_id: str) -> bool:
        with self._lock:
            if project_id in self._started:
                return False
            self._started.add(project_id)
            return True

    def mark(self, project_id: str) -> None:
        with self._lock:
            self._started.add(project_id)

    def release(self, project_id: str) -> None:
        with self._lock:
            self._started.discard(project_id)

    def reset(self) -> None:
        with self._lock:
            self._started.clear()

    def __contains__(self, project_id: object) -> bool:
        with self._lock:
            return project_id in self._started

    def __len__(self) -> int:
        with self._lock:
            return len(self._started)
