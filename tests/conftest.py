from __future__ import annotations

from pathlib import Path

import pytest

from mindpm.store import MindpmStore


@pytest.fixture(autouse=True)
def _isolate_mindpm_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MINDPM_DB_PATH", str(tmp_path / "env-memory.db"))
    monkeypatch.setenv("MINDPM_CONFIG", str(tmp_path / "config.json"))
    for name in (
        "PROJECT_MEMORY_DB_PATH",
        "MINDPM_PORT",
        "MINDPM_HOST",
        "MINDPM_VIEWER",
        "MINDPM_OPEN_BROWSER",
        "MINDPM_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path):
    store = MindpmStore(tmp_path / "mem.sqlite")
    try:
        yield store
    finally:
        store.close()
