from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from mindpm.session_gate import SessionGate
from mindpm.store import MindpmStore


def test_claim_is_check_and_set() -> None:
    gate = SessionGate()

    assert gate.claim("p1") is True
    assert gate.claim("p1") is False
    assert gate.claim("p2") is True
    assert len(gate) == 2

    gate.release("p1")
    assert "p1" not in gate
    assert gate.claim("p1") is True

    gate.reset()
    assert len(gate) == 0


def test_concurrent_claims_have_one_winner() -> None:
    gate = SessionGate()
    barrier = threading.Barrier(8)
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        won = gate.claim("p1")
        with lock:
            results.append(won)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False] * 7 + [True]


def test_concurrent_first_calls_synthesize_one_session(tmp_path: Path) -> None:
    db_path = tmp_path / "mem.sqlite"
    with MindpmStore(db_path) as store:
        project = store.create_project("Proj")
        store.create_task(project["id"], "x")

    gate = SessionGate()
    barrier = threading.Barrier(4)
    snapshots: list[object] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def worker() -> None:
        try:
            with MindpmStore(db_path) as thread_store:
                barrier.wait()
                snapshot = thread_store.maybe_reconcile(gate, project["id"])
            with lock:
                snapshots.append(snapshot)
        except BaseException as exc:  # pragma: no cover - surfaced below
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sum(1 for snapshot in snapshots if snapshot is not None) == 1
    with MindpmStore(db_path) as store:
        assert len(store.list_sessions(project["id"])) == 1


@pytest.mark.parametrize("write", ["update", "create"])
def test_write_waiting_on_reconcile_lands_in_next_window(tmp_path: Path, write: str) -> None:
    db_path = tmp_path / "shared.sqlite"
    store = MindpmStore(db_path)
    project = store.create_project("Proj")
    task = store.create_task(project["id"], "x")
    store.reconcile(project["id"])
    store.add_note(project["id"], "folded into the held session")

    ready = threading.Event()
    locked = threading.Event()
    written: list[dict] = []
    errors: list[BaseException] = []

    def writer() -> None:
        try:
            with MindpmStore(db_path) as other:
                ready.set()
                locked.wait()
                if write == "update":
                    written.append(other.update_task(task["id"], status="in_progress"))
                else:
                    written.append(other.create_task(project["id"], "late"))
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    thread = threading.Thread(target=writer)
    thread.start()
    try:
        assert ready.wait(5)
        store.conn.execute("BEGIN IMMEDIATE")
        locked.set()
        time.sleep(0.3)
        held = store.reconcile(project["id"])
        store.conn.commit()
        thread.join()

        assert errors == []
        assert [item["type"] for item in held["recent_activity"]] == ["note"]
        after = store.reconcile(project["id"])
        expected_type = "task_updated" if write == "update" else "task_created"
        assert [(item["type"], item["id"]) for item in after["recent_activity"]] == [
            (expected_type, written[0]["id"])
        ]
        latest = store.list_sessions(project["id"])[0]
        assert latest["tasks_worked_on"] == [written[0]["id"]]
    finally:
        store.close()
