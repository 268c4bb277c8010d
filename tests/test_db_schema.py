from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from mindpm import db

EXPECTED_TABLES = {"projects", "tasks", "task_history", "decisions", "notes", "sessions", "context"}


def _connect(tmp_path: Path) -> sqlite3.Connection:
    conn = db.connect(tmp_path / "mem.sqlite")
    db.initialize_schema(conn)
    return conn


def test_initialize_schema_sets_user_version(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        row = conn.execute("PRAGMA user_version").fetchone()
        tables = {
            r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    finally:
        conn.close()

    assert int(row[0]) == db.SCHEMA_VERSION
    assert EXPECTED_TABLES <= tables


def test_initialize_schema_skips_reinit_at_current_version(monkeypatch, tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:

        def _unexpected_reinit(_conn):
            raise AssertionError("initialize_schema should not recreate tables at current version")

        monkeypatch.setattr(db, "_create_tables", _unexpected_reinit)
        db.initialize_schema(conn)
    finally:
        conn.close()


def test_fresh_schema_needs_no_migrations(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        assert db.apply_migrations(conn) == []
    finally:
        conn.close()


def test_connect_enables_foreign_keys_and_wal(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
    finally:
        conn.close()


def test_enum_checks_reject_invalid_values(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        conn.execute("INSERT INTO projects(id, name, slug) VALUES ('p1', 'Proj', 'prj')")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO tasks(id, project_id, seq, title, status) VALUES ('t1', 'p1', 1, 'x', 'bogus')"
            )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO tasks(id, project_id, seq, title, priority) VALUES ('t2', 'p1', 1, 'x', 'urgent')"
            )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("UPDATE projects SET status = 'deleted' WHERE id = 'p1'")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO notes(id, project_id, content, category) VALUES ('n1', 'p1', 'x', 'gossip')"
            )
    finally:
        conn.close()


def test_same_name_literal_insert_fails(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        conn.execute("INSERT INTO projects(id, name, slug) VALUES ('p1', 'Proj', 'prj')")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO projects(id, name, slug) VALUES ('p2', 'Proj', 'prj2')")
    finally:
        conn.close()


def test_foreign_keys_reject_dangling_project(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO tasks(id, project_id, seq, title) VALUES ('t1', 'nope', 1, 'x')")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO context(id, project_id, key, value) VALUES ('c1', 'nope', 'k', 'v')")
    finally:
        conn.close()


def test_context_key_unique_per_project(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        conn.execute("INSERT INTO projects(id, name, slug) VALUES ('p1', 'Proj', 'prj')")
        conn.execute("INSERT INTO context(id, project_id, key, value) VALUES ('c1', 'p1', 'k', 'v')")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO context(id, project_id, key, value) VALUES ('c2', 'p1', 'k', 'w')"
            )
    finally:
        conn.close()


def test_update_trigger_refreshes_updated_at(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    stale = "2020-01-01T00:00:00.000Z"
    try:
        conn.execute(
            "INSERT INTO projects(id, name, slug, created_at, updated_at) VALUES ('p1', 'Proj', 'prj', ?, ?)",
            (stale, stale),
        )
        conn.execute("UPDATE projects SET description = 'changed' WHERE id = 'p1'")
        refreshed = conn.execute("SELECT updated_at FROM projects WHERE id = 'p1'").fetchone()[0]

        explicit = "2021-06-01T00:00:00.000Z"
        conn.execute("UPDATE projects SET description = 'again', updated_at = ? WHERE id = 'p1'", (explicit,))
        kept = conn.execute("SELECT updated_at FROM projects WHERE id = 'p1'").fetchone()[0]
    finally:
        conn.close()

    assert refreshed > stale
    assert kept == explicit


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    conn = _connect(tmp_path)
    try:
        with pytest.raises(RuntimeError):
            with db.transaction(conn):
                conn.execute("INSERT INTO projects(id, name, slug) VALUES ('p1', 'Proj', 'prj')")
                raise RuntimeError("boom")
        count = conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0]
    finally:
        conn.close()

    assert count == 0


def test_now_iso_is_strictly_increasing() -> None:
    stamps = [db.now_iso() for _ in range(200)]

    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
    assert all(s.endswith("Z") and len(s) == len("2026-01-01T00:00:00.000Z") for s in stamps)


def test_json_list_boundary_recovers_from_malformed_data() -> None:
    assert db.from_json_list(db.to_json_list(["b", "a"])) == ["b", "a"]
    assert db.from_json_list(None) == []
    assert db.from_json_list("") == []
    assert db.from_json_list("not json") == []
    assert db.from_json_list('{"a": 1}') == []
    assert db.to_json_list(None) is None
