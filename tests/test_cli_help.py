import json
from pathlib import Path

from typer.testing import CliRunner

from mindpm import __version__
from mindpm.cli import app
from mindpm.store import MindpmStore

runner = CliRunner()


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("mcp", "serve", "init-db", "stats", "instructions", "config"):
        assert command in result.stdout


def test_config_help_shows_subcommands() -> None:
    result = runner.invoke(app, ["config", "--help"])
    assert result.exit_code == 0
    assert "show" in result.stdout
    assert "path" in result.stdout
    assert "set" in result.stdout


def test_version_prints_package_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_db_creates_database(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "memory.db"

    result = runner.invoke(app, ["init-db", "--db-path", str(db_path)])

    assert result.exit_code == 0
    assert db_path.exists()


def test_stats_reports_counts(tmp_path: Path) -> None:
    db_path = tmp_path / "memory.db"
    with MindpmStore(db_path) as store:
        project = store.create_project("Proj")
        store.create_task(project["id"], "x")

    result = runner.invoke(app, ["stats", "--db-path", str(db_path)])

    assert result.exit_code == 0
    assert "tasks: 1" in result.stdout
    assert "projects: 1" in result.stdout


def test_instructions_mentions_session_tools() -> None:
    result = runner.invoke(app, ["instructions"])
    assert result.exit_code == 0
    assert "start_session" in result.stdout
    assert "end_session" in result.stdout


def test_config_path_uses_env(tmp_path: Path) -> None:
    result = runner.invoke(app, ["config", "path"])
    assert result.exit_code == 0
    assert result.stdout.strip() == str(tmp_path / "config.json")


def test_config_show_prints_effective_config(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("MINDPM_PORT", "4555")

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["viewer_port"] == 4555
    assert data["db_path"] == str(tmp_path / "env-memory.db")


def test_config_show_rejects_broken_file(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{broken")

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 1


def test_config_set_is_reflected_in_show(tmp_path: Path) -> None:
    saved = runner.invoke(app, ["config", "set", "viewer_port", "4999"])
    shown = runner.invoke(app, ["config", "show"])

    assert saved.exit_code == 0
    assert json.loads((tmp_path / "config.json").read_text()) == {"viewer_port": 4999}
    assert json.loads(shown.stdout)["viewer_port"] == 4999


def test_config_set_rejects_unknown_key(tmp_path: Path) -> None:
    result = runner.invoke(app, ["config", "set", "colour", "blue"])

    assert result.exit_code == 1
    assert not (tmp_path / "config.json").exists()
