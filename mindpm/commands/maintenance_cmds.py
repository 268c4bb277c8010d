from __future__ import annotations

import logging
import os

from rich import print

from mindpm.config import load_config
from mindpm.instructions import AGENT_INSTRUCTIONS

logger = logging.getLogger(__name__)


def init_db_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    store = store_from_path(db_path)
    try:
        print(f"Initialized database at {store.db_path}")
    finally:
        store.close()


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.1f} MB"


def stats_cmd(*, store_from_path, db_path: str | None) -> None:
    store = store_from_path(db_path)
    try:
        stats_data = store.stats()
    finally:
        store.close()

    print("[bold]Database[/bold]")
    print(f"- Path: {stats_data['path']}")
    print(f"- Size: {_format_bytes(int(stats_data['size_bytes']))}")
    for table, count in stats_data["counts"].items():
        print(f"- {table}: {count}")


def instructions_cmd() -> None:
    print(AGENT_INSTRUCTIONS)


def mcp_cmd(*, db_path: str | None) -> None:
    """Run the MCP server on stdio, with the kanban viewer in the background."""

    from mindpm.mcp_server import run as mcp_run
    from mindpm.viewer import open_in_browser, start_viewer

    cfg = load_config()
    resolved_db = db_path or cfg.db_path
    kanban_base_url: str | None = None
    if cfg.viewer_enabled:
        # The viewer opens its own connections and locates the file through the env.
        os.environ["MINDPM_DB_PATH"] = str(resolved_db)
        start_viewer(host=cfg.viewer_host, port=cfg.viewer_port, background=True)
        kanban_base_url = cfg.viewer_url
        if cfg.open_browser:
            open_in_browser(cfg.viewer_url)
    else:
        logger.info("viewer disabled")
    mcp_run(db_path=resolved_db, kanban_base_url=kanban_base_url)
