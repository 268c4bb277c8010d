from __future__ import annotations

import os

import typer
from rich import print

from mindpm.viewer import open_in_browser, port_in_use, start_viewer


def serve(*, db_path: str | None, host: str, port: int, open_browser: bool) -> None:
    """Run the viewer server in the foreground."""

    if db_path:
        os.environ["MINDPM_DB_PATH"] = db_path
    if port_in_use(host, port):
        print(f"[yellow]Viewer already running at http://{host}:{port}[/yellow]")
        return
    url = f"http://{host}:{port}"
    print(f"[green]Viewer running at {url}[/green]")
    if open_browser:
        open_in_browser(url)
    try:
        start_viewer(host=host, port=port, background=False)
    except OSError as exc:
        print(f"[red]Viewer failed to start: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        return
