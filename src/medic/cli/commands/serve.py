"""``serve`` command: run the HTTP request layer under uvicorn."""

from __future__ import annotations

from pathlib import Path

import typer
import uvicorn
from rich.panel import Panel

from medic import __version__

from ..helpers import create_engine, load_cli_config
from ..output import console
from .analyze import ConfigOption, WorkspaceOption


def serve(
    workspace: Path | None = WorkspaceOption,
    config_file: Path | None = ConfigOption,
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
) -> None:
    """Serve the module health and recovery API.

    Examples:
        medic serve                          # localhost:8000, current directory
        medic serve -w ./repo --port 3000
    """
    from medic.dashboard import create_app

    config = load_cli_config(workspace, config_file)
    app = create_app(create_engine(config), version=__version__)

    console.print(
        Panel(
            f"Workspace: {config.workspace_path}\n"
            f"API: http://{host}:{port}/api\n"
            f"Docs: http://{host}:{port}/docs",
            title=f"Medic v{__version__}",
            border_style="blue",
        )
    )
    uvicorn.run(app, host=host, port=port, log_level="info")
