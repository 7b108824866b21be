"""CLI interface for arnab.

The Typer app and shared helpers live here; each module registers its commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from arnab.config import CONFIG_FILE, ProjectConfig

app = typer.Typer(
    name="arnab",
    help="Run a directory of SQL models against DuckDB in dependency order.",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    from arnab import setup_logging

    setup_logging("DEBUG" if verbose else "WARNING")


def _resolve_project(project_dir: Path | None = None) -> Path:
    project_dir = project_dir or Path.cwd()
    if not (project_dir / CONFIG_FILE).exists():
        console.print(f"[red]Config file ({CONFIG_FILE}) not found in {project_dir}[/red]")
        raise typer.Exit(1)
    return project_dir


def _load_config(project_dir: Path) -> ProjectConfig:
    from arnab.config import load_project
    from arnab.engine.errors import ConfigError

    try:
        return load_project(project_dir)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# Import submodules so they register their commands on `app`.
from arnab.cli import models  # noqa: E402, F401
from arnab.cli import pipeline  # noqa: E402, F401
