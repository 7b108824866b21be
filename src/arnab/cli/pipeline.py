"""Pipeline commands: run, run-file."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from arnab.cli import _load_config, _resolve_project, app, console


@app.command()
def run(
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", help="Max parallel models per stage (default: max_workers from config)")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Discover models, resolve the DAG, and materialize every model in dependency order.

    Exits non-zero unless every model succeeds.
    """
    from arnab.engine.transform import ModelStatus, RunOutcome, run_pipeline

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    if workers is not None:
        if workers < 1:
            console.print("[red]--workers must be at least 1[/red]")
            raise typer.Exit(1)
        config = config.model_copy(update={"max_workers": workers})

    console.print(f"[bold]Run[/bold] [dim]({config.database_path}, {config.max_workers} workers)[/dim]:")
    result = run_pipeline(config)

    if result.outcome == RunOutcome.ABORTED:
        raise typer.Exit(1)
    if result.outcome != RunOutcome.ALL_SUCCEEDED:
        failed = result.count(ModelStatus.FAILED)
        skipped = result.count(ModelStatus.SKIPPED)
        console.print(f"[red]Run incomplete: {failed} failed, {skipped} skipped[/red]")
        raise typer.Exit(1)


@app.command("run-file")
def run_file(
    scripts: Annotated[list[Path], typer.Argument(help="SQL script files to execute, in order")],
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Execute SQL script files verbatim against the project database.

    Every script is attempted; exits non-zero if any of them failed.
    """
    from arnab.engine.database import DuckDBEngine, apply_settings, connect
    from arnab.engine.runner import run_scripts

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)

    console.print("[bold]Running scripts:[/bold]")
    conn = connect(config.database_path)
    try:
        apply_settings(conn, config.duckdb_settings)
        results = run_scripts(DuckDBEngine(conn), scripts)
    finally:
        conn.close()

    if any(r.status != "ok" for r in results):
        raise typer.Exit(1)
