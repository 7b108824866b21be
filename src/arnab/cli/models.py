"""Model inspection commands: plan, compile, viz."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.syntax import Syntax
from rich.table import Table

from arnab.cli import _load_config, _resolve_project, app, console


def _load_graph(project_dir: Path | None):
    from arnab.engine.errors import ArnabError
    from arnab.engine.transform import load_graph

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    try:
        return load_graph(config)
    except ArnabError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command("plan")
def plan_cmd(
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Show the execution stages without running anything."""
    from arnab.engine.errors import ArnabError
    from arnab.engine.transform import plan

    graph = _load_graph(project_dir)
    try:
        execution_plan = plan(graph)
    except ArnabError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not graph.models:
        console.print("[yellow]No SQL models found.[/yellow]")
        return

    table = Table(title=f"Execution plan ({len(graph)} models)")
    table.add_column("Stage", justify="right")
    table.add_column("Model", style="bold")
    table.add_column("Materialization")
    table.add_column("Depends on", style="dim")
    for i, stage in enumerate(execution_plan.stages, 1):
        for name in stage:
            model = graph.model(name)
            table.add_row(
                str(i),
                name,
                model.materialization.value,
                ", ".join(graph.dependencies_of(name)),
            )
    console.print(table)


@app.command("compile")
def compile_cmd(
    model: Annotated[str, typer.Argument(help="Model identity (e.g. staging.orders)")],
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Print a model's SQL after macro expansion and ref() rendering."""
    from arnab.engine.transform import materialize_sql

    graph = _load_graph(project_dir)
    if model not in graph:
        console.print(f"[red]Model '{model}' not found.[/red]")
        available = [m.identity for m in graph.models]
        if available:
            console.print(f"[dim]Available: {', '.join(available)}[/dim]")
        raise typer.Exit(1)

    sql = ";\n\n".join(materialize_sql(graph.model(model))) + ";"
    console.print(Syntax(sql, "sql", word_wrap=True))


@app.command()
def viz(
    output: Annotated[Path, typer.Argument(help="Output file (.svg, or .dot/.gv for Graphviz source)")],
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Render the model dependency graph to a file. Nothing is executed."""
    from arnab.engine.visualize import render

    graph = _load_graph(project_dir)
    path = render(graph, output)
    console.print(f"[green]Wrote {len(graph)} models to {path}[/green]")
