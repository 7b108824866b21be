"""Ad-hoc SQL script runner.

Executes SQL script files verbatim against the project database, outside the
model graph (setup scripts, seed loading, grants). A failing script is
reported and the remaining scripts still run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from arnab.engine.database import QueryEngine
from arnab.engine.errors import EngineError
from arnab.engine.sql_analysis import split_statements
from arnab.engine.utils import format_elapsed

console = Console()
logger = logging.getLogger("arnab.runner")


@dataclass
class ScriptResult:
    path: Path
    status: str  # "ok", "error", "missing"
    duration_ms: int = 0
    statements: int = 0
    error: str | None = None


def run_script(engine: QueryEngine, script_path: Path) -> ScriptResult:
    """Run every statement of one script, stopping at the first failure."""
    if not script_path.is_file():
        console.print(f"  [yellow]Cannot open {script_path}, skipping[/yellow]")
        return ScriptResult(script_path, "missing", error="file not found")

    start = time.perf_counter()
    statements = split_statements(script_path.read_text())
    executed = 0
    try:
        for statement in statements:
            engine.execute(statement)
            executed += 1
    except EngineError as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.error("Script %s failed: %s", script_path, e)
        console.print(f"  [red]ERROR[/red]  {script_path}: {e}")
        return ScriptResult(script_path, "error", duration_ms, executed, str(e))

    duration_ms = int((time.perf_counter() - start) * 1000)
    console.print(
        f"  [green]OK[/green]     {script_path} "
        f"[dim]({executed} statement{'s' if executed != 1 else ''}, {format_elapsed(duration_ms / 1000)})[/dim]"
    )
    return ScriptResult(script_path, "ok", duration_ms, executed)


def run_scripts(engine: QueryEngine, script_paths: list[Path]) -> list[ScriptResult]:
    """Run scripts in the given order; failures do not stop later scripts."""
    return [run_script(engine, Path(p)) for p in script_paths]
