"""Pipeline orchestration: stage-by-stage parallel execution and the full run."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

import duckdb
from rich.console import Console

from arnab.config import ProjectConfig
from arnab.engine.database import EnginePool
from arnab.engine.errors import ArnabError, EngineError
from arnab.engine.macros import load_macros
from arnab.engine.utils import format_elapsed

from .discovery import load_models
from .execution import execute_model
from .graph import build_graph, plan
from .models import (
    DependencyGraph,
    ExecutionPlan,
    ExecutionResult,
    ModelResult,
    ModelStatus,
    RunOutcome,
    SQLModel,
    quote_relation,
)

console = Console()
logger = logging.getLogger("arnab.transform")


def _run_one(pool: EnginePool, model: SQLModel) -> ModelResult:
    with pool.acquire() as engine:
        model.status = ModelStatus.RUNNING
        return execute_model(engine, model)


def _create_schemas(plan_: ExecutionPlan, pool: EnginePool) -> dict[str, EngineError]:
    """Create every target schema up front, one at a time.

    Returns schema -> error for schemas that could not be created.
    """
    schemas = sorted({m.schema for m in plan_.graph.models if m.schema})
    errors: dict[str, EngineError] = {}
    with pool.acquire() as engine:
        for schema in schemas:
            try:
                engine.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_relation(schema)}")
            except EngineError as e:
                errors[schema] = e
    return errors


def _skip_dependents(
    graph: DependencyGraph,
    failed: str,
    results: dict[str, ModelResult],
) -> list[str]:
    skipped = []
    for name in sorted(graph.transitive_dependents(failed)):
        model = graph.model(name)
        if model.status != ModelStatus.PENDING:
            continue
        model.status = ModelStatus.SKIPPED
        results[name] = ModelResult(
            identity=name,
            status=ModelStatus.SKIPPED,
            materialization=model.materialization,
        )
        skipped.append(name)
    return skipped


def _report(result: ModelResult, failed_upstream: str | None = None) -> None:
    label = f"[bold]{result.identity}[/bold] ({result.materialization.value})"
    if result.status == ModelStatus.SUCCEEDED:
        elapsed = format_elapsed(result.duration_ms / 1000)
        suffix = f" ({result.row_count:,} rows, {elapsed})" if result.row_count is not None else f" ({elapsed})"
        console.print(f"  [green]done[/green]  {label}{suffix}")
    elif result.status == ModelStatus.FAILED:
        console.print(f"  [red]fail[/red]  {label}: {result.error}")
    elif result.status == ModelStatus.SKIPPED:
        reason = f"upstream failure: {failed_upstream}" if failed_upstream else "upstream failure"
        console.print(f"  [dim]skip[/dim]  {label} ({reason})")


def execute(plan_: ExecutionPlan, pool: EnginePool, max_workers: int | None = None) -> ExecutionResult:
    """Execute a plan stage by stage.

    Models in a stage run concurrently on a thread pool, each on its own engine
    from ``pool``. A stage finishes completely before the next one starts.
    When a model fails, all of its transitive dependents are marked SKIPPED and
    never submitted; unrelated branches keep running.

    Args:
        plan_: Stages from ``plan()``.
        pool: Engines to execute on; its size bounds useful concurrency.
        max_workers: Thread-pool size per stage (default: pool size).

    Returns:
        ExecutionResult with per-model results in plan order.
    """
    graph = plan_.graph
    workers = max(1, min(max_workers or pool.size, pool.size))
    start = time.perf_counter()

    for model in graph.models:
        model.status = ModelStatus.PENDING

    results: dict[str, ModelResult] = {}
    schema_errors = _create_schemas(plan_, pool)
    total_stages = len(plan_.stages)

    for stage_idx, stage in enumerate(plan_.stages, 1):
        runnable = [graph.model(name) for name in stage if graph.model(name).status == ModelStatus.PENDING]
        stage_results: dict[str, ModelResult] = {}

        blocked = [m for m in runnable if m.schema in schema_errors]
        for model in blocked:
            stage_results[model.identity] = ModelResult(
                identity=model.identity,
                status=ModelStatus.FAILED,
                materialization=model.materialization,
                error=schema_errors[model.schema],
            )
        runnable = [m for m in runnable if m.schema not in schema_errors]

        if len(runnable) > 1:
            console.print(f"  [dim]stage {stage_idx}/{total_stages}[/dim] ({len(runnable)} models in parallel)")

        if runnable:
            with ThreadPoolExecutor(max_workers=min(workers, len(runnable))) as executor:
                futures = {executor.submit(_run_one, pool, model): model for model in runnable}
                for future in as_completed(futures):
                    result = future.result()
                    stage_results[result.identity] = result

        # Report in identity order, not completion order
        for name in sorted(stage_results):
            result = stage_results[name]
            graph.model(name).status = result.status
            results[name] = result
            _report(result)
            if result.status == ModelStatus.FAILED:
                logger.error("Model %s failed: %s", name, result.error)
                for skipped in _skip_dependents(graph, name, results):
                    _report(results[skipped], failed_upstream=name)

    ordered = {name: results[name] for name in plan_.order if name in results}
    return ExecutionResult(
        results=ordered,
        outcome=ExecutionResult.outcome_for(ordered),
        duration_ms=int((time.perf_counter() - start) * 1000),
    )


def load_graph(config: ProjectConfig) -> DependencyGraph:
    """Load macros and models for a project and build the dependency graph."""
    registry = load_macros(config.macros_path)
    models = load_models(config.models_path, registry, config.materialization_overrides())
    return build_graph(models)


def _print_errors(result: ExecutionResult) -> None:
    failed = [r for r in result.results.values() if r.status == ModelStatus.FAILED]
    if not failed:
        return
    console.print("\n[bold red]Errors:[/bold red]")
    for r in failed:
        console.print(f"  [bold]{r.identity}[/bold]")
        if r.error is not None and r.error.path is not None:
            console.print(f"    Source path : {r.error.path}")
        console.print(f"    Error       : [red]{r.error}[/red]")


def run_pipeline(config: ProjectConfig) -> ExecutionResult:
    """Discover, plan, and execute every model of a project.

    Structural problems (bad definitions, unknown macros or references, cycles)
    stop the run before anything executes and give an ABORTED result.
    """
    start = time.perf_counter()
    try:
        graph = load_graph(config)
        execution_plan = plan(graph)
    except ArnabError as e:
        logger.error("Run aborted: %s", e)
        console.print(f"[red]Run aborted: {e}[/red]")
        return ExecutionResult(outcome=RunOutcome.ABORTED, error=str(e))

    if not graph.models:
        console.print(f"[yellow]No SQL models found in {config.models_path}[/yellow]")
        return ExecutionResult()

    n = len(graph.models)
    console.print(
        f"Found {n} model{'s' if n != 1 else ''} in {len(execution_plan)} "
        f"stage{'s' if len(execution_plan) != 1 else ''}\n"
    )

    try:
        pool = EnginePool.for_duckdb(config.database_path, size=config.max_workers, settings=config.duckdb_settings)
    except duckdb.Error as e:
        logger.error("Cannot open database %s: %s", config.database_path, e)
        console.print(f"[red]Cannot open database {config.database_path}: {e}[/red]")
        return ExecutionResult(outcome=RunOutcome.ABORTED, error=str(e))

    with pool:
        result = execute(execution_plan, pool, config.max_workers)
    result.duration_ms = int((time.perf_counter() - start) * 1000)

    _print_errors(result)
    console.print(
        f"\n  {result.count(ModelStatus.SUCCEEDED)} succeeded, "
        f"{result.count(ModelStatus.FAILED)} failed, "
        f"{result.count(ModelStatus.SKIPPED)} skipped "
        f"in {format_elapsed(result.duration_ms / 1000)}"
    )
    return result
