"""Dependency graph construction, cycle detection, and stage planning."""

from __future__ import annotations

import logging

from arnab.engine.errors import CyclicDependency, SchedulingError, UnresolvedReference
from arnab.engine.sql_analysis import extract_table_refs, returns_records, split_statements

from .models import DependencyGraph, ExecutionPlan, SQLModel

logger = logging.getLogger("arnab.transform")


def build_graph(models: list[SQLModel]) -> DependencyGraph:
    """Build the dependency graph of ``models``.

    Models are arranged by identity; each model's ``index`` is set to its
    arena position. An edge is recorded for every ``ref()``.

    Raises:
        UnresolvedReference: a model references an unknown identity.
        CyclicDependency: the references form a cycle.
    """
    ordered = sorted(models, key=lambda m: m.identity)
    index = {m.identity: i for i, m in enumerate(ordered)}
    for i, m in enumerate(ordered):
        m.index = i

    graph = DependencyGraph(
        models=ordered,
        index=index,
        upstream=[[] for _ in ordered],
        downstream=[[] for _ in ordered],
    )
    for i, model in enumerate(ordered):
        for ref in sorted(model.dependencies):
            j = index.get(ref)
            if j is None:
                raise UnresolvedReference(model.identity, ref)
            graph.edges.append((i, j))
            graph.upstream[i].append(j)
            graph.downstream[j].append(i)
    for adj in graph.downstream:
        adj.sort()

    cycle = find_cycle(graph)
    if cycle:
        raise CyclicDependency(cycle)

    _warn_direct_reads(graph)
    logger.debug("Built graph: %d models, %d edges", len(graph), len(graph.edges))
    return graph


def find_cycle(graph: DependencyGraph) -> list[str] | None:
    """Depth-first search for a cycle along "depends-on" edges.

    Returns the cycle as identities starting and ending with the same model,
    or None if the graph is acyclic. Iterative, visiting nodes and edges in
    index order so the reported cycle is deterministic.
    """
    white, grey, black = 0, 1, 2
    color = [white] * len(graph.models)

    for root in range(len(graph.models)):
        if color[root] != white:
            continue
        path = [root]
        cursors = [0]
        color[root] = grey
        while path:
            node = path[-1]
            deps = graph.upstream[node]
            if cursors[-1] < len(deps):
                nxt = deps[cursors[-1]]
                cursors[-1] += 1
                if color[nxt] == grey:
                    start = path.index(nxt)
                    return [graph.models[i].identity for i in path[start:]] + [graph.models[nxt].identity]
                if color[nxt] == white:
                    color[nxt] = grey
                    path.append(nxt)
                    cursors.append(0)
            else:
                color[node] = black
                path.pop()
                cursors.pop()
    return None


def _warn_direct_reads(graph: DependencyGraph) -> None:
    """Warn when a model reads another model's relation without ref()."""
    relations = {m.relation.lower(): m.identity for m in graph.models}
    for model in graph.models:
        for statement in split_statements(model.compiled_text):
            if not returns_records(statement):
                continue
            for table in extract_table_refs(statement):
                owner = relations.get(table)
                if owner and owner != model.identity and owner not in model.dependencies:
                    logger.warning(
                        "Model '%s' reads %s directly; use {{ ref('%s') }} so it runs after '%s'",
                        model.identity, table, owner, owner,
                    )


def plan(graph: DependencyGraph) -> ExecutionPlan:
    """Layer the graph into stages (Kahn's algorithm).

    Each stage holds every model whose dependencies are all in earlier stages,
    sorted by identity.

    Raises:
        SchedulingError: some models never become ready (an undetected cycle).
    """
    in_degree = [len(deps) for deps in graph.upstream]
    ready = [i for i, d in enumerate(in_degree) if d == 0]
    stages: list[list[str]] = []
    placed = 0

    while ready:
        stage = sorted(ready, key=lambda i: graph.models[i].identity)
        stages.append([graph.models[i].identity for i in stage])
        placed += len(stage)
        ready = []
        for i in stage:
            for dependent in graph.downstream[i]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)

    if placed != len(graph.models):
        stuck = sorted(m.identity for i, m in enumerate(graph.models) if in_degree[i] > 0)
        raise SchedulingError(f"Could not schedule models (cycle?): {', '.join(stuck)}")

    logger.debug("Planned %d stage(s)", len(stages))
    return ExecutionPlan(stages=stages, graph=graph)
