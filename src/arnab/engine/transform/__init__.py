"""SQL transformation engine.

Discovers SQL models, expands macros, builds the dependency graph from
``ref()`` calls, plans execution in stages, and materializes each model as a
table or view.

This package re-exports the public symbols:
    from arnab.engine.transform import load_models, build_graph, plan, execute, ...
"""

from __future__ import annotations

# Data models
from .models import (
    DependencyGraph,
    ExecutionPlan,
    ExecutionResult,
    Materialization,
    ModelResult,
    ModelStatus,
    RunOutcome,
    SQLModel,
    quote_relation,
    relation_for,
)

# Discovery
from .discovery import (
    discover_model_files,
    load_model,
    load_models,
    model_identity,
)

# Graph and planning
from .graph import (
    build_graph,
    find_cycle,
    plan,
)

# Execution
from .execution import (
    execute_model,
    materialize_sql,
)

# Orchestration
from .orchestration import (
    execute,
    load_graph,
    run_pipeline,
)

__all__ = [
    # Models
    "DependencyGraph",
    "ExecutionPlan",
    "ExecutionResult",
    "Materialization",
    "ModelResult",
    "ModelStatus",
    "RunOutcome",
    "SQLModel",
    "quote_relation",
    "relation_for",
    # Discovery
    "discover_model_files",
    "load_model",
    "load_models",
    "model_identity",
    # Graph
    "build_graph",
    "find_cycle",
    "plan",
    # Execution
    "execute",
    "execute_model",
    "materialize_sql",
    "load_graph",
    "run_pipeline",
]
