"""Model execution: wrap the model query in its materialization and submit it."""

from __future__ import annotations

import logging
import time

from arnab.engine.database import QueryEngine
from arnab.engine.errors import EngineError
from arnab.engine.sql_analysis import returns_records, split_statements

from .models import Materialization, ModelResult, ModelStatus, SQLModel

logger = logging.getLogger("arnab.transform")


def materialize_sql(model: SQLModel) -> list[str]:
    """Statements that materialize ``model``.

    Statements other than the query run verbatim, in order; the query is
    wrapped in ``CREATE OR REPLACE TABLE|VIEW <relation> AS (...)`` so re-runs
    are idempotent.
    """
    kind = "TABLE" if model.materialization == Materialization.TABLE else "VIEW"
    statements = []
    for statement in split_statements(model.compiled_text):
        if returns_records(statement):
            statements.append(f"CREATE OR REPLACE {kind} {model.quoted_relation} AS (\n{statement}\n)")
        else:
            statements.append(statement)
    return statements


def execute_model(engine: QueryEngine, model: SQLModel) -> ModelResult:
    """Execute a single model. Engine failures are returned as a FAILED result."""
    start = time.perf_counter()
    row_count = None
    try:
        for statement in materialize_sql(model):
            engine.execute(statement)
        if model.materialization == Materialization.TABLE:
            meta = engine.execute(f"SELECT count(*) FROM {model.quoted_relation}")
            row_count = meta.rows[0][0] if meta.rows else 0
    except EngineError as e:
        e.path = model.source_path
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.debug("Model %s failed: %s", model.identity, e)
        return ModelResult(
            identity=model.identity,
            status=ModelStatus.FAILED,
            materialization=model.materialization,
            duration_ms=duration_ms,
            error=e,
        )

    duration_ms = int((time.perf_counter() - start) * 1000)
    return ModelResult(
        identity=model.identity,
        status=ModelStatus.SUCCEEDED,
        materialization=model.materialization,
        duration_ms=duration_ms,
        row_count=row_count,
    )
