"""DuckDB connection management and the query-engine interface."""

from __future__ import annotations

import logging
import queue
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Protocol

import duckdb

from arnab.engine.errors import EngineError

logger = logging.getLogger("arnab.database")


@dataclass
class QueryMetadata:
    """What the engine reports back for one statement."""

    rows: list[tuple[Any, ...]] = field(default_factory=list)
    duration_ms: int = 0


class QueryEngine(Protocol):
    def execute(self, sql: str) -> QueryMetadata:
        """Run one statement; raise EngineError on failure."""
        ...


def connect(db_path: str | Path, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection to the given path."""
    db_path = str(db_path)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(db_path, read_only=read_only)


def apply_settings(conn: duckdb.DuckDBPyConnection, settings: dict[str, str]) -> None:
    """Apply ``SET key = 'value'`` for each configured DuckDB setting."""
    for key, value in settings.items():
        escaped = str(value).replace("'", "''")
        conn.execute(f"SET {key} = '{escaped}'")


class DuckDBEngine:
    """A QueryEngine backed by a single DuckDB connection."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    def execute(self, sql: str) -> QueryMetadata:
        start = time.perf_counter()
        try:
            cursor = self.conn.execute(sql)
            rows = cursor.fetchall() if cursor.description else []
        except duckdb.Error as e:
            raise EngineError(str(e), sql=sql) from e
        duration_ms = int((time.perf_counter() - start) * 1000)
        return QueryMetadata(rows=rows, duration_ms=duration_ms)

    def close(self) -> None:
        self.conn.close()


class EnginePool:
    """A fixed set of engines handed out one per concurrent submission.

    ``acquire`` blocks until an engine is free, so an engine is never used by
    two threads at once.
    """

    def __init__(self, engines: list[QueryEngine], owner: Any = None) -> None:
        if not engines:
            raise ValueError("EnginePool needs at least one engine")
        self._engines = list(engines)
        self._free: queue.Queue[QueryEngine] = queue.Queue()
        for engine in self._engines:
            self._free.put(engine)
        self._owner = owner
        self._lock = threading.Lock()
        self._closed = False

    @property
    def size(self) -> int:
        return len(self._engines)

    @contextmanager
    def acquire(self) -> Iterator[QueryEngine]:
        engine = self._free.get()
        try:
            yield engine
        finally:
            self._free.put(engine)

    @classmethod
    def for_duckdb(
        cls,
        db_path: str | Path,
        size: int = 4,
        settings: dict[str, str] | None = None,
    ) -> EnginePool:
        """Open ``db_path`` once and give each pooled engine its own cursor."""
        conn = connect(db_path)
        engines: list[QueryEngine] = []
        try:
            apply_settings(conn, settings or {})
            for _ in range(size):
                cursor = conn.cursor()
                apply_settings(cursor, settings or {})
                engines.append(DuckDBEngine(cursor))
        except duckdb.Error:
            conn.close()
            raise
        logger.debug("Opened %s with %d pooled connection(s)", db_path, size)
        return cls(engines, owner=conn)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for engine in self._engines:
            close = getattr(engine, "close", None)
            if close is not None:
                close()
        if self._owner is not None:
            self._owner.close()

    def __enter__(self) -> EnginePool:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
