"""Data classes for the SQL transformation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from pathlib import Path

from arnab.engine.errors import EngineError
from arnab.engine.templating import extract_references, replace_references


class Materialization(str, Enum):
    TABLE = "table"
    VIEW = "view"


class ModelStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (ModelStatus.SUCCEEDED, ModelStatus.FAILED, ModelStatus.SKIPPED)


class RunOutcome(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    ABORTED = "aborted"


def relation_for(identity: str) -> str:
    """Target object for a model identity.

    ``orders`` -> ``orders``; ``staging.orders`` -> ``staging.orders``;
    ``a.b.c`` -> ``a_b.c`` (nested folders are joined into one schema).
    """
    *folders, name = identity.split(".")
    if not folders:
        return name
    return f"{'_'.join(folders)}.{name}"


def quote_relation(relation: str) -> str:
    """Double-quote each part of a relation: ``staging.orders`` -> ``"staging"."orders"``."""
    return ".".join('"' + part.replace('"', '""') + '"' for part in relation.split("."))


@dataclass
class SQLModel:
    """A single SQL transformation model."""

    identity: str  # e.g. "staging.orders"
    source_path: Path
    raw_text: str  # file content as read
    expanded_text: str  # macros expanded, config comments removed, refs kept
    materialization: Materialization = Materialization.TABLE
    index: int = -1  # arena position, assigned at load time
    status: ModelStatus = ModelStatus.PENDING

    @property
    def relation(self) -> str:
        return relation_for(self.identity)

    @property
    def quoted_relation(self) -> str:
        return quote_relation(self.relation)

    @property
    def schema(self) -> str | None:
        if "." in self.relation:
            return self.relation.split(".", 1)[0]
        return None

    @cached_property
    def dependencies(self) -> frozenset[str]:
        return frozenset(extract_references(self.expanded_text))

    @cached_property
    def compiled_text(self) -> str:
        """Executable SQL: every reference rendered as the target relation."""
        return replace_references(self.expanded_text, lambda identity: quote_relation(relation_for(identity)))


@dataclass
class ModelResult:
    """Outcome of a single model in a run."""

    identity: str
    status: ModelStatus
    materialization: Materialization
    duration_ms: int = 0
    row_count: int | None = None  # tables only
    error: EngineError | None = None


@dataclass
class ExecutionResult:
    """Per-model results in plan order plus the aggregate outcome."""

    results: dict[str, ModelResult] = field(default_factory=dict)
    outcome: RunOutcome = RunOutcome.ALL_SUCCEEDED
    duration_ms: int = 0
    error: str | None = None  # structural error when ABORTED

    def count(self, status: ModelStatus) -> int:
        return sum(1 for r in self.results.values() if r.status == status)

    @property
    def statuses(self) -> dict[str, ModelStatus]:
        return {name: r.status for name, r in self.results.items()}

    @property
    def ok(self) -> bool:
        return self.outcome == RunOutcome.ALL_SUCCEEDED

    @staticmethod
    def outcome_for(results: dict[str, ModelResult]) -> RunOutcome:
        if all(r.status == ModelStatus.SUCCEEDED for r in results.values()):
            return RunOutcome.ALL_SUCCEEDED
        return RunOutcome.PARTIAL


@dataclass
class DependencyGraph:
    """Arena of models with "depends-on" edges as index pairs.

    ``edges`` holds ``(dependent, dependency)`` pairs; ``upstream[i]`` lists the
    models ``i`` depends on and ``downstream[i]`` the models depending on ``i``.
    """

    models: list[SQLModel]
    index: dict[str, int]
    edges: list[tuple[int, int]] = field(default_factory=list)
    upstream: list[list[int]] = field(default_factory=list)
    downstream: list[list[int]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.models)

    def __contains__(self, identity: str) -> bool:
        return identity in self.index

    def model(self, identity: str) -> SQLModel:
        return self.models[self.index[identity]]

    def dependencies_of(self, identity: str) -> list[str]:
        return sorted(self.models[j].identity for j in self.upstream[self.index[identity]])

    def dependents_of(self, identity: str) -> list[str]:
        return sorted(self.models[j].identity for j in self.downstream[self.index[identity]])

    def transitive_dependents(self, identity: str) -> set[str]:
        """Every model reachable downstream of ``identity`` (excluding itself)."""
        seen: set[int] = set()
        stack = list(self.downstream[self.index[identity]])
        while stack:
            i = stack.pop()
            if i in seen:
                continue
            seen.add(i)
            stack.extend(self.downstream[i])
        return {self.models[i].identity for i in seen}


@dataclass
class ExecutionPlan:
    """Stages of model identities; stage *i* only depends on stages before it."""

    stages: list[list[str]]
    graph: DependencyGraph

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    @property
    def order(self) -> list[str]:
        """Flattened execution (and reporting) order."""
        return [name for stage in self.stages for name in stage]

    def stage_of(self, identity: str) -> int:
        for i, stage in enumerate(self.stages):
            if identity in stage:
                return i
        raise KeyError(identity)
