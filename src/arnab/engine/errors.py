"""Exception hierarchy for the arnab engine.

Structural errors (bad definitions, unresolved references, cycles) abort a run
before anything executes. ``EngineError`` is carried per model.
"""

from __future__ import annotations

from pathlib import Path


class ArnabError(Exception):
    """Base class for all arnab errors."""


class ConfigError(ArnabError):
    """Project configuration is missing or invalid."""


class TemplateSyntaxError(ArnabError):
    """A template could not be parsed or rendered."""

    def __init__(self, message: str, token: str = "", line: int | None = None) -> None:
        self.message = message
        self.token = token
        self.line = line
        where = f" (line {line})" if line is not None else ""
        detail = f": {token}" if token else ""
        super().__init__(f"{message}{where}{detail}")


class InvalidModelDefinition(ArnabError):
    """A model file is malformed."""

    def __init__(self, path: Path | str, token: str, reason: str = "") -> None:
        self.path = Path(path)
        self.token = token
        self.reason = reason
        msg = f"Invalid model definition in {self.path}: {token!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidMacroDefinition(ArnabError):
    """A macro file contains a malformed ``{% macro %}`` block."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid macro definition in {self.path}: {reason}")


class DuplicateMacro(ArnabError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Macro '{name}' is already defined")


class UnknownMacro(ArnabError):
    def __init__(self, name: str, origin: str | None = None, line: int | None = None, token: str = "") -> None:
        self.name = name
        self.origin = origin
        self.line = line
        self.token = token
        where = f" in model '{origin}'" if origin else ""
        if line is not None:
            where += f" (line {line}: {token})"
        super().__init__(f"Unknown macro '{name}'{where}")


class MacroArgumentError(ArnabError):
    """Arguments of a macro invocation do not match its parameter list."""

    def __init__(self, name: str, reason: str, token: str = "") -> None:
        self.name = name
        self.reason = reason
        self.token = token
        super().__init__(f"Bad arguments for macro '{name}': {reason}")


class MacroRecursionLimit(ArnabError):
    def __init__(self, chain: list[str], limit: int, origin: str | None = None) -> None:
        self.chain = chain
        self.limit = limit
        self.origin = origin
        where = f" in model '{origin}'" if origin else ""
        tail = " -> ".join(chain[-5:])
        super().__init__(f"Macro expansion exceeded depth {limit}{where}: ... -> {tail}")


class UnresolvedReference(ArnabError):
    def __init__(self, model: str, reference: str) -> None:
        self.model = model
        self.reference = reference
        super().__init__(f"Model '{model}' references unknown model '{reference}'")


class CyclicDependency(ArnabError):
    """The dependency graph contains a cycle.

    ``cycle`` starts and ends with the same identity; each element depends on
    the next one.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__("Cyclic dependency: " + " -> ".join(cycle))


class SchedulingError(ArnabError):
    """Internal invariant violation while planning execution."""


class EngineError(ArnabError):
    """The query engine rejected a statement."""

    def __init__(self, message: str, sql: str = "", path: Path | str | None = None) -> None:
        self.message = message
        self.sql = sql
        self.path = Path(path) if path is not None else None
        super().__init__(message)
