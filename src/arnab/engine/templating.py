"""Jinja templating for model and macro text.

Templates are parsed with a Jinja environment configured for SQL (no
autoescaping, undefined names are errors). The parsed output is exposed
as a typed token stream:

    PlainText        ordinary SQL, passed through untouched
    ModelReference   {{ ref('staging.orders') }}
    MacroInvocation  {{ cents_to_dollars('amount', scale=2) }}
    Placeholder      {{ column }}  (a macro parameter, inside macro bodies)
    Expression       any other Jinja expression

SQL comments are plain text to Jinja, so templates inside ``--`` comments
are still rendered. Use ``{# ... #}`` to comment out template code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Union

import jinja2
from jinja2 import Environment, StrictUndefined, nodes

from arnab.engine.errors import TemplateSyntaxError
from arnab.engine.utils import line_text

REF_FUNCTION = "ref"


def make_environment() -> Environment:
    """A fresh Jinja environment with the settings models and macros share."""
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


_env = make_environment()


@dataclass(frozen=True)
class Literal:
    """A constant argument (string, number, boolean)."""

    value: Any


@dataclass(frozen=True)
class Name:
    """A bare name argument, resolved against bound macro parameters."""

    value: str


@dataclass(frozen=True)
class Expression:
    """Any other Jinja expression; ``kind`` is the node type."""

    kind: str
    line: int


Arg = Union[Literal, Name, Expression]


@dataclass(frozen=True)
class PlainText:
    text: str
    line: int


@dataclass(frozen=True)
class ModelReference:
    target: Arg
    line: int

    @property
    def identity(self) -> str:
        if not (isinstance(self.target, Literal) and isinstance(self.target.value, str)):
            shown = self.target.value if isinstance(self.target, Name) else self.target
            raise TemplateSyntaxError("ref() needs a quoted model name", f"ref({shown})", self.line)
        return self.target.value


@dataclass(frozen=True)
class MacroInvocation:
    name: str
    args: tuple[Arg, ...]
    kwargs: tuple[tuple[str, Arg], ...]
    line: int


@dataclass(frozen=True)
class Placeholder:
    name: str
    line: int


Token = Union[PlainText, ModelReference, MacroInvocation, Placeholder, Expression]


def to_syntax_error(error: jinja2.TemplateSyntaxError, text: str) -> TemplateSyntaxError:
    """Convert a Jinja parse error into ours, keeping the offending line."""
    return TemplateSyntaxError(error.message or str(error), line_text(text, error.lineno), error.lineno)


def parse(text: str, env: Environment | None = None) -> nodes.Template:
    env = env or _env
    try:
        return env.parse(text)
    except jinja2.TemplateSyntaxError as e:
        raise to_syntax_error(e, text) from e


def _to_arg(node: nodes.Node) -> Arg:
    if isinstance(node, nodes.Const):
        return Literal(node.value)
    if isinstance(node, nodes.Name):
        return Name(node.name)
    return Expression(type(node).__name__, node.lineno)


def _is_reference(node: nodes.Node) -> bool:
    return (
        isinstance(node, nodes.Call)
        and isinstance(node.node, nodes.Name)
        and node.node.name == REF_FUNCTION
    )


def _reference(call: nodes.Call, text: str) -> ModelReference:
    if len(call.args) != 1 or call.kwargs or call.dyn_args or call.dyn_kwargs:
        raise TemplateSyntaxError("ref() takes exactly one model name", line_text(text, call.lineno), call.lineno)
    return ModelReference(_to_arg(call.args[0]), call.lineno)


def _classify(node: nodes.Node, text: str) -> Token:
    if isinstance(node, nodes.TemplateData):
        return PlainText(node.data, node.lineno)
    if _is_reference(node):
        return _reference(node, text)
    if isinstance(node, nodes.Call) and isinstance(node.node, nodes.Name):
        return MacroInvocation(
            node.node.name,
            tuple(_to_arg(a) for a in node.args),
            tuple((kw.key, _to_arg(kw.value)) for kw in node.kwargs),
            node.lineno,
        )
    if isinstance(node, nodes.Name):
        return Placeholder(node.name, node.lineno)
    return Expression(type(node).__name__, node.lineno)


def tokenize(text: str) -> list[Token]:
    """Parse ``text`` and list the tokens of every output statement, in order."""
    tree = parse(text)
    return [_classify(child, text) for output in tree.find_all(nodes.Output) for child in output.nodes]


def render_reference(identity: str) -> str:
    """Canonical source text of a reference to ``identity``."""
    return "{{ " + f"{REF_FUNCTION}({identity!r})" + " }}"


def extract_references(text: str) -> list[str]:
    """Referenced identities in order of first appearance."""
    seen: dict[str, None] = {}
    calls = [c for c in parse(text).find_all(nodes.Call) if _is_reference(c)]
    for call in sorted(calls, key=lambda c: c.lineno):
        seen.setdefault(_reference(call, text).identity, None)
    return list(seen)


def replace_references(text: str, resolve: Callable[[str], str]) -> str:
    """Render ``text`` with ``ref(identity)`` returning ``resolve(identity)``."""
    tree = parse(text)
    try:
        return _env.from_string(tree).render({REF_FUNCTION: resolve})
    except jinja2.TemplateError as e:
        raise TemplateSyntaxError(e.message or str(e)) from e
