"""Macro registry: named, parameterized SQL fragments expanded at load time.

Macro files live in the macros directory and hold one or more Jinja macros::

    {% macro cents_to_dollars(column, scale=2) %}
        round({{ column }} / 100.0, {{ scale }})
    {% endmacro %}

Models invoke them with ``{{ cents_to_dollars('amount') }}``. Every macro is
registered as a global of the registry's Jinja environment, so macros can
call each other (and themselves) regardless of the file they live in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jinja2
from jinja2 import Environment, meta, nodes

from arnab.engine.errors import (
    DuplicateMacro,
    InvalidMacroDefinition,
    MacroArgumentError,
    MacroRecursionLimit,
    TemplateSyntaxError,
    UnknownMacro,
)
from arnab.engine.templating import REF_FUNCTION, make_environment, parse, render_reference
from arnab.engine.utils import line_text, validate_identifier

logger = logging.getLogger("arnab.macros")

MAX_MACRO_DEPTH = 32

# compiled macros are renamed so calls by the real name go through env.globals
_COMPILED_NAME = "definition"


@dataclass(frozen=True)
class MacroParameter:
    name: str
    default: Any = None
    required: bool = True


@dataclass(frozen=True)
class Macro:
    """A registered macro. Calling it renders the body with the given arguments."""

    name: str
    parameters: tuple[MacroParameter, ...]
    source_path: Path | None = None
    calls: dict[str, int] = field(default_factory=dict, compare=False)
    compiled: Any = field(default=None, repr=False, compare=False)
    registry: MacroRegistry | None = field(default=None, repr=False, compare=False)

    def _token(self, args: tuple, kwargs: dict) -> str:
        shown = [repr(a) for a in args] + [f"{k}={v!r}" for k, v in kwargs.items()]
        return f"{self.name}({', '.join(shown)})"

    def check_arguments(self, args: tuple, kwargs: dict) -> None:
        """Raise MacroArgumentError unless the arguments bind to the parameters."""
        token = self._token(args, kwargs)
        if len(args) > len(self.parameters):
            raise MacroArgumentError(
                self.name,
                f"takes {len(self.parameters)} argument(s) but {len(args)} were given",
                token,
            )
        positional = {p.name for p in self.parameters[:len(args)]}
        names = {p.name for p in self.parameters}
        for key in kwargs:
            if key not in names:
                raise MacroArgumentError(self.name, f"unexpected keyword argument '{key}'", token)
            if key in positional:
                raise MacroArgumentError(self.name, f"got multiple values for '{key}'", token)
        for p in self.parameters[len(args):]:
            if p.required and p.name not in kwargs:
                raise MacroArgumentError(self.name, f"missing required argument '{p.name}'", token)

    def __call__(self, *args: Any, **kwargs: Any) -> str:
        registry = self.registry
        chain = registry._chain
        if len(chain) >= registry.max_depth:
            raise MacroRecursionLimit(chain + [self.name], registry.max_depth, registry._origin)
        self.check_arguments(args, kwargs)
        for callee in self.calls:
            if callee not in registry.env.globals:
                raise UnknownMacro(callee, registry._origin, None, f"{callee}(...) in macro '{self.name}'")

        chain.append(self.name)
        try:
            rendered = self.compiled(*args, **kwargs)
        except TypeError as e:
            if str(e).startswith(f"macro '{_COMPILED_NAME}'"):
                raise MacroArgumentError(self.name, str(e), self._token(args, kwargs)) from e
            raise
        finally:
            chain.pop()
        return str(rendered).strip()


def _emit_reference(*args: Any, **kwargs: Any) -> str:
    if len(args) != 1 or kwargs or not isinstance(args[0], str):
        raise TemplateSyntaxError("ref() takes exactly one model name", f"ref({', '.join(map(repr, args))})")
    return render_reference(args[0])


@dataclass
class MacroRegistry:
    """Macros by name. Names are unique; redefinition is an error."""

    macros: dict[str, Macro] = field(default_factory=dict)
    max_depth: int = MAX_MACRO_DEPTH
    env: Environment = field(default_factory=make_environment, repr=False)
    _chain: list[str] = field(default_factory=list, init=False, repr=False)
    _origin: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        # references survive expansion as canonical ref() text
        self.env.globals[REF_FUNCTION] = _emit_reference

    def __contains__(self, name: str) -> bool:
        return name in self.macros

    def __len__(self) -> int:
        return len(self.macros)

    def define(
        self,
        name: str,
        parameters: list[str | tuple[str, Any]] | tuple = (),
        body: str = "",
        source_path: Path | None = None,
    ) -> Macro:
        """Register a macro from its parts.

        ``parameters`` items are either a name or a ``(name, default)`` pair.
        """
        if name in self.macros:
            raise DuplicateMacro(name)
        validate_identifier(name, "macro name")
        signature = []
        for p in parameters:
            pname, default = (p, None) if isinstance(p, str) else p
            validate_identifier(pname, f"parameter of macro '{name}'")
            signature.append(pname if isinstance(p, str) else f"{pname}={default!r}")

        source = "{% macro " + f"{name}({', '.join(signature)})" + " %}" + body + "{% endmacro %}"
        try:
            tree = self.env.parse(source)
        except jinja2.TemplateSyntaxError as e:
            raise ValueError(f"macro '{name}': {e.message}") from e
        (node,) = tree.body
        return self.define_node(node, source_path)

    def define_node(self, node: nodes.Macro, source_path: Path | None = None) -> Macro:
        """Register a parsed ``{% macro %}`` block."""
        name = node.name
        if name in self.macros:
            raise DuplicateMacro(name)
        validate_identifier(name, "macro name")
        if name == REF_FUNCTION:
            raise ValueError(f"'{REF_FUNCTION}' is reserved for model references")

        names = [arg.name for arg in node.args]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate parameter name in macro '{name}'")
        first_default = len(names) - len(node.defaults)
        params = []
        for i, pname in enumerate(names):
            if i < first_default:
                params.append(MacroParameter(pname))
                continue
            default = node.defaults[i - first_default]
            if not isinstance(default, nodes.Const):
                raise ValueError(f"Parameter '{pname}' of macro '{name}' needs a literal default")
            params.append(MacroParameter(pname, default.value, required=False))

        node.name = _COMPILED_NAME
        template = nodes.Template([node], lineno=node.lineno)
        template.set_environment(self.env)
        undeclared = meta.find_undeclared_variables(template)
        calls = {
            c.node.name: c.lineno
            for c in template.find_all(nodes.Call)
            if isinstance(c.node, nodes.Name) and c.node.name in undeclared
        }
        module = self.env.from_string(template).make_module(self.env.globals, shared=True)

        macro = Macro(name, tuple(params), source_path, calls, getattr(module, _COMPILED_NAME), self)
        self.macros[name] = macro
        self.env.globals[name] = macro
        logger.debug("Defined macro %s(%s)", name, ", ".join(names))
        return macro

    def get(self, name: str) -> Macro | None:
        return self.macros.get(name)

    def expand(self, text: str, origin: str | None = None) -> str:
        """Expand every macro invocation in ``text``, recursively.

        References are kept (as canonical ``{{ ref('...') }}`` text) for the
        graph builder. ``origin`` names the model being expanded, for
        diagnostics.

        Raises:
            UnknownMacro: an invocation names an undefined macro.
            MacroArgumentError: arguments don't fit the macro's parameters.
            MacroRecursionLimit: nesting exceeds ``max_depth``.
            TemplateSyntaxError: malformed template or undefined name.
        """
        tree = parse(text, self.env)
        self._check_names(tree, text, origin)

        self._chain = []
        self._origin = origin
        try:
            return self.env.from_string(tree).render()
        except jinja2.TemplateError as e:
            raise TemplateSyntaxError(e.message or str(e)) from e
        except TypeError as e:
            raise TemplateSyntaxError(str(e)) from e

    def _check_names(self, tree: nodes.Template, text: str, origin: str | None) -> None:
        undeclared = meta.find_undeclared_variables(tree)
        if not undeclared:
            return
        call_targets = {id(c.node) for c in tree.find_all(nodes.Call)}
        names = [n for n in tree.find_all(nodes.Name) if n.name in undeclared]
        first = min(names, key=lambda n: n.lineno, default=None)
        if first is None:
            raise TemplateSyntaxError(f"'{sorted(undeclared)[0]}' is undefined")
        if id(first) in call_targets:
            raise UnknownMacro(first.name, origin, first.lineno, line_text(text, first.lineno))
        raise TemplateSyntaxError(f"'{first.name}' is undefined", line_text(text, first.lineno), first.lineno)


def parse_macro_file(path: Path, registry: MacroRegistry) -> list[Macro]:
    """Define every top-level ``{% macro %}`` block of ``path`` in ``registry``."""
    text = path.read_text()
    try:
        tree = registry.env.parse(text, path.stem, str(path))
    except jinja2.TemplateSyntaxError as e:
        raise InvalidMacroDefinition(path, f"line {e.lineno}: {e.message}") from e

    defined = []
    for node in tree.body:
        if not isinstance(node, nodes.Macro):
            continue
        try:
            defined.append(registry.define_node(node, path))
        except ValueError as e:
            raise InvalidMacroDefinition(path, str(e)) from e
    return defined


def load_macros(macros_dir: Path | None, registry: MacroRegistry | None = None) -> MacroRegistry:
    """Load all macro files (``*.sql``, recursively) from ``macros_dir``.

    A missing directory gives an empty registry.
    """
    registry = registry if registry is not None else MacroRegistry()
    if macros_dir is None or not macros_dir.exists():
        return registry

    for path in sorted(macros_dir.rglob("*.sql")):
        if any(part.startswith(".") for part in path.relative_to(macros_dir).parts):
            continue
        parse_macro_file(path, registry)

    logger.info("Loaded %d macro(s) from %s", len(registry), macros_dir)
    return registry
