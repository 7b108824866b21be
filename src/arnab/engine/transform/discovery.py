"""Model discovery: find SQL files, parse directives, expand macros."""

from __future__ import annotations

import logging
from pathlib import Path

from arnab.engine.errors import InvalidModelDefinition, MacroArgumentError, TemplateSyntaxError
from arnab.engine.macros import MacroRegistry
from arnab.engine.sql_analysis import (
    find_config_directives,
    parse_config_pairs,
    returns_records,
    split_statements,
    strip_config_comments,
)
from arnab.engine.utils import validate_identifier

from .models import Materialization, SQLModel

logger = logging.getLogger("arnab.transform")

CONFIG_KEYS = frozenset({"materialized"})
DEFAULT_SCHEMA = "main"


def model_identity(sql_file: Path, models_dir: Path) -> str:
    """Identity from the path relative to the models root.

    models/orders.sql -> orders
    models/staging/orders.sql -> staging.orders
    """
    rel = sql_file.relative_to(models_dir).with_suffix("")
    for part in rel.parts:
        try:
            validate_identifier(part, "model path component")
        except ValueError as e:
            raise InvalidModelDefinition(sql_file, part, str(e)) from e
    return ".".join(rel.parts)


def parse_materialization(value: str, path: Path, token: str) -> Materialization:
    try:
        return Materialization(value.strip().lower())
    except ValueError:
        if value.strip().lower() == "incremental":
            reason = "incremental materialization is not supported"
        else:
            reason = f"unknown materialization '{value}' (expected table or view)"
        raise InvalidModelDefinition(path, token, reason) from None


def parse_directives(sql: str, path: Path) -> dict[str, str]:
    """Parse ``-- config:`` lines of a model file.

    Raises:
        InvalidModelDefinition: malformed pair, unknown key, or a key set twice
            to different values.
    """
    config: dict[str, str] = {}
    for line, body in find_config_directives(sql):
        try:
            pairs = parse_config_pairs(body)
        except ValueError as e:
            raise InvalidModelDefinition(path, str(e), f"line {line}: expected key=value") from None
        if not pairs:
            raise InvalidModelDefinition(path, "-- config:", f"line {line}: empty directive")
        for key, value in pairs:
            if key not in CONFIG_KEYS:
                raise InvalidModelDefinition(path, f"{key}={value}", f"line {line}: unknown config key '{key}'")
            if key in config and config[key] != value:
                raise InvalidModelDefinition(path, f"{key}={value}", f"line {line}: conflicts with {key}={config[key]}")
            config[key] = value
    return config


def check_statements(model: SQLModel) -> None:
    """A model must hold exactly one statement that returns records."""
    statements = split_statements(model.compiled_text)
    queries = [s for s in statements if returns_records(s)]
    if len(queries) != 1:
        raise InvalidModelDefinition(
            model.source_path,
            model.identity,
            f"models must have exactly one SELECT statement (or equivalent), found {len(queries)}",
        )


def discover_model_files(models_dir: Path) -> list[Path]:
    """All ``*.sql`` files under ``models_dir``, sorted; hidden paths skipped."""
    if not models_dir.exists():
        return []
    return [
        p for p in sorted(models_dir.rglob("*.sql"))
        if p.is_file() and not any(part.startswith(".") for part in p.relative_to(models_dir).parts)
    ]


def load_model(
    sql_file: Path,
    models_dir: Path,
    registry: MacroRegistry,
    overrides: dict[str, str] | None = None,
) -> SQLModel:
    """Read, parse and expand a single model file."""
    identity = model_identity(sql_file, models_dir)
    raw_text = sql_file.read_text()
    config = parse_directives(raw_text, sql_file)

    if "materialized" in config:
        materialization = parse_materialization(
            config["materialized"], sql_file, f"materialized={config['materialized']}"
        )
    elif overrides and identity in overrides:
        materialization = parse_materialization(
            overrides[identity], sql_file, f"models.{identity}.materialized={overrides[identity]}"
        )
    else:
        materialization = Materialization.TABLE

    try:
        expanded = registry.expand(strip_config_comments(raw_text), origin=identity)
    except TemplateSyntaxError as e:
        raise InvalidModelDefinition(sql_file, e.token, e.message) from e
    except MacroArgumentError as e:
        raise InvalidModelDefinition(sql_file, e.token, str(e)) from e

    model = SQLModel(
        identity=identity,
        source_path=sql_file,
        raw_text=raw_text,
        expanded_text=expanded,
        materialization=materialization,
    )
    check_statements(model)
    return model


def _relation_key(relation: str) -> str:
    """Case-folded relation with the default schema made explicit."""
    relation = relation.lower()
    return relation if "." in relation else f"{DEFAULT_SCHEMA}.{relation}"


def load_models(
    models_dir: Path,
    registry: MacroRegistry | None = None,
    overrides: dict[str, str] | None = None,
) -> list[SQLModel]:
    """Discover and load every model under ``models_dir``.

    Models are returned sorted by identity, with ``index`` set to their
    position. Any malformed model aborts the whole load.

    Args:
        models_dir: Root of the models tree.
        registry: Macros available to models (empty if None).
        overrides: identity -> materialization from the project config; used
            only when the file has no ``-- config:`` directive.
    """
    registry = registry if registry is not None else MacroRegistry()
    models = [
        load_model(path, models_dir, registry, overrides)
        for path in discover_model_files(models_dir)
    ]
    models.sort(key=lambda m: m.identity)

    relations: dict[str, SQLModel] = {}
    for i, model in enumerate(models):
        model.index = i
        key = _relation_key(model.relation)
        clash = relations.get(key)
        if clash is not None:
            raise InvalidModelDefinition(
                model.source_path,
                model.identity,
                f"targets the same relation {model.relation} as {clash.identity}",
            )
        relations[key] = model

    if overrides:
        for name in sorted(set(overrides) - {m.identity for m in models}):
            logger.warning("Config sets materialization for unknown model '%s'", name)

    logger.info("Found %d model(s) in %s", len(models), models_dir)
    return models
