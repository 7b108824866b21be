"""Project configuration: config.yaml parsing and defaults."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from arnab.engine.errors import ConfigError

CONFIG_FILE = "config.yaml"


class ModelOverride(BaseModel):
    """Per-model settings declared in config.yaml under ``models:``."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    # "materialize" is accepted for compatibility with older configs
    materialized: str | None = Field(default=None, alias="materialize")


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    db_path: str
    models_dir: str = Field(default="models", alias="model_path")
    macros_dir: str = Field(default="macros", alias="macro_path")
    max_workers: int = 4
    duckdb_settings: dict[str, str] = Field(default_factory=dict)
    models: dict[str, ModelOverride] = Field(default_factory=dict)
    project_dir: Path = Field(default_factory=Path.cwd)

    @field_validator("max_workers")
    @classmethod
    def _positive_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_workers must be at least 1")
        return value

    @field_validator("duckdb_settings", mode="before")
    @classmethod
    def _stringify_settings(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @property
    def models_path(self) -> Path:
        return self._resolve(self.models_dir)

    @property
    def macros_path(self) -> Path:
        return self._resolve(self.macros_dir)

    @property
    def database_path(self) -> str:
        """Database location; ``:memory:`` is passed through untouched."""
        if self.db_path == ":memory:":
            return self.db_path
        return str(self._resolve(self.db_path))

    def materialization_overrides(self) -> dict[str, str]:
        return {name: m.materialized for name, m in self.models.items() if m.materialized}

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.project_dir / path


def _expand_env_vars(value: Any) -> Any:
    """Expand ${ENV_VAR} references in string values."""
    if isinstance(value, str):
        return re.sub(
            r"\$\{(\w+)\}",
            lambda m: os.environ.get(m.group(1), m.group(0)),
            value,
        )
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    return value


def load_project(project_dir: Path | None = None) -> ProjectConfig:
    """Load config.yaml from the given directory (or cwd).

    Raises:
        ConfigError: the file is missing, is not a YAML mapping, or fails validation.
    """
    project_dir = Path(project_dir) if project_dir else Path.cwd()
    config_path = project_dir / CONFIG_FILE

    if not config_path.exists():
        raise ConfigError(f"Config file ({CONFIG_FILE}) not found in {project_dir}")

    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    raw = _expand_env_vars(raw)
    models_raw = raw.get("models") or {}
    if not isinstance(models_raw, dict):
        raise ConfigError(f"Invalid {CONFIG_FILE}: models must be a mapping of model name to settings")
    raw["models"] = {name: info or {} for name, info in models_raw.items()}
    raw["duckdb_settings"] = raw.get("duckdb_settings") or {}
    raw["project_dir"] = project_dir

    try:
        return ProjectConfig(**raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid {CONFIG_FILE}: {errors}") from e
