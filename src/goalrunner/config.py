"""YAML configuration for the goal runner."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .attempts import resolve_attempt_sequence
from .errors import GoalRunnerError
from .http import DEFAULT_BASE_URL

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "EngineConfig",
    "apply_environment_overrides",
    "default_config_data",
    "load_config",
    "write_config",
]

DEFAULT_CONFIG_NAME = "goalrunner.yaml"

ENV_API_URL = "GOALRUNNER_API_URL"
ENV_ALLOW_EMPTY_STAGE = "GOALRUNNER_ALLOW_EMPTY_STAGE"
ENV_DISABLE_SCOPE_REFLECTION = "GOALRUNNER_DISABLE_SCOPE_REFLECTION"

_TRUE_VALUES = {"1", "true", "yes", "on"}

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "api": {
        "base_url": DEFAULT_BASE_URL,
        "timeout": 60,
    },
    "llm": {
        "max_tokens": 4000,
        "temperature": 0,
        "timeout": 120,
        "max_attempts": 3,
    },
    "attempts": {
        "tests": [1, 2],
        "implementation": [1, 2],
    },
    "pipeline": {
        "allow_empty_stage": False,
        "enable_scope_reflection": True,
        "force_implementation": False,
        "process_parent_goals": False,
        "pause_poll_interval": 0.5,
        "max_tree_paths": 400,
    },
    "paths": {
        "logs": "data/logs",
    },
}


class ConfigError(GoalRunnerError):
    """Raised when the configuration file is missing or invalid."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ApiConfig(_Section):
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 60.0


class LLMConfig(_Section):
    max_tokens: int = 4000
    temperature: float = 0.0
    timeout: float = 120.0
    max_attempts: int = 3


AttemptSetting = Union[int, str, List[Any], None]


class AttemptsConfig(_Section):
    """Attempt budgets per stage, normalised to ascending positive sequences."""

    tests: AttemptSetting = Field(default_factory=lambda: [1, 2])
    implementation: AttemptSetting = Field(default_factory=lambda: [1, 2])

    @field_validator("tests", "implementation", mode="after")
    @classmethod
    def _normalise(cls, value: Any) -> List[int]:
        return list(resolve_attempt_sequence(value))


class PipelineConfig(_Section):
    allow_empty_stage: bool = False
    enable_scope_reflection: bool = True
    force_implementation: bool = False
    process_parent_goals: bool = False
    pause_poll_interval: float = Field(default=0.5, gt=0)
    max_tree_paths: int = Field(default=400, ge=0)


class PathsConfig(_Section):
    logs: Optional[Path] = None


class EngineConfig(_Section):
    """Validated runtime configuration."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    attempts: AttemptsConfig = Field(default_factory=AttemptsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Optional[Path] = None) -> "EngineConfig":
        try:
            config = cls.model_validate(dict(data))
        except ValidationError as error:
            raise ConfigError(f"Invalid configuration: {error}") from error
        if base_dir is not None and config.paths.logs is not None and not config.paths.logs.is_absolute():
            config.paths.logs = (base_dir / config.paths.logs).resolve()
        return config


def default_config_data() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def _env_flag(value: Optional[str]) -> Optional[bool]:
    if value is None or not value.strip():
        return None
    return value.strip().lower() in _TRUE_VALUES


def apply_environment_overrides(
    config: EngineConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """Overlay the ``GOALRUNNER_*`` switches onto ``config``."""
    env = os.environ if environ is None else environ

    api_url = env.get(ENV_API_URL)
    if api_url and api_url.strip():
        config.api.base_url = api_url.strip()

    allow_empty = _env_flag(env.get(ENV_ALLOW_EMPTY_STAGE))
    if allow_empty is not None:
        config.pipeline.allow_empty_stage = allow_empty

    disable_reflection = _env_flag(env.get(ENV_DISABLE_SCOPE_REFLECTION))
    if disable_reflection:
        config.pipeline.enable_scope_reflection = False
    return config


def load_config(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """Load ``config_path`` (defaults apply when it is ``None``) and overlay the environment."""
    if config_path is None:
        return apply_environment_overrides(EngineConfig(), environ)

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    config = EngineConfig.from_mapping(data, base_dir=path.parent)
    return apply_environment_overrides(config, environ)
