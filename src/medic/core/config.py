"""Configuration models for the Medic engine.

Defines Pydantic v2 models for engine settings: workspace layout, the
toolchain commands the command runner executes, concurrency limits, and the
distinct task/phase/session timeout budgets.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from medic.core import constants
from medic.core.errors import ConfigurationError
from medic.core.logging import LogFormat, LogLevel, get_logger

_logger = get_logger("config")

AnalysisDepth = Literal["basic", "detailed", "comprehensive"]


class CommandConfig(BaseModel):
    """Shell commands executed inside a module directory.

    The engine never hardcodes a toolchain; every external operation goes
    through the injected command runner with one of these strings.
    """

    install: str = Field(
        default="npm install",
        description="Install dependencies in place",
    )
    clean_install: str = Field(
        default="rm -rf node_modules package-lock.json",
        description="Remove installed dependencies and the lockfile before a fresh install",
    )
    type_check: str = Field(
        default="npx tsc --noEmit",
        description="Compile-only check used as the compilation health signal",
    )
    build: str = Field(default="npm run build", description="Build the module")
    test: str = Field(default="npm test", description="Run the module's test suite")

    @field_validator("install", "clean_install", "type_check", "build", "test")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value


class LogConfig(BaseModel):
    """Logging settings applied by the CLI and the server entry point."""

    level: LogLevel = "INFO"
    format: LogFormat = "console"
    file: Path | None = None


class MedicConfig(BaseModel):
    """Top-level engine configuration."""

    workspace_path: Path = Field(
        default_factory=Path.cwd,
        description="Root of the multi-package workspace",
    )
    packages_dir: str = Field(
        default="packages",
        description="Directory (relative to the workspace) holding one folder per module",
    )
    package_scope: str = Field(
        default="@workspace",
        description="npm scope of workspace packages; dependencies under this "
        "scope are treated as workspace-internal edges",
    )
    target_health_score: int = Field(
        default=constants.DEFAULT_TARGET_HEALTH_SCORE,
        ge=0,
        le=100,
        description="Score at which a module is considered recovered",
    )
    default_max_concurrency: int = Field(
        default=constants.DEFAULT_MAX_CONCURRENCY,
        ge=constants.MIN_CONCURRENCY,
        le=constants.MAX_CONCURRENCY,
        description="Concurrent tasks per phase when parallel execution is requested "
        "without an explicit limit",
    )
    task_timeout_seconds: float = Field(
        default=constants.DEFAULT_TASK_TIMEOUT_SECONDS,
        gt=0,
        description="Budget for a single module task (or a single command in a step)",
    )
    phase_timeout_seconds: float = Field(
        default=constants.DEFAULT_PHASE_TIMEOUT_SECONDS,
        gt=0,
        description="Default wall-clock budget for a phase when options omit timeout",
    )
    session_timeout_seconds: float = Field(
        default=constants.DEFAULT_SESSION_TIMEOUT_SECONDS,
        gt=0,
        description="Budget for a whole recovery session",
    )
    sync_wait_seconds: float = Field(
        default=constants.DEFAULT_SYNC_WAIT_SECONDS,
        ge=0,
        description="How long execute_phase waits for a terminal result before "
        "returning an accepted (still executing) record",
    )
    cancel_grace_seconds: float = Field(
        default=constants.DEFAULT_CANCEL_GRACE_SECONDS,
        ge=0,
        description="Time in-flight work gets to observe a cancellation before "
        "the execution task is cancelled outright",
    )
    recovery_assessment_depth: AnalysisDepth = Field(
        default="detailed",
        description="Analysis depth used to score a module before recovering it",
    )
    commands: CommandConfig = Field(default_factory=CommandConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @field_validator("package_scope")
    @classmethod
    def _scope_format(cls, value: str) -> str:
        if not value.startswith("@") or "/" in value:
            raise ValueError("package_scope must look like '@scope'")
        return value

    @property
    def packages_path(self) -> Path:
        """Absolute directory that holds the module folders."""
        return self.workspace_path / self.packages_dir

    def module_path(self, module_id: str) -> Path:
        """Directory of one module."""
        return self.packages_path / module_id


def load_config(config_file: Path | None, workspace: Path | None = None) -> MedicConfig:
    """Load MedicConfig from a YAML file or return defaults.

    Args:
        config_file: YAML file to read. Missing or None yields defaults.
        workspace: Optional workspace override applied after loading.

    Raises:
        ConfigurationError: If the file is unparseable or fails validation.
    """
    data: dict[str, object] = {}
    if config_file is not None and config_file.exists():
        try:
            with open(config_file) as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Cannot parse config file: {e}", config_file=str(config_file)
            ) from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                "Config file must contain a mapping", config_file=str(config_file)
            )
        data = loaded
        _logger.debug("config.loaded", config_file=str(config_file))

    if workspace is not None:
        data["workspace_path"] = workspace

    try:
        return MedicConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid engine configuration",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                for err in e.errors()
            ],
        ) from e


__all__ = [
    "AnalysisDepth",
    "CommandConfig",
    "LogConfig",
    "MedicConfig",
    "load_config",
]
