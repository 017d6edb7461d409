"""Pytest fixtures for Medic tests."""

import logging
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import structlog

from medic.core.config import MedicConfig
from medic.engine import RecoveryEngine
from medic.modules.catalogue import ModuleRegistry, create_default_registry
from medic.recovery.steps import materialize_module
from tests.helpers import FakeRunner, write_json


@pytest.fixture(autouse=True)
def reset_logging_state() -> Iterator[None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    import medic.cli.helpers as cli_helpers

    cli_helpers.reset_logging_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_logging_state()
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def registry() -> ModuleRegistry:
    return create_default_registry()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace root with valid root configuration and no modules."""
    root = tmp_path / "workspace"
    write_json(
        root / "package.json",
        {
            "name": "workspace",
            "private": True,
            "workspaces": ["packages/*"],
            "scripts": {
                "build": "npm run build --workspaces",
                "test": "npm test --workspaces",
                "lint": "eslint .",
                "type-check": "tsc --build",
            },
        },
    )
    write_json(
        root / "tsconfig.json",
        {
            "compilerOptions": {"paths": {"@workspace/*": ["packages/*/src"]}},
            "references": [{"path": "packages/auth"}],
        },
    )
    (root / "packages").mkdir()
    return root


@pytest.fixture
def healthy_workspace(workspace: Path, registry: ModuleRegistry) -> Path:
    """The workspace with every module materialized from its descriptor."""
    for descriptor in registry.all_descriptors():
        materialize_module(descriptor, workspace / "packages" / descriptor.module_id, "@workspace")
    return workspace


@pytest.fixture
def config(workspace: Path) -> MedicConfig:
    return MedicConfig(
        workspace_path=workspace,
        sync_wait_seconds=5.0,
        cancel_grace_seconds=0.05,
        task_timeout_seconds=30.0,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
async def engine(config: MedicConfig, fake_runner: FakeRunner) -> AsyncIterator[RecoveryEngine]:
    """Engine over the temporary workspace with a recording command runner."""
    eng = RecoveryEngine(config, runner=fake_runner)
    yield eng
    await eng.close()
