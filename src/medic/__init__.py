"""Medic - self-healing orchestration for multi-package workspaces.

Assesses the health of the packages ("modules") that make up a workspace and
drives unhealthy ones back to a working state through staged recovery
strategies (repair, rebuild, reset) and a five-phase recovery pipeline.
"""

__version__ = "0.3.0"

from medic.core.config import MedicConfig, load_config
from medic.core.errors import MedicError
from medic.engine import RecoveryEngine

__all__ = [
    "MedicConfig",
    "MedicError",
    "RecoveryEngine",
    "__version__",
    "load_config",
]
