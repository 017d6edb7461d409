"""Core infrastructure: configuration, constants, errors, and logging."""

from medic.core.config import CommandConfig, LogConfig, MedicConfig, load_config
from medic.core.errors import MedicError
from medic.core.logging import configure_logging, get_logger

__all__ = [
    "CommandConfig",
    "LogConfig",
    "MedicConfig",
    "MedicError",
    "configure_logging",
    "get_logger",
    "load_config",
]
