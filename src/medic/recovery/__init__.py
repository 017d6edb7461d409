"""Recovery strategy dispatch: repair, rebuild and reset of single modules."""

from medic.recovery.dispatcher import RecoveryDispatcher, create_default_dispatcher, parse_strategy
from medic.recovery.script import DescriptorRecoveryScript, ModuleRecoveryScript, RecoveryContext

__all__ = [
    "DescriptorRecoveryScript",
    "ModuleRecoveryScript",
    "RecoveryContext",
    "RecoveryDispatcher",
    "create_default_dispatcher",
    "parse_strategy",
]
