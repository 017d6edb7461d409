# medic/cli/commands: Command modules for the Medic CLI.
#
# Each module in this package provides one or more CLI commands.

from .analyze import analyze, validate_config
from .phases import phases, run_phase
from .recover import recover
from .serve import serve

__all__ = [
    # analyze.py
    "analyze",
    "validate_config",
    # phases.py
    "phases",
    "run_phase",
    # recover.py
    "recover",
    # serve.py
    "serve",
]
