"""Command runner used for every external toolchain operation.

The engine never shells out directly: the analyzer and the recovery
scripts call an injected ``CommandRunner`` with one of the command strings
from ``MedicConfig.commands``. ``SubprocessRunner`` is the production
implementation; tests substitute a fake that records commands.

Callers bound each call with ``asyncio.wait_for``. When the awaiting task is
cancelled (timeout or cancellation), ``SubprocessRunner`` kills the child
process before propagating the cancellation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from medic.core.constants import COMMAND_OUTPUT_TRUNCATE_CHARS
from medic.core.logging import get_logger

_logger = get_logger("runner")


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined output of one command."""

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def summary(self, limit: int = COMMAND_OUTPUT_TRUNCATE_CHARS) -> str:
        """Output truncated to ``limit`` characters."""
        if len(self.output) <= limit:
            return self.output
        return self.output[:limit] + f"\n... ({len(self.output)} chars total)"


@runtime_checkable
class CommandRunner(Protocol):
    """Capability to run a shell command inside a directory."""

    async def run(self, command: str, cwd: Path) -> CommandResult:
        """Run ``command`` with ``cwd`` as working directory."""
        ...


class SubprocessRunner:
    """Runs commands through ``/bin/sh -c`` with asyncio subprocesses."""

    async def run(self, command: str, cwd: Path) -> CommandResult:
        _logger.debug("runner.command_started", command=command, cwd=str(cwd))
        try:
            proc = await asyncio.create_subprocess_exec(
                "/bin/sh", "-c", command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            _logger.warning("runner.spawn_failed", command=command, error=str(e))
            return CommandResult(exit_code=127, output=str(e))

        try:
            stdout_bytes, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            _logger.warning("runner.command_killed", command=command, cwd=str(cwd))
            raise

        output = (stdout_bytes or b"").decode("utf-8", errors="replace")
        exit_code = proc.returncode or 0
        _logger.debug(
            "runner.command_finished",
            command=command,
            exit_code=exit_code,
            output_chars=len(output),
        )
        return CommandResult(exit_code=exit_code, output=output)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
]
