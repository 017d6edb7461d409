"""Shared test helpers for Medic tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from medic.engine import RecoveryEngine
from medic.runner import CommandResult
from medic.scheduler.models import PhaseExecution


class FakeRunner:
    """Command runner double.

    Records every ``(command, cwd)`` call and answers with exit status 0
    unless a failing fragment was registered with ``fail()``. ``hold()``
    makes every call block until the returned event is set; ``delay``
    keeps each call in flight for a while so overlap can be observed.
    ``stall()`` makes matching commands never finish on their own.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[tuple[str, Path]] = []
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._exit_codes: dict[str, int] = {}
        self._gate: asyncio.Event | None = None
        self._stalled: set[str] = set()

    def fail(self, fragment: str, exit_code: int = 1) -> None:
        """Make commands containing ``fragment`` exit with ``exit_code``."""
        self._exit_codes[fragment] = exit_code

    def clear_failures(self) -> None:
        self._exit_codes.clear()

    def stall(self, fragment: str) -> None:
        """Block commands containing ``fragment`` until they are cancelled."""
        self._stalled.add(fragment)

    def hold(self) -> asyncio.Event:
        self._gate = asyncio.Event()
        return self._gate

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]

    async def run(self, command: str, cwd: Path) -> CommandResult:
        self.calls.append((command, cwd))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self._gate is not None:
                await self._gate.wait()
            if any(fragment in command for fragment in self._stalled):
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        for fragment, exit_code in self._exit_codes.items():
            if fragment in command:
                return CommandResult(exit_code=exit_code, output=f"{command}: exit {exit_code}")
        return CommandResult(exit_code=0, output=f"{command}: ok")


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


async def wait_for_terminal(
    engine: RecoveryEngine, execution_id: str, timeout: float = 10.0
) -> PhaseExecution:
    """Poll an execution until it leaves ``executing``."""
    async with asyncio.timeout(timeout):
        while True:
            execution = engine.get_execution_status(execution_id)
            if execution.status.is_terminal:
                return execution
            await asyncio.sleep(0.01)


async def wait_until(predicate: Any, timeout: float = 5.0) -> None:
    """Poll ``predicate()`` until it is truthy."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)
