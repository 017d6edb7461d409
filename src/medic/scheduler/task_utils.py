"""Helpers for background asyncio tasks started by the scheduler."""

from __future__ import annotations

import asyncio
from typing import Any

from medic.core.logging import MedicLogger


def log_task_exception(
    task: asyncio.Task[Any],
    logger: MedicLogger,
    event: str,
) -> BaseException | None:
    """Done-callback body: report an exception that escaped ``task``.

    A phase execution records its own failures, so anything reaching here
    is a scheduler bug. Cancelled tasks are not reported.

    Returns:
        The escaped exception, or None.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        logger.error(
            event,
            error=str(exc),
            error_type=type(exc).__name__,
            task_name=task.get_name(),
        )
    return exc


__all__ = ["log_task_exception"]
