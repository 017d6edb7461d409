"""Structured logging for Medic, built on structlog.

Every log line is an event name plus key/value fields. Events use dotted
names (``scheduler.phase_started``, ``recovery.step_failed``) and loggers
are bound to a component. While an ExecutionContext is active, its
execution_id / module_id / phase_id are merged into every event logged
from that asyncio task.

Usage:
    configure_logging(level="DEBUG", format="json")
    log = get_logger("scheduler")
    with with_context(ExecutionContext(execution_id="exec-phase3-1a2b3c", phase_id=3)):
        log.info("scheduler.task_started", module_id="auth")
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console", "both"]

REDACTED = "[REDACTED]"

# Substrings of field names whose values are never written out
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})


# ─── Execution context ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecutionContext:
    """Correlation fields shared by every event of one execution.

    ``execution_id`` is a phase execution id or a single-module recovery id.
    """

    execution_id: str
    module_id: str | None = None
    phase_id: int | None = None
    component: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


_active_context: ContextVar[ExecutionContext | None] = ContextVar(
    "medic_execution_context", default=None
)


def get_current_context() -> ExecutionContext | None:
    return _active_context.get()


@contextmanager
def with_context(ctx: ExecutionContext) -> Iterator[ExecutionContext]:
    """Make ``ctx`` the active context until the block exits.

    The previous context is restored afterwards, so blocks nest. Each
    asyncio task works on its own copy of the context variable.
    """
    token = _active_context.set(ctx)
    try:
        yield ctx
    finally:
        _active_context.reset(token)


# ─── Processors ────────────────────────────────────────────────────────


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in SENSITIVE_PATTERNS)


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if _is_sensitive(str(k)) else _redact(v) for k, v in value.items()
        }
    return value


def redact_sensitive_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace the values of credential-like fields, including nested mappings."""
    return {
        key: REDACTED if _is_sensitive(key) else _redact(value)
        for key, value in event_dict.items()
    }


def merge_execution_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Fill in fields from the active ExecutionContext. Explicit fields win."""
    ctx = _active_context.get()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


def add_utc_timestamp(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


# ─── Logger ────────────────────────────────────────────────────────────


class MedicLogger:
    """Logger bound to a component name.

    The structlog logger is looked up on every call, so loggers created at
    import time pick up whatever configure_logging() installed later.
    """

    def __init__(self, component: str, **bound: Any) -> None:
        self.component = component
        self._bound: dict[str, Any] = {"component": component, **bound}

    def bind(self, **fields: Any) -> MedicLogger:
        merged = {**self._bound, **fields}
        merged.pop("component")
        return MedicLogger(self.component, **merged)

    def _emit(self, method: str, event: str, fields: dict[str, Any]) -> None:
        target = structlog.get_logger().bind(**self._bound)
        getattr(target, method)(event, **fields)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit("debug", event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit("info", event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit("warning", event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit("error", event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._emit("exception", event, fields)


def get_logger(component: str, **bound: Any) -> MedicLogger:
    return MedicLogger(component, **bound)


# ─── Configuration ─────────────────────────────────────────────────────


def _make_handlers(
    level: int,
    format: LogFormat,  # noqa: A002
    file_path: Path | None,
    max_file_size_mb: int,
    backup_count: int,
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )
    elif format == "json":
        # JSON without a file goes to stdout so it can be piped
        handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
    include_timestamps: bool = True,
) -> None:
    """Install Medic's structlog pipeline on the root logger.

    Args:
        level: Minimum level written.
        format: ``console`` renders for humans on stderr, ``json`` renders one
            JSON object per line (to ``file_path`` if given, else stdout),
            ``both`` writes the console rendering to stderr and ``file_path``.
        file_path: Rotating log file.
        max_file_size_mb: Rotation threshold of the log file.
        backup_count: Rotated files kept.
        include_timestamps: Add an ISO8601 UTC ``timestamp`` field.

    Raises:
        ValueError: If ``format`` is ``both`` and no ``file_path`` is given.
    """
    if format == "both" and file_path is None:
        raise ValueError("format='both' needs a file_path")

    numeric_level = logging.getLevelName(level)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in _make_handlers(numeric_level, format, file_path, max_file_size_mb, backup_count):
        root.addHandler(handler)
    root.setLevel(numeric_level)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        redact_sensitive_fields,
        merge_execution_context,
    ]
    if include_timestamps:
        processors.append(add_utc_timestamp)
    processors += [
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
        if format == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # no caching: loggers created at import time must see this configuration
        cache_logger_on_first_use=False,
    )


__all__ = [
    "ExecutionContext",
    "LogFormat",
    "LogLevel",
    "MedicLogger",
    "REDACTED",
    "SENSITIVE_PATTERNS",
    "add_utc_timestamp",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "merge_execution_context",
    "redact_sensitive_fields",
    "with_context",
]
