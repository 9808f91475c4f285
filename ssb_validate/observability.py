"""
Validator Observability

Structured logging for the validation engine. Every log event carries the
component that emitted it and, for batch operations, the operation name and
duration. Output is one JSON object per line (or plain text, see
``observability.log_format``).

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Validator Code                        │
    │  logger.debug("rejected", index=i)  @timed_operation     │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                    ValidatorLogger                       │
    │        component tagging, structured context             │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │            StructuredHandler / text Formatter            │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 The ssb-validate Authors. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from ssb_validate.config import get_config


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(Enum):
    """Engine components for categorization."""
    CHAIN = "chain"
    BATCH = "batch"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    component: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                component=getattr(record, "component", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = getattr(record, "context", {})
        if context:
            base += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return base


def _make_handler(log_format: str, stream: Any = None) -> logging.Handler:
    if log_format == "text":
        handler: logging.Handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(_TextFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        return handler
    return StructuredHandler(stream)


class ValidatorLogger:
    """
    Structured logger for engine components.

    Tags every event with its component and passes keyword
    arguments through as structured context.
    """

    def __init__(
        self,
        name: str,
        component: Component,
        level: Optional[LogLevel] = None,
        stream: Any = None,
    ):
        self.name = name
        self.component = component
        self._logger = logging.getLogger(f"ssb_validate.{component.value}.{name}")
        self._logger.propagate = False
        # An explicit level is fixed; otherwise level and format follow the
        # live configuration.
        self._fixed_level = level
        self._stream = stream
        self._format: Optional[str] = None

        for h in list(self._logger.handlers):
            self._logger.removeHandler(h)
        self._sync()

    def _sync(self) -> None:
        """Apply the configured level and format if they changed."""
        obs = get_config().observability
        level = self._fixed_level or LogLevel(obs.log_level.get())
        self._logger.setLevel(getattr(logging, level.value.upper()))

        log_format = obs.log_format.get()
        if log_format != self._format:
            for h in list(self._logger.handlers):
                self._logger.removeHandler(h)
            self._logger.addHandler(_make_handler(log_format, self._stream))
            self._format = log_format

    def is_enabled_for(self, level: LogLevel) -> bool:
        self._sync()
        return self._logger.isEnabledFor(getattr(logging, level.value.upper()))

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        """Internal log method."""
        self._sync()
        extra = {
            "component": self.component.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        status = "completed" if success else "failed"
        self._log(
            logging.INFO,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def get_logger(name: str, component: Component) -> ValidatorLogger:
    """Get a logger for an engine component."""
    return ValidatorLogger(name, component)


T = TypeVar("T")


def timed_operation(
    logger: ValidatorLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations.

    A result exposing ``is_valid`` is logged as failed when it is not valid.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                result = func(*args, **kwargs)
                success = bool(getattr(result, "is_valid", True))
                return result
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, round(duration_ms, 3), success)
        return wrapper
    return decorator
