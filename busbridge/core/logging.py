# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across sender, receiver, provisioner
# CREATED: 19 OCT 2026
# ============================================================================
"""
Structured Logging

JSON or human-readable log output with contextual fields (entity,
subscription, lock token) attached to every record.

Context lives in a contextvars stack, so each receiver pump worker task
carries its own fields even though they share one thread.

Usage:
    from busbridge.core.logging import get_logger, log_context

    logger = get_logger("busbridge.receiver")

    with log_context(entity="orders", lock_token="abc"):
        logger.info("Delivering message")
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    FACTORY = "factory"
    PROVISIONER = "provisioner"
    SENDER = "sender"
    RECEIVER = "receiver"
    TRANSPORT = "transport"


@dataclass
class LogContext:
    """Context fields attached to log records."""
    entity: Optional[str] = None
    subscription: Optional[str] = None
    lock_token: Optional[str] = None
    delivery_count: Optional[int] = None
    worker: Optional[int] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


_context_stack: ContextVar[Tuple[LogContext, ...]] = ContextVar(
    "busbridge_log_context", default=()
)


def get_current_context() -> LogContext:
    """Get current logging context."""
    stack = _context_stack.get()
    if stack:
        return stack[-1]
    return LogContext()


@contextmanager
def log_context(**kwargs):
    """
    Context manager for adding logging context.

    Example:
        with log_context(entity="orders", worker=2):
            logger.info("Pulling message")
    """
    parent = get_current_context()
    new_context = LogContext(
        entity=kwargs.get("entity", parent.entity),
        subscription=kwargs.get("subscription", parent.subscription),
        lock_token=kwargs.get("lock_token", parent.lock_token),
        delivery_count=kwargs.get("delivery_count", parent.delivery_count),
        worker=kwargs.get("worker", parent.worker),
        component=kwargs.get("component", parent.component),
        operation=kwargs.get("operation", parent.operation),
        extra={**parent.extra, **kwargs.get("extra", {})},
    )

    token = _context_stack.set(_context_stack.get() + (new_context,))
    try:
        yield new_context
    finally:
        _context_stack.reset(token)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for log aggregators."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_context:
            context_dict = get_current_context().to_dict()
            if context_dict:
                log_data["context"] = context_dict

        if hasattr(record, "extra") and record.extra:
            log_data["data"] = record.extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = []
        if context.entity:
            context_parts.append(f"entity={context.entity}")
        if context.subscription:
            context_parts.append(f"sub={context.subscription}")
        if context.worker is not None:
            context_parts.append(f"worker={context.worker}")
        if context.lock_token:
            context_parts.append(f"lock={context.lock_token}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        result = f"{timestamp} {level} {record.name}{context_str}: {record.getMessage()}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that copies the current context into each record.

    Precedence, lowest first: adapter fields (component), log_context()
    fields, then the call's own extra=.
    """

    def process(self, msg, kwargs):
        extra: Dict[str, Any] = {}
        for key, value in (self.extra or {}).items():
            if value is not None:
                extra[key] = value.value if isinstance(value, Enum) else value
        extra.update(get_current_context().to_dict())
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = {"extra": extra}
        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """Get a context-aware logger."""
    return ContextLogger(logging.getLogger(name), {"component": component})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure root logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format (also enabled by LOG_FORMAT=json)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter(include_context=True)
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # The AMQP stack is very chatty at INFO
    logging.getLogger("azure").setLevel(max(level, logging.WARNING))
    logging.getLogger("uamqp").setLevel(max(level, logging.WARNING))


__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
]
