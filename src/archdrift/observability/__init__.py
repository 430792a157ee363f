"""Public observability primitives: structured logging and the in-process message bus."""

from archdrift.observability.events import DispatchError, Message, MessageBus, Subscriber
from archdrift.observability.logging import (
    LoggingHandle,
    LogRedactor,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    redact_text,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "LogRedactor",
    "LoggingHandle",
    "Message",
    "MessageBus",
    "Subscriber",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact_text",
    "setup_logging",
    "shutdown_logging",
]
