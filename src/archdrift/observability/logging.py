"""
Per-run JSON-lines logging behind a queue.

Components log through ``structlog.get_logger(__name__)`` in event-name + key/value style.
``setup_logging`` routes structlog into the stdlib ``archdrift`` logger, whose only handler
puts records on a queue; a ``QueueListener`` thread writes them to
``<log_dir>/<run_id>/archdrift.jsonl`` and, optionally, stderr. Correlation fields bound
with ``correlation_scope`` are read when the record is queued, on the emitting thread, so
they survive ``asyncio.to_thread`` hops.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import json
import logging
import logging.handlers
import queue
import re
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONValue = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

LOGGER_NAME: Final[str] = "archdrift"
LOG_FILENAME: Final[str] = "archdrift.jsonl"
REDACTED: Final[str] = "***REDACTED***"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "apikey",
    "api_key",
    "authorization",
    "credential",
)
_TEXT_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|secret|authorization)(\s*[:=]\s*)[^\s,;]+"),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"(?i)\bbasic\s+[A-Za-z0-9+/]+=*"), f"Basic {REDACTED}"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"), REDACTED),
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@"), rf"\1{REDACTED}@"),
)

# Attributes every LogRecord has; anything else on a record came in through ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "correlation"}

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "archdrift_log_correlation", default=()
)

_active_lock = threading.Lock()
_active: LoggingHandle | None = None


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block. ``None`` unbinds."""

    merged = dict(_CORRELATION.get())
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    token = _CORRELATION.set(tuple(merged.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


def redact_text(text: str) -> str:
    for pattern, replacement in _TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def default_log_redactor(value: JSONValue, *, key: str | None = None) -> JSONValue:
    """Mask values under secret-looking keys and credential-shaped substrings.

    Keys ending in ``_env`` hold environment variable names, not secrets.
    """

    if key is not None and not key.lower().endswith("_env"):
        if any(term in key.lower() for term in _SENSITIVE_KEY_TERMS):
            return REDACTED
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {name: default_log_redactor(item, key=name) for name, item in value.items()}
    return value


def _no_redaction(value: JSONValue) -> JSONValue:
    return value


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    return str(value)


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Flatten the record for the listener thread and stamp the caller's correlation."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        prepared = copy.copy(record)
        prepared.msg = record.getMessage()
        prepared.args = None
        if record.exc_info:
            prepared.exc_text = logging.Formatter().formatException(record.exc_info)
            prepared.exc_info = None
        prepared.correlation = get_correlation_context()
        return prepared


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": self._redactor(record.getMessage()),
            "run_id": self._run_id,
        }
        entry.update(getattr(record, "correlation", {}))
        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if extras:
            entry["fields"] = self._redactor(extras)
        if record.exc_text:
            entry["exception"] = self._redactor(record.exc_text)
        return json.dumps(entry, sort_keys=True, ensure_ascii=False)


class LoggingHandle:
    """The running queue listener of one CLI invocation."""

    def __init__(
        self,
        *,
        log_path: Path,
        logger: logging.Logger,
        queue_handler: logging.Handler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.log_path = log_path
        self._logger = logger
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """Drain the queue, then close every sink. Safe to call twice."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._listener.stop()
            self._logger.removeHandler(self._queue_handler)
            for sink in self._sinks:
                sink.close()


def configure_structlog() -> None:
    """Hand structlog events to stdlib logging: the event name as message, the rest as extra."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> LoggingHandle:
    """Start logging for one run from an ``[observability]`` config section.

    A handle that is already running is shut down first.
    """

    global _active
    cfg = dict(observability_config or {})
    level_name = str(cfg.get("log_level", "INFO")).strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {level_name!r}")
    if not run_id.strip():
        raise ValueError("run_id must not be empty")

    shutdown_logging()

    run_dir = Path(log_dir if log_dir is not None else str(cfg.get("log_dir", "logs"))) / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_dir / LOG_FILENAME
    redactor = default_log_redactor if cfg.get("redact_secrets", True) else _no_redaction
    formatter = _JsonLineFormatter(run_id=run_id, redactor=redactor)

    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if cfg.get("log_to_stdout", True):
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    records: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = _CorrelatingQueueHandler(records)
    listener = logging.handlers.QueueListener(records, *sinks)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = LoggingHandle(
        log_path=log_path,
        logger=logger,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
    return handle


def get_active_logging_handle() -> LoggingHandle | None:
    with _active_lock:
        return _active


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    global _active
    with _active_lock:
        target = handle or _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


atexit.register(shutdown_logging)


__all__ = [
    "JSONValue",
    "LOGGER_NAME",
    "LogRedactor",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact_text",
    "setup_logging",
    "shutdown_logging",
]
