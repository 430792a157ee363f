"""In-process message bus: channel-addressed publish/subscribe with a bounded history."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
from collections import deque
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final, cast

import structlog

Subscriber = Callable[["Message"], object]

logger = structlog.get_logger(__name__)

_DEFAULT_ERROR_BUFFER: Final[int] = 1024
_MESSAGE_IDS = itertools.count(1)


@dataclass(frozen=True, slots=True)
class Message:
    """One delivery on a channel. ``payload`` is a JSON-compatible mapping."""

    channel: str
    payload: Mapping[str, object]
    message_id: int = field(default_factory=lambda: next(_MESSAGE_IDS))
    published_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting publishers."""

    channel: str
    message_id: int
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    channel: str | None
    callback: Subscriber


class MessageBus:
    """Sync and async subscribers per channel; ``None`` subscribes to every channel."""

    def __init__(self, *, buffer_size: int = 512) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._buffer = deque[Message](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    def subscribe(self, channel: str | None, callback: Subscriber) -> int:
        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = _normalize_channel(channel) if channel is not None else None
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(
                token=token, channel=normalized, callback=callback
            )
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, channel: str, payload: Mapping[str, object]) -> tuple[DispatchError, ...]:
        """Publish from synchronous code.

        Async subscribers are scheduled on the running loop when there is one (await
        ``drain_async`` to wait for them) and run to completion otherwise.
        """

        message = self._record(channel, payload)
        running_loop = _current_running_loop()
        errors: list[DispatchError] = []
        for subscription in self._matching(message):
            error = self._invoke(subscription.callback, message, running_loop)
            if error is not None:
                errors.append(error)
        return self._remember(errors)

    async def publish_async(
        self, channel: str, payload: Mapping[str, object]
    ) -> tuple[DispatchError, ...]:
        """Publish from async code and await every async subscriber in order."""

        message = self._record(channel, payload)
        errors: list[DispatchError] = []
        for subscription in self._matching(message):
            try:
                result = subscription.callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(message, subscription.callback, exc))
        return self._remember(errors)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await async subscriber tasks scheduled by synchronous ``publish``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        with self._lock:
            return tuple(self._dispatch_errors)

    def history(self, channel: str | None = None) -> tuple[Message, ...]:
        """Buffered messages in publish order, optionally for one channel."""

        with self._lock:
            messages = tuple(self._buffer)
        if channel is None:
            return messages
        normalized = _normalize_channel(channel)
        return tuple(message for message in messages if message.channel == normalized)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def _record(self, channel: str, payload: Mapping[str, object]) -> Message:
        if not isinstance(payload, Mapping):
            raise ValueError(f"payload must be a mapping, got {type(payload).__name__}")
        message = Message(channel=_normalize_channel(channel), payload=dict(payload))
        with self._lock:
            self._buffer.append(message)
        return message

    def _matching(self, message: Message) -> tuple[_Subscription, ...]:
        with self._lock:
            subscriptions = tuple(self._subscriptions.values())
        return tuple(
            item for item in subscriptions if item.channel in (None, message.channel)
        )

    def _remember(self, errors: list[DispatchError]) -> tuple[DispatchError, ...]:
        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
            for error in errors:
                logger.warning(
                    "bus_dispatch_failed",
                    channel=error.channel,
                    target=error.target,
                    error_type=error.error_type,
                    error=error.message,
                )
        return tuple(errors)

    def _invoke(
        self,
        callback: Subscriber,
        message: Message,
        running_loop: asyncio.AbstractEventLoop | None,
    ) -> DispatchError | None:
        try:
            result = callback(message)
            if not inspect.iscoroutine(result):
                return None
            coroutine = cast("Coroutine[Any, Any, None]", result)
            if running_loop is None:
                asyncio.run(coroutine)
                return None
            task = running_loop.create_task(coroutine)
            with self._lock:
                self._pending_async_tasks.add(task)
            task.add_done_callback(
                lambda done: self._on_task_done(done, message=message, callback=callback)
            )
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(message, callback, exc)

    def _on_task_done(
        self, task: asyncio.Task[None], *, message: Message, callback: Subscriber
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            self._remember([_dispatch_error(message, callback, exc)])


def _normalize_channel(channel: str) -> str:
    if not isinstance(channel, str):
        raise ValueError(f"channel must be a string, got {type(channel).__name__}")
    normalized = channel.strip()
    if not normalized.startswith("/"):
        raise ValueError(f"channel must start with '/': {channel!r}")
    return normalized


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _dispatch_error(message: Message, callback: object, exc: Exception) -> DispatchError:
    return DispatchError(
        channel=message.channel,
        message_id=message.message_id,
        target=_callback_name(callback),
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = ["DispatchError", "Message", "MessageBus", "Subscriber"]
