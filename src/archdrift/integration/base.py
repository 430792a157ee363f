"""
Shared error contract and retry policy for external collaborators.

Every collaborator failure is normalized into an ``AcquisitionError`` carrying a stable
``code`` and a ``retryable`` flag. The job runner retries only retryable errors, with bounded
exponential backoff; everything else is terminal on first occurrence.
"""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeAlias, TypeVar

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]

_T = TypeVar("_T")


class ArchdriftError(RuntimeError):
    """Base class for errors raised by archdrift components."""


class AcquisitionError(ArchdriftError):
    """Normalized collaborator failure with machine-readable fields."""

    def __init__(
        self,
        *,
        source: str,
        code: str,
        detail: str,
        retryable: bool,
        http_status: int | None = None,
    ) -> None:
        self.source = source
        self.code = code
        self.detail = " ".join(detail.split()) or "unknown error"
        self.retryable = retryable
        self.http_status = http_status

        fields: dict[str, object] = {
            "source": source,
            "code": code,
            "retryable": "true" if retryable else "false",
            "http_status": http_status,
            "detail": self.detail,
        }
        super().__init__(" ".join(f"{k}={v}" for k, v in fields.items() if v is not None))


class CheckoutError(AcquisitionError):
    """Repository clone failures."""

    def __init__(self, detail: str, *, code: str = "checkout", retryable: bool = False) -> None:
        super().__init__(source="git", code=code, detail=detail, retryable=retryable)


class ModelFetchError(AcquisitionError):
    """Architecture model download failures."""

    def __init__(
        self,
        detail: str,
        *,
        code: str = "model_fetch",
        retryable: bool = False,
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            source="structurizr",
            code=code,
            detail=detail,
            retryable=retryable,
            http_status=http_status,
        )


class AuthorizationError(AcquisitionError):
    """Missing or rejected credentials. Never retryable."""

    def __init__(self, detail: str, *, source: str, http_status: int | None = None) -> None:
        super().__init__(
            source=source,
            code="auth",
            detail=detail,
            retryable=False,
            http_status=http_status,
        )


class RenderError(AcquisitionError):
    """Report rendering failures."""

    def __init__(
        self,
        detail: str,
        *,
        source: str = "sheets",
        code: str = "render",
        retryable: bool = False,
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            source=source,
            code=code,
            detail=detail,
            retryable=retryable,
            http_status=http_status,
        )


class NotFoundError(RenderError):
    """Raised when an expected remote object is absent. Never defaulted."""

    def __init__(self, detail: str, *, source: str = "sheets") -> None:
        super().__init__(detail, source=source, code="not_found", retryable=False)


class SheetNotFoundError(NotFoundError):
    """Raised when the spreadsheet has no tab for the project."""


def is_retryable_error(error: BaseException) -> bool:
    return isinstance(error, AcquisitionError) and error.retryable


def classify_http_status(status: int) -> tuple[str, bool]:
    """Map an HTTP status onto ``(code, retryable)``."""

    if status in {401, 403}:
        return "auth", False
    if status == 404:
        return "not_found", False
    if status == 429:
        return "rate_limit", True
    if status >= 500:
        return "service", True
    return "invalid_request", False


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy.

    Retry ``n`` (1-based) waits ``initial_delay_seconds * multiplier ** (n - 1)``, capped at
    ``max_delay_seconds``; ``jitter_ratio`` spreads that by up to the same fraction either way.
    """

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    multiplier: float = 2.0
    max_delay_seconds: float = 8.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        problems = {
            "max_attempts must be >= 1": self.max_attempts < 1,
            "initial_delay_seconds must be >= 0": self.initial_delay_seconds < 0,
            "multiplier must be >= 1.0": self.multiplier < 1.0,
            "initial_delay_seconds must be <= max_delay_seconds": (
                self.initial_delay_seconds > self.max_delay_seconds
            ),
            "jitter_ratio must be between 0.0 and 1.0": not 0.0 <= self.jitter_ratio <= 1.0,
        }
        for message, failed in problems.items():
            if failed:
                raise ValueError(message)

    def delay_for(self, retry_number: int, random_fn: RandomFn = random_module.random) -> float:
        if retry_number < 1:
            raise ValueError("retry_number must be > 0")
        delay = min(
            self.initial_delay_seconds * self.multiplier ** (retry_number - 1),
            self.max_delay_seconds,
        )
        if not self.jitter_ratio:
            return delay
        spread = random_fn()
        if not 0.0 <= spread <= 1.0:
            raise ValueError("random_fn must return values in [0.0, 1.0]")
        jittered = delay * (1.0 + self.jitter_ratio * (2.0 * spread - 1.0))
        return min(max(jittered, 0.0), self.max_delay_seconds)


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    return config.delay_for(retry_number, random_fn)


RetryCallback: TypeAlias = Callable[[int, AcquisitionError, float], None]


async def run_with_retries(
    operation: Callable[[], Awaitable[_T]],
    *,
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
) -> _T:
    """Await ``operation`` up to ``backoff.max_attempts`` times.

    Only ``AcquisitionError``s flagged retryable trigger another attempt.
    """

    for attempt in range(1, backoff.max_attempts):
        try:
            return await operation()
        except AcquisitionError as exc:
            if not exc.retryable:
                raise
            pause = backoff.delay_for(attempt, random_fn)
            if on_retry is not None:
                on_retry(attempt, exc, pause)
            await sleep(pause)
    return await operation()


__all__ = [
    "AcquisitionError",
    "ArchdriftError",
    "AuthorizationError",
    "BackoffConfig",
    "CheckoutError",
    "ModelFetchError",
    "NotFoundError",
    "RenderError",
    "SheetNotFoundError",
    "classify_http_status",
    "compute_backoff_delay",
    "is_retryable_error",
    "run_with_retries",
]
