"""
Job lifecycle: one reconciliation per request, from delivery to terminal status event.

A job takes the per-project lock, fetches the model locators, clones the repository,
runs the reconciliation in a worker thread and renders the report. Retryable acquisition
failures are retried with bounded backoff. Whatever happens, the checkout is removed and
exactly one ``JobStatusEvent`` is published on the status channel.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TypeVar

import structlog

from archdrift.constants import (
    DEFAULT_GIT_HOST,
    DEFAULT_IGNORED_DIRS,
    JOB_REQUEST_CHANNEL,
    JOB_STATUS_CHANNEL,
)
from archdrift.domain.models import (
    GitHubSource,
    JobRequest,
    JobRequestError,
    JobState,
    JobStatusEvent,
    StructurizrSource,
)
from archdrift.integration.base import AcquisitionError, BackoffConfig, run_with_retries
from archdrift.integration.git_checkout import Checkout, GitCheckout
from archdrift.jobs.rendering import RenderFn
from archdrift.observability.events import Message, MessageBus
from archdrift.observability.logging import correlation_scope, redact_text
from archdrift.persistence.graph_store import ProjectGraphStore
from archdrift.reconciliation.classifier import ReconciliationResult, reconcile
from archdrift.reconciliation.report import build_report
from archdrift.utils.concurrency import CancellationToken, KeyedLock

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


class ModelSource(Protocol):
    def fetch_locators(self, source: StructurizrSource) -> list[str]: ...


class StaticLocators:
    """Model source backed by a fixed locator list (``archdrift run --locators``)."""

    def __init__(self, locators: Sequence[str]) -> None:
        self._locators = [item.strip() for item in locators if item.strip()]

    @classmethod
    def from_file(cls, path: str | Path) -> StaticLocators:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
        return cls([line for line in lines if not line.lstrip().startswith("#")])

    def fetch_locators(self, source: StructurizrSource) -> list[str]:
        return list(self._locators)


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Terminal event plus the reconciliation result when the run got that far."""

    event: JobStatusEvent
    result: ReconciliationResult | None = None


def new_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:12]}"


class _AttemptCounter:
    __slots__ = ("total",)

    def __init__(self) -> None:
        self.total = 1

    def on_retry(self, attempt: int, error: AcquisitionError, delay_seconds: float) -> None:
        self.total += 1
        logger.warning(
            "acquisition_retry_scheduled",
            attempt=attempt,
            source=error.source,
            code=error.code,
            delay_seconds=round(delay_seconds, 3),
        )


class JobRunner:
    """Run reconciliation jobs; one at a time per project, concurrently across projects."""

    def __init__(
        self,
        *,
        store: ProjectGraphStore,
        checkout: GitCheckout,
        model_source: ModelSource,
        renderer: RenderFn | None = None,
        bus: MessageBus | None = None,
        backoff: BackoffConfig | None = None,
        locks: KeyedLock | None = None,
        host: str = DEFAULT_GIT_HOST,
        ignore_dirs: tuple[str, ...] = DEFAULT_IGNORED_DIRS,
    ) -> None:
        self._store = store
        self._checkout = checkout
        self._model_source = model_source
        self._renderer = renderer
        self._bus = bus
        self._backoff = backoff or BackoffConfig()
        self._locks = locks or KeyedLock()
        self._host = host
        self._ignore_dirs = ignore_dirs
        self._subscription: int | None = None

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def close(self) -> None:
        close = getattr(self._model_source, "close", None)
        if callable(close):
            close()

    def attach(self, bus: MessageBus) -> int:
        """Consume job requests from ``bus`` and publish statuses back onto it."""

        self._bus = bus
        self._subscription = bus.subscribe(JOB_REQUEST_CHANNEL, self.handle_message)
        return self._subscription

    def detach(self) -> None:
        if self._bus is not None and self._subscription is not None:
            self._bus.unsubscribe(self._subscription)
        self._subscription = None

    async def handle_message(self, message: Message) -> JobStatusEvent:
        outcome = await self.submit(message.payload)
        return outcome.event

    async def submit(
        self,
        payload: Mapping[str, object] | JobRequest,
        *,
        job_id: str | None = None,
        cancel_token: CancellationToken | None = None,
        local_checkout: str | Path | None = None,
    ) -> JobOutcome:
        """Parse ``payload`` and run it. Malformed requests still produce a failed event."""

        resolved_job_id = job_id or new_job_id()
        if isinstance(payload, JobRequest):
            request = payload
        else:
            try:
                request = JobRequest.from_dict(payload)
            except JobRequestError as exc:
                project = payload.get("projectName")
                event = JobStatusEvent(
                    job_id=resolved_job_id,
                    project=project if isinstance(project, str) else "",
                    status=JobState.FAILED,
                    error_kind=type(exc).__name__,
                    error=redact_text(str(exc)),
                )
                logger.error("job_request_rejected", job_id=resolved_job_id, error=event.error)
                await self._publish(event)
                return JobOutcome(event=event)

        return await self.run(
            request,
            job_id=resolved_job_id,
            cancel_token=cancel_token,
            local_checkout=local_checkout,
        )

    async def run(
        self,
        request: JobRequest,
        *,
        job_id: str | None = None,
        cancel_token: CancellationToken | None = None,
        local_checkout: str | Path | None = None,
    ) -> JobOutcome:
        resolved_job_id = job_id or new_job_id()
        token = cancel_token or CancellationToken()
        project = request.project_name

        with correlation_scope(job_id=resolved_job_id, project=project):
            async with self._locks.hold(project):
                outcome, external_cancel = await self._run_locked(
                    request,
                    job_id=resolved_job_id,
                    token=token,
                    local_checkout=local_checkout,
                )
            await self._publish(outcome.event)
        if external_cancel:
            raise asyncio.CancelledError
        return outcome

    async def _run_locked(
        self,
        request: JobRequest,
        *,
        job_id: str,
        token: CancellationToken,
        local_checkout: str | Path | None,
    ) -> tuple[JobOutcome, bool]:
        project = request.project_name
        attempts = _AttemptCounter()
        checkout: Checkout | None = None
        owns_checkout = local_checkout is None
        result: ReconciliationResult | None = None
        external_cancel = False
        logger.info("job_started", repository=request.github.repository)

        try:
            locators = await run_with_retries(
                lambda: _in_worker_thread(
                    token, self._model_source.fetch_locators, request.structurizr
                ),
                backoff=self._backoff,
                on_retry=attempts.on_retry,
            )
            token.raise_if_cancelled()

            if local_checkout is None:
                checkout = await run_with_retries(
                    lambda: _in_worker_thread(
                        token,
                        self._checkout.clone,
                        request.github,
                        job_id=job_id,
                        discard=self._checkout.remove,
                    ),
                    backoff=self._backoff,
                    on_retry=attempts.on_retry,
                )
            else:
                checkout = _local_checkout(local_checkout, request.github)
            token.raise_if_cancelled()

            result = await _in_worker_thread(
                token,
                reconcile,
                self._store,
                project,
                checkout_parent=checkout.parent,
                repository=request.github.repository,
                organization=request.github.organization,
                branch=request.github.branch,
                locators=locators,
                excluded_paths=request.excluded_paths,
                host=self._host,
                ignore_dirs=self._ignore_dirs,
                cancel_token=token,
            )
            token.raise_if_cancelled()

            location = await self._render(result, attempts, token)
            event = JobStatusEvent(
                job_id=job_id,
                project=project,
                status=JobState.SUCCEEDED,
                node_count=result.node_count,
                counts=result.counts(),
                unmatched_locators=result.unmatched_locators,
                unmatched_exclusions=result.unmatched_exclusions,
                report_location=location,
                attempts=attempts.total,
            )
            logger.info(
                "job_succeeded",
                node_count=result.node_count,
                counts=event.counts,
                report_location=location,
            )
        except asyncio.CancelledError:
            task = asyncio.current_task()
            external_cancel = task is not None and task.cancelling() > 0
            event = JobStatusEvent(
                job_id=job_id,
                project=project,
                status=JobState.CANCELLED,
                error_kind="CancelledError",
                attempts=attempts.total,
            )
            logger.warning("job_cancelled", external=external_cancel)
        except Exception as exc:  # noqa: BLE001
            event = JobStatusEvent(
                job_id=job_id,
                project=project,
                status=JobState.FAILED,
                error_kind=type(exc).__name__,
                error=redact_text(str(exc)),
                attempts=attempts.total,
            )
            logger.error(
                "job_failed",
                error_kind=event.error_kind,
                retryable=isinstance(exc, AcquisitionError) and exc.retryable,
                exc_info=True,
            )
        finally:
            if checkout is not None and owns_checkout:
                self._checkout.remove(checkout)

        return JobOutcome(event=event, result=result), external_cancel

    async def _render(
        self,
        result: ReconciliationResult,
        attempts: _AttemptCounter,
        token: CancellationToken,
    ) -> str | None:
        renderer = self._renderer
        if renderer is None:
            return None
        report = build_report(result.nodes, title=result.project)
        return await run_with_retries(
            lambda: _in_worker_thread(token, renderer, report, result),
            backoff=self._backoff,
            on_retry=attempts.on_retry,
        )

    async def _publish(self, event: JobStatusEvent) -> None:
        if self._bus is None:
            return
        payload: dict[str, Any] = dict(event.to_dict())
        await self._bus.publish_async(JOB_STATUS_CHANNEL, payload)


async def _in_worker_thread(
    token: CancellationToken,
    func: Callable[..., _T],
    /,
    *args: Any,
    discard: Callable[[_T], object] | None = None,
    **kwargs: Any,
) -> _T:
    """Run ``func`` in a worker thread that outlives task cancellation.

    When the awaiting task is cancelled, ``token`` is cancelled and the thread is awaited
    before ``CancelledError`` propagates, so cleanup and lock release never race it. A
    result that arrives after cancellation is handed to ``discard``.
    """

    future = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        token.cancel()
        while not future.done():
            try:
                await asyncio.wait((future,))
            except asyncio.CancelledError:
                continue
        if discard is not None and not future.cancelled() and future.exception() is None:
            discard(future.result())
        raise


def _local_checkout(path: str | Path, source: GitHubSource) -> Checkout:
    resolved = Path(path).expanduser().resolve()
    if not resolved.is_dir():
        raise JobRequestError(f"checkout path is not a directory: {resolved}")
    if resolved.name != source.repository:
        raise JobRequestError(
            f"checkout folder {resolved.name!r} does not match repository {source.repository!r}"
        )
    return Checkout(parent=resolved.parent, repository=source.repository, branch=source.branch)


__all__ = [
    "JobOutcome",
    "JobRunner",
    "ModelSource",
    "StaticLocators",
    "new_job_id",
]
