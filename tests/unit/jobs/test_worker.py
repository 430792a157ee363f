"""
archdrift unit tests for the job runner

Purpose
- Validate the job lifecycle end to end with a fake checkout and a static model source.

What this test file should cover
- One terminal status event per job: succeeded, failed, cancelled and rejected payloads.
- Checkout cleanup on success and failure; local checkouts are never removed.
- Retry accounting for retryable acquisition failures.
- Per-project serialization and bus-driven request handling.
"""

from __future__ import annotations

import asyncio
import shutil
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from archdrift.constants import JOB_REQUEST_CHANNEL, JOB_STATUS_CHANNEL
from archdrift.domain.models import GitHubSource, JobState, StructurizrSource
from archdrift.integration.base import BackoffConfig, CheckoutError, ModelFetchError, RenderError
from archdrift.integration.git_checkout import Checkout
from archdrift.jobs.worker import JobRunner, StaticLocators
from archdrift.observability.events import Message, MessageBus
from archdrift.persistence.graph_store import ProjectGraphStore
from archdrift.reconciliation.classifier import ReconciliationResult
from archdrift.reconciliation.report import PathReport
from archdrift.utils.concurrency import CancellationToken

_LOCATORS = ["https://github.com/acme/shop/tree/main/src/api"]
_NO_WAIT = BackoffConfig(max_attempts=3, initial_delay_seconds=0.0, max_delay_seconds=0.0)


class _FakeCheckout:
    """Builds the sample tree instead of cloning."""

    def __init__(self, root: Path, tree_factory: Callable[..., Path]) -> None:
        self.root = root
        self._tree_factory = tree_factory
        self.cloned: list[str] = []
        self.removed: list[Checkout] = []
        self.failures: list[Exception] = []

    def clone(self, source: GitHubSource, *, job_id: str) -> Checkout:
        if self.failures:
            raise self.failures.pop(0)
        parent = self.root / job_id
        self._tree_factory(parent, source.repository)
        self.cloned.append(job_id)
        return Checkout(parent=parent, repository=source.repository, branch=source.branch)

    def remove(self, checkout: Checkout) -> bool:
        self.removed.append(checkout)
        shutil.rmtree(checkout.parent, ignore_errors=True)
        return True


class _FlakyLocators:
    def __init__(self, failures: int) -> None:
        self._failures = failures
        self.calls = 0

    def fetch_locators(self, source: StructurizrSource) -> list[str]:
        self.calls += 1
        if self.calls <= self._failures:
            raise ModelFetchError("upstream hiccup", code="service", retryable=True)
        return list(_LOCATORS)


class _RecordingRenderer:
    def __init__(self, error: Exception | None = None) -> None:
        self.reports: list[PathReport] = []
        self._error = error

    def __call__(self, report: PathReport, result: ReconciliationResult) -> str:
        if self._error is not None:
            raise self._error
        self.reports.append(report)
        return f"memory://{report.title}"


@pytest.fixture
def fake_checkout(tmp_path: Path, make_tree: Callable[..., Path]) -> _FakeCheckout:
    return _FakeCheckout(tmp_path / "checkouts", make_tree)


def _runner(
    store: ProjectGraphStore,
    checkout: _FakeCheckout,
    *,
    model_source: Any = None,
    renderer: Any = None,
    bus: MessageBus | None = None,
) -> JobRunner:
    return JobRunner(
        store=store,
        checkout=checkout,  # type: ignore[arg-type]
        model_source=model_source or StaticLocators(_LOCATORS),
        renderer=renderer,
        bus=bus,
        backoff=_NO_WAIT,
    )


@pytest.mark.asyncio
async def test_successful_job_publishes_counts_and_removes_checkout(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    bus = MessageBus()
    statuses: list[Message] = []
    bus.subscribe(JOB_STATUS_CHANNEL, statuses.append)
    renderer = _RecordingRenderer()

    outcome = await _runner(graph_store, fake_checkout, renderer=renderer, bus=bus).submit(
        job_payload, job_id="job-1"
    )

    event = outcome.event
    assert event.status is JobState.SUCCEEDED
    assert event.job_id == "job-1"
    assert event.project == "shop-model"
    assert event.node_count == 6
    assert event.counts == {"Valid": 2, "Excluded": 1, "Invalid": 3}
    assert event.report_location == "memory://shop-model"
    assert event.attempts == 1
    assert renderer.reports[0].row_count == 6
    assert fake_checkout.cloned == ["job-1"]
    assert [item.parent.name for item in fake_checkout.removed] == ["job-1"]
    assert not (fake_checkout.root / "job-1").exists()
    assert [message.payload["status"] for message in statuses] == ["succeeded"]
    assert outcome.result is not None
    assert graph_store.node_count("shop-model") == 6


@pytest.mark.asyncio
async def test_render_failure_fails_the_job_and_still_removes_checkout(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    renderer = _RecordingRenderer(RenderError("quota exceeded token=abc123", code="quota"))

    outcome = await _runner(graph_store, fake_checkout, renderer=renderer).submit(job_payload)

    event = outcome.event
    assert event.status is JobState.FAILED
    assert event.error_kind == "RenderError"
    assert event.error is not None
    assert "abc123" not in event.error
    assert len(fake_checkout.removed) == 1
    assert not any(fake_checkout.root.iterdir())


@pytest.mark.asyncio
async def test_non_retryable_clone_failure_is_not_retried(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    fake_checkout.failures.append(CheckoutError("Repository not found", code="not_found"))

    outcome = await _runner(graph_store, fake_checkout).submit(job_payload)

    assert outcome.event.status is JobState.FAILED
    assert outcome.event.error_kind == "CheckoutError"
    assert outcome.event.attempts == 1
    assert fake_checkout.removed == []


@pytest.mark.asyncio
async def test_retryable_failures_are_retried_and_counted(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    model_source = _FlakyLocators(failures=1)
    fake_checkout.failures.append(CheckoutError("timed out", code="network", retryable=True))

    outcome = await _runner(graph_store, fake_checkout, model_source=model_source).submit(
        job_payload
    )

    assert outcome.event.status is JobState.SUCCEEDED
    assert outcome.event.attempts == 3
    assert model_source.calls == 2


@pytest.mark.asyncio
async def test_retries_stop_at_max_attempts(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    model_source = _FlakyLocators(failures=10)

    outcome = await _runner(graph_store, fake_checkout, model_source=model_source).submit(
        job_payload
    )

    assert outcome.event.status is JobState.FAILED
    assert outcome.event.error_kind == "ModelFetchError"
    assert model_source.calls == _NO_WAIT.max_attempts
    assert fake_checkout.cloned == []


@pytest.mark.asyncio
async def test_malformed_payload_publishes_failed_event(
    graph_store: ProjectGraphStore, fake_checkout: _FakeCheckout
) -> None:
    bus = MessageBus()
    statuses: list[Message] = []
    bus.subscribe(JOB_STATUS_CHANNEL, statuses.append)

    outcome = await _runner(graph_store, fake_checkout, bus=bus).submit({"projectName": "broken"})

    assert outcome.event.status is JobState.FAILED
    assert outcome.event.error_kind == "JobRequestError"
    assert outcome.event.project == "broken"
    assert len(statuses) == 1
    assert fake_checkout.cloned == []


@pytest.mark.asyncio
async def test_cancelled_token_produces_cancelled_event(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    token = CancellationToken()
    token.cancel()

    outcome = await _runner(graph_store, fake_checkout).submit(job_payload, cancel_token=token)

    assert outcome.event.status is JobState.CANCELLED
    assert outcome.event.error_kind == "CancelledError"
    assert fake_checkout.cloned == []


@pytest.mark.asyncio
async def test_task_cancel_waits_for_the_reconcile_thread(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    entered = threading.Event()
    seen: dict[str, bool] = {}

    def blocking_reconcile(
        store: ProjectGraphStore,
        project: str,
        *,
        checkout_parent: Path,
        cancel_token: CancellationToken,
        **kwargs: Any,
    ) -> ReconciliationResult:
        entered.set()
        deadline = time.monotonic() + 5.0
        while not cancel_token.is_cancelled and time.monotonic() < deadline:
            time.sleep(0.01)
        seen["token_cancelled"] = cancel_token.is_cancelled
        seen["checkout_exists"] = Path(checkout_parent).is_dir()
        cancel_token.raise_if_cancelled()
        raise AssertionError("token was never cancelled")

    monkeypatch.setattr("archdrift.jobs.worker.reconcile", blocking_reconcile)
    bus = MessageBus()
    statuses: list[Message] = []
    bus.subscribe(JOB_STATUS_CHANNEL, statuses.append)
    runner = _runner(graph_store, fake_checkout, bus=bus)

    task = asyncio.create_task(runner.submit(job_payload, job_id="job-c"))
    assert await asyncio.to_thread(entered.wait, 5.0)
    assert runner.locks.locked("shop-model")
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert seen == {"token_cancelled": True, "checkout_exists": True}
    assert len(fake_checkout.removed) == 1
    assert runner.locks.active_keys == ()
    assert [message.payload["status"] for message in statuses] == ["cancelled"]


@pytest.mark.asyncio
async def test_local_checkout_is_used_and_kept(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
    repo_parent: Path,
) -> None:
    outcome = await _runner(graph_store, fake_checkout).submit(
        job_payload, local_checkout=repo_parent / "shop"
    )

    assert outcome.event.status is JobState.SUCCEEDED
    assert outcome.event.node_count == 6
    assert fake_checkout.cloned == []
    assert fake_checkout.removed == []
    assert (repo_parent / "shop" / "src").is_dir()


@pytest.mark.asyncio
async def test_local_checkout_must_match_repository_name(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
    tmp_path: Path,
) -> None:
    other = tmp_path / "billing"
    other.mkdir()

    outcome = await _runner(graph_store, fake_checkout).submit(job_payload, local_checkout=other)

    assert outcome.event.status is JobState.FAILED
    assert outcome.event.error_kind == "JobRequestError"
    assert "does not match repository" in (outcome.event.error or "")


class _SlowLocators:
    def __init__(self) -> None:
        self.timeline: list[str] = []
        self._lock = threading.Lock()

    def fetch_locators(self, source: StructurizrSource) -> list[str]:
        with self._lock:
            self.timeline.append("start")
        time.sleep(0.05)
        with self._lock:
            self.timeline.append("end")
        return list(_LOCATORS)


@pytest.mark.asyncio
async def test_jobs_for_the_same_project_run_one_at_a_time(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    model_source = _SlowLocators()
    runner = _runner(graph_store, fake_checkout, model_source=model_source)

    first, second = await asyncio.gather(
        runner.submit(job_payload, job_id="job-a"),
        runner.submit(job_payload, job_id="job-b"),
    )

    assert first.event.status is JobState.SUCCEEDED
    assert second.event.status is JobState.SUCCEEDED
    assert model_source.timeline == ["start", "end", "start", "end"]
    assert runner.locks.active_keys == ()


@pytest.mark.asyncio
async def test_attached_runner_handles_bus_requests(
    graph_store: ProjectGraphStore,
    fake_checkout: _FakeCheckout,
    job_payload: dict[str, Any],
) -> None:
    bus = MessageBus()
    statuses: list[Message] = []
    bus.subscribe(JOB_STATUS_CHANNEL, statuses.append)
    runner = _runner(graph_store, fake_checkout)
    runner.attach(bus)

    errors = await bus.publish_async(JOB_REQUEST_CHANNEL, job_payload)
    runner.detach()
    await bus.publish_async(JOB_REQUEST_CHANNEL, job_payload)

    assert errors == ()
    assert [message.payload["status"] for message in statuses] == ["succeeded"]
    assert statuses[0].payload["project"] == "shop-model"


def test_static_locators_from_file_skips_comments_and_blanks(tmp_path: Path) -> None:
    path = tmp_path / "locators.txt"
    path.write_text(
        "# model export\nhttps://github.com/acme/shop/tree/main/src\n\n  \n", encoding="utf-8"
    )

    source = StaticLocators.from_file(path)

    assert source.fetch_locators(StructurizrSource(workspace_id=1, api_key="k", secret="s")) == [
        "https://github.com/acme/shop/tree/main/src"
    ]
