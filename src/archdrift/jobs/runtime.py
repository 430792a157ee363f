"""Build the store and job runner from an effective config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from archdrift.config.loader import resolve_secret
from archdrift.integration.base import BackoffConfig
from archdrift.integration.git_checkout import GitCheckout
from archdrift.integration.structurizr import StructurizrClient
from archdrift.jobs.rendering import make_renderer
from archdrift.jobs.worker import JobRunner, ModelSource, StaticLocators
from archdrift.observability.events import MessageBus
from archdrift.persistence.graph_store import ProjectGraphStore
from archdrift.persistence.state_db import StateDB


def open_store(
    config: Mapping[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
) -> ProjectGraphStore:
    """Open the graph store at ``store.endpoint`` as ``store.user``."""

    store_cfg = config["store"]
    db = StateDB(store_cfg["endpoint"], busy_timeout_ms=int(store_cfg["busy_timeout_ms"]))
    return ProjectGraphStore(
        db,
        user=store_cfg["user"],
        secret=resolve_secret(config, "store", "secret_env", environ=environ),
    )


def backoff_from_config(config: Mapping[str, Any]) -> BackoffConfig:
    jobs_cfg = config["jobs"]
    initial = max(int(jobs_cfg["retry_backoff_ms"]), 0) / 1000.0
    return BackoffConfig(
        max_attempts=int(jobs_cfg["max_attempts"]),
        initial_delay_seconds=initial,
        max_delay_seconds=max(initial * 8, initial),
    )


def build_runner(
    config: Mapping[str, Any],
    *,
    store: ProjectGraphStore | None = None,
    bus: MessageBus | None = None,
    report_backend: str | None = None,
    output_dir: str | Path | None = None,
    locators_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> JobRunner:
    git_cfg = config["git"]
    structurizr_cfg = config["structurizr"]

    model_source: ModelSource
    if locators_file is not None:
        model_source = StaticLocators.from_file(locators_file)
    else:
        model_source = StructurizrClient(
            api_url=structurizr_cfg["api_url"],
            timeout_seconds=float(structurizr_cfg["timeout_seconds"]),
        )

    runner = JobRunner(
        store=store or open_store(config, environ=environ),
        checkout=GitCheckout(git_cfg["checkout_root"], host=git_cfg["host"]),
        model_source=model_source,
        renderer=make_renderer(
            config["report"],
            backend=report_backend,
            output_dir=output_dir,
            environ=environ,
        ),
        backoff=backoff_from_config(config),
        host=git_cfg["host"],
        ignore_dirs=tuple(git_cfg["ignore_dirs"]),
    )
    if bus is not None:
        runner.attach(bus)
    return runner


__all__ = ["backoff_from_config", "build_runner", "open_store"]
