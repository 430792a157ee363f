"""
Reconciliation classifier.

Runs one project through a fixed sequence over a single store connection:

1. ``prepare``: reuse the project and wipe its nodes, or create it.
2. ``populate``: upsert one node per folder yielded by the walker.
3. ``apply_model_coverage``: mark nodes visited under every normalized model locator.
4. ``apply_exclusions``: mark nodes excluded under every normalized exclusion entry.
5. ``scan``: read the project's nodes back.

Exclusions always run after model coverage, so a folder covered by both ends up Excluded.
The order is enforced: calling a step out of sequence raises ``PhaseOrderError``.
"""

from __future__ import annotations

import sqlite3
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Final

import structlog

from archdrift.constants import DEFAULT_GIT_HOST, DEFAULT_IGNORED_DIRS
from archdrift.domain.models import ExcludedPath, PathNode, PathStatus
from archdrift.persistence.graph_store import ProjectGraphStore
from archdrift.reconciliation.normalizer import (
    normalize_exclusion,
    normalize_locator,
    scope_to_repository,
)
from archdrift.reconciliation.walker import walk_folders
from archdrift.utils.concurrency import CancellationToken

_DEFAULT_BATCH_SIZE: Final[int] = 256


class PhaseOrderError(RuntimeError):
    """Raised when reconciliation steps are invoked out of order."""


class Phase(IntEnum):
    NEW = 0
    PREPARED = 1
    POPULATED = 2
    COVERED = 3
    EXCLUDED = 4


def resolve_status(visited: bool, excluded: bool) -> PathStatus:
    """Priority is visited, then excluded, then the orphan default."""

    if visited:
        return PathStatus.VALID
    if excluded:
        return PathStatus.EXCLUDED
    return PathStatus.INVALID


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    project: str
    nodes: tuple[PathNode, ...]
    created_project: bool
    wiped_nodes: int
    unmatched_locators: tuple[str, ...] = ()
    unmatched_exclusions: tuple[str, ...] = ()

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def counts(self) -> dict[str, int]:
        tally = Counter(resolve_status(node.visited, node.excluded) for node in self.nodes)
        return {status.value: tally.get(status, 0) for status in PathStatus}


class Reconciliation:
    """Stateful driver for one project's reconciliation run."""

    def __init__(
        self,
        store: ProjectGraphStore,
        project: str,
        *,
        repository: str,
        organization: str,
        branch: str,
        host: str = DEFAULT_GIT_HOST,
        conn: sqlite3.Connection | None = None,
        cancel_token: CancellationToken | None = None,
        ignore_dirs: tuple[str, ...] = DEFAULT_IGNORED_DIRS,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        logger: Any | None = None,
    ) -> None:
        if not project:
            raise ValueError("project must be non-empty")
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._store = store
        self._project = project
        self._repository = repository
        self._organization = organization
        self._branch = branch
        self._host = host
        self._conn = conn
        self._token = cancel_token
        self._ignore_dirs = ignore_dirs
        self._batch_size = batch_size
        self._logger = logger or structlog.get_logger(__name__).bind(project=project)
        self._phase = Phase.NEW
        self._created_project = False
        self._wiped_nodes = 0
        self._unmatched_locators: list[str] = []
        self._unmatched_exclusions: list[str] = []

    @property
    def phase(self) -> Phase:
        return self._phase

    def prepare(self) -> None:
        self._require(Phase.NEW, "prepare")
        self._checkpoint()
        with self._store.db.transaction(conn=self._conn) as tx:
            if self._store.project_exists(self._project, conn=tx):
                self._wiped_nodes = self._store.wipe_project(self._project, conn=tx)
            else:
                self._created_project = self._store.ensure_project(self._project, conn=tx)
        self._logger.info(
            "project_prepared",
            created_project=self._created_project,
            wiped_nodes=self._wiped_nodes,
        )
        self._phase = Phase.PREPARED

    def populate(self, checkout_parent: str | Path) -> int:
        """Upsert every folder of ``checkout_parent / repository``. Returns nodes created."""

        self._require(Phase.PREPARED, "populate")
        created = 0
        batch: list[str] = []
        for record in walk_folders(checkout_parent, self._repository, ignore=self._ignore_dirs):
            self._checkpoint()
            batch.append(record.full_path)
            if len(batch) >= self._batch_size:
                created += self._flush(batch)
                batch = []
        if batch:
            created += self._flush(batch)
        self._logger.info("project_populated", nodes_created=created)
        self._phase = Phase.POPULATED
        return created

    def apply_model_coverage(self, locators: Iterable[str]) -> int:
        """Mark nodes visited for each locator in model order. Returns total rows touched."""

        self._require(Phase.POPULATED, "apply_model_coverage")
        touched = 0
        for locator in locators:
            self._checkpoint()
            key = normalize_locator(
                locator,
                organization=self._organization,
                branch=self._branch,
                host=self._host,
            )
            matched = self._store.mark_visited_by_prefix(self._project, key, conn=self._conn)
            if matched == 0:
                self._unmatched_locators.append(locator)
                self._logger.warning("locator_matched_no_nodes", locator=locator, key=key)
            touched += matched
        self._logger.info(
            "model_coverage_applied",
            touched=touched,
            unmatched=len(self._unmatched_locators),
        )
        self._phase = Phase.COVERED
        return touched

    def apply_exclusions(self, excluded_paths: Sequence[ExcludedPath]) -> int:
        """Mark nodes excluded for each entry in list order. Returns total rows touched."""

        self._require(Phase.COVERED, "apply_exclusions")
        touched = 0
        for entry in excluded_paths:
            self._checkpoint()
            key = scope_to_repository(normalize_exclusion(entry.path), self._repository)
            matched = self._store.mark_excluded_by_prefix(
                self._project,
                key,
                entry.note,
                conn=self._conn,
            )
            if matched == 0:
                self._unmatched_exclusions.append(entry.path)
                self._logger.warning("exclusion_matched_no_nodes", path=entry.path, key=key)
            touched += matched
        self._logger.info(
            "exclusions_applied",
            touched=touched,
            unmatched=len(self._unmatched_exclusions),
        )
        self._phase = Phase.EXCLUDED
        return touched

    def scan(self) -> list[PathNode]:
        self._checkpoint()
        return self._store.scan(self._project, conn=self._conn)

    def result(self) -> ReconciliationResult:
        self._require(Phase.EXCLUDED, "result")
        return ReconciliationResult(
            project=self._project,
            nodes=tuple(self.scan()),
            created_project=self._created_project,
            wiped_nodes=self._wiped_nodes,
            unmatched_locators=tuple(self._unmatched_locators),
            unmatched_exclusions=tuple(self._unmatched_exclusions),
        )

    def _flush(self, batch: list[str]) -> int:
        with self._store.db.transaction(conn=self._conn) as tx:
            return self._store.upsert_nodes(self._project, batch, conn=tx)

    def _checkpoint(self) -> None:
        if self._token is not None:
            self._token.raise_if_cancelled()

    def _require(self, expected: Phase, step: str) -> None:
        if self._phase is not expected:
            raise PhaseOrderError(
                f"{step} requires phase {expected.name.lower()}, "
                f"current phase is {self._phase.name.lower()}"
            )


def reconcile(
    store: ProjectGraphStore,
    project: str,
    *,
    checkout_parent: str | Path,
    repository: str,
    organization: str,
    branch: str,
    locators: Iterable[str],
    excluded_paths: Sequence[ExcludedPath],
    host: str = DEFAULT_GIT_HOST,
    ignore_dirs: tuple[str, ...] = DEFAULT_IGNORED_DIRS,
    cancel_token: CancellationToken | None = None,
) -> ReconciliationResult:
    """Run the full sequence for one project over one store connection."""

    with store.connection() as conn:
        run = Reconciliation(
            store,
            project,
            repository=repository,
            organization=organization,
            branch=branch,
            host=host,
            conn=conn,
            cancel_token=cancel_token,
            ignore_dirs=ignore_dirs,
        )
        run.prepare()
        run.populate(checkout_parent)
        run.apply_model_coverage(locators)
        run.apply_exclusions(excluded_paths)
        return run.result()


__all__ = [
    "Phase",
    "PhaseOrderError",
    "Reconciliation",
    "ReconciliationResult",
    "reconcile",
    "resolve_status",
]
