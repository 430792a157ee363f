"""
Reconciliation engine: locator normalization, folder walking, classification and report
building. Everything here is synchronous; the job runner moves it off the event loop.
"""

from __future__ import annotations

from archdrift.reconciliation.classifier import (
    Phase,
    PhaseOrderError,
    Reconciliation,
    ReconciliationResult,
    reconcile,
    resolve_status,
)
from archdrift.reconciliation.normalizer import (
    normalize_exclusion,
    normalize_locator,
    scope_to_repository,
)
from archdrift.reconciliation.report import PathReport, build_report
from archdrift.reconciliation.walker import FolderRecord, walk_folders

__all__ = [
    "FolderRecord",
    "PathReport",
    "Phase",
    "PhaseOrderError",
    "Reconciliation",
    "ReconciliationResult",
    "build_report",
    "normalize_exclusion",
    "normalize_locator",
    "reconcile",
    "resolve_status",
    "scope_to_repository",
    "walk_folders",
]
