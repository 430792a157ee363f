"""
Persistence layer: SQLite state DB lifecycle and the project graph store.

SQLite-first; every run rebuilds its project, so no cross-run merge logic lives here.
"""

from __future__ import annotations

from archdrift.persistence.graph_store import ProjectGraphStore, ProjectSummary, UnknownProjectError
from archdrift.persistence.state_db import (
    StateDB,
    StateDBAuthError,
    StateDBBusyError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "ProjectGraphStore",
    "ProjectSummary",
    "StateDB",
    "StateDBAuthError",
    "StateDBBusyError",
    "StateDBError",
    "StateDBMigrationError",
    "UnknownProjectError",
]
