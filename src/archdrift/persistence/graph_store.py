"""
Project graph store: path nodes attached to named projects.

Each node row carries its owning project as part of its primary key, so node creation and
attachment to the project happen in the same statement and a node can never be retargeted.
Prefix-scoped mutations only touch nodes of the named project.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Final

from archdrift.constants import VISITED_NOTE
from archdrift.domain.models import PathNode
from archdrift.persistence.state_db import RowValue, StateDB, StateDBError, utc_now_iso

# `substr` instead of LIKE so `%` and `_` in folder names match literally.
_PREFIX_PREDICATE: Final[str] = "project = ? AND substr(full_path, 1, length(?)) = ?"


class UnknownProjectError(StateDBError):
    """Raised when nodes are written for a project that was never created."""


@dataclass(frozen=True, slots=True)
class ProjectSummary:
    name: str
    created_by: str
    created_at: str
    node_count: int


class ProjectGraphStore:
    """Repository for projects and their path nodes."""

    def __init__(self, db: StateDB, *, user: str, secret: str | None = None) -> None:
        self._db = db
        self._user = user
        self._db.migrate()
        self._db.authenticate(user, secret)

    @property
    def db(self) -> StateDB:
        return self._db

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Hold one store connection for the duration of a job."""

        with self._db.connection() as conn:
            yield conn

    def project_exists(self, name: str, *, conn: sqlite3.Connection | None = None) -> bool:
        row = self._db.query_one(
            "SELECT 1 AS found FROM projects WHERE name = ?",
            (name,),
            conn=conn,
        )
        return row is not None

    def ensure_project(self, name: str, *, conn: sqlite3.Connection | None = None) -> bool:
        """Create the project if absent. Returns True when a row was created."""

        if not name:
            raise ValueError("project name must be non-empty")
        created = self._db.execute(
            "INSERT OR IGNORE INTO projects (name, created_by, created_at) VALUES (?, ?, ?)",
            (name, self._user, utc_now_iso()),
            conn=conn,
        )
        return created > 0

    def wipe_project(self, name: str, *, conn: sqlite3.Connection | None = None) -> int:
        """Delete every node of the project; the project row itself is kept."""

        return self._db.execute("DELETE FROM path_nodes WHERE project = ?", (name,), conn=conn)

    def upsert_node(
        self,
        project: str,
        full_path: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Get-or-create a node with default fields. Existing nodes are left untouched."""

        return self.upsert_nodes(project, (full_path,), conn=conn) > 0

    def upsert_nodes(
        self,
        project: str,
        full_paths: Iterable[str],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        created_at = utc_now_iso()
        params = [(project, path, created_at) for path in full_paths]
        if not params:
            return 0
        for _, path, _ in params:
            if not path:
                raise ValueError("full_path must be non-empty")
        try:
            return self._db.executemany(
                """
                INSERT OR IGNORE INTO path_nodes (project, full_path, created_at)
                VALUES (?, ?, ?)
                """,
                params,
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise UnknownProjectError(f"project {project!r} does not exist") from exc

    def mark_visited_by_prefix(
        self,
        project: str,
        key: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        return self._db.execute(
            f"""
            UPDATE path_nodes
            SET visited = 1, excluded = 0, note = ?
            WHERE {_PREFIX_PREDICATE}
            """,
            (VISITED_NOTE, project, key, key),
            conn=conn,
        )

    def mark_excluded_by_prefix(
        self,
        project: str,
        key: str,
        note: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        return self._db.execute(
            f"""
            UPDATE path_nodes
            SET visited = 0, excluded = 1, note = ?
            WHERE {_PREFIX_PREDICATE}
            """,
            (note, project, key, key),
            conn=conn,
        )

    def scan(self, project: str, *, conn: sqlite3.Connection | None = None) -> list[PathNode]:
        """Return every node of the project in insertion order."""

        rows = self._db.query_all(
            """
            SELECT project, full_path, visited, excluded, note
            FROM path_nodes
            WHERE project = ?
            ORDER BY rowid ASC
            """,
            (project,),
            conn=conn,
        )
        return [_row_to_node(row) for row in rows]

    def node_count(self, project: str, *, conn: sqlite3.Connection | None = None) -> int:
        row = self._db.query_one(
            "SELECT COUNT(*) AS total FROM path_nodes WHERE project = ?",
            (project,),
            conn=conn,
        )
        return _row_int(row, "total") if row is not None else 0

    def list_projects(self) -> list[ProjectSummary]:
        rows = self._db.query_all(
            """
            SELECT p.name, p.created_by, p.created_at, COUNT(n.full_path) AS node_count
            FROM projects AS p
            LEFT JOIN path_nodes AS n ON n.project = p.name
            GROUP BY p.name
            ORDER BY p.name ASC
            """
        )
        return [
            ProjectSummary(
                name=_row_text(row, "name"),
                created_by=_row_text(row, "created_by"),
                created_at=_row_text(row, "created_at"),
                node_count=_row_int(row, "node_count"),
            )
            for row in rows
        ]


def _row_text(row: dict[str, RowValue], key: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise StateDBError(f"{key} must be text")
    return value


def _row_int(row: dict[str, RowValue], key: str) -> int:
    value = row.get(key)
    if not isinstance(value, int):
        raise StateDBError(f"{key} must be an integer")
    return value


def _row_to_node(row: dict[str, RowValue]) -> PathNode:
    return PathNode(
        project=_row_text(row, "project"),
        full_path=_row_text(row, "full_path"),
        visited=bool(_row_int(row, "visited")),
        excluded=bool(_row_int(row, "excluded")),
        note=_row_text(row, "note"),
    )


__all__ = ["ProjectGraphStore", "ProjectSummary", "UnknownProjectError"]
