"""
SQLite file behind the project graph store.

The schema version lives in ``PRAGMA user_version``; each entry of ``_MIGRATIONS`` moves the
file up one version inside its own transaction. Connections run in autocommit mode with WAL
journaling, and writes go through ``transaction`` so a job's wipe or bulk insert lands
atomically. Values are always bound through ``?`` parameters.
"""

from __future__ import annotations

import hashlib
import hmac
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, TypeVar

from archdrift.constants import DEFAULT_NOTE, STATE_DB_SCHEMA_VERSION

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

_R = TypeVar("_R")

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

# Index i holds the statements that take a file from version i to version i + 1.
_MIGRATIONS: Final[tuple[tuple[str, ...], ...]] = (
    (
        """
        CREATE TABLE store_principals (
            user TEXT PRIMARY KEY,
            secret_sha256 TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE projects (
            name TEXT PRIMARY KEY,
            created_by TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE path_nodes (
            project TEXT NOT NULL REFERENCES projects(name) ON DELETE CASCADE,
            full_path TEXT NOT NULL CHECK (length(full_path) > 0),
            visited INTEGER NOT NULL DEFAULT 0 CHECK (visited IN (0, 1)),
            excluded INTEGER NOT NULL DEFAULT 0 CHECK (excluded IN (0, 1)),
            note TEXT NOT NULL DEFAULT '{DEFAULT_NOTE}',
            created_at TEXT NOT NULL,
            PRIMARY KEY (project, full_path)
        )
        """,
    ),
)

_BUSY_MESSAGES: Final[tuple[str, ...]] = ("database is locked", "database table is locked")


class StateDBError(RuntimeError):
    """A store operation failed."""


class StateDBBusyError(StateDBError):
    """The store stayed locked by another writer through every retry."""


class StateDBMigrationError(StateDBError):
    """The store file was written by a newer archdrift."""


class StateDBAuthError(StateDBError):
    """The configured store user presented a different secret than on first use."""


class StateDB:
    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            (journal_mode,) = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            raise StateDBError(f"cannot open store {self._path}: {exc}") from exc
        if str(journal_mode).lower() != "wal":
            conn.close()
            raise StateDBError(f"store {self._path} refused WAL journaling ({journal_mode})")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Commit on clean exit, roll back on error.

        Inside an already open transaction this joins it instead of nesting.
        """

        if conn is None:
            with self.connection() as owned:
                with self.transaction(conn=owned) as tx:
                    yield tx
            return
        if conn.in_transaction:
            yield conn
            return

        self._retrying("begin", lambda: conn.execute("BEGIN IMMEDIATE"))
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        self._retrying("commit", lambda: conn.execute("COMMIT"))

    def migrate(self) -> int:
        """Bring the file up to ``STATE_DB_SCHEMA_VERSION`` and return that version."""

        with self.connection() as conn:
            version = self.schema_version(conn=conn)
            if version > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"store {self._path} has schema version {version}; this archdrift "
                    f"understands up to {STATE_DB_SCHEMA_VERSION}"
                )
            for target in range(version + 1, STATE_DB_SCHEMA_VERSION + 1):
                with self.transaction(conn=conn) as tx:
                    # Another process may have migrated while we waited for the lock.
                    if self.schema_version(conn=tx) >= target:
                        continue
                    for statement in _MIGRATIONS[target - 1]:
                        tx.execute(statement)
                    tx.execute(f"PRAGMA user_version={target}")
            return self.schema_version(conn=conn)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one("PRAGMA user_version", conn=conn)
        return int(row["user_version"]) if row is not None else 0

    def authenticate(self, user: str, secret: str | None) -> None:
        """Register ``user`` on first use, then require the same secret on later opens.

        Only a SHA-256 digest of the secret is stored.
        """

        if not user:
            raise StateDBAuthError("store user must be non-empty")
        digest = hashlib.sha256((secret or "").encode("utf-8")).hexdigest()
        with self.transaction() as tx:
            row = self.query_one(
                "SELECT secret_sha256 FROM store_principals WHERE user = ?",
                (user,),
                conn=tx,
            )
            if row is None:
                self.execute(
                    "INSERT INTO store_principals (user, secret_sha256, created_at) "
                    "VALUES (?, ?, ?)",
                    (user, digest, utc_now_iso()),
                    conn=tx,
                )
                return
            stored = row["secret_sha256"]
            if not isinstance(stored, str) or not hmac.compare_digest(stored, digest):
                raise StateDBAuthError(f"store secret rejected for user {user!r} at {self._path}")

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Run one statement and return the affected row count."""

        with self.transaction(conn=conn) as tx:
            return self._retrying(sql, lambda: tx.execute(sql, tuple(params))).rowcount

    def executemany(
        self,
        sql: str,
        params_iter: Iterable[SQLParams],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        rows = [tuple(params) for params in params_iter]
        with self.transaction(conn=conn) as tx:
            return self._retrying(sql, lambda: tx.executemany(sql, rows)).rowcount

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        with self._reader(conn) as reader:
            cursor = self._retrying(sql, lambda: reader.execute(sql, tuple(params)))
            return [dict(row) for row in cursor.fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        with self._reader(conn) as reader:
            row = self._retrying(sql, lambda: reader.execute(sql, tuple(params))).fetchone()
            return None if row is None else dict(row)

    @contextmanager
    def _reader(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.connection() as owned:
            yield owned

    def _retrying(self, what: str, call: Callable[[], _R]) -> _R:
        """Run ``call``, sleeping with doubling backoff while another writer holds the lock.

        Integrity errors propagate untouched so callers can map them.
        """

        attempt = 0
        while True:
            try:
                return call()
            except sqlite3.IntegrityError:
                raise
            except sqlite3.OperationalError as exc:
                busy = any(message in str(exc).lower() for message in _BUSY_MESSAGES)
                if not busy:
                    raise StateDBError(f"{_summary(what)} failed on {self._path}: {exc}") from exc
                if attempt >= self._busy_retry_limit:
                    raise StateDBBusyError(
                        f"{_summary(what)} still locked on {self._path} "
                        f"after {attempt + 1} attempt(s)"
                    ) from exc
                time.sleep(self._busy_retry_backoff_ms / 1000.0 * 2**attempt)
                attempt += 1
            except sqlite3.Error as exc:
                raise StateDBError(f"{_summary(what)} failed on {self._path}: {exc}") from exc


def _summary(sql: str) -> str:
    return " ".join(sql.split())[:60]


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBAuthError",
    "StateDBBusyError",
    "StateDBError",
    "StateDBMigrationError",
    "utc_now_iso",
]
