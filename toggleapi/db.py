"""SQLite-backed storage: schema, executors and transaction scopes."""

from __future__ import annotations

import contextvars
import itertools
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Sequence, TypeVar

T = TypeVar("T")


class NoRowsError(LookupError):
    """A query that must produce a row produced none."""

    def __init__(self, message: str = "no rows in result set") -> None:
        super().__init__(message)


class NotFoundError(LookupError):
    """The requested resource does not exist or is not visible to the caller."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(message)


class UniqueViolationError(sqlite3.IntegrityError):
    """An insert or update broke a uniqueness constraint."""

    code = "23505"


_NOW = "strftime('%Y-%m-%dT%H:%M:%f', 'now')"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS tenants (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    auth0_id TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL,
    firstname TEXT NOT NULL DEFAULT '',
    lastname TEXT NOT NULL DEFAULT '',
    last_active_tenant_id TEXT REFERENCES tenants(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);

CREATE TABLE IF NOT EXISTS tenant_members (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('owner', 'admin', 'member')),
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW}),
    UNIQUE (user_id, tenant_id)
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    client_api_key TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);

CREATE TABLE IF NOT EXISTS flags (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    enabled INTEGER NOT NULL DEFAULT 0,
    rules TEXT NOT NULL DEFAULT '[]',
    rule_logic TEXT NOT NULL DEFAULT 'AND',
    created_at TEXT NOT NULL DEFAULT ({_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({_NOW})
);

CREATE INDEX IF NOT EXISTS idx_projects_tenant ON projects(tenant_id);
CREATE INDEX IF NOT EXISTS idx_flags_project ON flags(project_id);
CREATE INDEX IF NOT EXISTS idx_members_user ON tenant_members(user_id);
"""


def _run(conn: sqlite3.Connection, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
    try:
        return conn.execute(sql, tuple(params))
    except sqlite3.IntegrityError as exc:
        if "UNIQUE constraint failed" in str(exc):
            raise UniqueViolationError(str(exc)) from exc
        raise


class _Executor:
    """Runs statements directly on the connection, each one committed on its own."""

    def __init__(self, database: "Database") -> None:
        self._database = database

    @property
    def database(self) -> "Database":
        return self._database

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._database._lock:
            return _run(self._database._conn, sql, params)


class _Transaction(_Executor):
    """Runs statements inside an open transaction scope."""


_current: contextvars.ContextVar[Optional[_Transaction]] = contextvars.ContextVar(
    "toggleapi_current_transaction", default=None
)


def current_transaction() -> Optional[_Transaction]:
    """Return the transaction active in this context, if any."""
    return _current.get()


class Database:
    """A SQLite database holding tenants, users, memberships, projects and flags."""

    def __init__(self, path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._savepoints = itertools.count(1)
        self._autocommit = _Executor(self)

    def migrate(self) -> None:
        """Create every table and index that does not yet exist."""
        with self._lock:
            self._conn.executescript(_SCHEMA)

    def executor(self) -> _Executor:
        """Return the active transaction on this database, or an autocommit executor."""
        tx = _current.get()
        if tx is not None and tx.database is self:
            return tx
        return self._autocommit

    @contextmanager
    def _scope(self, keep: bool) -> Iterator[_Transaction]:
        with self._lock:
            savepoint: Optional[str] = None
            if self._conn.in_transaction:
                savepoint = f"sp_{next(self._savepoints)}"
                self._conn.execute(f"SAVEPOINT {savepoint}")
            else:
                self._conn.execute("BEGIN")
            tx = _Transaction(self)
            token = _current.set(tx)
            try:
                yield tx
            except BaseException:
                self._finish(savepoint, commit=False)
                raise
            else:
                self._finish(savepoint, commit=keep)
            finally:
                _current.reset(token)

    def _finish(self, savepoint: Optional[str], commit: bool) -> None:
        if savepoint is None:
            self._conn.execute("COMMIT" if commit else "ROLLBACK")
            return
        if not commit:
            self._conn.execute(f"ROLLBACK TO {savepoint}")
        self._conn.execute(f"RELEASE {savepoint}")

    def transaction(self):
        """Open a scope that commits on success and rolls back on error."""
        return self._scope(keep=True)

    def rollback_scope(self):
        """Open a scope that is always rolled back when it ends."""
        return self._scope(keep=False)

    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        """Call fn inside a transaction and return its result."""
        with self.transaction():
            return fn()

    def close(self) -> None:
        with self._lock:
            self._conn.close()