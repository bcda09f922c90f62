"""A connection pool to share database connections between the requests of a long-running process.

Opening a new connection for each request is expensive, while sharing a single connection between concurrent requests is
not possible: a `Database` can only be used by one thread at a time. The `Pool` sits in between. It keeps a number of
open connections around and lends them to requests as needed:

>>> pool = create_pool("postgres", connect_string="dbname=world", settings=PoolSettings(max_size=10))
>>> with pool.connection() as db:
...     db.query("SELECT * FROM city")
>>> pool.query("SELECT COUNT(*) FROM city")  # checks out a connection just for this statement
>>> pool.close()

Connections are handed out in last-in-first-out order, such that a small number of connections stays busy while the
surplus connections become idle. Idle connections above the minimum size are closed once they have not been used for
some time. Eviction happens whenever the pool is used, no background thread is involved.
"""

from __future__ import annotations

import atexit
import contextlib
import dataclasses
import functools
import threading
import time
import warnings
from collections.abc import Callable, Generator, Mapping, Sequence
from typing import Any, Optional

import pandas as pd

from . import db as db_api
from . import util
from ._core import SQL, quote, quote_literal
from .db import Database, DatabaseError, TableName
from .db._db import Parameters, StatementResult
from .interpolate import sql_interpolate


class PoolWarning(UserWarning):
    """Warning to indicate that a pool is used in an unexpected way, e.g. connections are returned with open transactions."""


class PoolExhaustedError(TimeoutError):
    """Error to indicate that no connection became available within the acquire timeout."""


@dataclasses.dataclass(frozen=True)
class PoolSettings:
    """Captures the size limits and timeouts of a `Pool`.

    Attributes
    ----------
    min_size : int
        The number of connections that are kept open even if they are idle. They are opened when the pool is created.
        Defaults to 1.
    max_size : Optional[int]
        The maximum number of connections, including connections that are checked out. *None* (the default) does not
        impose any limit.
    idle_timeout : float
        The number of seconds after which idle connections above `min_size` are closed. Defaults to 60 seconds.
    validation_interval : float
        Connections that have been idle for longer than this number of seconds are validated before they are handed out
        again. Defaults to 60 seconds.
    acquire_timeout : float
        The number of seconds a checkout waits for a connection to become available. Defaults to 30 seconds.
    validation_query : str
        The statement to check whether a connection still works. Defaults to *SELECT 1*.
    """
    min_size: int = 1
    max_size: Optional[int] = None
    idle_timeout: float = 60.0
    validation_interval: float = 60.0
    acquire_timeout: float = 30.0
    validation_query: str = "SELECT 1"

    def __post_init__(self) -> None:
        if self.min_size < 0:
            raise ValueError(f"min_size must not be negative, got {self.min_size}")
        if self.max_size is not None and self.max_size < max(1, self.min_size):
            raise ValueError(f"max_size must be at least 1 and at least min_size ({self.min_size}), got {self.max_size}")
        for timeout in ("idle_timeout", "validation_interval", "acquire_timeout"):
            if getattr(self, timeout) < 0:
                raise ValueError(f"{timeout} must not be negative, got {getattr(self, timeout)}")

    @staticmethod
    def from_dict(settings: Mapping[str, Any]) -> PoolSettings:
        """Creates pool settings from a (JSON) mapping, e.g. the *pool* section of a configuration file.

        Raises
        ------
        ValueError
            If the mapping contains unknown settings
        """
        known_settings = {field.name for field in dataclasses.fields(PoolSettings)}
        unknown_settings = set(settings) - known_settings
        if unknown_settings:
            raise ValueError(f"Unknown pool settings: {sorted(unknown_settings)}. Allowed are {sorted(known_settings)}")
        return PoolSettings(**settings)


@dataclasses.dataclass
class _PooledConnection:
    db: Database
    returned_at: float


class Pool:
    """A thread-safe pool of database connections.

    All connections of the pool are created by the same factory and are therefore connected to the same database. Use
    `create_pool` to build a pool for one of the supported backends.

    Parameters
    ----------
    factory : Callable[[], Database]
        Creates a new connection. The connections should not be registered on the `ConnectionRegistry`, since they are
        managed by the pool.
    settings : Optional[PoolSettings], optional
        Size limits and timeouts. Uses the default settings if omitted.
    debug : bool, optional
        Whether connection creation, validation and eviction should be logged to stderr. Defaults to *False*.

    Notes
    -----
    A single condition variable guards the internal state of the pool. Connections are created, validated and closed
    outside of the lock, which is why slots for connections that are currently being created are reserved beforehand.
    """

    def __init__(self, factory: Callable[[], Database], settings: Optional[PoolSettings] = None, *,
                 debug: bool = False) -> None:
        self._factory = factory
        self._settings = settings or PoolSettings()
        self._log = util.make_logger(debug, prefix=util.timestamp, with_thread=True)
        self._cond = threading.Condition()
        self._idle: list[_PooledConnection] = []  # oldest first, checkouts pop from the end
        self._taken: dict[int, _PooledConnection] = {}
        self._reserved = 0
        self._closed = False

        now = time.monotonic()
        try:
            for _ in range(self._settings.min_size):
                self._idle.append(_PooledConnection(self._create_connection(), now))
        except BaseException:
            self._close_connections([entry.db for entry in self._idle])
            raise
        atexit.register(self.close)

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    @property
    def closed(self) -> bool:
        return self._closed

    def checkout(self, timeout: Optional[float] = None) -> Database:
        """Lends a connection from the pool.

        Idle connections are re-used (most recently returned first). If no connection is idle and the pool has not reached
        its maximum size yet, a new connection is created. Otherwise, the checkout waits until another connection is
        returned. Connections that have been idle for longer than the validation interval are validated first and replaced
        if they turn out to be broken.

        The connection has to be returned by `return_` once it is no longer needed. Prefer the `connection` context
        manager, which takes care of this.

        Parameters
        ----------
        timeout : Optional[float], optional
            The maximum number of seconds to wait for a connection. Defaults to the acquire timeout of the settings.

        Raises
        ------
        PoolExhaustedError
            If no connection became available in time
        util.StateError
            If the pool has been closed
        """
        timeout = self._settings.acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            entry, evicted = self._acquire_slot(deadline)
            self._close_connections(evicted, reason="idle timeout")
            if entry is None:
                return self._checkout_new_connection()

            if time.monotonic() - entry.returned_at <= self._settings.validation_interval:
                return entry.db
            if self._validate(entry.db):
                return entry.db

            with self._cond:
                del self._taken[id(entry.db)]
                self._cond.notify()
            self._close_connections([entry.db], reason="failed validation")

    def return_(self, conn: Database) -> None:
        """Puts a connection back into the pool.

        If the connection is still in a transaction, the transaction is rolled back and a `PoolWarning` is emitted.
        Connections that have been closed by the user, or that are returned after the pool was closed, are discarded.

        Raises
        ------
        ValueError
            If the connection has not been checked out from this pool
        """
        with self._cond:
            entry = self._taken.get(id(conn))
            if entry is None or entry.db is not conn:
                raise ValueError(f"Connection {conn} has not been checked out from this pool")
            # the slot stays reserved while the connection is cleaned up
            del self._taken[id(conn)]
            self._reserved += 1

        try:
            broken = self._clean_up(conn)
        except BaseException:
            with self._cond:
                self._reserved -= 1
                self._cond.notify()
            self._close_connections([conn], reason="failed cleanup")
            raise

        with self._cond:
            self._reserved -= 1
            discard = broken or self._closed
            now = time.monotonic()
            if not discard:
                entry.returned_at = now
                self._idle.append(entry)
            evicted = self._pop_expired(now)
            self._cond.notify()
        if discard:
            self._close_connections([conn], reason="pool closed" if self._closed else "broken connection")
        self._close_connections(evicted, reason="idle timeout")

    @contextlib.contextmanager
    def connection(self, timeout: Optional[float] = None) -> Generator[Database, None, None]:
        """Lends a connection for the duration of a block.

        Examples
        --------
        >>> with pool.connection() as db:
        ...     db.execute("DELETE FROM sessions WHERE expired")
        """
        conn = self.checkout(timeout)
        try:
            yield conn
        finally:
            self.return_(conn)

    @contextlib.contextmanager
    def transaction(self, timeout: Optional[float] = None) -> Generator[Database, None, None]:
        """Lends a connection and runs the block in a transaction on it. See `Database.transaction`."""
        with self.connection(timeout) as conn, conn.transaction():
            yield conn

    def query(self, query: str | SQL, params: Optional[Parameters] = None) -> pd.DataFrame:
        """Runs a query on one of the pool's connections. See `Database.query`."""
        with self.connection() as conn:
            return conn.query(query, params)

    def execute(self, statement: str | SQL, params: Optional[Parameters] = None) -> int:
        with self.connection() as conn:
            return conn.execute(statement, params)

    def execute_query(self, query: str | SQL, params: Optional[Parameters] = None, *, raw: bool = False) -> Any:
        with self.connection() as conn:
            return conn.execute_query(query, params, raw=raw)

    def run(self, statement: str | SQL, params: Optional[Parameters] = None) -> StatementResult:
        with self.connection() as conn:
            return conn.run(statement, params)

    def read_table(self, table: TableName) -> pd.DataFrame:
        with self.connection() as conn:
            return conn.read_table(table)

    def write_table(self, table: TableName, data: pd.DataFrame | Mapping[str, Sequence[Any]] | Sequence[Mapping[str, Any]],
                    **kwargs: Any) -> None:
        """Writes a table using one of the pool's connections. See `Database.write_table` for the keyword arguments."""
        with self.connection() as conn:
            conn.write_table(table, data, **kwargs)

    def remove_table(self, table: TableName, *, fail_if_missing: bool = True) -> bool:
        with self.connection() as conn:
            return conn.remove_table(table, fail_if_missing=fail_if_missing)

    def list_tables(self) -> list[str]:
        with self.connection() as conn:
            return conn.list_tables()

    def exists_table(self, table: TableName) -> bool:
        with self.connection() as conn:
            return conn.exists_table(table)

    def list_fields(self, table: TableName) -> list[str]:
        with self.connection() as conn:
            return conn.list_fields(table)

    def quote_identifier(self, identifier: TableName) -> str:
        """Quotes an identifier. All backends share the quoting rules, so no connection is checked out."""
        return quote(identifier)

    def quote_literal(self, value: Any) -> str:
        return quote_literal(value)

    def interpolate(self, sql: str | SQL, /, *args: Any, **kwargs: Any) -> SQL:
        """Interpolates values into a SQL template without checking out a connection. See `sql_interpolate`."""
        return sql_interpolate(self, sql, *args, **kwargs)

    def info(self) -> dict:
        """Provides the current utilization of the pool.

        Returns
        -------
        dict
            The number of *free* (idle), *taken* (checked out) and *total* connections, along with the size limits
            *min_size* and *max_size* and whether the pool is *closed*.
        """
        with self._cond:
            free = len(self._idle)
            taken = len(self._taken)
            total = free + taken + self._reserved
        return {
            "free": free,
            "taken": taken,
            "total": total,
            "min_size": self._settings.min_size,
            "max_size": self._settings.max_size,
            "closed": self._closed,
        }

    def close(self) -> None:
        """Closes all idle connections and rejects further checkouts.

        Connections that are still checked out are closed once they are returned. Closing a pool in this situation emits
        a `PoolWarning`. Closing an already closed pool does nothing.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = [entry.db for entry in self._idle]
            self._idle.clear()
            still_taken = len(self._taken)
            self._cond.notify_all()
        atexit.unregister(self.close)
        if still_taken:
            warnings.warn(f"Closing pool while {still_taken} connection(s) are still checked out. They will be closed "
                          "once they are returned.", category=PoolWarning, stacklevel=2)
        self._close_connections(idle, reason="pool closed")

    def _acquire_slot(self, deadline: float) -> tuple[Optional[_PooledConnection], list[Database]]:
        """Determines how a checkout is served, waiting for a returned connection if necessary.

        Returns
        -------
        tuple[Optional[_PooledConnection], list[Database]]
            The idle connection that has been taken, or *None* if a new connection slot was reserved instead. The second
            component contains all connections that have been evicted and still have to be closed.
        """
        with self._cond:
            self._ensure_open()
            evicted = self._pop_expired(time.monotonic())
            while True:
                if self._idle:
                    entry = self._idle.pop()
                    self._taken[id(entry.db)] = entry
                    return entry, evicted
                if self._has_capacity():
                    self._reserved += 1
                    return None, evicted
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolExhaustedError(f"No connection became available within the acquire timeout. All "
                                             f"{self._settings.max_size} connections of {self} are checked out.")
                self._cond.wait(remaining)
                self._ensure_open()

    def _checkout_new_connection(self) -> Database:
        """Fills a reserved slot with a new connection that is directly handed out."""
        try:
            conn = self._create_connection()
        except BaseException:
            with self._cond:
                self._reserved -= 1
                self._cond.notify()
            raise

        now = time.monotonic()
        with self._cond:
            self._reserved -= 1
            pool_closed = self._closed
            if not pool_closed:
                self._taken[id(conn)] = _PooledConnection(conn, now)
            self._cond.notify()
        if pool_closed:
            self._close_connections([conn], reason="pool closed")
            raise util.StateError(f"Pool {self} was closed during checkout")
        return conn

    def _create_connection(self) -> Database:
        conn = self._factory()
        self._log("Opened new pool connection", conn)
        return conn

    def _validate(self, conn: Database) -> bool:
        if conn.closed:
            return False
        try:
            conn.execute_query(self._settings.validation_query)
            return True
        except DatabaseError as e:
            self._log("Validation of", conn, "failed:", e)
            return False

    def _clean_up(self, conn: Database) -> bool:
        """Rolls back an open transaction of a returned connection. Provides whether the connection is broken."""
        if conn.closed:
            return True
        if not conn.in_transaction:
            return False
        warnings.warn(f"Connection {conn} was returned to the pool with an open transaction. Rolling back.",
                      category=PoolWarning, stacklevel=3)
        try:
            conn.rollback()
        except DatabaseError as e:
            self._log("Rollback of returned connection", conn, "failed:", e)
            return True
        return False

    def _pop_expired(self, now: float) -> list[Database]:
        """Removes idle connections above the minimum size that have been unused for too long. Requires the lock."""
        evicted: list[Database] = []
        while (self._idle and self._total_size() > self._settings.min_size
               and now - self._idle[0].returned_at > self._settings.idle_timeout):
            evicted.append(self._idle.pop(0).db)
        return evicted

    def _has_capacity(self) -> bool:
        return self._settings.max_size is None or self._total_size() < self._settings.max_size

    def _total_size(self) -> int:
        return len(self._idle) + len(self._taken) + self._reserved

    def _close_connections(self, connections: Sequence[Database], *, reason: str = "") -> None:
        for conn in connections:
            try:
                conn.close()
            except Exception as e:
                # the connection is discarded anyway
                self._log("Failed to close", conn, ":", e)
            self._log("Closed pool connection", conn, f"({reason})" if reason else "")

    def _ensure_open(self) -> None:
        if self._closed:
            raise util.StateError(f"Pool {self} has been closed already")

    def __enter__(self) -> Pool:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        max_size = "unbounded" if self._settings.max_size is None else self._settings.max_size
        return f"Pool(min_size={self._settings.min_size}, max_size={max_size})"


_InMemoryDatabases = {"sqlite": "database", "duckdb": "db"}
"""Backends that create a private in-memory database if no file is given, along with the parameter that names the file."""


def create_pool(backend: str, *, settings: Optional[PoolSettings] = None, debug: bool = False,
                **connect_params: Any) -> Pool:
    """Builds a pool of connections to one of the supported backends.

    Parameters
    ----------
    backend : str
        The database system, see `db.connect`
    settings : Optional[PoolSettings], optional
        Size limits and timeouts of the pool
    debug : bool, optional
        Whether the pool should log its activity
    **connect_params : Any
        Parameters for the backend's `connect` function. The connections are never registered on the
        `ConnectionRegistry`.

    Examples
    --------
    >>> pool = create_pool("sqlite", database="app.db", settings=PoolSettings(min_size=2, max_size=8))
    """
    if backend.lower() not in db_api.Backends:
        raise ValueError(f"Unknown database backend '{backend}'. Allowed values are {sorted(db_api.Backends)}")
    file_parameter = _InMemoryDatabases.get(backend.lower())
    if file_parameter and str(connect_params.get(file_parameter, ":memory:")) == ":memory:":
        warnings.warn(f"Each connection of a {backend} pool opens its own private in-memory database. Pass a database file "
                      "to share data between the connections.", category=PoolWarning, stacklevel=2)
    connect_params.pop("private", None)
    factory = functools.partial(db_api.connect, backend, private=True, **connect_params)
    return Pool(factory, settings, debug=debug)
