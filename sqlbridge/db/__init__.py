"""The `db` package provides a uniform interface to interact with relational database systems.

The central entrypoint to all database interaction is the abstract `Database` class. It covers the classic *connect,
query, write table, disconnect* cycle, along with transactions, schema introspection and quoting of identifiers and
values. This class is inherited by all supported database systems: SQLite, PostgreSQL and DuckDB are supported natively,
all other systems can be reached through the ODBC bridge. Each backend module provides its own `connect` function, but
the `connect` function of this package dispatches to the correct backend based on its name:

>>> db = sqlbridge.db.connect("sqlite", database="world.db")
>>> db.query("SELECT * FROM city WHERE population > 1000000")

Newly created connections are registered on the `ConnectionRegistry`, which allows other parts of the code base to
retrieve them later on. As long as there is just a single connection, it can be accessed via `current_database`.

If you want to use the ODBC bridge, make sure to install sqlbridge with ODBC support enabled (i.e. the *odbc* extra).
"""

from __future__ import annotations

from typing import Any

from . import _duckdb as duckdb
from . import odbc, postgres, sqlite
from ._db import (
    Connection,
    ConnectionRegistry,
    Cursor,
    Database,
    DatabaseError,
    DatabaseSchema,
    DatabaseServerError,
    DatabaseUserError,
    InformationSchema,
    ResultRow,
    ResultSet,
    StatementResult,
    TableName,
    UnsupportedDatabaseFeatureError,
    current_database,
    simplify_result_set,
)

__all__ = [
    "sqlite",
    "postgres",
    "duckdb",
    "odbc",
    "Cursor",
    "Connection",
    "ResultRow",
    "ResultSet",
    "StatementResult",
    "TableName",
    "Database",
    "DatabaseSchema",
    "InformationSchema",
    "ConnectionRegistry",
    "DatabaseError",
    "DatabaseServerError",
    "DatabaseUserError",
    "UnsupportedDatabaseFeatureError",
    "simplify_result_set",
    "current_database",
    "connect",
    "Backends",
]

Backends = {
    "sqlite": sqlite.connect,
    "postgres": postgres.connect,
    "postgresql": postgres.connect,
    "duckdb": duckdb.connect,
    "odbc": odbc.connect,
}
"""The `connect` functions of all supported backends, indexed by their name."""


def connect(backend: str, **kwargs: Any) -> Database:
    """Opens a new connection to a database system.

    Parameters
    ----------
    backend : str
        The kind of database system. Allowed values are *sqlite*, *postgres* (or *postgresql*), *duckdb* and *odbc*. The
        name is case-insensitive.
    **kwargs : Any
        The connection parameters. These are passed to the `connect` function of the respective backend module as-is.
        Refer to the documentation of those functions for the allowed parameters.

    Returns
    -------
    Database
        The connection

    Raises
    ------
    ValueError
        If the backend is unknown
    """
    connector = Backends.get(backend.lower())
    if connector is None:
        raise ValueError(f"Unknown database backend '{backend}'. Allowed values are {sorted(Backends)}")
    return connector(**kwargs)
