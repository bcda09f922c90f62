# We name this file _duckdb instead of duckdb to avoid conflicts with the official duckdb package. Do not change this!
# The module is available in the __init__ of the db package under the duckdb name.
"""Contains the DuckDB implementation of the Database interface."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from .. import util
from ._db import (
    ConnectionRegistry,
    Cursor,
    Database,
    DatabaseError,
    DatabaseServerError,
    DatabaseUserError,
    InformationSchema,
    StatementResult,
)

_ModifyingStatement = re.compile(r"^\s*(INSERT|UPDATE|DELETE|CREATE|DROP|ALTER)\b", re.IGNORECASE)
"""DuckDB reports the number of affected rows of these statements as a result set with a single *Count* column."""


class DuckDBInterface(Database):
    """Database implementation for DuckDB files and in-memory databases.

    Parameters
    ----------
    db : str | Path, optional
        Path to the database file, or *:memory:* (the default) for a private in-memory database
    system_name : str, optional
        Description of the specific DuckDB database, by default *DuckDB*
    read_only : bool, optional
        Whether the database file should be opened in read-only mode. Off by default.
    debug : bool, optional
        Whether additional debug information should be printed during database interaction. Defaults to *False*.
    """

    type_names = {
        "bool": "BOOLEAN",
        "int": "BIGINT",
        "float": "DOUBLE",
        "datetime": "TIMESTAMP",
        "date": "DATE",
        "time": "TIME",
        "bytes": "BLOB",
        "str": "VARCHAR",
    }

    def __init__(self, db: str | Path = ":memory:", *, system_name: str = "DuckDB", read_only: bool = False,
                 debug: bool = False) -> None:
        self._dbfile = str(db)
        self._read_only = read_only
        self._init_connection()
        self._schema = InformationSchema(self)
        super().__init__(system_name, target=self._dbfile, debug=debug)

    def schema(self) -> InformationSchema:
        return self._schema

    def cursor(self) -> Cursor:
        # DuckDB connections implement the cursor interface themselves
        return self._cur

    def connection(self):
        return self._cur

    def database_name(self) -> str:
        self._cur.execute("SELECT CURRENT_DATABASE();")
        db_name = self._cur.fetchone()[0]
        return db_name

    def database_system_version(self) -> util.Version:
        self._cur.execute("SELECT version();")
        return util.Version.parse(self._cur.fetchone()[0])

    def reset_connection(self) -> None:
        import duckdb

        try:
            self._cur.close()
        except duckdb.Error:
            pass
        self._init_connection()
        self._in_transaction = False
        self._closed = False

    def _init_connection(self) -> None:
        import duckdb

        self._cur = duckdb.connect(self._dbfile, read_only=self._read_only)

    def _close_connection(self) -> None:
        self._cur.close()

    def _begin(self) -> None:
        self._cur.begin()

    def _commit(self) -> None:
        self._cur.commit()

    def _rollback(self) -> None:
        self._cur.rollback()

    def _classify_error(self, error: Exception) -> Optional[type[DatabaseError]]:
        import duckdb

        if isinstance(error, (duckdb.InternalError, duckdb.OperationalError)):
            return DatabaseServerError
        if isinstance(error, duckdb.Error):
            return DatabaseUserError
        return None

    def _fetch(self, cursor: Cursor, statement: str) -> StatementResult:
        if cursor.description is None:
            return StatementResult(None, None, -1)
        columns = [desc[0] for desc in cursor.description]
        rows = [tuple(row) for row in cursor.fetchall()]
        if columns == ["Count"] and _ModifyingStatement.match(statement):
            return StatementResult(None, None, int(rows[0][0]) if rows else -1)
        return StatementResult(columns, rows, len(rows))


def connect(db: str | Path = ":memory:", *, name: str = "duckdb", read_only: bool = False, private: bool = False,
            debug: bool = False) -> DuckDBInterface:
    """Convenience function to connect to a DuckDB database.

    After the connection has been obtained, it is registered automatically on the current `ConnectionRegistry`. This can
    be changed via the `private` parameter.

    Parameters
    ----------
    db : str | Path, optional
        Path to the database file, by default a new in-memory database
    name : str, optional
        A name to identify the current connection on the `ConnectionRegistry`. Defaults to *duckdb*.
    read_only : bool, optional
        Whether the database file should be opened in read-only mode
    private : bool, optional
        If true, skips registration of the new instance on the `ConnectionRegistry`. Registration is performed by default.
    debug : bool, optional
        Whether executed statements should be logged
    """
    duckdb_instance = DuckDBInterface(db, read_only=read_only, debug=debug)
    if not private:
        ConnectionRegistry.get_instance().register_database(name, duckdb_instance)
    return duckdb_instance
