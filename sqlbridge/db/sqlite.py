"""Contains the SQLite implementation of the Database interface.

SQLite is the default database for local development and testing: it ships with Python and works on plain files or
entirely in memory.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Optional

from .. import util
from ._db import (
    ConnectionRegistry,
    Database,
    DatabaseError,
    DatabaseSchema,
    DatabaseServerError,
    DatabaseUserError,
    TableName,
    split_table_name,
)

_ServerErrorCodes = frozenset({
    sqlite3.SQLITE_BUSY,
    sqlite3.SQLITE_LOCKED,
    sqlite3.SQLITE_IOERR,
    sqlite3.SQLITE_CORRUPT,
    sqlite3.SQLITE_FULL,
    sqlite3.SQLITE_CANTOPEN,
    sqlite3.SQLITE_NOTADB,
})
"""Primary result codes that are caused by the database file or by concurrent connections rather than by the statement."""


class SQLiteInterface(Database):
    """Database implementation for SQLite files and in-memory databases.

    The connection runs in autocommit mode, transactions are started explicitly by `begin`. The connection may be handed
    between threads (e.g. by a `Pool`), but must not be used by multiple threads at the same time.

    Parameters
    ----------
    database : str | Path, optional
        Path to the database file, or *:memory:* (the default) for a private in-memory database
    system_name : str, optional
        Description of the specific SQLite database, by default *SQLite*
    timeout : float, optional
        How many seconds to wait for a lock held by another connection before failing, by default 5 seconds
    debug : bool, optional
        Whether additional debug information should be printed during database interaction. Defaults to *False*.
    """

    type_names = {
        "bool": "BOOLEAN",
        "int": "INTEGER",
        "float": "REAL",
        "datetime": "TIMESTAMP",
        "date": "DATE",
        "time": "TIME",
        "bytes": "BLOB",
        "str": "TEXT",
    }

    def __init__(self, database: str | Path = ":memory:", *, system_name: str = "SQLite", timeout: float = 5.0,
                 debug: bool = False) -> None:
        self._database = str(database)
        self._timeout = timeout
        self._init_connection()
        self._schema = SQLiteSchema(self)
        super().__init__(system_name, target=self._database, debug=debug)

    def schema(self) -> SQLiteSchema:
        return self._schema

    def cursor(self) -> sqlite3.Cursor:
        return self._cursor

    def connection(self) -> sqlite3.Connection:
        return self._connection

    def database_name(self) -> str:
        return self._database

    def database_system_version(self) -> util.Version:
        return util.Version(sqlite3.sqlite_version)

    def reset_connection(self) -> None:
        try:
            self._cursor.close()
            self._connection.close()
        except sqlite3.Error:
            pass
        self._init_connection()
        self._in_transaction = False
        self._closed = False

    def _init_connection(self) -> None:
        """Opens the database file and creates the actual database cursor."""
        self._connection = sqlite3.connect(self._database, timeout=self._timeout, isolation_level=None,
                                           check_same_thread=False)
        self._cursor = self._connection.cursor()

    def _close_connection(self) -> None:
        self._cursor.close()
        self._connection.close()

    def _begin(self) -> None:
        self._cursor.execute("BEGIN")

    def _commit(self) -> None:
        self._connection.commit()

    def _rollback(self) -> None:
        self._connection.rollback()

    def _classify_error(self, error: Exception) -> Optional[type[DatabaseError]]:
        if not isinstance(error, sqlite3.Error):
            return None
        # extended result codes carry the primary code in their lowest byte
        error_code = getattr(error, "sqlite_errorcode", None)
        if error_code is not None and (error_code & 0xFF) in _ServerErrorCodes:
            return DatabaseServerError

        # SQLite reports syntax errors and missing tables as OperationalError as well
        if isinstance(error, (sqlite3.OperationalError, sqlite3.ProgrammingError, sqlite3.IntegrityError,
                              sqlite3.DataError, sqlite3.InterfaceError, sqlite3.NotSupportedError)):
            return DatabaseUserError
        return DatabaseServerError

    def _adapt_value(self, value: Any) -> Any:
        # the default datetime adapters of the sqlite3 module are deprecated, so we store ISO strings ourselves
        match value:
            case datetime():
                return value.isoformat(sep=" ")
            case date() | time():
                return value.isoformat()
            case _:
                return value


class SQLiteSchema(DatabaseSchema):
    """Schema information based on SQLite's *sqlite_master* catalog. Temporary tables are included."""

    def __init__(self, db: SQLiteInterface) -> None:
        super().__init__(db)

    def tables(self, *, include_system_tables: bool = False) -> list[str]:
        query = """
            SELECT name FROM sqlite_master WHERE type IN ('table', 'view')
            UNION
            SELECT name FROM sqlite_temp_master WHERE type IN ('table', 'view')
            ORDER BY name"""
        tables = [row[0] for row in self._db.execute_query(query, raw=True)]
        if include_system_tables:
            return tables
        return [table for table in tables if not table.startswith("sqlite_")]

    def columns(self, table: TableName) -> list[str]:
        schema, name = split_table_name(table)
        pragma = f"PRAGMA {self._db.quote_identifier(schema)}.table_info" if schema else "PRAGMA table_info"
        result_set = self._db.execute_query(f"{pragma}({self._db.quote_identifier(name)})", raw=True)
        if result_set is None:
            return []
        return [row[1] for row in result_set]

    def is_view(self, table: TableName) -> bool:
        _, name = split_table_name(table)
        query = """
            SELECT type FROM sqlite_master WHERE name = ? COLLATE NOCASE
            UNION ALL
            SELECT type FROM sqlite_temp_master WHERE name = ? COLLATE NOCASE"""
        result_set = self._db.execute_query(query, (name, name), raw=True)
        if not result_set:
            raise ValueError(f"Table {table} does not exist")
        return result_set[0][0] == "view"

    def has_table(self, table: TableName) -> bool:
        # SQLite resolves table names case-insensitively
        _, name = split_table_name(table)
        return name.lower() in {candidate.lower() for candidate in self.tables(include_system_tables=True)}


def connect(database: str | Path = ":memory:", *, name: str = "sqlite", timeout: float = 5.0, private: bool = False,
            debug: bool = False) -> SQLiteInterface:
    """Convenience function to connect to a SQLite database.

    After the connection has been obtained, it is registered automatically on the current `ConnectionRegistry`. This can
    be changed via the `private` parameter.

    Parameters
    ----------
    database : str | Path, optional
        Path to the database file, by default a new in-memory database. The file is created if it does not exist.
    name : str, optional
        A name to identify the current connection on the `ConnectionRegistry`. Defaults to *sqlite*.
    timeout : float, optional
        How many seconds to wait for locks held by other connections, by default 5 seconds
    private : bool, optional
        If true, skips registration of the new instance on the `ConnectionRegistry`. Registration is performed by default.
    debug : bool, optional
        Whether executed statements should be logged

    Returns
    -------
    SQLiteInterface
        The SQLite database object
    """
    sqlite_db = SQLiteInterface(database, timeout=timeout, debug=debug)
    if not private:
        ConnectionRegistry.get_instance().register_database(name, sqlite_db)
    return sqlite_db
