"""Contains the Postgres implementation of the Database interface.

The connection is established via psycopg (version 3). Use the `connect` function to obtain a connection with a minimum
of configuration: it reads the connect string from different sources, such as configuration files or the standard Postgres
environment variables.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path
from typing import Optional

import psycopg
import psycopg.rows

from .. import util
from ._db import (
    ConnectionRegistry,
    Database,
    DatabaseError,
    DatabaseServerError,
    DatabaseUserError,
    InformationSchema,
)


class PostgresInterface(Database):
    """Database implementation for PostgreSQL servers, based on psycopg 3.

    The connection runs in autocommit mode. Explicit transactions are started with *BEGIN* statements. Server-side
    prepared statements are disabled.

    Parameters
    ----------
    connect_string : str
        A libpq connect string, e.g. *"host=localhost dbname=world user=app"*. An empty string makes libpq read the
        *PG\\** environment variables.
    system_name : str, optional
        Name of this connection in log output and `describe`, by default *Postgres*
    application_name : str, optional
        Reported to the server, where it shows up in *pg_stat_activity* and the server log
    client_encoding : str, optional
        Encoding of the client connection, by default *UTF8*
    debug : bool, optional
        Whether executed statements should be logged. Off by default.
    """

    paramstyle = "format"
    type_names = {
        "bool": "BOOLEAN",
        "int": "BIGINT",
        "float": "DOUBLE PRECISION",
        "datetime": "TIMESTAMP",
        "date": "DATE",
        "time": "TIME",
        "bytes": "BYTEA",
        "str": "TEXT",
    }

    def __init__(self, connect_string: str, system_name: str = "Postgres", *, application_name: str = "sqlbridge",
                 client_encoding: str = "UTF8", debug: bool = False) -> None:
        self.connect_string = connect_string
        self._application_name = application_name or "sqlbridge"
        self._client_encoding = client_encoding
        self._init_connection()
        self._schema = InformationSchema(self)
        super().__init__(system_name, target=self._connection.info.dbname, debug=debug)

    def schema(self) -> InformationSchema:
        return self._schema

    def cursor(self) -> psycopg.Cursor:
        return self._cursor

    def connection(self) -> psycopg.Connection:
        return self._connection

    def database_name(self) -> str:
        self._cursor.execute("SELECT CURRENT_DATABASE();")
        db_name = self._cursor.fetchone()[0]
        return db_name

    def database_system_version(self) -> util.Version:
        # libpq encodes 16.2 as 160002, and releases before 10 use two digits for the minor version (9.6.5 as 90605)
        raw_version = self._connection.info.server_version
        if raw_version >= 100000:
            return util.Version([raw_version // 10000, raw_version % 10000])
        return util.Version([raw_version // 10000, raw_version // 100 % 100, raw_version % 100])

    def backend_pid(self) -> int:
        """Provides the backend process ID of the current connection."""
        return self._connection.info.backend_pid

    def is_valid(self) -> bool:
        if self._closed or self._connection.info.status != psycopg.pq.ConnStatus.OK:
            return False
        return super().is_valid()

    def reset_connection(self) -> None:
        try:
            self._connection.cancel()
            self._cursor.close()
            self._connection.close()
        except psycopg.Error:
            pass
        self._init_connection()
        self._in_transaction = False
        self._closed = False

    def _init_connection(self) -> None:
        """Sets all default connection parameters and creates the actual database cursor."""
        self._connection: psycopg.Connection = psycopg.connect(
            self.connect_string,
            application_name=self._application_name,
            client_encoding=self._client_encoding,
            row_factory=psycopg.rows.tuple_row,
            autocommit=True,
        )
        self._connection.prepare_threshold = None
        self._cursor: psycopg.Cursor = self._connection.cursor()

    def _close_connection(self) -> None:
        self._cursor.close()
        self._connection.close()

    def _begin(self) -> None:
        self._cursor.execute("BEGIN")

    def _commit(self) -> None:
        self._cursor.execute("COMMIT")

    def _rollback(self) -> None:
        self._cursor.execute("ROLLBACK")

    def _classify_error(self, error: Exception) -> Optional[type[DatabaseError]]:
        if isinstance(error, (psycopg.InternalError, psycopg.OperationalError)):
            return DatabaseServerError
        if isinstance(error, psycopg.Error):
            return DatabaseUserError
        return None


def _reconnect(name: str, *, registry: ConnectionRegistry) -> PostgresInterface:
    """Fetches a connection from the registry.

    If the connection is in a bad state (e.g. because the user called close() before), it is re-established.
    """
    current_instance: PostgresInterface = registry.retrieve_database(name)
    if current_instance.closed or current_instance.connection().info.status != psycopg.pq.ConnStatus.OK:
        # There are a lot of ConnStatus values beyond OK and BAD, we simply treat everything that is not OK as broken
        current_instance.reset_connection()
    return current_instance


DefaultConnectFile = ".psycopg_connection"
"""Name of the connect file that is read from the working directory if no other source is given."""

LibpqEnvVars = (
    "PGHOST", "PGHOSTADDR", "PGPORT", "PGDATABASE", "PGUSER", "PGPASSWORD", "PGPASSFILE", "PGSERVICE", "PGSERVICEFILE",
    "PGOPTIONS", "PGAPPNAME", "PGSSLMODE", "PGREQUIRESSL", "PGCONNECT_TIMEOUT", "PGTARGETSESSIONATTRS",
)
"""The libpq environment variables that describe a connection. If any of them is set, libpq is left to connect on its own."""


def _read_connect_file(path: Path) -> str:
    # only the first line counts, everything after it may be used for comments
    connect_string = path.read_text().partition("\n")[0].strip()
    if not connect_string:
        raise ValueError(f"Connect file '{path}' does not contain a connect string")
    return connect_string


def read_connect_string(config_file: str | Path = "") -> str:
    """Determines the connect string to a Postgres server.

    The sources are tried in this order:

    1. the `config_file`, if one is given. It has to exist and holds the connect string in its first line.
    2. the file *.psycopg_connection* in the current working directory
    3. the libpq environment variables (*PGHOST*, *PGUSER*, *PGSERVICE*, ..., see `LibpqEnvVars`). In this case an
       empty connect string is returned and libpq reads the variables itself. This is implicit and therefore emits a
       warning.

    Raises
    ------
    ValueError
        If the `config_file` does not exist or none of the sources provides connection information
    """
    if config_file:
        path = Path(config_file)
        if not path.is_file():
            raise ValueError(f"Postgres connect file '{path}' does not exist (working directory is {Path.cwd()})")
        return _read_connect_file(path)

    default_file = Path(DefaultConnectFile)
    if default_file.is_file():
        return _read_connect_file(default_file)

    if any(os.getenv(var) for var in LibpqEnvVars):
        warnings.warn("No connect string given, connecting via the PG* environment variables")
        return ""

    raise ValueError("No Postgres connection information found. Pass a connect_string or config_file to connect(), "
                     f"put a {DefaultConnectFile} file into the working directory or set the PG* environment variables.")


def connect(*, name: str = "postgres", application_name: str = "sqlbridge", connect_string: str = "",
            config_file: str | Path = "", encoding: str = "UTF8", refresh: bool = False, private: bool = False,
            debug: bool = False) -> PostgresInterface:
    """Connects to a Postgres server and registers the connection on the `ConnectionRegistry`.

    The connect string is taken from `connect_string` if given, otherwise it is determined by `read_connect_string`.
    A connection that is already registered under `name` is re-used (and re-opened if it broke) unless `refresh` or
    `private` is set.

    Parameters
    ----------
    name : str, optional
        Key of the connection on the registry. Defaults to *postgres*.
    application_name : str, optional
        Reported to the server, where it shows up in *pg_stat_activity* and the server log
    connect_string : str, optional
        A libpq connect string. Takes precedence over all other sources.
    config_file : str | Path, optional
        A file whose first line is the connect string
    encoding : str, optional
        Encoding of the client connection. Defaults to *UTF8*.
    refresh : bool, optional
        Always open a new connection, even if one is registered under `name` already
    private : bool, optional
        Neither re-use a registered connection nor register the new one. Pools use private connections.
    debug : bool, optional
        Whether executed statements should be logged

    Returns
    -------
    PostgresInterface
        The connection

    Raises
    ------
    ValueError
        If no connection information could be found

    References
    ----------

    .. Psycopg v3: https://www.psycopg.org/psycopg3/
    .. libpq environment variables: https://www.postgresql.org/docs/current/libpq-envars.html
    """
    registry = ConnectionRegistry.get_instance()
    if name in registry and not refresh and not private:
        return _reconnect(name, registry=registry)

    connect_string = connect_string.strip() if connect_string else read_connect_string(config_file)
    postgres_db = PostgresInterface(connect_string, system_name=name, application_name=application_name,
                                    client_encoding=encoding, debug=debug)
    if not private:
        registry.register_database(name, postgres_db)
    return postgres_db
