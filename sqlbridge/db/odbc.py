"""Contains the ODBC bridge of the Database interface.

The bridge talks to any database system that provides an ODBC driver, such as SQL Server, Oracle, Snowflake or Db2.
Connections are established through `pyodbc` and the platform's ODBC driver manager (unixODBC or the Windows driver
manager). All `Database` operations work the same as for the native backends. However, since sqlbridge does not translate
SQL dialects, the statements themselves have to be written in the dialect of the target system.

The `pyodbc` package is an optional dependency. It is only imported once an ODBC connection is requested.
"""

from __future__ import annotations

from typing import Any, Optional

from .. import util
from ._db import (
    ConnectionRegistry,
    Cursor,
    Database,
    DatabaseError,
    DatabaseSchema,
    DatabaseServerError,
    DatabaseUserError,
    TableName,
    split_table_name,
)

_SpecialChars = frozenset(";{}=")


def _format_attribute(value: Any) -> str:
    """Renders a single value of an ODBC connection string, bracing it if it contains special characters."""
    text = str(value)
    if any(char in _SpecialChars for char in text) or text != text.strip():
        escaped = text.replace("}", "}}")
        return "{" + escaped + "}"
    return text


def build_connect_string(*, dsn: str = "", driver: str = "", server: str = "", database: str = "", uid: str = "",
                         pwd: str = "", port: Optional[int] = None, **attributes: Any) -> str:
    """Assembles an ODBC connection string from its components.

    Empty components are skipped. Values that contain characters with a special meaning in connection strings (or
    leading/trailing whitespace) are wrapped in braces, with closing braces doubled.

    Parameters
    ----------
    dsn : str, optional
        The name of a data source that is configured in the ODBC driver manager
    driver : str, optional
        The name of the ODBC driver, as reported by `list_drivers`. Braces are added automatically.
    server : str, optional
        The host of the database server
    database : str, optional
        The database to connect to
    uid : str, optional
        The user name
    pwd : str, optional
        The password
    port : Optional[int], optional
        The port of the database server
    **attributes : Any
        Additional driver-specific attributes, e.g. ``TrustServerCertificate="yes"``

    Returns
    -------
    str
        The connection string, e.g. *DRIVER={ODBC Driver 18 for SQL Server};SERVER=localhost;DATABASE=world;*

    Raises
    ------
    ValueError
        If neither a data source nor a driver is given
    """
    if not dsn and not driver:
        raise ValueError("ODBC connections require either a data source name (dsn) or a driver")

    components: dict[str, Any] = {
        "DSN": dsn,
        "DRIVER": "{" + driver.strip("{}") + "}" if driver else "",
        "SERVER": server,
        "PORT": port,
        "DATABASE": database,
        "UID": uid,
        "PWD": pwd,
    }
    components.update(attributes)

    rendered: list[str] = []
    for key, value in components.items():
        if value is None or value == "":
            continue
        formatted = value if key == "DRIVER" else _format_attribute(value)
        rendered.append(f"{key}={formatted};")
    return "".join(rendered)


def list_drivers() -> list[str]:
    """Provides the names of all ODBC drivers that are installed on this machine."""
    import pyodbc

    return sorted(pyodbc.drivers())


def list_data_sources() -> dict[str, str]:
    """Provides all data sources that are configured in the ODBC driver manager, mapped to their drivers."""
    import pyodbc

    return dict(pyodbc.dataSources())


class ODBCInterface(Database):
    """Database implementation for arbitrary ODBC data sources.

    Parameters
    ----------
    connect_string : str
        The ODBC connection string, see `build_connect_string`
    system_name : str, optional
        Description of the database system. By default, the system name is queried from the driver.
    timeout : int, optional
        Login timeout in seconds, *0* (the default) uses the driver's default
    encoding : str, optional
        Text encoding to use for the connection if the driver does not handle unicode properly. By default the driver
        settings are used.
    debug : bool, optional
        Whether additional debug information should be printed during database interaction. Defaults to *False*.
    """

    type_names = {
        "bool": "BOOLEAN",
        "int": "BIGINT",
        "float": "DOUBLE PRECISION",
        "datetime": "TIMESTAMP",
        "date": "DATE",
        "time": "TIME",
        "bytes": "VARBINARY(8000)",
        "str": "VARCHAR(255)",
    }

    def __init__(self, connect_string: str, *, system_name: str = "", timeout: int = 0, encoding: str = "",
                 debug: bool = False) -> None:
        self.connect_string = connect_string
        self._timeout = timeout
        self._encoding = encoding
        self._init_connection()
        self._schema = ODBCSchema(self)
        super().__init__(system_name or self._info("SQL_DBMS_NAME"), target=self._info("SQL_DATA_SOURCE_NAME"),
                         debug=debug)

    def schema(self) -> ODBCSchema:
        return self._schema

    def cursor(self) -> Cursor:
        return self._cursor

    def connection(self):
        return self._connection

    def database_name(self) -> str:
        return self._info("SQL_DATABASE_NAME")

    def database_system_version(self) -> util.Version:
        return util.Version.parse(self._info("SQL_DBMS_VER"))

    def reset_connection(self) -> None:
        import pyodbc

        try:
            self._cursor.close()
            self._connection.close()
        except pyodbc.Error:
            pass
        self._init_connection()
        self._in_transaction = False
        self._closed = False

    def _info(self, info_type: str) -> str:
        """Queries the driver for metadata, `info_type` is the name of a *SQLGetInfo* constant."""
        import pyodbc

        with self._driver_errors(f"SQLGetInfo({info_type})"):
            return str(self._connection.getinfo(getattr(pyodbc, info_type)) or "")

    def _init_connection(self) -> None:
        import pyodbc

        self._connection = pyodbc.connect(self.connect_string, autocommit=True, timeout=self._timeout)
        if self._encoding:
            self._connection.setdecoding(pyodbc.SQL_CHAR, encoding=self._encoding)
            self._connection.setdecoding(pyodbc.SQL_WCHAR, encoding=self._encoding)
            self._connection.setencoding(encoding=self._encoding)
        self._cursor = self._connection.cursor()

    def _close_connection(self) -> None:
        self._cursor.close()
        self._connection.close()

    def _begin(self) -> None:
        self._connection.autocommit = False

    def _commit(self) -> None:
        try:
            self._connection.commit()
        finally:
            self._connection.autocommit = True

    def _rollback(self) -> None:
        try:
            self._connection.rollback()
        finally:
            self._connection.autocommit = True

    def _classify_error(self, error: Exception) -> Optional[type[DatabaseError]]:
        import pyodbc

        if isinstance(error, (pyodbc.OperationalError, pyodbc.InternalError)):
            return DatabaseServerError
        if isinstance(error, pyodbc.Error):
            return DatabaseUserError
        return None


class ODBCSchema(DatabaseSchema):
    """Schema information based on the ODBC catalog functions *SQLTables* and *SQLColumns*."""

    def __init__(self, db: ODBCInterface) -> None:
        super().__init__(db)

    def tables(self, *, include_system_tables: bool = False) -> list[str]:
        table_types = "TABLE,VIEW,SYSTEM TABLE" if include_system_tables else "TABLE,VIEW"
        rows = self._catalog("SQLTables", lambda cur: cur.tables(tableType=table_types))
        return sorted({row.table_name for row in rows})

    def columns(self, table: TableName) -> list[str]:
        schema, name = split_table_name(table)
        rows = self._catalog("SQLColumns", lambda cur: cur.columns(table=name, schema=schema))
        return [row.column_name for row in rows]

    def is_view(self, table: TableName) -> bool:
        schema, name = split_table_name(table)
        rows = self._catalog("SQLTables", lambda cur: cur.tables(table=name, schema=schema))
        if not rows:
            raise ValueError(f"Table {table} does not exist")
        return rows[0].table_type == "VIEW"

    def has_table(self, table: TableName) -> bool:
        schema, name = split_table_name(table)
        rows = self._catalog("SQLTables", lambda cur: cur.tables(table=name, schema=schema))
        return len(rows) > 0

    def _catalog(self, function: str, call) -> list:
        """Runs a catalog function on the connection's cursor and fetches its complete result."""
        self._db._ensure_open()
        with self._db._driver_errors(function):
            return call(self._db.cursor()).fetchall()


def connect(*, dsn: str = "", driver: str = "", server: str = "", database: str = "", uid: str = "", pwd: str = "",
            port: Optional[int] = None, connect_string: str = "", timeout: int = 0, encoding: str = "",
            name: str = "odbc", private: bool = False, debug: bool = False, **attributes: Any) -> ODBCInterface:
    """Convenience function to connect to a database through its ODBC driver.

    Either a complete `connect_string` is supplied, or it is assembled from the individual components by
    `build_connect_string`. After the connection has been obtained, it is registered automatically on the current
    `ConnectionRegistry`. This can be changed via the `private` parameter.

    Parameters
    ----------
    dsn, driver, server, database, uid, pwd, port
        Components of the connection string, see `build_connect_string`
    connect_string : str, optional
        A complete ODBC connection string. Supplying this parameter overwrites all other components.
    timeout : int, optional
        Login timeout in seconds
    encoding : str, optional
        Text encoding for drivers that do not handle unicode properly
    name : str, optional
        A name to identify the current connection on the `ConnectionRegistry`. Defaults to *odbc*.
    private : bool, optional
        If true, skips registration of the new instance on the `ConnectionRegistry`. Registration is performed by default.
    debug : bool, optional
        Whether executed statements should be logged
    **attributes : Any
        Additional driver-specific attributes for the connection string

    Examples
    --------
    >>> odbc.connect(driver="ODBC Driver 18 for SQL Server", server="localhost", database="world", uid="sa", pwd="...")
    >>> odbc.connect(dsn="warehouse")
    """
    if not connect_string:
        connect_string = build_connect_string(dsn=dsn, driver=driver, server=server, database=database, uid=uid, pwd=pwd,
                                              port=port, **attributes)
    odbc_db = ODBCInterface(connect_string, timeout=timeout, encoding=encoding, debug=debug)
    if not private:
        ConnectionRegistry.get_instance().register_database(name, odbc_db)
    return odbc_db
