"""This module provides sqlbridge's basic interaction with databases.

More specifically, this includes

- an interface to interact with databases in a uniform manner (the `Database` interface). It covers the classic
  *connect, query, write table, disconnect* cycle along with transactions and quoting.
- an interface to retrieve schema information (the `DatabaseSchema` interface), including a default implementation
  for all systems that provide the standard *information_schema* (the `InformationSchema` class)
- a utility to easily obtain database connections that have been opened elsewhere (the `ConnectionRegistry` singleton
  class).

Take a look at the central `Database` class for more details. All concrete database systems need to implement this
interface.
"""

from __future__ import annotations

import abc
import atexit
import contextlib
import math
import time
from collections.abc import Generator, Mapping, Sequence
from datetime import date, datetime
from datetime import time as dt_time
from typing import Any, NamedTuple, Optional, Protocol

import pandas as pd
from pandas.api import types as pdtypes

from .. import util
from .._core import SQL, Identifier, quote, quote_literal
from ..interpolate import sql_interpolate

ResultRow = tuple
"""Simple type alias to denote a single tuple from a result set."""

ResultSet = Sequence[ResultRow]
"""Simple type alias to denote the result relation of a query."""

TableName = str | Identifier
"""Tables can be referenced by their plain name or by a (qualified) identifier."""

Parameters = Sequence[Any] | Mapping[str, Any]
"""Driver-level query parameters, formatted according to the `paramstyle` of the database."""


class Cursor(Protocol):
    """Interface for database cursors that adhere to the Python Database API specification.

    This is not a complete representation and only focuses on the parts of the specification that are important for
    sqlbridge right now. The cursors themselves are supplied by the respective database drivers.

    See PEP 249 for details (https://peps.python.org/pep-0249/)
    """

    description: Optional[Sequence[Sequence[Any]]]
    rowcount: int

    def close(self) -> None:
        ...

    def execute(self, operation: str, parameters: Optional[Parameters] = None) -> Any:
        ...

    def executemany(self, operation: str, seq_of_parameters: Sequence[Parameters]) -> Any:
        ...

    def fetchone(self) -> Optional[ResultRow]:
        ...

    def fetchall(self) -> ResultSet:
        ...


class Connection(Protocol):
    """Interface for database connections that adhere to the Python Database API specification.

    See PEP 249 for details (https://peps.python.org/pep-0249/)
    """

    def close(self) -> None:
        ...

    def cursor(self) -> Cursor:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class StatementResult(NamedTuple):
    """The normalized outcome of a single statement.

    Attributes
    ----------
    columns : Optional[list[str]]
        The column names of the result set, or *None* if the statement did not produce one
    rows : Optional[list[ResultRow]]
        The rows of the result set, or *None* if the statement did not produce one
    rowcount : int
        The number of affected rows as reported by the driver, *-1* if unknown
    """
    columns: Optional[list[str]]
    rows: Optional[list[ResultRow]]
    rowcount: int


def simplify_result_set(result_set: ResultSet) -> Any:
    """Unwraps the structure of small result sets, see `Database.execute_query`.

    A single column is turned into a list of its values and a single row into its tuple. Both rules apply together, so
    a single value is returned as-is. Empty results stay an empty list.

    Examples
    --------
    >>> simplify_result_set([(42, 24)])
    (42, 24)
    >>> simplify_result_set([(1,), (2,)])
    [1, 2]
    >>> simplify_result_set([(42,)])
    42
    >>> simplify_result_set([(1, 2), (3, 4)])
    [(1, 2), (3, 4)]
    """
    rows = list(result_set)
    if not rows:
        return []
    values = [row[0] for row in rows] if len(rows[0]) == 1 else rows
    return values[0] if len(values) == 1 else values


def split_table_name(table: TableName) -> tuple[Optional[str], str]:
    """Provides the schema (if any) and the actual name of a table reference."""
    if isinstance(table, Identifier):
        return (table.parts[-2] if len(table.parts) > 1 else None), table.name
    return None, table


def _error_message(statement: object, error: Exception) -> str:
    return "\n".join([f"At {util.timestamp()}", "For query:", str(statement), "Message:", str(error)])


class Database(abc.ABC):
    """A `Database` is sqlbridge's logical abstraction of a connection to a relational database system.

    Each `Database` instance wraps exactly one driver connection and provides the same high-level operations no matter
    which system is on the other end:

    - executing arbitrary SQL and retrieving the results, either as plain result sets (`execute_query`) or as data frames
      (`query`)
    - running statements that do not produce results (`execute`)
    - reading and writing entire tables from/to data frames (`read_table` and `write_table`)
    - introspecting the logical schema (`list_tables`, `list_fields` and the `schema` interface)
    - explicit transactions (`begin`, `commit`, `rollback` and the `transaction` context manager)
    - quoting identifiers and values for the specific system, as well as safe interpolation of values into SQL templates

    Outside of explicit transactions, every statement is committed immediately.

    Errors that are reported by the driver are translated into `DatabaseUserError` (for mistakes in the statement, such
    as syntax errors or missing tables) and `DatabaseServerError` (for failures of the server itself). The original driver
    error is available as the ``ctx`` attribute.

    Each database management system needs to implement this basic interface. Instances are not safe to be used by multiple
    threads concurrently. Use a `Pool` to share connections between threads.

    Parameters
    ----------
    system_name : str
        The name of the database system for which the connection is established. This is only really important to
        distinguish different instances of the interface in a convenient manner.
    target : str, optional
        A short description of the database that the connection points to, e.g. the file name or host. Used for display
        purposes only.
    debug : bool, optional
        Whether executed statements and transaction boundaries should be logged to stderr. Defaults to *False*.

    Notes
    -----
    When the `__init__` method is called, the connection to the specific database system has to be established already.
    All connections are closed automatically when the interpreter shuts down.
    """

    paramstyle: str = "qmark"
    """The DB-API parameter style of the driver, which determines how driver-level parameters are written."""

    type_names: dict[str, str] = {
        "bool": "BOOLEAN",
        "int": "BIGINT",
        "float": "DOUBLE PRECISION",
        "datetime": "TIMESTAMP",
        "date": "DATE",
        "time": "TIME",
        "bytes": "BLOB",
        "str": "TEXT",
    }
    """SQL types that are used when tables are created from data frames. Keys are the value kinds of `data_type`."""

    def __init__(self, system_name: str, *, target: str = "", debug: bool = False) -> None:
        self.system_name = system_name
        self.debug = debug
        self._target = target
        self._log = util.make_logger(debug, prefix=util.timestamp)
        self._closed = False
        self._in_transaction = False
        self._last_query_runtime = math.nan
        atexit.register(self.close)

    @abc.abstractmethod
    def schema(self) -> DatabaseSchema:
        """Provides access to the underlying schema information of the database.

        Returns
        -------
        DatabaseSchema
            An object implementing the schema interface for the actual database system. This should normally be
            completely stateless.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def cursor(self) -> Cursor:
        """Provides a cursor to execute queries and iterate over result sets manually.

        Statements that are issued directly on the cursor bypass error translation and logging.

        Returns
        -------
        Cursor
            A cursor compatible with the Python DB API specification 2.0 (PEP 249). The specific cursor type depends on
            the concrete database implementation however.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def connection(self) -> Connection:
        """Provides the raw driver connection."""
        raise NotImplementedError

    @abc.abstractmethod
    def database_name(self) -> str:
        """Provides the name of the (physical) database that the database interface is connected to.

        Returns
        -------
        str
            The database name, e.g. *world* or the file name of an embedded database
        """
        raise NotImplementedError

    def database_system_name(self) -> str:
        """Provides the name of the database management system that this interface is connected to.

        Returns
        -------
        str
            The database system name, e.g. *PostgreSQL*
        """
        return self.system_name

    @abc.abstractmethod
    def database_system_version(self) -> util.Version:
        """Returns the release version of the database management system that this interface is connected to."""
        raise NotImplementedError

    @abc.abstractmethod
    def reset_connection(self) -> None:
        """Obtains a new connection for the database. Useful in case the old connection broke.

        Any open transaction of the old connection is lost. Previously obtained cursors are no longer valid.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def _close_connection(self) -> None:
        """Closes the driver connection. Called at most once by `close`."""
        raise NotImplementedError

    @abc.abstractmethod
    def _begin(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _rollback(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _classify_error(self, error: Exception) -> Optional[type[DatabaseError]]:
        """Determines which sqlbridge error corresponds to an exception raised by the driver.

        Returns
        -------
        Optional[type[DatabaseError]]
            `DatabaseServerError` or `DatabaseUserError`, or *None* if the exception did not originate from the driver
            and should be propagated as-is.
        """
        raise NotImplementedError

    def execute_query(self, query: str | SQL, params: Optional[Parameters] = None, *, raw: bool = False) -> Any:
        """Executes the given query and returns the associated result set.

        Parameters
        ----------
        query : str | SQL
            The query to execute
        params : Optional[Parameters], optional
            Driver-level parameters for the query, written according to the `paramstyle` of the database. Use
            `interpolate` for driver-independent placeholders.
        raw : bool, optional
            Whether the result set should be returned as-is. By default, the result set is simplified. Raw mode skips this
            step.

        Returns
        -------
        Any
            Result set of the input query. This is a list of equal-length tuples in the most general case. However, many
            queries do not provide a 2-dimensional result set (e.g. *COUNT(\\*)* queries). In such cases, the nested
            structure of the result set makes it quite cumbersome to use. Therefore, this method tries to simplify the return
            value of the query (if `raw` mode is disabled): if the query returns just a single row, this row is returned
            directly as a tuple. If the query returns just a single column, the values of that column are returned directly
            in a list. Both simplifications are combined, such that a single row of a single value is returned as that value.
            Statements that do not produce a result set at all return *None*.
        """
        result = self._run(query, params)
        if result.rows is None:
            return None
        return result.rows if raw else simplify_result_set(result.rows)

    def query(self, query: str | SQL, params: Optional[Parameters] = None) -> pd.DataFrame:
        """Executes a query and provides its result set as a data frame.

        Parameters
        ----------
        query : str | SQL
            The query to execute
        params : Optional[Parameters], optional
            Driver-level parameters for the query

        Returns
        -------
        pd.DataFrame
            The result set. Column names are taken from the query.

        Raises
        ------
        DatabaseUserError
            If the statement does not produce a result set
        """
        result = self._run(query, params)
        if result.columns is None:
            raise DatabaseUserError(f"Statement did not produce a result set: {query}")
        return pd.DataFrame.from_records(result.rows, columns=result.columns)

    def execute(self, statement: str | SQL, params: Optional[Parameters] = None) -> int:
        """Executes a statement that does not produce a result set, e.g. *INSERT* or *CREATE TABLE*.

        Returns
        -------
        int
            The number of affected rows, or *-1* if the driver does not report this number for the statement.
        """
        return self._run(statement, params).rowcount

    def run(self, statement: str | SQL, params: Optional[Parameters] = None) -> StatementResult:
        """Executes an arbitrary statement and provides its result set (if any) along with the number of affected rows.

        This is useful if it is not known in advance whether a statement produces a result set, e.g. for user input or
        for *INSERT ... RETURNING* statements.
        """
        return self._run(statement, params)

    def read_table(self, table: TableName) -> pd.DataFrame:
        """Provides the entire contents of a table as a data frame."""
        return self.query(f"SELECT * FROM {self.quote_identifier(table)}")

    def write_table(self, table: TableName, data: pd.DataFrame | Mapping[str, Sequence[Any]] | Sequence[Mapping[str, Any]],
                    *, overwrite: bool = False, append: bool = False, field_types: Optional[Mapping[str, str]] = None,
                    temporary: bool = False) -> None:
        """Stores tabular data in a database table.

        If the table does not exist yet, it is created first. Column types are derived from the data (see `data_type`),
        unless they are given explicitly. All work happens in a single transaction, such that a failing insert does not
        leave a half-written table behind. If a transaction is already in progress, the table is written as part of it.

        Parameters
        ----------
        table : TableName
            The target table
        data : pd.DataFrame | Mapping[str, Sequence[Any]] | Sequence[Mapping[str, Any]]
            The data to write. See `util.as_df` for the accepted formats.
        overwrite : bool, optional
            Whether an existing table should be dropped and re-created. Off by default.
        append : bool, optional
            Whether the data should be added to an existing table. Off by default.
        field_types : Optional[Mapping[str, str]], optional
            Explicit SQL types for some or all of the columns
        temporary : bool, optional
            Whether a newly created table should only live as long as the connection. Off by default.

        Raises
        ------
        ValueError
            If both `overwrite` and `append` are set, if the data has no columns or if `field_types` references unknown
            columns
        DatabaseUserError
            If the table exists already and neither `overwrite` nor `append` is set
        """
        if overwrite and append:
            raise ValueError("Cannot overwrite and append to a table at the same time")
        frame = util.as_df(data)
        if frame.columns.empty:
            raise ValueError("Cannot write a table without any columns")
        field_types = dict(field_types or {})
        columns = [str(col) for col in frame.columns]
        unknown_fields = set(field_types) - set(columns)
        if unknown_fields:
            raise ValueError(f"Field types given for unknown columns: {sorted(unknown_fields)}")

        exists = self.exists_table(table)
        if exists and not (overwrite or append):
            raise DatabaseUserError(f"Table {table} exists already. Set overwrite or append to modify it.")

        quoted_table = self.quote_identifier(table)
        with self._implicit_transaction():
            if exists and overwrite:
                self._run(f"DROP TABLE {quoted_table}")
            if not exists or overwrite:
                column_specs = [f"{self.quote_identifier(col)} {field_types.get(col) or self.data_type(frame.iloc[:, idx])}"
                                for idx, col in enumerate(columns)]
                table_kind = "TEMPORARY TABLE" if temporary else "TABLE"
                self._run(f"CREATE {table_kind} {quoted_table} ({', '.join(column_specs)})")
            if len(frame):
                column_list = ", ".join(self.quote_identifier(col) for col in columns)
                placeholders = ", ".join([self.placeholder] * len(columns))
                rows = [tuple(self._adapt_value(util.to_python(value)) for value in row)
                        for row in frame.itertuples(index=False, name=None)]
                self._run(f"INSERT INTO {quoted_table} ({column_list}) VALUES ({placeholders})", rows, many=True)
        self._log("Wrote", len(frame), "rows to table", table)

    def remove_table(self, table: TableName, *, fail_if_missing: bool = True) -> bool:
        """Drops a table.

        Returns
        -------
        bool
            Whether the table was actually dropped. This can only be *False* if `fail_if_missing` is disabled.
        """
        if not fail_if_missing and not self.exists_table(table):
            return False
        self._run(f"DROP TABLE {self.quote_identifier(table)}")
        return True

    def list_tables(self) -> list[str]:
        """Provides the names of all (non-system) tables and views, sorted alphabetically."""
        return sorted(self.schema().tables())

    def exists_table(self, table: TableName) -> bool:
        return self.schema().has_table(table)

    def list_fields(self, table: TableName) -> list[str]:
        """Provides the column names of a table, in the order in which they are defined.

        Raises
        ------
        DatabaseUserError
            If the table does not exist
        """
        columns = self.schema().columns(table)
        if not columns and not self.exists_table(table):
            raise DatabaseUserError(f"Table {table} does not exist")
        return columns

    def begin(self) -> None:
        """Starts an explicit transaction. All following statements are only persisted once `commit` is called.

        Raises
        ------
        util.StateError
            If a transaction is already in progress or the connection has been closed
        """
        self._ensure_open()
        if self._in_transaction:
            raise util.StateError(f"A transaction is already in progress on {self}")
        with self._driver_errors("BEGIN"):
            self._begin()
        self._in_transaction = True
        self._log("BEGIN")

    def commit(self) -> None:
        """Persists all statements of the current transaction."""
        self._ensure_transaction()
        try:
            with self._driver_errors("COMMIT"):
                self._commit()
        finally:
            self._in_transaction = False
        self._log("COMMIT")

    def rollback(self) -> None:
        """Discards all statements of the current transaction."""
        self._ensure_transaction()
        try:
            with self._driver_errors("ROLLBACK"):
                self._rollback()
        finally:
            self._in_transaction = False
        self._log("ROLLBACK")

    @property
    def in_transaction(self) -> bool:
        """Get whether an explicit transaction is currently in progress."""
        return self._in_transaction

    @contextlib.contextmanager
    def transaction(self) -> Generator[Database, None, None]:
        """Runs a block of statements in a single transaction.

        The transaction is committed if the block finishes normally. If the block raises an error, the transaction is
        rolled back and the error is propagated.

        Examples
        --------
        >>> with db.transaction():
        ...     db.execute("INSERT INTO accounts VALUES (1, 100)")
        ...     db.execute("UPDATE totals SET value = value + 100")
        """
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    @property
    def placeholder(self) -> str:
        """Get the marker for positional driver-level parameters."""
        return "%s" if self.paramstyle in ("format", "pyformat") else "?"

    def quote_identifier(self, identifier: TableName) -> str:
        return quote(identifier)

    def quote_literal(self, value: Any) -> str:
        return quote_literal(value)

    def interpolate(self, sql: str | SQL, /, *args: Any, **kwargs: Any) -> SQL:
        """Safely substitutes values for the ``?name`` placeholders of a SQL template. See `sql_interpolate`."""
        return sql_interpolate(self, sql, *args, **kwargs)

    def data_type(self, values: pd.Series) -> str:
        """Determines the SQL type that should be used to store a column of values.

        The value kind is inferred from the dtype of the series. For generic *object* columns, the first non-missing value
        decides. Columns without any values are stored as text.
        """
        if pdtypes.is_bool_dtype(values):
            kind = "bool"
        elif pdtypes.is_integer_dtype(values):
            kind = "int"
        elif pdtypes.is_float_dtype(values):
            kind = "float"
        elif pdtypes.is_datetime64_any_dtype(values):
            kind = "datetime"
        else:
            samples = (util.to_python(value) for value in values)
            sample = next((value for value in samples if value is not None), None)
            match sample:
                case bool():
                    kind = "bool"
                case int():
                    kind = "int"
                case float():
                    kind = "float"
                case datetime():
                    kind = "datetime"
                case date():
                    kind = "date"
                case dt_time():
                    kind = "time"
                case bytes() | bytearray() | memoryview():
                    kind = "bytes"
                case _:
                    kind = "str"
        return self.type_names[kind]

    def is_valid(self) -> bool:
        """Checks, whether the connection is still usable by issuing a trivial query."""
        if self._closed:
            return False
        try:
            self._run("SELECT 1")
            return True
        except (DatabaseServerError, DatabaseUserError):
            return False

    def last_query_runtime(self) -> float:
        """Provides the time in seconds that the last statement took to execute. *NaN* if no statement was executed yet."""
        return self._last_query_runtime

    def describe(self) -> dict:
        """Provides a JSON-serializable representation of the current database connection."""
        return {
            "system_name": self.database_system_name(),
            "system_version": str(self.database_system_version()),
            "database": self.database_name(),
            "tables": self.list_tables(),
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Shuts down the connection to the database. Closing an already closed connection does nothing."""
        if self._closed:
            return
        self._closed = True
        self._in_transaction = False
        atexit.unregister(self.close)
        self._close_connection()
        self._log("Closed connection to", self._target)

    def disconnect(self) -> None:
        """Closes the connection and removes it from the `ConnectionRegistry`."""
        self.close()
        ConnectionRegistry.get_instance().unregister_database(self)

    def _adapt_value(self, value: Any) -> Any:
        """Converts a value into a representation that the driver accepts as a query parameter."""
        return value

    def _fetch(self, cursor: Cursor, statement: str) -> StatementResult:
        """Collects the result of the statement that has just been executed on the cursor."""
        if cursor.description is None:
            return StatementResult(None, None, getattr(cursor, "rowcount", -1))
        columns = [desc[0] for desc in cursor.description]
        rows = [tuple(row) for row in cursor.fetchall()]
        return StatementResult(columns, rows, getattr(cursor, "rowcount", -1))

    def _run(self, statement: str | SQL, params: Optional[Parameters | Sequence[Parameters]] = None, *,
             many: bool = False) -> StatementResult:
        """Executes a single statement and collects its result, translating all driver errors.

        If `many` is set, the statement is executed once for each parameter set in `params` and no result is fetched.
        """
        self._ensure_open()
        statement = str(statement)
        if many:
            self._log("Executing", statement, f"for {len(params)} parameter sets")
        else:
            self._log("Executing", statement if params is None else f"{statement} with {params}")

        cur = self.cursor()
        with self._driver_errors(statement):
            start_time = time.perf_counter_ns()
            if many:
                cur.executemany(statement, params)
            elif params is None:
                cur.execute(statement)
            else:
                cur.execute(statement, params)
            result = StatementResult(None, None, getattr(cur, "rowcount", -1)) if many else self._fetch(cur, statement)
            end_time = time.perf_counter_ns()
        self._last_query_runtime = (end_time - start_time) / 10**9  # convert to seconds
        return result

    @contextlib.contextmanager
    def _driver_errors(self, statement: object) -> Generator[None, None, None]:
        """Translates errors that are raised by the driver within the block into sqlbridge errors."""
        try:
            yield
        except Exception as e:
            error_type = self._classify_error(e)
            if error_type is None:
                raise
            raise error_type(_error_message(statement, e), e) from e

    @contextlib.contextmanager
    def _implicit_transaction(self) -> Generator[None, None, None]:
        """Runs a block in a transaction, unless the user has already started one."""
        if self._in_transaction:
            yield
            return
        with self.transaction():
            yield

    def _ensure_open(self) -> None:
        if self._closed:
            raise util.StateError(f"Connection {self} has been closed already")

    def _ensure_transaction(self) -> None:
        self._ensure_open()
        if not self._in_transaction:
            raise util.StateError(f"No transaction is in progress on {self}")

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"{self._target} @ {self.database_system_name()}"


class DatabaseSchema(abc.ABC):
    """This interface provides access to information about the logical structure of a database.

    Parameters
    ----------
    db : Database
        The database for which the schema information should be read.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    @abc.abstractmethod
    def tables(self, *, include_system_tables: bool = False) -> list[str]:
        """Fetches the names of all tables and views in the database.

        Parameters
        ----------
        include_system_tables : bool, optional
            Whether tables that are part of the system catalog should be included as well. Off by default.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def columns(self, table: TableName) -> list[str]:
        """Fetches the column names of a table, in the order in which they are defined.

        Returns
        -------
        list[str]
            The columns. Empty if the table does not exist.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def is_view(self, table: TableName) -> bool:
        """Checks, whether a table is a view rather than a physical table."""
        raise NotImplementedError

    def has_table(self, table: TableName) -> bool:
        """Checks, whether a table or view of the given name exists."""
        _, name = split_table_name(table)
        return name in self.tables(include_system_tables=True)

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"Database schema of {self._db}"


class InformationSchema(DatabaseSchema):
    """Schema implementation for all database systems that provide the SQL standard *information_schema* views."""

    def tables(self, *, include_system_tables: bool = False) -> list[str]:
        query = "SELECT DISTINCT table_name FROM information_schema.tables"
        if not include_system_tables:
            query += " WHERE table_schema NOT IN ('information_schema', 'pg_catalog')"
        result_set = self._db.execute_query(query + " ORDER BY table_name", raw=True)
        return [row[0] for row in result_set]

    def columns(self, table: TableName) -> list[str]:
        schema, name = split_table_name(table)
        query, params = self._table_filter(
            "SELECT column_name FROM information_schema.columns WHERE table_name = {ph}", schema, name)
        result_set = self._db.execute_query(query + " ORDER BY ordinal_position", params, raw=True)
        return [row[0] for row in result_set]

    def is_view(self, table: TableName) -> bool:
        schema, name = split_table_name(table)
        query, params = self._table_filter(
            "SELECT table_type FROM information_schema.tables WHERE table_name = {ph}", schema, name)
        result_set = self._db.execute_query(query, params, raw=True)
        if not result_set:
            raise ValueError(f"Table {table} does not exist")
        return result_set[0][0] == "VIEW"

    def has_table(self, table: TableName) -> bool:
        schema, name = split_table_name(table)
        query, params = self._table_filter(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = {ph}", schema, name)
        return self._db.execute_query(query, params, raw=True)[0][0] > 0

    def _table_filter(self, template: str, schema: Optional[str], name: str) -> tuple[str, list[str]]:
        ph = self._db.placeholder
        query = template.format(ph=ph)
        params = [name]
        if schema:
            query += f" AND table_schema = {ph}"
            params.append(schema)
        return query, params


class ConnectionRegistry:
    """The connection registry allows different parts of the code base to easily obtain access to a database.

    This is achieved by maintaining one global registry of database connections which is shared by the entire process.
    New connections are registered by the *connect* functions of the backends and can be retrieved via unique keys. As
    long as there is just a single connection, it can be accessed via the `current_database` method.

    Notice that the registry does not manage the life cycle of the connections in any way. Use a `Pool` to share
    connections between concurrent requests.

    The registry implementation follows the singleton pattern. Use the static `get_instance` method to retrieve the
    registry instance. All other functionality is provided based on that instance.

    References
    ----------

    .. Singleton pattern: https://en.wikipedia.org/wiki/Singleton_pattern
    """

    @staticmethod
    def get_instance() -> ConnectionRegistry:
        """Provides access to the singleton registry, creating a new registry instance if necessary."""
        global _DB_REGISTRY
        if _DB_REGISTRY is None:
            _DB_REGISTRY = ConnectionRegistry()
        return _DB_REGISTRY

    def __init__(self) -> None:
        self._registry: dict[str, Database] = {}

    def current_database(self) -> Database:
        """Provides the database that is currently stored in the registry, provided there is just one.

        Raises
        ------
        ValueError
            If there is not exactly one database registered
        """
        if len(self._registry) != 1:
            raise ValueError(f"Expected exactly one registered database, but found {len(self._registry)}: "
                             f"{list(self._registry)}. Pass the connection explicitly instead.")
        return next(iter(self._registry.values()))

    def register_database(self, key: str, db: Database) -> str:
        """Stores a new database in the registry.

        If the key is already taken, it is suffixed with a running number.

        Returns
        -------
        str
            The key under which the database was actually registered
        """
        orig_key = key
        instance_idx = 2
        while key in self._registry:
            key = f"{orig_key} - {instance_idx}"
            instance_idx += 1
        self._registry[key] = db
        return key

    def retrieve_database(self, key: str) -> Database:
        """Provides the database that is registered under a specific key.

        Raises
        ------
        KeyError
            If no database was registered under the given key.
        """
        return self._registry[key]

    def unregister_database(self, db: Database) -> None:
        """Removes all registrations of a database. Databases that were never registered are ignored."""
        for key in [key for key, candidate in self._registry.items() if candidate is db]:
            del self._registry[key]

    def empty(self) -> bool:
        """Checks, whether the registry is currently empty."""
        return len(self._registry) == 0

    def clear(self) -> None:
        """Removes all currently registered databases from the registry. The connections stay open."""
        self._registry.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._registry

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"ConnectionRegistry {self._registry}"


_DB_REGISTRY: Optional[ConnectionRegistry] = None


def current_database() -> Database:
    """Provides the current database from the `ConnectionRegistry`.

    See Also
    --------
    ConnectionRegistry.current_database
    """
    return ConnectionRegistry.get_instance().current_database()


class DatabaseError(RuntimeError):
    """Common base class of all errors that originate from the database driver.

    Parameters
    ----------
    message : str, optional
        A textual description of the error. Can be left empty by default.
    context : Optional[object], optional
        Additional context information for when the error occurred, usually the original driver error. Mainly intended for
        debugging purposes.
    """

    def __init__(self, message: str = "", context: Optional[object] = None) -> None:
        super().__init__(message)
        self.ctx = context


class DatabaseServerError(DatabaseError):
    """Indicates an error caused by the database server occured while executing a database operation.

    The error was **not** due to a mistake in the user input (such as an SQL syntax error or access privilege
    violation), but a problem of the server or the connection instead (such as a lost connection or out of memory).
    """


class DatabaseUserError(DatabaseError):
    """Indicates that a database operation failed due to an error on the user's end.

    The error could be due to an SQL syntax error, a missing table, a constraint violation, etc.
    """


class UnsupportedDatabaseFeatureError(RuntimeError):
    """Indicates that some requested feature is not supported by the database.

    Parameters
    ----------
    database : Database
        The database that was requested to provide the problematic feature
    feature : str
        A textual description for the requested feature
    """

    def __init__(self, database: Database, feature: str) -> None:
        super().__init__(f"Database {database.system_name} does not support feature {feature}")
        self.database = database
        self.feature = feature
