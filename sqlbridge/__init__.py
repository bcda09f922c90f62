"""sqlbridge - uniform access to relational databases for long-running Python applications.

sqlbridge bundles the layers that an application needs to work with relational databases:

- the `db` package provides a DBI-style interface, i.e. one set of operations (*connect, query, write table,
  disconnect*) that works the same for all supported database systems. SQLite, PostgreSQL and DuckDB are supported
  natively, all other systems can be reached through the ODBC bridge in `db.odbc`.
- the `interpolate` module safely inserts values into SQL templates (`sql_interpolate`). String values always have their
  quotes doubled, which prevents SQL injection.
- the `qal` package provides a query-building layer: data manipulation verbs like *filter*, *select*, *mutate* or
  *summarize* are translated into SQL and executed on the database.
- the `pool` module shares a set of connections between the concurrent requests of a server process.
- the `config` module stores connection parameters in named profiles.
- the `util` package contains general utilities, e.g. for logging.

A typical session looks like this:

>>> import sqlbridge as sb
>>> db = sb.connect("sqlite", database="world.db")
>>> db.write_table("city", {"name": ["Berlin", "Paris"], "population": [3_645_000, 2_161_000]})
>>> db.query(sb.sql_interpolate(db, "SELECT * FROM city WHERE name = ?name", name="Berlin"))
>>> sb.qal.tbl(db, "city").filter(sb.qal.col("population") > 3_000_000).collect()
>>> db.disconnect()

Most of the modules are available directly from the main package, so generally you just need to ``import sqlbridge as sb``.
The command line front-end is available as ``python -m sqlbridge``.
"""

from . import config, db, pool, qal, util
from ._core import ANSI, SQL, AnsiDialect, Identifier, quote, quote_literal, quote_string
from .config import connect_profile, load_profiles, pool_profile
from .db import (
    ConnectionRegistry,
    Database,
    DatabaseError,
    DatabaseServerError,
    DatabaseUserError,
    UnsupportedDatabaseFeatureError,
    connect,
    current_database,
)
from .interpolate import parse_variables, sql_interpolate
from .pool import Pool, PoolExhaustedError, PoolSettings, PoolWarning, create_pool

__version__ = "0.1.0"

__all__ = [
    "db", "qal", "pool", "config", "util",
    "SQL", "Identifier", "AnsiDialect", "ANSI", "quote", "quote_literal", "quote_string",
    "sql_interpolate", "parse_variables",
    "connect", "current_database", "Database", "ConnectionRegistry",
    "DatabaseError", "DatabaseServerError", "DatabaseUserError", "UnsupportedDatabaseFeatureError",
    "Pool", "PoolSettings", "PoolWarning", "PoolExhaustedError", "create_pool",
    "load_profiles", "connect_profile", "pool_profile",
]
