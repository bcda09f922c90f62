"""Command line front-end to quickly inspect a database or run a single statement.

Usage examples::

    python -m sqlbridge --backend sqlite --database world.db tables
    python -m sqlbridge --profile warehouse fields city
    python -m sqlbridge --profile warehouse query "SELECT * FROM city WHERE name = ?name" -p name=Berlin --format csv

Statement parameters are safely interpolated into the statement (see `sql_interpolate`). Their values are parsed as
JSON if possible, such that ``-p id=42`` binds a number and ``-p id='"42"'`` binds a string. All other values are bound
as strings.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from typing import Any, Optional

import pandas as pd

from . import config, util
from . import db as db_api
from .db import Database, DatabaseError

_DatabaseParameter = {
    "sqlite": "database",
    "duckdb": "db",
    "postgres": "connect_string",
    "postgresql": "connect_string",
    "odbc": "connect_string",
}
"""The `connect` parameter of each backend that receives the value of the *--database* option."""


def parse_parameter(assignment: str) -> tuple[str, Any]:
    """Splits a *name=value* assignment of the *-p* option.

    Raises
    ------
    ValueError
        If the assignment does not contain a *=* or the name is empty
    """
    name, sep, raw_value = assignment.partition("=")
    if not sep or not name.strip():
        raise ValueError(f"Parameters have to be given as name=value, got '{assignment}'")
    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value
    return name.strip(), value


def open_connection(args: argparse.Namespace) -> Database:
    """Connects to the database that is described by the command line options."""
    if args.profile:
        return config.connect_profile(args.profile, path=args.config, private=True, debug=args.debug)
    if not args.backend:
        raise ValueError("Either --profile or --backend is required")

    backend = args.backend.lower()
    params: dict[str, Any] = {"private": True, "debug": args.debug}
    if args.database:
        params[_DatabaseParameter[backend]] = args.database
    if args.connect_string:
        if backend not in ("postgres", "postgresql", "odbc"):
            raise ValueError(f"--connect-string is not supported by the {backend} backend")
        params["connect_string"] = args.connect_string
    return db_api.connect(backend, **params)


def print_frame(frame: pd.DataFrame, output_format: str) -> None:
    if output_format == "csv":
        frame.to_csv(sys.stdout, index=False)
    elif frame.empty:
        print(f"(no rows, columns: {', '.join(str(column) for column in frame.columns)})")
    else:
        print(frame.to_string(index=False))


def run_command(db: Database, args: argparse.Namespace) -> None:
    match args.command:
        case "tables":
            for table in db.list_tables():
                print(table)
        case "fields":
            for field in db.list_fields(args.table):
                print(field)
        case "query":
            parameters = dict(parse_parameter(assignment) for assignment in args.param)
            statement = db.interpolate(args.sql, **parameters)
            result = db.run(statement)
            if result.columns is not None:
                print_frame(pd.DataFrame.from_records(result.rows, columns=result.columns), args.format)
            else:
                util.print_if(result.rowcount >= 0, f"{result.rowcount} row(s) affected")
        case _:
            raise ValueError(f"Unknown command '{args.command}'")


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqlbridge", description="Inspect databases and run SQL statements")
    parser.add_argument("--profile", action="store", help="Name of a connection profile from the configuration file")
    parser.add_argument("--config", action="store", help="The configuration file that contains the profiles")
    parser.add_argument("--backend", action="store", choices=sorted(db_api.Backends),
                        help="The database system to connect to (if no profile is used)")
    parser.add_argument("--database", action="store",
                        help="The database file (sqlite, duckdb) or connect string (postgres, odbc)")
    parser.add_argument("--connect-string", action="store", help="Connect string for postgres or ODBC connections")
    parser.add_argument("--debug", action="store_true", default=False, help="Log all executed statements to stderr")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("tables", help="List all tables and views")
    fields_parser = subparsers.add_parser("fields", help="List the columns of a table")
    fields_parser.add_argument("table", action="store", help="The table to describe")
    query_parser = subparsers.add_parser("query", help="Run a single statement")
    query_parser.add_argument("sql", action="store", help="The statement. Parameters are written as ?name.")
    query_parser.add_argument("--param", "-p", action="append", default=[], metavar="NAME=VALUE",
                              help="A value for a ?name parameter of the statement. Can be repeated.")
    query_parser.add_argument("--format", "-f", action="store", choices=["table", "csv"], default="table",
                              help="How to print the result set")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = make_parser()
    args = parser.parse_args(argv)
    try:
        with open_connection(args) as db:
            run_command(db, args)
    except (ValueError, DatabaseError, util.StateError) as e:
        print(f"sqlbridge: error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
