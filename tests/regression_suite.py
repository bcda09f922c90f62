"""Shared assertions and skip conditions for the sqlbridge test suites.

Query results reach the tests in three shapes: simplified result sets of `Database.execute_query` (scalars, lists or
tuples), raw result sets (lists of tuples) and data frames of `Database.query` and `LazyTable.collect`. The assertions
below normalize all of them into lists of plain Python tuples before comparing.
"""
from __future__ import annotations

import os
import unittest
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pandas as pd
import psycopg

from sqlbridge import util
from sqlbridge.db import postgres

OdbcDsnEnvVar = "SQLBRIDGE_TEST_ODBC_DSN"
"""Environment variable that names an ODBC data source for the live ODBC tests."""

Rows = list[tuple[Any, ...]]


def normalize_result_set(result: Any) -> Rows:
    """Turns any result shape into a list of row tuples with plain Python values."""
    if isinstance(result, pd.DataFrame):
        return [tuple(util.to_python(value) for value in row) for row in result.itertuples(index=False, name=None)]
    if isinstance(result, tuple):
        return [result]  # single row
    if not isinstance(result, list):
        return [(result,)]  # single value
    if result and not isinstance(result[0], tuple):
        return [(value,) for value in result]  # single column
    return list(result)


def _describe(rows: Rows) -> str:
    shown = rows if len(rows) <= 5 else rows[:5] + ["..."]
    return f"{len(rows)} rows {shown}"


def _skip_unless(condition: Callable[[], str]) -> Callable:
    reason = condition()
    return unittest.skip(reason) if reason else (lambda test: test)


class DatabaseTestCase(unittest.TestCase):
    """Test case with assertions on the results of actually executed statements."""

    def assertResultSetsEqual(self, expected: Any, actual: Any, *, ordered: bool = False) -> None:
        """Fails if the two results contain different rows.

        Simplified result sets must also agree in their shape, e.g. a scalar does not equal a single-element list. Data
        frames are compared by their rows only. Rows are compared as a multiset unless `ordered` is set.
        """
        frames = isinstance(expected, pd.DataFrame) or isinstance(actual, pd.DataFrame)
        if not frames and type(expected) is not type(actual):
            self.fail(f"Results have different shapes: {expected!r} ({type(expected).__name__}) vs. "
                      f"{actual!r} ({type(actual).__name__})")

        expected_rows, actual_rows = normalize_result_set(expected), normalize_result_set(actual)
        if not ordered:
            expected_rows, actual_rows = sorted(expected_rows, key=repr), sorted(actual_rows, key=repr)
        if expected_rows != actual_rows:
            self.fail(f"Results differ: expected {_describe(expected_rows)}, got {_describe(actual_rows)}")

    def assertFrameMatches(self, frame: pd.DataFrame, expected: Mapping[str, Sequence[Any]], *,
                           ordered: bool = True) -> None:
        """Fails if the data frame does not have exactly the expected columns (in order) and rows.

        The expected data is given column-wise, like the input of `Database.write_table`.
        """
        self.assertEqual(list(expected), list(frame.columns), "Columns differ")
        self.assertResultSetsEqual(pd.DataFrame(dict(expected)), frame, ordered=ordered)


class QueryTestCase(unittest.TestCase):
    """Test case with assertions on generated SQL text."""

    def assertQueriesEqual(self, first_query: Any, second_query: Any, message: str = "") -> None:
        """Fails if the two queries differ in more than whitespace, letter case or a trailing semicolon.

        Anything else, including redundant parentheses, counts as a difference.
        """
        def normalize(query: Any) -> str:
            return " ".join(str(query).strip().removesuffix(";").lower().split())

        self.assertEqual(normalize(first_query), normalize(second_query), message)


def skip_if_no_db(config_file: str | Path) -> Callable:
    """Skips the decorated test (case) if no Postgres server can be reached with the given connect file."""
    def reason() -> str:
        if not Path(config_file).is_file():
            return f"Config file '{config_file}' does not exist"
        try:
            postgres.connect(config_file=config_file, private=True).close()
        except psycopg.OperationalError as e:
            return f"Cannot connect to database with config file '{config_file}': {e}"
        return ""

    return _skip_unless(reason)


def skip_unless_odbc_dsn() -> Callable:
    """Skips the decorated test (case) unless pyodbc is installed and `OdbcDsnEnvVar` names a data source."""
    def reason() -> str:
        if not os.environ.get(OdbcDsnEnvVar):
            return f"No ODBC data source configured in ${OdbcDsnEnvVar}"
        try:
            import pyodbc  # noqa: F401
        except ImportError:
            return "pyodbc is not installed"
        return ""

    return _skip_unless(reason)
