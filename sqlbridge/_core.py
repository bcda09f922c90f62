"""Basic building blocks to safely render identifiers and values as SQL text."""

from __future__ import annotations

import decimal
import math
import numbers
import re
from collections import UserString
from datetime import date, datetime, time
from typing import Any

from .util import df as df_util

_IdentifierPattern = re.compile(r"^[a-z_][a-z0-9_\$]*$")
"""Regular expression to check for valid identifiers.

In line with Postgres' way of name resolution, we only permit identifiers with lower case characters. This forces all
identifiers which contain at least one upper case character to be quoted.

References
----------
- Postgres documentation on identifiers: https://www.postgresql.org/docs/current/sql-syntax-lexical.html#SQL-SYNTAX-IDENTIFIERS
"""

SqlKeywords = frozenset(
    {
        "ALL", "AND", "ANY", "ARRAY", "AS", "ASC", "ASYMMETRIC", "AT", "BETWEEN", "BINARY", "BOTH", "BY", "CASE", "CAST",
        "CHECK", "COLLATE", "COLUMN", "CONSTRAINT", "CREATE", "CROSS", "CURRENT_CATALOG", "CURRENT_DATE",
        "CURRENT_ROLE", "CURRENT_SCHEMA", "CURRENT_TIME", "CURRENT_TIMESTAMP", "CURRENT_USER", "DEFAULT", "DEFERRABLE",
        "DELETE", "DESC", "DISTINCT", "DO", "DROP", "ELSE", "END", "EXCEPT", "EXISTS", "FALSE", "FETCH", "FOR",
        "FOREIGN", "FROM", "FULL", "GRANT", "GROUP", "HAVING", "ILIKE", "IN", "INDEX", "INITIALLY", "INNER", "INSERT",
        "INTERSECT", "INTO", "IS", "JOIN", "KEY", "LATERAL", "LEADING", "LEFT", "LIKE", "LIMIT", "LOCALTIME",
        "LOCALTIMESTAMP", "NATURAL", "NOT", "NULL", "OFFSET", "ON", "ONLY", "OR", "ORDER", "OUTER", "OVERLAPS",
        "PLACING", "PRIMARY", "REFERENCES", "RETURNING", "RIGHT", "SELECT", "SESSION_USER", "SET", "SIMILAR", "SOME",
        "SYMMETRIC", "TABLE", "THEN", "TO", "TRAILING", "TRUE", "UNION", "UNIQUE", "UPDATE", "USER", "USING", "VALUES",
        "VARIADIC", "VERBOSE", "WHEN", "WHERE", "WINDOW", "WITH",
    }
)
"""An (probably incomplete) list of reserved SQL keywords that must be quoted before being used as identifiers."""


class SQL(UserString):
    """Marks a piece of text as SQL that is inserted verbatim, without any quoting.

    Wrapping user input in `SQL` disables all protection against SQL injection. Only use it for trusted fragments, such as
    statements that have been produced by `sql_interpolate` already.
    """

    def __repr__(self) -> str:
        return f"SQL({self.data!r})"


class Identifier:
    """Marks a (possibly qualified) table or column name that has to be quoted as an identifier.

    Parameters
    ----------
    *parts : str
        The components of the name, e.g. ``Identifier("public", "City")`` for the *City* table in the *public* schema.
    """

    def __init__(self, *parts: str) -> None:
        if not parts or not all(parts):
            raise ValueError("Identifiers require at least one non-empty name component")
        self.parts = tuple(parts)

    __match_args__ = ("parts",)

    @property
    def name(self) -> str:
        """Get the unqualified name, i.e. the last component of the identifier."""
        return self.parts[-1]

    def __hash__(self) -> int:
        return hash(self.parts)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, type(self)) and self.parts == other.parts

    def __repr__(self) -> str:
        return f"Identifier({', '.join(repr(p) for p in self.parts)})"

    def __str__(self) -> str:
        return ".".join(quote(part) for part in self.parts)


def quote(identifier: str | Identifier) -> str:
    """Quotes an identifier if necessary.

    Valid identifiers can be used as-is, e.g. *title* or *movie_id*. Invalid identifiers will be wrapped in double
    quotes, such as *"movie title"* or *"City"*. Double quotes that are part of the identifier are doubled.

    Parameters
    ----------
    identifier : str | Identifier
        The identifier to quote. Note that empty strings are treated as valid identifiers. Qualified `Identifier` instances
        are quoted component-wise.

    Returns
    -------
    str
        The identifier, potentially wrapped in quotes.
    """
    if isinstance(identifier, Identifier):
        return str(identifier)
    if not identifier:
        return ""
    valid_identifier = (
        _IdentifierPattern.fullmatch(identifier)
        and identifier.upper() not in SqlKeywords
    )
    if valid_identifier:
        return identifier
    escaped = identifier.replace('"', '""')
    return f'"{escaped}"'


def quote_string(text: str) -> str:
    """Wraps text in single quotes, doubling every single quote that is part of the text.

    This is the central escaping rule that prevents user input from terminating a string literal early:
    ``Hadley`` becomes ``'Hadley'`` and ``H'); DROP TABLE--;`` becomes ``'H''); DROP TABLE--;'``.
    """
    escaped = text.replace("'", "''")
    return f"'{escaped}'"


def quote_literal(value: Any) -> str:
    """Renders a Python value as a SQL literal.

    Parameters
    ----------
    value : Any
        The value to render. Supported are *None* (and missing values such as *NaN*), booleans, numbers (including numpy
        scalars), strings, dates and times, binary data, `SQL` fragments, `Identifier` instances and collections of
        these values. Collections are rendered as comma-separated lists, e.g. for *IN* predicates.

    Returns
    -------
    str
        The SQL literal

    Raises
    ------
    ValueError
        If the value is an infinite number, which has no portable SQL representation
    TypeError
        If the value has an unsupported type
    """
    match value:
        case SQL():
            return str(value)
        case Identifier():
            return quote(value)
        case list() | tuple() | set() | frozenset():
            if not value:
                raise ValueError("Cannot render an empty collection as SQL literal")
            return ", ".join(quote_literal(v) for v in value)

    value = df_util.to_python(value)
    match value:
        case None:
            return "NULL"
        case bool():
            return "TRUE" if value else "FALSE"
        case numbers.Integral():
            return str(int(value))
        case float():
            if math.isinf(value):
                raise ValueError(f"Cannot render infinite value {value} as SQL literal")
            return repr(value)
        case decimal.Decimal():
            if value.is_nan():
                return "NULL"
            if value.is_infinite():
                raise ValueError(f"Cannot render infinite value {value} as SQL literal")
            return str(value)
        case str():
            return quote_string(value)
        case datetime():
            return quote_string(value.isoformat(sep=" "))
        case date() | time():
            return quote_string(value.isoformat())
        case bytes() | bytearray() | memoryview():
            return f"X'{bytes(value).hex().upper()}'"
        case _:
            raise TypeError(f"Cannot render value of type {type(value).__name__} as SQL literal: {value!r}")


class AnsiDialect:
    """Quoting rules of standard SQL, used whenever no database connection is available.

    Database connections provide the same interface, such that all SQL generation can be parameterized with either one.
    """

    def quote_identifier(self, identifier: str | Identifier) -> str:
        return quote(identifier)

    def quote_literal(self, value: Any) -> str:
        return quote_literal(value)

    def __repr__(self) -> str:
        return "AnsiDialect()"


ANSI = AnsiDialect()
