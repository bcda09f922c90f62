"""Safe interpolation of values into SQL templates.

Templates use named placeholders of the form ``?name``. Each placeholder is replaced by the SQL literal of its value,
rendered by the quoting rules of the target connection. Since string values always have their single quotes doubled,
user input can never terminate a string literal early and therefore cannot inject additional statements:

>>> sql_interpolate(None, "SELECT * FROM people WHERE name = ?name", name="H'); DROP TABLE--;")
SQL("SELECT * FROM people WHERE name = 'H''); DROP TABLE--;'")

Placeholders are only recognized in the actual statement text. Question marks inside string literals, quoted identifiers
or comments are left alone, as are bare ``?`` markers that drivers use for positional parameters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ._core import ANSI, SQL

_VariableName = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class Quoter(Protocol):
    """Anything that knows how to render literals for a specific database, e.g. a `Database` or a `Pool`."""

    def quote_literal(self, value: Any) -> str:
        ...


@dataclass(frozen=True)
class Placeholder:
    """A ``?name`` placeholder within a SQL template.

    Attributes
    ----------
    name : str
        The variable name, without the leading question mark
    start : int
        Index of the question mark in the template
    end : int
        Index directly after the variable name
    """
    name: str
    start: int
    end: int


def _skip_quoted(sql: str, pos: int, quote_char: str) -> int:
    """Provides the index after the quoted section that starts at `pos`. Doubled quote characters are escapes."""
    cursor = pos + 1
    while True:
        end = sql.find(quote_char, cursor)
        if end < 0:
            raise ValueError(f"Unterminated quoted section starting at position {pos}: {sql[pos:pos + 20]}...")
        if sql.startswith(quote_char * 2, end):
            cursor = end + 2
            continue
        return end + 1


def parse_variables(sql: str) -> list[Placeholder]:
    """Determines all placeholders in a SQL template, in the order in which they appear.

    Parameters
    ----------
    sql : str
        The template

    Returns
    -------
    list[Placeholder]
        The placeholders. The same variable can appear multiple times.

    Raises
    ------
    ValueError
        If the template contains an unterminated string literal, quoted identifier or block comment
    """
    placeholders: list[Placeholder] = []
    pos, n = 0, len(sql)
    while pos < n:
        char = sql[pos]
        if char in ("'", '"'):
            pos = _skip_quoted(sql, pos, char)
        elif sql.startswith("--", pos):
            newline = sql.find("\n", pos)
            pos = n if newline < 0 else newline + 1
        elif sql.startswith("/*", pos):
            end = sql.find("*/", pos + 2)
            if end < 0:
                raise ValueError(f"Unterminated block comment starting at position {pos}")
            pos = end + 2
        elif sql.startswith("??", pos):
            # JSON operators of some systems, never a placeholder
            pos += 2
        elif char == "?":
            match = _VariableName.match(sql, pos + 1)
            if match:
                placeholders.append(Placeholder(match.group(), pos, match.end()))
                pos = match.end()
            else:
                pos += 1
        else:
            pos += 1
    return placeholders


def sql_interpolate(conn: Optional[Quoter], sql: str | SQL, /, *args: Any, **kwargs: Any) -> SQL:
    """Safely substitutes values for the ``?name`` placeholders of a SQL template.

    Parameters
    ----------
    conn : Optional[Quoter]
        The connection whose quoting rules should be used. Can be a `Database`, a `Pool` or *None* for standard SQL
        quoting.
    sql : str | SQL
        The template
    *args : Any
        Values that are bound to the distinct placeholder names in order of their first appearance
    **kwargs : Any
        Values that are bound to the placeholder of the same name

    Returns
    -------
    SQL
        The statement with all placeholders replaced by properly escaped literals

    Raises
    ------
    ValueError
        If a placeholder does not receive a value, if a value is supplied for a placeholder that does not exist, or if a
        placeholder receives a value both by position and by name.

    Examples
    --------
    >>> sql_interpolate(None, "SELECT * FROM City WHERE Name = ?name AND Population > ?pop", name="Hadley", pop=100)
    SQL("SELECT * FROM City WHERE Name = 'Hadley' AND Population > 100")
    >>> sql_interpolate(None, "SELECT ?a + ?b", 1, 2)
    SQL('SELECT 1 + 2')
    """
    quoter = ANSI if conn is None else conn
    template = str(sql)
    placeholders = parse_variables(template)
    names = list(dict.fromkeys(p.name for p in placeholders))

    if len(args) > len(names):
        raise ValueError(f"Supplied {len(args)} positional values, but the template only has {len(names)} "
                         f"placeholders: {names}")
    values: dict[str, Any] = dict(zip(names, args))
    for name, value in kwargs.items():
        if name in values:
            raise ValueError(f"Value for placeholder '?{name}' was supplied both by position and by name")
        values[name] = value

    unknown = [name for name in values if name not in names]
    if unknown:
        raise ValueError(f"Supplied values for unknown placeholders: {unknown}")
    missing = [name for name in names if name not in values]
    if missing:
        raise ValueError(f"Missing values for placeholders: {missing}")

    rendered = {name: quoter.quote_literal(value) for name, value in values.items()}
    parts: list[str] = []
    last = 0
    for placeholder in placeholders:
        parts.append(template[last:placeholder.start])
        parts.append(rendered[placeholder.name])
        last = placeholder.end
    parts.append(template[last:])
    return SQL("".join(parts))
