"""Lazy tables: data manipulation verbs that are translated into a single SQL query.

A `LazyTable` describes a query, but does not execute it. Each verb (`filter`, `select`, `mutate`, ...) produces a new
lazy table that extends the query of its input. Only once the result is actually requested by `collect`, the query is
sent to the database.

Internally, the query is a chain of *SELECT* levels. Each level corresponds to a single *SELECT* statement with its
clauses. Verbs extend the current level as long as the resulting statement still has the intended semantics. Otherwise,
the current level is wrapped as a subquery ``(...) AS q01`` and the verb starts a new level on top of it. This happens in
the following situations:

- a `filter` after a limit, after *DISTINCT*, after an aggregation or on a computed column. The *WHERE* clause is
  evaluated before all of these.
- a `mutate` that references a column which has been computed on the same level
- a `summarize` on a level that contains computed columns, a limit, *DISTINCT* or another aggregation
- an `arrange` after a limit, since the sort order determines which rows are kept
- a `select` (or `distinct` with column names) on a *DISTINCT* level, since dropping columns changes which rows are
  duplicates, as well as a `distinct` after a limit
"""

from __future__ import annotations

import contextlib
import dataclasses
from collections.abc import Generator, Iterable, Mapping, Sequence
from typing import Any, Optional

import pandas as pd

from .. import util
from .._core import ANSI, SQL, Identifier
from ..db._db import Database, TableName
from ._expressions import (
    ColumnExpression,
    CompoundPredicate,
    Dialect,
    FunctionExpression,
    OrderKey,
    SqlExpression,
    as_expression,
    col,
    desc,
)

Source = Any
"""Lazy tables are bound to a `Database` or to a `Pool`."""

Item = tuple[str, SqlExpression]
"""An output column of a *SELECT* clause: its name and its definition."""


@dataclasses.dataclass(frozen=True, eq=False)
class Subquery:
    """A nested *SELECT* level that is used as the *FROM* item of its parent level."""
    level: SelectLevel
    alias: str


@dataclasses.dataclass(frozen=True, eq=False)
class SelectLevel:
    """A single *SELECT* statement of a lazy query.

    Attributes
    ----------
    source : Identifier | SQL | Subquery
        The *FROM* item: a table, a user-supplied query or a nested level
    source_columns : Optional[tuple[str, ...]]
        The columns that are provided by the source, if they are known
    depth : int
        The number of subqueries below this level. Used to generate unique aliases.
    items : Optional[tuple[Item, ...]]
        The output columns and their definitions. *None* selects all columns of the source, i.e. ``SELECT *``.
    star_items : tuple[Item, ...]
        Computed columns that are appended to ``SELECT *``. Only used if the source columns are unknown.
    where : tuple[SqlExpression, ...]
        All filter predicates, combined by *AND*
    group_by : tuple[SqlExpression, ...]
        The grouping expressions of an aggregated level
    aggregated : bool
        Whether the level computes aggregates
    order_by : tuple[OrderKey, ...]
        The sort keys
    distinct : bool
        Whether duplicate rows are removed
    limit : Optional[int]
        The maximum number of rows
    """
    source: Identifier | SQL | Subquery
    source_columns: Optional[tuple[str, ...]] = None
    depth: int = 0
    items: Optional[tuple[Item, ...]] = None
    star_items: tuple[Item, ...] = ()
    where: tuple[SqlExpression, ...] = ()
    group_by: tuple[SqlExpression, ...] = ()
    aggregated: bool = False
    order_by: tuple[OrderKey, ...] = ()
    distinct: bool = False
    limit: Optional[int] = None

    def output_columns(self) -> Optional[tuple[str, ...]]:
        """Provides the names of the columns that this level produces, if they are known."""
        if self.items is not None:
            return tuple(name for name, _ in self.items)
        return self.source_columns

    def computed_columns(self) -> set[str]:
        """Provides all output columns that are not just references to (or renames of) source columns."""
        items = self.star_items if self.items is None else self.items
        return {name for name, expr in items if not isinstance(expr, ColumnExpression)}

    def renamed_columns(self) -> dict[str, SqlExpression]:
        """Maps output columns that are renamed source columns to the corresponding source column."""
        if self.items is None:
            return {}
        return {name: expr for name, expr in self.items if isinstance(expr, ColumnExpression) and expr.name != name}

    def with_explicit_items(self) -> SelectLevel:
        """Replaces ``SELECT *`` by the actual source columns. The source columns have to be known."""
        if self.items is not None:
            return self
        if self.source_columns is None:
            raise util.StateError("Source columns are unknown")
        star_items = dict(self.star_items)
        items = [(name, star_items.pop(name, col(name))) for name in self.source_columns]
        items.extend(star_items.items())
        return dataclasses.replace(self, items=tuple(items), star_items=())

    def wrap(self) -> SelectLevel:
        """Turns this level into a subquery and starts a new level on top of it."""
        depth = self.depth + 1
        return SelectLevel(Subquery(self, f"q{depth:02d}"), source_columns=self.output_columns(), depth=depth)

    def render(self, dialect: Dialect) -> str:
        if self.items is None:
            projection = ", ".join(["*"] + [_render_item(name, expr, dialect) for name, expr in self.star_items])
        else:
            projection = ", ".join(_render_item(name, expr, dialect) for name, expr in self.items)
        distinct = "DISTINCT " if self.distinct else ""
        clauses = [f"SELECT {distinct}{projection}", f"FROM {self.render_source(dialect)}"]
        if self.where:
            clauses.append(f"WHERE {CompoundPredicate.create_and(self.where).render(dialect)}")
        if self.group_by:
            clauses.append(f"GROUP BY {', '.join(expr.render(dialect) for expr in self.group_by)}")
        if self.order_by:
            clauses.append(f"ORDER BY {', '.join(key.render(dialect) for key in self.order_by)}")
        if self.limit is not None:
            clauses.append(f"LIMIT {self.limit}")
        return " ".join(clauses)

    def render_source(self, dialect: Dialect) -> str:
        match self.source:
            case Subquery(level, alias):
                return f"({level.render(dialect)}) AS {alias}"
            case SQL():
                return f"({self.source}) AS q{self.depth:02d}"
            case _:
                return dialect.quote_identifier(self.source)


def _render_item(name: str, expr: SqlExpression, dialect: Dialect) -> str:
    rendered = expr.render(dialect)
    if isinstance(expr, ColumnExpression) and expr.name == name:
        return rendered
    return f"{rendered} AS {dialect.quote_identifier(name)}"


def _column_name(key: str | ColumnExpression) -> str:
    if isinstance(key, ColumnExpression):
        return key.name
    if isinstance(key, str):
        return key
    raise TypeError(f"Expected a column name, got {key!r}")


@contextlib.contextmanager
def _connection_of(source: Source) -> Generator[Database, None, None]:
    """Provides a database connection of a source. Pools lend one of their connections for the duration of the block."""
    if isinstance(source, Database):
        yield source
        return
    with source.connection() as conn:
        yield conn


class LazyTable:
    """A table (or query result) whose rows are computed by the database once they are requested.

    Lazy tables are immutable. All verbs return a new table that extends the query of the current one. Use `tbl` or
    `lazy_table` to create the initial table.

    Parameters
    ----------
    level : SelectLevel
        The outermost *SELECT* level of the query
    source : Optional[Source], optional
        The connection (or pool) that executes the query. Tables without source can only be rendered to SQL.
    groups : Sequence[str], optional
        The grouping columns that are used by the next `summarize` or `count`
    """

    def __init__(self, level: SelectLevel, source: Optional[Source] = None, groups: Sequence[str] = ()) -> None:
        self._level = level
        self._source = source
        self._groups = tuple(groups)

    @property
    def source(self) -> Optional[Source]:
        """Get the connection (or pool) that executes the query. *None* for tables that are only used to generate SQL."""
        return self._source

    @property
    def groups(self) -> tuple[str, ...]:
        """Get the current grouping columns."""
        return self._groups

    @property
    def columns(self) -> list[str]:
        """Get the names of the output columns.

        If the columns are not known from the table definition or the previous verbs, the database is asked for the
        columns of the source table.

        Raises
        ------
        util.StateError
            If the columns are unknown and the table is not bound to a connection
        """
        known_columns = self._level.output_columns()
        if known_columns is not None:
            return list(known_columns)
        return list(self._resolve(self._level, "Determining the columns").output_columns())

    def filter(self, *predicates: SqlExpression) -> LazyTable:
        """Keeps only the rows that satisfy all predicates.

        Grouping does not influence filtering: predicates are always evaluated row by row.
        """
        if not predicates:
            return self
        for predicate in predicates:
            if not isinstance(predicate, SqlExpression):
                raise TypeError(f"Filter predicates must be SQL expressions, got {predicate!r}")
        referenced = _referenced_columns(predicates)
        self._check_columns(referenced)

        level = self._level
        if level.limit is not None or level.distinct or level.aggregated or referenced & level.computed_columns():
            level = level.wrap()
        renames = level.renamed_columns()
        where = tuple(predicate.replace_columns(renames) for predicate in predicates)
        return self._derive(dataclasses.replace(level, where=level.where + where))

    def select(self, *names: str | ColumnExpression, **renames: str) -> LazyTable:
        """Keeps only the given columns. Keyword arguments select and rename columns at the same time (*new=old*).

        Grouping columns are always kept.
        """
        selected = [_column_name(name) for name in names]
        self._check_columns(set(selected) | set(renames.values()))
        level = self._level
        if level.distinct or level.star_items:
            level = level.wrap()
        level_items = dict(level.items) if level.items is not None else {}

        items: list[Item] = []
        output_names = set(selected) | set(renames)
        for group in self._groups:
            if group not in output_names:
                items.append((group, level_items.get(group, col(group))))
        for name in selected:
            items.append((name, level_items.get(name, col(name))))
        for new_name, old_name in renames.items():
            items.append((new_name, level_items.get(old_name, col(old_name))))
        if len({name for name, _ in items}) != len(items):
            raise ValueError(f"Duplicate output columns in selection: {[name for name, _ in items]}")

        groups = [_renamed(group, renames) for group in self._groups]
        return self._derive(dataclasses.replace(level, items=tuple(items)), groups=groups)

    def rename(self, **renames: str) -> LazyTable:
        """Renames columns (*new=old*), keeping all other columns in place."""
        if not renames:
            return self
        self._check_columns(set(renames.values()))
        level = self._level.wrap() if self._level.star_items else self._level
        level = self._resolve(level, "rename")
        old_to_new = {old: new for new, old in renames.items()}
        items = tuple((old_to_new.get(name, name), expr) for name, expr in level.items)
        groups = [_renamed(group, renames) for group in self._groups]
        return self._derive(dataclasses.replace(level, items=items), groups=groups)

    def mutate(self, **expressions: Any) -> LazyTable:
        """Adds computed columns, or replaces existing columns by computed values.

        Non-expression values are inserted as literals. Expressions can reference columns that have been computed by
        earlier arguments of the same call, which nests the query. Grouping does not influence the computation:
        expressions are always evaluated row by row.
        """
        current = self
        for name, value in expressions.items():
            current = current._mutate_column(name, as_expression(value))
        return current

    def group_by(self, *names: str | ColumnExpression) -> LazyTable:
        """Groups the table by some columns. Grouping only affects subsequent `summarize` and `count` verbs."""
        groups = [_column_name(name) for name in names]
        self._check_columns(set(groups))
        return LazyTable(self._level, self._source, groups)

    def ungroup(self) -> LazyTable:
        return LazyTable(self._level, self._source)

    def summarize(self, **aggregates: SqlExpression) -> LazyTable:
        """Computes aggregates for each group (or the entire table if it is not grouped). The result is no longer grouped."""
        if not aggregates:
            raise ValueError("summarize requires at least one aggregate")
        aggregates = {name: as_expression(expr) for name, expr in aggregates.items()}
        self._check_columns(_referenced_columns(aggregates.values()))

        level = self._level
        if level.limit is not None or level.distinct or level.aggregated or level.computed_columns():
            level = level.wrap()
        renames = level.renamed_columns()
        group_exprs = tuple(col(group).replace_columns(renames) for group in self._groups)
        items: list[Item] = list(zip(self._groups, group_exprs))
        items.extend((name, expr.replace_columns(renames)) for name, expr in aggregates.items())
        # ordering is meaningless for the aggregated rows and may reference columns that are no longer available
        summarized = dataclasses.replace(level, items=tuple(items), star_items=(), group_by=group_exprs,
                                         aggregated=True, order_by=())
        return LazyTable(summarized, self._source)

    summarise = summarize

    def arrange(self, *keys: str | SqlExpression | OrderKey) -> LazyTable:
        """Sorts the rows. Strings refer to columns, use `desc` for descending order. Replaces any previous ordering."""
        order_keys = [_order_key(key) for key in keys]
        self._check_columns(_referenced_columns(key.expression for key in order_keys))
        level = self._level.wrap() if self._level.limit is not None else self._level
        return self._derive(dataclasses.replace(level, order_by=tuple(order_keys)))

    def head(self, n: int = 6) -> LazyTable:
        """Keeps only the first `n` rows."""
        if n < 0:
            raise ValueError(f"Number of rows must not be negative, got {n}")
        limit = n if self._level.limit is None else min(n, self._level.limit)
        return self._derive(dataclasses.replace(self._level, limit=limit))

    def distinct(self, *names: str | ColumnExpression) -> LazyTable:
        """Removes duplicate rows. If column names are given, only these columns are kept (in addition to the groups)."""
        current: LazyTable = self
        if current._level.limit is not None:
            current = current._derive(current._level.wrap())
        if names:
            current = current.select(*names)
        return current._derive(dataclasses.replace(current._level, distinct=True))

    def count(self, *names: str | ColumnExpression, name: str = "n", sort: bool = False) -> LazyTable:
        """Counts the rows per group. Groups are formed by the current grouping columns and the given columns.

        Parameters
        ----------
        *names : str | ColumnExpression
            Additional grouping columns
        name : str, optional
            The name of the count column, *n* by default
        sort : bool, optional
            Whether the largest groups should come first. Off by default.
        """
        groups = list(self._groups)
        for group in map(_column_name, names):
            if group not in groups:
                groups.append(group)
        counted = self.group_by(*groups).summarize(**{name: FunctionExpression("COUNT")})
        return counted.arrange(desc(name)) if sort else counted

    def sql(self, dialect: Optional[Dialect] = None) -> SQL:
        """Renders the query.

        Parameters
        ----------
        dialect : Optional[Dialect], optional
            The quoting rules to use. By default, the rules of the bound connection (or pool) are used, or standard SQL if
            the table is not bound. Rendering never checks out a pooled connection.
        """
        if dialect is None:
            dialect = ANSI if self._source is None else self._source
        return SQL(self._level.render(dialect))

    def show_query(self) -> SQL:
        """Prints the query to stdout and returns it."""
        query = self.sql()
        print(query)
        return query

    def collect(self) -> pd.DataFrame:
        """Executes the query and provides the result as a data frame.

        Raises
        ------
        util.StateError
            If the table is not bound to a connection
        """
        if self._source is None:
            raise util.StateError("Cannot collect a table that is not bound to a connection")
        with _connection_of(self._source) as conn:
            return conn.query(self._level.render(conn))

    def _mutate_column(self, name: str, expression: SqlExpression) -> LazyTable:
        referenced = expression.column_names()
        self._check_columns(referenced)
        level = self._level
        sort_columns = _referenced_columns(key.expression for key in level.order_by)
        if referenced & level.computed_columns() or name in sort_columns:
            # ORDER BY would bind to the new definition of the column
            level = level.wrap()
        expression = expression.replace_columns(level.renamed_columns())

        if level.items is None and level.source_columns is None and self._source is None:
            # without any information about the source columns, we can only append to all of them
            star_items = [(column, expr) for column, expr in level.star_items if column != name]
            star_items.append((name, expression))
            return self._derive(dataclasses.replace(level, star_items=tuple(star_items)))

        level = self._resolve(level, "mutate")
        if name in level.output_columns():
            items = tuple((column, expression if column == name else expr) for column, expr in level.items)
        else:
            items = level.items + ((name, expression),)
        return self._derive(dataclasses.replace(level, items=items))

    def _resolve(self, level: SelectLevel, verb: str) -> SelectLevel:
        """Makes sure that the output columns of a level are listed explicitly, asking the connection if necessary."""
        if level.items is not None:
            return level
        if level.source_columns is None:
            if self._source is None:
                raise util.StateError(f"{verb} requires the columns of the table to be known. Use "
                                      "lazy_table(name, columns) or bind the table to a connection.")
            with _connection_of(self._source) as conn:
                empty_result = conn.query(f"SELECT * FROM {level.render_source(conn)} LIMIT 0")
            level = dataclasses.replace(level, source_columns=tuple(str(column) for column in empty_result.columns))
        return level.with_explicit_items()

    def _check_columns(self, names: Iterable[str]) -> None:
        known_columns = self._level.output_columns()
        if known_columns is None:
            return
        unknown = set(names) - set(known_columns) - self._level.computed_columns()
        if unknown:
            raise ValueError(f"Unknown columns {sorted(unknown)}. Available columns are {list(known_columns)}")

    def _derive(self, level: SelectLevel, *, groups: Optional[Sequence[str]] = None) -> LazyTable:
        return LazyTable(level, self._source, self._groups if groups is None else groups)

    def __repr__(self) -> str:
        return f"LazyTable({self.sql(ANSI)})"

    def __str__(self) -> str:
        return str(self.sql(ANSI))


def _referenced_columns(expressions: Iterable[SqlExpression]) -> set[str]:
    referenced: set[str] = set()
    for expression in expressions:
        referenced |= expression.column_names()
    return referenced


def _renamed(column: str, renames: Mapping[str, str]) -> str:
    for new_name, old_name in renames.items():
        if old_name == column:
            return new_name
    return column


def _order_key(key: str | SqlExpression | OrderKey) -> OrderKey:
    match key:
        case OrderKey():
            return key
        case str():
            return OrderKey(col(key))
        case SqlExpression():
            return OrderKey(key)
        case _:
            raise TypeError(f"Cannot sort by {key!r}")


def tbl(source: Source, table: TableName | SQL) -> LazyTable:
    """Creates a lazy table that is bound to a connection (or a pool).

    Parameters
    ----------
    source : Source
        The `Database` or `Pool` that executes the query
    table : TableName | SQL
        The table, either as its name, a (qualified) `Identifier` or an arbitrary query wrapped in `SQL`

    Examples
    --------
    >>> flights = tbl(db, "flights")
    >>> flights.filter(col("dep_delay") > 60).group_by("carrier").summarize(delay=func.avg(col("dep_delay"))).collect()
    """
    if isinstance(table, SQL):
        return LazyTable(SelectLevel(table, depth=1), source)
    return LazyTable(SelectLevel(table if isinstance(table, Identifier) else Identifier(table)), source)


def lazy_table(table: TableName | SQL, columns: Optional[Sequence[str]] = None) -> LazyTable:
    """Creates a lazy table without connection. Such tables can only be used to generate SQL.

    Parameters
    ----------
    table : TableName | SQL
        The table, either as its name, a (qualified) `Identifier` or an arbitrary query wrapped in `SQL`
    columns : Optional[Sequence[str]], optional
        The columns of the table. If they are known, verbs check for references to unknown columns and `mutate` can
        replace existing columns.
    """
    source_columns = tuple(columns) if columns is not None else None
    if isinstance(table, SQL):
        return LazyTable(SelectLevel(table, source_columns=source_columns, depth=1))
    identifier = table if isinstance(table, Identifier) else Identifier(table)
    return LazyTable(SelectLevel(identifier, source_columns=source_columns))
