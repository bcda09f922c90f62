"""The query abstraction layer (qal) translates data manipulation verbs into SQL queries that run on the database.

Instead of writing SQL by hand, queries are composed from verbs on a `LazyTable`:

>>> flights = qal.tbl(db, "flights")
>>> delays = (flights
...           .filter(qal.col("dep_delay") > 0)
...           .group_by("carrier")
...           .summarize(mean_delay=qal.func.avg(qal.col("dep_delay")), flights=qal.func.n())
...           .arrange(qal.desc("mean_delay")))
>>> delays.show_query()
SELECT carrier, AVG(dep_delay) AS mean_delay, COUNT(*) AS flights FROM flights WHERE dep_delay > 0 GROUP BY carrier ORDER BY mean_delay DESC
>>> delays.collect()  # runs the query and provides a data frame

The qal is structured around two concepts: SQL expressions (see `SqlExpression` and its subclasses) describe
computations on columns. They are created by `col`, `lit` and `func` and combined by the usual Python operators.
Lazy tables (see `LazyTable`) combine such expressions to entire queries.

Lazy tables do not translate between SQL dialects. All queries are rendered in standard SQL, only identifiers and literals
are quoted according to the rules of the bound connection.
"""

from ._builder import LazyTable, SelectLevel, Subquery, lazy_table, tbl
from ._expressions import (
    AggregateFunctions,
    BetweenPredicate,
    ColumnExpression,
    ComparisonPredicate,
    CompoundOperators,
    CompoundPredicate,
    Dialect,
    FunctionExpression,
    FunctionFactory,
    InPredicate,
    LogicalSqlOperators,
    MathematicalExpression,
    MathematicalSqlOperators,
    OrderKey,
    SqlExpression,
    StarExpression,
    StaticValueExpression,
    UnaryPredicate,
    as_expression,
    col,
    desc,
    func,
    lit,
)

__all__ = [
    "LazyTable",
    "SelectLevel",
    "Subquery",
    "tbl",
    "lazy_table",
    "Dialect",
    "SqlExpression",
    "ColumnExpression",
    "StaticValueExpression",
    "StarExpression",
    "MathematicalExpression",
    "FunctionExpression",
    "ComparisonPredicate",
    "UnaryPredicate",
    "BetweenPredicate",
    "InPredicate",
    "CompoundPredicate",
    "OrderKey",
    "MathematicalSqlOperators",
    "LogicalSqlOperators",
    "CompoundOperators",
    "AggregateFunctions",
    "FunctionFactory",
    "as_expression",
    "col",
    "lit",
    "desc",
    "func",
]
