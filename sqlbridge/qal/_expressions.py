"""Expression trees that describe computations on columns, rendered to SQL by the query builder.

Expressions are created from columns (`col`), literal values (`lit`) and function calls (`func`) and are combined using the
normal Python operators. Comparisons produce predicates, which in turn can be combined by ``&``, ``|`` and ``~``:

>>> (col("population") > 1_000_000) & col("country").isin("DEU", "FRA")

Since ``==`` builds a predicate rather than comparing two expressions, expressions cannot be used in a boolean context. Use
`SqlExpression.is_equivalent` to check whether two expressions have the same structure.
"""

from __future__ import annotations

import abc
import enum
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Optional, Protocol

from .._core import ANSI


class Dialect(Protocol):
    """Anything that knows how to quote identifiers and literals, e.g. a `Database` or the `AnsiDialect`."""

    def quote_identifier(self, identifier: str) -> str:
        ...

    def quote_literal(self, value: Any) -> str:
        ...


class MathematicalSqlOperators(enum.Enum):
    """The supported mathematical operators."""
    Add = "+"
    Subtract = "-"
    Multiply = "*"
    Divide = "/"
    Modulo = "%"
    Negate = "NEG"  # unary minus, rendered as a "-" prefix


class LogicalSqlOperators(enum.Enum):
    """The supported comparison operators."""
    Equal = "="
    NotEqual = "<>"
    Less = "<"
    LessEqual = "<="
    Greater = ">"
    GreaterEqual = ">="
    Like = "LIKE"
    NotLike = "NOT LIKE"
    Is = "IS"
    IsNot = "IS NOT"


class CompoundOperators(enum.Enum):
    """The supported boolean connectives."""
    And = "AND"
    Or = "OR"
    Not = "NOT"


AggregateFunctions = frozenset({"COUNT", "SUM", "MIN", "MAX", "AVG"})
"""All aggregate functions specified in standard SQL."""

# operator precedence when rendering nested expressions, higher values bind more tightly
_PrecedenceOr = 1
_PrecedenceAnd = 2
_PrecedenceNot = 3
_PrecedenceComparison = 4
_PrecedenceAdditive = 5
_PrecedenceMultiplicative = 6
_PrecedenceUnary = 7
_PrecedenceAtom = 9


def _hash_value(value: Any) -> int:
    match value:
        case list() | tuple():
            return hash(tuple(_hash_value(v) for v in value))
        case set() | frozenset():
            return hash(frozenset(_hash_value(v) for v in value))
        case bytearray() | memoryview():
            return hash(bytes(value))
    return hash(value)


class SqlExpression(abc.ABC):
    """Base class for all expressions.

    Expressions form hierarchical trees: column references and literal values are the leaves, while operators and function
    calls are the intermediate nodes. For example, ``upper(name) = 'BERLIN'`` is represented as
    ``ComparisonPredicate(FunctionExpression(ColumnExpression), StaticValueExpression)``.

    All expressions are immutable. The concrete hash value is computed once by the implementing class, which has to make sure
    that structurally identical expressions produce the same hash.

    Parameters
    ----------
    hash_val : int
        The hash of the concrete expression object
    """

    precedence: int = _PrecedenceAtom
    """How tightly the expression binds when it is rendered as part of a larger expression."""

    def __init__(self, hash_val: int) -> None:
        self._hash_val = hash_val

    @abc.abstractmethod
    def iterchildren(self) -> Iterable[SqlExpression]:
        """Provides all direct child expressions. Leaf expressions do not have any children."""
        raise NotImplementedError

    @abc.abstractmethod
    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        """Creates a copy of the expression, where all column references that are contained in the `mapping` are replaced.

        This is used to translate references to renamed columns back into references to their source columns.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def render(self, dialect: Dialect) -> str:
        """Produces the SQL text of the expression, using the quoting rules of the given dialect."""
        raise NotImplementedError

    def column_names(self) -> set[str]:
        """Provides the names of all columns that are referenced anywhere in this expression."""
        names: set[str] = set()
        for child in self.iterchildren():
            names |= child.column_names()
        return names

    def is_aggregate(self) -> bool:
        """Checks, whether the expression contains a call to an aggregate function."""
        return any(child.is_aggregate() for child in self.iterchildren())

    def is_equivalent(self, other: object) -> bool:
        """Checks, whether two expressions have the same structure."""
        return isinstance(other, SqlExpression) and type(self) is type(other) and str(self) == str(other)

    def is_null(self) -> UnaryPredicate:
        return UnaryPredicate(LogicalSqlOperators.Is, self)

    def is_not_null(self) -> UnaryPredicate:
        return UnaryPredicate(LogicalSqlOperators.IsNot, self)

    def isin(self, *values: Any) -> InPredicate:
        """Checks for membership in a list of values, e.g. ``col("country").isin("DEU", "FRA")``.

        A single collection of values may be passed instead of the individual values.
        """
        if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
            values = tuple(values[0])
        return InPredicate(self, [as_expression(value) for value in values])

    def like(self, pattern: str) -> ComparisonPredicate:
        return ComparisonPredicate(LogicalSqlOperators.Like, self, as_expression(pattern))

    def not_like(self, pattern: str) -> ComparisonPredicate:
        return ComparisonPredicate(LogicalSqlOperators.NotLike, self, as_expression(pattern))

    def between(self, lower: Any, upper: Any) -> BetweenPredicate:
        return BetweenPredicate(self, as_expression(lower), as_expression(upper))

    def desc(self) -> OrderKey:
        return OrderKey(self, descending=True)

    def asc(self) -> OrderKey:
        return OrderKey(self)

    def _render_operand(self, operand: SqlExpression, dialect: Dialect, *, strict: bool = False) -> str:
        """Renders a child expression, wrapping it in parentheses if it binds less tightly than this expression.

        In `strict` mode, children of the same precedence are wrapped as well. This is necessary for right-hand operands
        of non-associative operators, e.g. ``a - (b - c)``.
        """
        rendered = operand.render(dialect)
        needs_parens = (operand.precedence <= self.precedence if strict else operand.precedence < self.precedence)
        return f"({rendered})" if needs_parens else rendered

    def _compare(self, operator: LogicalSqlOperators, other: Any) -> SqlExpression:
        if other is None and operator in (LogicalSqlOperators.Equal, LogicalSqlOperators.NotEqual):
            null_operator = LogicalSqlOperators.Is if operator == LogicalSqlOperators.Equal else LogicalSqlOperators.IsNot
            return UnaryPredicate(null_operator, self)
        return ComparisonPredicate(operator, self, as_expression(other))

    def __eq__(self, other: Any) -> SqlExpression:  # type: ignore[override]
        return self._compare(LogicalSqlOperators.Equal, other)

    def __ne__(self, other: Any) -> SqlExpression:  # type: ignore[override]
        return self._compare(LogicalSqlOperators.NotEqual, other)

    def __lt__(self, other: Any) -> SqlExpression:
        return self._compare(LogicalSqlOperators.Less, other)

    def __le__(self, other: Any) -> SqlExpression:
        return self._compare(LogicalSqlOperators.LessEqual, other)

    def __gt__(self, other: Any) -> SqlExpression:
        return self._compare(LogicalSqlOperators.Greater, other)

    def __ge__(self, other: Any) -> SqlExpression:
        return self._compare(LogicalSqlOperators.GreaterEqual, other)

    def __add__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Add, self, as_expression(other))

    def __radd__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Add, as_expression(other), self)

    def __sub__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Subtract, self, as_expression(other))

    def __rsub__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Subtract, as_expression(other), self)

    def __mul__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Multiply, self, as_expression(other))

    def __rmul__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Multiply, as_expression(other), self)

    def __truediv__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Divide, self, as_expression(other))

    def __rtruediv__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Divide, as_expression(other), self)

    def __mod__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Modulo, self, as_expression(other))

    def __rmod__(self, other: Any) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Modulo, as_expression(other), self)

    def __neg__(self) -> MathematicalExpression:
        return MathematicalExpression(MathematicalSqlOperators.Negate, self)

    def __and__(self, other: Any) -> CompoundPredicate:
        return CompoundPredicate(CompoundOperators.And, [self, as_expression(other)])

    def __rand__(self, other: Any) -> CompoundPredicate:
        return CompoundPredicate(CompoundOperators.And, [as_expression(other), self])

    def __or__(self, other: Any) -> CompoundPredicate:
        return CompoundPredicate(CompoundOperators.Or, [self, as_expression(other)])

    def __ror__(self, other: Any) -> CompoundPredicate:
        return CompoundPredicate(CompoundOperators.Or, [as_expression(other), self])

    def __invert__(self) -> CompoundPredicate:
        return CompoundPredicate(CompoundOperators.Not, [self])

    def __bool__(self) -> bool:
        raise TypeError("SQL expressions have no truth value. Use & and | instead of 'and' and 'or' to combine predicates "
                        "and is_equivalent() to compare expressions.")

    def __hash__(self) -> int:
        return self._hash_val

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"

    def __str__(self) -> str:
        return self.render(ANSI)


class ColumnExpression(SqlExpression):
    """A reference to a column of the current table. This is a leaf expression.

    Parameters
    ----------
    name : str
        The name of the column
    """

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("Column name cannot be empty")
        self._name = name
        super().__init__(hash(("column", name)))

    @property
    def name(self) -> str:
        return self._name

    def iterchildren(self) -> Iterable[SqlExpression]:
        return []

    def column_names(self) -> set[str]:
        return {self._name}

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return mapping.get(self._name, self)

    def render(self, dialect: Dialect) -> str:
        return dialect.quote_identifier(self._name)


class StaticValueExpression(SqlExpression):
    """An expression that wraps a literal value. This is a leaf expression.

    **NULL** values are represented by **None**.

    Parameters
    ----------
    value : Any
        The value. It is rendered by the `quote_literal` method of the dialect.
    """

    def __init__(self, value: Any) -> None:
        self._value = value
        super().__init__(hash(("value", _hash_value(value))))

    @property
    def value(self) -> Any:
        return self._value

    def iterchildren(self) -> Iterable[SqlExpression]:
        return []

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return self

    def render(self, dialect: Dialect) -> str:
        return dialect.quote_literal(self._value)


class StarExpression(SqlExpression):
    """The ``*`` that selects all columns, e.g. in *COUNT(\\*)*."""

    def __init__(self) -> None:
        super().__init__(hash("*"))

    def iterchildren(self) -> Iterable[SqlExpression]:
        return []

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return self

    def render(self, dialect: Dialect) -> str:
        return "*"


class MathematicalExpression(SqlExpression):
    """Arithmetic on one or two operands.

    Parameters
    ----------
    operator : MathematicalSqlOperators
        The operation. `MathematicalSqlOperators.Negate` is the only unary operator.
    first_argument : SqlExpression
        The left operand, or the only operand of a negation
    second_argument : Optional[SqlExpression], optional
        The right operand. Must be *None* for negations.
    """

    def __init__(self, operator: MathematicalSqlOperators, first_argument: SqlExpression,
                 second_argument: Optional[SqlExpression] = None) -> None:
        if first_argument is None:
            raise ValueError("First argument is required")
        is_unary = operator == MathematicalSqlOperators.Negate
        if is_unary != (second_argument is None):
            raise ValueError(f"Operator {operator.name} requires {'one' if is_unary else 'two'} argument(s)")
        self._operator = operator
        self._first_arg = first_argument
        self._second_arg = second_argument
        super().__init__(hash((operator, first_argument, second_argument)))

    @property
    def operator(self) -> MathematicalSqlOperators:
        return self._operator

    @property
    def first_arg(self) -> SqlExpression:
        return self._first_arg

    @property
    def second_arg(self) -> Optional[SqlExpression]:
        return self._second_arg

    @property
    def precedence(self) -> int:
        match self._operator:
            case MathematicalSqlOperators.Negate:
                return _PrecedenceUnary
            case MathematicalSqlOperators.Add | MathematicalSqlOperators.Subtract:
                return _PrecedenceAdditive
            case _:
                return _PrecedenceMultiplicative

    def iterchildren(self) -> Iterable[SqlExpression]:
        return [self._first_arg] if self._second_arg is None else [self._first_arg, self._second_arg]

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        second_arg = self._second_arg.replace_columns(mapping) if self._second_arg is not None else None
        return MathematicalExpression(self._operator, self._first_arg.replace_columns(mapping), second_arg)

    def render(self, dialect: Dialect) -> str:
        if self._operator == MathematicalSqlOperators.Negate:
            return f"-{self._render_operand(self._first_arg, dialect, strict=True)}"
        left = self._render_operand(self._first_arg, dialect)
        right = self._render_operand(self._second_arg, dialect, strict=True)
        return f"{left} {self._operator.value} {right}"


class FunctionExpression(SqlExpression):
    """A call to an arbitrary SQL function, including aggregate functions.

    Function names are passed to the database as-is and are not checked in any way. A *COUNT* without arguments is rendered
    as *COUNT(\\*)*.

    Parameters
    ----------
    function : str
        The name of the function
    arguments : Sequence[SqlExpression], optional
        The arguments of the call
    distinct : bool, optional
        Whether the function should only be applied to distinct values, e.g. *COUNT(DISTINCT x)*. Off by default.
    """

    def __init__(self, function: str, arguments: Sequence[SqlExpression] = (), *, distinct: bool = False) -> None:
        if not function:
            raise ValueError("Function name cannot be empty")
        self._function = function.upper()
        self._arguments = tuple(arguments)
        if self._function == "COUNT" and not self._arguments:
            self._arguments = (StarExpression(),)
        self._distinct = distinct
        super().__init__(hash((self._function, self._arguments, distinct)))

    @property
    def function(self) -> str:
        return self._function

    @property
    def arguments(self) -> tuple[SqlExpression, ...]:
        return self._arguments

    @property
    def distinct(self) -> bool:
        return self._distinct

    def iterchildren(self) -> Iterable[SqlExpression]:
        return list(self._arguments)

    def is_aggregate(self) -> bool:
        return self._function in AggregateFunctions or super().is_aggregate()

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return FunctionExpression(self._function, [arg.replace_columns(mapping) for arg in self._arguments],
                                  distinct=self._distinct)

    def render(self, dialect: Dialect) -> str:
        args = ", ".join(arg.render(dialect) for arg in self._arguments)
        distinct = "DISTINCT " if self._distinct else ""
        return f"{self._function}({distinct}{args})"


class ComparisonPredicate(SqlExpression):
    """A binary comparison, e.g. ``a < 42`` or ``name LIKE 'B%'``."""

    precedence = _PrecedenceComparison

    def __init__(self, operator: LogicalSqlOperators, left: SqlExpression, right: SqlExpression) -> None:
        self._operator = operator
        self._left = left
        self._right = right
        super().__init__(hash((operator, left, right)))

    @property
    def operator(self) -> LogicalSqlOperators:
        return self._operator

    @property
    def left(self) -> SqlExpression:
        return self._left

    @property
    def right(self) -> SqlExpression:
        return self._right

    def iterchildren(self) -> Iterable[SqlExpression]:
        return [self._left, self._right]

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return ComparisonPredicate(self._operator, self._left.replace_columns(mapping), self._right.replace_columns(mapping))

    def render(self, dialect: Dialect) -> str:
        left = self._render_operand(self._left, dialect, strict=True)
        right = self._render_operand(self._right, dialect, strict=True)
        return f"{left} {self._operator.value} {right}"


class UnaryPredicate(SqlExpression):
    """A *NULL* check, i.e. ``x IS NULL`` or ``x IS NOT NULL``."""

    precedence = _PrecedenceComparison

    def __init__(self, operator: LogicalSqlOperators, operand: SqlExpression) -> None:
        if operator not in (LogicalSqlOperators.Is, LogicalSqlOperators.IsNot):
            raise ValueError(f"Not a unary operator: {operator}")
        self._operator = operator
        self._operand = operand
        super().__init__(hash((operator, operand)))

    def iterchildren(self) -> Iterable[SqlExpression]:
        return [self._operand]

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return UnaryPredicate(self._operator, self._operand.replace_columns(mapping))

    def render(self, dialect: Dialect) -> str:
        return f"{self._render_operand(self._operand, dialect, strict=True)} {self._operator.value} NULL"


class BetweenPredicate(SqlExpression):
    """A range check ``x BETWEEN lower AND upper``, including both bounds."""

    precedence = _PrecedenceComparison

    def __init__(self, operand: SqlExpression, lower: SqlExpression, upper: SqlExpression) -> None:
        self._operand = operand
        self._lower = lower
        self._upper = upper
        super().__init__(hash(("between", operand, lower, upper)))

    def iterchildren(self) -> Iterable[SqlExpression]:
        return [self._operand, self._lower, self._upper]

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return BetweenPredicate(self._operand.replace_columns(mapping), self._lower.replace_columns(mapping),
                                self._upper.replace_columns(mapping))

    def render(self, dialect: Dialect) -> str:
        operand, lower, upper = (self._render_operand(expr, dialect, strict=True) for expr in self.iterchildren())
        return f"{operand} BETWEEN {lower} AND {upper}"


class InPredicate(SqlExpression):
    """A membership check ``x IN (v1, v2, ...)``."""

    precedence = _PrecedenceComparison

    def __init__(self, operand: SqlExpression, values: Sequence[SqlExpression]) -> None:
        if not values:
            raise ValueError("IN predicates require at least one value")
        self._operand = operand
        self._values = tuple(values)
        super().__init__(hash(("in", operand, self._values)))

    def iterchildren(self) -> Iterable[SqlExpression]:
        return [self._operand, *self._values]

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return InPredicate(self._operand.replace_columns(mapping), [value.replace_columns(mapping) for value in self._values])

    def render(self, dialect: Dialect) -> str:
        values = ", ".join(value.render(dialect) for value in self._values)
        return f"{self._render_operand(self._operand, dialect, strict=True)} IN ({values})"


class CompoundPredicate(SqlExpression):
    """Combines predicates by *AND*, *OR* or negates a single predicate by *NOT*.

    Nested conjunctions (and disjunctions) are flattened, i.e. ``(a & b) & c`` is stored as a single conjunction of three
    children.
    """

    def __init__(self, operator: CompoundOperators, children: Sequence[SqlExpression]) -> None:
        if operator == CompoundOperators.Not and len(children) != 1:
            raise ValueError("NOT requires exactly one child predicate")
        if not children:
            raise ValueError("Compound predicates require at least one child predicate")
        flattened: list[SqlExpression] = []
        for child in children:
            if (operator != CompoundOperators.Not and isinstance(child, CompoundPredicate)
                    and child.operator == operator):
                flattened.extend(child.children)
            else:
                flattened.append(child)
        self._operator = operator
        self._children = tuple(flattened)
        super().__init__(hash((operator, self._children)))

    @staticmethod
    def create_and(predicates: Iterable[SqlExpression]) -> SqlExpression:
        """Combines an arbitrary number of predicates to a conjunction. A single predicate is returned as-is."""
        predicates = list(predicates)
        if len(predicates) == 1:
            return predicates[0]
        return CompoundPredicate(CompoundOperators.And, predicates)

    @property
    def operator(self) -> CompoundOperators:
        return self._operator

    @property
    def children(self) -> tuple[SqlExpression, ...]:
        return self._children

    @property
    def precedence(self) -> int:
        match self._operator:
            case CompoundOperators.Or:
                return _PrecedenceOr
            case CompoundOperators.And:
                return _PrecedenceAnd
            case _:
                return _PrecedenceNot

    def iterchildren(self) -> Iterable[SqlExpression]:
        return list(self._children)

    def replace_columns(self, mapping: Mapping[str, SqlExpression]) -> SqlExpression:
        return CompoundPredicate(self._operator, [child.replace_columns(mapping) for child in self._children])

    def render(self, dialect: Dialect) -> str:
        if self._operator == CompoundOperators.Not:
            return f"NOT {self._render_operand(self._children[0], dialect)}"
        return f" {self._operator.value} ".join(self._render_operand(child, dialect) for child in self._children)


class OrderKey:
    """A sort key of an *ORDER BY* clause.

    Parameters
    ----------
    expression : SqlExpression
        The values to sort by
    descending : bool, optional
        Whether larger values come first. Defaults to ascending order.
    """

    def __init__(self, expression: SqlExpression, *, descending: bool = False) -> None:
        self.expression = expression
        self.descending = descending

    def render(self, dialect: Dialect) -> str:
        return f"{self.expression.render(dialect)} DESC" if self.descending else self.expression.render(dialect)

    def __hash__(self) -> int:
        return hash((self.expression, self.descending))

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, type(self)) and self.expression.is_equivalent(other.expression)
                and self.descending == other.descending)

    def __repr__(self) -> str:
        return f"OrderKey({self})"

    def __str__(self) -> str:
        return self.render(ANSI)


def as_expression(value: Any) -> SqlExpression:
    """Wraps a Python value in a `StaticValueExpression`, unless it is an expression already."""
    if isinstance(value, SqlExpression):
        return value
    return StaticValueExpression(value)


def col(name: str) -> ColumnExpression:
    """References a column of the current table by its name."""
    return ColumnExpression(name)


def lit(value: Any) -> StaticValueExpression:
    """Marks a Python value as a literal, e.g. to compute ``lit(1) - col("share")``."""
    return StaticValueExpression(value)


def desc(key: str | SqlExpression) -> OrderKey:
    """Sorts by a column (or expression) in descending order."""
    return OrderKey(col(key) if isinstance(key, str) else key, descending=True)


class FunctionFactory:
    """Creates calls to SQL functions by attribute access, e.g. ``func.upper(col("name"))`` or ``func.sum(col("x"))``.

    Arguments that are not expressions already are treated as literal values. Aggregate functions accept an additional
    `distinct` keyword argument. ``func.n()`` is a shortcut for *COUNT(\\*)*.
    """

    def __getattr__(self, name: str) -> Callable[..., FunctionExpression]:
        if name.startswith("_"):
            raise AttributeError(name)
        sql_name = "COUNT" if name == "n" else name

        def factory(*args: Any, distinct: bool = False) -> FunctionExpression:
            return FunctionExpression(sql_name, [as_expression(arg) for arg in args], distinct=distinct)

        return factory

    def __repr__(self) -> str:
        return "func"


func = FunctionFactory()
"""Entry point to create function calls, see `FunctionFactory`."""
