"""
Structured metadata filters and their compilation to SQL.

A filter is a tree of Comparison leaves combined with And, Or and Not.
compile_filter() lowers the tree to a parenthesized WHERE predicate with
asyncpg-style ``$n`` placeholders; every value is bound as a parameter and
every field is checked against the table's declared columns first.

Fields name either a declared metadata column ("category") or a key in
the JSON metadata column, written "<json_column>.<key>"
("metadata.source").

Example:
    expr = Comparison("category", "=", "a") & ~Comparison("year", "<", 2020)
    compiled = compile_filter(expr, columns=["category", "year"], param_offset=2)
    compiled.sql     # ("category" = $2 AND (NOT "year" < $3))
    compiled.params  # ["a", 2020]
"""

from collections.abc import Collection
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from alloyvec.errors import ConfigurationError, FilterCompilationError
from alloyvec.vectorstore.identifiers import Identifier


class FilterOperator(str, Enum):
    """Comparison operators supported in filters."""

    EQ = "="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    IN = "in"
    LIKE = "like"


class FilterNode:
    """Base class for filter tree nodes, adds &, | and ~ composition."""

    def __and__(self, other: "FilterNode") -> "And":
        return And(self, other)

    def __or__(self, other: "FilterNode") -> "Or":
        return Or(self, other)

    def __invert__(self) -> "Not":
        return Not(self)


@dataclass(frozen=True)
class Comparison(FilterNode):
    """
    Leaf comparing one field with a value.

    Attributes:
        field: Declared column name or "<json_column>.<key>"
        operator: FilterOperator or its string value
        value: Scalar, or a list/tuple/set for IN. LIKE patterns are passed
            through unescaped; escaping % and _ is the caller's job.
    """

    field: str
    operator: FilterOperator | str
    value: Any


@dataclass(frozen=True, init=False)
class And(FilterNode):
    """All operands must match. Empty And matches everything."""

    operands: tuple[FilterNode, ...] = field(default=())

    def __init__(self, *operands: FilterNode):
        object.__setattr__(self, "operands", tuple(operands))


@dataclass(frozen=True, init=False)
class Or(FilterNode):
    """At least one operand must match. Empty Or matches nothing."""

    operands: tuple[FilterNode, ...] = field(default=())

    def __init__(self, *operands: FilterNode):
        object.__setattr__(self, "operands", tuple(operands))


@dataclass(frozen=True)
class Not(FilterNode):
    """Negates its operand."""

    operand: FilterNode


@dataclass
class CompiledFilter:
    """
    A compiled filter predicate.

    Attributes:
        sql: Predicate text, "TRUE" for no filter
        params: Values for the predicate's placeholders, in order
    """

    sql: str
    params: list[Any] = field(default_factory=list)


_SQL_OPERATORS = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LIKE: "LIKE",
}


def _coerce_operator(operator: FilterOperator | str, field_name: str) -> FilterOperator:
    if isinstance(operator, FilterOperator):
        return operator
    try:
        return FilterOperator(str(operator).strip().lower())
    except ValueError:
        raise FilterCompilationError(
            f"Unsupported filter operator {operator!r} on field {field_name!r}",
            field=field_name,
        ) from None


class _Compiler:
    """Single-use compiler holding the parameter list while walking the tree."""

    def __init__(
        self,
        columns: Collection[str],
        metadata_json_column: str | None,
        param_offset: int,
    ):
        self._columns = set(columns)
        self._json_column = metadata_json_column
        self._offset = param_offset
        self.params: list[Any] = []

    def _bind(self, value: Any) -> str:
        self.params.append(value)
        return f"${self._offset + len(self.params) - 1}"

    def compile(self, node: FilterNode) -> str:
        if isinstance(node, Comparison):
            return self._comparison(node)
        if isinstance(node, And):
            if not node.operands:
                return "TRUE"
            return "(" + " AND ".join(self.compile(op) for op in node.operands) + ")"
        if isinstance(node, Or):
            if not node.operands:
                return "FALSE"
            return "(" + " OR ".join(self.compile(op) for op in node.operands) + ")"
        if isinstance(node, Not):
            return f"(NOT {self.compile(node.operand)})"
        raise FilterCompilationError(f"Unsupported filter node: {node!r}")

    def _resolve_field(self, name: str) -> tuple[str, bool]:
        """Return (SQL expression, is_json) for a field, JSON key not yet bound."""
        if name in self._columns:
            return Identifier(name).quoted, False

        prefix = f"{self._json_column}."
        if self._json_column and name.startswith(prefix) and len(name) > len(prefix):
            return Identifier(self._json_column).quoted, True

        raise FilterCompilationError(f"Filter field not found: {name!r}", field=name)

    def _comparison(self, leaf: Comparison) -> str:
        column, is_json = self._resolve_field(leaf.field)
        operator = _coerce_operator(leaf.operator, leaf.field)
        value = leaf.value

        if is_json:
            key = leaf.field[len(self._json_column) + 1:]
            column = f"({column} ->> {self._bind(key)}::text)"

        if value is None:
            if operator is FilterOperator.EQ:
                return f"{column} IS NULL"
            if operator is FilterOperator.NE:
                return f"{column} IS NOT NULL"
            raise FilterCompilationError(
                f"Operator {operator.value!r} on field {leaf.field!r} cannot compare with None",
                field=leaf.field,
            )

        if operator is FilterOperator.IN:
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
                raise FilterCompilationError(
                    f"Operator 'in' on field {leaf.field!r} needs a list of values",
                    field=leaf.field,
                )
            values = list(value)
            if not values:
                return "FALSE"
            if is_json:
                kinds = {_value_kind(v) for v in values}
                if len(kinds) > 1:
                    raise FilterCompilationError(
                        f"Operator 'in' on field {leaf.field!r} mixes value types: {sorted(kinds)}",
                        field=leaf.field,
                    )
                column = _json_cast(column, values[0])
                values = [_json_value(v) for v in values]
            placeholders = ", ".join(self._bind(v) for v in values)
            return f"{column} IN ({placeholders})"

        if operator is FilterOperator.LIKE and not isinstance(value, str):
            raise FilterCompilationError(
                f"Operator 'like' on field {leaf.field!r} needs a string pattern",
                field=leaf.field,
            )

        if is_json:
            column = _json_cast(column, value)
            value = _json_value(value)
        return f"{column} {_SQL_OPERATORS[operator]} {self._bind(value)}"


def _value_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "numeric"
    return "text"


def _json_cast(expression: str, sample: Any) -> str:
    # ->> yields text; cast so numeric and boolean comparisons behave
    kind = _value_kind(sample)
    if kind == "text":
        return expression
    return f"{expression}::{kind}"


def _json_value(value: Any) -> Any:
    if isinstance(value, (bool, int, float)):
        return value
    return str(value)


def compile_filter(
    expression: FilterNode | None,
    columns: Collection[str],
    metadata_json_column: str | None = None,
    param_offset: int = 1,
) -> CompiledFilter:
    """
    Compile a filter tree into a parameterized SQL predicate.

    Args:
        expression: Filter tree, or None for no filter
        columns: Declared metadata column names that may be filtered on
        metadata_json_column: JSON column whose keys may be filtered on
        param_offset: Placeholder number of the first bound value

    Returns:
        CompiledFilter with predicate text and bound values

    Raises:
        FilterCompilationError: For unknown fields, operators or value shapes
    """
    if expression is None:
        return CompiledFilter(sql="TRUE")
    if param_offset < 1:
        raise ConfigurationError(f"param_offset must be positive, got {param_offset}")

    compiler = _Compiler(columns, metadata_json_column, param_offset)
    sql = compiler.compile(expression)
    return CompiledFilter(sql=sql, params=compiler.params)
