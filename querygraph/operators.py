"""
querygraph/operators.py

The filter/operator vocabulary shared by the SQL compiler and the in-memory executor.

Responsibilities:
- Define every operator once: its SQL rendering and its in-memory predicate.
- Decode filter input (``column__op`` keys, ``{"op", "val"}`` values, operator
  aliases) into the tagged Filter variant.
- Report which operators suit a column type.

Design notes:
- A NULL row value fails every predicate, matching SQL three-valued logic, so both
  backends select the same rows.
- Values compare numerically when both sides parse as finite numbers (booleans never
  do); otherwise they compare as strings.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from .catalog import ColumnSchema
from .errors import GraphError
from .params import ParamBuffer


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    CONTAINS = "contains"
    STARTSWITH = "startswith"
    ENDSWITH = "endswith"
    IN = "in"
    BETWEEN = "between"


_ALIASES: dict[str, Operator] = {
    "=": Operator.EQ,
    "==": Operator.EQ,
    "!=": Operator.NE,
    "<>": Operator.NE,
    "neq": Operator.NE,
    ">": Operator.GT,
    ">=": Operator.GTE,
    "<": Operator.LT,
    "<=": Operator.LTE,
}

_SUFFIX_RE = re.compile(r"^(.+?)__(" + "|".join(op.value for op in Operator) + r")$")


def parse_operator(raw: Any) -> Operator:
    """
    Resolve an operator tag or alias.

    Raises:
        GraphError: for an unknown operator.
    """
    if isinstance(raw, Operator):
        return raw
    key = str(raw or "eq").strip()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return Operator(key.lower())
    except ValueError:
        raise GraphError(f"Unknown operator: {raw!r}") from None


# --------------------------
# Filter variant
# --------------------------

@dataclass(frozen=True)
class SimpleFilter:
    """``column = value`` (unsuffixed key)."""
    column: str
    value: Any

    @property
    def op(self) -> Operator:
        return Operator.EQ


@dataclass(frozen=True)
class OperatorFilter:
    """``column <op> value``."""
    column: str
    op: Operator
    value: Any


Filter = SimpleFilter | OperatorFilter


def coerce_value(op: Operator, value: Any) -> Any:
    """
    Shape a filter value for its operator.

    ``in`` values become a list (comma-split when given as a string); ``between``
    values become a 2-tuple.

    Raises:
        GraphError: if a between value does not have exactly two bounds.
    """
    if op is Operator.IN:
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip() != ""]
        return [value]
    if op is Operator.BETWEEN:
        bounds = value
        if isinstance(value, str):
            bounds = [v.strip() for v in value.split(",")]
        if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
            raise GraphError(f"between expects two bounds, got {value!r}")
        return (bounds[0], bounds[1])
    return value


def make_filter(column: str, op: Any, value: Any) -> Filter:
    """Build an OperatorFilter with a parsed operator and coerced value."""
    operator = parse_operator(op)
    return OperatorFilter(column, operator, coerce_value(operator, value))


def split_key(key: str) -> tuple[str, Operator | None]:
    """
    Split ``column__op`` into (column, op). Unsuffixed keys return (key, None).
    """
    m = _SUFFIX_RE.match(key)
    if m is None:
        return key, None
    return m.group(1), Operator(m.group(2))


def decode_filters(raw: Mapping[str, Any] | None) -> list[Filter]:
    """
    Decode a per-table filter mapping into Filter values.

    Accepts:
      - ``{"name": "A"}`` -> SimpleFilter
      - ``{"age__gte": 20}`` -> OperatorFilter
      - ``{"age": {"op": "gte", "val": 20}}`` -> OperatorFilter
    """
    out: list[Filter] = []
    for key, value in (raw or {}).items():
        if isinstance(value, Mapping) and "op" in value:
            val = value.get("val", value.get("value"))
            out.append(make_filter(key, value["op"], val))
            continue
        column, op = split_key(key)
        if op is None:
            out.append(SimpleFilter(column, value))
        else:
            out.append(OperatorFilter(column, op, coerce_value(op, value)))
    return out


# --------------------------
# Value semantics
# --------------------------

def to_number(value: Any) -> float | None:
    """Parse ``value`` as a finite number; booleans and blanks are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            n = float(value.strip())
        except ValueError:
            return None
        return n if math.isfinite(n) else None
    return None


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def values_equal(a: Any, b: Any) -> bool:
    """Numeric equality when both sides parse, else string equality. NULL equals nothing."""
    if a is None or b is None:
        return False
    na, nb = to_number(a), to_number(b)
    if na is not None and nb is not None:
        return na == nb
    return stringify(a) == stringify(b)


def compare_values(a: Any, b: Any) -> int:
    """Three-way compare: numeric when both parse, else string."""
    na, nb = to_number(a), to_number(b)
    if na is not None and nb is not None:
        return (na > nb) - (na < nb)
    sa, sb = stringify(a), stringify(b)
    return (sa > sb) - (sa < sb)


# ---------- in-memory predicates ----------

def _in(a: Any, b: Any) -> bool:
    return any(values_equal(a, v) for v in coerce_value(Operator.IN, b))


def _between(a: Any, b: Any) -> bool:
    lo, hi = coerce_value(Operator.BETWEEN, b)
    return compare_values(a, lo) >= 0 and compare_values(a, hi) <= 0


_PREDICATES: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQ: values_equal,
    Operator.NE: lambda a, b: not values_equal(a, b),
    Operator.GT: lambda a, b: compare_values(a, b) > 0,
    Operator.GTE: lambda a, b: compare_values(a, b) >= 0,
    Operator.LT: lambda a, b: compare_values(a, b) < 0,
    Operator.LTE: lambda a, b: compare_values(a, b) <= 0,
    Operator.LIKE: lambda a, b: stringify(b) in stringify(a),
    Operator.CONTAINS: lambda a, b: stringify(b) in stringify(a),
    Operator.STARTSWITH: lambda a, b: stringify(a).startswith(stringify(b)),
    Operator.ENDSWITH: lambda a, b: stringify(a).endswith(stringify(b)),
    Operator.IN: _in,
    Operator.BETWEEN: _between,
}


def matches(op: Operator, row_value: Any, filter_value: Any) -> bool:
    """
    Evaluate ``row_value <op> filter_value``.

    NULL on either side never matches, ``ne`` included.
    """
    if row_value is None or filter_value is None:
        return False
    return _PREDICATES[op](row_value, filter_value)


# ---------- SQL rendering ----------

_COMPARISON_SQL = {
    Operator.EQ: "=",
    Operator.NE: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}


_LIKE_PATTERNS = {
    Operator.LIKE: "%{}%",
    Operator.CONTAINS: "%{}%",
    Operator.STARTSWITH: "{}%",
    Operator.ENDSWITH: "%{}",
}


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def render_sql(op: Operator, column_sql: str, value: Any, params: ParamBuffer) -> str:
    """
    Render ``column_sql <op> value`` binding every value through ``params``.

    Args:
        op: Operator.
        column_sql: Already-quoted column expression.
        value: Filter value (coerced for in/between).
        params: Parameter buffer of the statement being built.

    Returns:
        SQL predicate fragment.
    """
    if op in _COMPARISON_SQL:
        return f"{column_sql} {_COMPARISON_SQL[op]} {params.add(value)}"
    if op in _LIKE_PATTERNS:
        pattern = _LIKE_PATTERNS[op].format(escape_like(stringify(value)))
        return f"{column_sql} LIKE {params.add(pattern)}{params.dialect.like_escape()}"
    if op is Operator.IN:
        items = coerce_value(Operator.IN, value)
        if not items:
            return "1 = 0"
        return f"{column_sql} IN ({', '.join(params.add(v) for v in items)})"
    if op is Operator.BETWEEN:
        lo, hi = coerce_value(Operator.BETWEEN, value)
        return f"{column_sql} BETWEEN {params.add(lo)} AND {params.add(hi)}"
    raise GraphError(f"Unsupported operator: {op}")


# ---------- column capabilities ----------

_BOOL_TYPES = {"bool", "boolean"}
_TEMPORAL_TYPES = {"date", "timestamp", "timestamptz", "datetime", "time", "timetz"}
_NUMERIC_TYPES = {
    "int", "integer", "bigint", "smallint", "tinyint", "mediumint",
    "numeric", "decimal", "float", "double", "real",
    "serial", "bigserial", "smallserial",
}
_TYPE_TOKEN = re.compile(r"[a-z]+")

_ORDERED_OPS = [Operator.EQ, Operator.GT, Operator.GTE, Operator.LT, Operator.LTE]
_TEXT_OPS = [Operator.EQ, Operator.CONTAINS, Operator.STARTSWITH, Operator.ENDSWITH]


def operators_for_column(column: ColumnSchema) -> list[Operator]:
    """
    Operators that make sense for a column's type.

    Enums and booleans: eq. Temporal and numeric: eq/gt/gte/lt/lte.
    Everything else: eq/contains/startswith/endswith.

    Only the leading word of the type counts, so "int4" is numeric,
    "timestamp with time zone" is temporal and "point" is text.
    """
    m = _TYPE_TOKEN.match(column.data_type.strip().lower())
    base = m.group(0) if m else ""
    if column.enum_options or base in _BOOL_TYPES:
        return [Operator.EQ]
    if base in _TEMPORAL_TYPES or base in _NUMERIC_TYPES:
        return list(_ORDERED_OPS)
    return list(_TEXT_OPS)
