"""
querygraph/graph.py

Query Graph IR: the declarative, dialect-independent description of a query.

A graph names a source table, LEFT join edges, filters, grouping, aggregations,
HAVING terms, per-table output fields, sort keys and pagination. Both the SQL
compiler and the in-memory executor consume it through the logical plan
(see plan.py).

Design notes:
- Nodes are small frozen dataclasses; decoding from JSON happens in payload.py.
- Field references are either qualified ("table.column") or bare ("column").
- Only LEFT joins exist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .errors import GraphError
from .operators import Operator, decode_filters


# ---------- References ----------

@dataclass(frozen=True)
class FieldRef:
    """
    Column reference.

    Attributes:
        column: Column name.
        table: Optional table name for qualified references.
    """
    column: str
    table: str | None = None

    @classmethod
    def parse(cls, raw: str) -> FieldRef:
        """Parse "table.column" or "column"."""
        text = str(raw).strip()
        if not text:
            raise GraphError("Empty field reference")
        if "." in text:
            table, column = text.split(".", 1)
            return cls(column=column, table=table or None)
        return cls(column=text)

    def __str__(self) -> str:
        return f"{self.table}.{self.column}" if self.table else self.column


# ---------- Nodes ----------

@dataclass(frozen=True)
class Source:
    table: str
    alias: str | None = None


@dataclass(frozen=True)
class JoinEdge:
    """
    Directed LEFT join edge: from_table.from_column = to_table.to_column.
    """
    from_table: str
    from_column: str
    to_table: str
    to_column: str
    kind: str = "LEFT"


@dataclass(frozen=True)
class GraphFilter:
    field: FieldRef
    op: Operator
    value: Any


class AggregateFunction(str, Enum):
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


@dataclass(frozen=True)
class Aggregation:
    """
    Aggregate term.

    Attributes:
        function: Aggregate function.
        field: Aggregated column; None means COUNT(*).
        alias: Output name. Defaults to "<func>_<column>" (or "count" for COUNT(*)).
    """
    function: AggregateFunction
    field: FieldRef | None
    alias: str = ""

    @property
    def output_name(self) -> str:
        if self.alias:
            return self.alias
        if self.field is None:
            return self.function.value.lower()
        return f"{self.function.value.lower()}_{self.field.column}"


@dataclass(frozen=True)
class HavingClause:
    alias: str
    op: Operator
    value: Any


@dataclass(frozen=True)
class SortKey:
    """
    Sort term. ``ref`` may be a field reference, an output column or an aggregate alias.
    """
    ref: str
    descending: bool = False


@dataclass(frozen=True)
class QueryGraph:
    """
    The full graph.

    Attributes:
        source: Source table.
        joins: LEFT join edges, in declaration order.
        filters: Filters over any participating table.
        group_by: Group keys.
        aggregations: Aggregate terms.
        having: HAVING terms on aggregate aliases.
        output_fields: table -> columns (empty tuple = all columns of that table).
        sort: Sort keys, first = primary.
        limit: Page size (None = unbounded).
        offset: Rows to skip.
    """
    source: Source
    joins: tuple[JoinEdge, ...] = ()
    filters: tuple[GraphFilter, ...] = ()
    group_by: tuple[FieldRef, ...] = ()
    aggregations: tuple[Aggregation, ...] = ()
    having: tuple[HavingClause, ...] = ()
    output_fields: dict[str, tuple[str, ...]] = field(default_factory=dict)
    sort: tuple[SortKey, ...] = ()
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        for j in self.joins:
            if j.kind.upper() != "LEFT":
                raise GraphError(f"Unsupported join type: {j.kind}")
        if self.limit is not None and self.limit < 0:
            raise GraphError("limit must be non-negative")
        if self.offset < 0:
            raise GraphError("offset must be non-negative")

    def participating_tables(self) -> list[str]:
        """Source table followed by every join endpoint, without duplicates."""
        out = [self.source.table]
        for j in self.joins:
            for t in (j.from_table, j.to_table):
                if t not in out:
                    out.append(t)
        return out

    @property
    def is_aggregate(self) -> bool:
        return bool(self.aggregations or self.group_by)


# ---------- Writes ----------

class WriteOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def split_data(data: Mapping[str, Any] | None, source: str) -> dict[str, dict[str, Any]]:
    """
    Split write data keyed by "table.column" into per-table column maps.

    Bare keys belong to the source table.

    Example:
        {"name": "A", "posts.title": "X"} -> {"users": {"name": "A"}, "posts": {"title": "X"}}
    """
    out: dict[str, dict[str, Any]] = {}
    for key, value in (data or {}).items():
        if "." in key:
            table, column = key.split(".", 1)
        else:
            table, column = source, key
        out.setdefault(table, {})[column] = value
    return out


def filters_from_mapping(raw: Mapping[str, Any] | None) -> list[GraphFilter]:
    """Decode ``{"field__op": value}`` style filters into graph filters."""
    return [GraphFilter(FieldRef.parse(f.column), f.op, f.value) for f in decode_filters(raw)]
