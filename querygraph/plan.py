"""
querygraph/plan.py

Lowering of a QueryGraph into a logical plan shared by both backends.

Responsibilities:
- Order join edges so each one attaches to a table already in the query.
- Resolve every field reference (filters, group keys, aggregates, HAVING, sort,
  output fields) against the known columns of participating tables.
- Fix the output column names once, so the SQL compiler and the in-memory
  executor produce identically shaped rows.

Design notes:
- Unresolvable references are dropped and logged. With ``strict=True`` they raise
  UnresolvableReference instead.
- Output columns are named "table_column" when more than one table participates,
  otherwise by the bare column name.
- A bare reference resolves against the source table first, then against joined
  tables in attachment order. "table_column" spellings are also understood.
- When no requested output field resolves, the source table's columns are projected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .config.logging import get_logger
from .errors import UnresolvableReference
from .graph import AggregateFunction, FieldRef, GraphFilter, QueryGraph
from .operators import Operator

logger = get_logger(__name__)

# Returns the known columns of a table, or None if the table is unknown.
ColumnLookup = Callable[[str], "list[str] | None"]


@dataclass(frozen=True)
class JoinStep:
    """
    One attached LEFT join: ``right_table`` is the newly attached side.
    """
    left_table: str
    left_column: str
    right_table: str
    right_column: str


@dataclass(frozen=True)
class PlannedColumn:
    table: str
    column: str
    key: str


@dataclass(frozen=True)
class PlannedFilter:
    table: str
    column: str
    op: Operator
    value: Any


@dataclass(frozen=True)
class PlannedAggregate:
    """
    Aggregate with a resolved column. ``column`` is None for COUNT (partition size).
    """
    function: AggregateFunction
    table: str | None
    column: str | None
    alias: str


@dataclass(frozen=True)
class PlannedHaving:
    aggregate: PlannedAggregate
    op: Operator
    value: Any


@dataclass(frozen=True)
class PlannedSort:
    """
    Sort key. Row-level plans sort by (table, column); aggregate plans sort by
    output ``key``.
    """
    descending: bool
    table: str | None = None
    column: str | None = None
    key: str | None = None


@dataclass
class LogicalPlan:
    source: str
    source_alias: str | None
    tables: list[str]
    table_columns: dict[str, list[str]]
    joins: list[JoinStep] = field(default_factory=list)
    filters: list[PlannedFilter] = field(default_factory=list)
    group_keys: list[PlannedColumn] = field(default_factory=list)
    aggregates: list[PlannedAggregate] = field(default_factory=list)
    having: list[PlannedHaving] = field(default_factory=list)
    projection: list[PlannedColumn] = field(default_factory=list)
    sort: list[PlannedSort] = field(default_factory=list)
    limit: int | None = None
    offset: int = 0

    @property
    def is_aggregate(self) -> bool:
        return bool(self.aggregates or self.group_keys)

    @property
    def columns(self) -> list[str]:
        """Output column names in order."""
        if self.is_aggregate:
            return [g.key for g in self.group_keys] + [a.alias for a in self.aggregates]
        return [p.key for p in self.projection]

    def source_filters(self) -> list[PlannedFilter]:
        return [f for f in self.filters if f.table == self.source]

    def joined_filters(self) -> list[PlannedFilter]:
        return [f for f in self.filters if f.table != self.source]


class _Resolver:
    """Reference resolution over the attached tables of one plan."""

    def __init__(self, plan: LogicalPlan, strict: bool):
        self.plan = plan
        self.strict = strict

    def output_key(self, table: str, column: str) -> str:
        if len(self.plan.tables) > 1:
            return f"{table}_{column}"
        return column

    def drop(self, what: str, ref: Any) -> None:
        if self.strict:
            raise UnresolvableReference(f"Cannot resolve {what} reference: {ref}")
        logger.warning("Ignoring unresolvable %s reference: %s", what, ref)

    def resolve(self, ref: FieldRef) -> tuple[str, str] | None:
        cols = self.plan.table_columns
        if ref.table is not None:
            table = ref.table
            if table == self.plan.source_alias:
                table = self.plan.source
            if table in self.plan.tables and ref.column in cols.get(table, []):
                return table, ref.column
            return None

        for table in self.plan.tables:
            if ref.column in cols.get(table, []):
                return table, ref.column

        # "table_column" spelling
        for table in self.plan.tables:
            prefix = f"{table}_"
            if ref.column.startswith(prefix):
                column = ref.column[len(prefix):]
                if column in cols.get(table, []):
                    return table, column
        return None


def _order_joins(graph: QueryGraph) -> tuple[list[str], list[JoinStep]]:
    """Attach join edges once one side is already part of the query."""
    tables = [graph.source.table]
    steps: list[JoinStep] = []
    pending = list(graph.joins)

    progressed = True
    while pending and progressed:
        progressed = False
        for edge in list(pending):
            if edge.from_table in tables and edge.to_table not in tables:
                steps.append(JoinStep(edge.from_table, edge.from_column, edge.to_table, edge.to_column))
                tables.append(edge.to_table)
            elif edge.to_table in tables and edge.from_table not in tables:
                steps.append(JoinStep(edge.to_table, edge.to_column, edge.from_table, edge.from_column))
                tables.append(edge.from_table)
            elif edge.from_table in tables and edge.to_table in tables:
                logger.warning(
                    "Skipping join %s.%s -> %s.%s: both tables already joined",
                    edge.from_table, edge.from_column, edge.to_table, edge.to_column,
                )
            else:
                continue
            pending.remove(edge)
            progressed = True

    for edge in pending:
        logger.warning(
            "Skipping join %s.%s -> %s.%s: not connected to source %s",
            edge.from_table, edge.from_column, edge.to_table, edge.to_column, graph.source.table,
        )
    return tables, steps


def plan_graph(
    graph: QueryGraph,
    column_lookup: ColumnLookup,
    extra_filters: Iterable[GraphFilter] = (),
    strict: bool = False,
) -> LogicalPlan:
    """
    Lower ``graph`` into a LogicalPlan.

    Args:
        graph: Query graph.
        column_lookup: Known columns per table (None for an unknown table).
        extra_filters: Filters appended to the graph's own (e.g. request-time filters).
        strict: Raise UnresolvableReference instead of dropping unknown references.

    Returns:
        LogicalPlan with every reference resolved.
    """
    tables, steps = _order_joins(graph)
    table_columns = {t: list(column_lookup(t) or []) for t in tables}

    plan = LogicalPlan(
        source=graph.source.table,
        source_alias=graph.source.alias,
        tables=tables,
        table_columns=table_columns,
        joins=steps,
        limit=graph.limit,
        offset=graph.offset,
    )
    r = _Resolver(plan, strict)

    # ---------- filters ----------
    for f in list(graph.filters) + list(extra_filters):
        resolved = r.resolve(f.field)
        if resolved is None:
            r.drop("filter", f.field)
            continue
        plan.filters.append(PlannedFilter(resolved[0], resolved[1], f.op, f.value))

    # ---------- grouping ----------
    for g in graph.group_by:
        resolved = r.resolve(g)
        if resolved is None:
            r.drop("group", g)
            continue
        key = r.output_key(*resolved)
        if any(pc.key == key for pc in plan.group_keys):
            continue
        plan.group_keys.append(PlannedColumn(resolved[0], resolved[1], key))

    for a in graph.aggregations:
        if a.function is AggregateFunction.COUNT:
            plan.aggregates.append(PlannedAggregate(a.function, None, None, a.output_name))
            continue
        resolved = r.resolve(a.field) if a.field is not None else None
        if resolved is None:
            r.drop("aggregate", a.field)
            continue
        plan.aggregates.append(PlannedAggregate(a.function, resolved[0], resolved[1], a.output_name))

    if graph.having and not plan.aggregates:
        logger.warning("Ignoring HAVING: graph has no aggregations")
    else:
        by_alias = {a.alias: a for a in plan.aggregates}
        for h in graph.having:
            agg = by_alias.get(h.alias)
            if agg is None:
                r.drop("having", h.alias)
                continue
            plan.having.append(PlannedHaving(agg, h.op, h.value))

    # ---------- projection ----------
    if not plan.is_aggregate:
        plan.projection = _plan_projection(graph, plan, r)

    # ---------- sort ----------
    for s in graph.sort:
        planned = _plan_sort(s.ref, s.descending, plan, r)
        if planned is None:
            r.drop("sort", s.ref)
            continue
        plan.sort.append(planned)

    return plan


def _plan_projection(graph: QueryGraph, plan: LogicalPlan, r: _Resolver) -> list[PlannedColumn]:
    out: list[PlannedColumn] = []
    if not graph.output_fields:
        for t in plan.tables:
            out.extend(PlannedColumn(t, c, r.output_key(t, c)) for c in plan.table_columns[t])
        return out

    for table, columns in graph.output_fields.items():
        if table == plan.source_alias:
            table = plan.source
        if table not in plan.tables:
            r.drop("output table", table)
            continue
        known = plan.table_columns[table]
        wanted = list(columns) or known
        for c in wanted:
            if c not in known:
                r.drop("output", f"{table}.{c}")
                continue
            key = r.output_key(table, c)
            if all(p.key != key for p in out):
                out.append(PlannedColumn(table, c, key))
    if not out:
        # nothing resolved: project the source table
        out = [PlannedColumn(plan.source, c, r.output_key(plan.source, c)) for c in plan.table_columns[plan.source]]
    return out


def _plan_sort(ref: str, descending: bool, plan: LogicalPlan, r: _Resolver) -> PlannedSort | None:
    if plan.is_aggregate:
        if ref in plan.columns:
            return PlannedSort(descending, key=ref)
        resolved = r.resolve(FieldRef.parse(ref))
        if resolved is None:
            return None
        for g in plan.group_keys:
            if (g.table, g.column) == resolved:
                return PlannedSort(descending, key=g.key)
        return None

    for p in plan.projection:
        if p.key == ref:
            return PlannedSort(descending, table=p.table, column=p.column)
    resolved = r.resolve(FieldRef.parse(ref))
    if resolved is None:
        return None
    return PlannedSort(descending, table=resolved[0], column=resolved[1])
