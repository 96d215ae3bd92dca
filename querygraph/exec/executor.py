"""
querygraph/exec/executor.py

In-memory relational executor for local mode.

Responsibilities:
- Run a QueryGraph over one connection's table store:
    filter source -> LEFT joins -> joined filters -> group/aggregate -> having
    -> sort -> project -> paginate
- Per-table reads: list (filtered, ordered, paginated), get by id, related rows.

Design notes:
- The executor works from the same logical plan as the SQL compiler, so both
  backends resolve references and name output columns identically.
- Each table is snapshotted once per pipeline pass; concurrent writers are never
  observed half-applied.
- A join to a table absent from the store is "no match": joined columns are null.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Iterable, Mapping

from ..catalog import SchemaMap, TableSchema, find_relationship
from ..config.logging import get_logger
from ..errors import UnknownTable
from ..graph import AggregateFunction, GraphFilter, QueryGraph, SortKey, Source, filters_from_mapping
from ..operators import Operator, compare_values, matches, stringify, to_number
from ..plan import LogicalPlan, PlannedAggregate, PlannedSort, plan_graph
from ..results import QueryResult
from ..sql.builder import as_page_number, order_direction
from .join import CombinedRow, left_join, lift, where_matches
from .store import ConnectionStore, Row

logger = get_logger(__name__)


# --------------------------
# value helpers
# --------------------------

def _null_last(a: Any, b: Any) -> int:
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    return compare_values(a, b)


def sort_rows(rows: list[Any], keys: list[tuple[Any, bool]]) -> list[Any]:
    """
    Multi-key sort by repeated stable single-key sorts, last key first.

    Args:
        rows: Rows to sort.
        keys: (extractor, descending) pairs, first = primary.

    Returns:
        New sorted list. NULLs sort last ascending and first descending.
    """
    out = list(rows)
    for extract, descending in reversed(keys):
        out.sort(key=cmp_to_key(lambda a, b, f=extract: _null_last(f(a), f(b))), reverse=descending)
    return out


def _numeric(values: Iterable[Any]) -> list[int | float]:
    """Numeric-coerced non-null values; ints stay ints."""
    out: list[int | float] = []
    for v in values:
        if isinstance(v, int) and not isinstance(v, bool):
            out.append(v)
            continue
        n = to_number(v)
        if n is not None:
            out.append(n)
    return out


def aggregate(agg: PlannedAggregate, partition: list[CombinedRow]) -> Any:
    """
    Compute one aggregate over a partition.

    COUNT is the partition size. SUM/AVG/MIN/MAX skip NULL and non-numeric values
    and yield None when nothing numeric remains.
    """
    if agg.function is AggregateFunction.COUNT:
        return len(partition)
    nums = _numeric(r.get((agg.table, agg.column)) for r in partition)
    if not nums:
        return None
    if agg.function is AggregateFunction.SUM:
        return sum(nums)
    if agg.function is AggregateFunction.AVG:
        return sum(nums) / len(nums)
    if agg.function is AggregateFunction.MIN:
        return min(nums)
    return max(nums)


def match_id(row: Row, primary_keys: tuple[str, ...], id_value: Any) -> bool:
    """
    Compare a row's key to an id; composite keys are addressed as "a|b".
    """
    if len(primary_keys) == 1:
        return matches(Operator.EQ, row.get(primary_keys[0]), id_value)
    parts = str(id_value).split("|")
    if len(parts) != len(primary_keys):
        return False
    return all(matches(Operator.EQ, row.get(pk), part) for pk, part in zip(primary_keys, parts))


# --------------------------
# executor
# --------------------------

@dataclass
class Executor:
    """
    Read-side executor bound to one connection's tables.

    Attributes:
        store: Tables of the connection.
        schema: Schema of the connection (tables without schema use their row keys).
        strict: Raise on unresolvable references instead of dropping them.
    """
    store: ConnectionStore
    schema: SchemaMap
    strict: bool = False

    def columns_of(self, table: str) -> list[str] | None:
        t = self.schema.get(table)
        if t is not None:
            return t.column_names()
        ts = self.store.get(table)
        if ts is not None:
            return ts.columns()
        return None

    def table_schema(self, table: str) -> TableSchema:
        """
        Schema of ``table``; tables known only to the store get a key-less schema.

        Raises:
            UnknownTable: if neither the schema nor the store knows the table.
        """
        t = self.schema.get(table)
        if t is not None:
            return t
        ts = self.store.get(table)
        if ts is None:
            raise UnknownTable(f"Table not found: {table}")
        return TableSchema(name=table)

    def snapshot(self, table: str) -> list[Row]:
        ts = self.store.get(table)
        return ts.snapshot() if ts is not None else []

    # ---------- graph ----------

    def plan(self, graph: QueryGraph, extra_filters: Iterable[GraphFilter] = (), strict: bool | None = None) -> LogicalPlan:
        self.table_schema(graph.source.table)
        return plan_graph(graph, self.columns_of, extra_filters, strict=self.strict if strict is None else strict)

    def joined_rows(self, plan: LogicalPlan) -> list[CombinedRow]:
        """
        Source filter, LEFT joins and joined-table filters.
        """
        source_rows = lift(plan.source, self.snapshot(plan.source), plan.table_columns[plan.source])
        source_filters = plan.source_filters()
        rows = [r for r in source_rows if where_matches(r, source_filters)]

        for step in plan.joins:
            if self.store.get(step.right_table) is None:
                logger.warning("Join target %s has no rows in store; treating as no match", step.right_table)
            rows = left_join(rows, step, self.snapshot(step.right_table), plan.table_columns[step.right_table])

        joined_filters = plan.joined_filters()
        if joined_filters:
            rows = [r for r in rows if where_matches(r, joined_filters)]
        return rows

    def run(self, plan: LogicalPlan) -> QueryResult:
        rows = self.joined_rows(plan)

        if plan.is_aggregate:
            out = self._group(plan, rows)
            out = sort_rows(out, [(_key_getter(s), s.descending) for s in plan.sort])
        else:
            rows = sort_rows(rows, [(_column_getter(s), s.descending) for s in plan.sort])
            out = [{p.key: r.get((p.table, p.column)) for p in plan.projection} for r in rows]

        total = len(out)
        start = plan.offset or 0
        end = start + plan.limit if plan.limit is not None else None
        return QueryResult(columns=plan.columns, rows=out[start:end], total=total)

    def run_graph(self, graph: QueryGraph, extra_filters: Iterable[GraphFilter] = ()) -> QueryResult:
        """
        Execute ``graph`` over the store.

        Raises:
            UnknownTable: if the source table is unknown to both schema and store.
            UnresolvableReference: only in strict mode.
        """
        return self.run(self.plan(graph, extra_filters))

    def _group(self, plan: LogicalPlan, rows: list[CombinedRow]) -> list[dict[str, Any]]:
        partitions: dict[tuple, list[CombinedRow]] = {}
        if not plan.group_keys:
            partitions[()] = rows
        else:
            for r in rows:
                key = tuple(
                    (r.get((g.table, g.column)) is None, stringify(r.get((g.table, g.column)))) for g in plan.group_keys
                )
                partitions.setdefault(key, []).append(r)

        out: list[dict[str, Any]] = []
        for partition in partitions.values():
            first = partition[0] if partition else {}
            grouped: dict[str, Any] = {g.key: first.get((g.table, g.column)) for g in plan.group_keys}
            for a in plan.aggregates:
                grouped[a.alias] = aggregate(a, partition)
            if all(matches(h.op, grouped.get(h.aggregate.alias), h.value) for h in plan.having):
                out.append(grouped)
        return out

    # ---------- per-table reads ----------

    def list_rows(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        limit: Any = None,
        offset: Any = None,
        order_by: str | None = None,
        order_dir: str | None = "ASC",
    ) -> QueryResult:
        """
        Local counterpart of SqlBuilder.build_select(): unknown filter and order-by
        columns are dropped.
        """
        self.table_schema(table)
        known = self.columns_of(table) or []
        sort = (SortKey(order_by, order_direction(order_dir) == "DESC"),) if order_by in known else ()
        graph = QueryGraph(
            source=Source(table),
            sort=sort,
            limit=as_page_number(limit, "limit"),
            offset=as_page_number(offset, "offset") or 0,
        )
        graph_filters = [f for f in filters_from_mapping(filters) if f.field.column in known]
        return self.run(self.plan(graph, graph_filters, strict=False))

    def get_row(self, table: str, id_value: Any) -> Row | None:
        """
        Fetch one row by primary key (composite keys as "a|b").

        Raises:
            NoPrimaryKey: if the table has no primary key.
        """
        schema = self.table_schema(table)
        schema.require_primary_key()
        for r in self.snapshot(table):
            if match_id(r, schema.primary_keys, id_value):
                return r
        return None

    def related_rows(
        self,
        table: str,
        id_value: Any,
        related_table: str,
        fk_column: str | None = None,
        limit: Any = None,
        offset: Any = None,
    ) -> QueryResult:
        """
        Rows of ``related_table`` linked to row ``id_value`` of ``table``.

        Raises:
            NoRelationship: if no FK links the tables.
            NoPrimaryKey: for a forward lookup on a table without a primary key.
        """
        rel = find_relationship(self.table_schema(table), related_table, fk_column)
        target: Any = id_value
        if not rel.direct:
            row = self.get_row(table, id_value)
            target = row.get(rel.local_column) if row is not None else None

        columns = self.columns_of(related_table) or []
        rows: list[Row] = []
        if target is not None:
            rows = [r for r in self.snapshot(related_table) if matches(Operator.EQ, r.get(rel.related_column), target)]

        total = len(rows)
        lim = as_page_number(limit, "limit")
        start = as_page_number(offset, "offset") or 0
        end = start + lim if lim is not None else None
        return QueryResult(columns=columns, rows=rows[start:end], total=total)


def _key_getter(s: PlannedSort):
    return lambda row: row.get(s.key)


def _column_getter(s: PlannedSort):
    return lambda row: row.get((s.table, s.column))

