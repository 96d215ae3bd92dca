"""
querygraph/sql/writes.py

Compile graph-scoped writes into SQL statements for a caller-owned pool.

Responsibilities:
- INSERT: one statement per table named in the data.
- UPDATE: one statement per table named in the data, filtered by the graph
  filters scoped to that table plus request-time filters.
- DELETE: one statement on the source table; filters on joined tables become
  EXISTS semi-joins along the join path.

Design notes:
- UPDATE and DELETE with zero resolved filters raise MissingFilter before any SQL
  text is produced.
- The engine never executes statements; tables are written independently with no
  cross-table atomicity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..catalog import SchemaMap
from ..config.logging import get_logger
from ..dialect import Dialect, get_dialect
from ..errors import MissingData, MissingFilter
from ..graph import GraphFilter, QueryGraph, WriteOperation, split_data
from ..operators import OperatorFilter
from ..params import ParamBuffer, ParameterizedQuery
from ..plan import JoinStep, LogicalPlan, PlannedFilter, plan_graph
from .builder import SqlBuilder, render_filter
from .graph import assign_aliases

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompiledWrite:
    """
    Statements for one write request.

    Attributes:
        operation: INSERT, UPDATE or DELETE.
        statements: table -> statement, in execution order.
    """
    operation: WriteOperation
    statements: dict[str, ParameterizedQuery] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "statements": {t: q.to_dict() for t, q in self.statements.items()},
        }


def join_path(plan: LogicalPlan, table: str) -> list[JoinStep]:
    """Join steps leading from the source to ``table`` (empty for the source)."""
    by_right = {s.right_table: s for s in plan.joins}
    path: list[JoinStep] = []
    current = table
    while current != plan.source:
        step = by_right.get(current)
        if step is None:
            return []
        path.append(step)
        current = step.left_table
    path.reverse()
    return path


def _scoped(filters: Iterable[PlannedFilter], table: str) -> list[OperatorFilter]:
    return [OperatorFilter(f.column, f.op, f.value) for f in filters if f.table == table]


def compile_write(
    operation: WriteOperation | str,
    graph: QueryGraph,
    schema: SchemaMap,
    dialect: str | Dialect | None = None,
    data: Mapping[str, Any] | None = None,
    additional_filters: Iterable[GraphFilter] = (),
    strict: bool = False,
) -> CompiledWrite:
    """
    Compile a write against the tables of ``graph``.

    Args:
        operation: INSERT, UPDATE or DELETE.
        graph: Graph supplying the source table, join edges and filters.
        schema: Schema of the connection.
        dialect: Dialect name or instance.
        data: Column values; "table.column" keys target joined tables, bare keys the source.
        additional_filters: Request-time filters combined with the graph filters.
        strict: Raise on unresolvable references instead of dropping them.

    Returns:
        CompiledWrite with one statement per affected table.

    Raises:
        MissingFilter: UPDATE/DELETE without any resolved filter.
        MissingData: INSERT/UPDATE without any data.
        NoValidColumns: INSERT/UPDATE data naming no column of a table.
        UnknownTable: a data key names a table absent from the schema.
    """
    op = WriteOperation(str(getattr(operation, "value", operation)).upper())
    if op is not WriteOperation.DELETE and not data:
        raise MissingData(f"No data provided for {op.value} on {graph.source.table}")
    dialect = get_dialect(dialect)
    schema.require_table(graph.source.table)

    def lookup(table: str) -> list[str] | None:
        t = schema.get(table)
        return t.column_names() if t is not None else None

    plan = plan_graph(graph, lookup, additional_filters, strict=strict)
    out = CompiledWrite(operation=op)

    if op is WriteOperation.INSERT:
        for table, values in split_data(data, plan.source).items():
            out.statements[table] = SqlBuilder(schema.require_table(table), dialect).build_insert(values)
        return out

    if op is WriteOperation.UPDATE:
        for table, values in split_data(data, plan.source).items():
            filters = _scoped(plan.filters, table)
            if not filters:
                raise MissingFilter(f"Refusing to run UPDATE on {table} without filters")
            out.statements[table] = SqlBuilder(schema.require_table(table), dialect).build_update_where(values, filters)
        return out

    out.statements[plan.source] = _compile_delete(plan, schema, dialect)
    return out


def _compile_delete(plan: LogicalPlan, schema: SchemaMap, dialect: Dialect) -> ParameterizedQuery:
    q = dialect.quote_identifier
    params = ParamBuffer(dialect)
    source_schema = schema.require_table(plan.source)
    where: list[str] = []

    by_table: dict[str, list[PlannedFilter]] = {}
    for f in plan.filters:
        by_table.setdefault(f.table, []).append(f)

    for table, filters in by_table.items():
        if table == plan.source:
            for f in filters:
                where.append(
                    render_filter(dialect, params, f"{q(table)}.{q(f.column)}", source_schema.get_column(f.column), f.op, f.value)
                )
            continue

        path = join_path(plan, table)
        if not path:
            logger.warning("Ignoring DELETE filters on %s: no join path from %s", table, plan.source)
            continue
        where.append(_exists(path, filters, plan.source, schema, dialect, params))

    if not where:
        raise MissingFilter(f"Refusing to run DELETE on {plan.source} without filters")

    sql = f"DELETE FROM {q(plan.source)} WHERE {' AND '.join(where)}" + dialect.returning_clause()
    logger.debug("Compiled DELETE: %s %s", sql, params.values)
    return ParameterizedQuery(text=sql, values=list(params.values))


def _exists(
    path: list[JoinStep],
    filters: list[PlannedFilter],
    source: str,
    schema: SchemaMap,
    dialect: Dialect,
    params: ParamBuffer,
) -> str:
    """
    EXISTS subquery correlated to the source table along ``path``.

    EXISTS (SELECT 1 FROM a "x1" JOIN b "x2" ON ... WHERE "x1".c = "src".d AND <filters on b>)
    """
    q = dialect.quote_identifier
    tables = [s.right_table for s in path]
    # Aliases must not shadow the correlated source table name.
    aliases = assign_aliases([source] + tables, source, source_alias=f"{source[:1].lower()}_src")

    def col(table: str, column: str) -> str:
        if table == source:
            return f"{q(source)}.{q(column)}"
        return f"{q(aliases[table])}.{q(column)}"

    first = path[0]
    sql = f"SELECT 1 FROM {q(first.right_table)} {q(aliases[first.right_table])}"
    for step in path[1:]:
        sql += (
            f" JOIN {q(step.right_table)} {q(aliases[step.right_table])}"
            f" ON {col(step.left_table, step.left_column)} = {col(step.right_table, step.right_column)}"
        )

    conds = [f"{col(first.left_table, first.left_column)} = {col(first.right_table, first.right_column)}"]
    target = schema.require_table(filters[0].table)
    for f in filters:
        conds.append(render_filter(dialect, params, col(f.table, f.column), target.get_column(f.column), f.op, f.value))
    return f"EXISTS ({sql} WHERE {' AND '.join(conds)})"
