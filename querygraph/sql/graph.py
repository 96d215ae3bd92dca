"""
querygraph/sql/graph.py

Compile a QueryGraph into one parameterized SELECT.

Pipeline:
- plan the graph (plan.py) against the schema's columns
- assign short table aliases (first letter, numbered on collision)
- emit SELECT / FROM / LEFT JOIN / WHERE / GROUP BY / HAVING / ORDER BY / LIMIT / OFFSET

Design notes:
- HAVING repeats the aggregate expression instead of the select alias, since
  Postgres cannot reference select aliases there.
- COUNT always renders COUNT(*): the in-memory executor counts partition rows.
- "alias.*" is only emitted for a source table that declares no columns.
"""

from __future__ import annotations

from typing import Iterable

from ..catalog import SchemaMap
from ..config.logging import get_logger
from ..dialect import Dialect, get_dialect
from ..graph import AggregateFunction, GraphFilter, QueryGraph
from ..operators import render_sql
from ..params import ParamBuffer, ParameterizedQuery
from ..plan import LogicalPlan, PlannedAggregate, plan_graph
from .builder import SingleUse, render_filter, render_pagination

logger = get_logger(__name__)


def assign_aliases(tables: list[str], source: str, source_alias: str | None = None) -> dict[str, str]:
    """
    Derive a short alias per table from its first letter; collisions get a number.

    Example:
        ["users", "uploads", "posts"] -> {"users": "u", "uploads": "u2", "posts": "p"}
    """
    aliases: dict[str, str] = {}
    used: set[str] = set()
    for t in tables:
        if t == source and source_alias:
            alias = source_alias
        else:
            base = t[:1].lower() or "t"
            alias, n = base, 1
            while alias in used:
                n += 1
                alias = f"{base}{n}"
        aliases[t] = alias
        used.add(alias)
    return aliases


class GraphCompiler(SingleUse):
    """
    Compiles one graph into one statement.

    Args:
        schema: Schema of the connection.
        dialect: Dialect name or instance.
        strict: Raise on unresolvable references instead of dropping them.
    """

    def __init__(self, schema: SchemaMap, dialect: str | Dialect | None = None, strict: bool = False):
        super().__init__()
        self.schema = schema
        self.dialect = get_dialect(dialect)
        self.strict = strict
        self.params = ParamBuffer(self.dialect)
        self.aliases: dict[str, str] = {}

    def _lookup(self, table: str) -> list[str] | None:
        t = self.schema.get(table)
        return t.column_names() if t is not None else None

    def col(self, table: str, column: str) -> str:
        q = self.dialect.quote_identifier
        return f"{q(self.aliases[table])}.{q(column)}"

    def agg_expr(self, agg: PlannedAggregate) -> str:
        if agg.function is AggregateFunction.COUNT or agg.column is None:
            return "COUNT(*)"
        return f"{agg.function.value}({self.col(agg.table, agg.column)})"

    def plan(self, graph: QueryGraph, extra_filters: Iterable[GraphFilter] = ()) -> LogicalPlan:
        for t in [graph.source.table] + [x for j in graph.joins for x in (j.from_table, j.to_table)]:
            self.schema.require_table(t)
        return plan_graph(graph, self._lookup, extra_filters, strict=self.strict)

    def compile(self, graph: QueryGraph, extra_filters: Iterable[GraphFilter] = ()) -> ParameterizedQuery:
        """
        Compile ``graph`` (plus request-time filters) into SQL.

        Raises:
            UnknownTable: if the source or a join endpoint is not in the schema.
            InvalidIdentifier: if any identifier fails sanitization.
            UnresolvableReference: only in strict mode.
        """
        self._begin()
        plan = self.plan(graph, extra_filters)
        self.aliases = assign_aliases(plan.tables, plan.source, plan.source_alias)
        q = self.dialect.quote_identifier

        # ---------- SELECT ----------
        if plan.is_aggregate:
            select = [f"{self.col(g.table, g.column)} AS {q(g.key)}" for g in plan.group_keys]
            select += [f"{self.agg_expr(a)} AS {q(a.alias)}" for a in plan.aggregates]
        else:
            select = [f"{self.col(p.table, p.column)} AS {q(p.key)}" for p in plan.projection]
        if not select:
            select = [f"{q(self.aliases[plan.source])}.*"]

        sql = f"SELECT {', '.join(select)} FROM {q(plan.source)} {q(self.aliases[plan.source])}"

        # ---------- JOIN ----------
        for step in plan.joins:
            sql += (
                f" LEFT JOIN {q(step.right_table)} {q(self.aliases[step.right_table])}"
                f" ON {self.col(step.left_table, step.left_column)} = {self.col(step.right_table, step.right_column)}"
            )

        # ---------- WHERE ----------
        where = []
        for f in plan.filters:
            column = self.schema.require_table(f.table).get_column(f.column)
            where.append(render_filter(self.dialect, self.params, self.col(f.table, f.column), column, f.op, f.value))
        if where:
            sql += " WHERE " + " AND ".join(where)

        # ---------- GROUP BY / HAVING ----------
        if plan.group_keys:
            sql += " GROUP BY " + ", ".join(self.col(g.table, g.column) for g in plan.group_keys)
        if plan.having:
            sql += " HAVING " + " AND ".join(
                render_sql(h.op, self.agg_expr(h.aggregate), h.value, self.params) for h in plan.having
            )

        # ---------- ORDER BY ----------
        if plan.sort:
            terms = []
            for s in plan.sort:
                expr = q(s.key) if s.key is not None else self.col(s.table, s.column)
                terms.append(f"{expr} {'DESC' if s.descending else 'ASC'}")
            sql += " ORDER BY " + ", ".join(terms)

        sql += render_pagination(self.dialect, self.params, plan.limit, plan.offset)

        logger.debug("Compiled graph on %s: %s %s", plan.source, sql, self.params.values)
        return ParameterizedQuery(text=sql, values=list(self.params.values), columns=plan.columns)


def compile_graph(
    graph: QueryGraph,
    schema: SchemaMap,
    dialect: str | Dialect | None = None,
    extra_filters: Iterable[GraphFilter] = (),
    strict: bool = False,
) -> ParameterizedQuery:
    """Compile ``graph`` with a fresh GraphCompiler."""
    return GraphCompiler(schema, dialect, strict=strict).compile(graph, extra_filters)
