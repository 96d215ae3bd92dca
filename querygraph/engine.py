"""
querygraph/engine.py

Public engine API.

Responsibilities:
- Own the per-connection state: schema, dialect and in-memory table store
    - Engine.register(connection_id, schema, dialect)
    - Engine.close(connection_id)
- Dispatch graph queries and writes to the SQL compiler or the in-memory executor
    - engine.query(connection_id, graph) -> ParameterizedQuery | QueryResult
    - engine.write(connection_id, request) -> CompiledWrite | WriteResult
- Expose per-table CRUD for both backends and the operator listing.

Design notes:
- There is no module-level state; tests build an isolated Engine per case.
- A connection registered with the "local" dialect runs in memory; any other
  dialect returns compiled statements for a caller-owned pool.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, Iterable, Mapping

from .catalog import SchemaMap, TableSchema
from .config import Settings, get_logger, get_settings
from .dialect import Dialect, get_dialect
from .errors import SchemaNotFound
from .exec.executor import Executor
from .exec.store import DataStore, Row
from .exec.writer import Writer
from .graph import GraphFilter, QueryGraph, WriteOperation, filters_from_mapping
from .operators import operators_for_column
from .params import ParameterizedQuery
from .payload import decode_graph, decode_list_params, decode_write
from .results import QueryResult, WriteResult
from .sql.builder import SqlBuilder
from .sql.graph import compile_graph
from .sql.writes import CompiledWrite, compile_write

logger = get_logger(__name__)

LOCAL = "local"


class Engine:
    """
    Query graph engine bound to a set of connections.

    Args:
        settings: Engine settings (defaults to the cached process settings).
        store: In-memory table store (a fresh one by default).
    """

    def __init__(self, settings: Settings | None = None, store: DataStore | None = None):
        self.settings = settings or get_settings()
        self.store = store or DataStore()
        self._schemas: dict[str, SchemaMap] = {}
        self._dialect_names: dict[str, str] = {}
        self._lock = threading.Lock()

    # --------------------------
    # connection lifecycle
    # --------------------------

    def register(
        self,
        connection_id: str,
        schema: SchemaMap | Mapping[str, Any],
        dialect: str | None = None,
    ) -> SchemaMap:
        """
        Cache the schema of a connection.

        Args:
            connection_id: Connection identifier.
            schema: SchemaMap or the introspector's JSON shape.
            dialect: Dialect name; "local" selects in-memory execution.

        Returns:
            The cached SchemaMap.
        """
        sm = schema if isinstance(schema, SchemaMap) else SchemaMap.from_dict(schema)
        name = (dialect or self.settings.default_dialect).strip().lower()
        get_dialect(name)
        with self._lock:
            self._schemas[connection_id] = sm
            self._dialect_names[connection_id] = name
        logger.info("Registered connection %s (%s, %d tables)", connection_id, name, len(sm))
        return sm

    def close(self, connection_id: str) -> None:
        """Drop the cached schema and the in-memory tables of a connection."""
        with self._lock:
            self._schemas.pop(connection_id, None)
            self._dialect_names.pop(connection_id, None)
        self.store.close(connection_id)
        logger.info("Closed connection %s", connection_id)

    def schema(self, connection_id: str) -> SchemaMap:
        """
        Raises:
            SchemaNotFound: if the connection was never registered.
        """
        with self._lock:
            sm = self._schemas.get(connection_id)
        if sm is None:
            raise SchemaNotFound(f"Schema not found for connection {connection_id}; introspect it first")
        return sm

    def table(self, connection_id: str, table: str) -> TableSchema:
        return self.schema(connection_id).require_table(table)

    def dialect(self, connection_id: str) -> Dialect:
        self.schema(connection_id)
        return get_dialect(self._dialect_names[connection_id])

    def is_local(self, connection_id: str) -> bool:
        self.schema(connection_id)
        return self._dialect_names[connection_id] == LOCAL

    def load_rows(self, connection_id: str, data: Mapping[str, Iterable[Row]]) -> None:
        """Seed (replace) in-memory tables of a connection."""
        self.store.connection(connection_id).load(dict(data))

    def executor(self, connection_id: str) -> Executor:
        return Executor(self.store.connection(connection_id), self.schema(connection_id), self.settings.strict_references)

    def writer(self, connection_id: str) -> Writer:
        return Writer(self.store.connection(connection_id), self.schema(connection_id), self.settings.strict_references)

    # --------------------------
    # graph queries and writes
    # --------------------------

    def query(
        self,
        connection_id: str,
        graph: QueryGraph | Mapping[str, Any],
        extra_filters: Iterable[GraphFilter] | Mapping[str, Any] = (),
    ) -> ParameterizedQuery | QueryResult:
        """
        Run (local) or compile (SQL) a graph.

        Raises:
            GraphError: for a malformed graph body.
            SchemaNotFound: if the connection was never registered.
        """
        g = decode_graph(graph)
        extra = filters_from_mapping(extra_filters) if isinstance(extra_filters, Mapping) else list(extra_filters)
        if self.is_local(connection_id):
            return self.executor(connection_id).run_graph(g, extra)
        return compile_graph(
            g, self.schema(connection_id), self.dialect(connection_id), extra, strict=self.settings.strict_references
        )

    def preview(self, connection_id: str, graph: QueryGraph | Mapping[str, Any]) -> ParameterizedQuery | QueryResult:
        """Like query() but capped at ``settings.preview_limit`` rows."""
        g = decode_graph(graph)
        cap = self.settings.preview_limit
        limit = cap if g.limit is None else min(g.limit, cap)
        return self.query(connection_id, replace(g, limit=limit))

    def write(self, connection_id: str, request: Mapping[str, Any]) -> CompiledWrite | WriteResult:
        """
        Execute (local) or compile (SQL) a write request body:
        ``{operation, graph, data, previewOnly, additionalFilters}``.
        """
        req = decode_write(request)
        return self.execute_write(
            connection_id,
            req.operation,
            req.graph.to_graph(),
            req.data,
            preview_only=req.preview_only,
            additional_filters=req.extra_filters(),
        )

    def execute_write(
        self,
        connection_id: str,
        operation: WriteOperation | str,
        graph: QueryGraph | Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
        preview_only: bool = False,
        additional_filters: Iterable[GraphFilter] = (),
    ) -> CompiledWrite | WriteResult:
        """
        Graph-scoped INSERT/UPDATE/DELETE.

        Raises:
            MissingFilter: UPDATE/DELETE without any resolved filter.
            MissingData: INSERT/UPDATE without any data.
        """
        g = decode_graph(graph)
        if self.is_local(connection_id):
            return self.writer(connection_id).execute_write(operation, g, data, preview_only, additional_filters)
        return compile_write(
            operation,
            g,
            self.schema(connection_id),
            self.dialect(connection_id),
            data,
            additional_filters,
            strict=self.settings.strict_references,
        )

    # --------------------------
    # per-table CRUD
    # --------------------------

    def builder(self, connection_id: str, table: str) -> SqlBuilder:
        """A fresh single-statement builder for ``table``."""
        return SqlBuilder(self.table(connection_id, table), self.dialect(connection_id))

    def list_rows(self, connection_id: str, table: str, params: Mapping[str, Any] | None = None) -> ParameterizedQuery | QueryResult:
        """
        List rows with ``column__op`` filters, ``limit``, ``offset``, ``orderBy``, ``orderDir``.

        A missing limit falls back to ``settings.default_page_size``.
        """
        p = decode_list_params(params)
        limit = p.limit if p.limit is not None else self.settings.default_page_size
        if self.is_local(connection_id):
            return self.executor(connection_id).list_rows(table, p.filters, limit, p.offset, p.order_by, p.order_dir)
        return self.builder(connection_id, table).build_select(p.filters, limit, p.offset, p.order_by, p.order_dir)

    def get_row(self, connection_id: str, table: str, id_value: Any) -> ParameterizedQuery | Row | None:
        if self.is_local(connection_id):
            return self.executor(connection_id).get_row(table, id_value)
        return self.builder(connection_id, table).build_select_by_id(id_value)

    def create_row(self, connection_id: str, table: str, data: Mapping[str, Any]) -> ParameterizedQuery | Row:
        if self.is_local(connection_id):
            return self.writer(connection_id).create_row(table, data)
        return self.builder(connection_id, table).build_insert(data)

    def update_row(self, connection_id: str, table: str, id_value: Any, data: Mapping[str, Any]) -> ParameterizedQuery | Row | None:
        if self.is_local(connection_id):
            return self.writer(connection_id).update_row(table, id_value, data)
        return self.builder(connection_id, table).build_update(id_value, data)

    def delete_row(self, connection_id: str, table: str, id_value: Any) -> ParameterizedQuery | Row | None:
        if self.is_local(connection_id):
            return self.writer(connection_id).delete_row(table, id_value)
        return self.builder(connection_id, table).build_delete(id_value)

    def update_where(
        self, connection_id: str, table: str, data: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> ParameterizedQuery | int:
        if self.is_local(connection_id):
            return self.writer(connection_id).update_where(table, data, filters)
        return self.builder(connection_id, table).build_update_where(data, filters)

    def delete_where(self, connection_id: str, table: str, filters: Mapping[str, Any]) -> ParameterizedQuery | int:
        if self.is_local(connection_id):
            return self.writer(connection_id).delete_where(table, filters)
        return self.builder(connection_id, table).build_delete_where(filters)

    def related_rows(
        self,
        connection_id: str,
        table: str,
        id_value: Any,
        related_table: str,
        fk_column: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> ParameterizedQuery | QueryResult:
        """
        Rows of ``related_table`` linked to row ``id_value`` of ``table``.

        Raises:
            NoRelationship: if no FK links the tables.
        """
        p = decode_list_params(params)
        if self.is_local(connection_id):
            return self.executor(connection_id).related_rows(table, id_value, related_table, fk_column, p.limit, p.offset)
        sm = self.schema(connection_id)
        return self.builder(connection_id, table).build_related_query(
            related_table,
            id_value,
            fk_column,
            p.limit,
            p.offset,
            p.order_by,
            p.order_dir,
            related_schema=sm.get(related_table),
        )

    # --------------------------
    # metadata
    # --------------------------

    def operators(self, connection_id: str) -> dict[str, dict[str, list[str]]]:
        """Operator tags per table and column, chosen by column type."""
        return {
            name: {c.name: [op.value for op in operators_for_column(c)] for c in t.columns}
            for name, t in self.schema(connection_id).tables.items()
        }
