"""
querygraph/sql/builder.py

Per-table SQL statement builder.

Responsibilities:
- SELECT (filtered, ordered, paginated), SELECT by id, INSERT, UPDATE by id,
  UPDATE by filter, DELETE by id, DELETE by filter, and related-record SELECT.
- Bind every value through a ParamBuffer; only quoted identifiers and keywords
  reach the SQL text.

Design notes:
- One SqlBuilder builds exactly one statement. A second build raises BuilderReused,
  so a parameter buffer can never leak across statements.
- Unknown filter and order-by columns are dropped, so stray query parameters are
  tolerated. UPDATE/DELETE by filter still refuse to run when nothing resolves.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from ..catalog import ColumnSchema, TableSchema, find_relationship
from ..config.logging import get_logger
from ..dialect import Dialect, get_dialect
from ..errors import BuilderReused, GraphError, MissingFilter, NoValidColumns
from ..operators import Filter, Operator, decode_filters, render_sql
from ..params import ParamBuffer, ParameterizedQuery

logger = get_logger(__name__)


# --------------------------
# Shared fragments
# --------------------------

def as_page_number(value: Any, name: str) -> int | None:
    """
    Parse a limit/offset value.

    Raises:
        GraphError: for negative or non-integer values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise GraphError(f"{name} must be an integer")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise GraphError(f"{name} must be an integer, got {value!r}") from None
    if n < 0:
        raise GraphError(f"{name} must be non-negative")
    return n


def order_direction(raw: Any) -> str:
    return "DESC" if str(raw or "ASC").upper() == "DESC" else "ASC"


def render_filter(
    dialect: Dialect,
    params: ParamBuffer,
    column_sql: str,
    column: ColumnSchema | None,
    op: Operator,
    value: Any,
) -> str:
    """
    Render one predicate, applying JSON comparison for eq on JSON-typed columns.

    Args:
        dialect: Target dialect.
        params: Statement parameter buffer.
        column_sql: Quoted (possibly alias-qualified) column.
        column: Column metadata, if known.
        op: Operator.
        value: Filter value.
    """
    if op is Operator.EQ and column is not None and column.is_json:
        try:
            parsed = json.loads(value) if isinstance(value, str) else value
        except ValueError:
            return dialect.json_text_equals(column_sql, params.add(str(value)))
        return dialect.json_equals(column_sql, params.add(json.dumps(parsed)))
    return render_sql(op, column_sql, value, params)


def render_pagination(dialect: Dialect, params: ParamBuffer, limit: Any, offset: Any) -> str:
    """LIMIT/OFFSET as bound parameters. Offset 0 is omitted."""
    lim = as_page_number(limit, "limit")
    off = as_page_number(offset, "offset")
    sql = ""
    if lim is not None:
        sql += f" LIMIT {params.add_raw(lim)}"
    elif off and dialect.offset_only_limit():
        sql += f" LIMIT {dialect.offset_only_limit()}"
    if off:
        sql += f" OFFSET {params.add_raw(off)}"
    return sql


def _as_filters(filters: Mapping[str, Any] | Iterable[Filter] | None) -> list[Filter]:
    if filters is None:
        return []
    if isinstance(filters, Mapping):
        return decode_filters(filters)
    return list(filters)


class SingleUse:
    """Guard that lets an object build exactly one statement."""

    def __init__(self) -> None:
        self._used = False

    def _begin(self) -> None:
        if self._used:
            raise BuilderReused(f"{type(self).__name__} already built a statement; create a new one")
        self._used = True


# --------------------------
# Per-table builder
# --------------------------

class SqlBuilder(SingleUse):
    """
    Builds one statement against one table.

    Args:
        schema: Target table.
        dialect: Dialect name or instance.
    """

    def __init__(self, schema: TableSchema, dialect: str | Dialect | None = None):
        super().__init__()
        self.schema = schema
        self.dialect = get_dialect(dialect)
        self.params = ParamBuffer(self.dialect)

    # ---------- helpers ----------

    @property
    def table_sql(self) -> str:
        return self.q(self.schema.name)

    def q(self, name: str) -> str:
        return self.dialect.quote_identifier(name)

    def is_valid_column(self, name: str) -> bool:
        return self.schema.has_column(name)

    def _finish(self, text: str) -> ParameterizedQuery:
        logger.debug("SQL %s %s", text, self.params.values)
        return ParameterizedQuery(text=text, values=list(self.params.values))

    def _where(self, filters: list[Filter]) -> list[str]:
        clauses: list[str] = []
        for f in filters:
            if not self.is_valid_column(f.column):
                logger.debug("Dropping filter on unknown column %s.%s", self.schema.name, f.column)
                continue
            clauses.append(
                render_filter(self.dialect, self.params, self.q(f.column), self.schema.get_column(f.column), f.op, f.value)
            )
        return clauses

    def _order_by(self, order_by: str | None, order_dir: str | None, valid: Iterable[str]) -> str:
        if order_by and order_by in set(valid):
            return f" ORDER BY {self.q(order_by)} {order_direction(order_dir)}"
        return ""

    def _settable(self, data: Mapping[str, Any], exclude: str | None = None) -> list[str]:
        return [
            f"{self.q(c)} = {self.params.add(v)}"
            for c, v in data.items()
            if self.is_valid_column(c) and c != exclude
        ]

    # ---------- statements ----------

    def build_select(
        self,
        filters: Mapping[str, Any] | Iterable[Filter] | None = None,
        limit: Any = None,
        offset: Any = None,
        order_by: str | None = None,
        order_dir: str | None = "ASC",
    ) -> ParameterizedQuery:
        """
        SELECT * with optional filters, ordering and bound pagination.
        """
        self._begin()
        sql = f"SELECT * FROM {self.table_sql}"
        where = self._where(_as_filters(filters))
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += self._order_by(order_by, order_dir, self.schema.column_names())
        sql += render_pagination(self.dialect, self.params, limit, offset)
        return self._finish(sql)

    def build_select_by_id(self, id_value: Any) -> ParameterizedQuery:
        self._begin()
        pk = self.schema.require_primary_key()
        return self._finish(f"SELECT * FROM {self.table_sql} WHERE {self.q(pk)} = {self.params.add(id_value)}")

    def build_insert(self, data: Mapping[str, Any]) -> ParameterizedQuery:
        """
        INSERT of the valid columns in ``data``.

        Raises:
            NoValidColumns: if no key of ``data`` is a column of the table.
        """
        self._begin()
        cols = [c for c in data if self.is_valid_column(c)]
        if not cols:
            raise NoValidColumns(f"No valid columns to insert into {self.schema.name}")
        col_sql = ", ".join(self.q(c) for c in cols)
        placeholders = ", ".join(self.params.add(data[c]) for c in cols)
        sql = f"INSERT INTO {self.table_sql} ({col_sql}) VALUES ({placeholders})"
        return self._finish(sql + self.dialect.returning_clause())

    def build_update(self, id_value: Any, data: Mapping[str, Any]) -> ParameterizedQuery:
        """
        UPDATE one row by primary key. The key column is never written.

        Raises:
            NoPrimaryKey: if the table has no primary key.
            NoValidColumns: if nothing remains to SET.
        """
        self._begin()
        pk = self.schema.require_primary_key()
        sets = self._settable(data, exclude=pk)
        if not sets:
            raise NoValidColumns(f"No valid columns to update in {self.schema.name}")
        sql = f"UPDATE {self.table_sql} SET {', '.join(sets)} WHERE {self.q(pk)} = {self.params.add(id_value)}"
        return self._finish(sql + self.dialect.returning_clause())

    def build_update_where(
        self,
        data: Mapping[str, Any],
        filters: Mapping[str, Any] | Iterable[Filter] | None,
    ) -> ParameterizedQuery:
        """
        Collection-level UPDATE. SET parameters precede WHERE parameters.

        Raises:
            NoValidColumns: if nothing remains to SET.
            MissingFilter: if no filter resolves to a column.
        """
        self._begin()
        pk = self.schema.primary_key_column()
        sets = self._settable(data, exclude=pk)
        if not sets:
            raise NoValidColumns(f"No valid columns to update in {self.schema.name}")
        where = self._where(_as_filters(filters))
        if not where:
            raise MissingFilter(f"Refusing to run UPDATE on {self.schema.name} without filters")
        sql = f"UPDATE {self.table_sql} SET {', '.join(sets)} WHERE {' AND '.join(where)}"
        return self._finish(sql + self.dialect.returning_clause())

    def build_delete(self, id_value: Any) -> ParameterizedQuery:
        self._begin()
        pk = self.schema.require_primary_key()
        sql = f"DELETE FROM {self.table_sql} WHERE {self.q(pk)} = {self.params.add(id_value)}"
        return self._finish(sql + self.dialect.returning_clause())

    def build_delete_where(self, filters: Mapping[str, Any] | Iterable[Filter] | None) -> ParameterizedQuery:
        """
        Collection-level DELETE.

        Raises:
            MissingFilter: if no filter resolves to a column. Nothing is built.
        """
        self._begin()
        where = self._where(_as_filters(filters))
        if not where:
            raise MissingFilter(f"Refusing to run DELETE on {self.schema.name} without filters")
        sql = f"DELETE FROM {self.table_sql} WHERE {' AND '.join(where)}"
        return self._finish(sql + self.dialect.returning_clause())

    def build_related_query(
        self,
        related_table: str,
        id_value: Any,
        fk_column: str | None = None,
        limit: Any = None,
        offset: Any = None,
        order_by: str | None = None,
        order_dir: str | None = "ASC",
        related_schema: TableSchema | None = None,
    ) -> ParameterizedQuery:
        """
        SELECT rows of ``related_table`` related to the row ``id_value`` of this table.

        Forward FK without ``fk_column``: the FK value is read from this table by
        primary key in a subquery. Reverse FK, or any FK named by ``fk_column``:
        ``id_value`` is compared directly.

        Args:
            related_schema: Schema of the related table, used to validate ``order_by``.
                            Without it the order-by column is only sanitized.

        Raises:
            NoRelationship: if no FK links the tables.
            NoPrimaryKey: for a forward subquery on a table without a primary key.
        """
        self._begin()
        rel = find_relationship(self.schema, related_table, fk_column)
        related_sql = self.q(related_table)

        if rel.direct:
            sql = f"SELECT * FROM {related_sql} WHERE {self.q(rel.related_column)} = {self.params.add(id_value)}"
        else:
            pk = self.schema.require_primary_key()
            sub = f"SELECT {self.q(rel.local_column)} FROM {self.table_sql} WHERE {self.q(pk)} = {self.params.add(id_value)}"
            sql = f"SELECT * FROM {related_sql} WHERE {self.q(rel.related_column)} = ({sub})"

        if order_by:
            valid = related_schema.column_names() if related_schema is not None else [order_by]
            sql += self._order_by(order_by, order_dir, valid)
        sql += render_pagination(self.dialect, self.params, limit, offset)
        return self._finish(sql)
