"""
querygraph/exec/writer.py

Write executor for local mode.

Responsibilities:
- Per-table CRUD: create, update by id, delete by id, update by filter, delete by filter.
- Graph-scoped writes (execute_write): INSERT into every table named in the data,
  UPDATE matched rows per table, DELETE source rows with semi-join filters over
  joined tables.
- Preview mode: report the effect without mutating the store.

Design notes:
- Every read-modify-write runs under the table's lock (id generation included).
- UPDATE/DELETE with zero resolved filters raise MissingFilter before touching rows.
- Tables are written independently; a multi-table INSERT may partially complete.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..config.logging import get_logger
from ..errors import MissingData, MissingFilter, NoValidColumns
from ..graph import GraphFilter, QueryGraph, WriteOperation, split_data
from ..operators import Filter, OperatorFilter, decode_filters, matches, stringify, to_number
from ..plan import JoinStep, LogicalPlan, PlannedFilter
from ..results import TableWriteResult, WriteResult
from ..sql.writes import join_path
from .executor import Executor, match_id
from .join import CombinedRow, lift, where_matches
from .store import Row

logger = get_logger(__name__)


def next_id(rows: Iterable[Row], pk: str) -> int:
    """Max numeric key + 1 (1 for an empty table)."""
    nums = [to_number(r.get(pk)) for r in rows]
    present = [int(n) for n in nums if n is not None]
    return max(present) + 1 if present else 1


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _row_matches(row: Row, filters: Iterable[Filter]) -> bool:
    return all(matches(f.op, row.get(f.column), f.value) for f in filters)


def _plain(filters: Iterable[PlannedFilter], table: str) -> list[Filter]:
    return [OperatorFilter(f.column, f.op, f.value) for f in filters if f.table == table]


@dataclass
class Writer(Executor):
    """
    Write-side executor; shares snapshot and schema helpers with Executor.
    """

    # ---------- helpers ----------

    def _valid_data(self, table: str, data: Mapping[str, Any], exclude: str | None = None) -> dict[str, Any]:
        known = self.schema.get(table)
        if known is None:
            out = {k: v for k, v in data.items() if k != exclude}
        else:
            out = {k: v for k, v in data.items() if known.has_column(k) and k != exclude}
        return out

    def _prepare_insert(self, table: str, data: Mapping[str, Any], rows: list[Row]) -> Row:
        schema = self.table_schema(table)
        values = self._valid_data(table, data)
        if not values:
            raise NoValidColumns(f"No valid columns to insert into {table}")
        if len(schema.primary_keys) == 1:
            pk = schema.primary_keys[0]
            if _is_blank(values.get(pk)):
                values[pk] = next_id(rows, pk)
        if self.schema.get(table) is not None:
            row = {c: values.get(c) for c in schema.column_names()}
        else:
            row = dict(values)
        return row

    def _filters(self, table: str, filters: Mapping[str, Any] | Iterable[Filter] | None) -> list[Filter]:
        decoded = decode_filters(filters) if isinstance(filters, Mapping) or filters is None else list(filters)
        known = self.columns_of(table) or []
        return [f for f in decoded if f.column in known]

    # ---------- per-table CRUD ----------

    def create_row(self, table: str, data: Mapping[str, Any]) -> Row:
        """
        Append one row, generating a single integer primary key when missing.

        Raises:
            NoValidColumns: if ``data`` names no column of the table.
        """
        self.table_schema(table)
        ts = self.store.table(table)
        with ts.locked() as rows:
            row = self._prepare_insert(table, data, rows)
            rows.append(row)
            return dict(row)

    def update_row(self, table: str, id_value: Any, data: Mapping[str, Any]) -> Row | None:
        """
        Merge ``data`` into the row addressed by ``id_value``; the key is never rewritten.

        Returns:
            Updated row, or None if no row has that id.

        Raises:
            NoPrimaryKey: if the table has no primary key.
            NoValidColumns: if nothing remains to update.
        """
        schema = self.table_schema(table)
        pk = schema.require_primary_key()
        values = self._valid_data(table, data, exclude=pk)
        if not values:
            raise NoValidColumns(f"No valid columns to update in {table}")
        ts = self.store.table(table)
        with ts.locked() as rows:
            for i, r in enumerate(rows):
                if match_id(r, schema.primary_keys, id_value):
                    rows[i] = {**r, **values}
                    return dict(rows[i])
        return None

    def delete_row(self, table: str, id_value: Any) -> Row | None:
        """
        Remove the row addressed by ``id_value``.

        Returns:
            The removed row, or None if no row has that id.
        """
        schema = self.table_schema(table)
        schema.require_primary_key()
        ts = self.store.table(table)
        with ts.locked() as rows:
            for i, r in enumerate(rows):
                if match_id(r, schema.primary_keys, id_value):
                    return rows.pop(i)
        return None

    def update_where(self, table: str, data: Mapping[str, Any], filters: Mapping[str, Any] | Iterable[Filter] | None) -> int:
        """
        Merge ``data`` into every matching row.

        Raises:
            NoValidColumns: if nothing remains to update.
            MissingFilter: if no filter names a column of the table.
        """
        schema = self.table_schema(table)
        values = self._valid_data(table, data, exclude=schema.primary_key_column())
        if not values:
            raise NoValidColumns(f"No valid columns to update in {table}")
        resolved = self._filters(table, filters)
        if not resolved:
            raise MissingFilter(f"Refusing to run UPDATE on {table} without filters")
        count = 0
        with self.store.table(table).locked() as rows:
            for i, r in enumerate(rows):
                if _row_matches(r, resolved):
                    rows[i] = {**r, **values}
                    count += 1
        return count

    def delete_where(self, table: str, filters: Mapping[str, Any] | Iterable[Filter] | None) -> int:
        """
        Remove every matching row.

        Raises:
            MissingFilter: if no filter names a column of the table. No row is removed.
        """
        self.table_schema(table)
        resolved = self._filters(table, filters)
        if not resolved:
            raise MissingFilter(f"Refusing to run DELETE on {table} without filters")
        with self.store.table(table).locked() as rows:
            kept = [r for r in rows if not _row_matches(r, resolved)]
            count = len(rows) - len(kept)
            rows[:] = kept
        return count

    # ---------- graph-scoped writes ----------

    def execute_write(
        self,
        operation: WriteOperation | str,
        graph: QueryGraph,
        data: Mapping[str, Any] | None = None,
        preview_only: bool = False,
        additional_filters: Iterable[GraphFilter] = (),
    ) -> WriteResult:
        """
        Run INSERT/UPDATE/DELETE against the tables of ``graph``.

        Args:
            operation: INSERT, UPDATE or DELETE.
            graph: Graph supplying the source table, join edges and filters.
            data: Column values; "table.column" keys target joined tables.
            preview_only: Report the effect without mutating the store.
            additional_filters: Request-time filters combined with the graph filters.

        Returns:
            WriteResult with one entry per affected table.

        Raises:
            MissingFilter: UPDATE/DELETE without any resolved filter.
            MissingData: INSERT/UPDATE without any data.
            NoValidColumns: INSERT/UPDATE data naming no column of a table.
        """
        op = WriteOperation(str(getattr(operation, "value", operation)).upper())
        if op is not WriteOperation.DELETE and not data:
            raise MissingData(f"No data provided for {op.value} on {graph.source.table}")
        result = WriteResult(operation=op.value)

        if op is WriteOperation.INSERT:
            for table, values in split_data(data, graph.source.table).items():
                result.tables[table] = self._insert(table, values, preview_only)
            return result

        plan = self.plan(graph, additional_filters)
        if op is WriteOperation.UPDATE:
            for table, values in split_data(data, plan.source).items():
                result.tables[table] = self._update(plan, table, values, preview_only)
            return result

        result.tables[plan.source] = self._delete(plan, preview_only)
        return result

    def _insert(self, table: str, values: Mapping[str, Any], preview: bool) -> TableWriteResult:
        self.table_schema(table)
        if preview:
            row = self._prepare_insert(table, values, self.snapshot(table))
        else:
            with self.store.table(table).locked() as rows:
                row = self._prepare_insert(table, values, rows)
                rows.append(row)
        message = "would insert 1 row" if preview else "inserted 1 row"
        return TableWriteResult(operation="INSERT", data=dict(row), preview=preview, message=message)

    def _update(self, plan: LogicalPlan, table: str, values: Mapping[str, Any], preview: bool) -> TableWriteResult:
        filters = _plain(plan.filters, table)
        if not filters:
            raise MissingFilter(f"Refusing to run UPDATE on {table} without filters")
        schema = self.table_schema(table)
        clean = self._valid_data(table, values, exclude=schema.primary_key_column())
        if not clean:
            raise NoValidColumns(f"No valid columns to update in {table}")

        count = 0
        with self.store.table(table).locked() as rows:
            for i, r in enumerate(rows):
                if not _row_matches(r, filters):
                    continue
                count += 1
                if not preview:
                    rows[i] = {**r, **clean}
        message = f"would update {count}" if preview else f"updated {count}"
        return TableWriteResult(operation="UPDATE", updated_count=count, preview=preview, message=message)

    def _delete(self, plan: LogicalPlan, preview: bool) -> TableWriteResult:
        source_filters = plan.source_filters()
        semi: dict[str, tuple[list[JoinStep], list[PlannedFilter]]] = {}
        for f in plan.joined_filters():
            path = join_path(plan, f.table)
            if not path:
                logger.warning("Ignoring DELETE filter on %s.%s: no join path from %s", f.table, f.column, plan.source)
                continue
            semi.setdefault(f.table, (path, []))[1].append(f)

        if not source_filters and not semi:
            raise MissingFilter(f"Refusing to run DELETE on {plan.source} without filters")

        snapshots = {s.right_table: self.snapshot(s.right_table) for path, _ in semi.values() for s in path}
        columns = plan.table_columns[plan.source]

        def eligible(row: Row) -> bool:
            combined = lift(plan.source, [row], columns)[0]
            if not where_matches(combined, source_filters):
                return False
            return all(_reachable(combined, path, filters, snapshots) for path, filters in semi.values())

        with self.store.table(plan.source).locked() as rows:
            kept = [r for r in rows if not eligible(r)]
            count = len(rows) - len(kept)
            if not preview:
                rows[:] = kept
        message = f"would delete {count}" if preview else f"deleted {count}"
        return TableWriteResult(operation="DELETE", deleted_count=count, preview=preview, message=message)


def _reachable(
    start: CombinedRow,
    path: list[JoinStep],
    filters: list[PlannedFilter],
    snapshots: dict[str, list[Row]],
) -> bool:
    """
    Semi-join test: some row reachable from ``start`` along ``path`` satisfies ``filters``.
    """
    frontier = [start]
    for step in path:
        nxt: list[CombinedRow] = []
        for c in frontier:
            key = c.get((step.left_table, step.left_column))
            if key is None:
                continue
            for r in snapshots.get(step.right_table, []):
                v = r.get(step.right_column)
                if v is not None and stringify(v) == stringify(key):
                    combined = dict(c)
                    for k, val in r.items():
                        combined[(step.right_table, k)] = val
                    nxt.append(combined)
        frontier = nxt
    return any(where_matches(c, filters) for c in frontier)
