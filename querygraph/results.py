"""
querygraph/results.py

Result objects returned by the in-memory executor and the write executor.

The engine returns one of:
- QueryResult: for graph queries and per-table listings
- WriteResult: for INSERT/UPDATE/DELETE (one TableWriteResult per affected table)

These are plain serializable dataclasses so they can be used by the REPL and by a
routing layer without extra conversion code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class QueryResult:
    """
    Output of a read.

    Attributes:
        columns: Output column names in order. Once several tables participate,
                 columns are named 'table_column'.
        rows: One dict per row, keyed by the names in ``columns``.
        total: Row count before pagination.
    """
    columns: list[str]
    rows: list[dict[str, Any]]
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {"rows": self.rows, "total": self.total, "columns": self.columns}


@dataclass(frozen=True)
class TableWriteResult:
    """
    Effect of a write on one table.

    Attributes:
        operation: INSERT, UPDATE or DELETE.
        data: Inserted row (INSERT only).
        updated_count: Matched rows (UPDATE only).
        deleted_count: Matched rows (DELETE only).
        preview: True when nothing was mutated.
        message: Human-readable status message.
    """
    operation: str
    data: dict[str, Any] | None = None
    updated_count: int | None = None
    deleted_count: int | None = None
    preview: bool = False
    message: str = "OK"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"operation": self.operation}
        if self.data is not None:
            out["data"] = self.data
        if self.updated_count is not None:
            out["updatedCount"] = self.updated_count
        if self.deleted_count is not None:
            out["deletedCount"] = self.deleted_count
        out["preview"] = self.preview
        out["message"] = self.message
        return out


@dataclass(frozen=True)
class WriteResult:
    """
    Output of execute_write().

    Attributes:
        operation: INSERT, UPDATE or DELETE.
        tables: table name -> TableWriteResult.
    """
    operation: str
    tables: dict[str, TableWriteResult] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"operation": self.operation, "tables": {t: r.to_dict() for t, r in self.tables.items()}}
