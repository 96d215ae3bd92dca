"""
querygraph/exec/join.py

LEFT JOIN and row-filter operators for the in-memory executor.

Responsibilities:
- Lift table rows into combined rows keyed by (table, column) tuples
- Perform one LEFT JOIN step on string-compared equality keys
- Evaluate planned filters against combined rows

Design notes:
- Unmatched left rows survive with the right table's columns null-filled, so
  no source row is lost.
- Multiple matches fan out into one combined row per match.
- A NULL key never matches, as in SQL.
"""

from __future__ import annotations

from typing import Any, Iterable

from ..operators import matches, stringify
from ..plan import JoinStep, PlannedFilter

# Combined row representation: (table, column) -> value
CombinedRow = dict[tuple[str, str], Any]


def lift(table: str, rows: Iterable[dict[str, Any]], columns: Iterable[str]) -> list[CombinedRow]:
    """
    Turn plain rows of one table into combined rows.

    Columns missing from a row are present with None, so every row has the same keys.
    """
    cols = list(columns)
    out: list[CombinedRow] = []
    for r in rows:
        combined: CombinedRow = {(table, c): r.get(c) for c in cols}
        for k, v in r.items():
            combined.setdefault((table, k), v)
        out.append(combined)
    return out


def where_matches(row: CombinedRow, filters: Iterable[PlannedFilter]) -> bool:
    """
    Evaluate a conjunction of planned filters against a combined row.

    Returns:
        True if the row satisfies every filter.
    """
    for f in filters:
        if not matches(f.op, row.get((f.table, f.column)), f.value):
            return False
    return True


def left_join(
    left_rows: Iterable[CombinedRow],
    step: JoinStep,
    right_rows: list[dict[str, Any]],
    right_columns: list[str],
) -> list[CombinedRow]:
    """
    Perform one LEFT JOIN step.

    Args:
        left_rows: Combined rows produced so far.
        step: Join step; ``step.right_table`` is the table being attached.
        right_rows: Snapshot of the right table (empty if the table is absent).
        right_columns: Columns of the right table, used for null-filling.

    Returns:
        Joined combined rows.
    """
    # Bucket right rows by stringified key; NULL keys are never indexed.
    buckets: dict[str, list[dict[str, Any]]] = {}
    for r in right_rows:
        v = r.get(step.right_column)
        if v is None:
            continue
        buckets.setdefault(stringify(v), []).append(r)

    null_fill = {(step.right_table, c): None for c in right_columns}
    out: list[CombinedRow] = []
    for lrow in left_rows:
        key_val = lrow.get((step.left_table, step.left_column))
        hits = buckets.get(stringify(key_val), []) if key_val is not None else []
        if not hits:
            combined = dict(lrow)
            combined.update(null_fill)
            out.append(combined)
            continue
        for r in hits:
            combined = dict(lrow)
            combined.update(null_fill)
            for k, v in r.items():
                combined[(step.right_table, k)] = v
            out.append(combined)
    return out
