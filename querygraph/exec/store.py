"""
querygraph/exec/store.py

Process-resident table store for local (in-memory) mode.

Responsibilities:
- Hold per-connection, per-table row lists (append order = array order).
- Serialize mutations per (connection, table) with a reentrant lock.
- Give readers a consistent snapshot of a table for one pipeline pass.

Design notes:
- Rows are plain dicts; deletion is filtered removal, never tombstoning.
- Snapshots are shallow copies of each row, so later writes never leak into a
  pipeline that is already running.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

Row = dict[str, Any]


class TableStore:
    """
    Rows of one table plus the lock guarding them.
    """

    def __init__(self, name: str, rows: Iterable[Row] = ()):
        self.name = name
        self._rows: list[Row] = [dict(r) for r in rows]
        self._lock = threading.RLock()

    def snapshot(self) -> list[Row]:
        """Return copies of all rows, taken under the table lock."""
        with self._lock:
            return [dict(r) for r in self._rows]

    @contextmanager
    def locked(self) -> Iterator[list[Row]]:
        """
        Hold the table lock and yield the live row list for read-modify-write.
        """
        with self._lock:
            yield self._rows

    def columns(self) -> list[str]:
        """Union of row keys in first-seen order."""
        seen: dict[str, None] = {}
        with self._lock:
            for r in self._rows:
                for k in r:
                    seen.setdefault(k, None)
        return list(seen)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class ConnectionStore:
    """
    Tables of one connection identifier.
    """

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self._tables: dict[str, TableStore] = {}
        self._lock = threading.Lock()

    def table(self, name: str) -> TableStore:
        """Return the table store, creating an empty one on first use."""
        with self._lock:
            t = self._tables.get(name)
            if t is None:
                t = TableStore(name)
                self._tables[name] = t
            return t

    def get(self, name: str) -> TableStore | None:
        with self._lock:
            return self._tables.get(name)

    def has_table(self, name: str) -> bool:
        with self._lock:
            return name in self._tables

    def table_names(self) -> list[str]:
        with self._lock:
            return list(self._tables)

    def load(self, data: dict[str, Iterable[Row]]) -> None:
        """Replace the contents of the given tables."""
        with self._lock:
            for name, rows in data.items():
                self._tables[name] = TableStore(name, rows)


class DataStore:
    """
    connection id -> ConnectionStore, created lazily.

    One DataStore is owned by an Engine and passed explicitly; there is no
    module-level store.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ConnectionStore] = {}
        self._lock = threading.Lock()

    def connection(self, connection_id: str) -> ConnectionStore:
        with self._lock:
            c = self._connections.get(connection_id)
            if c is None:
                c = ConnectionStore(connection_id)
                self._connections[connection_id] = c
            return c

    def close(self, connection_id: str) -> None:
        """Drop every table of a connection."""
        with self._lock:
            self._connections.pop(connection_id, None)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections
