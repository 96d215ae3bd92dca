"""In-memory execution: table store, LEFT joins, the read pipeline and the write executor."""

from .executor import Executor
from .store import ConnectionStore, DataStore, TableStore
from .writer import Writer

__all__ = ["Executor", "Writer", "DataStore", "ConnectionStore", "TableStore"]
