"""
querygraph

Schema-aware query graph engine: compiles declarative graph queries to
parameterized SQL (PostgreSQL/MySQL) or runs them in memory over a table store.
"""

from .catalog import ColumnSchema, ForeignKey, SchemaMap, TableSchema
from .config import Settings, get_logger, get_settings, setup_logging
from .engine import LOCAL, Engine
from .errors import (
    BuilderReused,
    GraphError,
    InvalidIdentifier,
    MissingData,
    MissingFilter,
    NoPrimaryKey,
    NoRelationship,
    NoValidColumns,
    QueryGraphError,
    SchemaNotFound,
    UnknownTable,
    UnresolvableReference,
)
from .graph import (
    AggregateFunction,
    Aggregation,
    FieldRef,
    GraphFilter,
    HavingClause,
    JoinEdge,
    QueryGraph,
    SortKey,
    Source,
    WriteOperation,
)
from .operators import Operator
from .params import ParameterizedQuery
from .results import QueryResult, TableWriteResult, WriteResult

__all__ = [
    "AggregateFunction",
    "Aggregation",
    "BuilderReused",
    "ColumnSchema",
    "Engine",
    "FieldRef",
    "ForeignKey",
    "GraphError",
    "GraphFilter",
    "HavingClause",
    "InvalidIdentifier",
    "JoinEdge",
    "LOCAL",
    "MissingData",
    "MissingFilter",
    "NoPrimaryKey",
    "NoRelationship",
    "NoValidColumns",
    "Operator",
    "ParameterizedQuery",
    "QueryGraph",
    "QueryGraphError",
    "QueryResult",
    "SchemaMap",
    "SchemaNotFound",
    "Settings",
    "SortKey",
    "Source",
    "TableSchema",
    "TableWriteResult",
    "UnknownTable",
    "UnresolvableReference",
    "WriteOperation",
    "WriteResult",
    "get_logger",
    "get_settings",
    "setup_logging",
]
