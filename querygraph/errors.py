"""
querygraph/errors.py

Centralized exception types for the query graph engine.

This module defines:
- A common base exception for all engine errors
- The client-facing error kinds raised by the SQL compiler and the in-memory executor
- Structural errors for malformed graphs, unknown tables and misused builders

Every error carries a stable ``kind`` string so a routing layer can map it to a
response without string-matching messages.
"""

from __future__ import annotations

from typing import Any


class QueryGraphError(Exception):
    """
    Base class for all query graph engine errors.

    Catching this exception allows callers (routing layer, REPL) to handle all engine
    errors without accidentally swallowing unrelated system exceptions.
    """

    kind = "QueryGraphError"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a structured ``{kind, message}`` payload."""
        return {"kind": self.kind, "message": self.message}


class InvalidIdentifier(QueryGraphError):
    """
    Raised when a table/column/alias name fails the identifier allow-list.

    Examples:
      - empty name
      - name containing ; " ' or a backtick
      - name addressing a system schema (pg_*, information_schema*)
    """

    kind = "InvalidIdentifier"


class NoValidColumns(QueryGraphError):
    """Raised when an insert/update payload names no column of the target table."""

    kind = "NoValidColumns"


class MissingData(QueryGraphError):
    """Raised when an INSERT or UPDATE request carries no data at all."""

    kind = "MissingData"


class NoPrimaryKey(QueryGraphError):
    """Raised when a single-record operation targets a table without a primary key."""

    kind = "NoPrimaryKey"


class NoRelationship(QueryGraphError):
    """Raised when two tables share no declared foreign key in either direction."""

    kind = "NoRelationship"


class MissingFilter(QueryGraphError):
    """
    Raised when a collection-level UPDATE or DELETE has no resolvable predicate.

    Not recoverable by retry: the caller must supply a filter.
    """

    kind = "MissingFilter"


class UnresolvableReference(QueryGraphError):
    """
    Raised for a filter/having/sort reference that names no known column or alias.

    Only raised when strict reference checking is enabled; by default such terms are
    dropped and logged.
    """

    kind = "UnresolvableReference"


class UnknownTable(QueryGraphError):
    """Raised when a statement or graph names a table absent from the schema."""

    kind = "UnknownTable"


class GraphError(QueryGraphError):
    """Raised when a graph or request payload is malformed."""

    kind = "GraphError"


class SchemaNotFound(QueryGraphError):
    """Raised when no schema has been registered for a connection."""

    kind = "SchemaNotFound"


class BuilderReused(QueryGraphError):
    """Raised when a single-statement builder is asked to build a second statement."""

    kind = "BuilderReused"
