"""
querygraph/params.py

Bound-parameter accumulation for one compiled statement.

Responsibilities:
- Append values in order and hand back the dialect's placeholder ($n or ?).
- Normalize values before binding (scalars pass through, containers become JSON text).
- Carry the finished statement as a ParameterizedQuery.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .dialect import Dialect


def normalize_param(value: Any) -> Any:
    """
    Normalize a value for binding.

    None, bool, int and float pass through; lists and dicts are serialized to JSON
    text; everything else is stringified.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


class ParamBuffer:
    """
    Ordered parameter buffer. One buffer belongs to exactly one statement.
    """

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        """
        Bind ``value`` and return its placeholder.

        Returns:
            "$n" (1-indexed, increasing) for Postgres, "?" for MySQL.
        """
        self.values.append(self.dialect.convert_param(normalize_param(value)))
        return self.dialect.placeholder(len(self.values))

    def add_raw(self, value: Any) -> str:
        """Bind ``value`` as-is (used for LIMIT/OFFSET integers)."""
        self.values.append(value)
        return self.dialect.placeholder(len(self.values))

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ParameterizedQuery:
    """
    Compiled statement.

    Attributes:
        text: SQL text containing only quoted identifiers, keywords and placeholders.
        values: Bound values; the n-th placeholder corresponds to values[n-1].
        columns: Planned output column names (graph compilations only).
    """
    text: str
    values: list[Any] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "values": list(self.values)}
