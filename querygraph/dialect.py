"""
querygraph/dialect.py

SQL dialects and identifier safety.

Responsibilities:
- Validate identifiers against the allow-list rules (reject, never escape).
- Quote identifiers and render placeholders per database family.
- Render the dialect-specific fragments the compiler needs (JSON comparison,
  RETURNING, pagination without a limit, parameter conversion).

Design notes:
- The compiler is dialect-parametric: it asks the Dialect for fragments instead of
  branching on a dialect name at each call site.
- Two families exist: Postgres (postgres, postgresql, pg, local) and MySQL
  (mysql, mariadb). Unknown names fall back to Postgres.
"""

from __future__ import annotations

import re
from typing import Any

from .config.logging import get_logger
from .errors import InvalidIdentifier

logger = get_logger(__name__)

_FORBIDDEN_CHARS = (";", '"', "'", "`")
_SYSTEM_PREFIXES = ("pg_", "information_schema")

# 2024-01-31T12:30[:45[.123]][Z|+hh:mm]
_ISO_TIMESTAMP = re.compile(r"^(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2})(:\d{2})?(\.\d+)?(Z|[+-]\d{2}:?\d{2})?$")


def check_identifier(name: Any) -> str:
    """
    Validate an identifier without quoting it.

    Raises:
        InvalidIdentifier: if the name is empty, not a string, contains a forbidden
                           character, or addresses a system schema.
    """
    if not isinstance(name, str) or not name:
        raise InvalidIdentifier(f"Invalid identifier: {name!r}")
    if any(ch in name for ch in _FORBIDDEN_CHARS):
        raise InvalidIdentifier(f"Invalid identifier: {name!r}")
    lowered = name.lower()
    if lowered.startswith(_SYSTEM_PREFIXES):
        raise InvalidIdentifier(f"Access to system tables is not allowed: {name!r}")
    return name


class Dialect:
    """
    Base dialect (Postgres family).

    Subclasses override only what differs.
    """

    name = "postgres"
    quote_char = '"'
    supports_returning = True

    def quote_identifier(self, name: Any) -> str:
        """Validate and quote ``name``."""
        check_identifier(name)
        return f"{self.quote_char}{name}{self.quote_char}"

    def placeholder(self, n: int) -> str:
        """Placeholder for the n-th (1-indexed) bound parameter."""
        return f"${n}"

    def json_equals(self, column_sql: str, placeholder: str) -> str:
        return f"{column_sql}::jsonb = {placeholder}::jsonb"

    def json_text_equals(self, column_sql: str, placeholder: str) -> str:
        return f"{column_sql}::text = {placeholder}"

    def returning_clause(self) -> str:
        return " RETURNING *"

    def convert_param(self, value: Any) -> Any:
        return value

    def offset_only_limit(self) -> str | None:
        """LIMIT literal required when OFFSET is given without LIMIT (None if not needed)."""
        return None

    def like_escape(self) -> str:
        """ESCAPE clause appended to LIKE; patterns escape with a backslash."""
        return " ESCAPE '\\'"

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class PostgresDialect(Dialect):
    pass


class MySQLDialect(Dialect):
    """MySQL / MariaDB family: backtick quoting, ``?`` placeholders, no RETURNING."""

    name = "mysql"
    quote_char = "`"
    supports_returning = False

    def placeholder(self, n: int) -> str:
        return "?"

    def json_equals(self, column_sql: str, placeholder: str) -> str:
        return f"{column_sql} = CAST({placeholder} AS JSON)"

    def json_text_equals(self, column_sql: str, placeholder: str) -> str:
        return f"CAST({column_sql} AS CHAR) = {placeholder}"

    def returning_clause(self) -> str:
        return ""

    def convert_param(self, value: Any) -> Any:
        """Convert ISO-8601 timestamps to MySQL DATETIME literals."""
        if isinstance(value, str):
            m = _ISO_TIMESTAMP.match(value)
            if m:
                seconds = m.group(3) or ":00"
                return f"{m.group(1)} {m.group(2)}{seconds}"
        return value

    def offset_only_limit(self) -> str | None:
        return "18446744073709551615"

    def like_escape(self) -> str:
        # backslash is already the default LIKE escape
        return ""


_POSTGRES_NAMES = {"postgres", "postgresql", "pg", "local"}
_MYSQL_NAMES = {"mysql", "mariadb"}


def get_dialect(name: str | Dialect | None) -> Dialect:
    """
    Resolve a dialect by name.

    Args:
        name: Dialect name, an existing Dialect (returned as-is), or None for Postgres.

    Returns:
        Dialect instance.
    """
    if isinstance(name, Dialect):
        return name
    key = (name or "postgres").strip().lower()
    if key in _MYSQL_NAMES:
        return MySQLDialect()
    if key not in _POSTGRES_NAMES:
        logger.warning("Unknown dialect %r, falling back to postgres", name)
    return PostgresDialect()


def sanitize_identifier(name: Any, dialect: str | Dialect | None = None) -> str:
    """
    Validate and quote an identifier for the given dialect.

    Args:
        name: Table, column or alias name.
        dialect: Dialect name or instance (Postgres when omitted).

    Returns:
        Quoted identifier.

    Raises:
        InvalidIdentifier: see check_identifier().
    """
    return get_dialect(dialect).quote_identifier(name)
