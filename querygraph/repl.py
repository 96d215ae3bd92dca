"""
querygraph/repl.py

Interactive shell for the query graph engine.

Responsibilities:
- Load a schema (introspector JSON) and optional seed rows, then accept graph
  bodies and write requests as JSON.
- Support multiline JSON input until braces balance outside of strings.
- Display query results in a readable table format, or the compiled SQL when
  the connection uses a SQL dialect.
- Provide small meta-commands:
    - .help
    - .exit / .quit
    - .tables
    - .schema <table>
    - .dialect <name>
    - .sql

Usage:
    python -m querygraph schema.json [rows.json]
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Iterable

try:
    import readline  # noqa: F401
except ImportError:
    # readline is optional; if missing, the shell still works.
    readline = None  # type: ignore[assignment]

from .catalog import SchemaMap
from .config import setup_logging
from .engine import LOCAL, Engine
from .errors import QueryGraphError
from .params import ParameterizedQuery
from .payload import decode_graph
from .results import QueryResult, WriteResult
from .sql.graph import compile_graph
from .sql.writes import CompiledWrite

PROMPT = "querygraph> "
PROMPT_CONT = "....> "
CONNECTION = "repl"


def is_complete_json(buf: str) -> bool:
    """
    Decide whether the buffer holds a complete JSON object.

    Complete means at least one '{' was seen and every brace/bracket opened outside
    a double-quoted string has been closed.

    Args:
        buf: Current accumulated input buffer.

    Returns:
        True if complete, else False.
    """
    depth = 0
    seen = False
    in_str = False
    escaped = False
    for ch in buf:
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            depth += 1
            seen = True
        elif ch in "}]":
            depth -= 1
    return seen and depth <= 0


def format_table(columns: list[str], rows: list[dict[str, Any]]) -> str:
    """
    Pretty-print rows as an aligned ASCII table.

    Args:
        columns: Column header list.
        rows: Row dicts keyed by column name.

    Returns:
        A formatted string suitable for printing to console.
    """
    cols = [str(c) for c in columns]
    str_rows = [[("" if r.get(c) is None else str(r.get(c))) for c in columns] for r in rows]

    widths = [len(c) for c in cols]
    for r in str_rows:
        for i, cell in enumerate(r):
            widths[i] = max(widths[i], len(cell))

    def fmt_row(r: Iterable[str]) -> str:
        return " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(r))

    sep = "-+-".join("-" * w for w in widths)

    out: list[str] = []
    out.append(fmt_row(cols))
    out.append(sep)
    for r in str_rows:
        out.append(fmt_row(r))
    return "\n".join(out)


def print_result(res: Any) -> None:
    """
    Print an engine result.

    Args:
        res: QueryResult, WriteResult, ParameterizedQuery or CompiledWrite.
    """
    if isinstance(res, QueryResult):
        print(format_table(res.columns, res.rows))
        print(f"({len(res.rows)} row(s), total={res.total})")
        return

    if isinstance(res, WriteResult):
        for table, r in res.tables.items():
            print(f"{r.operation} {table}: {r.message}")
            if r.data is not None:
                print(f"  {json.dumps(r.data, default=str)}")
        return

    if isinstance(res, ParameterizedQuery):
        print(res.text)
        print(f"values: {res.values}")
        return

    if isinstance(res, CompiledWrite):
        for table, q in res.statements.items():
            print(f"-- {table}")
            print_result(q)
        return

    print(res)


def cmd_tables(schema: SchemaMap) -> None:
    names = sorted(schema.tables.keys())
    if not names:
        print("(no tables)")
        return
    for n in names:
        print(n)


def cmd_schema(schema: SchemaMap, table: str) -> None:
    """
    Meta-command: print table columns and keys.

    Args:
        schema: Schema of the shell connection.
        table: Table name.
    """
    t = schema.get(table)
    if not t:
        print(f"Table not found: {table}")
        return

    print(f"TABLE {t.name}")
    for c in t.columns:
        flags: list[str] = []
        if c.name in t.primary_keys:
            flags.append("PRIMARY KEY")
        if not c.is_nullable:
            flags.append("NOT NULL")
        suffix = (" " + " ".join(flags)) if flags else ""
        print(f"  - {c.name} {c.data_type}{suffix}")

    if t.foreign_keys:
        print("FOREIGN KEYS")
        for fk in t.foreign_keys:
            print(f"  - {fk.column} -> {fk.foreign_table}({fk.foreign_column})")
    if t.reverse_foreign_keys:
        print("REFERENCED BY")
        for rfk in t.reverse_foreign_keys:
            print(f"  - {rfk.referencing_table}({rfk.referencing_column}) -> {rfk.referenced_column}")


def execute(engine: Engine, body: dict[str, Any], echo_sql: str | None = None) -> None:
    """
    Run one JSON body: a write request when it names an ``operation``, else a graph.

    Args:
        engine: Engine with the shell connection registered.
        body: Decoded JSON object.
        echo_sql: When set, also print the graph compiled for this dialect.
    """
    if "operation" in body:
        print_result(engine.write(CONNECTION, body))
        return

    if echo_sql:
        print_result(compile_graph(decode_graph(body), engine.schema(CONNECTION), echo_sql))
    print_result(engine.query(CONNECTION, body))


def repl(engine: Engine) -> int:
    """
    Run the interactive shell.

    Args:
        engine: Engine with the shell connection registered.

    Returns:
        Process exit code (0 on normal exit).
    """
    print("querygraph shell")
    print("Type .help for commands. Enter a graph or write request as JSON.")

    buf = ""
    echo_sql: str | None = None
    while True:
        try:
            prompt = PROMPT if not buf else PROMPT_CONT
            line = input(prompt)
        except EOFError:
            print()
            return 0
        except KeyboardInterrupt:
            # Clear current buffer on Ctrl+C
            print()
            buf = ""
            continue

        line_stripped = line.strip()

        # Meta commands only apply if we're not in the middle of a multi-line buffer.
        if not buf and line_stripped.startswith("."):
            parts = line_stripped.split()
            cmd = parts[0].lower()

            if cmd in (".exit", ".quit"):
                return 0

            if cmd == ".help":
                print("Meta commands:")
                print("  .help              show this help")
                print("  .tables            list tables")
                print("  .schema <table>    show table columns and keys")
                print("  .dialect <name>    switch dialect (local, postgres, mysql)")
                print("  .sql               toggle printing compiled postgres SQL for local graphs")
                print("  .exit / .quit      exit")
                print()
                print("Examples:")
                print('  {"source": {"table": "users"}, "limit": 5}')
                print('  {"operation": "DELETE", "graph": {"source": "users"}, "additionalFilters": {"id": 1}}')
                continue

            if cmd == ".tables":
                cmd_tables(engine.schema(CONNECTION))
                continue

            if cmd == ".schema":
                if len(parts) != 2:
                    print("Usage: .schema <table>")
                else:
                    cmd_schema(engine.schema(CONNECTION), parts[1])
                continue

            if cmd == ".dialect":
                if len(parts) != 2:
                    print("Usage: .dialect <name>")
                else:
                    engine.register(CONNECTION, engine.schema(CONNECTION), parts[1])
                    print(f"dialect: {parts[1].lower()}")
                continue

            if cmd == ".sql":
                echo_sql = None if echo_sql else "postgres"
                print(f"sql echo: {'on' if echo_sql else 'off'}")
                continue

            print(f"Unknown command: {cmd}. Type .help")
            continue

        buf += line + "\n"
        if not is_complete_json(buf):
            continue

        try:
            body = json.loads(buf)
            if not isinstance(body, dict):
                print("Expected a JSON object")
            else:
                execute(engine, body, echo_sql if engine.is_local(CONNECTION) else None)
        except json.JSONDecodeError as e:
            print(f"Invalid JSON: {e}")
        except QueryGraphError as e:
            print(e)
        except Exception as e:
            # Unexpected internal error; keep the shell alive but show message
            print(f"Internal error: {e}")

        buf = ""


def load_engine(schema_path: Path, rows_path: Path | None = None, dialect: str = LOCAL) -> Engine:
    """
    Build an Engine with the shell connection registered.

    Args:
        schema_path: JSON file in the introspector's schema shape.
        rows_path: Optional JSON file ``{table: [row, ...]}`` seeding local tables.
        dialect: Initial dialect.
    """
    engine = Engine()
    engine.register(CONNECTION, json.loads(schema_path.read_text(encoding="utf-8")), dialect)
    if rows_path is not None:
        engine.load_rows(CONNECTION, json.loads(rows_path.read_text(encoding="utf-8")))
    return engine


def main(argv: list[str]) -> int:
    """
    CLI entrypoint.

    Args:
        argv: sys.argv list.

    Returns:
        Exit code.
    """
    if len(argv) < 2:
        print("Usage: querygraph SCHEMA.json [ROWS.json]")
        return 2
    setup_logging()
    rows_path = Path(argv[2]) if len(argv) > 2 else None
    return repl(load_engine(Path(argv[1]), rows_path))


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
