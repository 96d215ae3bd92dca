"""
querygraph/__main__.py

Package entry point for running the shell as a module:

    python -m querygraph SCHEMA.json [ROWS.json]

This also serves as the target for the console script entry point defined in
pyproject.toml:

    querygraph SCHEMA.json [ROWS.json]
"""

from __future__ import annotations

import sys


def main() -> int:
    """
    Entry point for `python -m querygraph` and the installed `querygraph` command.

    Returns:
        Exit code (0 for normal exit).
    """
    # Import here so packaging/runtime errors show cleanly at entry time.
    from .repl import main as repl_main

    return int(repl_main(sys.argv))


if __name__ == "__main__":
    raise SystemExit(main())
