"""SQL compilation: per-table statements, graph SELECTs and graph-scoped writes."""

from .builder import SqlBuilder
from .graph import GraphCompiler, compile_graph
from .writes import CompiledWrite, compile_write

__all__ = ["SqlBuilder", "GraphCompiler", "compile_graph", "CompiledWrite", "compile_write"]
