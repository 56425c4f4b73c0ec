"""Action Layer - Route compilation and re-execution."""

from remedy.layers.action.compiler import RouteRepairCompiler
from remedy.layers.action.executor import RouteRunner

__all__ = ["RouteRepairCompiler", "RouteRunner"]
