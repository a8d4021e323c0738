"""
tabflow - Declarative browser workflow engine

Walks a graph of steps, resolving data bindings from earlier results,
evaluating branch conditions and dispatching each step's block to a
pluggable block executor.
"""

from tabflow.client import Client
from tabflow.domain.entity import RunResult, Step, Workflow
from tabflow.domain.exception import SurfaceCreationError, TabflowError
from tabflow.domain.port import PluginBase as PluginMixin
from tabflow.domain.value_object import BlockResult, ExecutionOptions
from tabflow.factory import create

__all__ = [
    "BlockResult",
    "Client",
    "ExecutionOptions",
    "PluginMixin",
    "RunResult",
    "Step",
    "SurfaceCreationError",
    "TabflowError",
    "Workflow",
    "create",
]
