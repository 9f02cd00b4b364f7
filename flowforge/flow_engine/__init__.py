"""
Flow Engine - executes node graphs and resolves {{variable}} templates

The executor is imported from flowforge.flow_engine.executor; this package
root only exposes the data model so plugins can import it without cycles.
"""

from flowforge.flow_engine.models import (
    Edge,
    ExecutionContext,
    FlowRunResult,
    Node,
    NodeData,
    NodeRunResult,
    Position,
)

__all__ = [
    'Edge',
    'ExecutionContext',
    'FlowRunResult',
    'Node',
    'NodeData',
    'NodeRunResult',
    'Position',
]
