"""
Flow engine errors.

Everything raised inside the engine derives from FlowEngineError. The executor
converts these into per-node error strings; only FlowExecutionError signals a
programming mistake (illegal state transition) and is allowed to propagate.
"""
from typing import Iterable, Optional


class FlowEngineError(Exception):
    """Base class for flow engine errors"""


class PluginNotFoundError(FlowEngineError):
    """No plugin registered for a node type"""

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Plugin not found for node type: {node_type}")


class PluginRegistrationError(FlowEngineError):
    """Invalid or duplicate plugin registration"""


class NodeInputError(FlowEngineError):
    """Required node inputs are missing after binding"""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class NodeExecutionError(FlowEngineError):
    """A node failed while running inside a loop body"""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(message)


class LoopResolutionError(FlowEngineError):
    """Loop source is missing or not iterable"""


class LoopIterationError(FlowEngineError):
    """A single loop iteration failed"""

    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(message)


class GraphError(FlowEngineError):
    """Invalid graph mutation"""


class ExpressionError(FlowEngineError):
    """Sandboxed expression rejected or failed"""


class HistoryError(FlowEngineError):
    """Snapshot could not be cloned or signed"""


class FlowExecutionError(FlowEngineError):
    """Illegal run state transition"""

    def __init__(self, message: str, run_id: Optional[str] = None):
        self.run_id = run_id
        super().__init__(message)
