"""
Flow graph data model

Nodes and edges as edited on the canvas, the per-run execution context handed
to plugins, and the result records produced by a run. Wire format (storage and
HTTP) uses camelCase keys; see to_dict/from_dict.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


class ErrorBehavior(str, Enum):
    """What a node failure does to the rest of the run"""
    STOP = "stop"
    CONTINUE = "continue"


class LoopType(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


class RunStatus(str, Enum):
    """Flow run state machine: IDLE -> RUNNING -> COMPLETED | FAILED"""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NodeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    DISABLED = "DISABLED"


@dataclass
class LoopConfiguration:
    """
    Loop settings attached to a node.

    For a for-each-loop node these are defaults for its inputs; for any other
    node, enabled=True makes the engine run the node once per source item.
    """
    enabled: bool = False
    source_node_id: Optional[str] = None
    source_field: Optional[str] = None
    loop_type: LoopType = LoopType.SYNC
    batch_size: Optional[int] = None
    delay_ms: Optional[int] = None
    max_iterations: Optional[int] = None
    loop_variable_name: Optional[str] = None
    index_variable_name: Optional[str] = None
    linked_variable_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'sourceNodeId': self.source_node_id,
            'sourceField': self.source_field,
            'loopType': self.loop_type.value,
            'batchSize': self.batch_size,
            'delayMs': self.delay_ms,
            'maxIterations': self.max_iterations,
            'loopVariableName': self.loop_variable_name,
            'indexVariableName': self.index_variable_name,
            'linkedVariableId': self.linked_variable_id,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['LoopConfiguration']:
        if not data:
            return None
        return cls(
            enabled=bool(data.get('enabled', False)),
            source_node_id=data.get('sourceNodeId'),
            source_field=data.get('sourceField'),
            loop_type=LoopType(data.get('loopType') or LoopType.SYNC.value),
            batch_size=data.get('batchSize'),
            delay_ms=data.get('delayMs'),
            max_iterations=data.get('maxIterations'),
            loop_variable_name=data.get('loopVariableName'),
            index_variable_name=data.get('indexVariableName'),
            linked_variable_id=data.get('linkedVariableId'),
        )


@dataclass
class NodeData:
    label: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    disabled: bool = False
    loop_config: Optional[LoopConfiguration] = None
    error_behavior: ErrorBehavior = ErrorBehavior.STOP
    # Plugin type; overrides Node.type when set
    type: Optional[str] = None
    parent_loop_id: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'label': self.label,
            'inputs': self.inputs,
            'disabled': self.disabled,
            'errorBehavior': self.error_behavior.value,
        }
        if self.loop_config is not None:
            result['loopConfig'] = self.loop_config.to_dict()
        if self.type:
            result['type'] = self.type
        if self.parent_loop_id:
            result['parentLoopId'] = self.parent_loop_id
        if self.description:
            result['description'] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'NodeData':
        data = data or {}
        return cls(
            label=data.get('label') or "",
            inputs=dict(data.get('inputs') or {}),
            disabled=bool(data.get('disabled', False)),
            loop_config=LoopConfiguration.from_dict(data.get('loopConfig')),
            error_behavior=ErrorBehavior(data.get('errorBehavior') or ErrorBehavior.STOP.value),
            type=data.get('type'),
            parent_loop_id=data.get('parentLoopId'),
            description=data.get('description'),
        )


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Node:
    id: str
    type: str
    data: NodeData = field(default_factory=NodeData)
    position: Position = field(default_factory=Position)
    width: Optional[float] = None
    height: Optional[float] = None
    source_position: Optional[str] = None
    target_position: Optional[str] = None

    @property
    def plugin_type(self) -> str:
        return self.data.type or self.type

    @property
    def label(self) -> str:
        return self.data.label or self.id

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'type': self.type,
            'data': self.data.to_dict(),
            'position': {'x': self.position.x, 'y': self.position.y},
        }
        if self.width is not None:
            result['width'] = self.width
        if self.height is not None:
            result['height'] = self.height
        if self.source_position:
            result['sourcePosition'] = self.source_position
        if self.target_position:
            result['targetPosition'] = self.target_position
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Node':
        position = data.get('position') or {}
        return cls(
            id=data['id'],
            type=data.get('type') or (data.get('data') or {}).get('type') or '',
            data=NodeData.from_dict(data.get('data')),
            position=Position(x=position.get('x', 0.0), y=position.get('y', 0.0)),
            width=data.get('width'),
            height=data.get('height'),
            source_position=data.get('sourcePosition'),
            target_position=data.get('targetPosition'),
        )


@dataclass
class Edge:
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    # label, joinConfig
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {'id': self.id, 'source': self.source, 'target': self.target}
        if self.source_handle:
            result['sourceHandle'] = self.source_handle
        if self.target_handle:
            result['targetHandle'] = self.target_handle
        if self.data:
            result['data'] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Edge':
        return cls(
            id=data.get('id') or f"{data['source']}-{data['target']}",
            source=data['source'],
            target=data['target'],
            source_handle=data.get('sourceHandle'),
            target_handle=data.get('targetHandle'),
            data=dict(data.get('data') or {}),
        )


def graph_to_dict(nodes: List[Node], edges: List[Edge]) -> Dict[str, Any]:
    return {
        'nodes': [node.to_dict() for node in nodes],
        'edges': [edge.to_dict() for edge in edges],
    }


def graph_from_dict(data: Optional[Dict[str, Any]]):
    data = data or {}
    nodes = [Node.from_dict(n) for n in data.get('nodes') or []]
    edges = [Edge.from_dict(e) for e in data.get('edges') or []]
    return nodes, edges


@dataclass
class ExecutionContext:
    """
    Context handed to a plugin's execute handler.

    `variables` is the single mutable store for one run, keyed
    "<nodeId>.<outputField>". Loop iterations receive a copy.
    `session` holds run-scoped flags shared between plugins.
    """
    node_id: str
    flow_id: Optional[str]
    env_vars: Dict[str, Any]
    variables: Dict[str, Any]
    get_child_nodes: Optional[Callable[[str], List[Node]]] = None
    execute_node: Optional[Callable[[Node, 'ExecutionContext'], Awaitable[Dict[str, Any]]]] = None
    run_id: Optional[str] = None
    input_values: Dict[str, Any] = field(default_factory=dict)
    trigger_payload: Dict[str, Any] = field(default_factory=dict)
    session: Dict[str, Any] = field(default_factory=dict)
    should_cancel: Optional[Callable[[], bool]] = None
    log: Optional[Callable[..., None]] = None

    def for_node(self, node_id: str) -> 'ExecutionContext':
        return replace(self, node_id=node_id)

    def with_variables(self, variables: Dict[str, Any]) -> 'ExecutionContext':
        return replace(self, variables=variables)

    def is_cancelled(self) -> bool:
        return bool(self.should_cancel and self.should_cancel())

    def add_log(self, level: str, message: str, data: Any = None):
        if self.log:
            self.log(level, message, node_id=self.node_id, data=data)


@dataclass
class HistoryState:
    nodes: List[Node]
    edges: List[Edge]
    timestamp: float
    selection: Optional[List[str]] = None


@dataclass
class NodeRunResult:
    node_id: str
    status: NodeStatus
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodeId': self.node_id,
            'status': self.status.value,
            'outputs': self.outputs,
            'error': self.error,
            'startedAt': self.started_at.isoformat() if self.started_at else None,
            'finishedAt': self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class FlowRunResult:
    run_id: str
    flow_id: Optional[str]
    status: RunStatus
    variables: Dict[str, Any] = field(default_factory=dict)
    node_results: Dict[str, NodeRunResult] = field(default_factory=dict)
    partial_errors: List[Dict[str, Any]] = field(default_factory=list)
    final_output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def outputs_of(self, node_id: str) -> Dict[str, Any]:
        result = self.node_results.get(node_id)
        return result.outputs if result else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'runId': self.run_id,
            'flowId': self.flow_id,
            'status': self.status.value,
            'variables': self.variables,
            'nodeResults': {k: v.to_dict() for k, v in self.node_results.items()},
            'partialErrors': self.partial_errors,
            'finalOutput': self.final_output,
            'error': self.error,
            'logs': self.logs,
            'startedAt': self.started_at.isoformat() if self.started_at else None,
            'finishedAt': self.finished_at.isoformat() if self.finished_at else None,
        }
