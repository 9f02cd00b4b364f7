"""
Flow Graph Store - Owns the nodes and edges of the flow being edited

Every mutation notifies subscribers (the history store among them), keeps the
alias registry in sync with node labels, and goes through validation so edges
always reference existing nodes.
"""

import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from flowforge.flow_engine.alias_registry import AliasRegistry
from flowforge.flow_engine.errors import GraphError
from flowforge.flow_engine.history import HistoryStore
from flowforge.flow_engine.layout import compute_layout
from flowforge.flow_engine.models import (
    Edge,
    ErrorBehavior,
    HistoryState,
    Node,
    NodeData,
    Position,
    graph_from_dict,
    graph_to_dict,
)

logger = logging.getLogger(__name__)

GraphListener = Callable[[List[Node], List[Edge]], None]


class FlowGraphStore:
    """
    In-memory graph for one flow.

    Usage:
        store = FlowGraphStore('flow-1', storage=InMemoryFlowStorage(), history=HistoryStore())
        trigger = store.add_node('webhook-trigger', label='Webhook')
        http = store.add_node('http-request', label='Fetch', inputs={'url': '{{env.BASE}}/x'})
        store.connect(trigger.id, http.id)
        await store.save()
    """

    def __init__(self, flow_id: str, storage=None, history: Optional[HistoryStore] = None,
                 nodes: Optional[List[Node]] = None, edges: Optional[List[Edge]] = None):
        self.flow_id = flow_id
        self.storage = storage
        self.history = history
        self.aliases = AliasRegistry()
        self._nodes: List[Node] = []
        self._edges: List[Edge] = []
        self._listeners: List[GraphListener] = []
        self._edge_counter = itertools.count(1)

        if history is not None:
            self.subscribe(lambda n, e: history.schedule_save(n, e))

        if nodes or edges:
            self.replace_graph(nodes or [], edges or [])

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes)

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges)

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self._nodes:
            if node.id == node_id:
                return node
        return None

    def require_node(self, node_id: str) -> Node:
        node = self.get_node(node_id)
        if node is None:
            raise GraphError(f"Node not found: {node_id}")
        return node

    def get_child_nodes(self, loop_id: str) -> List[Node]:
        return [node for node in self._nodes if node.data.parent_loop_id == loop_id]

    def to_dict(self) -> Dict[str, Any]:
        return graph_to_dict(self._nodes, self._edges)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, labels_changed: bool = False):
        if labels_changed:
            self.aliases.rebuild_from_nodes(self._nodes)
        for listener in list(self._listeners):
            listener(self.nodes, self.edges)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------
    def _new_node_id(self, node_type: str) -> str:
        base = f"{node_type}-{int(time.time() * 1000)}"
        node_id = base
        suffix = 1
        while self.get_node(node_id) is not None:
            node_id = f"{base}-{suffix}"
            suffix += 1
        return node_id

    def add_node(self, node_type: str, label: Optional[str] = None,
                 inputs: Optional[Dict[str, Any]] = None,
                 position: Optional[Position] = None,
                 node_id: Optional[str] = None, **data: Any) -> Node:
        """
        Create a node. Extra keyword arguments are NodeData fields
        (disabled, error_behavior, loop_config, parent_loop_id, ...).
        """
        if node_id is not None and self.get_node(node_id) is not None:
            raise GraphError(f"Duplicate node id: {node_id}")

        node = Node(
            id=node_id or self._new_node_id(node_type),
            type=node_type,
            data=NodeData(label=label or node_type, inputs=dict(inputs or {}), **data),
            position=position or Position(),
        )
        self._nodes.append(node)
        logger.debug(f"Added node {node.id}")
        self._changed(labels_changed=True)
        return node

    def update_node_inputs(self, node_id: str, inputs: Dict[str, Any]) -> Node:
        """Merge inputs into a node's existing inputs."""
        node = self.require_node(node_id)
        node.data.inputs = {**node.data.inputs, **inputs}
        self._changed()
        return node

    def update_node_data(self, node_id: str, **changes: Any) -> Node:
        node = self.require_node(node_id)
        for key, value in changes.items():
            if not hasattr(node.data, key):
                raise GraphError(f"Unknown node data field: {key}")
            setattr(node.data, key, value)
        self._changed(labels_changed='label' in changes)
        return node

    def set_node_label(self, node_id: str, label: str) -> Node:
        return self.update_node_data(node_id, label=label)

    def set_error_behavior(self, node_id: str, behavior: ErrorBehavior) -> Node:
        return self.update_node_data(node_id, error_behavior=ErrorBehavior(behavior))

    def toggle_node_disabled(self, node_id: str) -> Node:
        node = self.require_node(node_id)
        return self.update_node_data(node_id, disabled=not node.data.disabled)

    def move_node(self, node_id: str, x: float, y: float) -> Node:
        node = self.require_node(node_id)
        node.position = Position(x=x, y=y)
        self._changed()
        return node

    def remove_node(self, node_id: str):
        """Remove a node, its edges, and loop-body references to it."""
        self.require_node(node_id)
        self._nodes = [node for node in self._nodes if node.id != node_id]
        self._edges = [e for e in self._edges if e.source != node_id and e.target != node_id]
        for node in self._nodes:
            if node.data.parent_loop_id == node_id:
                node.data.parent_loop_id = None
        logger.debug(f"Removed node {node_id}")
        self._changed(labels_changed=True)

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------
    def connect(self, source: str, target: str, source_handle: Optional[str] = None,
                target_handle: Optional[str] = None, label: Optional[str] = None,
                edge_id: Optional[str] = None) -> Edge:
        self.require_node(source)
        self.require_node(target)
        if source == target:
            raise GraphError(f"Cannot connect node {source} to itself")
        for edge in self._edges:
            if (edge.source, edge.target, edge.source_handle) == (source, target, source_handle):
                raise GraphError(f"Edge already exists: {source} -> {target}")

        edge = Edge(
            id=edge_id or f"e-{source}-{target}-{next(self._edge_counter)}",
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
            data={'label': label} if label else {},
        )
        self._edges.append(edge)
        self._changed()
        return edge

    def disconnect(self, edge_id: str):
        remaining = [edge for edge in self._edges if edge.id != edge_id]
        if len(remaining) == len(self._edges):
            raise GraphError(f"Edge not found: {edge_id}")
        self._edges = remaining
        self._changed()

    # ------------------------------------------------------------------
    # Whole-graph operations
    # ------------------------------------------------------------------
    def replace_graph(self, nodes: List[Node], edges: List[Edge]):
        ids = [node.id for node in nodes]
        if len(ids) != len(set(ids)):
            raise GraphError("Duplicate node ids in graph")
        known = set(ids)
        valid_edges = []
        for edge in edges:
            if edge.source not in known or edge.target not in known:
                logger.warning(f"Dropping edge {edge.id} with unknown endpoint")
                continue
            valid_edges.append(edge)
        self._nodes = list(nodes)
        self._edges = valid_edges
        self._changed(labels_changed=True)

    def apply_layout(self, direction: str = 'TB', **options: Any) -> List[Node]:
        self._nodes = compute_layout(self._nodes, self._edges, direction, **options)
        self._changed()
        return self.nodes

    def undo(self) -> bool:
        return self._apply_history(self.history.undo() if self.history else None)

    def redo(self) -> bool:
        return self._apply_history(self.history.redo() if self.history else None)

    def _apply_history(self, state: Optional[HistoryState]) -> bool:
        if state is None:
            return False
        with self.history.restoring():
            self.replace_graph(state.nodes, state.edges)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    async def save(self):
        if self.storage is None:
            raise GraphError("No storage configured")
        await self.storage.save(self.flow_id, self.to_dict())
        logger.info(f"Saved flow {self.flow_id}: {len(self._nodes)} nodes, {len(self._edges)} edges")

    async def load(self):
        """Load the stored graph; history restarts from the loaded state."""
        if self.storage is None:
            raise GraphError("No storage configured")
        data = await self.storage.load(self.flow_id)
        nodes, edges = graph_from_dict(data)
        if self.history is not None:
            self.history.clear_history()
        self.replace_graph(nodes, edges)
        if self.history is not None:
            self.history.flush()
        logger.info(f"Loaded flow {self.flow_id}: {len(nodes)} nodes, {len(edges)} edges")
