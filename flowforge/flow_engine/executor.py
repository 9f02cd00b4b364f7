"""
Flow Executor - Main orchestrator for flow execution

Responsibilities:
- Order nodes by their edges, triggers first
- Bind node inputs through the template resolver
- Dispatch to node plugins, or to the loop handler for loop nodes
- Thread outputs into the run's variables as "<nodeId>.<field>"
- Apply per-node error behavior (stop / continue)
- Track run state and a structured run log
"""

import logging
import os
import traceback
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set
from uuid import uuid4

from flowforge.config import Config
from flowforge.flow_engine.errors import (
    FlowEngineError,
    FlowExecutionError,
    NodeExecutionError,
    NodeInputError,
    PluginNotFoundError,
)
from flowforge.flow_engine.loop_handler import LOOP_NODE_TYPE, LoopHandler
from flowforge.flow_engine.models import (
    Edge,
    ErrorBehavior,
    ExecutionContext,
    FlowRunResult,
    Node,
    NodeRunResult,
    NodeStatus,
    RunStatus,
)
from flowforge.flow_engine.variable_resolver import TemplateResolver
from flowforge.pieces.base import NodePlugin, NodePluginRegistry, PluginCategory

logger = logging.getLogger(__name__)

RESPONSE_NODE_TYPE = 'response'
BRANCH_HANDLES = ('true', 'false')
LOOP_BODY_HANDLE = 'each'


class FlowRun:
    """
    State of a single execution. Created per call to FlowExecutor.execute and
    never shared between runs.
    """

    _TRANSITIONS = {
        RunStatus.IDLE: {RunStatus.RUNNING},
        RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED},
    }

    def __init__(self, flow_id: Optional[str] = None, run_id: Optional[str] = None):
        self.run_id = run_id or str(uuid4())
        self.flow_id = flow_id
        self.status = RunStatus.IDLE
        self.variables: Dict[str, Any] = {}
        self.node_results: Dict[str, NodeRunResult] = {}
        self.partial_errors: List[Dict[str, Any]] = []
        self.final_output: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.logs: List[Dict[str, Any]] = []
        self.session: Dict[str, Any] = {}
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    def transition(self, status: RunStatus):
        if status not in self._TRANSITIONS.get(self.status, set()):
            raise FlowExecutionError(f"Invalid run transition {self.status.value} -> {status.value}", self.run_id)
        logger.debug(f"Run {self.run_id}: {self.status.value} -> {status.value}")
        self.status = status

    def fail(self, error: str):
        self.error = error
        if self.status == RunStatus.RUNNING:
            self.transition(RunStatus.FAILED)

    def log(self, level: str, message: str, node_id: Optional[str] = None, data: Any = None):
        self.logs.append({
            'timestamp': datetime.utcnow().isoformat(),
            'level': level,
            'nodeId': node_id,
            'message': message,
            'data': data,
        })
        log_func = getattr(logger, level, logger.info)
        log_func(f"[run {self.run_id}] {message}")

    def to_result(self) -> FlowRunResult:
        return FlowRunResult(
            run_id=self.run_id,
            flow_id=self.flow_id,
            status=self.status,
            variables=self.variables,
            node_results=self.node_results,
            partial_errors=self.partial_errors,
            final_output=self.final_output,
            error=self.error,
            logs=self.logs,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class ExecutionPlan:
    """
    Static view of a graph for one run: loop bodies, top-level edges and a
    dependency order for each loop body.
    """

    def __init__(self, nodes: Iterable[Node], edges: Iterable[Edge]):
        self.nodes: List[Node] = list(nodes)
        self.node_by_id: Dict[str, Node] = {node.id: node for node in self.nodes}
        self.edges: List[Edge] = []
        for edge in edges:
            if edge.source not in self.node_by_id or edge.target not in self.node_by_id:
                logger.warning(f"Ignoring edge {edge.id} with unknown endpoint")
                continue
            self.edges.append(edge)

        self.loop_bodies = self._collect_loop_bodies()
        self.body_ids: Set[str] = set()
        for members in self.loop_bodies.values():
            self.body_ids.update(node.id for node in members)

        self.top_nodes = [node for node in self.nodes if node.id not in self.body_ids]
        self.incoming: Dict[str, List[Edge]] = {node.id: [] for node in self.top_nodes}
        self.outgoing: Dict[str, List[Edge]] = {node.id: [] for node in self.top_nodes}
        for edge in self.edges:
            if edge.source in self.body_ids or edge.target in self.body_ids:
                continue
            if self._is_body_edge(edge):
                continue
            self.incoming[edge.target].append(edge)
            self.outgoing[edge.source].append(edge)

    def _is_loop(self, node_id: str) -> bool:
        node = self.node_by_id.get(node_id)
        return node is not None and node.plugin_type == LOOP_NODE_TYPE

    def _is_body_edge(self, edge: Edge) -> bool:
        return edge.source_handle == LOOP_BODY_HANDLE and self._is_loop(edge.source)

    def _collect_loop_bodies(self) -> Dict[str, List[Node]]:
        loop_ids = [node.id for node in self.nodes if node.plugin_type == LOOP_NODE_TYPE]
        members: Dict[str, Set[str]] = {loop_id: set() for loop_id in loop_ids}

        for node in self.nodes:
            parent = node.data.parent_loop_id
            if parent in members and parent != node.id:
                members[parent].add(node.id)

        for loop_id in loop_ids:
            stack = [e.target for e in self.edges if e.source == loop_id and self._is_body_edge(e)]
            while stack:
                current = stack.pop()
                if current == loop_id or current in members[loop_id]:
                    continue
                members[loop_id].add(current)
                for edge in self.edges:
                    # A nested loop's body belongs to that loop
                    if edge.source == current and not self._is_body_edge(edge):
                        stack.append(edge.target)

        # Nodes inside a nested loop's body are not direct children of the outer loop
        for loop_id in loop_ids:
            for inner_id in loop_ids:
                if inner_id != loop_id and inner_id in members[loop_id]:
                    members[loop_id] -= members[inner_id]

        return {loop_id: self._dependency_order(ids) for loop_id, ids in members.items()}

    def _dependency_order(self, ids: Set[str]) -> List[Node]:
        ordered_ids = [node.id for node in self.nodes if node.id in ids]
        indegree = {node_id: 0 for node_id in ordered_ids}
        for edge in self.edges:
            if edge.source in ids and edge.target in ids and not self._is_body_edge(edge):
                indegree[edge.target] += 1

        result: List[Node] = []
        ready = deque(node_id for node_id in ordered_ids if indegree[node_id] == 0)
        while ready:
            node_id = ready.popleft()
            result.append(self.node_by_id[node_id])
            for edge in self.edges:
                if edge.source == node_id and edge.target in indegree and not self._is_body_edge(edge):
                    indegree[edge.target] -= 1
                    if indegree[edge.target] == 0:
                        ready.append(edge.target)

        if len(result) < len(ordered_ids):
            logger.warning("Cycle inside loop body; remaining nodes appended in list order")
            seen = {node.id for node in result}
            result.extend(self.node_by_id[i] for i in ordered_ids if i not in seen)
        return result

    def get_child_nodes(self, loop_id: str) -> List[Node]:
        return list(self.loop_bodies.get(loop_id, []))


class FlowExecutor:
    """
    Executes a flow graph in-process.

    Usage:
        executor = FlowExecutor()
        result = await executor.execute(
            nodes, edges,
            flow_id='flow-1',
            env_vars={'BASE': 'http://api'},
        )
        result.status  # RunStatus.COMPLETED | RunStatus.FAILED
    """

    def __init__(self, registry: Optional[NodePluginRegistry] = None,
                 loop_handler: Optional[LoopHandler] = None,
                 env_prefix: Optional[str] = Config.FLOW_ENV_PREFIX):
        """
        Args:
            registry: Plugin registry (defaults to the built-in plugins)
            loop_handler: Loop handler for for-each-loop nodes
            env_prefix: Process env vars with this prefix are exposed as env.*
        """
        if registry is None:
            from flowforge.pieces import registry as default_registry
            registry = default_registry
        self.registry = registry
        self.loop_handler = loop_handler or LoopHandler()
        self.env_prefix = env_prefix

    async def execute(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
        flow_id: Optional[str] = None,
        env_vars: Optional[Mapping[str, Any]] = None,
        input_values: Optional[Mapping[str, Any]] = None,
        trigger_payload: Optional[Mapping[str, Any]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        run_id: Optional[str] = None,
    ) -> FlowRunResult:
        """
        Execute a flow.

        Never raises for node or graph problems: failures are reported as
        per-node errors and a FAILED run status.

        Args:
            nodes: Flow nodes
            edges: Flow edges
            flow_id: Flow identifier, passed to plugins
            env_vars: Values exposed as {{env.NAME}}
            input_values: Values exposed as {{input.name}}
            trigger_payload: Payload for trigger nodes (e.g., webhook body)
            should_cancel: Checked between nodes and loop iterations
            run_id: Optional run id (generated otherwise)

        Returns:
            FlowRunResult
        """
        run = FlowRun(flow_id=flow_id, run_id=run_id)
        run.started_at = datetime.utcnow()
        run.transition(RunStatus.RUNNING)
        run.log('info', f"Flow run started for flow {flow_id}")

        try:
            plan = ExecutionPlan(nodes, edges)
            context = ExecutionContext(
                node_id='',
                flow_id=flow_id,
                env_vars=self._build_env(env_vars),
                variables=run.variables,
                get_child_nodes=plan.get_child_nodes,
                execute_node=self._execute_body_node,
                run_id=run.run_id,
                input_values=dict(input_values or {}),
                trigger_payload=dict(trigger_payload or {}),
                session=run.session,
                should_cancel=should_cancel,
                log=run.log,
            )
            await self._execute_flow(run, plan, context)

            if run.status == RunStatus.RUNNING:
                run.transition(RunStatus.COMPLETED)
                run.log('info', "Flow run completed")

        except Exception as e:
            logger.error(f"FlowRun failed: {run.run_id} - {e}")
            logger.error(traceback.format_exc())
            run.fail(str(e))
            run.log('error', f"Flow execution failed: {e}")

        run.finished_at = datetime.utcnow()
        return run.to_result()

    async def execute_store(self, store, **kwargs) -> FlowRunResult:
        """Execute the graph currently held by a FlowGraphStore."""
        return await self.execute(store.nodes, store.edges, flow_id=store.flow_id, **kwargs)

    def _build_env(self, env_vars: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        env: Dict[str, Any] = {}
        if self.env_prefix:
            for key, value in os.environ.items():
                if key.startswith(self.env_prefix):
                    env[key[len(self.env_prefix):]] = value
        env.update(env_vars or {})
        return env

    async def _execute_flow(self, run: FlowRun, plan: ExecutionPlan, context: ExecutionContext):
        """
        Walk top-level nodes in dependency order.

        A node runs once all inbound edges are settled and at least one is
        active; if none is active it is skipped and its own edges go inactive.
        """
        edge_active: Dict[str, bool] = {}
        pending = {node.id: len(plan.incoming[node.id]) for node in plan.top_nodes}

        initial = [node for node in plan.top_nodes if pending[node.id] == 0]
        initial.sort(key=lambda node: 0 if self._is_trigger(node) else 1)
        ready = deque(initial)

        while ready:
            if context.is_cancelled():
                run.log('warning', "Run cancelled")
                run.fail("Run cancelled")
                return

            node = ready.popleft()
            inbound = plan.incoming[node.id]

            if inbound and not any(edge_active.get(edge.id) for edge in inbound):
                result = NodeRunResult(node_id=node.id, status=NodeStatus.SKIPPED)
                run.log('info', f"Skipping {node.label}: no active inbound edge", node.id)
            else:
                result = await self._run_node(run, node, context)
            run.node_results[node.id] = result

            if run.status == RunStatus.FAILED:
                return

            for edge in plan.outgoing[node.id]:
                edge_active[edge.id] = self._edge_is_active(edge, result)
                pending[edge.target] -= 1
                if pending[edge.target] == 0:
                    ready.append(plan.node_by_id[edge.target])

        for node in plan.top_nodes:
            if node.id not in run.node_results:
                run.log('warning', f"Node {node.label} never became ready (cycle)", node.id)
                run.node_results[node.id] = NodeRunResult(
                    node_id=node.id, status=NodeStatus.SKIPPED, error="Unreachable: dependency cycle")

    def _is_trigger(self, node: Node) -> bool:
        plugin = self.registry.get_plugin(node.plugin_type)
        if plugin is not None:
            return plugin.category == PluginCategory.TRIGGER
        return node.plugin_type.endswith('-trigger')

    @staticmethod
    def _edge_is_active(edge: Edge, result: NodeRunResult) -> bool:
        if result.status == NodeStatus.SKIPPED:
            return False
        # Disabled nodes pass through; failed nodes only get here on "continue"
        if result.status != NodeStatus.SUCCESS:
            return True
        branch = result.outputs.get('result')
        if edge.source_handle in BRANCH_HANDLES and isinstance(branch, bool):
            return edge.source_handle == ('true' if branch else 'false')
        return True

    async def _run_node(self, run: FlowRun, node: Node, context: ExecutionContext) -> NodeRunResult:
        """Run one top-level node and apply its error behavior."""
        started_at = datetime.utcnow()

        if node.data.disabled:
            run.log('info', f"Node {node.label} is disabled, passing through", node.id)
            return NodeRunResult(node_id=node.id, status=NodeStatus.DISABLED,
                                 started_at=started_at, finished_at=datetime.utcnow())

        run.log('info', f"Executing {node.label} ({node.plugin_type})", node.id)
        try:
            outputs = await self._execute_node(node, context.for_node(node.id), run.variables)
        except Exception as e:
            error = str(e)
            if not isinstance(e, FlowEngineError):
                logger.error(traceback.format_exc())
            failure = self._record_failure(node, error, run.variables)
            result = NodeRunResult(node_id=node.id, status=NodeStatus.FAILED, outputs=failure,
                                   error=error, started_at=started_at, finished_at=datetime.utcnow())

            if node.data.error_behavior == ErrorBehavior.CONTINUE:
                run.log('warning', f"{node.label} failed, continuing: {error}", node.id)
                run.partial_errors.append({'nodeId': node.id, 'label': node.label, 'error': error})
            else:
                run.log('error', f"{node.label} failed: {error}", node.id)
                run.fail(f"Node {node.label} failed: {error}")
            return result

        if node.plugin_type == RESPONSE_NODE_TYPE:
            run.final_output = outputs
        run.log('output', f"{node.label} completed", node.id, data=outputs)
        return NodeRunResult(node_id=node.id, status=NodeStatus.SUCCESS, outputs=outputs,
                             started_at=started_at, finished_at=datetime.utcnow())

    async def _execute_body_node(self, node: Node, context: ExecutionContext) -> Dict[str, Any]:
        """
        Run a loop body node against the iteration's variables.

        Raises NodeExecutionError on failure unless the node continues on error.
        """
        if node.data.disabled:
            return {}
        try:
            return await self._execute_node(node, context, context.variables)
        except Exception as e:
            if node.data.error_behavior == ErrorBehavior.CONTINUE:
                context.add_log('warning', f"{node.label} failed inside loop, continuing: {e}")
                return self._record_failure(node, str(e), context.variables)
            if isinstance(e, NodeExecutionError):
                raise
            raise NodeExecutionError(node.id, str(e)) from e

    async def _execute_node(self, node: Node, context: ExecutionContext,
                            variables: Dict[str, Any]) -> Dict[str, Any]:
        context = context.with_variables(variables)

        # Loop nodes never go through the generic plugin path
        if node.plugin_type == LOOP_NODE_TYPE:
            outputs = await self.loop_handler.run_loop(node, context)
        else:
            plugin = self.registry.get_plugin(node.plugin_type)
            if plugin is None:
                raise PluginNotFoundError(node.plugin_type)

            if node.data.loop_config is not None and node.data.loop_config.enabled:
                async def run_once(iteration_context: ExecutionContext) -> Dict[str, Any]:
                    return await self._invoke_plugin(plugin, node, iteration_context)

                outputs = await self.loop_handler.run_node_loop(node, context, run_once)
            else:
                outputs = await self._invoke_plugin(plugin, node, context)

        self._store_outputs(node.id, outputs, variables)
        return outputs

    async def _invoke_plugin(self, plugin: NodePlugin, node: Node,
                             context: ExecutionContext) -> Dict[str, Any]:
        inputs = plugin.apply_defaults(node.data.inputs)
        resolver = TemplateResolver(context.variables, context.input_values, context.env_vars)
        bound = resolver.resolve_structure(inputs)

        missing = plugin.missing_required(bound)
        if missing:
            raise NodeInputError(missing)

        result = await plugin.execute(bound, context)
        if result is None:
            return {}
        if not isinstance(result, Mapping):
            logger.warning(f"Plugin {plugin.type} returned {type(result).__name__}, wrapping as result")
            return {'result': result}
        return dict(result)

    @staticmethod
    def _store_outputs(node_id: str, outputs: Dict[str, Any], variables: Dict[str, Any]):
        for key, value in outputs.items():
            variables[f"{node_id}.{key}"] = value

    @staticmethod
    def _record_failure(node: Node, error: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        failure = {'error': error, 'success': False, '_failedNode': True}
        for key, value in failure.items():
            variables[f"{node.id}.{key}"] = value
        return failure
