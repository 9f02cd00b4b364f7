"""
Loop Handler - Iterate a loop body over a resolved collection

Supports:
- for-each-loop nodes: run the body (child nodes) once per item
- Several loop variables iterated in lockstep
- linkedVariableId: iterate a bound variable, its length overriding maxIterations
- sync (sequential) or async (batched) dispatch, results kept in item order
- delayMs between iterations, errorHandling continue | stop
- Per-node looping: any node with loopConfig.enabled runs once per item
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from flowforge.config import Config
from flowforge.flow_engine.errors import LoopIterationError, LoopResolutionError
from flowforge.flow_engine.models import ExecutionContext, LoopConfiguration, LoopType, Node
from flowforge.flow_engine.variable_resolver import MISSING, TemplateResolver

logger = logging.getLogger(__name__)

LOOP_NODE_TYPE = 'for-each-loop'
DEFAULT_LOOP_VARIABLE = 'item'


@dataclass
class LoopVariable:
    name: str
    source_node_id: Optional[str] = None
    source_field: Optional[str] = None

    @property
    def path(self) -> Optional[str]:
        if self.source_node_id and self.source_field:
            return f"{self.source_node_id}.{self.source_field}"
        return self.source_node_id or self.source_field


@dataclass
class LoopSettings:
    variables: List[LoopVariable] = field(default_factory=list)
    max_iterations: int = 500
    linked_variable_id: Optional[str] = None
    delay_ms: int = 0
    trim_whitespace: bool = True
    loop_counter_start: int = 1
    error_handling: str = 'continue'
    loop_type: LoopType = LoopType.SYNC
    batch_size: int = 5
    index_variable_name: Optional[str] = None

    @property
    def stop_on_error(self) -> bool:
        return self.error_handling == 'stop'


def _as_int(value: Any, default: int) -> int:
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid loop number {value!r}, using {default}")
        return default


def _as_flag(value: Any, default: bool) -> bool:
    if value is None or value == '':
        return default
    return str(value).lower() != 'false'


class LoopHandler:
    """
    Runs for-each-loop nodes and per-node loops for the executor.

    Loop node inputs:
    {
        "loopVariables": [
            {"variableName": "item", "sourceNodeId": "http-1712345678901", "sourceField": "data.items"}
        ],
        "maxIterations": 500,
        "delayMs": 0,
        "errorHandling": "continue",
        "loopType": "sync"
    }
    """

    def __init__(self, max_iterations: int = Config.LOOP_MAX_ITERATIONS,
                 batch_size: int = Config.LOOP_BATCH_SIZE,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Args:
            max_iterations: Iteration cap when a loop does not set one
            batch_size: Async batch size when a loop does not set one
            sleep: Awaitable used for delays between iterations
        """
        self.max_iterations = max_iterations
        self.batch_size = batch_size
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def build_settings(self, inputs: Dict[str, Any],
                       loop_config: Optional[LoopConfiguration] = None) -> LoopSettings:
        """Merge loop node inputs over the node's loopConfig defaults."""
        config = loop_config or LoopConfiguration()
        default_name = config.loop_variable_name or DEFAULT_LOOP_VARIABLE

        variables = []
        for entry in inputs.get('loopVariables') or []:
            if not isinstance(entry, dict):
                continue
            variables.append(LoopVariable(
                name=entry.get('variableName') or default_name,
                source_node_id=entry.get('sourceNodeId'),
                source_field=entry.get('sourceField'),
            ))
        if not variables:
            source_node_id = inputs.get('sourceNodeId') or config.source_node_id
            source_field = inputs.get('sourceField') or config.source_field
            if source_node_id or source_field:
                variables.append(LoopVariable(
                    name=inputs.get('variableName') or default_name,
                    source_node_id=source_node_id,
                    source_field=source_field,
                ))

        loop_type = inputs.get('loopType') or config.loop_type
        return LoopSettings(
            variables=variables,
            max_iterations=_as_int(inputs.get('maxIterations', config.max_iterations), self.max_iterations),
            linked_variable_id=inputs.get('linkedVariableId') or config.linked_variable_id,
            delay_ms=_as_int(inputs.get('delayMs', config.delay_ms), 0),
            trim_whitespace=_as_flag(inputs.get('trimWhitespace'), True),
            loop_counter_start=_as_int(inputs.get('loopCounterStart'), 1),
            error_handling=(inputs.get('errorHandling') or 'continue').lower(),
            loop_type=LoopType(loop_type),
            batch_size=max(1, _as_int(inputs.get('batchSize', config.batch_size), self.batch_size)),
            index_variable_name=inputs.get('indexVariableName') or config.index_variable_name,
        )

    # ------------------------------------------------------------------
    # Collection resolution
    # ------------------------------------------------------------------
    def get_loop_items(self, settings: LoopSettings,
                       variables: Dict[str, Any]) -> Tuple[List[Tuple[str, List[Any]]], int]:
        """
        Resolve every loop variable to a list.

        Returns:
            ([(variable name, items), ...], iteration count)

        Raises:
            LoopResolutionError: source missing or not an array
        """
        resolver = TemplateResolver(variables)

        if settings.linked_variable_id:
            name = settings.variables[0].name if settings.variables else DEFAULT_LOOP_VARIABLE
            items = self._coerce_items(
                resolver.lookup(settings.linked_variable_id), settings.linked_variable_id, settings)
            # The linked collection's length replaces maxIterations
            return [(name, items)], len(items)

        if not settings.variables:
            raise LoopResolutionError("Loop has no source configured")

        arrays = []
        for variable in settings.variables:
            if not variable.path:
                raise LoopResolutionError(f"Loop variable '{variable.name}' has no source")
            items = self._coerce_items(resolver.lookup(variable.path), variable.path, settings)
            arrays.append((variable.name, items))

        longest = max(len(items) for _, items in arrays)
        if longest > settings.max_iterations:
            logger.warning(f"Loop has {longest} items, limiting to {settings.max_iterations}")
        return arrays, min(longest, settings.max_iterations)

    def _coerce_items(self, value: Any, path: str, settings: LoopSettings) -> List[Any]:
        if value is MISSING or value is None:
            raise LoopResolutionError(f"Loop source not found: {path}")

        if isinstance(value, str):
            text = value.strip()
            if text.startswith('['):
                try:
                    value = json.loads(text)
                except ValueError:
                    value = None
            if isinstance(value, str):
                if not text:
                    return []
                parts = value.split(',')
                return [p.strip() for p in parts] if settings.trim_whitespace else parts

        if not isinstance(value, (list, tuple)):
            raise LoopResolutionError(f"Loop source {path} is not an array: {type(value).__name__}")

        items = list(value)
        if settings.trim_whitespace:
            items = [item.strip() if isinstance(item, str) else item for item in items]
        return items

    # ------------------------------------------------------------------
    # Iteration context
    # ------------------------------------------------------------------
    def create_item_context(self, node_id: str, settings: LoopSettings,
                            arrays: List[Tuple[str, List[Any]]], index: int,
                            total: int) -> Dict[str, Any]:
        """Variables visible to the loop body for one iteration."""
        counter = settings.loop_counter_start + index
        is_first = index == 0
        is_last = index == total - 1
        context: Dict[str, Any] = {}

        current_item = None
        for position, (name, items) in enumerate(arrays):
            current = items[index] if index < len(items) else None
            if position == 0:
                current_item = current
            context[name] = current
            context[f'{name}Index'] = index
            context[f'{node_id}.{name}'] = current

        if settings.index_variable_name:
            context[settings.index_variable_name] = index

        context.update({
            'currentItem': current_item,
            'currentIndex': index,
            f'{node_id}.currentItem': current_item,
            f'{node_id}.currentIndex': index,
            f'{node_id}.totalItems': total,
            f'{node_id}.isFirst': is_first,
            f'{node_id}.isLast': is_last,
            'loop_iteration': counter,
            f'{node_id}.loop_iteration': counter,
            'loop.isFirst': is_first,
            'loop.isLast': is_last,
            'loop.total': total,
            f'{node_id}._loop': {
                'current': current_item,
                'index': index,
                'total': total,
                'isFirst': is_first,
                'isLast': is_last,
                'iteration': counter,
            },
        })
        return context

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def run_loop(self, node: Node, context: ExecutionContext) -> Dict[str, Any]:
        """
        Execute a for-each-loop node: its body runs once per item.

        Returns:
            {"results": [...], "totalProcessed": n, "count", "successful", "failed", "_loop"}
        """
        inputs = TemplateResolver(
            context.variables, context.input_values, context.env_vars
        ).resolve_structure(node.data.inputs)
        settings = self.build_settings(inputs, node.data.loop_config)
        arrays, total = self.get_loop_items(settings, context.variables)
        body = context.get_child_nodes(node.id) if context.get_child_nodes else []

        context.add_log('info', f"Starting loop: {total} iterations across {len(arrays)} variable(s)", {
            'variables': [{'name': name, 'length': len(items)} for name, items in arrays],
            'maxIterations': settings.max_iterations,
        })
        if not body:
            logger.warning(f"Loop {node.id} has no body nodes")

        async def run_iteration(index: int) -> Any:
            variables = dict(context.variables)
            variables.update(self.create_item_context(node.id, settings, arrays, index, total))
            iteration_context = context.with_variables(variables)
            output = None
            for child in body:
                if context.execute_node is None:
                    raise LoopIterationError(index, "No executor available for loop body")
                output = await context.execute_node(child, iteration_context.for_node(child.id))
            return self.iteration_result(output)

        results, cancelled = await self._iterate(total, settings, run_iteration, context)
        outputs = self.process_loop_results(results, total, cancelled)
        context.add_log('output', f"Loop completed: {len(results)} iterations processed", {
            'totalProcessed': len(results),
        })
        return outputs

    async def run_node_loop(self, node: Node, context: ExecutionContext,
                            run_once: Callable[[ExecutionContext], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
        """
        Run a regular node once per item of its loopConfig source.

        Each run sees {{<nodeId>._loop.current}}, {{<nodeId>._loop.index}} and
        the configured loop/index variable names.
        """
        settings = self.build_settings({}, node.data.loop_config)
        arrays, total = self.get_loop_items(settings, context.variables)

        async def run_iteration(index: int) -> Any:
            variables = dict(context.variables)
            variables.update(self.create_item_context(node.id, settings, arrays, index, total))
            variables[f'{node.id}._loop']['arrayLength'] = len(arrays[0][1])
            return await run_once(context.with_variables(variables))

        results, cancelled = await self._iterate(total, settings, run_iteration, context)
        summary = self.process_loop_results(results, total, cancelled)
        return {
            '_loop': {
                'results': results,
                'count': summary['count'],
                'successful': summary['successful'],
                'failed': summary['failed'],
            },
            'results': results,
        }

    async def _iterate(self, total: int, settings: LoopSettings,
                       run_iteration: Callable[[int], Awaitable[Any]],
                       context: ExecutionContext) -> Tuple[List[Any], bool]:
        if settings.loop_type == LoopType.ASYNC:
            return await self._iterate_batched(total, settings, run_iteration, context)

        results: List[Any] = []
        for index in range(total):
            if context.is_cancelled():
                context.add_log('warning', f"Loop cancelled before iteration {index + 1}")
                return results, True
            try:
                results.append(await run_iteration(index))
            except Exception as e:
                context.add_log('error', f"Iteration {index + 1} failed: {e}", {'index': index})
                results.append({'error': str(e), 'index': index})
                if settings.stop_on_error:
                    context.add_log('warning', "Stopping loop due to error (errorHandling: stop)")
                    break

            if settings.delay_ms > 0 and index < total - 1:
                await self._sleep(settings.delay_ms / 1000)

        return results, False

    async def _iterate_batched(self, total: int, settings: LoopSettings,
                               run_iteration: Callable[[int], Awaitable[Any]],
                               context: ExecutionContext) -> Tuple[List[Any], bool]:
        # stop must never start an iteration after the failing one
        batch_size = 1 if settings.stop_on_error else settings.batch_size
        results: List[Any] = []
        for start in range(0, total, batch_size):
            if context.is_cancelled():
                context.add_log('warning', f"Loop cancelled before iteration {start + 1}")
                return results, True

            indexes = list(range(start, min(start + batch_size, total)))
            outcomes = await asyncio.gather(*(run_iteration(i) for i in indexes), return_exceptions=True)

            failed = False
            for index, outcome in zip(indexes, outcomes):
                if isinstance(outcome, Exception):
                    context.add_log('error', f"Iteration {index + 1} failed: {outcome}", {'index': index})
                    results.append({'error': str(outcome), 'index': index})
                    failed = True
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)

            if failed and settings.stop_on_error:
                context.add_log('warning', "Stopping loop due to error (errorHandling: stop)")
                break

            if settings.delay_ms > 0 and start + batch_size < total:
                await self._sleep(settings.delay_ms / 1000)

        return results, False

    @staticmethod
    def iteration_result(output: Any) -> Any:
        """The last body node's `result` output, else its whole output."""
        if isinstance(output, dict) and 'result' in output:
            return output['result']
        return output

    @staticmethod
    def is_failure(result: Any) -> bool:
        return isinstance(result, dict) and 'error' in result and 'index' in result

    def process_loop_results(self, results: List[Any], total: int,
                             cancelled: bool = False) -> Dict[str, Any]:
        """
        Aggregate loop results.

        Returns:
            Outputs stored under the loop node's id
        """
        failed = sum(1 for r in results if self.is_failure(r))
        return {
            'results': results,
            'totalProcessed': len(results),
            'count': len(results),
            'successful': len(results) - failed,
            'failed': failed,
            '_loop': {
                'total': total,
                'processed': len(results),
                'stoppedEarly': len(results) < total,
                'cancelled': cancelled,
            },
        }
