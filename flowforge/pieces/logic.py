"""
Logic plugins
Condition, set-variable and data-filter nodes
"""
import logging
from typing import Any

from flowforge.flow_engine.branching import ConditionOperator, LogicalOperator, check_condition, evaluate_group
from flowforge.flow_engine.models import ExecutionContext
from flowforge.flow_engine.variable_resolver import MISSING, TemplateResolver
from flowforge.pieces.base import (
    InputType,
    NodeInput,
    NodeOutput,
    NodePlugin,
    PluginCategory,
    options_from,
    select_input,
    text_input,
    textarea_input,
)

logger = logging.getLogger(__name__)

OPERATOR_OPTIONS = options_from([op.value for op in ConditionOperator])


def _source_value(inputs: dict, ctx: ExecutionContext, value_key: str = 'value') -> Any:
    """Explicit value input, else variables["<sourceNodeId>.<outputField>"]"""
    if inputs.get(value_key) is not None:
        return inputs[value_key]
    source_node_id = inputs.get('sourceNodeId')
    if not source_node_id:
        return None
    path = source_node_id
    if inputs.get('outputField'):
        path = f"{source_node_id}.{inputs['outputField']}"
    value = TemplateResolver(ctx.variables).lookup(path)
    return None if value is MISSING else value


async def condition_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    """
    Evaluate a condition; edges leaving the "true"/"false" handles are routed on `result`
    """
    conditions = inputs.get('conditions')
    if isinstance(conditions, list) and conditions:
        result = evaluate_group(conditions, inputs.get('logicalOperator') or LogicalOperator.AND.value)
        return {'result': result, 'data': None}

    data = _source_value(inputs, ctx)
    operation = inputs.get('operation') or ConditionOperator.EQUALS.value
    result = check_condition(data, operation, inputs.get('compareValue'))
    logger.debug(f"Condition {operation} on {data!r} -> {result}")
    return {'result': result, 'data': data}


async def set_variable_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    name = inputs.get('variableName') or 'value'
    value = inputs.get('value')
    return {'name': name, 'value': value, name: value}


async def data_filter_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    data = _source_value(inputs, ctx, value_key='data')
    if not isinstance(data, list):
        return {'filtered': data, 'count': 0, 'error': None}

    field = inputs.get('filterField')
    operation = inputs.get('filterOperation') or ConditionOperator.EQUALS.value
    filtered = list(data)
    if field:
        expected = inputs.get('filterValue')
        filtered = [
            item for item in data
            if isinstance(item, dict) and check_condition(item.get(field), operation, expected)
        ]

    return {'filtered': filtered, 'count': len(filtered), 'error': None}


condition = NodePlugin(
    type="condition",
    name="Condition",
    description="Branch the flow on a comparison",
    category=PluginCategory.CONDITION,
    execute=condition_handler,
    inputs=(
        text_input('sourceNodeId', 'Source Node'),
        text_input('outputField', 'Output Field'),
        text_input('value', 'Value', description='Value to test; overrides the source node field'),
        select_input('operation', 'Operation', OPERATOR_OPTIONS, default=ConditionOperator.EQUALS.value),
        text_input('compareValue', 'Compare Value'),
    ),
    outputs=(
        NodeOutput('result', 'boolean'),
        NodeOutput('data', 'any', 'The tested value'),
    ),
    icon="git-branch",
)

set_variable = NodePlugin(
    type="set-variable",
    name="Set Variable",
    description="Store a value for later nodes",
    category=PluginCategory.TRANSFORMER,
    execute=set_variable_handler,
    inputs=(
        text_input('variableName', 'Variable Name', required=True),
        textarea_input('value', 'Value'),
    ),
    outputs=(
        NodeOutput('name', 'string'),
        NodeOutput('value', 'any'),
    ),
    icon="variable",
)

data_filter = NodePlugin(
    type="data-filter",
    name="Data Filter",
    description="Filter an array of objects by a field",
    category=PluginCategory.TRANSFORMER,
    execute=data_filter_handler,
    inputs=(
        NodeInput('data', 'Data', InputType.VARIABLE, description='Array to filter, e.g. {{node.items}}'),
        text_input('sourceNodeId', 'Source Node'),
        text_input('outputField', 'Output Field'),
        text_input('filterField', 'Filter Field'),
        text_input('filterValue', 'Filter Value'),
        select_input('filterOperation', 'Operation', OPERATOR_OPTIONS, default=ConditionOperator.EQUALS.value),
    ),
    outputs=(
        NodeOutput('filtered', 'array'),
        NodeOutput('count', 'number'),
    ),
    icon="filter",
)

PLUGINS = (condition, set_variable, data_filter)
