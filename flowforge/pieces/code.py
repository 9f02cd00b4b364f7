"""
Transform / code plugins
Evaluate a sandboxed Python expression against the run's variables
"""
import logging

from flowforge.flow_engine.expression import evaluate_expression
from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import NodeOutput, NodePlugin, PluginCategory, code_input

logger = logging.getLogger(__name__)


def _expression_names(inputs: dict, ctx: ExecutionContext, source_key: str) -> dict:
    names = dict(ctx.variables)
    names.update({
        'inputs': {k: v for k, v in inputs.items() if k != source_key},
        'variables': ctx.variables,
        'env': ctx.env_vars,
    })
    return names


def _make_handler(source_key: str):
    async def handler(inputs: dict, ctx: ExecutionContext) -> dict:
        expression = inputs.get(source_key)
        result = evaluate_expression(expression, _expression_names(inputs, ctx, source_key))
        logger.debug(f"Expression on node {ctx.node_id} evaluated to {result!r}")
        return {'result': result, 'error': None}

    return handler


transform = NodePlugin(
    type="transform",
    name="Transform",
    description="Compute a value with an expression, e.g. item.value * 2",
    category=PluginCategory.TRANSFORMER,
    execute=_make_handler('expression'),
    inputs=(
        code_input('expression', 'Expression', required=True,
                   description='Python expression; run variables are available by name'),
    ),
    outputs=(NodeOutput('result', 'any'),),
    icon="wand",
)

code_execution = NodePlugin(
    type="code-execution",
    name="Code",
    description="Evaluate a sandboxed expression over the node inputs and run variables",
    category=PluginCategory.TRANSFORMER,
    execute=_make_handler('code'),
    inputs=(
        code_input('code', 'Code', required=True),
    ),
    outputs=(NodeOutput('result', 'any'),),
    icon="code",
)

PLUGINS = (transform, code_execution)
