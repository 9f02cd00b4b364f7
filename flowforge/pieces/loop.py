"""
For-each loop plugin
Descriptor only: the executor hands loop nodes to the loop handler
"""
from flowforge.flow_engine.errors import FlowEngineError
from flowforge.flow_engine.loop_handler import LOOP_NODE_TYPE
from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import (
    InputType,
    NodeInput,
    NodeOutput,
    NodePlugin,
    PluginCategory,
    number_input,
    options_from,
    select_input,
    text_input,
)


async def for_each_loop_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    raise FlowEngineError("for-each-loop nodes are executed by the loop handler")


for_each_loop = NodePlugin(
    type=LOOP_NODE_TYPE,
    name="For Each",
    description="Run the connected nodes once per item",
    category=PluginCategory.LOOP,
    execute=for_each_loop_handler,
    inputs=(
        NodeInput('loopVariables', 'Loop Variables', InputType.LIST,
                  description='[{"variableName", "sourceNodeId", "sourceField"}]'),
        text_input('linkedVariableId', 'Linked Variable'),
        number_input('maxIterations', 'Max Iterations', default=500),
        number_input('delayMs', 'Delay (ms)', default=0),
        select_input('trimWhitespace', 'Trim Whitespace', options_from(['true', 'false']), default='true'),
        number_input('loopCounterStart', 'Counter Start', default=1),
        select_input('errorHandling', 'On Error', options_from(['continue', 'stop']), default='continue'),
        select_input('loopType', 'Mode', options_from(['sync', 'async']), default='sync'),
        number_input('batchSize', 'Batch Size', default=5),
    ),
    outputs=(
        NodeOutput('results', 'array', 'One entry per processed iteration'),
        NodeOutput('totalProcessed', 'number'),
        NodeOutput('successful', 'number'),
        NodeOutput('failed', 'number'),
    ),
    icon="repeat",
)

PLUGINS = (for_each_loop,)
