"""
Logger plugin
Writes a message to the application log and the run log
"""
import json
import logging

from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import (
    NodeOutput,
    NodePlugin,
    boolean_input,
    options_from,
    select_input,
    textarea_input,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = ['debug', 'info', 'warning', 'error']


async def logger_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    enabled = inputs.get('enabled', True)
    if enabled is False or str(enabled).lower() == 'false':
        return {'logged': False, 'message': 'Logging disabled', 'level': None, 'data': None}

    level = (inputs.get('logLevel') or 'info').lower()
    if level not in LOG_LEVELS:
        level = 'info'
    message = inputs.get('message') or ''

    custom_data = inputs.get('customData')
    if isinstance(custom_data, str) and custom_data.strip():
        try:
            custom_data = json.loads(custom_data)
        except ValueError:
            custom_data = {'raw': custom_data}

    getattr(logger, level)(f"[flow {ctx.flow_id}] [node {ctx.node_id}] {message}")
    ctx.add_log(level, message, custom_data)

    return {'logged': True, 'message': message, 'level': level, 'data': custom_data}


logger_plugin = NodePlugin(
    type="logger",
    name="Logger",
    description="Log a message during the run",
    execute=logger_handler,
    inputs=(
        boolean_input('enabled', 'Enabled', default=True),
        select_input('logLevel', 'Level', options_from(LOG_LEVELS), default='info'),
        textarea_input('message', 'Message'),
        textarea_input('customData', 'Custom Data', description='JSON object attached to the log entry'),
    ),
    outputs=(
        NodeOutput('logged', 'boolean'),
        NodeOutput('message', 'string'),
        NodeOutput('level', 'string'),
        NodeOutput('data', 'any'),
    ),
    icon="scroll",
)

PLUGINS = (logger_plugin,)
