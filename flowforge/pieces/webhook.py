"""
Webhook plugins
Triggers that start a flow and the response node that answers the caller
"""
import json

from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import (
    NodeOutput,
    NodePlugin,
    PluginCategory,
    number_input,
    select_input,
    options_from,
    textarea_input,
)


def _parse_json(value):
    if isinstance(value, str) and value.strip():
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


async def webhook_trigger_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    """
    Webhook trigger handler
    The HTTP request itself is received by the host; this exposes its payload
    """
    payload = ctx.trigger_payload or {}
    body = payload.get('body', payload)

    return {
        'body': body,
        'payload': body,
        'headers': payload.get('headers', {}),
        'query': payload.get('query', {}),
        'method': payload.get('method', 'POST'),
    }


async def manual_trigger_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    """Manual runs expose their input values"""
    return {'payload': dict(ctx.input_values)}


async def response_handler(inputs: dict, ctx: ExecutionContext) -> dict:
    """
    Build the response returned to the flow's caller
    """
    content_type = inputs.get('contentType') or 'application/json'
    body = inputs.get('body')
    if content_type == 'application/json':
        body = _parse_json(body)

    headers = _parse_json(inputs.get('headers'))
    if not isinstance(headers, dict):
        headers = {}

    return {
        'statusCode': int(inputs.get('statusCode') or 200),
        'body': body,
        'contentType': content_type,
        'headers': headers,
    }


webhook_trigger = NodePlugin(
    type="webhook-trigger",
    name="Webhook",
    description="Triggers when a webhook is received",
    category=PluginCategory.TRIGGER,
    execute=webhook_trigger_handler,
    outputs=(
        NodeOutput('body', 'object', 'Request body'),
        NodeOutput('payload', 'object', 'Alias of body'),
        NodeOutput('headers', 'object'),
        NodeOutput('query', 'object'),
        NodeOutput('method', 'string'),
    ),
    icon="webhook",
)

manual_trigger = NodePlugin(
    type="manual-trigger",
    name="Manual Trigger",
    description="Starts the flow on demand with the run's input values",
    category=PluginCategory.TRIGGER,
    execute=manual_trigger_handler,
    outputs=(NodeOutput('payload', 'object'),),
    icon="play",
)

response = NodePlugin(
    type="response",
    name="Response",
    description="Return a custom response to the flow's caller",
    category=PluginCategory.ACTION,
    execute=response_handler,
    inputs=(
        number_input('statusCode', 'Status Code', default=200),
        textarea_input('body', 'Body', description='Response body; may reference variables'),
        select_input('contentType', 'Content Type',
                     options_from(['application/json', 'text/plain', 'text/html']),
                     default='application/json'),
        textarea_input('headers', 'Headers'),
    ),
    outputs=(
        NodeOutput('statusCode', 'number'),
        NodeOutput('body', 'any'),
        NodeOutput('contentType', 'string'),
        NodeOutput('headers', 'object'),
    ),
    icon="reply",
)

PLUGINS = (webhook_trigger, manual_trigger, response)
