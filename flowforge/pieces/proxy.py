"""
Proxy plugins
Vendor nodes that forward their inputs to a remote function named "<vendor>-proxy"
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from flowforge.config import Config
from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import (
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


class ProxyError(Exception):
    """Error returned by a remote proxy function"""
    def __init__(self, function_name: str, message: str):
        self.function_name = function_name
        super().__init__(f"{function_name}: {message}")


@dataclass
class ProxyResponse:
    data: Optional[Any] = None
    error: Optional[str] = None


class ProxyClient:
    """
    Invokes remote functions at `<base_url>/<function_name>` with a JSON body
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = Config.HTTP_TIMEOUT_SECONDS):
        self.base_url = base_url
        self.api_key = api_key
        self.transport = transport
        self.timeout = timeout

    async def invoke(self, function_name: str, body: Dict[str, Any]) -> ProxyResponse:
        base_url = self.base_url or Config.PROXY_BASE_URL
        if not base_url:
            return ProxyResponse(error="Proxy base URL is not configured")

        headers = {'Content-Type': 'application/json'}
        api_key = self.api_key or Config.PROXY_API_KEY
        if api_key:
            headers['Authorization'] = f'Bearer {api_key}'

        url = f"{base_url.rstrip('/')}/{function_name}"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Proxy call {function_name} failed: {e}")
            return ProxyResponse(error=str(e))

        try:
            payload = response.json()
        except ValueError:
            payload = {'data': response.text}

        if response.status_code >= 400:
            message = payload.get('error') if isinstance(payload, dict) else None
            return ProxyResponse(error=message or f"HTTP {response.status_code}")
        if isinstance(payload, dict) and payload.get('error'):
            return ProxyResponse(error=str(payload['error']))
        if isinstance(payload, dict) and 'data' in payload:
            return ProxyResponse(data=payload['data'])
        return ProxyResponse(data=payload)


default_client = ProxyClient()


def create_proxy_plugin(type: str, name: str, actions: Dict[str, List[NodeInput]],
                        client: Optional[ProxyClient] = None, function_name: Optional[str] = None,
                        description: str = "", icon: Optional[str] = None) -> NodePlugin:
    """
    Build a vendor plugin whose inputs depend on the selected action.

    Args:
        type: Node type, e.g. "clickup"
        name: Display name
        actions: Action value -> inputs shown for that action
        client: ProxyClient used at execution time (module default when omitted)
        function_name: Remote function; defaults to "<type>-proxy"

    Returns:
        NodePlugin
    """
    target = function_name or f"{type}-proxy"
    action_names = list(actions)

    def dynamic_inputs(current_inputs: Dict[str, Any]) -> List[NodeInput]:
        return list(actions.get(current_inputs.get('action'), []))

    async def execute(inputs: Dict[str, Any], ctx: ExecutionContext) -> Dict[str, Any]:
        action = inputs.get('action')
        if action not in actions:
            raise ValueError(f"Unknown action for {type}: {action}")

        body = dict(inputs)
        body['action'] = action
        response = await (client or default_client).invoke(target, body)
        if response.error:
            raise ProxyError(target, response.error)

        data = response.data
        if isinstance(data, dict):
            return {**data, 'success': True}
        return {'result': data, 'success': True}

    return NodePlugin(
        type=type,
        name=name,
        description=description or f"{name} actions",
        category=PluginCategory.ACTION,
        execute=execute,
        inputs=(
            select_input('action', 'Action', options_from(action_names), required=True,
                         default=action_names[0] if action_names else None),
        ),
        outputs=(NodeOutput('success', 'boolean'),),
        dynamic_inputs=dynamic_inputs,
        icon=icon,
    )


clickup = create_proxy_plugin(
    type="clickup",
    name="ClickUp",
    description="Create and read ClickUp tasks",
    actions={
        'create_task': [
            text_input('listId', 'List ID', required=True),
            text_input('name', 'Task Name', required=True),
            textarea_input('description', 'Description'),
        ],
        'get_task': [
            text_input('taskId', 'Task ID', required=True),
        ],
    },
    icon="check-square",
)

PLUGINS = (clickup,)
