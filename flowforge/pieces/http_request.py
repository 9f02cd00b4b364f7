"""
HTTP Request plugin
Calls an arbitrary HTTP endpoint with httpx
"""
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

from flowforge.config import Config
from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import (
    NodeOutput,
    NodePlugin,
    number_input,
    options_from,
    select_input,
    show_when,
    text_input,
    textarea_input,
)

logger = logging.getLogger(__name__)

METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE']


def _parse_headers(raw: Any) -> Dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        raise ValueError("Headers must be a JSON object")
    if not isinstance(parsed, dict):
        raise ValueError("Headers must be a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


def _parse_body(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def validate_url(url: Any) -> str:
    if not isinstance(url, str) or not url.strip():
        raise ValueError("URL is required")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError(f"Invalid URL: {url}")
    return url.strip()


def create_http_request_plugin(transport: Optional[httpx.AsyncBaseTransport] = None,
                               timeout: float = Config.HTTP_TIMEOUT_SECONDS) -> NodePlugin:
    """
    Build the http-request plugin.

    Args:
        transport: Optional httpx transport (tests pass httpx.MockTransport)
        timeout: Request timeout in seconds
    """

    async def http_request_handler(inputs: dict, ctx: ExecutionContext) -> dict:
        url = validate_url(inputs.get('url'))
        method = (inputs.get('method') or 'GET').upper()
        headers = _parse_headers(inputs.get('headers'))

        api_key = inputs.get('apiKey')
        if api_key:
            headers.setdefault('Authorization', f"Bearer {api_key}")

        request_kwargs: Dict[str, Any] = {'headers': headers}
        body = inputs.get('body')
        if method != 'GET' and body not in (None, ''):
            parsed = _parse_body(body)
            if isinstance(parsed, (dict, list)):
                request_kwargs['json'] = parsed
            else:
                request_kwargs['content'] = str(parsed)

        logger.info(f"HTTP {method} {url}")
        request_timeout = float(inputs.get('timeout') or timeout)
        async with httpx.AsyncClient(transport=transport, timeout=request_timeout) as client:
            response = await client.request(method, url, **request_kwargs)

        try:
            data = response.json()
        except ValueError:
            data = response.text

        success = 200 <= response.status_code < 300
        return {
            'success': success,
            'status': response.status_code,
            'statusText': response.reason_phrase,
            'data': data,
            'headers': dict(response.headers),
            'error': None if success else f"HTTP {response.status_code}: {response.reason_phrase}",
        }

    return NodePlugin(
        type="http-request",
        name="HTTP Request",
        description="Make an HTTP request to any URL",
        execute=http_request_handler,
        inputs=(
            text_input('url', 'URL', required=True, placeholder='https://api.example.com/items'),
            select_input('method', 'Method', options_from(METHODS), default='GET'),
            textarea_input('headers', 'Headers', description='JSON object of request headers'),
            textarea_input('body', 'Body', show_when=show_when('method', 'POST', 'PUT', 'PATCH', 'DELETE')),
            text_input('apiKey', 'API Key', description='Sent as a Bearer token'),
            number_input('timeout', 'Timeout (s)'),
        ),
        outputs=(
            NodeOutput('success', 'boolean', 'True for 2xx responses'),
            NodeOutput('status', 'number'),
            NodeOutput('statusText', 'string'),
            NodeOutput('data', 'any', 'Parsed JSON body, or text'),
            NodeOutput('headers', 'object'),
            NodeOutput('error', 'string'),
        ),
        icon="globe",
    )


http_request = create_http_request_plugin()

PLUGINS = (http_request,)
