"""
Tests for the built-in node plugins
"""

import json
import logging

import httpx
import pytest

from flowforge.flow_engine.errors import ExpressionError, FlowEngineError
from flowforge.flow_engine.models import ExecutionContext
from flowforge.pieces.base import text_input
from flowforge.pieces.code import code_execution, transform
from flowforge.pieces.http_request import create_http_request_plugin
from flowforge.pieces.logger_node import logger_plugin
from flowforge.pieces.logic import condition, data_filter, set_variable
from flowforge.pieces.loop import for_each_loop
from flowforge.pieces.proxy import ProxyClient, ProxyError, create_proxy_plugin
from flowforge.pieces.webhook import manual_trigger, response, webhook_trigger


def _ctx(variables=None, **kwargs):
    return ExecutionContext(node_id='node-1', flow_id='flow-1', env_vars={'BASE': 'http://api'},
                            variables=dict(variables or {}), **kwargs)


class TestHttpRequest:
    """Test the http-request plugin"""

    @pytest.mark.asyncio
    async def test_post_with_json_body_and_api_key(self):
        """Body is sent as JSON, apiKey as a Bearer header"""
        captured = {}

        def handler(request):
            captured['method'] = request.method
            captured['auth'] = request.headers.get('Authorization')
            captured['custom'] = request.headers.get('X-Test')
            captured['body'] = json.loads(request.content)
            return httpx.Response(201, json={'id': 'abc'})

        plugin = create_http_request_plugin(transport=httpx.MockTransport(handler))
        outputs = await plugin.execute({
            'url': 'http://api/items',
            'method': 'post',
            'headers': '{"X-Test": "1"}',
            'body': '{"name": "widget"}',
            'apiKey': 'secret',
        }, _ctx())

        assert captured == {'method': 'POST', 'auth': 'Bearer secret', 'custom': '1', 'body': {'name': 'widget'}}
        assert outputs['success'] is True
        assert outputs['status'] == 201
        assert outputs['data'] == {'id': 'abc'}
        assert outputs['error'] is None

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Non-2xx responses are returned with success False"""
        plugin = create_http_request_plugin(
            transport=httpx.MockTransport(lambda request: httpx.Response(404, text='missing')))

        outputs = await plugin.execute({'url': 'http://api/nope', 'method': 'GET'}, _ctx())

        assert outputs['success'] is False
        assert outputs['data'] == 'missing'
        assert outputs['error'] == 'HTTP 404: Not Found'

    @pytest.mark.asyncio
    async def test_invalid_url(self):
        """Only absolute http(s) URLs are accepted"""
        plugin = create_http_request_plugin(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ValueError):
            await plugin.execute({'url': 'ftp://files'}, _ctx())

    @pytest.mark.asyncio
    async def test_invalid_headers(self):
        """Headers must be a JSON object"""
        plugin = create_http_request_plugin(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ValueError):
            await plugin.execute({'url': 'http://api', 'headers': '[1, 2]'}, _ctx())


class TestLogicPlugins:
    """Test condition, set-variable and data-filter"""

    @pytest.mark.asyncio
    async def test_condition_from_source_node(self):
        """The tested value is read from a node output"""
        ctx = _ctx({'http.data': {'status': 'ok'}})
        outputs = await condition.execute({
            'sourceNodeId': 'http', 'outputField': 'data.status', 'operation': 'eq', 'compareValue': 'ok',
        }, ctx)

        assert outputs == {'result': True, 'data': 'ok'}

    @pytest.mark.asyncio
    async def test_condition_group(self):
        """A conditions list is combined with the logical operator"""
        outputs = await condition.execute({
            'conditions': [
                {'value': 5, 'operator': 'gt', 'compareValue': 3},
                {'value': 1, 'operator': 'eq', 'compareValue': 2},
            ],
            'logicalOperator': 'OR',
        }, _ctx())

        assert outputs['result'] is True

    @pytest.mark.asyncio
    async def test_set_variable(self):
        """The value is returned under its variable name too"""
        outputs = await set_variable.execute({'variableName': 'total', 'value': 3}, _ctx())
        assert outputs == {'name': 'total', 'value': 3, 'total': 3}

    @pytest.mark.asyncio
    async def test_data_filter(self):
        """Objects are kept when the field matches"""
        rows = [{'status': 'active', 'id': 1}, {'status': 'closed', 'id': 2}, {'status': 'active', 'id': 3}]
        outputs = await data_filter.execute({
            'data': rows, 'filterField': 'status', 'filterValue': 'active', 'filterOperation': 'eq',
        }, _ctx())

        assert [row['id'] for row in outputs['filtered']] == [1, 3]
        assert outputs['count'] == 2

    @pytest.mark.asyncio
    async def test_data_filter_non_array(self):
        """Non-array data is passed through with a zero count"""
        outputs = await data_filter.execute({'data': 'text'}, _ctx())
        assert outputs == {'filtered': 'text', 'count': 0, 'error': None}


class TestCodePlugins:
    """Test transform and code-execution"""

    @pytest.mark.asyncio
    async def test_transform_reads_variables(self):
        """Run variables are visible by name"""
        outputs = await transform.execute({'expression': 'item.value * 2'}, _ctx({'item': {'value': 4}}))
        assert outputs == {'result': 8, 'error': None}

    @pytest.mark.asyncio
    async def test_code_execution_sees_inputs(self):
        """Other node inputs are exposed as `inputs`"""
        outputs = await code_execution.execute(
            {'code': 'inputs.a + variables["x.y"]', 'a': 2}, _ctx({'x.y': 3}))
        assert outputs['result'] == 5

    @pytest.mark.asyncio
    async def test_disallowed_code(self):
        """Sandbox violations raise"""
        with pytest.raises(ExpressionError):
            await code_execution.execute({'code': '__import__("os").system("ls")'}, _ctx())


class TestWebhookPlugins:
    """Test triggers and the response node"""

    @pytest.mark.asyncio
    async def test_webhook_trigger_exposes_payload(self):
        """Body, headers, query and method come from the trigger payload"""
        ctx = _ctx(trigger_payload={'body': {'a': 1}, 'headers': {'x': 'y'}, 'method': 'PUT'})
        outputs = await webhook_trigger.execute({}, ctx)

        assert outputs == {'body': {'a': 1}, 'payload': {'a': 1}, 'headers': {'x': 'y'}, 'query': {}, 'method': 'PUT'}

    @pytest.mark.asyncio
    async def test_manual_trigger(self):
        """Manual runs expose their input values"""
        outputs = await manual_trigger.execute({}, _ctx(input_values={'n': 1}))
        assert outputs == {'payload': {'n': 1}}

    @pytest.mark.asyncio
    async def test_response_parses_json(self):
        """JSON bodies and headers given as text are decoded"""
        outputs = await response.execute({
            'statusCode': '202', 'body': '{"ok": true}', 'headers': '{"X-Run": "1"}',
        }, _ctx())

        assert outputs == {
            'statusCode': 202, 'body': {'ok': True}, 'contentType': 'application/json', 'headers': {'X-Run': '1'},
        }

    @pytest.mark.asyncio
    async def test_response_plain_text(self):
        """Non-JSON content types keep the body as text"""
        outputs = await response.execute({'body': '{"raw"}', 'contentType': 'text/plain'}, _ctx())
        assert outputs['body'] == '{"raw"}'
        assert outputs['statusCode'] == 200


class TestLoggerPlugin:
    """Test the logger node"""

    @pytest.mark.asyncio
    async def test_logs_message(self, caplog):
        """The message goes to the module logger and the run log"""
        entries = []
        ctx = _ctx(log=lambda level, message, node_id=None, data=None: entries.append((level, message, data)))

        with caplog.at_level(logging.WARNING, logger='flowforge.pieces.logger_node'):
            outputs = await logger_plugin.execute({
                'logLevel': 'warning', 'message': 'low stock', 'customData': '{"sku": "A1"}',
            }, ctx)

        assert outputs == {'logged': True, 'message': 'low stock', 'level': 'warning', 'data': {'sku': 'A1'}}
        assert entries == [('warning', 'low stock', {'sku': 'A1'})]
        assert 'low stock' in caplog.text

    @pytest.mark.asyncio
    async def test_disabled(self):
        """enabled=false skips logging"""
        outputs = await logger_plugin.execute({'enabled': 'false', 'message': 'x'}, _ctx())
        assert outputs['logged'] is False


class TestLoopDescriptor:
    """Test the for-each-loop descriptor"""

    @pytest.mark.asyncio
    async def test_execute_is_not_callable_directly(self):
        """Loop nodes are only run by the loop handler"""
        with pytest.raises(FlowEngineError):
            await for_each_loop.execute({}, _ctx())


class TestProxyPlugins:
    """Test vendor plugins backed by the remote proxy"""

    def _plugin(self, handler):
        client = ProxyClient(base_url='http://proxy/functions/v1', api_key='anon',
                             transport=httpx.MockTransport(handler))
        return create_proxy_plugin('clickup', 'ClickUp', actions={
            'create_task': [text_input('name', 'Task Name', required=True)],
            'get_task': [text_input('taskId', 'Task ID', required=True)],
        }, client=client)

    def test_dynamic_inputs_follow_action(self):
        """Inputs shown depend on the selected action"""
        plugin = self._plugin(lambda request: httpx.Response(200))

        assert [i.name for i in plugin.all_inputs({'action': 'get_task'})] == ['action', 'taskId']
        assert plugin.missing_required({'action': 'create_task'}) == ['name']

    @pytest.mark.asyncio
    async def test_invoke_success(self):
        """The remote function receives the inputs and its data is returned"""
        captured = {}

        def handler(request):
            captured['url'] = str(request.url)
            captured['auth'] = request.headers.get('Authorization')
            captured['body'] = json.loads(request.content)
            return httpx.Response(200, json={'data': {'id': 't1', 'name': 'Ship'}})

        outputs = await self._plugin(handler).execute({'action': 'get_task', 'taskId': 't1'}, _ctx())

        assert captured['url'] == 'http://proxy/functions/v1/clickup-proxy'
        assert captured['auth'] == 'Bearer anon'
        assert captured['body'] == {'action': 'get_task', 'taskId': 't1'}
        assert outputs == {'id': 't1', 'name': 'Ship', 'success': True}

    @pytest.mark.asyncio
    async def test_invoke_error_raises(self):
        """An error from the proxy fails the node"""
        plugin = self._plugin(lambda request: httpx.Response(200, json={'error': 'denied'}))
        with pytest.raises(ProxyError):
            await plugin.execute({'action': 'get_task', 'taskId': 't1'}, _ctx())

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        """HTTP failures from the proxy fail the node"""
        plugin = self._plugin(lambda request: httpx.Response(500, json={'error': 'boom'}))
        with pytest.raises(ProxyError, match='boom'):
            await plugin.execute({'action': 'get_task', 'taskId': 't1'}, _ctx())

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        """Actions outside the declared set are rejected"""
        plugin = self._plugin(lambda request: httpx.Response(200))
        with pytest.raises(ValueError):
            await plugin.execute({'action': 'delete_everything'}, _ctx())
