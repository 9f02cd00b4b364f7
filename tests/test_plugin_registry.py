"""
Tests for NodePluginRegistry and plugin descriptors
"""

import pytest

from flowforge.flow_engine.errors import PluginRegistrationError
from flowforge.pieces import register_builtin_plugins, registry
from flowforge.pieces.base import (
    NodePlugin,
    NodePluginRegistry,
    PluginCategory,
    select_input,
    options_from,
    show_when,
    text_input,
)


async def _noop(inputs, ctx):
    return {}


def _plugin(plugin_type='echo', **kwargs):
    kwargs.setdefault('description', 'Echo inputs')
    return NodePlugin(type=plugin_type, name='Echo', execute=_noop, **kwargs)


class TestNodePluginRegistry:
    """Test registration and lookup"""

    def test_register_and_get(self):
        """A registered plugin is returned by type"""
        plugins = NodePluginRegistry()
        plugin = _plugin()
        plugins.register(plugin)

        assert plugins.get_plugin('echo') is plugin
        assert 'echo' in plugins
        assert len(plugins) == 1

    def test_unknown_type_returns_none(self):
        """Lookups of unregistered types return None"""
        assert NodePluginRegistry().get_plugin('missing') is None

    def test_duplicate_registration_rejected(self):
        """Registering the same type twice raises unless replacing"""
        plugins = NodePluginRegistry()
        plugins.register(_plugin())

        with pytest.raises(PluginRegistrationError):
            plugins.register(_plugin())

        replacement = _plugin(description='v2')
        plugins.register(replacement, replace=True)
        assert plugins.get_plugin('echo') is replacement

    def test_get_all_is_a_copy(self):
        """Mutating the returned mapping does not affect the registry"""
        plugins = NodePluginRegistry()
        plugins.register(_plugin())
        plugins.get_all().clear()

        assert len(plugins) == 1

    def test_builtin_plugins_registered(self):
        """The package registry carries every built-in node type"""
        expected = {
            'webhook-trigger', 'manual-trigger', 'http-request', 'condition', 'set-variable',
            'data-filter', 'transform', 'code-execution', 'response', 'logger', 'for-each-loop',
        }
        assert expected <= set(registry.get_all())

    def test_register_builtins_on_fresh_registry(self):
        """Built-ins can be registered on an isolated registry"""
        plugins = register_builtin_plugins(NodePluginRegistry())
        assert plugins.get_plugin('for-each-loop').category == PluginCategory.LOOP


class TestNodePlugin:
    """Test descriptor helpers"""

    def test_apply_defaults(self):
        """Declared defaults fill unset inputs only"""
        plugin = _plugin(inputs=(
            select_input('method', 'Method', options_from(['GET', 'POST']), default='GET'),
            text_input('url', 'URL', required=True),
        ))

        assert plugin.apply_defaults({'url': 'x'}) == {'url': 'x', 'method': 'GET'}
        assert plugin.apply_defaults({'method': 'POST'})['method'] == 'POST'

    def test_missing_required_respects_visibility(self):
        """Hidden required inputs are not reported"""
        plugin = _plugin(inputs=(
            text_input('url', 'URL', required=True),
            text_input('body', 'Body', required=True, show_when=show_when('method', 'POST')),
        ))

        assert plugin.missing_required({'url': ' ', 'method': 'GET'}) == ['url']
        assert plugin.missing_required({'url': 'x', 'method': 'POST'}) == ['body']

    def test_dynamic_inputs(self):
        """Dynamic inputs depend on current values"""
        def by_action(current):
            return [text_input('taskId', 'Task')] if current.get('action') == 'get' else []

        plugin = _plugin(inputs=(text_input('action', 'Action'),), dynamic_inputs=by_action)

        assert [i.name for i in plugin.all_inputs({'action': 'get'})] == ['action', 'taskId']
        assert [i.name for i in plugin.all_inputs({})] == ['action']
        assert plugin.to_dict({'action': 'get'})['hasDynamicInputs'] is True
