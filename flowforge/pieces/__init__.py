"""
Pieces Package - Registers all built-in node plugins

Importing this package fills `registry` with every built-in plugin.
"""
import logging

from flowforge.pieces.base import NodePluginRegistry

logger = logging.getLogger(__name__)


def register_builtin_plugins(target: NodePluginRegistry) -> NodePluginRegistry:
    """
    Register every built-in plugin on `target`.

    Returns:
        The same registry
    """
    from flowforge.pieces import code, http_request, logger_node, logic, loop, proxy, webhook

    for module in (webhook, http_request, logic, code, logger_node, loop, proxy):
        for plugin in module.PLUGINS:
            target.register(plugin)
    logger.debug(f"Registered {len(target)} built-in plugins")
    return target


registry = register_builtin_plugins(NodePluginRegistry())

__all__ = [
    'registry',
    'register_builtin_plugins',
]
