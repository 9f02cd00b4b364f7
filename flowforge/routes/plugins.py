"""
Plugins API - Routes for node plugin metadata

Endpoints:
- GET /api/v1/plugins - List all node plugins
- GET /api/v1/plugins/:type - Get plugin details
- POST /api/v1/plugins/:type/inputs - Inputs for the posted current values
"""

from flask import Blueprint, request, jsonify
import logging

from flowforge.pieces import registry

logger = logging.getLogger(__name__)

plugins_bp = Blueprint('plugins', __name__, url_prefix='/api/v1/plugins')


@plugins_bp.route('', methods=['GET'])
def list_plugins():
    """
    List all node plugins.

    Query params:
        category: Filter by category (optional)
    """
    try:
        category = request.args.get('category')

        plugins_data = []
        for plugin_type, plugin in sorted(registry.get_all().items()):
            if category and plugin.category.value != category:
                continue
            plugins_data.append(_serialize_plugin_summary(plugin))

        return jsonify({
            'plugins': plugins_data,
            'count': len(plugins_data)
        }), 200

    except Exception as e:
        logger.error(f"Error listing plugins: {e}")
        return jsonify({'error': str(e)}), 500


@plugins_bp.route('/<plugin_type>', methods=['GET'])
def get_plugin(plugin_type):
    """Get detailed information about a plugin."""
    plugin = registry.get_plugin(plugin_type)
    if not plugin:
        return jsonify({'error': 'Plugin not found'}), 404

    return jsonify(plugin.to_dict()), 200


@plugins_bp.route('/<plugin_type>/inputs', methods=['POST'])
def get_plugin_inputs(plugin_type):
    """
    Static plus dynamic inputs for a node's current values.

    Body:
        {"inputs": {"action": "create_task", ...}}
    """
    plugin = registry.get_plugin(plugin_type)
    if not plugin:
        return jsonify({'error': 'Plugin not found'}), 404

    data = request.get_json(silent=True) or {}
    current = data.get('inputs') or {}

    try:
        inputs = plugin.all_inputs(current)
        return jsonify({
            'inputs': [i.to_dict() for i in inputs],
            'visible': [i.name for i in inputs if i.is_visible(current)],
        }), 200

    except Exception as e:
        logger.error(f"Error resolving inputs for {plugin_type}: {e}")
        return jsonify({'error': str(e)}), 500


def _serialize_plugin_summary(plugin) -> dict:
    """Serialize plugin summary (for list view)."""
    return {
        'type': plugin.type,
        'name': plugin.name,
        'description': plugin.description,
        'category': plugin.category.value,
        'icon': plugin.icon,
        'input_count': len(plugin.inputs),
        'output_count': len(plugin.outputs),
        'has_dynamic_inputs': plugin.dynamic_inputs is not None,
    }
