"""
Flows API - Routes for editing and running flow graphs

Endpoints:
- GET /api/v1/flows/:id/graph - Get the saved graph
- PUT /api/v1/flows/:id/graph - Replace the saved graph
- POST /api/v1/flows/:id/run - Run the saved graph
- POST /api/v1/flows/:id/validate - Report unresolved {{...}} references
- POST /api/v1/flows/:id/layout - Auto-arrange and save the graph
"""

from flask import Blueprint, request, jsonify
import asyncio
import logging

from flowforge.database import db
from flowforge.flow_engine.errors import FlowEngineError
from flowforge.flow_engine.executor import FlowExecutor
from flowforge.flow_engine.graph_store import FlowGraphStore
from flowforge.flow_engine.models import graph_from_dict
from flowforge.services.flow_preflight import find_unresolved_references
from flowforge.services.flow_storage import SqlAlchemyFlowStorage

logger = logging.getLogger(__name__)

flows_bp = Blueprint('flows', __name__, url_prefix='/api/v1/flows')


def _load_store(flow_id: str) -> FlowGraphStore:
    store = FlowGraphStore(flow_id, storage=SqlAlchemyFlowStorage())
    asyncio.run(store.load())
    return store


@flows_bp.route('/<flow_id>/graph', methods=['GET'])
def get_graph(flow_id):
    """Get the saved graph of a flow (empty for an unknown flow)."""
    try:
        store = _load_store(flow_id)
        return jsonify({'flowId': flow_id, **store.to_dict()}), 200

    except Exception as e:
        logger.error(f"Error getting graph for flow {flow_id}: {e}")
        return jsonify({'error': str(e)}), 500


@flows_bp.route('/<flow_id>/graph', methods=['PUT'])
def save_graph(flow_id):
    """
    Replace the graph of a flow.

    Body:
        {
            "nodes": [...],
            "edges": [...]
        }
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get('nodes'), list):
        return jsonify({'error': 'nodes must be a list'}), 400

    try:
        nodes, edges = graph_from_dict(data)
        store = FlowGraphStore(flow_id, storage=SqlAlchemyFlowStorage(), nodes=nodes, edges=edges)
        asyncio.run(store.save())
        return jsonify({'flowId': flow_id, **store.to_dict()}), 200

    except FlowEngineError as e:
        return jsonify({'error': str(e)}), 400
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({'error': f"Invalid graph: {e}"}), 400
    except Exception as e:
        logger.error(f"Error saving graph for flow {flow_id}: {e}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@flows_bp.route('/<flow_id>/run', methods=['POST'])
def run_flow(flow_id):
    """
    Run the saved graph.

    Body:
        {
            "env": {...},      // exposed as {{env.NAME}}
            "input": {...},    // exposed as {{input.name}}
            "payload": {...}   // trigger payload (webhook body)
        }
    """
    data = request.get_json(silent=True) or {}

    try:
        store = _load_store(flow_id)
        if not store.nodes:
            return jsonify({'error': 'Flow has no nodes'}), 404

        result = asyncio.run(FlowExecutor().execute(
            store.nodes,
            store.edges,
            flow_id=flow_id,
            env_vars=data.get('env') or {},
            input_values=data.get('input') or {},
            trigger_payload=data.get('payload') or {},
        ))

        SqlAlchemyFlowStorage().save_run(flow_id, result)

        logger.info(f"Flow {flow_id} run {result.run_id} finished: {result.status.value}")
        return jsonify(result.to_dict()), 200

    except Exception as e:
        logger.error(f"Error running flow {flow_id}: {e}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@flows_bp.route('/<flow_id>/validate', methods=['POST'])
def validate_flow(flow_id):
    """
    Report references a run could not resolve.

    Body:
        {
            "env": {...},
            "input": {...}
        }

    Returns:
        {"valid": bool, "unresolved": {"nodeId": ["path", ...]}}
    """
    data = request.get_json(silent=True) or {}

    try:
        store = _load_store(flow_id)
        unresolved = find_unresolved_references(store.nodes, data.get('env') or {}, data.get('input') or {})
        return jsonify({'valid': not unresolved, 'unresolved': unresolved}), 200

    except Exception as e:
        logger.error(f"Error validating flow {flow_id}: {e}")
        return jsonify({'error': str(e)}), 500


@flows_bp.route('/<flow_id>/layout', methods=['POST'])
def layout_flow(flow_id):
    """
    Auto-arrange the saved graph.

    Body:
        {"direction": "TB" | "BT" | "LR" | "RL"}
    """
    data = request.get_json(silent=True) or {}

    try:
        store = _load_store(flow_id)
        store.apply_layout(data.get('direction') or 'TB')
        asyncio.run(store.save())
        return jsonify({'flowId': flow_id, **store.to_dict()}), 200

    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error laying out flow {flow_id}: {e}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500
