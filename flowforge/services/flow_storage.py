"""
Flow storage adapters used by FlowGraphStore.save()/load()
"""
from abc import ABC, abstractmethod
from typing import Any, Dict
import copy
import logging

from flowforge.database import db
from flowforge.models.flow import FlowGraphRecord, FlowRunRecord

logger = logging.getLogger(__name__)


def _empty_graph() -> Dict[str, Any]:
    return {'nodes': [], 'edges': []}


class FlowStorage(ABC):
    """
    Persistence boundary for flow graphs.
    Graphs are plain dicts: {"nodes": [...], "edges": [...]}
    """

    @abstractmethod
    async def save(self, flow_id: str, graph: Dict[str, Any]) -> None:
        """Persist the graph of a flow, replacing any previous one"""
        pass

    @abstractmethod
    async def load(self, flow_id: str) -> Dict[str, Any]:
        """
        Load the graph of a flow.

        Returns:
            The saved graph, or an empty graph for an unknown flow
        """
        pass


class InMemoryFlowStorage(FlowStorage):
    def __init__(self):
        self._graphs: Dict[str, Dict[str, Any]] = {}

    async def save(self, flow_id: str, graph: Dict[str, Any]) -> None:
        self._graphs[flow_id] = copy.deepcopy(graph)

    async def load(self, flow_id: str) -> Dict[str, Any]:
        graph = self._graphs.get(flow_id)
        return copy.deepcopy(graph) if graph is not None else _empty_graph()

    def __contains__(self, flow_id: str) -> bool:
        return flow_id in self._graphs


class SqlAlchemyFlowStorage(FlowStorage):
    """
    Stores graphs in the flow_graph table. Must run inside an app context.
    """

    async def save(self, flow_id: str, graph: Dict[str, Any]) -> None:
        try:
            record = db.session.get(FlowGraphRecord, flow_id)
            if record is None:
                record = FlowGraphRecord(flow_id=flow_id)
                db.session.add(record)
            record.nodes = graph.get('nodes') or []
            record.edges = graph.get('edges') or []
            db.session.commit()
            logger.info(f"Saved flow graph {flow_id}: {len(record.nodes)} nodes, {len(record.edges)} edges")
        except Exception as e:
            logger.error(f"Error saving flow graph {flow_id}: {e}")
            db.session.rollback()
            raise

    async def load(self, flow_id: str) -> Dict[str, Any]:
        record = db.session.get(FlowGraphRecord, flow_id)
        if record is None:
            return _empty_graph()
        return {'nodes': copy.deepcopy(record.nodes or []), 'edges': copy.deepcopy(record.edges or [])}

    def save_run(self, flow_id: str, result) -> FlowRunRecord:
        """Persist a FlowRunResult"""
        try:
            record = FlowRunRecord.from_result(flow_id, result)
            db.session.add(record)
            db.session.commit()
            return record
        except Exception as e:
            logger.error(f"Error saving run for flow {flow_id}: {e}")
            db.session.rollback()
            raise
