"""
Flow storage models - persisted graphs and run results
"""
from flowforge.database import db
from datetime import datetime
import uuid


class FlowGraphRecord(db.Model):
    """
    FlowGraphRecord - Saved node graph of one flow
    """
    __tablename__ = 'flow_graph'

    flow_id = db.Column(db.String(255), primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    nodes = db.Column(db.JSON, nullable=False, default=list)
    edges = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self):
        return {
            'flowId': self.flow_id,
            'nodes': self.nodes or [],
            'edges': self.edges or [],
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


class FlowRunRecord(db.Model):
    """
    FlowRunRecord - Result of one flow run
    """
    __tablename__ = 'flow_run'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    flow_id = db.Column(db.String(255), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    status = db.Column(db.String(20), nullable=False)  # running, completed, failed
    started_at = db.Column(db.DateTime)
    finished_at = db.Column(db.DateTime)

    variables = db.Column(db.JSON)
    node_results = db.Column(db.JSON)
    final_output = db.Column(db.JSON)
    error = db.Column(db.Text)

    @classmethod
    def from_result(cls, flow_id, result):
        """Build a record from a FlowRunResult"""
        data = result.to_dict()
        return cls(
            id=result.run_id,
            flow_id=flow_id,
            status=data['status'],
            started_at=result.started_at,
            finished_at=result.finished_at,
            variables=data['variables'],
            node_results=data['nodeResults'],
            final_output=data['finalOutput'],
            error=result.error,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'flowId': self.flow_id,
            'status': self.status,
            'startedAt': self.started_at.isoformat() if self.started_at else None,
            'finishedAt': self.finished_at.isoformat() if self.finished_at else None,
            'variables': self.variables or {},
            'nodeResults': self.node_results or {},
            'finalOutput': self.final_output,
            'error': self.error,
        }
