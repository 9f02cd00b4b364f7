"""
Pytest fixtures for flow engine tests
"""

import pytest

from flowforge.flow_engine.models import Edge, Node, NodeData, Position


class FakeClock:
    """Monotonic clock the tests advance by hand"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_node():
    """Factory: make_node('http', 'http-request', inputs={...}, parent_loop_id='loop')"""
    def factory(node_id, node_type, label=None, inputs=None, x=0.0, y=0.0, **data):
        return Node(
            id=node_id,
            type=node_type,
            data=NodeData(label=label or node_id, inputs=dict(inputs or {}), **data),
            position=Position(x=x, y=y),
        )
    return factory


@pytest.fixture
def make_edge():
    """Factory: make_edge('a', 'b', 'true')"""
    def factory(source, target, source_handle=None):
        return Edge(
            id=f"e-{source}-{target}-{source_handle or 'out'}",
            source=source,
            target=target,
            source_handle=source_handle,
        )
    return factory


@pytest.fixture
def app():
    """Flask app on an in-memory database"""
    from flowforge import create_app
    from flowforge.config import TestConfig
    from flowforge.database import db

    app = create_app(TestConfig)
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
