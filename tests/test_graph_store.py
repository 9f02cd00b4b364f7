"""
Tests for FlowGraphStore
"""

import pytest

from flowforge.flow_engine.errors import GraphError
from flowforge.flow_engine.graph_store import FlowGraphStore
from flowforge.flow_engine.history import HistoryStore
from flowforge.flow_engine.models import ErrorBehavior
from flowforge.services.flow_storage import InMemoryFlowStorage


@pytest.fixture
def history(clock):
    return HistoryStore(debounce_ms=0, settle_ms=0, clock=clock)


class TestNodeEditing:
    """Test node mutations"""

    def test_add_node_generates_unique_ids(self):
        """Generated ids follow "<type>-<ms>" and never collide"""
        store = FlowGraphStore('flow-1')
        first = store.add_node('http-request', label='Fetch')
        second = store.add_node('http-request', label='Fetch')

        assert first.id.startswith('http-request-')
        assert first.id != second.id
        assert store.aliases.get_display_alias(second.id) == 'Fetch_2'

    def test_duplicate_explicit_id_rejected(self):
        """An explicit id must be unused"""
        store = FlowGraphStore('flow-1')
        store.add_node('echo', node_id='a')
        with pytest.raises(GraphError):
            store.add_node('echo', node_id='a')

    def test_update_inputs_merges(self):
        """Input updates are merged into existing inputs"""
        store = FlowGraphStore('flow-1')
        node = store.add_node('http-request', inputs={'url': 'http://x', 'method': 'GET'})

        store.update_node_inputs(node.id, {'method': 'POST'})

        assert store.get_node(node.id).data.inputs == {'url': 'http://x', 'method': 'POST'}

    def test_label_change_rebuilds_aliases(self):
        """Renaming a node updates its alias"""
        store = FlowGraphStore('flow-1')
        node = store.add_node('echo', label='Old', node_id='echo-1')

        store.set_node_label(node.id, 'New Name')

        assert store.aliases.get_display_alias('echo-1') == 'New_Name'

    def test_unknown_data_field_rejected(self):
        """update_node_data only accepts NodeData fields"""
        store = FlowGraphStore('flow-1')
        node = store.add_node('echo')
        with pytest.raises(GraphError):
            store.update_node_data(node.id, colour='red')

    def test_toggle_disabled_and_error_behavior(self):
        """Flags are flipped through the store"""
        store = FlowGraphStore('flow-1')
        node = store.add_node('echo')

        store.toggle_node_disabled(node.id)
        store.set_error_behavior(node.id, 'continue')

        assert node.data.disabled is True
        assert node.data.error_behavior == ErrorBehavior.CONTINUE

    def test_remove_node_cascades(self):
        """Removing a node drops its edges and loop-body references"""
        store = FlowGraphStore('flow-1')
        loop = store.add_node('for-each-loop', node_id='loop')
        body = store.add_node('transform', node_id='body', parent_loop_id='loop')
        other = store.add_node('echo', node_id='other')
        store.connect(loop.id, other.id)

        store.remove_node('loop')

        assert store.edges == []
        assert body.data.parent_loop_id is None
        assert store.get_child_nodes('loop') == []

    def test_missing_node_raises(self):
        """Operations on unknown nodes fail"""
        with pytest.raises(GraphError):
            FlowGraphStore('flow-1').move_node('ghost', 1, 2)


class TestEdges:
    """Test connections"""

    def test_connect_validates(self):
        """Self-loops, duplicates and unknown endpoints are rejected"""
        store = FlowGraphStore('flow-1')
        store.add_node('echo', node_id='a')
        store.add_node('echo', node_id='b')
        edge = store.connect('a', 'b', source_handle='true')

        with pytest.raises(GraphError):
            store.connect('a', 'a')
        with pytest.raises(GraphError):
            store.connect('a', 'b', source_handle='true')
        with pytest.raises(GraphError):
            store.connect('a', 'ghost')

        assert store.edges == [edge]

    def test_disconnect(self):
        """Edges are removed by id"""
        store = FlowGraphStore('flow-1')
        store.add_node('echo', node_id='a')
        store.add_node('echo', node_id='b')
        edge = store.connect('a', 'b')

        store.disconnect(edge.id)

        assert store.edges == []
        with pytest.raises(GraphError):
            store.disconnect(edge.id)

    def test_replace_graph_drops_dangling_edges(self, make_node, make_edge):
        """Edges to unknown nodes are dropped on replace"""
        store = FlowGraphStore('flow-1')
        store.replace_graph([make_node('a', 'echo')], [make_edge('a', 'ghost')])

        assert [n.id for n in store.nodes] == ['a']
        assert store.edges == []


class TestObserversAndHistory:
    """Test subscriptions and undo/redo"""

    def test_subscribe_and_unsubscribe(self):
        """Listeners receive every change until unsubscribed"""
        store = FlowGraphStore('flow-1')
        calls = []
        unsubscribe = store.subscribe(lambda nodes, edges: calls.append(len(nodes)))

        store.add_node('echo')
        unsubscribe()
        store.add_node('echo')

        assert calls == [1]

    def test_undo_redo_through_store(self, history):
        """Undo restores the previous graph without recording it again"""
        store = FlowGraphStore('flow-1', history=history)
        store.add_node('echo', node_id='a')
        store.add_node('echo', node_id='b')
        assert history.size == 2

        assert store.undo() is True
        assert [n.id for n in store.nodes] == ['a']
        assert history.size == 2

        assert store.redo() is True
        assert [n.id for n in store.nodes] == ['a', 'b']
        assert store.redo() is False

    def test_edit_after_undo_discards_redo(self, history):
        """A new edit after undo becomes the head of history"""
        store = FlowGraphStore('flow-1', history=history)
        store.add_node('echo', node_id='a')
        store.add_node('echo', node_id='b')
        store.undo()

        store.add_node('echo', node_id='c')

        assert not history.can_redo
        assert [n.id for n in store.nodes] == ['a', 'c']

    def test_undo_without_history(self):
        """Without a history store undo does nothing"""
        assert FlowGraphStore('flow-1').undo() is False


class TestPersistence:
    """Test save/load through the storage adapter"""

    @pytest.mark.asyncio
    async def test_save_and_load(self, history):
        """A saved graph loads into a fresh store and resets its history"""
        storage = InMemoryFlowStorage()
        store = FlowGraphStore('flow-1', storage=storage)
        store.add_node('http-request', node_id='http', label='Fetch', inputs={'url': '{{env.BASE}}'})
        store.add_node('echo', node_id='echo')
        store.connect('http', 'echo', label='next')
        await store.save()

        loaded = FlowGraphStore('flow-1', storage=storage, history=history)
        await loaded.load()

        assert loaded.to_dict() == store.to_dict()
        assert loaded.aliases.get_node_id('Fetch') == 'http'
        assert history.size == 1
        assert not history.can_undo

    @pytest.mark.asyncio
    async def test_load_unknown_flow_is_empty(self):
        """Loading a flow that was never saved yields an empty graph"""
        store = FlowGraphStore('missing', storage=InMemoryFlowStorage())
        await store.load()
        assert store.nodes == []

    @pytest.mark.asyncio
    async def test_save_without_storage(self):
        """A store without storage cannot persist"""
        with pytest.raises(GraphError):
            await FlowGraphStore('flow-1').save()

    def test_apply_layout_positions_nodes(self):
        """Layout writes new positions and handle sides"""
        store = FlowGraphStore('flow-1')
        store.add_node('echo', node_id='a')
        store.add_node('echo', node_id='b')
        store.connect('a', 'b')

        nodes = store.apply_layout('LR')

        by_id = {node.id: node for node in nodes}
        assert by_id['b'].position.x > by_id['a'].position.x
        assert by_id['a'].source_position == 'right'
