"""
Tests for AliasRegistry
"""

from flowforge.flow_engine.alias_registry import AliasRegistry, sanitize_label


class TestSanitizeLabel:
    """Test label to alias conversion"""

    def test_spaces_and_dots_become_underscores(self):
        """Whitespace and dots are replaced"""
        assert sanitize_label('HTTP Request v1.2', 'http-request') == 'HTTP_Request_v1_2'

    def test_symbols_dropped(self):
        """Characters other than word characters and dashes are removed"""
        assert sanitize_label('Get $price!', 'x') == 'Get_price'

    def test_empty_label_falls_back_to_type(self):
        """An empty label uses the node type"""
        assert sanitize_label('  ', 'http-request') == 'http-request'


class TestAliasRegistry:
    """Test id <-> alias translation"""

    def test_duplicate_labels_get_suffixes(self, make_node):
        """Second and third nodes with the same label get _2 and _3"""
        registry = AliasRegistry([
            make_node('http-1712345678901', 'http-request', label='Fetch'),
            make_node('http-1712345678902', 'http-request', label='Fetch'),
            make_node('http-1712345678903', 'http-request', label='Fetch'),
        ])

        assert registry.get_display_alias('http-1712345678901') == 'Fetch'
        assert registry.get_display_alias('http-1712345678902') == 'Fetch_2'
        assert registry.get_display_alias('http-1712345678903') == 'Fetch_3'
        assert registry.get_node_id('Fetch_2') == 'http-1712345678902'

    def test_unknown_id_displays_as_itself(self):
        """Unregistered ids are returned unchanged"""
        assert AliasRegistry().get_display_alias('node-1') == 'node-1'

    def test_path_translation_first_segment_only(self, make_node):
        """Only the head segment is rewritten in either direction"""
        registry = AliasRegistry([make_node('http-1712345678901', 'http-request', label='HTTP Request')])

        display = registry.node_id_to_alias_path('http-1712345678901.data.items')
        assert display == 'HTTP_Request.data.items'
        assert registry.alias_to_node_id_path(display) == 'http-1712345678901.data.items'

    def test_env_and_dotless_paths_unchanged(self, make_node):
        """env paths and bare names are never translated"""
        registry = AliasRegistry([make_node('env-1712345678901', 'x', label='env')])

        assert registry.alias_to_node_id_path('env.BASE') == 'env.BASE'
        assert registry.node_id_to_alias_path('item') == 'item'

    def test_template_round_trip(self, make_node):
        """Storage templates render with aliases and convert back"""
        registry = AliasRegistry([make_node('http-1712345678901', 'http-request', label='Fetch')])
        stored = 'Count: {{http-1712345678901.data.length}} at {{env.BASE}}'

        display = registry.to_display_template(stored)

        assert display == 'Count: {{Fetch.data.length}} at {{env.BASE}}'
        assert registry.to_storage_template(display) == stored

    def test_node_id_format(self, make_node):
        """Generated ids, UUIDs and registered ids are recognised"""
        registry = AliasRegistry([make_node('start', 'manual-trigger')])

        assert registry.is_node_id_format('http-request-1712345678901')
        assert registry.is_node_id_format('0f8fad5b-d9cb-469f-a165-70867728950e')
        assert registry.is_node_id_format('start')
        assert not registry.is_node_id_format('Fetch')

    def test_rebuild_replaces_aliases(self, make_node):
        """Rebuilding drops aliases of removed nodes"""
        registry = AliasRegistry([make_node('a-1712345678901', 'x', label='A')])
        registry.rebuild_from_nodes([make_node('b-1712345678901', 'x', label='B')])

        assert registry.aliases() == {'b-1712345678901': 'B'}
        assert registry.get_node_id('A') is None

    def test_label_matching_another_node_id_is_suffixed(self, make_node):
        """A label equal to another node's id gets a suffix so paths round-trip"""
        registry = AliasRegistry([
            make_node('a', 'echo', label='b'),
            make_node('b', 'echo'),
        ])

        assert registry.get_display_alias('a') == 'b_2'
        assert registry.get_display_alias('b') == 'b'

        for path in ('a.field', 'b.field'):
            assert registry.alias_to_node_id_path(registry.node_id_to_alias_path(path)) == path
