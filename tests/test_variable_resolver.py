"""
Tests for TemplateResolver
"""

from flowforge.flow_engine.variable_resolver import (
    MISSING,
    TemplateResolver,
    iter_references,
    resolve,
    resolve_structure,
    validate,
)


class TestTemplateResolver:
    """Test {{...}} resolution"""

    def test_env_reference_in_text(self):
        """Env values are substituted inside surrounding text"""
        result = resolve('{{env.BASE}}/x', env_values={'BASE': 'http://api'})
        assert result == 'http://api/x'

    def test_node_output_reference(self):
        """Dotted node output keys resolve, including deeper paths"""
        context = {'http-1.data': {'items': [{'value': 1}, {'value': 2}]}}

        assert resolve('{{http-1.data.items[1].value}}', context) == '2'
        assert resolve('{{ http-1.data.items.length }}', context) == '2'

    def test_unresolved_reference_left_literal(self):
        """Missing references stay in the text unchanged"""
        assert resolve('Hello {{missing.path}}!', {}) == 'Hello {{missing.path}}!'

    def test_text_without_references_unchanged(self):
        """Templates with no references come back as given"""
        text = 'Plain text with {single} braces and } stray'
        assert resolve(text, {'single': 'x'}) == text

    def test_nested_object_path(self):
        """Dotted paths walk into nested objects"""
        assert resolve('{{a.b}}', {'a': {'b': 'x'}}) == 'x'
        assert resolve('{{context.a.b}}!', {'a': {'b': 'x'}}) == 'x!'

    def test_stringify_values(self):
        """Objects render as JSON, None as empty, booleans lowercase"""
        context = {'a.obj': {'k': 1}, 'a.none': None, 'a.flag': True}

        assert resolve('{{a.obj}}', context) == '{"k": 1}'
        assert resolve('[{{a.none}}]', context) == '[]'
        assert resolve('{{a.flag}}', context) == 'true'

    def test_context_wins_over_input_and_env(self):
        """Bare keys resolve context first, then input, then env"""
        resolver = TemplateResolver({'name': 'ctx'}, {'name': 'input'}, {'name': 'env'})

        assert resolver.resolve('{{name}}') == 'ctx'
        assert resolver.resolve('{{input.name}}') == 'input'
        assert resolver.resolve('{{env.name}}') == 'env'

    def test_env_lookup_is_case_insensitive(self):
        """env.base finds BASE when no exact key exists"""
        assert resolve('{{env.base}}', env_values={'BASE': 'http://api'}) == 'http://api'

    def test_invalid_array_index_is_missing(self):
        """Out-of-range indexes do not resolve"""
        resolver = TemplateResolver({'n.items': [1, 2]})
        assert resolver.lookup('n.items[5]') is MISSING

    def test_empty_path_is_missing(self):
        """A malformed path never resolves"""
        assert TemplateResolver({'a': 1}).lookup('a..b') is MISSING


class TestResolveStructure:
    """Test typed resolution of nested inputs"""

    def test_single_reference_keeps_type(self):
        """A whole-string reference returns the value itself"""
        items = [{'value': 1}]
        result = resolve_structure({'items': '{{src.items}}', 'count': '{{src.count}}'},
                                   {'src.items': items, 'src.count': 3})

        assert result == {'items': items, 'count': 3}
        assert isinstance(result['count'], int)

    def test_nested_lists_and_text(self):
        """Mixed text is rendered, lists are walked"""
        result = resolve_structure(['id={{a.id}}', {'inner': '{{a.id}}'}, 5], {'a.id': 7})
        assert result == ['id=7', {'inner': 7}, 5]

    def test_unresolved_single_reference_kept(self):
        """An unresolved whole-string reference stays as written"""
        assert resolve_structure('{{nope.value}}', {}) == '{{nope.value}}'


class TestValidation:
    """Test reference reporting"""

    def test_reports_unresolved(self):
        """Unresolved references are listed with their classification"""
        validation = validate({'url': '{{env.BASE}}/{{http-1.data.id}}'}, {}, env_values={'BASE': 'x'})

        assert not validation.is_valid
        assert [ref.path for ref in validation.unresolved] == ['http-1.data.id']
        assert [ref.type for ref in validation.references] == ['env', 'node']

    def test_iter_references(self):
        """References are found in every string leaf"""
        found = list(iter_references({'a': ['{{x.y}}', {'b': 'z {{ q }}'}]}))
        assert found == [('{{x.y}}', 'x.y'), ('{{ q }}', 'q')]

    def test_available_variables(self):
        """Namespaces and bare keys are offered"""
        names = TemplateResolver({'n.out': 1}).get_available_variables()
        assert 'n.out' in names
        assert {'context', 'input', 'env'} <= set(names)
