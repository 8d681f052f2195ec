"""
Unit tests for query-string filter compilation.

Covers parameter schema handling, per-type value transforms, comma-separated
alternatives, the match-all sentinel, the ``logical`` operator and rendering
of compiled expressions as query documents and in-memory predicates.
"""

import math

import pytest

from routekit.pipeline.filters import (
    EMPTY_FILTER,
    Equality,
    LikePattern,
    LogicalGroup,
    LogicalOperator,
    Or,
    ParamSchema,
    ParamType,
    compile_filter,
    parse_bool,
    parse_float,
    parse_int,
    parse_logical_operator,
    stringify,
)
from routekit.utils.exceptions import InvalidFilterError

SCHEMA = {
    'name': 'like',
    'color': 'string',
    'size': 'integer',
    'active': 'bool',
    'price': 'float',
}


class TestParamSchema:
    """Declared parameter types."""

    def test_tags_resolve_to_param_types(self):
        schema = ParamSchema({'a': 'bool', 'b': 'boolean', 'c': 'regex', 'd': 'INTEGER'})

        assert schema['a'] is ParamType.BOOL
        assert schema['b'] is ParamType.BOOL
        assert schema['c'] is ParamType.LIKE
        assert schema['d'] is ParamType.INTEGER

    def test_unknown_tag_is_kept_as_none(self):
        schema = ParamSchema({'when': 'date', 'size': 'integer'})

        assert 'when' in schema
        assert schema['when'] is None
        assert len(schema) == 2

    def test_schema_is_immutable(self):
        schema = ParamSchema(SCHEMA)

        with pytest.raises(TypeError):
            schema['name'] = 'string'


class TestValueParsing:
    """Value transforms applied per declared type."""

    @pytest.mark.parametrize('token, expected', [
        ('5', 5),
        ('-12', -12),
        ('42abc', 42),
        (' 7', 7),
    ])
    def test_parse_int_reads_leading_integer(self, token, expected):
        assert parse_int(token) == expected

    def test_parse_int_without_digits_is_nan(self):
        assert math.isnan(parse_int('abc'))

    def test_parse_float(self):
        assert parse_float('2.5') == 2.5
        assert parse_float('1e3') == 1000.0
        assert math.isnan(parse_float('x'))

    @pytest.mark.parametrize('token, expected', [
        ('true', True),
        ('yes', True),
        ('1', True),
        ('false', False),
        ('TRUE', False),
        ('no', False),
    ])
    def test_parse_bool(self, token, expected):
        assert parse_bool(token) is expected

    def test_stringify_joins_repeated_values(self):
        assert stringify(['red', 'blue']) == 'red,blue'
        assert stringify(True) == 'true'
        assert stringify(None) == ''
        assert stringify(5) == '5'

    def test_like_pattern_escapes_metacharacters(self):
        pattern = LikePattern.from_token('gear (large)')

        assert pattern.regex.search('GEAR (LARGE) model')
        assert not pattern.regex.search('gear large')
        assert pattern.to_query() == {'$regex': pattern.pattern, '$options': 'i'}


class TestCompileFilter:
    """Compilation of raw query maps."""

    def test_single_integer_value(self):
        assert compile_filter(SCHEMA, {'size': '5'}) == Equality('size', 5)

    def test_comma_separated_values_become_or(self):
        expression = compile_filter(SCHEMA, {'size': '5,6'})

        assert expression == Or((Equality('size', 5), Equality('size', 6)))

    def test_repeated_query_values_are_joined(self):
        expression = compile_filter(SCHEMA, {'color': ['red', 'blue']})

        assert expression == Or((Equality('color', 'red'), Equality('color', 'blue')))

    @pytest.mark.parametrize('field', sorted(SCHEMA))
    def test_match_all_omits_field(self, field):
        assert compile_filter(SCHEMA, {field: '*'}) is EMPTY_FILTER

    def test_custom_match_all_sentinel(self):
        assert compile_filter(SCHEMA, {'color': 'any'}, match_all='any') is EMPTY_FILTER
        assert compile_filter(SCHEMA, {'color': '*'}, match_all='any') == Equality('color', '*')

    def test_undeclared_keys_never_appear(self):
        expression = compile_filter(SCHEMA, {'color': 'red', 'owner': 'me', 'limit': '10'})

        assert expression == Equality('color', 'red')
        assert 'owner' not in expression.to_query()

    def test_unknown_type_is_ignored(self):
        assert compile_filter({'when': 'date'}, {'when': '2020-01-01'}) is EMPTY_FILTER

    def test_bool_values(self):
        assert compile_filter(SCHEMA, {'active': 'yes'}) == Equality('active', True)
        assert compile_filter(SCHEMA, {'active': 'off'}) == Equality('active', False)

    def test_like_values(self):
        expression = compile_filter(SCHEMA, {'name': 'gear'})

        assert expression == Equality('name', LikePattern.from_token('gear'))
        assert expression.to_query() == {'name': {'$regex': 'gear', '$options': 'i'}}

    def test_empty_array_literal(self):
        expression = compile_filter({'tags': 'string'}, {'tags': '[]'})

        assert expression == Equality('tags', ())
        assert expression.to_query() == {'tags': []}
        assert expression.matches({'tags': []})
        assert not expression.matches({'tags': ['a']})

    def test_several_parameters_default_to_and(self):
        expression = compile_filter(SCHEMA, {'color': 'red', 'active': 'true'})

        assert isinstance(expression, LogicalGroup)
        assert expression.operator is LogicalOperator.AND
        assert expression.to_query() == {'$and': [{'color': 'red'}, {'active': True}]}

    @pytest.mark.parametrize('raw, operator', [
        ('or', LogicalOperator.OR),
        ('$nor', LogicalOperator.NOR),
        ('@AND', LogicalOperator.AND),
        (' Or ', LogicalOperator.OR),
    ])
    def test_logical_operator_spellings(self, raw, operator):
        expression = compile_filter(SCHEMA, {'color': 'red', 'size': '3', 'logical': raw})

        assert expression.operator is operator

    def test_invalid_logical_operator_is_rejected(self):
        with pytest.raises(InvalidFilterError) as exc_info:
            compile_filter(SCHEMA, {'color': 'red', 'logical': 'xor'})

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_type == 'INVALID_FILTER'

    def test_invalid_logical_operator_falls_back_when_lenient(self):
        assert parse_logical_operator('xor', strict=False) is LogicalOperator.AND

    def test_empty_query_compiles_to_empty_filter(self):
        assert compile_filter(SCHEMA, {}) is EMPTY_FILTER
        assert not EMPTY_FILTER
        assert EMPTY_FILTER.to_query() == {}


class TestExpressionMatching:
    """In-memory evaluation of compiled expressions."""

    DOCUMENT = {'name': 'Small gear', 'color': 'blue', 'size': 2, 'tags': ['a', 'b']}

    def test_equality_and_or(self):
        assert Equality('color', 'blue').matches(self.DOCUMENT)
        assert not Equality('color', 'red').matches(self.DOCUMENT)
        assert Or((Equality('size', 1), Equality('size', 2))).matches(self.DOCUMENT)

    def test_equality_against_list_field(self):
        assert Equality('tags', 'b').matches(self.DOCUMENT)

    def test_missing_field_does_not_match(self):
        assert not Equality('weight', 1).matches(self.DOCUMENT)

    def test_nan_never_matches(self):
        assert not Equality('size', math.nan).matches(self.DOCUMENT)

    def test_logical_groups(self):
        red = Equality('color', 'red')
        small = Equality('size', 2)

        assert not LogicalGroup(LogicalOperator.AND, (red, small)).matches(self.DOCUMENT)
        assert LogicalGroup(LogicalOperator.OR, (red, small)).matches(self.DOCUMENT)
        assert LogicalGroup(LogicalOperator.NOR, (red,)).matches(self.DOCUMENT)
