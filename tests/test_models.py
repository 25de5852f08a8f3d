"""Tests for document models."""

from re import escape
from typing import TYPE_CHECKING, Any

import pydantic
import pytest

from pytest_checkrun.expressions import Expression
from pytest_checkrun.schema import Check, Configuration, Resource, Suite, TestRun, Variable

if TYPE_CHECKING:
    from re import Pattern


@pytest.mark.parametrize('content, required', (
    pytest.param({'name': 'region'}, True, id='no default'),
    pytest.param({'name': 'region', 'default': None}, False, id='null default'),
    pytest.param({'name': 'region', 'default': 'eu'}, False, id='default'),
    pytest.param({'name': 'region', 'required': True, 'default': 'eu'}, True, id='explicit'),
))
def test_variable_required(content: dict[str, Any], required: bool) -> None:
    """Require variables declared without a default."""
    assert Variable.model_validate(content).required is required


@pytest.mark.parametrize('type_, value, expected', (
    pytest.param('any', {'a': [1]}, {'a': [1]}, id='any'),
    pytest.param('string', 'acme', 'acme', id='string'),
    pytest.param('number', 3, 3, id='int'),
    pytest.param('number', 2.5, 2.5, id='float'),
    pytest.param('bool', False, False, id='bool'),
    pytest.param('list(string)', ('a', 'b'), ['a', 'b'], id='list from tuple'),
    pytest.param('set(number)', [1, 2, 1, 3, 2], [1, 2, 3], id='set'),
    pytest.param('set(any)', [1, True, 1.0, '1', True], [1, True, '1'], id='set of mixed kinds'),
    pytest.param('map(bool)', {'a': True}, {'a': True}, id='map'),
    pytest.param('list( map(number) )', [{'a': 1}], [{'a': 1}], id='nested with spaces'),
    pytest.param('string', None, None, id='null'),
))
def test_variable_convert(type_: str, value: Any, expected: Any) -> None:  # noqa: ANN401
    """Convert values matching the type constraint."""
    variable = Variable(name='value', type=type_)

    assert variable.convert(value) == expected


@pytest.mark.parametrize('type_, value', (
    pytest.param('string', 42, id='number as string'),
    pytest.param('number', '42', id='string as number'),
    pytest.param('bool', 'true', id='string as bool'),
    pytest.param('list(number)', [1, 'two'], id='list item'),
    pytest.param('map(string)', ['a'], id='list as map'),
))
def test_variable_convert_strict(type_: str, value: Any) -> None:  # noqa: ANN401
    """Refuse to coerce values between types."""
    variable = Variable(name='value', type=type_)

    with pytest.raises(ValueError, match=rf"^Invalid value for variable 'value' of type {escape(type_)}"):
        variable.convert(value)


def test_variable_not_nullable() -> None:
    """Reject null for variables that are not nullable."""
    variable = Variable(name='value', type='string', nullable=False)

    with pytest.raises(ValueError, match=r"^Variable 'value' must not be null$"):
        variable.convert(None)


@pytest.mark.parametrize('type_', ('text', 'list(string', 'tuple(number)', 'map()'))
def test_variable_invalid_type(type_: str) -> None:
    """Reject malformed type constraints."""
    with pytest.raises(pydantic.ValidationError, match=r'Unsupported type constraint'):
        Variable(name='value', type=type_)


def test_rule_names() -> None:
    """Name unnamed rules by the variable and index."""
    variable = Variable.model_validate({
        'name': 'company_name',
        'validation': [
            {'condition': 'length(var.company_name) > 0', 'error_message': 'Empty'},
            {'name': 'length_rule', 'condition': 'true', 'error_message': 'Too long'},
        ],
    })

    assert variable.rule_name(0) == 'company_name[0]'
    assert variable.rule_name(1) == 'length_rule'
    assert isinstance(variable.validation[0].condition, Expression)


def test_configuration_keys() -> None:
    """Copy section keys into the declared objects."""
    config = Configuration.model_validate({
        'variables': {'region': {'default': 'eu'}},
        'resources': {'aws_instance.web': {'attributes': {'name': 'web-${var.region}'}}},
        'outputs': {'web_id': {'value': 'aws_instance.web.id'}},
        'checks': {
            'power': {
                'data': {'web': {'type': 'aws_instance'}},
                'assert': [{'condition': 'true', 'error_message': 'Never'}],
            },
        },
    })

    assert config.variables['region'].name == 'region'
    assert config.resources['aws_instance.web'].type == 'aws_instance'
    assert config.resources['aws_instance.web'].name == 'web'
    assert config.outputs['web_id'].name == 'web_id'
    assert config.checks['power'].name == 'power'
    assert config.provider == 'memory'


def test_resource_attributes() -> None:
    """Compile interpolated attribute strings into expressions."""
    resource = Resource.model_validate({
        'address': 'aws_instance.web',
        'attributes': {
            'name': '${var.prefix}-web',
            'count': '${var.count}',
            'static': 'plain',
        },
    })

    assert resource.attributes['static'] == 'plain'
    assert {
        traversal
        for expression in resource.attribute_expressions()
        for traversal in expression.references()
    } == {('var', 'prefix'), ('var', 'count')}


def test_check_defaults() -> None:
    """Read lookups once by default and accept the `assert` alias."""
    check = Check.model_validate({
        'name': 'power',
        'data': {'web': {'type': 'aws_instance', 'query': {'id': 'inst-1'}}},
        'assert': [{'condition': 'data.web.instance_state == "running"', 'error_message': 'Stopped'}],
    })

    lookup = check.data['web']

    assert lookup.retry.attempts == 1
    assert lookup.retry.delay == 0
    assert lookup.provider is None
    assert len(check.asserts) == 1


@pytest.mark.parametrize('content, except_message', (
    pytest.param({'name': 'power', 'assert': []}, r'at least 1 item', id='no assertions'),
    pytest.param(
        {
            'name': 'power',
            'data': {'web': {'type': 'aws_instance', 'retry': {'attempts': 0}}},
            'assert': [{'condition': 'true', 'error_message': 'Never'}],
        },
        r'greater than or equal to 1',
        id='no attempts',
    ),
    pytest.param(
        {'name': 'power', 'assert': [{'condition': 'var.a +', 'error_message': 'Broken'}]},
        r'position',
        id='broken condition',
    ),
))
def test_invalid_check(content: dict[str, Any], except_message: 'Pattern') -> None:
    """Reject malformed checks."""
    with pytest.raises(pydantic.ValidationError, match=except_message):
        Check.model_validate(content)


def test_test_run_aliases() -> None:
    """Read the run name and assertions from their document keys."""
    run = TestRun.model_validate({
        'run': 'first',
        'variables': {'company_name': 'acme'},
        'expect_failures': ['var.company_name', 'aws_instance.web'],
        'assert': [{'condition': 'output.web_id != null', 'error_message': 'No id'}],
    })

    assert run.name == 'first'
    assert run.command == 'apply'
    assert len(run.asserts) == 1


@pytest.mark.parametrize('content, except_message', (
    pytest.param({'run': 'first', 'command': 'refresh'}, r"Input should be 'plan', 'apply' or 'destroy'", id='command'),
    pytest.param({'run': 'first', 'expect_failures': ['company_name']}, r'should match pattern', id='identifier'),
    pytest.param({'run': 'first', 'timeout': 10}, r'Extra inputs are not permitted', id='extra'),
    pytest.param({'command': 'plan'}, r'Field required', id='no name'),
))
def test_invalid_test_run(content: dict[str, Any], except_message: 'Pattern') -> None:
    """Reject malformed test runs."""
    with pytest.raises(pydantic.ValidationError, match=except_message):
        TestRun.model_validate(content)


def test_suite_header() -> None:
    """Leave suite flags unset unless declared."""
    suite = Suite.model_validate({'spec': 'suite', 'config': 'main.yaml'})

    assert suite.strict is None
    assert suite.cleanup is None
    assert suite.variables == {}

    with pytest.raises(pydantic.ValidationError, match=r"Input should be 'suite'"):
        Suite.model_validate({'spec': 'config', 'config': 'main.yaml'})
