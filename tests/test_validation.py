"""Tests for variable type constraints and validation rules."""

from typing import Any

import pytest

from pytest_checkrun.engine import ValidationEngine
from pytest_checkrun.engine.validation import constant_locals
from pytest_checkrun.errors import ConfigurationError
from pytest_checkrun.schema import Configuration, Variable

COMPANY_NAME = {
    'name': 'company_name',
    'type': 'string',
    'validation': [
        {
            'name': 'length_rule',
            'condition': 'length(var.company_name) >= 3 && length(var.company_name) <= 20',
            'error_message': 'Company name must be 3 to 20 characters long',
        },
        {
            'name': 'alphanumeric_rule',
            'condition': 'can(regex("^[a-zA-Z0-9]+$", var.company_name))',
            'error_message': 'Company name "${var.company_name}" must be alphanumeric',
        },
    ],
}


@pytest.fixture
def company_name() -> Variable:
    """Variable with a length rule and an alphanumeric rule."""
    return Variable.model_validate(COMPANY_NAME)


@pytest.mark.parametrize('value, rules', (
    pytest.param('globomantics', [], id='accepted'),
    pytest.param('globo@mantics$#%', ['alphanumeric_rule'], id='alphanumeric only'),
    pytest.param('ab', ['length_rule'], id='length only'),
    pytest.param('a@', ['length_rule', 'alphanumeric_rule'], id='both in order'),
))
def test_validate_rules(company_name: Variable, value: str, rules: list[str]) -> None:
    """Run every rule and report failures in declaration order."""
    failures = ValidationEngine().validate(company_name, value)

    assert [failure.rule for failure in failures] == rules
    assert all(failure.identifier == 'var.company_name' for failure in failures)


def test_validate_message_rendered(company_name: Variable) -> None:
    """Render failure messages against the candidate value."""
    failures = ValidationEngine().validate(company_name, 'globo@mantics$#%')

    assert failures[0].message == 'Company name "globo@mantics$#%" must be alphanumeric'


@pytest.mark.parametrize('value', (
    pytest.param(42, id='number'),
    pytest.param(['a'], id='list'),
    pytest.param(True, id='bool'),
))
def test_validate_type_mismatch(company_name: Variable, value: Any) -> None:  # noqa: ANN401
    """Report a type mismatch as a single failure without running rules."""
    failures = ValidationEngine().validate(company_name, value)

    assert len(failures) == 1
    assert failures[0].rule == 'type'
    assert failures[0].message.startswith("Invalid value for variable 'company_name' of type string")


def test_validate_rule_error_is_failure() -> None:
    """Treat a rule that can not be evaluated as rejecting the value."""
    variable = Variable.model_validate({
        'name': 'port',
        'validation': [{'condition': 'var.port > 0', 'error_message': 'Port must be positive'}],
    })

    failures = ValidationEngine().validate(variable, 'eighty')

    assert [failure.rule for failure in failures] == ['port[0]']
    assert failures[0].message == 'Port must be positive'


def test_validate_reads_locals() -> None:
    """Let rules read constant local values."""
    variable = Variable.model_validate({
        'name': 'region',
        'type': 'string',
        'validation': [{
            'condition': 'contains(local.regions, var.region)',
            'error_message': 'Region must be one of ${join(", ", local.regions)}',
        }],
    })
    engine = ValidationEngine({'regions': ['eu-west-1', 'us-east-1']})

    assert engine.validate(variable, 'eu-west-1') == ()
    assert engine.validate(variable, 'mars')[0].message == 'Region must be one of eu-west-1, us-east-1'


@pytest.mark.parametrize('constraint, value, expected', (
    pytest.param('number', 3, 3, id='number'),
    pytest.param('number', 2.5, 2.5, id='float'),
    pytest.param('bool', False, False, id='bool'),
    pytest.param('list(string)', ('a', 'b'), ['a', 'b'], id='list from tuple'),
    pytest.param('set(number)', [1, 2, 1], [1, 2], id='set'),
    pytest.param('map(number)', {'a': 1}, {'a': 1}, id='map'),
    pytest.param('any', {'x': [1]}, {'x': [1]}, id='any'),
    pytest.param('string', None, None, id='nullable'),
))
def test_convert(constraint: str, value: Any, expected: Any) -> None:  # noqa: ANN401
    """Convert accepted candidate values to the declared type."""
    variable = Variable(name='value', type=constraint)

    assert variable.convert(value) == expected


@pytest.mark.parametrize('constraint, value', (
    pytest.param('number', '3', id='string for number'),
    pytest.param('string', 3, id='number for string'),
    pytest.param('bool', 'true', id='string for bool'),
    pytest.param('list(number)', [1, 'a'], id='list item'),
    pytest.param('map(string)', {'a': 1}, id='map item'),
))
def test_convert_rejects(constraint: str, value: Any) -> None:  # noqa: ANN401
    """Reject candidate values not matching the type strictly."""
    variable = Variable(name='value', type=constraint)

    with pytest.raises(ValueError, match=r"^Invalid value for variable 'value'"):
        variable.convert(value)


def test_convert_not_nullable() -> None:
    """Reject null for variables that are not nullable."""
    variable = Variable(name='value', nullable=False)

    with pytest.raises(ValueError, match=r"^Variable 'value' must not be null$"):
        variable.convert(None)


def test_variable_rejects_unknown_type() -> None:
    """Reject malformed type constraints at load time."""
    with pytest.raises(ValueError, match=r"Unsupported type constraint 'tuple\(string\)'"):
        Variable(name='value', type='tuple(string)')


@pytest.mark.parametrize('data, required', (
    pytest.param({'name': 'a'}, True, id='no default'),
    pytest.param({'name': 'a', 'default': None}, False, id='null default'),
    pytest.param({'name': 'a', 'default': 'x'}, False, id='default'),
))
def test_variable_required(data: dict[str, Any], required: bool) -> None:
    """Mark variables declared without a default as required."""
    assert Variable.model_validate(data).required is required


def test_validate_all() -> None:
    """Resolve defaults, convert accepted values and collect failures."""
    configuration = Configuration.model_validate({
        'variables': {
            'company_name': {k: v for k, v in COMPANY_NAME.items() if k != 'name'},
            'instance_count': {'type': 'number', 'default': 1},
            'tags': {'type': 'map(string)', 'default': {}},
        },
    })

    accepted, failures = ValidationEngine(max_workers=2).validate_all(
        configuration.variables,
        {'company_name': 'bad name!', 'tags': {'env': 'prod'}},
    )

    assert accepted == {'instance_count': 1, 'tags': {'env': 'prod'}}
    assert [(failure.variable, failure.rule) for failure in failures] == [
        ('company_name', 'alphanumeric_rule'),
    ]


def test_validate_all_required() -> None:
    """Require a value for variables without a default."""
    variables = {'name': Variable.model_validate({'name': 'name', 'type': 'string'})}

    with pytest.raises(ConfigurationError, match=r"^No value for required variable 'name'$"):
        ValidationEngine().validate_all(variables, {})


def test_validate_all_undeclared() -> None:
    """Reject values for undeclared variables."""
    with pytest.raises(ConfigurationError, match=r"^Value for undeclared variable 'other'$"):
        ValidationEngine().validate_all({}, {'other': 1})


def test_constant_locals() -> None:
    """Resolve locals that depend only on other constant locals."""
    configuration = Configuration.model_validate({
        'variables': {'name': {'type': 'string'}},
        'resources': {'aws_vpc.main': {'attributes': {'cidr_block': '10.0.0.0/16'}}},
        'locals': {
            'prefix': '${local.base}-app',
            'base': 'acme',
            'named': '${var.name}-x',
            'network': '${aws_vpc.main.cidr_block}',
        },
    })

    assert constant_locals(configuration) == {'base': 'acme', 'prefix': 'acme-app'}
