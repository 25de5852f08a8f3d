"""Tests for precondition and postcondition evaluation."""

import pytest

from pytest_checkrun.context import Environment
from pytest_checkrun.engine import ConditionEngine, ConditionStatus
from pytest_checkrun.errors import ConfigurationError
from pytest_checkrun.schema import ConditionBlock
from pytest_checkrun.values import Pending

BLOCKS = [
    ConditionBlock(
        condition='contains(local.allowed_types, var.instance_type)',
        error_message='Instance type ${var.instance_type} is not allowed',
    ),
    ConditionBlock(
        condition='self.instance_state == "running"',
        error_message='Instance ${self.id} is ${self.instance_state}',
    ),
]


@pytest.fixture
def environment() -> Environment:
    """Environment of an instance resource."""
    return Environment({
        'var': {'instance_type': 't3.micro'},
        'local': {'allowed_types': ['t3.micro', 't3.small']},
    })


def test_satisfied(environment: Environment) -> None:
    """Report satisfied blocks without violations."""
    outcome = ConditionEngine().evaluate(
        'aws_instance.web', 'postcondition', BLOCKS,
        environment.bind(self={'id': 'inst-1', 'instance_state': 'running'}),
    )

    assert outcome.status is ConditionStatus.SATISFIED
    assert outcome.violations == ()


def test_violated(environment: Environment) -> None:
    """Evaluate every block and report each violation."""
    outcome = ConditionEngine().evaluate(
        'aws_instance.web', 'postcondition', BLOCKS,
        environment.bind(
            var={'instance_type': 'm5.large'},
            self={'id': 'inst-1', 'instance_state': 'stopped'},
        ),
    )

    assert outcome.status is ConditionStatus.VIOLATED
    assert [(v.owner, v.kind, v.index, v.message) for v in outcome.violations] == [
        ('aws_instance.web', 'postcondition', 0, 'Instance type m5.large is not allowed'),
        ('aws_instance.web', 'postcondition', 1, 'Instance inst-1 is stopped'),
    ]


def test_unknown_stays_unchecked(environment: Environment) -> None:
    """Leave blocks depending on unknown values undecided."""
    outcome = ConditionEngine().evaluate(
        'aws_instance.web', 'postcondition', BLOCKS,
        environment.bind(self=Pending({'id': 'inst-1'})),
    )

    assert outcome.status is ConditionStatus.UNCHECKED
    assert outcome.violations == ()


def test_no_blocks(environment: Environment) -> None:
    """Treat an entity without blocks as satisfied."""
    outcome = ConditionEngine().evaluate('output.id', 'precondition', [], environment)

    assert outcome.status is ConditionStatus.SATISFIED


@pytest.mark.parametrize('condition, message', (
    pytest.param('var.missing == 1', r'Unsupported attribute "missing"', id='attribute'),
    pytest.param('length(var.instance_type)', r'Condition must produce a bool, got number', id='not bool'),
))
def test_evaluation_error(environment: Environment, condition: str, message: str) -> None:
    """Raise configuration errors for conditions that can not be evaluated."""
    block = ConditionBlock(condition=condition, error_message='never rendered')

    with pytest.raises(ConfigurationError, match=rf'^Invalid precondition of output.id: {message}') as error:
        ConditionEngine().evaluate('output.id', 'precondition', [block], environment)

    assert error.value.context['block'] == 'output.id'
