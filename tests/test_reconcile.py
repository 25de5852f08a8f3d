"""Tests for expected failure reconciliation."""

import pytest

from pytest_checkrun.engine import RunStatus, reconcile


@pytest.mark.parametrize('expected, failed, unknown, status, unexpected, missing', (
    pytest.param((), (), (), RunStatus.PASS, (), (), id='nothing'),
    pytest.param(
        ('check.subnet_count',), ('check.subnet_count',), (),
        RunStatus.PASS, (), (),
        id='expected failure',
    ),
    pytest.param(
        (), ('output.web_id',), (),
        RunStatus.FAIL, ('output.web_id',), (),
        id='unexpected failure',
    ),
    pytest.param(
        ('var.company_name',), (), (),
        RunStatus.FAIL, (), ('var.company_name',),
        id='missing failure',
    ),
    pytest.param(
        ('check.subnet_count', 'check.ec2_power_status'),
        ('check.subnet_count',),
        ('check.ec2_power_status',),
        RunStatus.PASS, (), (),
        id='unknown satisfies expectation',
    ),
    pytest.param(
        (), (), ('check.ec2_power_status',),
        RunStatus.PASS, (), (),
        id='unknown is not a failure',
    ),
    pytest.param(
        ('var.b',), ('var.c', 'var.a'), (),
        RunStatus.FAIL, ('var.a', 'var.c'), ('var.b',),
        id='sorted',
    ),
))
def test_reconcile(expected: tuple[str, ...], failed: tuple[str, ...],
                   unknown: tuple[str, ...], status: RunStatus,
                   unexpected: tuple[str, ...], missing: tuple[str, ...]) -> None:
    """Compare failures and expectations as sets."""
    result = reconcile(expected, failed, unknown)

    assert result.status is status
    assert result.unexpected == unexpected
    assert result.missing == missing


def test_reconcile_diagnostics() -> None:
    """Report one diagnostic per involved identifier."""
    result = reconcile(
        ['check.a', 'var.b'],
        ['var.b', 'aws_instance.web'],
        ['check.a', 'check.c'],
    )

    assert [diagnostic.as_tuple() for diagnostic in result.diagnostics] == [
        ('aws_instance.web', False, True),
        ('check.a', True, True),
        ('var.b', True, True),
    ]


def test_reconcile_duplicates() -> None:
    """Ignore duplicate identifiers."""
    result = reconcile(['var.a', 'var.a'], ['var.a', 'var.a'])

    assert result.status is RunStatus.PASS
    assert len(result.diagnostics) == 1
