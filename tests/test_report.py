"""Tests for run result rendering."""

from json import loads

from yaml import safe_load

from pytest_checkrun.engine import (
    AssertionFailure,
    CheckResult,
    CheckStatus,
    ConditionViolation,
    RunResult,
    RunStatus,
    ValidationFailure,
)
from pytest_checkrun.report import describe, render

PASSED = RunResult(
    name='first',
    command='apply',
    status=RunStatus.PASS,
    checks={'ec2_power_status': CheckResult(name='ec2_power_status', status=CheckStatus.PASS)},
    outputs={'web_id': 'inst-00000001'},
)

FAILED = RunResult(
    name='second',
    command='plan',
    status=RunStatus.FAIL,
    unexpected=('check.subnet_count', 'var.company_name'),
    missing=('output.web_id',),
    validation_failures=(
        ValidationFailure(variable='company_name', rule='alphanumeric_rule', message='Not alphanumeric'),
    ),
    violations=(
        ConditionViolation(owner='aws_instance.web', kind='precondition', index=0, message='Type not allowed'),
    ),
    checks={
        'subnet_count': CheckResult(
            name='subnet_count',
            status=CheckStatus.FAIL,
            failures=(AssertionFailure(owner='check.subnet_count', index=0, message='Expected 2 subnets'),),
        ),
        'ec2_power_status': CheckResult(name='ec2_power_status', status=CheckStatus.PASS),
    },
    assertions=(AssertionFailure(owner='run.second', index=1, message='Owner mismatch'),),
)


def test_describe() -> None:
    """Explain every failure of a run."""
    assert list(describe(FAILED)) == [
        'var.company_name: alphanumeric_rule: Not alphanumeric',
        'aws_instance.web: precondition #0: Type not allowed',
        'check.subnet_count: fail',
        '    Expected 2 subnets',
        'run.second: assert #1: Owner mismatch',
        'unexpected failures: check.subnet_count, var.company_name',
        'expected failures not observed: output.web_id',
    ]


def test_describe_error() -> None:
    """Lead with the error of an errored run."""
    result = RunResult(name='broken', command='apply', status=RunStatus.ERROR, error='Provider failed')

    assert list(describe(result)) == ['error: Provider failed']


def test_render_text() -> None:
    """Render one line per run with details of failed runs."""
    assert render([PASSED, FAILED]).splitlines() == [
        'PASS    first (apply)',
        'FAIL    second (plan)',
        '    var.company_name: alphanumeric_rule: Not alphanumeric',
        '    aws_instance.web: precondition #0: Type not allowed',
        '    check.subnet_count: fail',
        '        Expected 2 subnets',
        '    run.second: assert #1: Owner mismatch',
        '    unexpected failures: check.subnet_count, var.company_name',
        '    expected failures not observed: output.web_id',
        '1 of 2 runs passed',
    ]


def test_render_json() -> None:
    """Render results as a JSON array."""
    report = loads(render([PASSED, FAILED], 'json'))

    assert [run['status'] for run in report] == ['pass', 'fail']
    assert report[0]['outputs'] == {'web_id': 'inst-00000001'}
    assert report[1]['validation_failures'][0]['rule'] == 'alphanumeric_rule'


def test_render_yaml() -> None:
    """Render results as a YAML sequence."""
    report = safe_load(render([PASSED], 'yaml'))

    assert report[0]['name'] == 'first'
    assert report[0]['checks']['ec2_power_status']['status'] == 'pass'
