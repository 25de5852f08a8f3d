"""Tests for the test run engine.

Runs are executed against an in-memory provider, so every side effect
a command performs can be observed through the provider records.
"""

from copy import deepcopy
from datetime import date
from typing import TYPE_CHECKING, Any

import pytest

from pytest_checkrun.builtins.providers import MemoryProvider
from pytest_checkrun.engine import (
    CheckStatus,
    Lifecycle,
    ResourceInstance,
    RunStatus,
    TestRunEngine,
    dependency_order,
)
from pytest_checkrun.errors import ConfigurationError, StateError
from pytest_checkrun.expressions import Expression
from pytest_checkrun.extensions import ProviderFactory
from pytest_checkrun.schema import Configuration, TestRun
from pytest_checkrun.settings import RunnerSettings

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from pytest_mock import MockerFixture

CONFIG: dict[str, Any] = {
    'variables': {
        'company_name': {
            'type': 'string',
            'validation': [{
                'name': 'alphanumeric_rule',
                'condition': 'can(regex("^[a-zA-Z0-9]+$", var.company_name))',
                'error_message': 'Company name must be alphanumeric',
            }],
        },
        'instance_type': {'type': 'string', 'default': 't3.micro'},
        'min_subnets': {'type': 'number', 'default': 2},
        'owner': {'type': 'string', 'default': 'nobody'},
    },
    'locals': {
        'allowed_types': ['t3.micro', 't3.small'],
        'name_prefix': '${var.company_name}-app',
    },
    'resources': {
        'aws_vpc.main': {
            'attributes': {'cidr_block': '10.0.0.0/16', 'name': '${local.name_prefix}'},
        },
        'aws_instance.web': {
            'attributes': {
                'instance_type': '${var.instance_type}',
                'vpc_id': '${aws_vpc.main.id}',
                'owner': '${var.owner}',
            },
            'precondition': [{
                'condition': 'contains(local.allowed_types, var.instance_type)',
                'error_message': 'Instance type ${var.instance_type} is not allowed',
            }],
            'postcondition': [{
                'condition': 'self.instance_state == "running"',
                'error_message': 'Instance ${self.id} is ${self.instance_state}',
            }],
        },
        'aws_subnet.a': {
            'attributes': {'vpc_id': '${aws_vpc.main.id}', 'cidr_block': '10.0.1.0/24'},
        },
        'aws_subnet.b': {
            'attributes': {'vpc_id': '${aws_vpc.main.id}', 'cidr_block': '10.0.2.0/24'},
        },
    },
    'outputs': {
        'web_id': {'value': 'aws_instance.web.id'},
        'vpc_id': {'value': 'aws_vpc.main.id', 'sensitive': True},
    },
    'checks': {
        'ec2_power_status': {
            'data': {
                'web': {'type': 'aws_instance', 'query': {'id': '${aws_instance.web.id}'}},
            },
            'assert': [{
                'condition': 'data.web.instance_state == "running"',
                'error_message': 'Instance is ${data.web.instance_state}',
            }],
        },
        'subnet_count': {
            'data': {
                'subnets': {'type': 'aws_subnet', 'query': {'vpc_id': '${aws_vpc.main.id}'}},
            },
            'assert': [{
                'condition': 'data.subnets.count >= var.min_subnets',
                'error_message': 'Expected ${var.min_subnets} subnets, got ${data.subnets.count}',
            }],
        },
    },
}


def run(name: str, command: str = 'apply', **fields: Any) -> TestRun:  # noqa: ANN401
    """Build a test run declaration."""
    return TestRun.model_validate({'run': name, 'command': command, **fields})


@pytest.fixture
def make_engine(memory: MemoryProvider) -> 'Iterator[Callable[..., TestRunEngine]]':
    """Provide a factory of engines over the shared in-memory provider."""
    engines: list[TestRunEngine] = []

    def make(config: dict[str, Any] | None = None, **settings: Any) -> TestRunEngine:  # noqa: ANN401
        engine = TestRunEngine(
            Configuration.model_validate(config or CONFIG),
            variables={'company_name': 'globomantics'},
            providers={'memory': memory},
            settings=RunnerSettings(**settings),
        )
        engines.append(engine)
        return engine

    yield make

    for engine in engines:
        engine.close()


@pytest.fixture
def engine(make_engine: 'Callable[..., TestRunEngine]') -> TestRunEngine:
    """Engine over the sample configuration."""
    return make_engine()


def test_dependency_order() -> None:
    """Order dependencies first, keeping declaration order otherwise."""
    assert dependency_order(Configuration.model_validate(CONFIG)) == [
        'local.allowed_types',
        'local.name_prefix',
        'aws_vpc.main',
        'aws_instance.web',
        'aws_subnet.a',
        'aws_subnet.b',
    ]


def test_dependency_order_depends_on() -> None:
    """Honor explicit dependencies."""
    configuration = Configuration.model_validate({
        'resources': {
            'aws_instance.web': {'depends_on': ['aws_vpc.main']},
            'aws_vpc.main': {},
        },
    })

    assert dependency_order(configuration) == ['aws_vpc.main', 'aws_instance.web']


def test_dependency_cycle() -> None:
    """Reject dependency cycles."""
    configuration = Configuration.model_validate({
        'locals': {'a': '${local.b}', 'b': '${local.a}'},
    })

    with pytest.raises(ConfigurationError, match=r'^Dependency cycle: local\.'):
        dependency_order(configuration)


def test_plan_has_no_side_effects(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Plan without calling the provider, leaving checks unknown."""
    result = engine.execute_run(run(
        'plan', 'plan',
        expect_failures=['check.subnet_count', 'check.ec2_power_status'],
    ))

    assert result.status is RunStatus.PASS
    assert {name: check.status for name, check in result.checks.items()} == {
        'ec2_power_status': CheckStatus.UNKNOWN,
        'subnet_count': CheckStatus.UNKNOWN,
    }
    assert result.outputs == {}
    assert memory.calls == []
    assert engine.state == {}
    assert engine.run_outputs == {}


def test_plan_unknown_checks_are_not_failures(engine: TestRunEngine) -> None:
    """Pass a plan whose checks can not be decided yet."""
    assert engine.execute_run(run('plan', 'plan')).status is RunStatus.PASS


def test_apply(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Realize resources, run checks and export outputs."""
    result = engine.execute_run(run('apply'))

    assert result.status is RunStatus.PASS, result.unexpected
    assert {name: check.status for name, check in result.checks.items()} == {
        'ec2_power_status': CheckStatus.PASS,
        'subnet_count': CheckStatus.PASS,
    }
    assert result.outputs == {'web_id': 'inst-00000002', 'vpc_id': '(sensitive value)'}
    assert engine.run_outputs == {'apply': {'web_id': 'inst-00000002', 'vpc_id': 'vpc-00000001'}}

    assert {address: instance.lifecycle for address, instance in engine.state.items()} == {
        'aws_vpc.main': Lifecycle.APPLIED,
        'aws_instance.web': Lifecycle.APPLIED,
        'aws_subnet.a': Lifecycle.APPLIED,
        'aws_subnet.b': Lifecycle.APPLIED,
    }
    assert memory.resources['aws_vpc']['vpc-00000001']['name'] == 'globomantics-app'
    assert memory.resources['aws_instance']['inst-00000002']['vpc_id'] == 'vpc-00000001'


def test_apply_twice_updates(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Update realized resources instead of creating them again."""
    engine.execute_run(run('first'))
    result = engine.execute_run(run('second', variables={'instance_type': 't3.small'}))

    assert result.status is RunStatus.PASS
    assert ('update', 'aws_instance', 'inst-00000002') in memory.calls
    assert len(memory.resources['aws_instance']) == 1
    assert memory.resources['aws_instance']['inst-00000002']['instance_type'] == 't3.small'


@pytest.mark.parametrize('command', ('plan', 'apply'))
def test_drift_fails_checks_only(make_engine: 'Callable[..., TestRunEngine]',
                                 memory: MemoryProvider, command: str) -> None:
    """Observe out-of-band changes through checks, leaving resources applied."""
    config = deepcopy(CONFIG)
    del config['resources']['aws_instance.web']['postcondition']
    engine = make_engine(config)

    assert engine.execute_run(run('apply')).status is RunStatus.PASS

    memory.update('aws_instance', 'inst-00000002', {'instance_state': 'stopped'})
    memory.create('aws_subnet', {'vpc_id': 'vpc-00000001', 'cidr_block': '10.0.3.0/24'})

    result = engine.execute_run(run(
        'drift',
        command,
        variables={'min_subnets': 4},
        expect_failures=['check.ec2_power_status', 'check.subnet_count'],
    ))

    assert result.status is RunStatus.PASS, result.unexpected
    assert result.violations == ()
    assert {name: check.status for name, check in result.checks.items()} == {
        'ec2_power_status': CheckStatus.FAIL,
        'subnet_count': CheckStatus.FAIL,
    }
    assert result.checks['ec2_power_status'].failures[0].message == 'Instance is stopped'
    assert result.checks['subnet_count'].failures[0].message == 'Expected 4 subnets, got 3'
    assert {instance.lifecycle for instance in engine.state.values()} == {Lifecycle.APPLIED}
    assert len(engine.state) == 4


@pytest.mark.parametrize('expect_failures, status, unexpected', (
    pytest.param(['var.company_name'], RunStatus.PASS, (), id='expected'),
    pytest.param([], RunStatus.FAIL, ('var.company_name',), id='unexpected'),
))
def test_validation_failure(engine: TestRunEngine, memory: MemoryProvider,
                            expect_failures: list[str], status: RunStatus,
                            unexpected: tuple[str, ...]) -> None:
    """Skip the command when a variable is rejected."""
    result = engine.execute_run(run(
        'invalid',
        variables={'company_name': 'globo@mantics$#%'},
        expect_failures=expect_failures,
    ))

    assert result.status is status
    assert result.unexpected == unexpected
    assert [failure.rule for failure in result.validation_failures] == ['alphanumeric_rule']
    assert result.checks == {}
    assert memory.calls == []


def test_precondition_violation(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Block the resource and its side effect on a violated precondition."""
    result = engine.execute_run(run(
        'forbidden',
        variables={'instance_type': 'm5.large'},
        expect_failures=['aws_instance.web'],
    ))

    assert result.status is RunStatus.PASS
    assert [violation.message for violation in result.violations] == [
        'Instance type m5.large is not allowed',
    ]
    assert result.checks['ec2_power_status'].status is CheckStatus.UNKNOWN
    assert result.outputs['web_id'] == '(known after apply)'

    assert engine.state['aws_instance.web'].lifecycle is Lifecycle.FAILED
    assert not engine.state['aws_instance.web'].realized
    assert 'aws_instance' not in memory.resources or memory.resources['aws_instance'] == {}


def test_resource_postcondition_violation(make_engine: 'Callable[..., TestRunEngine]',
                                          memory: MemoryProvider) -> None:
    """Mark the resource failed while keeping its side effect."""
    memory.defaults['aws_instance']['instance_state'] = 'stopped'
    engine = make_engine()

    result = engine.execute_run(run(
        'stopped',
        expect_failures=['aws_instance.web', 'check.ec2_power_status'],
    ))

    assert result.status is RunStatus.PASS
    assert result.violations[0].kind == 'postcondition'
    assert result.violations[0].message == 'Instance inst-00000002 is stopped'

    instance = engine.state['aws_instance.web']
    assert instance.lifecycle is Lifecycle.FAILED
    assert instance.realized
    assert 'inst-00000002' in memory.resources['aws_instance']


def test_output_postcondition_violation(make_engine: 'Callable[..., TestRunEngine]',
                                        memory: MemoryProvider) -> None:
    """Fail the run on an unexpected output failure, keeping side effects."""
    config = deepcopy(CONFIG)
    config['outputs']['web_id']['postcondition'] = [{
        'condition': 'startswith(self, "i-")',
        'error_message': 'Unexpected instance id ${self}',
    }]
    engine = make_engine(config)

    result = engine.execute_run(run('apply'))

    assert result.status is RunStatus.FAIL
    assert result.unexpected == ('output.web_id',)
    assert result.violations[0].message == 'Unexpected instance id inst-00000002'
    assert 'inst-00000002' in memory.resources['aws_instance']


def test_output_precondition_violation(make_engine: 'Callable[..., TestRunEngine]') -> None:
    """Skip outputs whose precondition is violated."""
    config = deepcopy(CONFIG)
    config['outputs']['web_id']['precondition'] = [{
        'condition': 'var.owner != "nobody"',
        'error_message': 'Owner must be set',
    }]
    engine = make_engine(config)

    result = engine.execute_run(run('plan', 'plan', expect_failures=['output.web_id']))

    assert result.status is RunStatus.PASS
    assert result.violations[0].owner == 'output.web_id'


def test_run_outputs_feed_later_runs(engine: TestRunEngine) -> None:
    """Resolve variables from outputs of earlier apply runs."""
    engine.execute_run(run('first'))
    second = run(
        'second',
        command='plan',
        variables={'owner': Expression('run.first.web_id')},
        **{'assert': [{
            'condition': 'var.owner == "inst-00000002"',
            'error_message': 'Owner is ${var.owner}',
        }]},
    )

    assert engine.merge_variables(second)['owner'] == 'inst-00000002'

    result = engine.execute_run(second)

    assert result.status is RunStatus.PASS
    assert result.assertions == ()


def test_run_outputs_missing(engine: TestRunEngine) -> None:
    """Error when a run reads outputs of a run that did not apply."""
    result = engine.execute_run(run('second', variables={'owner': Expression('run.first.web_id')}))

    assert result.status is RunStatus.ERROR
    assert result.error.startswith('Invalid variable value: Unsupported attribute "first"')


def test_run_assertions(engine: TestRunEngine) -> None:
    """Fail the run when an assertion does not hold."""
    result = engine.execute_run(run('asserted', **{'assert': [
        {
            'condition': 'output.web_id == aws_instance.web.id',
            'error_message': 'Output mismatch',
        },
        {
            'condition': 'check.subnet_count.status == "fail"',
            'error_message': 'Subnet check is ${check.subnet_count.status}',
        },
    ]}))

    assert result.status is RunStatus.FAIL
    assert result.unexpected == ()
    assert [(failure.index, failure.message) for failure in result.assertions] == [
        (1, 'Subnet check is pass'),
    ]


def test_run_assertion_unknown(engine: TestRunEngine) -> None:
    """Fail the run when an assertion can not be decided."""
    result = engine.execute_run(run('plan', 'plan', **{'assert': [{
        'condition': 'output.web_id == "inst-1"',
        'error_message': 'never rendered',
    }]}))

    assert result.status is RunStatus.FAIL
    assert result.assertions[0].unknown


def test_destroy(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Delete realized resources in reverse dependency order."""
    engine.execute_run(run('apply'))
    result = engine.execute_run(run('teardown', 'destroy'))

    assert result.status is RunStatus.PASS
    assert engine.state == {}
    assert [call for call in memory.calls if call[0] == 'delete'] == [
        ('delete', 'aws_subnet', 'subn-00000004'),
        ('delete', 'aws_subnet', 'subn-00000003'),
        ('delete', 'aws_instance', 'inst-00000002'),
        ('delete', 'aws_vpc', 'vpc-00000001'),
    ]
    assert 'apply' in engine.run_outputs


def test_destroy_rejects_unrealized_state(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Refuse to tear down instances whose lifecycle can not end."""
    engine.state['aws_vpc.main'] = ResourceInstance(address='aws_vpc.main', lifecycle=Lifecycle.PLANNED)

    with pytest.raises(StateError, match=r'^Illegal lifecycle transition from planned to unplanned$'):
        engine.destroy()

    assert memory.calls == []


def test_cleanup(engine: TestRunEngine, memory: MemoryProvider) -> None:
    """Destroy whatever is left in state."""
    engine.execute_run(run('apply'))

    assert len(engine.cleanup()) == 4
    assert engine.state == {}
    assert engine.cleanup() == []


def test_cleanup_failure(engine: TestRunEngine, memory: MemoryProvider,
                         mocker: 'MockerFixture') -> None:
    """Leave resources in state when cleanup fails."""
    engine.execute_run(run('apply'))
    mocker.patch.object(memory, 'delete', side_effect=RuntimeError('locked'))

    assert engine.cleanup() == []
    assert 'aws_vpc.main' in engine.state


@pytest.mark.parametrize('strict, status', (
    pytest.param(True, RunStatus.SKIPPED, id='strict'),
    pytest.param(False, RunStatus.PASS, id='relaxed'),
))
def test_error_strict(make_engine: 'Callable[..., TestRunEngine]',
                      strict: bool, status: RunStatus) -> None:
    """Skip later runs after an error only in strict mode."""
    engine = make_engine(strict=strict)

    results = engine.execute([
        run('broken', variables={'undeclared': 1}),
        run('plan', 'plan'),
    ])

    assert results[0].status is RunStatus.ERROR
    assert results[0].error.startswith("Value for undeclared variable 'undeclared'")
    assert results[1].status is status


def test_unsupported_variable_value(engine: TestRunEngine) -> None:
    """End a run with an error on values of unsupported types."""
    results = engine.execute([
        run('dated', variables={'owner': date(2024, 6, 1)}),
        run('plan', 'plan'),
    ])

    assert results[0].status is RunStatus.ERROR
    assert results[0].error.startswith('Invalid variable value: datetime.date(2024, 6, 1) has unsupported type')
    assert results[1].status is RunStatus.PASS


def test_unsupported_local_value(make_engine: 'Callable[..., TestRunEngine]') -> None:
    """End a run with an error on locals of unsupported types."""
    engine = make_engine({**CONFIG, 'locals': {**CONFIG['locals'], 'launched': date(2024, 6, 1)}})

    result = engine.execute_run(run('plan', 'plan'))

    assert result.status is RunStatus.ERROR
    assert result.error.startswith('Can not evaluate local.launched: datetime.date(2024, 6, 1) has unsupported type')


def test_execute_global_variables(engine: TestRunEngine) -> None:
    """Replace suite variables for a whole execution."""
    results = engine.execute([run('plan', 'plan')], {'company_name': 'bad name'})

    assert results[0].status is RunStatus.FAIL
    assert results[0].unexpected == ('var.company_name',)


def test_provider_error(engine: TestRunEngine, memory: MemoryProvider,
                        mocker: 'MockerFixture') -> None:
    """End the run with an error when a provider call fails."""
    mocker.patch.object(memory, 'create', side_effect=RuntimeError('quota exceeded'))

    result = engine.execute_run(run('apply'))

    assert result.status is RunStatus.ERROR
    assert "failed on 'create': quota exceeded" in result.error


def test_unregistered_provider(make_engine: 'Callable[..., TestRunEngine]') -> None:
    """End the run with an error when a provider is not registered."""
    engine = make_engine({**CONFIG, 'provider': 'aws'})

    result = engine.execute_run(run('plan', 'plan'))

    assert result.status is RunStatus.ERROR
    assert result.error.startswith("Provider 'aws' is not registered")


def test_provider_factory() -> None:
    """Build providers from factories with their configured options."""
    built: list[MemoryProvider] = []

    def factory(options: dict[str, Any]) -> MemoryProvider:
        provider = MemoryProvider(options)
        built.append(provider)
        return provider

    configuration = Configuration.model_validate({
        'provider': 'fake',
        'providers': {'fake': {'defaults': {'aws_vpc': {'state': 'available'}}}},
        'resources': {'aws_vpc.main': {}},
        'outputs': {'state': {'value': 'aws_vpc.main.state'}},
    })
    engine = TestRunEngine(
        configuration,
        factories={'fake': ProviderFactory(name='fake', factory=factory)},
    )

    try:
        result = engine.execute_run(run('apply'))
    finally:
        engine.close()

    assert result.outputs == {'state': 'available'}
    assert len(built) == 1
