"""Test run engine.

Drives the test runs of a suite in file order against one configuration.
Each run merges its variables, validates them, executes its command,
runs checks and assertions, and reconciles the failures it observed with
the failures it declared as expected.

Resource state and the outputs of completed apply runs persist across
the runs of an engine; everything else is rebuilt per run.
"""

from graphlib import CycleError, TopologicalSorter
from typing import TYPE_CHECKING, Any

import structlog

from pytest_checkrun.context import Environment
from pytest_checkrun.errors import (
    ConfigurationError,
    ErrorContext,
    EvaluationError,
    ExternalError,
    UnknownValueError,
)
from pytest_checkrun.expressions import evaluate_condition, iter_expressions
from pytest_checkrun.settings import RunnerSettings
from pytest_checkrun.values import UNKNOWN, Pending, is_known, normalize

from .checks import CheckEngine
from .conditions import ConditionEngine
from .provider import ProviderGateway
from .reconcile import reconcile
from .results import AssertionFailure, CheckStatus, ConditionViolation, RunResult, RunStatus
from .state import ConditionStatus, Lifecycle, ResourceInstance, transition
from .validation import ValidationEngine, constant_locals

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from pytest_checkrun.expressions import FunctionTable, Traversal
    from pytest_checkrun.extensions import ProviderFactory
    from pytest_checkrun.schema import Configuration, Resource, TestRun

    from .provider import Provider

logger = structlog.get_logger(__name__)

#: Placeholder reported instead of sensitive output values.
SENSITIVE = '(sensitive value)'

#: Placeholder reported for outputs of resources that were not applied.
NOT_APPLIED = '(known after apply)'


def _targets(configuration: 'Configuration', traversals: 'Iterable[Traversal]') -> set[str]:
    """Map traversals to the locals and resources they read."""
    targets = set()
    for root, *path in traversals:
        if not path:
            continue
        if root == 'local' and path[0] in configuration.locals:
            targets.add(f'local.{path[0]}')
        elif f'{root}.{path[0]}' in configuration.resources:
            targets.add(f'{root}.{path[0]}')

    return targets


def dependency_graph(configuration: 'Configuration') -> dict[str, set[str]]:
    """Build the dependency graph of locals and resources.

    Nodes are `local.<name>` and resource addresses, in declaration
    order; edges come from static references and `depends_on`.
    """
    graph: dict[str, set[str]] = {}

    for name, value in configuration.locals.items():
        references = {
            traversal
            for expression in iter_expressions(value)
            for traversal in expression.references()
        }
        graph[f'local.{name}'] = _targets(configuration, references)

    for address, resource in configuration.resources.items():
        references = {
            traversal
            for expression in (*resource.attribute_expressions(), *resource.condition_expressions())
            for traversal in expression.references()
        }
        graph[address] = _targets(configuration, references) | set(resource.depends_on)

    return graph


def dependency_order(configuration: 'Configuration') -> list[str]:
    """Order locals and resources so dependencies come first.

    Independent nodes keep their declaration order.

    Raises:
        ConfigurationError: If the dependencies form a cycle.
    """
    graph = dependency_graph(configuration)
    position = {node: index for index, node in enumerate(graph)}

    sorter = TopologicalSorter(graph)
    try:
        sorter.prepare()
    except CycleError as error:
        cycle = ' -> '.join(error.args[1])
        raise ConfigurationError(f'Dependency cycle: {cycle}') from error

    order: list[str] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=position.__getitem__)
        order.extend(ready)
        sorter.done(*ready)

    return order


class Realization:
    """Mutable bookkeeping of one plan or apply pass."""

    def __init__(self, environment: Environment) -> None:
        """Initialize an empty pass."""
        self.environment = environment
        self.failed: set[str] = set()
        self.blocked: set[str] = set()
        self.violations: list[ConditionViolation] = []
        self.outputs: dict[str, Any] = {}

    def bind_resource(self, address: str, attributes: 'Mapping[str, Any]') -> None:
        """Expose resource attributes as `<type>.<name>`."""
        resource_type, name = address.split('.', 1)
        self.environment = self.environment.merge(resource_type, {name: attributes})

    def fail(self, identifier: str, violations: 'Iterable[ConditionViolation]') -> None:
        """Record a failed entity."""
        self.failed.add(identifier)
        self.violations.extend(violations)


class TestRunEngine:
    """Executes test runs against one configuration.

    Attributes:
        configuration: Configuration under test.
        variables: Suite variables shared by all runs.
        settings: Runner settings.
        state: Resource state by address, updated by apply and destroy.
        run_outputs: Outputs of completed apply runs by run name.
    """

    __test__ = False

    def __init__(self, configuration: 'Configuration', *,  # noqa: PLR0913
                 variables: 'Mapping[str, Any] | None' = None,
                 providers: 'Mapping[str, Provider] | None' = None,
                 factories: 'Mapping[str, ProviderFactory] | None' = None,
                 functions: 'FunctionTable | None' = None,
                 settings: RunnerSettings | None = None) -> None:
        """Initialize an engine.

        Args:
            configuration: Configuration under test.
            variables: Suite variables shared by all runs.
            providers: Ready provider instances by name, used in place of
                factories, mostly by tests.
            factories: Provider factories by name; the `memory` provider
                is always available.
            functions: Function table of expressions, builtins if omitted.
            settings: Runner settings, read from the environment if omitted.
        """
        self.configuration = configuration
        self.variables = dict(variables or {})
        self.settings = settings or RunnerSettings()
        self.functions = functions

        self.state: dict[str, ResourceInstance] = {}
        self.run_outputs: dict[str, dict[str, Any]] = {}

        from pytest_checkrun.builtins.providers import memory  # noqa: PLC0415

        self._providers = dict(providers or {})
        self._factories: 'dict[str, ProviderFactory]' = {'memory': memory, **(factories or {})}
        self._gateways: dict[str, ProviderGateway] | None = None
        self._aborted = False

        self.conditions = ConditionEngine()

    @property
    def gateways(self) -> dict[str, ProviderGateway]:
        """Gateways of every provider the configuration selects.

        Raises:
            ConfigurationError: If a selected provider is not registered.
        """
        if self._gateways is not None:
            return self._gateways

        configuration = self.configuration
        names = {
            configuration.provider,
            *(resource.provider for resource in configuration.resources.values()),
            *(
                lookup.provider
                for check in configuration.checks.values()
                for lookup in check.data.values()
            ),
        }

        gateways = {}
        for name in sorted(name for name in names if name):
            if name in self._providers:
                provider = self._providers[name]
            elif name in self._factories:
                provider = self._factories[name].build(configuration.providers.get(name))
            else:
                raise ConfigurationError(f'Provider {name!r} is not registered')

            gateways[name] = ProviderGateway(
                name,
                provider,
                timeout=self.settings.timeout,
                max_workers=self.settings.max_workers,
            )

        self._gateways = gateways

        return gateways

    def gateway(self, name: str | None) -> ProviderGateway:
        """Gateway of a provider, the configuration default if None."""
        return self.gateways[name or self.configuration.provider]

    def execute(self, runs: 'Sequence[TestRun]',
                global_variables: 'Mapping[str, Any] | None' = None) -> list[RunResult]:
        """Execute runs in order.

        Args:
            runs: Runs in file order.
            global_variables: Suite variables, replacing those the engine
                was created with.

        Returns:
            One result per run, in the same order.
        """
        if global_variables is not None:
            self.variables = dict(global_variables)

        return [self.execute_run(run) for run in runs]

    def execute_run(self, run: 'TestRun') -> RunResult:
        """Execute a single run.

        Configuration, evaluation and provider errors end the run with
        status `error`; in strict mode every later run is `skipped`.
        """
        log = logger.bind(run=run.name, command=run.command)

        if self._aborted:
            log.info('run_skipped')
            return RunResult(name=run.name, command=run.command, status=RunStatus.SKIPPED)

        log.info('run_started')

        try:
            result = self._execute(run)

        except (ConfigurationError, EvaluationError, ExternalError) as error:
            if self.settings.strict:
                self._aborted = True
            log.error('run_error', error=error.message)
            return RunResult(
                name=run.name,
                command=run.command,
                status=RunStatus.ERROR,
                error=str(error.with_context(run_name=run.name)),
            )

        log.info('run_finished', status=str(result.status))

        return result

    def _execute(self, run: 'TestRun') -> RunResult:
        """Execute a run, raising fatal errors."""
        values = self.merge_variables(run)

        validation = ValidationEngine(
            constant_locals(self.configuration, self.functions),
            functions=self.functions,
            max_workers=self.settings.max_workers,
        )
        accepted, validation_failures = validation.validate_all(self.configuration.variables, values)

        failed = {failure.identifier for failure in validation_failures}
        unknown: set[str] = set()
        checks = {}
        assertions: tuple[AssertionFailure, ...] = ()
        violations: tuple[ConditionViolation, ...] = ()
        outputs: dict[str, Any] = {}

        if not validation_failures:
            if run.command == 'destroy':
                self.destroy()
                environment = self._environment(accepted)
            else:
                realization = self.realize(accepted, apply=run.command == 'apply')
                environment = realization.environment
                failed |= realization.failed
                violations = tuple(realization.violations)
                outputs = realization.outputs

                engine = CheckEngine(
                    self.gateways,
                    default_provider=self.configuration.provider,
                    max_workers=self.settings.max_workers,
                )
                checks = engine.run_checks(self.configuration.checks.values(), environment)
                failed |= {result.identifier for result in checks.values() if result.status is CheckStatus.FAIL}
                unknown = {result.identifier for result in checks.values() if result.status is CheckStatus.UNKNOWN}

            assertions = self.assert_run(run, environment.bind(
                output=outputs,
                check={name: {'status': str(result.status)} for name, result in checks.items()},
            ))

        reconciliation = reconcile(run.expect_failures, failed, unknown)
        status = RunStatus.FAIL if assertions else reconciliation.status

        if run.command == 'apply':
            self.run_outputs[run.name] = normalize(outputs)

        return RunResult(
            name=run.name,
            command=run.command,
            status=status,
            diagnostics=reconciliation.diagnostics,
            unexpected=reconciliation.unexpected,
            missing=reconciliation.missing,
            validation_failures=validation_failures,
            violations=violations,
            checks=checks,
            assertions=assertions,
            outputs=self._report_outputs(outputs) if run.command == 'apply' else {},
        )

    def merge_variables(self, run: 'TestRun') -> dict[str, Any]:
        """Merge suite variables with run overrides and resolve them.

        Deferred values are evaluated against `run.<name>.<output>` of
        completed apply runs.

        Raises:
            ConfigurationError: If a value can not be resolved.
        """
        merged = {**self.variables, **run.variables}
        environment = Environment({'run': self.run_outputs}, functions=self.functions)

        try:
            values = environment.resolve(merged)
        except EvaluationError as error:
            raise ConfigurationError(f'Invalid variable value: {error.message}') from error
        except TypeError as error:
            raise ConfigurationError(f'Invalid variable value: {error}') from error

        if not is_known(values):
            raise ConfigurationError('Variable values must be known before the run starts')

        return values

    def _environment(self, values: 'Mapping[str, Any]') -> Environment:
        """Base environment of a run."""
        return Environment({'var': values, 'local': {}}, functions=self.functions)

    def realize(self, values: 'Mapping[str, Any]', *, apply: bool) -> Realization:
        """Plan or apply locals, resources and outputs.

        Args:
            values: Accepted variable values.
            apply: Whether to perform side effects.

        Returns:
            The final environment and the failures of the pass.

        Raises:
            ConfigurationError: If an expression can not be evaluated or
                the dependencies form a cycle.
            ExternalError: If a provider call fails.
        """
        realization = Realization(self._environment(values))
        graph = dependency_graph(self.configuration)

        for node in dependency_order(self.configuration):
            blocked = bool(graph[node] & realization.blocked)

            if node.startswith('local.'):
                name = node.removeprefix('local.')
                if blocked:
                    realization.blocked.add(node)
                    value = UNKNOWN
                else:
                    value = self._resolve(self.configuration.locals[name], realization.environment, node)
                realization.environment = realization.environment.merge('local', {name: value})
                continue

            resource = self.configuration.resources[node]
            if blocked:
                logger.info('resource_blocked', address=node)
                realization.blocked.add(node)
                realization.bind_resource(node, Pending())
                continue

            self._realize_resource(resource, realization, apply=apply)

        self._realize_outputs(realization, apply=apply)

        return realization

    def _resolve(self, value: Any, environment: Environment, where: str) -> Any:  # noqa: ANN401
        """Resolve a deferred value; unknown parts become `UNKNOWN`."""
        try:
            return environment.resolve(value)
        except UnknownValueError:
            return UNKNOWN
        except EvaluationError as error:
            raise ConfigurationError(
                f'Can not evaluate {where}: {error.message}',
                context=error.context,
            ).with_context(block=where) from error
        except TypeError as error:
            raise ConfigurationError(
                f'Can not evaluate {where}: {error}',
                context=ErrorContext(block=where),
            ) from error

    def _realize_resource(self, resource: 'Resource', realization: Realization, *, apply: bool) -> None:
        """Plan one resource and, when applying, realize it."""
        address = resource.address
        environment = realization.environment

        attributes = {
            key: self._resolve(value, environment, f'{address}.{key}')
            for key, value in resource.attributes.items()
        }

        current = self.state.get(address) or ResourceInstance(address=address)
        instance = current.advance(Lifecycle.PLANNED, attributes=attributes)
        planned = Pending({**(current.attributes if current.realized else {}), **attributes})

        pre = self.conditions.evaluate(address, 'precondition', resource.precondition, environment)
        if pre.status is ConditionStatus.VIOLATED:
            logger.info('resource_precondition_violated', address=address)
            realization.fail(address, pre.violations)
            realization.blocked.add(address)
            realization.bind_resource(address, planned)
            if apply:
                self.state[address] = instance.advance(Lifecycle.FAILED)
            return

        if not apply:
            realization.bind_resource(address, planned)
            return

        if not is_known(attributes):
            realization.blocked.add(address)
            realization.bind_resource(address, planned)
            return

        provider = resource.provider or self.configuration.provider
        gateway = self.gateway(provider)
        instance = instance.advance(Lifecycle.APPLYING)

        if current.realized:
            realized = gateway.update(resource.type, current.resource_id, attributes)
        else:
            realized = gateway.create(resource.type, attributes)

        realized = normalize(realized)
        resource_id = realized.get('id', current.resource_id)
        instance = instance.advance(
            Lifecycle.APPLIED,
            resource_id=None if resource_id is None else str(resource_id),
            provider=provider,
            attributes=realized,
        )
        self.state[address] = instance
        realization.bind_resource(address, realized)
        logger.info('resource_applied', address=address, resource_id=instance.resource_id)

        post = self.conditions.evaluate(
            address, 'postcondition', resource.postcondition,
            realization.environment.bind(self=realized),
        )
        if post.status is ConditionStatus.VIOLATED:
            logger.info('resource_postcondition_violated', address=address)
            self.state[address] = instance.advance(Lifecycle.FAILED)
            realization.fail(address, post.violations)
            realization.blocked.add(address)

    def _realize_outputs(self, realization: Realization, *, apply: bool) -> None:
        """Evaluate outputs with their condition blocks."""
        for name, output in self.configuration.outputs.items():
            identifier = f'output.{name}'
            environment = realization.environment

            pre = self.conditions.evaluate(identifier, 'precondition', output.precondition, environment)
            if pre.status is ConditionStatus.VIOLATED:
                realization.fail(identifier, pre.violations)
                continue

            value = self._resolve(output.value, environment, identifier)
            realization.outputs[name] = value

            if not apply:
                continue

            post = self.conditions.evaluate(
                identifier, 'postcondition', output.postcondition,
                environment.bind(self=value),
            )
            if post.status is ConditionStatus.VIOLATED:
                realization.fail(identifier, post.violations)

    def assert_run(self, run: 'TestRun', environment: Environment) -> tuple[AssertionFailure, ...]:
        """Evaluate run-level assertions.

        An assertion that can not be decided counts as failed.
        """
        failures = []
        for index, assertion in enumerate(run.asserts):
            try:
                if evaluate_condition(assertion.condition, environment):
                    continue
                message = assertion.error_message.render(environment)
                unknown = False
            except EvaluationError as error:
                message = error.message
                unknown = isinstance(error, UnknownValueError)

            failures.append(AssertionFailure(
                owner=f'run.{run.name}',
                index=index,
                message=message,
                unknown=unknown,
            ))

        return tuple(failures)

    def destroy(self) -> list[str]:
        """Delete every realized resource in reverse dependency order.

        Returns:
            Addresses of the deleted resources.

        Raises:
            ExternalError: If a provider call fails.
        """
        destroyed = []
        order = [node for node in dependency_order(self.configuration) if node in self.state]
        order += [address for address in self.state if address not in order]

        for address in reversed(order):
            instance = self.state[address]
            if instance.realized:
                resource_type = address.split('.', 1)[0]
                self.gateway(instance.provider).delete(resource_type, instance.resource_id)
                destroyed.append(address)
                logger.info('resource_destroyed', address=address, resource_id=instance.resource_id)
            transition(instance.lifecycle, Lifecycle.UNPLANNED)
            del self.state[address]

        return destroyed

    def cleanup(self) -> list[str]:
        """Destroy whatever is still in state at the end of a suite.

        Provider failures are logged and leave the resource in state.
        """
        if not self.state:
            return []

        try:
            return self.destroy()
        except (ConfigurationError, ExternalError) as error:
            logger.error('cleanup_failed', error=error.message, remaining=sorted(self.state))
            return []

    def close(self) -> None:
        """Stop provider gateways."""
        for gateway in (self._gateways or {}).values():
            gateway.close()
        self._gateways = None

    def _report_outputs(self, outputs: 'Mapping[str, Any]') -> dict[str, Any]:
        """Outputs as reported, with sensitive and unknown values hidden."""
        reported = {}
        for name, value in outputs.items():
            if self.configuration.outputs[name].sensitive:
                reported[name] = SENSITIVE
            elif not is_known(value):
                reported[name] = NOT_APPLIED
            else:
                reported[name] = normalize(value)

        return reported
