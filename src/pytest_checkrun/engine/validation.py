"""Validation block engine.

Validates candidate variable values: first against the declared type,
then against every validation rule in declaration order. All rules run
even after a failure, so every problem of a value is reported at once.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import structlog

from pytest_checkrun.context import Environment
from pytest_checkrun.errors import ConfigurationError, EvaluationError
from pytest_checkrun.expressions import evaluate_condition
from pytest_checkrun.values import normalize

from .results import ValidationFailure

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pytest_checkrun.expressions import FunctionTable
    from pytest_checkrun.schema import Configuration, Variable

logger = structlog.get_logger(__name__)


def constant_locals(configuration: 'Configuration',
                    functions: 'FunctionTable | None' = None) -> dict[str, Any]:
    """Evaluate locals that depend on no variable and no resource.

    These are the shared lookup tables validation rules may read.
    Locals referencing other constant locals are resolved as well.
    """
    pending = dict(configuration.locals)
    resolved: dict[str, Any] = {}

    while pending:
        progress = False
        for name, value in list(pending.items()):
            environment = Environment({'local': resolved}, functions=functions)
            try:
                resolved[name] = environment.resolve(value)
            except (EvaluationError, TypeError):
                continue
            del pending[name]
            progress = True

        if not progress:
            break

    return resolved


class ValidationEngine:
    """Runs validation rules of variables.

    Attributes:
        locals: Constant local values visible to rules.
        functions: Function table of rule expressions.
        max_workers: Number of variables validated concurrently.
    """

    def __init__(self, locals_: 'Mapping[str, Any] | None' = None, *,
                 functions: 'FunctionTable | None' = None,
                 max_workers: int = 4) -> None:
        """Initialize a validation engine."""
        self.locals = dict(locals_ or {})
        self.functions = functions
        self.max_workers = max_workers

    def validate(self, variable: 'Variable', value: Any) -> tuple[ValidationFailure, ...]:  # noqa: ANN401
        """Validate one candidate value.

        Args:
            variable: Variable declaration.
            value: Candidate value, before type conversion.

        Returns:
            Failures in rule declaration order, empty if the value is
            accepted. A type mismatch yields a single `type` failure and
            no rule is evaluated.
        """
        try:
            value = variable.convert(value)
        except ValueError as error:
            return (ValidationFailure(variable=variable.name, rule='type', message=str(error)),)

        return self._run_rules(variable, value)

    def _run_rules(self, variable: 'Variable', value: Any) -> tuple[ValidationFailure, ...]:  # noqa: ANN401
        environment = Environment(
            {'var': {variable.name: value}, 'local': self.locals},
            functions=self.functions,
        )

        failures = []
        for index, rule in enumerate(variable.validation):
            name = variable.rule_name(index)
            try:
                accepted = evaluate_condition(rule.condition, environment)
            except EvaluationError as error:
                logger.debug('validation_rule_error', variable=variable.name, rule=name, error=error.message)
                accepted = False

            if not accepted:
                failures.append(ValidationFailure(
                    variable=variable.name,
                    rule=name,
                    message=rule.error_message.render(environment),
                ))

        return tuple(failures)

    def validate_all(self, variables: 'Mapping[str, Variable]',
                     values: 'Mapping[str, Any]') -> tuple[dict[str, Any], tuple[ValidationFailure, ...]]:
        """Resolve and validate values of all declared variables.

        A supplied value wins over the declared default. Variables are
        validated concurrently; the call returns only after every
        variable is validated.

        Args:
            variables: Declared variables by name.
            values: Supplied values by name, deferred values allowed.

        Returns:
            Converted values of accepted variables, and all failures in
            variable and rule declaration order.

        Raises:
            ConfigurationError: If a required variable has no value, or a
                supplied value is undeclared or of an unsupported type.
        """
        if undeclared := sorted(set(values) - set(variables)):
            raise ConfigurationError(f'Value for undeclared variable {undeclared[0]!r}')

        candidates: dict[str, Any] = {}
        for name, variable in variables.items():
            if name in values:
                try:
                    candidates[name] = normalize(values[name])
                except TypeError as error:
                    raise ConfigurationError(f'Invalid value for variable {name!r}: {error}') from error
            elif not variable.required:
                candidates[name] = variable.default
            else:
                raise ConfigurationError(f'No value for required variable {name!r}')

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='checkrun-validate') as pool:
            futures = {
                name: pool.submit(self.validate, variables[name], candidate)
                for name, candidate in candidates.items()
            }
            outcomes = {name: future.result() for name, future in futures.items()}

        accepted: dict[str, Any] = {}
        failures: list[ValidationFailure] = []
        for name, outcome in outcomes.items():
            if outcome:
                failures.extend(outcome)
            else:
                accepted[name] = variables[name].convert(candidates[name])

        logger.debug('validation_finished', variables=len(candidates), failures=len(failures))

        return accepted, tuple(failures)
