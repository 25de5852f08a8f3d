"""Check block engine.

Checks observe the final state of a run: each one performs its data
lookups, then evaluates its assertions. Checks are independent of each
other and of the resource lifecycle. They never raise and never gate
anything; a check that can not be decided is reported as `unknown`.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import structlog

from pytest_checkrun.errors import ConfigurationError, EvaluationError, ExternalError, UnknownValueError
from pytest_checkrun.expressions import evaluate_condition
from pytest_checkrun.values import is_known

from .results import AssertionFailure, CheckResult, CheckStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from pytest_checkrun.context import Environment
    from pytest_checkrun.schema import Check

    from .provider import ProviderGateway

logger = structlog.get_logger(__name__)


class CheckEngine:
    """Runs check blocks against a final environment.

    Attributes:
        gateways: Provider gateways by provider name.
        default_provider: Provider of lookups that do not select one.
        max_workers: Number of checks run concurrently.
    """

    def __init__(self, gateways: 'Mapping[str, ProviderGateway]', *,
                 default_provider: str = 'memory',
                 max_workers: int = 4) -> None:
        """Initialize a check engine."""
        self.gateways = gateways
        self.default_provider = default_provider
        self.max_workers = max_workers

    def run_checks(self, checks: 'Iterable[Check]',
                   environment: 'Environment') -> dict[str, CheckResult]:
        """Run checks concurrently and wait for all of them.

        Args:
            checks: Checks in declaration order.
            environment: Final environment of the run.

        Returns:
            Results by check name, in declaration order.
        """
        checks = list(checks)
        if not checks:
            return {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='checkrun-check') as pool:
            results = list(pool.map(lambda check: self.run_check(check, environment), checks))

        return {result.name: result for result in results}

    def run_check(self, check: 'Check', environment: 'Environment') -> CheckResult:
        """Run a single check in isolation."""
        log = logger.bind(check=check.name)

        try:
            data = self._lookup(check, environment)

        except UnknownValueError as error:
            log.info('check_unknown', reason=error.message)
            return CheckResult(name=check.name, status=CheckStatus.UNKNOWN, reason=error.message)

        except (ConfigurationError, EvaluationError, ExternalError) as error:
            log.warning('check_lookup_failed', error=error.message)
            return CheckResult(name=check.name, status=CheckStatus.UNKNOWN, reason=error.message)

        result = self._assert(check, environment.bind(data=data))
        log.info('check_finished', status=str(result.status))

        return result

    def _lookup(self, check: 'Check', environment: 'Environment') -> dict[str, Any]:
        """Perform the data lookups of a check in declaration order.

        Raises:
            UnknownValueError: If a query depends on unknown values.
            ConfigurationError: If the lookup provider is not registered.
            ExternalError: If the provider fails after all retries.
        """
        data: dict[str, Any] = {}

        for name, lookup in check.data.items():
            query = environment.bind(data=data).resolve(lookup.query)
            if not is_known(query):
                raise UnknownValueError(f'Query of data.{name} is known only after apply')

            provider = lookup.provider or self.default_provider
            gateway = self.gateways.get(provider)
            if gateway is None:
                raise ConfigurationError(f'Provider {provider!r} is not registered')

            data[name] = gateway.query(
                lookup.type,
                query,
                attempts=lookup.retry.attempts,
                delay=lookup.retry.delay,
            )

        return data

    def _assert(self, check: 'Check', environment: 'Environment') -> CheckResult:
        """Evaluate every assertion of a check."""
        failures: list[AssertionFailure] = []
        reason: str | None = None

        for index, assertion in enumerate(check.asserts):
            try:
                if evaluate_condition(assertion.condition, environment):
                    continue
                failures.append(AssertionFailure(
                    owner=f'check.{check.name}',
                    index=index,
                    message=assertion.error_message.render(environment),
                ))

            except EvaluationError as error:
                reason = reason or error.message
                failures.append(AssertionFailure(
                    owner=f'check.{check.name}',
                    index=index,
                    message=error.message,
                    unknown=True,
                ))

        if any(not failure.unknown for failure in failures):
            status = CheckStatus.FAIL
        elif failures:
            status = CheckStatus.UNKNOWN
        else:
            status = CheckStatus.PASS

        return CheckResult(
            name=check.name,
            status=status,
            failures=tuple(failures),
            reason=reason if status is CheckStatus.UNKNOWN else None,
        )
