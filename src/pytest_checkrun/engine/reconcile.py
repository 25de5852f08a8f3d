"""Expected failure reconciliation."""

from typing import TYPE_CHECKING, NamedTuple

from .results import Diagnostic, RunStatus

if TYPE_CHECKING:
    from collections.abc import Iterable


class Reconciliation(NamedTuple):
    """Outcome of comparing failures against expectations."""

    status: RunStatus
    unexpected: tuple[str, ...]
    missing: tuple[str, ...]
    diagnostics: tuple[Diagnostic, ...]


def reconcile(expected: 'Iterable[str]', failed: 'Iterable[str]',
              unknown: 'Iterable[str]' = ()) -> Reconciliation:
    """Compare actual failures of a run with its expected failures.

    The run passes only when the sets match exactly. An unknown check
    satisfies an expectation naming it, but an unknown check that is not
    expected is not a failure.

    Args:
        expected: Identifiers the run declares as expected to fail.
        failed: Identifiers that actually failed.
        unknown: Identifiers of checks that could not be decided.

    Returns:
        Status, sorted unexpected and missing identifiers, and one
        diagnostic per identifier involved.
    """
    expected_set = set(expected)
    failed_set = set(failed)
    unknown_set = set(unknown) - failed_set

    unexpected = tuple(sorted(failed_set - expected_set))
    missing = tuple(sorted(expected_set - failed_set - unknown_set))

    diagnostics = tuple(
        Diagnostic(
            identifier=identifier,
            expected=identifier in expected_set,
            failed=identifier in failed_set or identifier in unknown_set,
        )
        for identifier in sorted(expected_set | failed_set | (unknown_set & expected_set))
    )

    status = RunStatus.FAIL if unexpected or missing else RunStatus.PASS

    return Reconciliation(status, unexpected, missing, diagnostics)
