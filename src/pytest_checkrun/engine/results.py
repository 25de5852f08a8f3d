"""Result records produced by the engines.

Failures of validation rules, condition blocks, checks and run-level
assertions are never raised. They are collected as these records and
reconciled against the expectations of a test run.
"""

from enum import StrEnum
from typing import Any, Literal

from pydantic import Field

from pytest_checkrun.models import SchemaModel


class CheckStatus(StrEnum):
    """Outcome of a check block."""

    PASS = 'pass'
    FAIL = 'fail'
    UNKNOWN = 'unknown'


class RunStatus(StrEnum):
    """Outcome of a test run."""

    PASS = 'pass'
    FAIL = 'fail'
    ERROR = 'error'
    SKIPPED = 'skipped'


class ValidationFailure(SchemaModel):
    """A validation rule rejected a variable value."""

    variable: str = Field(
        title='Variable name',
    )

    rule: str = Field(
        title='Rule name',
        description='Name of the rejecting rule, `type` for a type mismatch.',
    )

    message: str = Field(
        title='Error message',
    )

    @property
    def identifier(self) -> str:
        """Failure identifier of the variable."""
        return f'var.{self.variable}'


class ConditionViolation(SchemaModel):
    """A precondition or postcondition did not hold."""

    owner: str = Field(
        title='Owner identifier',
        description='Resource address or `output.<name>`.',
    )

    kind: Literal['precondition', 'postcondition'] = Field(
        title='Condition kind',
    )

    index: int = Field(
        title='Block index',
        description='Position of the block in its list.',
    )

    message: str = Field(
        title='Error message',
    )


class AssertionFailure(SchemaModel):
    """An assertion of a check or a run did not hold."""

    owner: str = Field(
        title='Owner identifier',
        description='`check.<name>` or `run.<name>`.',
    )

    index: int = Field(
        title='Assertion index',
    )

    message: str = Field(
        title='Error message',
    )

    unknown: bool = Field(
        default=False,
        title='Unknown flag',
        description='The assertion could not be decided.',
    )


class CheckResult(SchemaModel):
    """Outcome of one check block."""

    name: str = Field(
        title='Check name',
    )

    status: CheckStatus = Field(
        title='Check status',
    )

    failures: tuple[AssertionFailure, ...] = Field(
        default=(),
        title='Failed assertions',
    )

    reason: str | None = Field(
        default=None,
        title='Unknown reason',
        description='Why the check could not be decided.',
    )

    @property
    def identifier(self) -> str:
        """Failure identifier of the check."""
        return f'check.{self.name}'


class Diagnostic(SchemaModel):
    """One line of the reconciliation report."""

    identifier: str = Field(
        title='Failure identifier',
    )

    expected: bool = Field(
        title='Expected to fail',
    )

    failed: bool = Field(
        title='Actually failed',
        description='True for failed identifiers and for unknown checks.',
    )

    def as_tuple(self) -> tuple[str, bool, bool]:
        """Return the `(identifier, expected, failed)` triple."""
        return self.identifier, self.expected, self.failed


class RunResult(SchemaModel):
    """Report of one test run."""

    name: str = Field(
        title='Run name',
    )

    command: Literal['plan', 'apply', 'destroy'] = Field(
        title='Command',
    )

    status: RunStatus = Field(
        title='Run status',
    )

    diagnostics: tuple[Diagnostic, ...] = Field(
        default=(),
        title='Reconciliation diagnostics',
    )

    unexpected: tuple[str, ...] = Field(
        default=(),
        title='Unexpected failures',
    )

    missing: tuple[str, ...] = Field(
        default=(),
        title='Expected failures that did not occur',
    )

    validation_failures: tuple[ValidationFailure, ...] = Field(
        default=(),
        title='Validation failures',
    )

    violations: tuple[ConditionViolation, ...] = Field(
        default=(),
        title='Condition violations',
    )

    checks: dict[str, CheckResult] = Field(
        default_factory=dict,
        title='Check results',
    )

    assertions: tuple[AssertionFailure, ...] = Field(
        default=(),
        title='Failed run assertions',
    )

    outputs: dict[str, Any] = Field(
        default_factory=dict,
        title='Outputs',
        description='Named outputs, exported after a completed apply.',
    )

    error: str | None = Field(
        default=None,
        title='Fatal error',
    )

    @property
    def passed(self) -> bool:
        """Whether the run passed."""
        return self.status is RunStatus.PASS
