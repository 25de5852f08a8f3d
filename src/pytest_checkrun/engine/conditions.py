"""Condition block engine.

Evaluates the precondition or postcondition blocks of one entity. Every
block is evaluated, so all violations of an entity are reported together.
"""

from typing import TYPE_CHECKING, Literal, NamedTuple

import structlog

from pytest_checkrun.errors import ConfigurationError, EvaluationError, UnknownValueError
from pytest_checkrun.expressions import evaluate_condition

from .results import ConditionViolation
from .state import ConditionStatus, aggregate

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pytest_checkrun.context import Environment
    from pytest_checkrun.schema import ConditionBlock

logger = structlog.get_logger(__name__)

#: Lifecycle point a block is evaluated at.
type ConditionKind = Literal['precondition', 'postcondition']


class ConditionOutcome(NamedTuple):
    """Result of evaluating the blocks of one kind for an entity."""

    status: ConditionStatus
    violations: tuple[ConditionViolation, ...]


class ConditionEngine:
    """Evaluates condition blocks of resources and outputs."""

    def evaluate(self, owner: str, kind: ConditionKind,
                 blocks: 'Sequence[ConditionBlock]',
                 environment: 'Environment') -> ConditionOutcome:
        """Evaluate all blocks of one kind.

        A block depending on a value known only after apply stays
        undecided, which leaves the entity `unchecked`.

        Args:
            owner: Identifier of the entity owning the blocks.
            kind: Whether the blocks are preconditions or postconditions.
            blocks: Blocks in declaration order.
            environment: Environment of the entity; `self` is bound for
                postconditions.

        Returns:
            Aggregate status and the violations in declaration order.

        Raises:
            ConfigurationError: If a condition can not be evaluated for
                any reason other than an unknown value.
        """
        outcomes: list[bool | None] = []
        violations: list[ConditionViolation] = []

        for index, block in enumerate(blocks):
            try:
                satisfied: bool | None = evaluate_condition(block.condition, environment)

            except UnknownValueError:
                satisfied = None

            except EvaluationError as error:
                raise ConfigurationError(
                    f'Invalid {kind} of {owner}: {error.message}',
                    context=error.context,
                ).with_context(block=owner) from error

            outcomes.append(satisfied)
            if satisfied is False:
                violations.append(ConditionViolation(
                    owner=owner,
                    kind=kind,
                    index=index,
                    message=block.error_message.render(environment),
                ))

        status = aggregate(outcomes)
        if status is ConditionStatus.VIOLATED:
            logger.info('conditions_violated', owner=owner, kind=kind, count=len(violations))

        return ConditionOutcome(status, tuple(violations))
