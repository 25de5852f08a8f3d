"""Lifecycle state machines.

Resources move through `Lifecycle` states; condition blocks of an entity
move from `unchecked` to `satisfied` or `violated`. Both are explicit
enums advanced only through their transition functions.
"""

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import Field

from pytest_checkrun.errors import StateError
from pytest_checkrun.models import SchemaModel
from pytest_checkrun.names import Address  # noqa: TC001

if TYPE_CHECKING:
    from collections.abc import Iterable


class Lifecycle(StrEnum):
    """Resource lifecycle state."""

    UNPLANNED = 'unplanned'
    PLANNED = 'planned'
    APPLYING = 'applying'
    APPLIED = 'applied'
    FAILED = 'failed'


class ConditionStatus(StrEnum):
    """Aggregate state of the condition blocks of an entity."""

    UNCHECKED = 'unchecked'
    SATISFIED = 'satisfied'
    VIOLATED = 'violated'


#: Allowed lifecycle transitions.
#: `applied` may be re-planned and re-applied by a later run, which
#: updates the existing resource instead of creating a new one.
TRANSITIONS: dict[Lifecycle, frozenset[Lifecycle]] = {
    Lifecycle.UNPLANNED: frozenset({Lifecycle.PLANNED, Lifecycle.FAILED}),
    Lifecycle.PLANNED: frozenset({Lifecycle.APPLYING, Lifecycle.FAILED, Lifecycle.PLANNED}),
    Lifecycle.APPLYING: frozenset({Lifecycle.APPLIED, Lifecycle.FAILED}),
    Lifecycle.APPLIED: frozenset({Lifecycle.PLANNED, Lifecycle.FAILED, Lifecycle.UNPLANNED}),
    Lifecycle.FAILED: frozenset({Lifecycle.PLANNED, Lifecycle.UNPLANNED}),
}


def transition(current: Lifecycle, target: Lifecycle) -> Lifecycle:
    """Validate a lifecycle transition.

    Raises:
        StateError: If the transition is not allowed.
    """
    if target not in TRANSITIONS[current]:
        raise StateError(f'Illegal lifecycle transition from {current} to {target}')

    return target


def aggregate(outcomes: 'Iterable[bool | None]') -> ConditionStatus:
    """Combine the outcomes of the condition blocks of an entity.

    Args:
        outcomes: Block outcomes, None for a block that could not be
            decided because it depends on unknown values.

    Returns:
        `violated` once any block is violated, otherwise `unchecked`
        while any block is undecided, otherwise `satisfied`.
    """
    status = ConditionStatus.SATISFIED
    for outcome in outcomes:
        if outcome is False:
            return ConditionStatus.VIOLATED
        if outcome is None:
            status = ConditionStatus.UNCHECKED

    return status


class ResourceInstance(SchemaModel):
    """Tracked state of one resource.

    Instances are immutable; `advance` returns an updated copy.
    """

    address: Address = Field(
        title='Resource address',
    )

    lifecycle: Lifecycle = Field(
        default=Lifecycle.UNPLANNED,
        title='Lifecycle state',
    )

    resource_id: str | None = Field(
        default=None,
        title='Provider id',
        description='Identifier returned by the provider on create.',
    )

    provider: str | None = Field(
        default=None,
        title='Provider name',
        description='Provider that realized the resource.',
    )

    attributes: dict[str, Any] = Field(
        default_factory=dict,
        title='Attributes',
        description='Planned or realized attributes.',
    )

    def advance(self, target: Lifecycle, **changes: Any) -> 'ResourceInstance':  # noqa: ANN401
        """Return a copy moved to another lifecycle state.

        Raises:
            StateError: If the transition is not allowed.
        """
        return self.model_copy(update={
            'lifecycle': transition(self.lifecycle, target),
            **changes,
        })

    @property
    def realized(self) -> bool:
        """Whether the provider holds the resource."""
        return self.resource_id is not None
