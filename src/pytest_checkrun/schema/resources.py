"""Resource and output models."""

from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BeforeValidator, Field

from pytest_checkrun.expressions import ExpressionField, compile_templates, iter_expressions
from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Address, Name  # noqa: TC001

from .conditions import ConditionBlock

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pytest_checkrun.expressions import Expression

#: Attribute mapping whose strings may contain `${...}` interpolations.
Attributes = Annotated[
    dict[str, Any],
    BeforeValidator(compile_templates),
]


class ConditionsMixin(SchemaModel):
    """Precondition and postcondition lists of an entity."""

    precondition: list[ConditionBlock] = Field(
        default_factory=list,
        title='Preconditions',
        description=(
            'Conditions evaluated before the entity is realized. '
            'A violated precondition prevents the side effect.'
        ),
    )

    postcondition: list[ConditionBlock] = Field(
        default_factory=list,
        title='Postconditions',
        description=(
            'Conditions evaluated once the value is known, with `self` '
            'bound to it. A violation marks the entity failed without '
            'undoing the side effect.'
        ),
    )

    def condition_expressions(self) -> 'Iterator[Expression]':
        """Iterate over expressions of all condition blocks."""
        for block in (*self.precondition, *self.postcondition):
            yield block.condition
            yield block.error_message


class Resource(ConditionsMixin, DescribedMixin, SchemaModel):
    """Resource declaration.

    The address is taken from the key the resource is declared under.
    """

    address: Address = Field(
        title='Resource address',
    )

    attributes: Attributes = Field(
        default_factory=dict,
        title='Attributes',
        description=(
            'Configured attributes passed to the provider. Values may be '
            'literals, templates with `${...}` or `!expr` expressions.'
        ),
    )

    depends_on: list[Address] = Field(
        default_factory=list,
        title='Explicit dependencies',
        description='Resources realized before this one in addition to referenced ones.',
    )

    provider: Name | None = Field(
        default=None,
        title='Provider name',
        description='Provider realizing the resource, defaults to the configuration provider.',
    )

    @property
    def type(self) -> str:
        """Type part of the address."""
        return self.address.split('.', 1)[0]

    @property
    def name(self) -> str:
        """Name part of the address."""
        return self.address.split('.', 1)[1]

    def attribute_expressions(self) -> 'Iterator[Expression]':
        """Iterate over expressions nested in the attributes."""
        yield from iter_expressions(self.attributes)


class Output(ConditionsMixin, DescribedMixin, SchemaModel):
    """Named output declaration.

    The name is taken from the key the output is declared under.
    """

    name: Name = Field(
        title='Output name',
    )

    value: ExpressionField = Field(
        title='Value expression',
        examples=['aws_instance.web.id', 'aws_subnet.private[*].id'],
    )

    sensitive: bool = Field(
        default=False,
        title='Sensitive flag',
        description='Hide the value in reports.',
    )
