"""Check block models."""

from pydantic import Field

from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Name  # noqa: TC001

from .conditions import Assertion
from .resources import Attributes


class RetryPolicy(SchemaModel):
    """Bounded retry with a fixed delay."""

    attempts: int = Field(
        default=1,
        ge=1,
        title='Attempts',
        description='Total number of attempts, including the first one.',
    )

    delay: float = Field(
        default=0.0,
        ge=0,
        title='Delay',
        description='Seconds to wait between attempts.',
    )


class DataLookup(SchemaModel):
    """Read-only data lookup embedded in a check."""

    type: Name = Field(
        title='Data type',
        description='Kind of data the provider is asked for, usually a resource type.',
        examples=['aws_instance', 'aws_subnets'],
    )

    query: Attributes = Field(
        default_factory=dict,
        title='Query',
        description='Attributes the returned records must match.',
    )

    provider: Name | None = Field(
        default=None,
        title='Provider name',
    )

    retry: RetryPolicy = Field(
        default_factory=RetryPolicy,
        title='Retry policy',
    )


class Check(DescribedMixin, SchemaModel):
    """Check block.

    The name is taken from the key the check is declared under. Lookups
    run in declaration order, so a query may read earlier lookups.
    """

    name: Name = Field(
        title='Check name',
    )

    data: dict[Name, DataLookup] = Field(
        default_factory=dict,
        title='Data lookups',
    )

    asserts: list[Assertion] = Field(
        alias='assert',
        min_length=1,
        title='Assertions',
    )
