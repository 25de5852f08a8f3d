"""Condition block models shared by resources, outputs and checks."""

from pydantic import Field

from pytest_checkrun.expressions import ExpressionField, TemplateField  # noqa: TC001
from pytest_checkrun.models import SchemaModel


class ConditionBlock(SchemaModel):
    """Boolean gate with an error message.

    The kind of a block, precondition or postcondition, is given by the
    list it is declared in.
    """

    condition: ExpressionField = Field(
        title='Condition',
        description='Expression that must evaluate to true.',
        examples=[
            'contains(local.allowed_types, var.instance_type)',
            'self.instance_state == "running"',
        ],
    )

    error_message: TemplateField = Field(
        title='Error message',
        description=(
            'Message reported when the condition is false. '
            'May interpolate values of the block environment with `${...}`.'
        ),
    )


class Assertion(ConditionBlock):
    """Assertion of a check block or a test run."""
