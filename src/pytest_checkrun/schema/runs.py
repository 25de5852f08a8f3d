"""Suite and test run models.

A suite file is a multi-document YAML stream: a `spec: suite` header
followed by one document per test run, executed in file order.
"""

from typing import Any, Literal

from pydantic import Field

from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Identifier, Name  # noqa: TC001

from .conditions import Assertion

#: Commands a test run may execute.
type Command = Literal['plan', 'apply', 'destroy']


class TestRun(DescribedMixin, SchemaModel):
    """Test run declaration."""

    __test__ = False

    name: Name = Field(
        alias='run',
        title='Run name',
        description='Name of the run, unique within a suite file.',
    )

    command: Command = Field(
        default='apply',
        title='Command',
        description=(
            '`plan` evaluates without side effects, `apply` realizes '
            'resources, `destroy` tears them down.'
        ),
    )

    variables: dict[Name, Any] = Field(
        default_factory=dict,
        title='Variable overrides',
        description=(
            'Values overriding suite variables for this run only. '
            '`!expr run.<name>.<output>` reads outputs of earlier apply runs.'
        ),
    )

    expect_failures: list[Identifier] = Field(
        default_factory=list,
        title='Expected failures',
        description=(
            'Identifiers expected to fail: `var.<name>`, `check.<name>`, '
            '`output.<name>` or a resource address.'
        ),
    )

    asserts: list[Assertion] = Field(
        default_factory=list,
        alias='assert',
        title='Run assertions',
        description=(
            'Conditions evaluated after the command. A failed assertion '
            'fails the run and can not be expected.'
        ),
    )


class Suite(DescribedMixin, SchemaModel):
    """Suite header document."""

    #: Document kind marker. Always `suite` for a suite header.
    spec: Literal['suite']

    config: str = Field(
        title='Configuration path',
        description='Path to the configuration document, relative to the suite file.',
    )

    variables: dict[Name, Any] = Field(
        default_factory=dict,
        title='Suite variables',
        description='Values for configuration variables shared by all runs.',
    )

    strict: bool | None = Field(
        default=None,
        title='Strict mode',
        description='Skip the remaining runs after a run errors.',
    )

    cleanup: bool | None = Field(
        default=None,
        title='Cleanup flag',
        description='Destroy resources left in state when the suite finishes.',
    )
