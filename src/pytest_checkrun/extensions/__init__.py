"""Declarative plugin definition.

A plugin contributes expression functions, YAML instructions and
provider factories. It is exposed through the `checkrun_plugins` entry
point group and registered by the document parser on startup.
"""

from pydantic import Field

from pytest_checkrun.expressions.functions import Function
from pytest_checkrun.models import SchemaModel
from pytest_checkrun.names import Name  # noqa: TC001

from .instructions import BaseInstruction, Instruction, InstructionRunner
from .providers import ProviderBuilder, ProviderFactory

__all__ = (
    'BaseInstruction',
    'Function',
    'Instruction',
    'InstructionRunner',
    'Plugin',
    'ProviderBuilder',
    'ProviderFactory',
)


class Plugin(SchemaModel):
    """Declarative container for plugin extensions.

    All contained elements are optional, so a plugin may provide only
    functions or only a provider.
    """

    name: Name = Field(
        title='Plugin namespace',
        description=(
            'Logical namespace of the plugin. '
            'Used for identification and diagnostics.'
        ),
    )

    version: int = Field(
        default=1,
        title='Plugin contract version',
        description=(
            'Version of the plugin contract. '
            'This is not a semantic version of the plugin implementation.'
        ),
    )

    functions: list[Function] = Field(
        default_factory=list,
        title='Functions',
        description='Expression functions provided by the plugin.',
    )

    instructions: list[Instruction] = Field(
        default_factory=list,
        title='Instructions',
        description='Custom YAML instructions provided by the plugin.',
    )

    providers: list[ProviderFactory] = Field(
        default_factory=list,
        title='Providers',
        description='Provider factories selectable by configuration documents.',
    )
