"""Declarative YAML instruction definitions.

An instruction binds a YAML tag name to a constructor converting the
tagged node into a runtime value, possibly a deferred one. During parser
setup each instruction is compiled into a `BaseInstruction` model whose
instances are registered as PyYAML constructors.
"""

from collections.abc import Callable
from typing import Any, ClassVar

from pydantic import Field, create_model
from yaml import BaseLoader
from yaml.nodes import Node

from pytest_checkrun.models import SchemaModel
from pytest_checkrun.names import Name  # noqa: TC001
from pytest_checkrun.values import Deferred, RuntimeValue

#: Called by the YAML loader with the loader and the tagged node.
type InstructionRunner = Callable[[BaseLoader, Node], Deferred[RuntimeValue]]


class BaseInstruction(SchemaModel):
    """Base class for a compiled YAML instruction.

    Subclasses define the class-level `runner`.
    """

    runner: ClassVar[InstructionRunner]

    def __call__(self, loader: BaseLoader, node: Node) -> Deferred[RuntimeValue]:
        """Invoke the instruction runner as a PyYAML constructor."""
        return type(self).runner(loader, node)


class Instruction(SchemaModel):
    """Declarative instruction definition."""

    name: Name = Field(
        title='Instruction name',
        description='Symbolic name of the YAML tag, used as `!<name>`.',
    )

    constructor: InstructionRunner = Field(
        title='YAML constructor',
        description='Callable used to construct a runtime object from a YAML node.',
    )

    def build_runner(self) -> tuple[Any, InstructionRunner]:
        """Build a `ClassVar` field definition bound to the constructor."""
        return ClassVar[InstructionRunner], staticmethod(self.constructor)

    def build(self) -> type[BaseInstruction]:
        """Create a runtime instruction model."""
        return create_model(
            f'{self.name}_Instruction',
            __base__=BaseInstruction,
            runner=self.build_runner(),
        )
