"""Configuration document model.

A configuration declares variables, locals, resources, outputs and
checks. Mapping keys name the declared objects; the model copies each
key into the object it declares.

Static references of every expression are checked once the document is
loaded, so typos in symbol names are reported with their location
instead of failing a run.
"""

from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field, model_validator

from pytest_checkrun.errors import ErrorContext, SchemaError
from pytest_checkrun.expressions import iter_expressions
from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Address, Name, is_resource_type  # noqa: TC001

from .checks import Check
from .resources import Attributes, Output, Resource
from .variables import Variable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pytest_checkrun.expressions import Expression, Traversal

#: Keyed sections and the field receiving the key.
_KEYED_SECTIONS = {
    'variables': 'name',
    'resources': 'address',
    'outputs': 'name',
    'checks': 'name',
}


class Configuration(DescribedMixin, SchemaModel):
    """Configuration document."""

    #: Optional document kind marker.
    spec: Literal['config'] | None = None

    provider: Name = Field(
        default='memory',
        title='Default provider',
        description='Provider used by resources and lookups that do not select one.',
    )

    providers: dict[Name, dict[str, Any]] = Field(
        default_factory=dict,
        title='Provider options',
        description='Options passed to provider factories, by provider name.',
    )

    variables: dict[Name, Variable] = Field(
        default_factory=dict,
        title='Variables',
    )

    locals: Attributes = Field(
        default_factory=dict,
        title='Local values',
        description='Named values computed from variables, other locals and resources.',
    )

    resources: dict[Address, Resource] = Field(
        default_factory=dict,
        title='Resources',
    )

    outputs: dict[Name, Output] = Field(
        default_factory=dict,
        title='Outputs',
    )

    checks: dict[Name, Check] = Field(
        default_factory=dict,
        title='Checks',
    )

    @model_validator(mode='before')
    @classmethod
    def inject_names(cls, data: Any) -> Any:  # noqa: ANN401
        """Copy mapping keys into the objects they declare."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        for section, field in _KEYED_SECTIONS.items():
            items = data.get(section)
            if isinstance(items, dict):
                data[section] = {
                    key: {field: key, **value} if isinstance(value, dict) else value
                    for key, value in items.items()
                }

        return data

    def check_references(self) -> None:
        """Check static references of all expressions.

        Raises:
            SchemaError: If an expression reads an undeclared symbol or a
                symbol that is not available where it is used.
        """
        constant = self.constant_local_names()

        for variable in self.variables.values():
            for index, rule in enumerate(variable.validation):
                where = f'var.{variable.name} validation {variable.rule_name(index)}'
                for traversal in _references(rule.condition, rule.error_message):
                    if traversal[0] == 'var' and traversal[1:2] == (variable.name,):
                        continue
                    if traversal[0] != 'local':
                        raise SchemaError(
                            f'Validation rule may only reference var.{variable.name} '
                            f'and local values, got {_dotted(traversal)}',
                            context=ErrorContext(block=where),
                        )
                    self._check_reference(traversal, where)
                    if traversal[1] not in constant:
                        raise SchemaError(
                            'Validation rule may only reference constant local values, '
                            f'local.{traversal[1]} depends on variables or resources',
                            context=ErrorContext(block=where),
                        )

        for name in self.locals:
            where = f'local.{name}'
            for traversal in _references(*iter_expressions(self.locals[name])):
                self._check_reference(traversal, where, resources=True)

        for resource in self.resources.values():
            for traversal in _references(*resource.attribute_expressions()):
                self._check_reference(traversal, resource.address, resources=True)
            self._check_conditions(resource, resource.address)
            for dependency in resource.depends_on:
                if dependency not in self.resources:
                    raise SchemaError(
                        f'Dependency on undeclared resource {dependency}',
                        context=ErrorContext(block=resource.address),
                    )

        for output in self.outputs.values():
            where = f'output.{output.name}'
            for traversal in output.value.references():
                self._check_reference(traversal, where, resources=True)
            self._check_conditions(output, where)

        for check in self.checks.values():
            where = f'check.{check.name}'
            lookups: set[str] = set()
            for name, lookup in check.data.items():
                for traversal in _references(*iter_expressions(lookup.query)):
                    self._check_reference(traversal, where, resources=True, lookups=lookups)
                lookups.add(name)
            for assertion in check.asserts:
                for traversal in _references(assertion.condition, assertion.error_message):
                    self._check_reference(traversal, where, resources=True, lookups=lookups)

    def constant_local_names(self) -> set[str]:
        """Names of locals that depend on no variable and no resource.

        Only these locals are bound while validation rules run.
        """
        references = {
            name: set(_references(*iter_expressions(value)))
            for name, value in self.locals.items()
        }

        constant: set[str] = set()
        changed = True
        while changed:
            changed = False
            for name, traversals in references.items():
                if name not in constant and all(
                    traversal[0] == 'local' and len(traversal) > 1 and traversal[1] in constant
                    for traversal in traversals
                ):
                    constant.add(name)
                    changed = True

        return constant

    def _check_conditions(self, owner: Resource | Output, where: str) -> None:
        """Check references of precondition and postcondition blocks."""
        for block in owner.precondition:
            for traversal in _references(block.condition, block.error_message):
                self._check_reference(traversal, where, resources=True)

        for block in owner.postcondition:
            for traversal in _references(block.condition, block.error_message):
                self._check_reference(traversal, where, resources=True, self_=True)

    def _check_reference(self, traversal: 'Traversal', where: str, *,  # noqa: C901
                         resources: bool = False, self_: bool = False,
                         lookups: 'Iterable[str] | None' = None) -> None:
        """Check one static traversal.

        Raises:
            SchemaError: If the traversal does not resolve.
        """
        root, *path = traversal
        declared: 'Iterable[str]'

        match root:
            case 'self' if self_:
                return
            case 'var':
                declared = self.variables
            case 'local':
                declared = self.locals
            case 'data' if lookups is not None:
                declared = lookups
            case _ if resources and is_resource_type(root):
                declared = {
                    resource.name
                    for resource in self.resources.values()
                    if resource.type == root
                }
            case _:
                raise SchemaError(
                    f'Reference to {root!r} is not available here',
                    context=ErrorContext(block=where),
                )

        if not path:
            raise SchemaError(
                f'Incomplete reference {root!r}',
                context=ErrorContext(block=where),
            )

        if path[0] not in declared:
            raise SchemaError(
                f'Reference to undeclared {root}.{path[0]}',
                context=ErrorContext(block=where),
            )


def _references(*expressions: 'Expression') -> 'Iterable[Traversal]':
    """Collect static traversals of several expressions."""
    return sorted({
        traversal
        for expression in expressions
        for traversal in expression.references()
    })


def _dotted(traversal: 'Traversal') -> str:
    """Render a traversal for messages."""
    return '.'.join(traversal)
