"""Input variable models and type constraints.

Type constraints are strings such as `string`, `list(number)` or
`map(bool)`. Candidate values are converted strictly: a string is never
accepted for a number and a number is never accepted for a string.
"""

from functools import cache
from re import compile as regexp
from typing import Any

from pydantic import (
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from pytest_checkrun.expressions import ExpressionField, TemplateField  # noqa: TC001
from pytest_checkrun.expressions.nodes import values_equal
from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Name  # noqa: TC001

_COLLECTION = regexp(r'^(?P<kind>list|set|map)\((?P<item>.+)\)$')

_PRIMITIVES: dict[str, Any] = {
    'any': Any,
    'string': StrictStr,
    'number': StrictInt | StrictFloat,
    'bool': StrictBool,
}


def build_type(constraint: str) -> Any:  # noqa: ANN401
    """Translate a type constraint into a Python type.

    Raises:
        ValueError: If the constraint is malformed.
    """
    constraint = constraint.replace(' ', '')

    if constraint in _PRIMITIVES:
        return _PRIMITIVES[constraint]

    if match := _COLLECTION.match(constraint):
        item = build_type(match.group('item'))
        if match.group('kind') == 'map':
            return dict[str, item]  # type: ignore[valid-type]
        return list[item]  # type: ignore[valid-type]

    raise ValueError(f'Unsupported type constraint {constraint!r}')


@cache
def type_adapter(constraint: str) -> TypeAdapter[Any]:
    """Build a cached strict adapter for a type constraint."""
    return TypeAdapter(build_type(constraint))


class ValidationRule(SchemaModel):
    """Validation rule attached to a variable.

    The condition may read only the variable it is attached to and
    local values.
    """

    name: Name | None = Field(
        default=None,
        title='Rule name',
        description='Name reported on failure, defaults to `<variable>[<index>]`.',
    )

    condition: ExpressionField = Field(
        title='Condition',
        examples=[
            'length(var.company_name) >= 3',
            'can(regex("^[a-zA-Z0-9]+$", var.company_name))',
        ],
    )

    error_message: TemplateField = Field(
        title='Error message',
    )


class Variable(DescribedMixin, SchemaModel):
    """Input variable declaration.

    The name is taken from the key the variable is declared under.
    A variable without a default is required.
    """

    name: Name = Field(
        title='Variable name',
    )

    type: str = Field(
        default='any',
        title='Type constraint',
        description='`any`, `string`, `number`, `bool`, `list(T)`, `set(T)` or `map(T)`.',
        examples=['string', 'list(string)', 'map(number)'],
    )

    default: Any = Field(
        default=None,
        title='Default value',
    )

    required: bool = Field(
        default=False,
        exclude=True,
        title='Required flag',
        description='Set when the declaration has no default.',
    )

    nullable: bool = Field(
        default=True,
        title='Nullable flag',
        description='Whether null is an acceptable value.',
    )

    sensitive: bool = Field(
        default=False,
        title='Sensitive flag',
        description='Hide the value in reports.',
    )

    validation: list[ValidationRule] = Field(
        default_factory=list,
        title='Validation rules',
    )

    @model_validator(mode='before')
    @classmethod
    def mark_required(cls, data: Any) -> Any:  # noqa: ANN401
        """Mark declarations without a default as required."""
        if isinstance(data, dict) and 'required' not in data:
            return {**data, 'required': 'default' not in data}
        return data

    @field_validator('type')
    @classmethod
    def check_type(cls, value: str) -> str:
        """Reject malformed type constraints."""
        build_type(value)
        return value

    def rule_name(self, index: int) -> str:
        """Name of a rule for reporting."""
        return self.validation[index].name or f'{self.name}[{index}]'

    def convert(self, value: Any) -> Any:  # noqa: ANN401
        """Convert a candidate value to the declared type.

        Raises:
            ValueError: If the value does not match the type constraint.
        """
        if value is None:
            if not self.nullable:
                raise ValueError(f'Variable {self.name!r} must not be null')
            return None

        if isinstance(value, set | frozenset | tuple):
            value = list(value)

        try:
            converted = type_adapter(self.type).validate_python(value, strict=True)
        except ValidationError as error:
            details = error.errors(include_url=False)[0]
            raise ValueError(
                f'Invalid value for variable {self.name!r} of type {self.type}: {details['msg']}',
            ) from None

        if self.type.replace(' ', '').startswith('set(') and isinstance(converted, list):
            unique: list[Any] = []
            for item in converted:
                if not any(values_equal(item, seen) for seen in unique):
                    unique.append(item)
            converted = unique

        return converted
