"""Names primitive types and validation rules.

This module defines identifier patterns and strongly-typed aliases used by
the documents and the engines: block names, resource addresses, and the
failure identifiers reported by runs and listed in `expect_failures`.
"""

from re import ASCII
from re import compile as regexp
from typing import Annotated

from pydantic import Field

#: Base pattern for all identifiers.
#: Identifiers must start with a letter and may contain letters, digits,
#: underscores, or dashes.
_NAME_PATTERN = r'[a-zA-Z][\w-]*'

#: Prefixes reserved for non-resource identifiers.
RESERVED_PREFIXES = frozenset({
    'var',
    'local',
    'data',
    'output',
    'check',
    'run',
    'self',
})

NAME_PATTERN = regexp(
    rf'^(?P<name>{_NAME_PATTERN})$',
    flags=ASCII,
)

#: Resource addresses are `<type>.<name>`, for example `aws_instance.web`.
ADDRESS_PATTERN = regexp(
    rf'^(?P<type>{_NAME_PATTERN})\.(?P<name>{_NAME_PATTERN})$',
    flags=ASCII,
)

#: Failure identifiers are either `<kind>.<name>` or a resource address.
IDENTIFIER_PATTERN = ADDRESS_PATTERN


Name = Annotated[
    str, Field(
        pattern=rf'^{_NAME_PATTERN}$',
        title='Identifier',
        description=(
            'Name of a variable, local, output, check, run, or data lookup. '
            'Identifiers must start with a letter and may contain '
            'letters, digits, underscores, or dashes. '
            'Names are restricted to ASCII characters.'
        ),
        examples=[
            'company_name',
            'web_instance_id',
            'ec2_power_status',
        ],
    ),
]

Address = Annotated[
    str, Field(
        pattern=rf'^{_NAME_PATTERN}\.{_NAME_PATTERN}$',
        title='Resource address',
        description=(
            'Address of a resource made of its type and name '
            'joined with a dot.'
        ),
        examples=[
            'aws_instance.web',
            'aws_vpc.main',
        ],
    ),
]

Identifier = Annotated[
    str, Field(
        pattern=rf'^{_NAME_PATTERN}\.{_NAME_PATTERN}$',
        title='Failure identifier',
        description=(
            'Identifier of a declared object whose failure is reported: '
            '`var.<name>`, `check.<name>`, `output.<name>`, or a resource '
            'address.'
        ),
        examples=[
            'var.company_name',
            'check.subnet_count',
            'output.web_instance_id',
            'aws_instance.web',
        ],
    ),
]


def variable_id(name: str) -> str:
    """Identifier of a variable."""
    return f'var.{name}'


def output_id(name: str) -> str:
    """Identifier of an output."""
    return f'output.{name}'


def check_id(name: str) -> str:
    """Identifier of a check block."""
    return f'check.{name}'


def is_resource_type(name: str) -> bool:
    """Check that a name can be used as a resource type."""
    return name not in RESERVED_PREFIXES and NAME_PATTERN.match(name) is not None
