"""Built-in YAML instructions.

- `!expr <expression>` produces a deferred expression evaluated by the
  engines against the environment of the enclosing block.
- `!env <NAME>` reads an environment variable while loading.
- `!file <path>` reads a text file while loading.
"""

from os import environ
from pathlib import Path
from typing import TYPE_CHECKING

from yaml.error import MarkedYAMLError

from pytest_checkrun.errors import CheckrunError, ConfigurationError, ExpressionSyntaxError, SchemaError
from pytest_checkrun.expressions import Expression
from pytest_checkrun.extensions import Instruction

if TYPE_CHECKING:
    from yaml import BaseLoader
    from yaml.nodes import ScalarNode


def expression_constructor(loader: 'BaseLoader', node: 'ScalarNode') -> Expression:
    """Construct a deferred expression.

    Raises:
        SchemaError: If the node is not a scalar or the expression
            has invalid syntax.
    """
    try:
        return Expression(loader.construct_scalar(node))

    except MarkedYAMLError as base:
        raise SchemaError.from_yaml_error(base) from base

    except ExpressionSyntaxError as base:
        raise SchemaError.from_yaml_node(base.message, node, base) from base

    except Exception as base:
        raise SchemaError.from_yaml_node('Invalid expression', node) from base


def env_constructor(loader: 'BaseLoader', node: 'ScalarNode') -> str:
    """Read an environment variable.

    Raises:
        SchemaError: If the node is not a scalar.
        ConfigurationError: If the variable is not set.
    """
    try:
        name = loader.construct_scalar(node).strip()
        if name not in environ:
            raise ConfigurationError.from_yaml_node(f'Environment variable {name!r} is not set', node)

        return environ[name]

    except MarkedYAMLError as base:
        raise SchemaError.from_yaml_error(base) from base

    except CheckrunError:
        raise

    except Exception as base:
        raise SchemaError.from_yaml_node('Invalid environment variable name', node) from base


def file_constructor(loader: 'BaseLoader', node: 'ScalarNode') -> str:
    """Read a text file.

    Raises:
        SchemaError: If the node is not a scalar.
        ConfigurationError: If the file does not exist or can not be read.
    """
    try:
        file_ = Path(loader.construct_scalar(node))
        if not file_.exists():
            raise ConfigurationError.from_yaml_node('File not found', node)

        return file_.read_text()

    except MarkedYAMLError as base:
        raise SchemaError.from_yaml_error(base) from base

    except CheckrunError:
        raise

    except Exception as base:
        raise ConfigurationError.from_yaml_node('Invalid text IO', node) from base


#: Instruction for `!expr <expression>`.
expr = Instruction(name='expr', constructor=expression_constructor)

#: Instruction for `!env <NAME>`.
env = Instruction(name='env', constructor=env_constructor)

#: Instruction for `!file <path>`.
file = Instruction(name='file', constructor=file_constructor)
