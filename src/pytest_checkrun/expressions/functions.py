"""Callable functions available to expressions.

This module defines the declarative function definition used both by the
builtin function set and by plugins, and the call protocol the evaluator
uses to invoke it.
"""

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from pydantic import Field

from pytest_checkrun.errors import EvaluationError, UnknownValueError
from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Name  # noqa: TC001
from pytest_checkrun.values import RuntimeValue, is_known, normalize, type_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pytest_checkrun.context import Environment
    from pytest_checkrun.expressions.nodes import Node

#: Eager runners receive evaluated argument values. Lazy runners receive
#: the environment followed by unevaluated argument nodes.
type FunctionRunner = Callable[..., RuntimeValue]

#: Functions indexed by the name expressions call them with.
type FunctionTable = Mapping[str, 'Function']


class Function(DescribedMixin, SchemaModel):
    """Declarative expression function definition.

    A function binds a name to a Python callable. Eager functions are
    called with fully known argument values; a call with an unknown
    argument is itself unknown. Lazy functions control evaluation of
    their arguments, which is how `can` and `try` observe errors.
    """

    name: Name = Field(
        title='Function name',
        description='Name used to call the function from expressions.',
    )

    function: FunctionRunner = Field(
        title='Function implementation',
        description=(
            'Callable implementing the function. Any exception it raises '
            'is reported as an evaluation error of the calling expression.'
        ),
    )

    lazy: bool = Field(
        default=False,
        title='Lazy arguments',
        description=(
            'If true, the callable receives the environment and the '
            'unevaluated argument nodes instead of argument values.'
        ),
    )

    def __call__(self, arguments: 'Sequence[Node]', environment: 'Environment') -> RuntimeValue:
        """Call the function from an expression.

        Args:
            arguments: Argument nodes of the call expression.
            environment: Environment of the calling expression.

        Returns:
            The normalized function result.

        Raises:
            UnknownValueError: If an eager argument is not known yet.
            EvaluationError: If the arguments are invalid or the
                implementation fails.
        """
        if self.lazy:
            args: list[RuntimeValue] = [environment, *arguments]
        else:
            args = [argument.evaluate(environment) for argument in arguments]
            for position, value in enumerate(args, start=1):
                if not is_known(value):
                    raise UnknownValueError(
                        f'Argument {position} of function "{self.name}" '
                        'is known only after apply',
                    )

        try:
            return normalize(self.function(*args))

        except EvaluationError:
            raise

        except TypeError as base:
            kinds = ', '.join(type_name(value) for value in args[1 if self.lazy else 0:])
            raise EvaluationError(
                f'Invalid arguments for function "{self.name}"({kinds}): {base}',
            ) from base

        except Exception as base:
            raise EvaluationError(
                f'Call to function "{self.name}" failed: {base}',
            ) from base
