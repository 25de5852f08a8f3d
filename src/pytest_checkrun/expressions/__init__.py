"""Expression evaluator.

Expressions appear in documents as condition strings, error message
templates, attribute templates, and `!expr` instructions. This package
parses them once at load time and evaluates them against an immutable
`Environment` on demand.

Example:
    >>> from pytest_checkrun.context import Environment
    >>> env = Environment({'var': {'company_name': 'globomantics'}})
    >>> evaluate('length(var.company_name) >= 3', env)
    True
"""

from collections.abc import Mapping
from json import dumps
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BeforeValidator, PlainSerializer, WithJsonSchema

from pytest_checkrun.context import Environment
from pytest_checkrun.errors import EvaluationError, ExpressionSyntaxError, UnknownValueError
from pytest_checkrun.values import SEQUENCES, UNKNOWN, RuntimeValue, normalize, type_name

from .functions import Function, FunctionRunner, FunctionTable
from .nodes import Literal, Node, Traversal, to_string
from .parser import parse, parse_template

if TYPE_CHECKING:
    from collections.abc import Iterator

__all__ = (
    'Expression',
    'ExpressionField',
    'Function',
    'FunctionRunner',
    'FunctionTable',
    'Template',
    'TemplateField',
    'Traversal',
    'compile_templates',
    'evaluate',
    'evaluate_condition',
    'iter_expressions',
)


class Expression:
    """Parsed expression bound to its source text.

    Expressions are deferred values: calling one with a context mapping
    evaluates it, so they can be stored inside document data and
    resolved by `Environment.resolve`.
    """

    __slots__ = ('node', 'source')

    def __init__(self, source: str, node: Node | None = None) -> None:
        """Parse an expression.

        Args:
            source: Expression source text.
            node: Already parsed syntax tree, if available.

        Raises:
            ExpressionSyntaxError: If the source is not a valid expression.
        """
        self.source = source
        self.node = node if node is not None else self.parse(source)

    @staticmethod
    def parse(source: str) -> Node:
        """Parse source text into a syntax tree."""
        return parse(source)

    @classmethod
    def constant(cls, value: RuntimeValue) -> 'Expression':
        """Wrap a literal document value into an expression."""
        return cls(dumps(value), Literal(value))

    def __repr__(self) -> str:
        """String representation."""
        return f'{type(self).__name__}({self.source!r})'

    def __str__(self) -> str:
        """Return the source text."""
        return self.source

    def __eq__(self, other: object) -> bool:
        """Compare by kind and source text."""
        return type(other) is type(self) and other.source == self.source  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        """Hash by source text."""
        return hash((type(self).__name__, self.source))

    def __call__(self, context: Mapping[str, RuntimeValue]) -> RuntimeValue:
        """Evaluate as a deferred value."""
        if not isinstance(context, Environment):
            context = Environment(context)
        return self.evaluate(context)

    def evaluate(self, environment: Environment) -> RuntimeValue:
        """Evaluate the expression.

        Raises:
            EvaluationError: If evaluation fails.
            UnknownValueError: If the result depends on an unknown value.
        """
        return self.node.evaluate(environment)

    def references(self) -> set[Traversal]:
        """Return the static traversals the expression reads."""
        return set(self.node.references())

    def roots(self) -> set[str]:
        """Return the root symbols the expression reads."""
        return {traversal[0] for traversal in self.node.references()}


class Template(Expression):
    """Unquoted string template such as an error message.

    Text outside `${...}` interpolations is taken literally.
    """

    __slots__ = ()

    @staticmethod
    def parse(source: str) -> Node:
        """Parse template text into a syntax tree."""
        return parse_template(source)

    def render(self, environment: Environment) -> str:
        """Render the template, falling back to its source text.

        Messages must always be reportable, so any evaluation error
        yields the unrendered source instead.
        """
        try:
            value = self.evaluate(environment)
        except EvaluationError:
            return self.source

        if value is UNKNOWN:
            return self.source

        try:
            return to_string(value)
        except EvaluationError:
            return dumps(normalize(value), default=repr)


def _validate_expression(value: Any) -> Any:  # noqa: ANN401
    """Parse document values into expressions."""
    if isinstance(value, Expression):
        return value

    try:
        if isinstance(value, str):
            return Expression(value)
    except ExpressionSyntaxError as base:
        raise ValueError(base.message) from base

    if value is None or isinstance(value, (bool, int, float)):
        return Expression.constant(value)

    return value


def _validate_template(value: Any) -> Any:  # noqa: ANN401
    """Parse document values into templates."""
    if isinstance(value, Template):
        return value

    if isinstance(value, str):
        try:
            return Template(value)
        except ExpressionSyntaxError as base:
            raise ValueError(base.message) from base

    return value


#: Document field holding an expression.
ExpressionField = Annotated[
    Expression,
    BeforeValidator(_validate_expression),
    PlainSerializer(str, return_type=str),
    WithJsonSchema({
        'type': 'string',
        'description': 'Expression, for example `length(var.name) > 0`.',
    }),
]

#: Document field holding a string template.
TemplateField = Annotated[
    Template,
    BeforeValidator(_validate_template),
    PlainSerializer(str, return_type=str),
    WithJsonSchema({
        'type': 'string',
        'description': 'Text with optional `${...}` interpolations.',
    }),
]


def compile_templates(value: RuntimeValue) -> RuntimeValue:
    """Turn strings with interpolations inside a value into templates.

    Strings without interpolations stay plain strings, expressions
    are kept as is.

    Raises:
        ValueError: If a template is malformed.
    """
    if isinstance(value, str):
        if '${' not in value:
            return value
        try:
            template = Template(value)
        except ExpressionSyntaxError as base:
            raise ValueError(base.message) from base
        return template if not isinstance(template.node, Literal) else template.node.value

    if isinstance(value, Mapping):
        return {key: compile_templates(item) for key, item in value.items()}

    if isinstance(value, SEQUENCES):
        return [compile_templates(item) for item in value]

    return value


def iter_expressions(value: RuntimeValue) -> 'Iterator[Expression]':
    """Iterate over expressions nested inside a document value."""
    if isinstance(value, Expression):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_expressions(item)
    elif isinstance(value, SEQUENCES):
        for item in value:
            yield from iter_expressions(item)


def evaluate(expression: str | Expression, environment: Environment) -> RuntimeValue:
    """Evaluate an expression against an environment.

    Args:
        expression: Expression or its source text.
        environment: Symbols available to the expression.

    Returns:
        The resulting value.

    Raises:
        ExpressionSyntaxError: If the source text is malformed.
        EvaluationError: If evaluation fails.
    """
    if isinstance(expression, str):
        expression = Expression(expression)

    return expression.evaluate(environment)


def evaluate_condition(expression: str | Expression, environment: Environment) -> bool:
    """Evaluate an expression that must produce a bool.

    Raises:
        UnknownValueError: If the result is not known yet.
        EvaluationError: If evaluation fails or the result is not a bool.
    """
    result = evaluate(expression, environment)

    if result is UNKNOWN:
        raise UnknownValueError('Condition result is known only after apply')

    if not isinstance(result, bool):
        raise EvaluationError(f'Condition must produce a bool, got {type_name(result)}')

    return result
