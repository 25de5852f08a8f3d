"""Core exception hierarchy.

This module defines the error and warning types used across the library
to report plugin loading issues, document schema failures, expression
evaluation errors, and provider failures in a structured way.

Only fatal conditions are exceptions. Validation failures, condition
violations, and check failures are collected as result records by the
engines and reconciled against the expectations of a test run.
"""

from os import linesep
from typing import TYPE_CHECKING, Any, TypedDict

from yaml import dump
from yaml.error import MarkedYAMLError

from pytest_checkrun.values import MAPPINGS, SCALARS, SEQUENCES

if TYPE_CHECKING:
    from importlib.metadata import EntryPoint
    from typing import Self

if TYPE_CHECKING:
    from pydantic_core import ErrorDetails, ValidationError
    from yaml.nodes import Node

SNIPPET_ELLIPSIS = f' ...{linesep}'
SNIPPET_SEPARATOR = f' ---{linesep}'
SNIPPET_INDENT = 2

FORMAT_REPLACER = '<runtime object>'
FORMAT_FILENAME = '<unicode string>'
FORMAT_INDENT = 4


class ErrorContext(TypedDict, total=False):
    """Container describing contextual information for error formatting.

    All fields are optional; the formatter adapts output based on
    provided values.
    """

    #: Name of the source file where the error occurred.
    filename: str | None

    #: Line number in the source file.
    line_num: int | None
    #: Column number in the source file.
    column_num: int | None

    #: Name of the test run where the error occurred.
    run_name: str | None
    #: Identifier of the block where the error occurred.
    block: str | None

    #: Underlying exception that triggered formatting.
    error: Exception | None

    #: Environment values available at the moment of failure.
    context: dict[str, Any] | None
    #: Document element associated with the error.
    element: Any


class ErrorFormatter:
    """Utility class for formatting errors.

    This formatter produces human-readable error messages with optional
    source location and YAML-based contextual snippets.
    """

    @classmethod
    def format(cls, message: str, context: ErrorContext | None = None) -> str:
        """Format an error message using contextual information.

        Args:
            message: Base human-readable error message.
            context: Optional error context with location and data.

        Returns:
            A fully formatted error message suitable for display.
        """
        if not context:
            return message

        message += linesep
        message += cls.get_location_string(context, indent=FORMAT_INDENT)
        message += cls.get_snippet_string(context, indent=FORMAT_INDENT * 2)

        return message

    @classmethod
    def get_location_string(cls, context: ErrorContext, *,
                            indent: str | int | None = None) -> str:
        """Format source and execution location information.

        Args:
            context: Error context containing location metadata.
            indent: Optional indentation (string or number of spaces).

        Returns:
            A formatted location string including filename, line,
            column, run name, and block identifier when available.
        """
        indent = cls._ensure_indent(indent)

        filename = context.get('filename')
        if not filename:
            filename = FORMAT_FILENAME

        message = f'{indent}in "{filename}"'
        if (line_num := context.get('line_num')) is not None:
            line_num += 1
            message += f', line {line_num}'
            if (column_num := context.get('column_num')) is not None:
                column_num += 1
                message += f', column {column_num}'
        message += linesep

        run_name = context.get('run_name')
        block = context.get('block')
        if run_name or block:
            parts = []
            if run_name:
                parts.append(f'on run "{run_name}"')
            if block:
                parts.append(f'in {block}')
            message += f'{indent}{', '.join(parts)}{linesep}'

        return message

    @classmethod
    def get_snippet_string(cls, context: ErrorContext, *,
                           indent: str | int | None = None) -> str:
        """Generate a formatted snippet illustrating the error context.

        Args:
            context: Error context containing element or exception data.
            indent: Optional indentation (string or number of spaces).

        Returns:
            A formatted multi-line snippet string, or an empty string
            if no snippet data is available.
        """
        indent = cls._ensure_indent(indent)

        if (error := context.get('error')) and isinstance(error, MarkedYAMLError):
            snippet = error.problem_mark.get_snippet(indent=0) or ''
            return cls._make_indent(snippet, indent)

        if element := context.get('element'):
            return cls._make_snippet(element, context, indent)

        return ''

    @classmethod
    def _make_snippet(cls, element: dict[str, Any],
                      context: ErrorContext, indent: str) -> str:
        """Build a YAML-based snippet for an element."""
        snippet = f'{indent}{SNIPPET_ELLIPSIS}'

        if values := context.get('context'):
            snippet += cls._make_yaml({'context': {**values}}, indent)
            snippet += linesep
            snippet += f'{indent}{SNIPPET_SEPARATOR}'

        snippet += cls._make_yaml(element, indent)
        snippet += linesep

        return snippet

    @classmethod
    def _filter_unsafe(cls, value: Any) -> Any:  # noqa: ANN401
        """Recursively sanitize values for safe YAML serialization.

        Non-scalar and non-container objects are replaced with
        a placeholder to prevent leaking opaque data.
        """
        if value is None or isinstance(value, SCALARS):
            return value

        if isinstance(value, MAPPINGS):
            return {
                key: cls._filter_unsafe(item)
                for key, item in value.items()
            }

        if isinstance(value, SEQUENCES):
            return [
                cls._filter_unsafe(item)
                for item in value
            ]

        return FORMAT_REPLACER

    @classmethod
    def _make_yaml(cls, value: Any, indent: str = '') -> str:  # noqa: ANN401
        """Serialize a sanitized value to a YAML-formatted string."""
        data = dump(
            cls._filter_unsafe(value),
            indent=SNIPPET_INDENT,
            sort_keys=False,
        )

        return cls._make_indent(data, indent)

    @staticmethod
    def _make_indent(value: str, indent: str) -> str:
        """Apply indentation to a multi-line string.

        Empty or whitespace-only lines are omitted.
        """
        if not indent:
            return value

        return linesep.join(
            f'{indent}{line}'
            for line in value.splitlines()
            if line.strip()
        )

    @staticmethod
    def _ensure_indent(indent: str | int | None = None) -> str:
        """Normalize indentation input."""
        if isinstance(indent, int) and indent > 0:
            return ' ' * indent

        if isinstance(indent, str):
            return indent

        return ''


class PluginWarning(UserWarning):
    """Warning emitted for non-fatal plugin-related issues.

    This warning is used when a plugin cannot be loaded or shadows an
    existing extension, but the issue does not prevent further execution
    (when running in non-strict mode).
    """


class CheckrunError(Exception, ErrorFormatter):
    """Base exception for all pytest-checkrun errors.

    All custom exceptions raised by the library inherit from this class
    to allow unified error handling by callers.
    """

    def __init__(self, message: str, *,
                 context: ErrorContext | None = None) -> None:
        """Initialize an error.

        Args:
            message: Human-readable error description.
            context: Error context containing optional runtime values.
        """
        self.message = message
        self.context = context

        super().__init__(message)

    def __str__(self) -> str:
        """String represenatation."""
        return self.format(self.message, self.context)

    def with_context(self, **context: Any) -> 'Self':  # noqa: ANN401
        """Return a copy of the error with extra context attached.

        Existing context values take precedence, so the innermost
        location of an error is preserved while it propagates.
        """
        error_context = ErrorContext(**{**context, **(self.context or {})})  # type: ignore[typeddict-item]

        error = type(self).__new__(type(self))
        error.__dict__.update(self.__dict__)
        error.args = self.args
        error.context = error_context

        return error

    @classmethod
    def from_yaml_node(cls, message: str, node: 'Node',
                       error: Exception | None = None) -> 'Self':
        """Create an error instance from a YAML node.

        This helper extracts positional information from a PyYAML
        node and attaches it to the resulting error context.

        Args:
            message: Human-readable error message.
            node: YAML node associated with the error.
            error: Optional underlying exception.

        Returns:
            An initialized error instance with location context.
        """
        error_context = ErrorContext(
            filename=node.start_mark.name,
            line_num=node.start_mark.line,
            column_num=node.start_mark.column,
            error=error,
        )

        return cls(message, context=error_context)


class PluginError(CheckrunError):
    """Error raised for fatal plugin-related failures.

    This exception is raised when a plugin entry point is invalid,
    misconfigured, or fails to load in strict mode.
    """

    def __init__(self, message: str, *,
                 entrypoint: 'EntryPoint | None' = None) -> None:
        """Initialize a plugin error.

        Args:
            message: Human-readable error description.
            entrypoint: Optional plugin entry point associated with the error.
        """
        self.entrypoint = entrypoint

        super().__init__(message)


class SchemaError(CheckrunError):
    """Error raised when a document is invalid or inconsistent.

    This exception is used for YAML syntax errors, pydantic validation
    failures, and structural violations found while loading documents.
    """

    @classmethod
    def from_yaml_error(cls, error: MarkedYAMLError) -> 'Self':
        """Create a schema error from a YAML parsing failure.

        Args:
            error: Exception raised by the YAML parser.

        Returns:
            SchemaError representing the YAML parsing failure.
        """
        error_context = ErrorContext(error=error)
        if error.problem_mark:
            error_context.update(
                filename=error.problem_mark.name,
                line_num=error.problem_mark.line,
                column_num=error.problem_mark.column,
            )

        message = 'Invalid YAML'
        if error.problem:
            message += f'{linesep}{' ' * FORMAT_INDENT}{error.problem}'

        return cls(message, context=error_context)

    @classmethod
    def from_pydantic_error(cls, error: 'ValidationError', *,
                            data: Any = None,  # noqa: ANN401
                            filename: str | None = None,
                            run_name: str | None = None) -> 'Self':
        """Create a schema error from a Pydantic validation failure.

        The message is taken from the first error whose location can be
        traced back into the document data, and the failing fragment is
        attached as a snippet.

        Args:
            error: ValidationError raised by Pydantic.
            data: Document data.
            filename: Name of the source file where the error occurred.
            run_name: Name of the test run being validated, if any.

        Returns:
            SchemaError representing the validation failure.
        """
        error_context = ErrorContext(
            filename=filename,
            run_name=run_name,
            error=error,
            element=data,
        )

        if not data or not isinstance(data, dict):
            return cls('Type validation error', context=error_context)

        for item in error.errors(include_url=False, include_input=False):
            if context := cls._locate_pydantic_context(data, item):
                message, value = context
                return cls(message, context=ErrorContext({**error_context, 'element': value}))

        return cls('Validation error', context=error_context)

    @classmethod
    def _locate_pydantic_context(cls, value: Any,  # noqa: ANN401
                                 error: 'ErrorDetails') -> tuple[str, Any] | None:
        """Locate the most specific failing element in validated data.

        Args:
            value: Root data structure being validated.
            error: Pydantic error details including location path.

        Returns:
            A tuple of (error message, extracted element) if a relevant
            context can be located, otherwise None.
        """
        container = last_item = value
        last_key: int | str | None = None

        for key in error['loc']:
            if isinstance(last_item, (list, tuple)):
                if isinstance(key, int) and 0 <= key < len(last_item):
                    container = last_item
                    last_item = last_item[key]
                    last_key = key
            elif isinstance(last_item, dict):
                if key in last_item:
                    container = last_item
                    last_item = last_item[key]
                    last_key = key
            else:
                return None

        message = None
        if isinstance(last_key, (int, str)):
            for item in (error.get('msg') or '').splitlines():
                item_message = item.strip()
                if item_message:
                    message = item_message
                    break

        if message:
            if isinstance(container, (list, tuple)):
                return message, [last_item]
            if isinstance(container, dict):
                return message, {last_key: last_item}

        return None


class ExpressionSyntaxError(SchemaError):
    """Error raised when expression text can not be parsed."""

    def __init__(self, message: str, *, source: str = '',
                 position: int | None = None) -> None:
        """Initialize a syntax error.

        Args:
            message: Human-readable error description.
            source: Expression source text.
            position: Offset of the offending character in the source.
        """
        self.source = source
        self.position = position

        if position is not None:
            message = f'{message} at position {position + 1} in {source!r}'

        super().__init__(message)


class ConfigurationError(CheckrunError):
    """Error raised for unresolvable configuration at run time.

    Missing symbols, missing required variables, dependency cycles, and
    evaluation errors outside validation rules and checks are fatal for
    the affected run and abort it before any further side effect.
    """


class EvaluationError(CheckrunError):
    """Error raised when an expression can not be evaluated.

    This is distinct from an expression evaluating to false: it signals
    an unbound symbol, a missing attribute, or an operator applied to
    incompatible values.
    """


class UnknownValueError(EvaluationError):
    """Error raised when an expression depends on a value known after apply."""


class StateError(CheckrunError):
    """Error raised on an illegal resource lifecycle transition."""


class ExternalError(CheckrunError):
    """Error raised when a provider collaborator call fails.

    Fatal for the current run unless the call's retry policy absorbs it.
    """

    def __init__(self, message: str, *,
                 provider: str | None = None,
                 operation: str | None = None,
                 context: ErrorContext | None = None) -> None:
        """Initialize a provider error.

        Args:
            message: Human-readable error description.
            provider: Name of the provider that failed.
            operation: Name of the failed provider operation.
            context: Error context containing optional runtime values.
        """
        self.provider = provider
        self.operation = operation

        super().__init__(message, context=context)


class ProviderTimeoutError(ExternalError):
    """Error raised when a provider call exceeds its time budget."""
