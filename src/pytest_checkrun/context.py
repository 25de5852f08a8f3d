"""Evaluation environment for expressions.

This module defines the immutable mapping of symbol names to values the
expression evaluator reads from, and the resolver turning deferred
document values into fully evaluated values.
"""

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, overload

from pytest_checkrun.values import Deferred, Value, freeze, normalize

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pytest_checkrun.expressions.functions import FunctionTable


class Environment(Mapping[str, Value]):
    """Immutable symbol table used for expression evaluation.

    Root symbols map to namespaces (`var`, `local`, `data`, `output`,
    `run`, resource types) or to plain values (`self`, loop variables).
    Values are frozen on construction; derived environments are created
    with `bind`, never by mutation, so an environment can be shared by
    concurrent evaluations of one phase.

    The environment also carries the function table calls are resolved
    against.
    """

    __slots__ = ('_functions', '_values')

    def __init__(self, values: Mapping[str, Any] | None = None, *,
                 functions: 'FunctionTable | None' = None) -> None:
        """Initialize an environment.

        Args:
            values: Root symbols and their values.
            functions: Functions available to expressions. The builtin
                table is used when omitted.
        """
        self._values = MappingProxyType({
            key: freeze(value)
            for key, value in (values or {}).items()
        })
        self._functions = functions

    def __getitem__(self, key: str) -> Value:
        """Return the value bound to a root symbol."""
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        """Iterate over root symbols."""
        return iter(self._values)

    def __len__(self) -> int:
        """Return the number of root symbols."""
        return len(self._values)

    def __repr__(self) -> str:
        """String representation."""
        return f'Environment({dict(self._values)!r})'

    @property
    def functions(self) -> 'FunctionTable':
        """Functions available to expressions."""
        if self._functions is None:
            from pytest_checkrun.builtins.functions import BUILTIN_FUNCTIONS  # noqa: PLC0415
            self._functions = BUILTIN_FUNCTIONS

        return self._functions

    def bind(self, /, **values: Any) -> 'Environment':  # noqa: ANN401
        """Create a derived environment with extra or replaced symbols.

        Args:
            **values: Root symbols to add or replace.

        Returns:
            A new environment sharing the function table.
        """
        return Environment(
            {**self._values, **values},
            functions=self._functions,
        )

    def merge(self, namespace: str, values: Mapping[str, Any]) -> 'Environment':
        """Create a derived environment extending one namespace.

        Args:
            namespace: Root symbol holding a mapping.
            values: Entries added to or replacing entries of the namespace.

        Returns:
            A new environment sharing the function table.
        """
        current = self._values.get(namespace) or {}

        return self.bind(**{namespace: {**current, **values}})

    @overload
    def resolve[T: Value](self, value: 'Mapping[str, Deferred[T]]') -> 'Mapping[str, T]':
        ...  # pragma: no cover

    @overload
    def resolve[T: Value](self, value: 'Sequence[Deferred[T]]') -> 'Sequence[T]':
        ...  # pragma: no cover

    @overload
    def resolve[T: Value](self, value: Deferred[T]) -> T | None:
        ...  # pragma: no cover

    def resolve(self, value: Any) -> Any:
        """Resolve a deferred value into a fully evaluated value.

        Args:
            value: A deferred value to resolve.

        Returns:
            A fully resolved value, possibly containing `UNKNOWN`.

        Raises:
            EvaluationError: If a deferred expression fails.
        """
        return normalize(value, self)
