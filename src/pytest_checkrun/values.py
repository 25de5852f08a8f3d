"""Core type definitions for the runtime.

This module defines the value type system shared by the expression
evaluator and the engines. It distinguishes between fully resolved values
and deferred values that must be evaluated against an environment.

It also defines the `UNKNOWN` sentinel used for values that only become
known after the provider realizes a resource, and `Pending` mappings for
planned resources whose unlisted attributes are not known yet.
"""

from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Any, Final

#: Scalars represent fully resolved, atomic values.
type Scalar = str | int | float | bool

#: A value is considered resolved if it contains no deferred
#: computations and can be consumed by the evaluator and providers.
type Value = Scalar | Sequence['Value'] | Mapping[str, 'Value'] | None

#: A value in runtime represents any Python object received from
#: providers, plugins, or YAML loaders prior to normalization.
type RuntimeValue = Any

#: Deferred values are resolved eagerly and deeply by the engines.
type DeferredCallable[T] = Callable[[Mapping[str, RuntimeValue]], T]
type Deferred[T] = T | DeferredCallable[T] | Sequence['Deferred[T]'] | Mapping[str, 'Deferred[T]']

MAPPINGS = (Mapping,)
SCALARS = (str, int, float, bool)
SEQUENCES = (list, tuple, set, frozenset)


class Unknown:
    """Placeholder for a value known only after apply.

    There is exactly one instance, `UNKNOWN`. Any operation applied to it
    by the evaluator raises `UnknownValueError`.
    """

    _instance: 'Unknown | None' = None

    def __new__(cls) -> 'Unknown':
        """Return the shared instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        """String representation."""
        return '(known after apply)'

    def __bool__(self) -> bool:
        """Unknown values are never truthy."""
        return False

    def __reduce__(self) -> str:
        """Preserve the singleton on copy and pickle."""
        return 'UNKNOWN'


UNKNOWN: Final = Unknown()


class Pending(dict[str, RuntimeValue]):
    """Attributes of a planned resource.

    Attributes that are not listed are computed by the provider and only
    known after apply; looking them up yields `UNKNOWN`.
    """


class FrozenMap(Mapping[str, RuntimeValue]):
    """Read-only mapping produced by `freeze`."""

    __slots__ = ('_data', 'partial')

    def __init__(self, data: Mapping[str, RuntimeValue], *, partial: bool = False) -> None:
        """Initialize a frozen mapping.

        Args:
            data: Already frozen items.
            partial: Whether missing keys are unknown rather than absent.
        """
        self._data = dict(data)
        self.partial = partial

    def __getitem__(self, key: str) -> RuntimeValue:
        """Return an item."""
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        """Iterate over keys."""
        return iter(self._data)

    def __len__(self) -> int:
        """Return the number of items."""
        return len(self._data)

    def __repr__(self) -> str:
        """String representation."""
        return repr(self._data)


def is_partial(value: RuntimeValue) -> bool:
    """Check for a mapping whose missing keys are unknown."""
    return isinstance(value, Pending) or getattr(value, 'partial', False) is True


def is_known(value: RuntimeValue) -> bool:
    """Check that a value contains no unknown parts.

    Args:
        value: Value to inspect, possibly nested.

    Returns:
        False if the value is, contains, or may contain `UNKNOWN`.
    """
    if value is UNKNOWN or is_partial(value):
        return False

    if isinstance(value, str):
        return True

    if isinstance(value, MAPPINGS):
        return all(is_known(item) for item in value.values())

    if isinstance(value, SEQUENCES):
        return all(is_known(item) for item in value)

    return True


def is_number(value: RuntimeValue) -> bool:
    """Check for a number, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value: RuntimeValue) -> str:
    """Name the kind of a value the way error messages refer to it."""
    if value is None:
        return 'null'
    if value is UNKNOWN:
        return 'unknown'
    if isinstance(value, bool):
        return 'bool'
    if is_number(value):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, MAPPINGS):
        return 'object'
    if isinstance(value, SEQUENCES):
        return 'tuple'
    return type(value).__name__


def _normalize_key(value: RuntimeValue) -> str:
    """Validate and normalize a mapping key.

    Raises:
        TypeError: If the provided key is not a string.
    """
    if not isinstance(value, str):
        raise TypeError(f'Can not use {value!r} as mapping key')

    return value


def normalize(value: RuntimeValue, context: Mapping[str, Value] | None = None) -> Value:
    """Recursively normalize a runtime value into a `Value`.

    Deferred callables are evaluated against the provided context before
    normalization continues. Frozen containers are turned back into plain
    lists and dicts, `UNKNOWN` is preserved.

    Args:
        value: Runtime value to normalize.
        context: Optional environment used to resolve deferred callables.
            If not provided, an empty context is used.

    Returns:
        A fully normalized value.

    Raises:
        TypeError: If the value type is unsupported.
    """
    if value is None or value is UNKNOWN:
        return value

    if isinstance(value, SCALARS):
        return value

    if isinstance(value, MAPPINGS):
        items = {
            _normalize_key(key): normalize(item, context)
            for key, item in value.items()
        }
        return Pending(items) if is_partial(value) else items

    if isinstance(value, SEQUENCES):
        return [
            normalize(item, context)
            for item in value
        ]

    if callable(value):
        if context is None:
            context = {}
        return normalize(value(context), context)

    raise TypeError(f'{value!r} has unsupported type')


def freeze(value: RuntimeValue) -> RuntimeValue:
    """Turn a normalized value into a read-only structure.

    Mappings become `FrozenMap` instances and sequences become tuples,
    so values bound into an environment can be shared between threads
    without defensive copies. `Pending` mappings stay partial.
    """
    if isinstance(value, FrozenMap):
        return value

    if isinstance(value, MAPPINGS):
        return FrozenMap(
            {key: freeze(item) for key, item in value.items()},
            partial=is_partial(value),
        )

    if isinstance(value, SEQUENCES):
        return tuple(freeze(item) for item in value)

    return value
