"""Built-in expression functions.

String, collection, numeric, type conversion and network functions
available to every expression. They are declared with the same
`Function` model plugins use, so a plugin may shadow any of them.

Arguments of eager functions are fully known values: strings, numbers,
bools, None, tuples and read-only mappings.
"""

from collections.abc import Mapping
from ipaddress import ip_network
from math import ceil, floor
from re import Match, Pattern
from re import error as RegexError  # noqa: N812
from re import compile as regexp
from typing import TYPE_CHECKING

from pytest_checkrun.errors import EvaluationError, UnknownValueError
from pytest_checkrun.expressions.functions import Function
from pytest_checkrun.expressions.nodes import to_string, values_equal
from pytest_checkrun.values import SEQUENCES, RuntimeValue, is_number, type_name

if TYPE_CHECKING:
    from pytest_checkrun.context import Environment
    from pytest_checkrun.expressions.nodes import Node

_FORMAT_VERB = regexp(r'%(%|-?\d*(?:\.\d+)?[vsdfqt])')


def _expect_string(value: RuntimeValue, position: int = 1) -> str:
    if not isinstance(value, str):
        raise EvaluationError(f'Argument {position} must be a string, got {type_name(value)}')
    return value


def _expect_number(value: RuntimeValue, position: int = 1) -> int | float:
    if not is_number(value):
        raise EvaluationError(f'Argument {position} must be a number, got {type_name(value)}')
    return value


def _expect_sequence(value: RuntimeValue, position: int = 1) -> tuple[RuntimeValue, ...]:
    if isinstance(value, (set, frozenset)):
        return tuple(sorted(value, key=repr))
    if not isinstance(value, SEQUENCES):
        raise EvaluationError(f'Argument {position} must be a list, got {type_name(value)}')
    return tuple(value)


def _expect_mapping(value: RuntimeValue, position: int = 1) -> Mapping[str, RuntimeValue]:
    if not isinstance(value, Mapping):
        raise EvaluationError(f'Argument {position} must be an object, got {type_name(value)}')
    return value


def _whole(value: int | float) -> int | float:
    """Collapse integral floats into ints."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def length(value: RuntimeValue) -> int:
    """Number of characters of a string or items of a collection."""
    if isinstance(value, (str, Mapping, *SEQUENCES)):
        return len(value)
    raise EvaluationError(f'Can not take length of {type_name(value)} value')


def substr(value: str, offset: int, size: int) -> str:
    """Extract a substring by character offset and length.

    A negative offset counts from the end; a length of -1 takes the
    rest of the string.
    """
    value = _expect_string(value)
    offset = int(_expect_number(offset, 2))
    size = int(_expect_number(size, 3))

    if offset < 0:
        offset = max(len(value) + offset, 0)
    if size < 0:
        return value[offset:]
    return value[offset:offset + size]


def replace(value: str, search: str, replacement: str) -> str:
    """Replace substrings, or regex matches when search is `/pattern/`."""
    value = _expect_string(value)
    search = _expect_string(search, 2)
    replacement = _expect_string(replacement, 3)

    if len(search) > 1 and search.startswith('/') and search.endswith('/'):
        return regexp(search[1:-1]).sub(replacement.replace('$', '\\'), value)

    return value.replace(search, replacement)


def split(separator: str, value: str) -> list[str]:
    """Split a string by a separator."""
    return _expect_string(value, 2).split(_expect_string(separator))


def join(separator: str, *lists: RuntimeValue) -> str:
    """Join string items of one or more lists."""
    separator = _expect_string(separator)
    items = [
        _expect_string(item, position)
        for position, value in enumerate(lists, start=2)
        for item in _expect_sequence(value, position)
    ]
    return separator.join(items)


def _format_value(verb: str, value: RuntimeValue) -> str:
    """Render one value for a format verb."""
    kind = verb[-1]
    spec = verb[:-1]
    match kind:
        case 'd':
            return format(int(_expect_number(value)), f'{spec}d'.replace('-', '<'))
        case 'f':
            return format(float(_expect_number(value)), f'{spec}f'.replace('-', '<'))
        case 'q':
            return '"' + to_string(value).replace('\\', '\\\\').replace('"', '\\"') + '"'
        case 't':
            if not isinstance(value, bool):
                raise EvaluationError(f'Verb %t requires a bool, got {type_name(value)}')
            return to_string(value)
    return format(to_string(value), f'{spec}s'.replace('-', '<') if spec else '')


def format_(spec: str, *args: RuntimeValue) -> str:
    """Produce a string from a printf-like format specification."""
    spec = _expect_string(spec)
    remaining = list(args)
    result: list[str] = []
    position = 0

    for match in _FORMAT_VERB.finditer(spec):
        result.append(spec[position:match.start()])
        position = match.end()
        verb = match.group(1)
        if verb == '%':
            result.append('%')
            continue
        if not remaining:
            raise EvaluationError(f'Not enough arguments for format {spec!r}')
        result.append(_format_value(verb, remaining.pop(0)))

    if remaining:
        raise EvaluationError(f'Too many arguments for format {spec!r}')

    result.append(spec[position:])
    return ''.join(result)


def _compile(pattern: str) -> Pattern[str]:
    try:
        return regexp(_expect_string(pattern))
    except RegexError as base:
        raise EvaluationError(f'Invalid regular expression {pattern!r}: {base}') from base


def _match_value(match: Match[str]) -> RuntimeValue:
    """Shape a match the way `regex` returns it."""
    if match.re.groupindex:
        return match.groupdict()
    if match.re.groups:
        return list(match.groups())
    return match.group()


def regex(pattern: str, value: str) -> RuntimeValue:
    """Apply a regular expression and return the first match.

    Returns the matched string, a list of capture groups, or a mapping
    of named capture groups. No match is an error, so `can(regex(...))`
    tests whether a string matches.
    """
    match = _compile(pattern).search(_expect_string(value, 2))
    if match is None:
        raise EvaluationError('Pattern did not match any part of the given string')
    return _match_value(match)


def regexall(pattern: str, value: str) -> list[RuntimeValue]:
    """Apply a regular expression and return all matches."""
    return [
        _match_value(match)
        for match in _compile(pattern).finditer(_expect_string(value, 2))
    ]


def can(environment: 'Environment', expression: 'Node') -> bool:
    """Check that an expression evaluates without errors."""
    try:
        expression.evaluate(environment)
    except UnknownValueError:
        raise
    except EvaluationError:
        return False
    return True


def try_(environment: 'Environment', *expressions: 'Node') -> RuntimeValue:
    """Return the value of the first expression that evaluates."""
    errors = []
    for expression in expressions:
        try:
            return expression.evaluate(environment)
        except UnknownValueError:
            raise
        except EvaluationError as error:
            errors.append(error.message)

    raise EvaluationError(f'No expression succeeded: {'; '.join(errors)}')


def contains(collection: RuntimeValue, value: RuntimeValue) -> bool:
    """Check that a list or set holds a value."""
    return any(values_equal(item, value) for item in _expect_sequence(collection))


def keys(value: RuntimeValue) -> list[str]:
    """Sorted keys of an object."""
    return sorted(_expect_mapping(value))


def values(value: RuntimeValue) -> list[RuntimeValue]:
    """Values of an object ordered by key."""
    mapping = _expect_mapping(value)
    return [mapping[key] for key in sorted(mapping)]


def lookup(mapping: RuntimeValue, key: str, *default: RuntimeValue) -> RuntimeValue:
    """Read a key from an object, with an optional default."""
    mapping = _expect_mapping(mapping)
    key = _expect_string(key, 2)
    if key in mapping:
        return mapping[key]
    if default:
        return default[0]
    raise EvaluationError(f'Key {key!r} is missing and no default was given')


def merge(*mappings: RuntimeValue) -> dict[str, RuntimeValue]:
    """Merge objects, later keys win."""
    result: dict[str, RuntimeValue] = {}
    for position, mapping in enumerate(mappings, start=1):
        if mapping is not None:
            result.update(_expect_mapping(mapping, position))
    return result


def concat(*lists: RuntimeValue) -> list[RuntimeValue]:
    """Concatenate lists."""
    return [
        item
        for position, value in enumerate(lists, start=1)
        for item in _expect_sequence(value, position)
    ]


def distinct(value: RuntimeValue) -> list[RuntimeValue]:
    """Remove duplicate items, keeping the first occurrence."""
    result: list[RuntimeValue] = []
    for item in _expect_sequence(value):
        if not any(values_equal(item, seen) for seen in result):
            result.append(item)
    return result


def flatten(value: RuntimeValue) -> list[RuntimeValue]:
    """Flatten nested lists."""
    result: list[RuntimeValue] = []
    for item in _expect_sequence(value):
        if isinstance(item, SEQUENCES):
            result.extend(flatten(item))
        else:
            result.append(item)
    return result


def compact(value: RuntimeValue) -> list[str]:
    """Remove null and empty string items."""
    return [item for item in _expect_sequence(value) if item is not None and item != '']


def sort(value: RuntimeValue) -> list[str]:
    """Sort a list of strings lexicographically."""
    items = _expect_sequence(value)
    return sorted(to_string(item) for item in items)


def one(value: RuntimeValue) -> RuntimeValue:
    """Return the single item of a list, or null for an empty list."""
    items = _expect_sequence(value)
    if len(items) > 1:
        raise EvaluationError(f'Must be a list with zero or one items, got {len(items)}')
    return items[0] if items else None


def _bools(value: RuntimeValue) -> list[bool]:
    items = []
    for item in _expect_sequence(value):
        if not isinstance(item, bool):
            raise EvaluationError(f'Items must be bools, got {type_name(item)}')
        items.append(item)
    return items


def alltrue(value: RuntimeValue) -> bool:
    """Check that every item of a list is true."""
    return all(_bools(value))


def anytrue(value: RuntimeValue) -> bool:
    """Check that some item of a list is true."""
    return any(_bools(value))


def sum_(value: RuntimeValue) -> int | float:
    """Sum of a non-empty list of numbers."""
    items = _expect_sequence(value)
    if not items:
        raise EvaluationError('Can not sum an empty list')
    return _whole(sum(_expect_number(item) for item in items))


def _numbers(args: tuple[RuntimeValue, ...]) -> list[int | float]:
    if not args:
        raise EvaluationError('At least one number is required')
    return [_expect_number(item, position) for position, item in enumerate(args, start=1)]


def min_(*args: RuntimeValue) -> int | float:
    """Smallest of the numbers."""
    return min(_numbers(args))


def max_(*args: RuntimeValue) -> int | float:
    """Largest of the numbers."""
    return max(_numbers(args))


def coalesce(*args: RuntimeValue) -> RuntimeValue:
    """First argument that is not null or an empty string."""
    for item in args:
        if item is not None and item != '':
            return item
    raise EvaluationError('No non-null arguments')


def tostring(value: RuntimeValue) -> str | None:
    """Convert a primitive value to a string."""
    if value is None:
        return None
    return to_string(value)


def tonumber(value: RuntimeValue) -> int | float | None:
    """Convert a string or a number to a number."""
    if value is None or is_number(value):
        return value
    text = _expect_string(value)
    try:
        return _whole(float(text)) if any(char in text for char in '.eE') else int(text)
    except ValueError:
        raise EvaluationError(f'Can not convert {text!r} to number') from None


def tobool(value: RuntimeValue) -> bool | None:
    """Convert `"true"` or `"false"` to a bool."""
    if value is None or isinstance(value, bool):
        return value
    if value in ('true', 'false'):
        return value == 'true'
    raise EvaluationError(f'Can not convert {value!r} to bool')


def tolist(value: RuntimeValue) -> list[RuntimeValue]:
    """Convert a list or set to a list."""
    return list(_expect_sequence(value))


def toset(value: RuntimeValue) -> list[RuntimeValue]:
    """Convert a list to a list of distinct items in stable order."""
    return sorted(distinct(value), key=repr)


def cidrsubnet(prefix: str, newbits: int, netnum: int) -> str:
    """Calculate a subnet address within an IP network prefix."""
    network = ip_network(_expect_string(prefix), strict=False)
    newbits = int(_expect_number(newbits, 2))
    netnum = int(_expect_number(netnum, 3))

    new_prefix = network.prefixlen + newbits
    if newbits < 0 or new_prefix > network.max_prefixlen:
        raise EvaluationError(f'Insufficient address space to extend prefix by {newbits} bits')
    if not 0 <= netnum < 2 ** newbits:
        raise EvaluationError(f'Network number {netnum} does not fit in {newbits} bits')

    size = 2 ** (network.max_prefixlen - new_prefix)
    address = network.network_address + netnum * size

    return f'{address}/{new_prefix}'


def cidrhost(prefix: str, hostnum: int) -> str:
    """Calculate a host address within an IP network prefix."""
    network = ip_network(_expect_string(prefix), strict=False)
    hostnum = int(_expect_number(hostnum, 2))

    if hostnum < 0:
        hostnum += network.num_addresses
    if not 0 <= hostnum < network.num_addresses:
        raise EvaluationError(f'Host number {hostnum} is out of range for {prefix}')

    return str(network.network_address + hostnum)


def cidrnetmask(prefix: str) -> str:
    """Netmask of an IPv4 network prefix."""
    network = ip_network(_expect_string(prefix), strict=False)
    if network.version != 4:
        raise EvaluationError('Only IPv4 networks have a netmask')
    return str(network.netmask)


BUILTIN_FUNCTIONS: dict[str, Function] = {
    function.name: function
    for function in (
        Function(name='length', function=length),
        Function(name='lower', function=lambda value: _expect_string(value).lower()),
        Function(name='upper', function=lambda value: _expect_string(value).upper()),
        Function(name='trimspace', function=lambda value: _expect_string(value).strip()),
        Function(name='title', function=lambda value: _expect_string(value).title()),
        Function(name='substr', function=substr),
        Function(name='replace', function=replace),
        Function(name='split', function=split),
        Function(name='join', function=join),
        Function(name='format', function=format_),
        Function(
            name='startswith',
            function=lambda value, prefix: _expect_string(value).startswith(_expect_string(prefix, 2)),
        ),
        Function(
            name='endswith',
            function=lambda value, suffix: _expect_string(value).endswith(_expect_string(suffix, 2)),
        ),
        Function(
            name='strcontains',
            function=lambda value, part: _expect_string(part, 2) in _expect_string(value),
        ),
        Function(name='regex', function=regex),
        Function(name='regexall', function=regexall),
        Function(name='can', function=can, lazy=True),
        Function(name='try', function=try_, lazy=True),
        Function(name='contains', function=contains),
        Function(name='keys', function=keys),
        Function(name='values', function=values),
        Function(name='lookup', function=lookup),
        Function(name='merge', function=merge),
        Function(name='concat', function=concat),
        Function(name='distinct', function=distinct),
        Function(name='flatten', function=flatten),
        Function(name='compact', function=compact),
        Function(name='sort', function=sort),
        Function(name='one', function=one),
        Function(name='alltrue', function=alltrue),
        Function(name='anytrue', function=anytrue),
        Function(name='sum', function=sum_),
        Function(name='min', function=min_),
        Function(name='max', function=max_),
        Function(name='abs', function=lambda value: abs(_expect_number(value))),
        Function(name='ceil', function=lambda value: ceil(_expect_number(value))),
        Function(name='floor', function=lambda value: floor(_expect_number(value))),
        Function(name='coalesce', function=coalesce),
        Function(name='tostring', function=tostring),
        Function(name='tonumber', function=tonumber),
        Function(name='tobool', function=tobool),
        Function(name='tolist', function=tolist),
        Function(name='toset', function=toset),
        Function(name='cidrsubnet', function=cidrsubnet),
        Function(name='cidrhost', function=cidrhost),
        Function(name='cidrnetmask', function=cidrnetmask),
    )
}
