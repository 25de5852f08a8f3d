"""Expression syntax tree and evaluation rules.

Each node evaluates itself against an immutable `Environment` and
reports the static traversals it reads. Evaluation never mutates the
environment; loop and splat variables are bound into derived
environments.
"""

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

from pytest_checkrun.errors import EvaluationError, UnknownValueError
from pytest_checkrun.values import (
    MAPPINGS,
    SEQUENCES,
    UNKNOWN,
    RuntimeValue,
    is_known,
    is_number,
    is_partial,
    type_name,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pytest_checkrun.context import Environment

#: Root symbol holding the current item inside a splat traversal.
#: It is not a valid identifier, so it can not collide with user symbols.
SPLAT_SYMBOL = '*'

#: A static traversal such as `("var", "company_name")`.
type Traversal = tuple[str, ...]


def require_known(value: RuntimeValue, what: str) -> RuntimeValue:
    """Return a value, raising when it is not known yet."""
    if value is UNKNOWN:
        raise UnknownValueError(f'{what} is known only after apply')

    return value


def values_equal(left: RuntimeValue, right: RuntimeValue) -> bool:
    """Compare two values by kind and content.

    Numbers compare numerically, but a number never equals a bool or a
    string, and collections compare item by item.
    """
    if type_name(left) != type_name(right):
        return False

    if isinstance(left, MAPPINGS):
        return left.keys() == right.keys() and all(
            values_equal(left[key], right[key])
            for key in left
        )

    if isinstance(left, SEQUENCES):
        return len(left) == len(right) and all(
            values_equal(a, b)
            for a, b in zip(left, right, strict=True)
        )

    return bool(left == right)


def to_string(value: RuntimeValue) -> str:
    """Convert a primitive value for string interpolation.

    Raises:
        UnknownValueError: If the value is not known yet.
        EvaluationError: If the value is null or a collection.
    """
    require_known(value, 'Interpolated value')

    if isinstance(value, bool):
        return 'true' if value else 'false'

    if is_number(value):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    if isinstance(value, str):
        return value

    raise EvaluationError(f'Can not convert {type_name(value)} to string')


class Node:
    """Base class of expression syntax tree nodes."""

    __slots__ = ()

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Evaluate the node."""
        raise NotImplementedError

    def children(self) -> 'Sequence[Node]':
        """Return direct child nodes."""
        return ()

    def traversal(self) -> Traversal | None:
        """Return the static traversal this node denotes, if any."""
        return None

    def references(self) -> Iterator[Traversal]:
        """Iterate over static traversals read by the node."""
        if (traversal := self.traversal()) is not None:
            yield traversal
            return

        for child in self.children():
            yield from child.references()


class Literal(Node):
    """Constant value."""

    __slots__ = ('value',)

    def __init__(self, value: RuntimeValue) -> None:
        """Initialize a literal."""
        self.value = value

    def __repr__(self) -> str:
        """String representation."""
        return f'Literal({self.value!r})'

    def evaluate(self, environment: 'Environment') -> RuntimeValue:  # noqa: ARG002
        """Return the constant."""
        return self.value


class TemplateNode(Node):
    """String template made of literal text and interpolations.

    A template consisting of a single interpolation yields the raw
    interpolated value, so `"${var.ports}"` keeps its list type.
    """

    __slots__ = ('parts',)

    def __init__(self, parts: 'Sequence[str | Node]') -> None:
        """Initialize a template."""
        self.parts = tuple(parts)

    def children(self) -> 'Sequence[Node]':
        """Return interpolated nodes."""
        return tuple(part for part in self.parts if isinstance(part, Node))

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Render the template."""
        if len(self.parts) == 1 and isinstance(self.parts[0], Node):
            return self.parts[0].evaluate(environment)

        return ''.join(
            part if isinstance(part, str) else to_string(part.evaluate(environment))
            for part in self.parts
        )


class Variable(Node):
    """Root symbol lookup."""

    __slots__ = ('name',)

    def __init__(self, name: str) -> None:
        """Initialize a symbol lookup."""
        self.name = name

    def traversal(self) -> Traversal | None:
        """Return the root symbol."""
        if self.name == SPLAT_SYMBOL:
            return None
        return (self.name,)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Look the symbol up in the environment."""
        try:
            return environment[self.name]
        except KeyError:
            raise EvaluationError(f'Reference to undeclared symbol "{self.name}"') from None


class GetAttr(Node):
    """Attribute access, `target.name`."""

    __slots__ = ('name', 'target')

    def __init__(self, target: Node, name: str) -> None:
        """Initialize an attribute access."""
        self.target = target
        self.name = name

    def children(self) -> 'Sequence[Node]':
        """Return the target."""
        return (self.target,)

    def traversal(self) -> Traversal | None:
        """Extend the target traversal with the attribute name."""
        if (base := self.target.traversal()) is None:
            return None
        return (*base, self.name)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Read the attribute from a mapping."""
        target = require_known(self.target.evaluate(environment), 'Attribute source')

        if isinstance(target, MAPPINGS):
            if self.name in target:
                return target[self.name]
            if is_partial(target):
                return UNKNOWN
            raise EvaluationError(f'Unsupported attribute "{self.name}"')

        if target is None:
            raise EvaluationError(f'Attempt to get attribute "{self.name}" from a null value')

        raise EvaluationError(
            f'Can not access attribute "{self.name}" on {type_name(target)} value',
        )


class Index(Node):
    """Index access, `target[key]`."""

    __slots__ = ('key', 'target')

    def __init__(self, target: Node, key: Node) -> None:
        """Initialize an index access."""
        self.target = target
        self.key = key

    def children(self) -> 'Sequence[Node]':
        """Return the target and the key."""
        return (self.target, self.key)

    def traversal(self) -> Traversal | None:
        """Extend the target traversal with a constant key."""
        if not isinstance(self.key, Literal) or (base := self.target.traversal()) is None:
            return None
        return (*base, to_string(self.key.value))

    def references(self) -> Iterator[Traversal]:
        """Iterate over traversals of the target and the key."""
        if (traversal := self.traversal()) is not None:
            yield traversal
            return

        yield from self.target.references()
        yield from self.key.references()

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Read an item from a sequence or a mapping."""
        target = require_known(self.target.evaluate(environment), 'Index source')
        key = require_known(self.key.evaluate(environment), 'Index key')

        if isinstance(target, MAPPINGS):
            if isinstance(key, str):
                if key in target:
                    return target[key]
                if is_partial(target):
                    return UNKNOWN
            raise EvaluationError(f'The given key {key!r} does not identify an element')

        if isinstance(target, SEQUENCES) and not isinstance(target, (set, frozenset)):
            if not is_number(key) or int(key) != key:
                raise EvaluationError(f'Index must be a whole number, got {type_name(key)}')
            if not 0 <= int(key) < len(target):
                raise EvaluationError(f'Index {int(key)} out of range for {len(target)} elements')
            return target[int(key)]

        raise EvaluationError(f'Can not index {type_name(target)} value')


class Splat(Node):
    """Splat traversal, `source[*].attribute`."""

    __slots__ = ('body', 'source')

    def __init__(self, source: Node, body: Node) -> None:
        """Initialize a splat.

        Args:
            source: Collection being traversed.
            body: Traversal applied to each item, rooted at `SPLAT_SYMBOL`.
        """
        self.source = source
        self.body = body

    def children(self) -> 'Sequence[Node]':
        """Return the source and the body."""
        return (self.source, self.body)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Apply the body to every item of the source."""
        source = require_known(self.source.evaluate(environment), 'Splat source')

        if source is None:
            return []
        if not isinstance(source, SEQUENCES):
            source = [source]

        return [
            self.body.evaluate(environment.bind(**{SPLAT_SYMBOL: item}))
            for item in source
        ]


class Call(Node):
    """Function call."""

    __slots__ = ('arguments', 'name')

    def __init__(self, name: str, arguments: 'Sequence[Node]') -> None:
        """Initialize a call."""
        self.name = name
        self.arguments = tuple(arguments)

    def children(self) -> 'Sequence[Node]':
        """Return argument nodes."""
        return self.arguments

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Resolve the function in the environment and call it."""
        function = environment.functions.get(self.name)
        if function is None:
            raise EvaluationError(f'Call to unknown function "{self.name}"')

        return function(self.arguments, environment)


class Unary(Node):
    """Unary operation, `!a` or `-a`."""

    __slots__ = ('operand', 'operator')

    def __init__(self, operator: str, operand: Node) -> None:
        """Initialize a unary operation."""
        self.operator = operator
        self.operand = operand

    def children(self) -> 'Sequence[Node]':
        """Return the operand."""
        return (self.operand,)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Apply the operator."""
        value = require_known(self.operand.evaluate(environment), 'Operand')

        if self.operator == '!':
            if not isinstance(value, bool):
                raise EvaluationError(f'Operator "!" requires a bool, got {type_name(value)}')
            return not value

        if not is_number(value):
            raise EvaluationError(f'Operator "-" requires a number, got {type_name(value)}')
        return -value


def _arithmetic(operator: str, left: RuntimeValue, right: RuntimeValue) -> RuntimeValue:
    """Apply an arithmetic operator to two numbers."""
    if not is_number(left) or not is_number(right):
        raise EvaluationError(
            f'Operator "{operator}" requires numbers, '
            f'got {type_name(left)} and {type_name(right)}',
        )

    match operator:
        case '+':
            return left + right
        case '-':
            return left - right
        case '*':
            return left * right

    if right == 0:
        raise EvaluationError('Division by zero')

    if operator == '%':
        return left % right

    result = left / right
    if isinstance(left, int) and isinstance(right, int) and result.is_integer():
        return int(result)
    return result


def _ordering(operator: str, left: RuntimeValue, right: RuntimeValue) -> bool:
    """Apply an ordering operator to two numbers."""
    if not is_number(left) or not is_number(right):
        raise EvaluationError(
            f'Operator "{operator}" requires numbers, '
            f'got {type_name(left)} and {type_name(right)}',
        )

    match operator:
        case '<':
            return bool(left < right)
        case '<=':
            return bool(left <= right)
        case '>':
            return bool(left > right)

    return bool(left >= right)


class Binary(Node):
    """Binary operation."""

    __slots__ = ('left', 'operator', 'right')

    LOGICAL = frozenset({'&&', '||'})
    EQUALITY = frozenset({'==', '!='})
    ORDERING = frozenset({'<', '<=', '>', '>='})

    def __init__(self, operator: str, left: Node, right: Node) -> None:
        """Initialize a binary operation."""
        self.operator = operator
        self.left = left
        self.right = right

    def children(self) -> 'Sequence[Node]':
        """Return both operands."""
        return (self.left, self.right)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Apply the operator.

        Logical operators short-circuit: the right operand is evaluated
        only when the left one does not decide the result.
        """
        left = require_known(self.left.evaluate(environment), 'Left operand')

        if self.operator in self.LOGICAL:
            return self._logical(left, environment)

        right = self.right.evaluate(environment)

        if self.operator in self.EQUALITY:
            if not is_known(left) or not is_known(right):
                raise UnknownValueError('Compared value is known only after apply')
            equal = values_equal(left, right)
            return equal if self.operator == '==' else not equal

        require_known(right, 'Right operand')

        if self.operator in self.ORDERING:
            return _ordering(self.operator, left, right)

        return _arithmetic(self.operator, left, right)

    def _logical(self, left: RuntimeValue, environment: 'Environment') -> bool:
        """Evaluate `&&` or `||`."""
        if not isinstance(left, bool):
            raise EvaluationError(f'Operator "{self.operator}" requires bools, got {type_name(left)}')

        if (self.operator == '&&' and not left) or (self.operator == '||' and left):
            return left

        right = require_known(self.right.evaluate(environment), 'Right operand')
        if not isinstance(right, bool):
            raise EvaluationError(f'Operator "{self.operator}" requires bools, got {type_name(right)}')

        return right


class Conditional(Node):
    """Conditional expression, `condition ? then : otherwise`."""

    __slots__ = ('condition', 'otherwise', 'then')

    def __init__(self, condition: Node, then: Node, otherwise: Node) -> None:
        """Initialize a conditional."""
        self.condition = condition
        self.then = then
        self.otherwise = otherwise

    def children(self) -> 'Sequence[Node]':
        """Return the condition and both branches."""
        return (self.condition, self.then, self.otherwise)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Evaluate the selected branch."""
        condition = require_known(self.condition.evaluate(environment), 'Condition')
        if not isinstance(condition, bool):
            raise EvaluationError(f'Condition must be a bool, got {type_name(condition)}')

        branch = self.then if condition else self.otherwise

        return branch.evaluate(environment)


class TupleNode(Node):
    """Tuple constructor, `[a, b]`."""

    __slots__ = ('items',)

    def __init__(self, items: 'Sequence[Node]') -> None:
        """Initialize a tuple constructor."""
        self.items = tuple(items)

    def children(self) -> 'Sequence[Node]':
        """Return item nodes."""
        return self.items

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Evaluate all items."""
        return [item.evaluate(environment) for item in self.items]


class ObjectNode(Node):
    """Object constructor, `{key = value}`."""

    __slots__ = ('items',)

    def __init__(self, items: 'Sequence[tuple[Node, Node]]') -> None:
        """Initialize an object constructor."""
        self.items = tuple(items)

    def children(self) -> 'Sequence[Node]':
        """Return key and value nodes."""
        return tuple(node for pair in self.items for node in pair)

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Evaluate all keys and values."""
        result: dict[str, RuntimeValue] = {}
        for key_node, value_node in self.items:
            key = to_string(key_node.evaluate(environment))
            result[key] = value_node.evaluate(environment)

        return result


class ForNode(Node):
    """For expression producing a tuple or an object.

    `[for k, v in coll : value if condition]` or
    `{for k, v in coll : key => value if condition}`.
    """

    __slots__ = ('collection', 'condition', 'key_name', 'key_result', 'value_name', 'value_result')

    def __init__(self, *, key_name: str | None, value_name: str,  # noqa: PLR0913
                 collection: Node, value_result: Node,
                 key_result: Node | None = None,
                 condition: Node | None = None) -> None:
        """Initialize a for expression."""
        self.key_name = key_name
        self.value_name = value_name
        self.collection = collection
        self.key_result = key_result
        self.value_result = value_result
        self.condition = condition

    def children(self) -> 'Sequence[Node]':
        """Return all nested expressions."""
        return tuple(
            node
            for node in (self.collection, self.key_result, self.value_result, self.condition)
            if node is not None
        )

    def references(self) -> Iterator[Traversal]:
        """Iterate over traversals, excluding loop variables."""
        local_names = {self.value_name, self.key_name}

        yield from self.collection.references()
        for node in self.children()[1:]:
            for traversal in node.references():
                if traversal[0] not in local_names:
                    yield traversal

    def _items(self, collection: RuntimeValue) -> 'Iterator[tuple[RuntimeValue, RuntimeValue]]':
        """Iterate over key and value pairs of a collection."""
        if isinstance(collection, MAPPINGS):
            yield from collection.items()
        elif isinstance(collection, (set, frozenset)):
            for item in sorted(collection, key=repr):
                yield item, item
        elif isinstance(collection, SEQUENCES):
            yield from enumerate(collection)
        else:
            raise EvaluationError(f'Can not iterate over {type_name(collection)} value')

    def evaluate(self, environment: 'Environment') -> RuntimeValue:
        """Evaluate the expression for every item of the collection."""
        collection = require_known(self.collection.evaluate(environment), 'Iterated collection')

        tuple_result: list[RuntimeValue] = []
        object_result: dict[str, RuntimeValue] = {}

        for key, value in self._items(collection):
            scope = {self.value_name: value}
            if self.key_name:
                scope[self.key_name] = key
            local = environment.bind(**scope)

            if self.condition is not None:
                include = require_known(self.condition.evaluate(local), 'For condition')
                if not isinstance(include, bool):
                    raise EvaluationError(f'For condition must be a bool, got {type_name(include)}')
                if not include:
                    continue

            if self.key_result is None:
                tuple_result.append(self.value_result.evaluate(local))
                continue

            result_key = to_string(self.key_result.evaluate(local))
            if result_key in object_result:
                raise EvaluationError(f'Duplicate object key {result_key!r} in for expression')
            object_result[result_key] = self.value_result.evaluate(local)

        if self.key_result is None:
            return tuple_result

        return object_result


def collect_references(nodes: 'Sequence[Node]') -> set[Traversal]:
    """Collect traversals read by several nodes."""
    return {
        traversal
        for node in nodes
        for traversal in node.references()
    }


def as_mapping(value: RuntimeValue) -> Mapping[str, RuntimeValue]:
    """Return a mapping value or raise an evaluation error."""
    if not isinstance(value, MAPPINGS):
        raise EvaluationError(f'Expected an object, got {type_name(value)}')

    return value
