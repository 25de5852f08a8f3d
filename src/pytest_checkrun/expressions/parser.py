"""Tokenizer and recursive descent parser for expressions.

The accepted language is the expression subset of HCL: literals,
templates, tuples and objects, traversals and splats, function calls,
unary and binary operators, conditionals and for expressions.

All positions reported in syntax errors are offsets into the original
source text, including positions inside nested template interpolations.
"""

from re import ASCII
from re import compile as regexp
from typing import TYPE_CHECKING, NamedTuple

from pytest_checkrun.errors import ExpressionSyntaxError

from .nodes import (
    SPLAT_SYMBOL,
    Binary,
    Call,
    Conditional,
    ForNode,
    GetAttr,
    Index,
    Literal,
    Node,
    ObjectNode,
    Splat,
    TemplateNode,
    TupleNode,
    Unary,
    Variable,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

_NUMBER = regexp(r'\d+(\.\d+)?([eE][+-]?\d+)?', flags=ASCII)
_IDENTIFIER = regexp(r'[a-zA-Z_][\w-]*', flags=ASCII)

_OPERATORS = ('==', '!=', '<=', '>=', '&&', '||', '=>')
_PUNCTUATION = frozenset('+-*/%<>!?:.,()[]{}=')

#: Binary operator precedence, higher binds tighter.
_PRECEDENCE = {
    '||': 1,
    '&&': 2,
    '==': 3,
    '!=': 3,
    '<': 4,
    '<=': 4,
    '>': 4,
    '>=': 4,
    '+': 5,
    '-': 5,
    '*': 6,
    '/': 6,
    '%': 6,
}

_ESCAPES = {
    'n': '\n',
    'r': '\r',
    't': '\t',
    '"': '"',
    '\\': '\\',
}

_KEYWORDS = {
    'true': True,
    'false': False,
    'null': None,
}


class Token(NamedTuple):
    """Lexical token."""

    kind: str
    value: str
    position: int


def _scan_string(source: str, position: int) -> int:
    """Find the end of a quoted string.

    Args:
        source: Source text.
        position: Offset just after the opening quote.

    Returns:
        Offset just after the closing quote.
    """
    start = position - 1
    while position < len(source):
        char = source[position]
        if char == '\\':
            position += 2
        elif char == '"':
            return position + 1
        elif char == '\n':
            break
        elif source.startswith('$${', position):
            position += 3
        elif source.startswith('${', position):
            position = _scan_interpolation(source, position + 2)
        else:
            position += 1

    raise ExpressionSyntaxError('Unterminated string', source=source, position=start)


def _scan_interpolation(source: str, position: int) -> int:
    """Find the end of a template interpolation.

    Args:
        source: Source text.
        position: Offset just after the opening `${`.

    Returns:
        Offset just after the closing brace.
    """
    start = position - 2
    depth = 1
    while position < len(source):
        char = source[position]
        if char == '"':
            position = _scan_string(source, position + 1)
            continue
        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return position + 1
        position += 1

    raise ExpressionSyntaxError('Unterminated template interpolation', source=source, position=start)


class Lexer:
    """Split a region of the source text into tokens."""

    def __init__(self, source: str, start: int = 0, end: int | None = None) -> None:
        """Initialize a lexer.

        Args:
            source: Full source text.
            start: Offset of the first character of the region.
            end: Offset just after the region, defaults to the text end.
        """
        self.source = source
        self.position = start
        self.end = len(source) if end is None else end

    def error(self, message: str, position: int | None = None) -> ExpressionSyntaxError:
        """Build a syntax error pointing into the source."""
        if position is None:
            position = self.position
        return ExpressionSyntaxError(message, source=self.source, position=position)

    def _skip_blanks(self) -> None:
        """Skip whitespace and comments."""
        source = self.source
        while self.position < self.end:
            char = source[self.position]
            if char.isspace():
                self.position += 1
            elif char == '#' or source.startswith('//', self.position):
                newline = source.find('\n', self.position, self.end)
                self.position = self.end if newline < 0 else newline + 1
            elif source.startswith('/*', self.position):
                closing = source.find('*/', self.position + 2, self.end)
                if closing < 0:
                    raise self.error('Unterminated comment')
                self.position = closing + 2
            else:
                return

    def tokens(self) -> 'Iterator[Token]':
        """Iterate over tokens, ending with an `eof` token."""
        source = self.source
        while True:
            self._skip_blanks()
            start = self.position
            if start >= self.end:
                yield Token('eof', '', self.end)
                return

            char = source[start]
            if char == '"':
                self.position = _scan_string(source, start + 1)
                if self.position > self.end:
                    raise self.error('Unterminated string', start)
                yield Token('string', source[start + 1:self.position - 1], start + 1)
                continue

            if match := _NUMBER.match(source, start, self.end):
                self.position = match.end()
                yield Token('number', match.group(), start)
                continue

            if match := _IDENTIFIER.match(source, start, self.end):
                self.position = match.end()
                yield Token('ident', match.group(), start)
                continue

            operator = source[start:start + 2]
            if operator in _OPERATORS:
                self.position += 2
                yield Token('op', operator, start)
                continue

            if char in _PUNCTUATION:
                self.position += 1
                yield Token('op', char, start)
                continue

            raise self.error(f'Unexpected character {char!r}')


class Parser:
    """Recursive descent parser producing expression nodes."""

    def __init__(self, source: str, start: int = 0, end: int | None = None) -> None:
        """Initialize a parser over a region of the source text."""
        self.source = source
        self._lexer = Lexer(source, start, end)
        self._tokens = self._lexer.tokens()
        self._buffer: list[Token] = []

    def peek(self, offset: int = 0) -> Token:
        """Look ahead without consuming tokens."""
        while len(self._buffer) <= offset:
            self._buffer.append(next(self._tokens))
        return self._buffer[offset]

    def advance(self) -> Token:
        """Consume and return the current token."""
        token = self.peek()
        if token.kind != 'eof':
            self._buffer.pop(0)
        return token

    def check(self, value: str, kind: str = 'op', offset: int = 0) -> bool:
        """Check the kind and value of a token ahead."""
        token = self.peek(offset)
        return token.kind == kind and token.value == value

    def accept(self, value: str, kind: str = 'op') -> bool:
        """Consume the current token when it matches."""
        if self.check(value, kind):
            self.advance()
            return True
        return False

    def expect(self, value: str, kind: str = 'op') -> Token:
        """Consume the current token, requiring it to match."""
        if not self.check(value, kind):
            raise self.unexpected(f'expected "{value}"')
        return self.advance()

    def expect_identifier(self) -> str:
        """Consume an identifier token."""
        token = self.peek()
        if token.kind != 'ident':
            raise self.unexpected('expected an identifier')
        return self.advance().value

    def unexpected(self, hint: str | None = None) -> ExpressionSyntaxError:
        """Build an error for the current token."""
        token = self.peek()
        message = 'Unexpected end of expression' if token.kind == 'eof' else f'Unexpected token "{token.value}"'
        if hint:
            message = f'{message}, {hint}'
        return ExpressionSyntaxError(message, source=self.source, position=token.position)

    def parse(self) -> Node:
        """Parse a complete expression."""
        if self.peek().kind == 'eof':
            raise self.unexpected()

        node = self.expression()
        if self.peek().kind != 'eof':
            raise self.unexpected()

        return node

    def expression(self) -> Node:
        """Parse an expression including the conditional operator."""
        condition = self.binary(1)
        if not self.accept('?'):
            return condition

        then = self.expression()
        self.expect(':')
        otherwise = self.expression()

        return Conditional(condition, then, otherwise)

    def binary(self, precedence: int) -> Node:
        """Parse binary operators by precedence climbing."""
        left = self.unary()
        while True:
            token = self.peek()
            current = _PRECEDENCE.get(token.value) if token.kind == 'op' else None
            if current is None or current < precedence:
                return left
            self.advance()
            right = self.binary(current + 1)
            left = Binary(token.value, left, right)

    def unary(self) -> Node:
        """Parse unary operators."""
        token = self.peek()
        if token.kind == 'op' and token.value in ('!', '-'):
            self.advance()
            return Unary(token.value, self.unary())

        return self.postfix(self.primary())

    def traversal(self, node: Node) -> Node | None:
        """Parse one attribute or index step, if present."""
        if self.check('.') and not self.check('*', offset=1):
            self.advance()
            token = self.peek()
            if token.kind == 'number':
                self.advance()
                return Index(node, Literal(int(token.value)))
            return GetAttr(node, self.expect_identifier())

        if self.check('[') and not self.check('*', offset=1):
            self.advance()
            key = self.expression()
            self.expect(']')
            return Index(node, key)

        return None

    def postfix(self, node: Node) -> Node:
        """Parse traversals and splats following a primary expression."""
        while True:
            if (step := self.traversal(node)) is not None:
                node = step
                continue

            full = self.check('[') and self.check('*', offset=1)
            if not full and not (self.check('.') and self.check('*', offset=1)):
                return node

            self.advance()
            self.advance()
            if full:
                self.expect(']')

            body: Node = Variable(SPLAT_SYMBOL)
            while (step := self.traversal(body)) is not None:
                body = step

            node = Splat(node, body)

    def primary(self) -> Node:
        """Parse a primary expression."""
        token = self.peek()

        if token.kind == 'number':
            self.advance()
            number = float(token.value)
            return Literal(int(token.value) if number.is_integer() and token.value.isdigit() else number)

        if token.kind == 'string':
            self.advance()
            return parse_template_region(
                self.source, token.position, token.position + len(token.value),
                quoted=True,
            )

        if token.kind == 'ident':
            self.advance()
            if token.value in _KEYWORDS:
                return Literal(_KEYWORDS[token.value])
            if self.accept('('):
                return Call(token.value, self.items(')'))
            return Variable(token.value)

        if self.accept('('):
            node = self.expression()
            self.expect(')')
            return node

        if self.accept('['):
            if self.check('for', 'ident') and self.peek(1).kind == 'ident':
                return self.for_expression(']')
            return TupleNode(self.items(']'))

        if self.accept('{'):
            if self.check('for', 'ident') and self.peek(1).kind == 'ident':
                return self.for_expression('}')
            return self.object_items()

        raise self.unexpected()

    def items(self, closing: str) -> list[Node]:
        """Parse comma separated expressions up to a closing bracket."""
        items: list[Node] = []
        while not self.accept(closing):
            items.append(self.expression())
            if not self.accept(','):
                self.expect(closing)
                break

        return items

    def object_items(self) -> ObjectNode:
        """Parse object constructor items after the opening brace."""
        items: list[tuple[Node, Node]] = []
        while not self.accept('}'):
            token = self.peek()
            if token.kind == 'ident' and (self.check('=', offset=1) or self.check(':', offset=1)):
                self.advance()
                key: Node = Literal(token.value)
            else:
                key = self.expression()

            if not self.accept('='):
                self.expect(':')

            items.append((key, self.expression()))
            self.accept(',')

        return ObjectNode(items)

    def for_expression(self, closing: str) -> ForNode:
        """Parse a for expression after its opening bracket."""
        self.expect('for', 'ident')

        key_name: str | None = None
        value_name = self.expect_identifier()
        if self.accept(','):
            key_name, value_name = value_name, self.expect_identifier()

        self.expect('in', 'ident')
        collection = self.expression()
        self.expect(':')

        key_result: Node | None = None
        if closing == '}':
            key_result = self.expression()
            self.expect('=>')
        value_result = self.expression()

        condition: Node | None = None
        if self.accept('if', 'ident'):
            condition = self.expression()

        self.expect(closing)

        return ForNode(
            key_name=key_name,
            value_name=value_name,
            collection=collection,
            key_result=key_result,
            value_result=value_result,
            condition=condition,
        )


def _read_escape(source: str, position: int) -> tuple[str, int]:
    """Decode an escape sequence starting at a backslash."""
    char = source[position + 1:position + 2]
    if char in _ESCAPES:
        return _ESCAPES[char], position + 2

    if char in ('u', 'U'):
        width = 4 if char == 'u' else 8
        digits = source[position + 2:position + 2 + width]
        if len(digits) == width:
            try:
                return chr(int(digits, 16)), position + 2 + width
            except ValueError:
                pass

    raise ExpressionSyntaxError('Invalid escape sequence', source=source, position=position)


def parse_template_region(source: str, start: int, end: int, *, quoted: bool) -> Node:
    """Parse a region of text as a string template.

    Args:
        source: Full source text.
        start: Offset of the first template character.
        end: Offset just after the last template character.
        quoted: Whether the template is a quoted string literal, in
            which case backslash escapes are decoded.

    Returns:
        A `Literal` for templates without interpolations, otherwise
        a `TemplateNode`.
    """
    parts: list[str | Node] = []
    text: list[str] = []
    position = start

    while position < end:
        char = source[position]
        if quoted and char == '\\':
            decoded, position = _read_escape(source, position)
            text.append(decoded)
        elif source.startswith('$${', position) or source.startswith('%%{', position):
            text.append(source[position + 1:position + 3])
            position += 3
        elif source.startswith('${', position):
            closing = _scan_interpolation(source, position + 2)
            if closing > end:
                raise ExpressionSyntaxError(
                    'Unterminated template interpolation',
                    source=source,
                    position=position,
                )
            if text:
                parts.append(''.join(text))
                text = []
            parts.append(Parser(source, position + 2, closing - 1).parse())
            position = closing
        else:
            text.append(char)
            position += 1

    if text:
        parts.append(''.join(text))

    if not any(isinstance(part, Node) for part in parts):
        return Literal(''.join(part for part in parts if isinstance(part, str)))

    return TemplateNode(parts)


def parse(source: str) -> Node:
    """Parse expression source text."""
    return Parser(source).parse()


def parse_template(source: str) -> Node:
    """Parse unquoted template text such as an error message."""
    return parse_template_region(source, 0, len(source), quoted=False)
