"""Restricted boolean/arithmetic expression language used by rule conditions.

Conditions such as ``height <= 3 && distanceFromBoundary >= 0.9`` are parsed
into a small expression tree and evaluated against a mapping of variable
values. Nothing is ever handed to ``eval``.

Precedence, lowest first::

    |  ||
    &  &&
    <  <=  >  >=  ==  !=
    +  -
    *  /
    !  - (unary)
    number | identifier | ( expr )
"""

import functools
from dataclasses import dataclass
from typing import FrozenSet, List, Mapping, Optional, Set, Union

Value = Union[float, bool]

COMPARISON_OPS = {"<", "<=", ">", ">=", "==", "!="}
_TWO_CHAR_OPS = {"<=", ">=", "==", "!=", "||", "&&"}
_ONE_CHAR_OPS = {"<", ">", "!", "|", "&", "+", "-", "*", "/", "(", ")"}
_ALIASES = {"||": "|", "&&": "&"}
MAX_NESTING = 32


class ExpressionError(Exception):
    """Base class for anything that goes wrong with a condition expression."""


class ExpressionSyntaxError(ExpressionError):
    def __init__(self, message: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(message)


class EvaluationError(ExpressionError):
    """Raised when a well-formed expression cannot be evaluated."""


class UnknownVariable(EvaluationError):
    def __init__(self, names: List[str]):
        self.names = names
        quoted = ", ".join(f"'{name}'" for name in names)
        label = "variable" if len(names) == 1 else "variables"
        super().__init__(f"unknown {label} {quoted}")


class DivisionByZero(EvaluationError):
    pass


class TypeMismatch(EvaluationError):
    pass


@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER, IDENT, OP
    value: str
    position: int


@dataclass(frozen=True)
class ExprNode:
    pass


@dataclass(frozen=True)
class NumberNode(ExprNode):
    value: float


@dataclass(frozen=True)
class VariableNode(ExprNode):
    name: str


@dataclass(frozen=True)
class UnaryNode(ExprNode):
    op: str
    operand: ExprNode


@dataclass(frozen=True)
class BinaryNode(ExprNode):
    op: str
    left: ExprNode
    right: ExprNode


def _is_digit(ch: str) -> bool:
    # str.isdigit also accepts superscripts and other non-ASCII digits
    return "0" <= ch <= "9"


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch.isspace():
            pos += 1
            continue
        if _is_digit(ch) or (ch == "." and pos + 1 < length and _is_digit(text[pos + 1])):
            start = pos
            seen_dot = False
            while pos < length and (_is_digit(text[pos]) or (text[pos] == "." and not seen_dot)):
                if text[pos] == ".":
                    seen_dot = True
                pos += 1
            tokens.append(Token("NUMBER", text[start:pos], start))
            continue
        if ch.isalpha() or ch == "_":
            start = pos
            while pos < length and (text[pos].isalnum() or text[pos] == "_"):
                pos += 1
            tokens.append(Token("IDENT", text[start:pos], start))
            continue
        pair = text[pos : pos + 2]
        if pair in _TWO_CHAR_OPS:
            tokens.append(Token("OP", _ALIASES.get(pair, pair), pos))
            pos += 2
            continue
        if ch in _ONE_CHAR_OPS:
            tokens.append(Token("OP", ch, pos))
            pos += 1
            continue
        raise ExpressionSyntaxError(f"Unexpected character {ch!r}", pos)
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0
        self.depth = 0

    def parse(self) -> ExprNode:
        if not self.tokens:
            raise ExpressionSyntaxError("Empty expression")
        node = self._or()
        if self.pos < len(self.tokens):
            token = self.tokens[self.pos]
            raise ExpressionSyntaxError(f"Unexpected {token.value!r}", token.position)
        return node

    def _or(self) -> ExprNode:
        node = self._and()
        while self._match("|"):
            node = BinaryNode("|", node, self._and())
        return node

    def _and(self) -> ExprNode:
        node = self._comparison()
        while self._match("&"):
            node = BinaryNode("&", node, self._comparison())
        return node

    def _comparison(self) -> ExprNode:
        node = self._additive()
        op = self._match(*COMPARISON_OPS)
        if op:
            node = BinaryNode(op, node, self._additive())
            chained = self._peek()
            if chained is not None and chained.value in COMPARISON_OPS:
                raise ExpressionSyntaxError("Chained comparisons are not supported", chained.position)
        return node

    def _additive(self) -> ExprNode:
        node = self._multiplicative()
        while True:
            op = self._match("+", "-")
            if not op:
                return node
            node = BinaryNode(op, node, self._multiplicative())

    def _multiplicative(self) -> ExprNode:
        node = self._unary()
        while True:
            op = self._match("*", "/")
            if not op:
                return node
            node = BinaryNode(op, node, self._unary())

    def _unary(self) -> ExprNode:
        op = self._match("!", "-")
        if op:
            self._enter()
            node = UnaryNode(op, self._unary())
            self.depth -= 1
            return node
        return self._primary()

    def _primary(self) -> ExprNode:
        token = self._peek()
        if token is None:
            raise ExpressionSyntaxError("Unexpected end of expression", len(self.text))
        if token.kind == "NUMBER":
            self.pos += 1
            return NumberNode(float(token.value))
        if token.kind == "IDENT":
            self.pos += 1
            return VariableNode(token.value)
        if token.value == "(":
            self.pos += 1
            self._enter()
            node = self._or()
            if not self._match(")"):
                raise ExpressionSyntaxError("Expected ')'", self._position())
            self.depth -= 1
            return node
        raise ExpressionSyntaxError(f"Unexpected {token.value!r}", token.position)

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise ExpressionSyntaxError(f"Expression nested deeper than {MAX_NESTING} levels", self._position())

    def _peek(self) -> Optional[Token]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _match(self, *ops: str) -> Optional[str]:
        token = self._peek()
        if token is not None and token.kind == "OP" and token.value in ops:
            self.pos += 1
            return token.value
        return None

    def _position(self) -> int:
        token = self._peek()
        return token.position if token is not None else len(self.text)


def _collect_variables(node: ExprNode, found: Set[str]) -> None:
    if isinstance(node, VariableNode):
        found.add(node.name)
    elif isinstance(node, UnaryNode):
        _collect_variables(node.operand, found)
    elif isinstance(node, BinaryNode):
        _collect_variables(node.left, found)
        _collect_variables(node.right, found)


@dataclass(frozen=True)
class CompiledExpression:
    source: str
    root: ExprNode
    variables: FrozenSet[str]

    def evaluate(self, context: Mapping[str, object]) -> bool:
        return evaluate(self, context)


@functools.lru_cache(maxsize=1024)
def parse(text: str) -> CompiledExpression:
    """Parse ``text`` once; the result is safe to share and reuse."""
    try:
        root = _Parser(text).parse()
        found: Set[str] = set()
        _collect_variables(root, found)
    except RecursionError:
        # long operator chains build deep trees without any nesting
        raise ExpressionSyntaxError("Expression is too long to parse") from None
    return CompiledExpression(source=text, root=root, variables=frozenset(found))


def evaluate(compiled: CompiledExpression, context: Mapping[str, object]) -> bool:
    missing = sorted(name for name in compiled.variables if name not in context)
    if missing:
        raise UnknownVariable(missing)
    try:
        result = _eval(compiled.root, context)
    except RecursionError:
        raise EvaluationError("expression is too deeply nested to evaluate") from None
    if not isinstance(result, bool):
        raise TypeMismatch("expression evaluates to a number, not a boolean")
    return result


def _resolve(name: str, context: Mapping[str, object]) -> Value:
    value = context[name]
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    raise TypeMismatch(f"variable '{name}' is {type(value).__name__}, not a number or boolean")


def _number(value: Value, op: str) -> float:
    if isinstance(value, bool):
        raise TypeMismatch(f"operator '{op}' needs a number, got a boolean")
    return value


def _boolean(value: Value, op: str) -> bool:
    if not isinstance(value, bool):
        raise TypeMismatch(f"operator '{op}' needs a boolean, got a number")
    return value


def _eval(node: ExprNode, context: Mapping[str, object]) -> Value:
    if isinstance(node, NumberNode):
        return node.value
    if isinstance(node, VariableNode):
        return _resolve(node.name, context)
    if isinstance(node, UnaryNode):
        operand = _eval(node.operand, context)
        if node.op == "!":
            return not _boolean(operand, "!")
        return -_number(operand, "-")
    if not isinstance(node, BinaryNode):
        raise TypeMismatch(f"unsupported node {type(node).__name__}")

    op = node.op
    if op == "|":
        return _boolean(_eval(node.left, context), op) or _boolean(_eval(node.right, context), op)
    if op == "&":
        return _boolean(_eval(node.left, context), op) and _boolean(_eval(node.right, context), op)

    left = _eval(node.left, context)
    right = _eval(node.right, context)
    if op in ("==", "!="):
        if isinstance(left, bool) != isinstance(right, bool):
            raise TypeMismatch(f"operator '{op}' cannot compare a boolean with a number")
        return (left == right) if op == "==" else (left != right)

    left = _number(left, op)
    right = _number(right, op)
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        if right == 0:
            raise DivisionByZero("division by zero")
        return left / right
    raise TypeMismatch(f"unsupported operator '{op}'")
