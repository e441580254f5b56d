"""
Arithmetic over source columns for derived canonical columns.

Expressions such as ``{UnitPrice}*{Quantity}+{TaxTotal}`` are parsed once into
a small tree and evaluated per row. A column that is missing, blank or not
numeric evaluates to zero.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Callable, List, Tuple, Union

from errors import ExpressionSyntaxError

Lookup = Callable[[str], Decimal]

_TOKEN = re.compile(r"\s*(?:\{([^{}]+)\}|(\d+(?:\.\d*)?|\.\d+)|([-+*/()]))")


class EvaluationError(ArithmeticError):
    pass


@dataclass(frozen=True)
class Literal:
    value: Decimal

    def evaluate(self, lookup: Lookup) -> Decimal:
        return self.value

    def columns(self) -> Tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class ColumnRef:
    name: str

    def evaluate(self, lookup: Lookup) -> Decimal:
        return lookup(self.name)

    def columns(self) -> Tuple[str, ...]:
        return (self.name,)


@dataclass(frozen=True)
class Negate:
    operand: "Node"

    def evaluate(self, lookup: Lookup) -> Decimal:
        return -self.operand.evaluate(lookup)

    def columns(self) -> Tuple[str, ...]:
        return self.operand.columns()


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"

    def evaluate(self, lookup: Lookup) -> Decimal:
        a = self.left.evaluate(lookup)
        b = self.right.evaluate(lookup)
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        if self.op == "*":
            return a * b
        if b == 0:
            raise EvaluationError("division by zero")
        try:
            return a / b
        except (DivisionByZero, InvalidOperation) as exc:
            raise EvaluationError(str(exc)) from exc

    def columns(self) -> Tuple[str, ...]:
        return self.left.columns() + self.right.columns()


Node = Union[Literal, ColumnRef, Negate, BinaryOp]


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    stripped = text.rstrip()
    while pos < len(stripped):
        m = _TOKEN.match(stripped, pos)
        if not m:
            raise ExpressionSyntaxError(f"Unexpected character at {pos} in expression '{text}'")
        col, num, op = m.groups()
        if col is not None:
            tokens.append(("col", col.strip()))
        elif num is not None:
            tokens.append(("num", num))
        else:
            tokens.append(("op", op))
        pos = m.end()
    return tokens


class _Parser:
    # expr   := term (('+'|'-') term)*
    # term   := factor (('*'|'/') factor)*
    # factor := '-' factor | NUMBER | {COLUMN} | '(' expr ')'

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self):
        tok = self._peek()
        if tok is None:
            raise ExpressionSyntaxError(f"Unexpected end of expression '{self.text}'")
        self.pos += 1
        return tok

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionSyntaxError("Empty expression")
        node = self._expr()
        if self._peek() is not None:
            raise ExpressionSyntaxError(f"Unexpected token '{self._peek()[1]}' in '{self.text}'")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._peek() in (("op", "+"), ("op", "-")):
            op = self._next()[1]
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self._peek() in (("op", "*"), ("op", "/")):
            op = self._next()[1]
            node = BinaryOp(op, node, self._factor())
        return node

    def _factor(self) -> Node:
        kind, value = self._next()
        if kind == "num":
            return Literal(Decimal(value))
        if kind == "col":
            return ColumnRef(value)
        if value == "-":
            return Negate(self._factor())
        if value == "(":
            node = self._expr()
            if self._next() != ("op", ")"):
                raise ExpressionSyntaxError(f"Missing ')' in '{self.text}'")
            return node
        raise ExpressionSyntaxError(f"Unexpected '{value}' in '{self.text}'")


def parse_expression(text: str) -> Node:
    return _Parser(text).parse()


def product(a: str, b: str) -> Node:
    return BinaryOp("*", ColumnRef(a), ColumnRef(b))


def product_plus(a: str, b: str, c: str) -> Node:
    return BinaryOp("+", product(a, b), ColumnRef(c))
