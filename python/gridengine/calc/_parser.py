"""Formula tokenizer, AST and recursive-descent parser.

Grammar, lowest to highest precedence (binary levels are left-associative)::

    comparison  :=  concat (("=" | "<>" | "<" | "<=" | ">" | ">=") concat)*
    concat      :=  additive ("&" additive)*
    additive    :=  multiplicative (("+" | "-") multiplicative)*
    multiplicative := power (("*" | "/") power)*
    power       :=  unary ("^" unary)*
    unary       :=  ("-" | "+") unary | primary "%"*
    primary     :=  NUMBER | STRING | TRUE | FALSE | REF | REF ":" REF
                 |  NAME "(" [comparison ("," comparison)*] ")"
                 |  "(" comparison ")"
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

from gridengine._cell import CellValue
from gridengine._errors import InvalidRef, InvalidSyntax
from gridengine._refs import CellRange, CellRef
from gridengine._utils import MAX_ROW_DIGITS, column_index

if TYPE_CHECKING:
    from gridengine.calc._protocol import EvaluationContext

# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
    |(?P<string>"(?:[^"]|"")*")
    |(?P<word>\$?[A-Za-z_][A-Za-z0-9_.]*(?:\$[0-9]+)?)
    |(?P<op><>|<=|>=|[-+*/^&%=<>])
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<comma>,)
    |(?P<colon>:)
    |(?P<bang>!)
    """,
    re.VERBOSE,
)

# Single cell ref inside a formula: A1, $A$1, $A1, A$1
_REF_RE = re.compile(r"\$?([A-Za-z]+)\$?([0-9]+)")


@dataclass(frozen=True)
class Token:
    type: str
    text: str
    pos: int


def tokenize(body: str) -> list[Token]:
    """Split a formula body (no leading ``=``) into tokens, dropping whitespace."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(body):
        m = _TOKEN_RE.match(body, pos)
        if m is None:
            if body[pos] == '"':
                raise InvalidSyntax(f"Unterminated string literal at position {pos}")
            raise InvalidSyntax(f"Unexpected character {body[pos]!r} at position {pos}")
        kind = m.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    return tokens


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


class BinaryOperator(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    POW = "^"
    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    CONCAT = "&"


class UnaryOperator(Enum):
    NEG = "-"
    PLUS = "+"
    PERCENT = "%"


@dataclass(frozen=True)
class Literal:
    value: CellValue


@dataclass(frozen=True)
class Ref:
    cell: CellRef


@dataclass(frozen=True)
class RangeRef:
    range: CellRange


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple[FormulaExpr, ...] = ()


@dataclass(frozen=True)
class BinOp:
    op: BinaryOperator
    left: FormulaExpr
    right: FormulaExpr


@dataclass(frozen=True)
class UnaryOp:
    op: UnaryOperator
    operand: FormulaExpr


FormulaExpr = Union[Literal, Ref, RangeRef, Call, BinOp, UnaryOp]

_COMPARISON_OPS = {
    "=": BinaryOperator.EQ,
    "<>": BinaryOperator.NE,
    "<": BinaryOperator.LT,
    "<=": BinaryOperator.LE,
    ">": BinaryOperator.GT,
    ">=": BinaryOperator.GE,
}
# Deepest nesting of parentheses, calls and prefix signs a formula may use
MAX_NESTING = 64

_ADDITIVE_OPS = {"+": BinaryOperator.ADD, "-": BinaryOperator.SUB}
_MULTIPLICATIVE_OPS = {"*": BinaryOperator.MUL, "/": BinaryOperator.DIV}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    __slots__ = ("_tokens", "_index", "_depth")

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._index = 0
        # Open parentheses, calls and prefix signs around the current position
        self._depth = 0

    def _nest(self, tok: Token) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING:
            raise InvalidSyntax(
                f"Formula nests more than {MAX_NESTING} levels deep at position {tok.pos}"
            )

    def _peek(self, offset: int = 0) -> Token | None:
        i = self._index + offset
        return self._tokens[i] if i < len(self._tokens) else None

    def _advance(self) -> Token:
        tok = self._peek()
        if tok is None:
            raise InvalidSyntax("Unexpected end of formula")
        self._index += 1
        return tok

    def _accept_op(self, ops: dict[str, BinaryOperator]) -> BinaryOperator | None:
        tok = self._peek()
        if tok is not None and tok.type == "op" and tok.text in ops:
            self._index += 1
            return ops[tok.text]
        return None

    def _expect(self, kind: str) -> Token:
        tok = self._peek()
        if tok is None:
            raise InvalidSyntax(f"Expected {kind!r} but the formula ended")
        if tok.type != kind:
            raise InvalidSyntax(f"Expected {kind!r} at position {tok.pos}, found {tok.text!r}")
        self._index += 1
        return tok

    def parse(self) -> FormulaExpr:
        expr = self._comparison()
        tok = self._peek()
        if tok is not None:
            if tok.type == "colon":
                raise InvalidRef(f"Range separator at position {tok.pos} must join two cell references")
            raise InvalidSyntax(f"Unexpected {tok.text!r} at position {tok.pos}")
        return expr

    # -- binary levels ----------------------------------------------------

    def _comparison(self) -> FormulaExpr:
        left = self._concat()
        while (op := self._accept_op(_COMPARISON_OPS)) is not None:
            left = BinOp(op, left, self._concat())
        return left

    def _concat(self) -> FormulaExpr:
        left = self._additive()
        while self._accept_op({"&": BinaryOperator.CONCAT}) is not None:
            left = BinOp(BinaryOperator.CONCAT, left, self._additive())
        return left

    def _additive(self) -> FormulaExpr:
        left = self._multiplicative()
        while (op := self._accept_op(_ADDITIVE_OPS)) is not None:
            left = BinOp(op, left, self._multiplicative())
        return left

    def _multiplicative(self) -> FormulaExpr:
        left = self._power()
        while (op := self._accept_op(_MULTIPLICATIVE_OPS)) is not None:
            left = BinOp(op, left, self._power())
        return left

    def _power(self) -> FormulaExpr:
        left = self._unary()
        while self._accept_op({"^": BinaryOperator.POW}) is not None:
            left = BinOp(BinaryOperator.POW, left, self._unary())
        return left

    # -- unary / postfix ----------------------------------------------------

    def _unary(self) -> FormulaExpr:
        tok = self._peek()
        if tok is not None and tok.type == "op" and tok.text in ("-", "+"):
            self._index += 1
            op = UnaryOperator.NEG if tok.text == "-" else UnaryOperator.PLUS
            self._nest(tok)
            operand = self._unary()
            self._depth -= 1
            return UnaryOp(op, operand)
        expr = self._primary()
        while (tok := self._peek()) is not None and tok.type == "op" and tok.text == "%":
            self._index += 1
            expr = UnaryOp(UnaryOperator.PERCENT, expr)
        return expr

    # -- primary --------------------------------------------------------------

    def _primary(self) -> FormulaExpr:
        tok = self._advance()
        if tok.type == "number":
            n = float(tok.text)
            if not math.isfinite(n):
                raise InvalidSyntax(f"Number {tok.text!r} at position {tok.pos} is out of range")
            return Literal(CellValue.number(n))
        if tok.type == "string":
            return Literal(CellValue.text(tok.text[1:-1].replace('""', '"')))
        if tok.type == "lparen":
            self._nest(tok)
            expr = self._comparison()
            self._expect("rparen")
            self._depth -= 1
            return expr
        if tok.type == "word":
            return self._word(tok)
        raise InvalidSyntax(f"Unexpected {tok.text!r} at position {tok.pos}")

    def _word(self, tok: Token) -> FormulaExpr:
        nxt = self._peek()
        if nxt is not None and nxt.type == "lparen":
            return self._call(tok)
        upper = tok.text.upper()
        if upper == "TRUE":
            return Literal(CellValue.boolean(True))
        if upper == "FALSE":
            return Literal(CellValue.boolean(False))

        start = _parse_ref(tok)
        if nxt is not None and nxt.type == "bang":
            raise InvalidRef(f"Cross-sheet reference {tok.text}! is not supported")
        if nxt is not None and nxt.type == "colon":
            self._index += 1
            end_tok = self._peek()
            if end_tok is None or end_tok.type != "word":
                raise InvalidRef(f"Incomplete range starting at {tok.text!r}")
            self._index += 1
            return RangeRef(CellRange(start, _parse_ref(end_tok)))
        return Ref(start)

    def _call(self, name_tok: Token) -> Call:
        if "$" in name_tok.text:
            raise InvalidSyntax(f"Invalid function name {name_tok.text!r}")
        self._expect("lparen")
        args: list[FormulaExpr] = []
        tok = self._peek()
        if tok is not None and tok.type == "rparen":
            self._index += 1
            return Call(name_tok.text.upper(), ())
        self._nest(name_tok)
        while True:
            args.append(self._comparison())
            tok = self._advance()
            if tok.type == "rparen":
                break
            if tok.type != "comma":
                raise InvalidSyntax(f"Expected ',' or ')' at position {tok.pos}, found {tok.text!r}")
        self._depth -= 1
        return Call(name_tok.text.upper(), tuple(args))


def _parse_ref(tok: Token) -> CellRef:
    m = _REF_RE.fullmatch(tok.text)
    if m is None:
        raise InvalidRef(f"Invalid reference {tok.text!r} at position {tok.pos}")
    digits = m.group(2)
    if len(digits.lstrip("0")) > MAX_ROW_DIGITS:
        raise InvalidRef(f"Row number out of range in {tok.text!r} at position {tok.pos}")
    col = column_index(m.group(1))
    row = int(digits)
    if col is None or row == 0:
        raise InvalidRef(f"Invalid reference {tok.text!r} at position {tok.pos}")
    return CellRef(row - 1, col)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def parse_expression(text: str) -> FormulaExpr:
    """Parse formula text (must start with ``=``) into an AST."""
    stripped = text.strip()
    if not stripped.startswith("="):
        raise InvalidSyntax("Formula must start with '='")
    tokens = tokenize(stripped[1:])
    if not tokens:
        raise InvalidSyntax("Formula is empty")
    try:
        return _Parser(tokens).parse()
    except RecursionError:
        raise InvalidSyntax("Formula nests too deeply") from None


def walk(expr: FormulaExpr) -> Iterator[FormulaExpr]:
    """Yield every node of *expr*, depth first."""
    stack: list[FormulaExpr] = [expr]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, Call):
            stack.extend(reversed(node.args))
        elif isinstance(node, BinOp):
            stack.append(node.right)
            stack.append(node.left)
        elif isinstance(node, UnaryOp):
            stack.append(node.operand)


def references(expr: FormulaExpr) -> tuple[frozenset[CellRef], frozenset[CellRange]]:
    """Cells and ranges referenced anywhere in *expr*."""
    cells: set[CellRef] = set()
    ranges: set[CellRange] = set()
    for node in walk(expr):
        if isinstance(node, Ref):
            cells.add(node.cell)
        elif isinstance(node, RangeRef):
            ranges.add(node.range)
    return frozenset(cells), frozenset(ranges)


def function_names(expr: FormulaExpr) -> list[str]:
    """Function names called in *expr*, in first-use order without duplicates."""
    seen: list[str] = []
    for node in walk(expr):
        if isinstance(node, Call) and node.name not in seen:
            seen.append(node.name)
    return seen


@dataclass(frozen=True)
class Formula:
    """Formula text together with its parsed expression."""

    text: str
    expr: FormulaExpr

    @classmethod
    def parse(cls, text: str) -> Formula:
        return cls(text.strip(), parse_expression(text))

    def references(self) -> tuple[frozenset[CellRef], frozenset[CellRange]]:
        return references(self.expr)

    def evaluate(self, context: EvaluationContext) -> CellValue:
        from gridengine.calc._evaluator import evaluate

        return evaluate(self.expr, context)
