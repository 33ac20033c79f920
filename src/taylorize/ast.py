"""Expression tree nodes for the restricted right-hand-side subset."""

from __future__ import annotations

from dataclasses import dataclass, field
from numbers import Number as Numeric
from typing import Union


@dataclass(frozen=True)
class Span:
    line: int
    col: int
    end_line: int
    end_col: int

    def __str__(self) -> str:
        return f"line {self.line}, column {self.col + 1}"


def _span() -> Span | None:
    # Locations never take part in structural equality.
    return field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Literal:
    value: Numeric
    span: Span | None = _span()


@dataclass(frozen=True)
class Name:
    id: str
    span: Span | None = _span()


@dataclass(frozen=True)
class Attribute:
    value: "Expr"
    attr: str
    span: Span | None = _span()


@dataclass(frozen=True)
class Index:
    value: Name
    index: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expr"
    right: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Expr"
    right: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class Call:
    func: str
    args: tuple["Expr", ...]
    span: Span | None = _span()

    @property
    def short_name(self) -> str:
        return self.func.rpartition(".")[2]


@dataclass(frozen=True)
class ArrayDecl:
    length: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class PlainAssign:
    target: str
    value: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class IndexedAssign:
    target: Index
    value: "Expr"
    span: Span | None = _span()


@dataclass(frozen=True)
class Block:
    statements: tuple["Stmt", ...]
    span: Span | None = _span()


@dataclass(frozen=True)
class Conditional:
    test: "Expr"
    body: Block
    orelse: Block
    span: Span | None = _span()


@dataclass(frozen=True)
class Loop:
    var: str
    start: "Expr"
    stop: "Expr"
    step: "Expr"
    body: Block
    span: Span | None = _span()


@dataclass(frozen=True)
class Return:
    value: "Expr | None" = None
    span: Span | None = _span()


@dataclass(frozen=True)
class Signature:
    output: str
    state: str
    params: str
    time: str

    def __iter__(self):
        return iter((self.output, self.state, self.params, self.time))


@dataclass(frozen=True)
class Function:
    name: str
    signature: Signature
    body: Block
    source: str = field(default="", compare=False, repr=False)
    filename: str | None = field(default=None, compare=False, repr=False)
    first_line: int = field(default=1, compare=False, repr=False)

    def snippet(self, span: Span | None) -> str | None:
        if span is None or not self.source:
            return None
        lines = self.source.splitlines()
        index = span.line - self.first_line
        if not 0 <= index < len(lines):
            return None
        return lines[index].strip()


Expr = Union[Literal, Name, Attribute, Index, UnaryOp, BinaryOp, Compare, Call, ArrayDecl]
Stmt = Union[PlainAssign, IndexedAssign, Conditional, Loop, Return]


def iter_children(expr: Expr):
    if isinstance(expr, Attribute):
        yield expr.value
    elif isinstance(expr, Index):
        yield expr.value
        yield expr.index
    elif isinstance(expr, UnaryOp):
        yield expr.operand
    elif isinstance(expr, (BinaryOp, Compare)):
        yield expr.left
        yield expr.right
    elif isinstance(expr, Call):
        yield from expr.args
    elif isinstance(expr, ArrayDecl):
        yield expr.length


def walk(expr: Expr):
    """Yield `expr` and all of its sub-expressions, parents first."""
    yield expr
    for child in iter_children(expr):
        yield from walk(child)


def unparse(expr: Expr) -> str:
    """Render an expression back to Python-like source text."""
    if isinstance(expr, Literal):
        return repr(expr.value)
    if isinstance(expr, Name):
        return expr.id
    if isinstance(expr, Attribute):
        return f"{unparse(expr.value)}.{expr.attr}"
    if isinstance(expr, Index):
        return f"{expr.value.id}[{unparse(expr.index)}]"
    if isinstance(expr, UnaryOp):
        operand = _grouped(expr.operand)
        return f"not {operand}" if expr.op == "not" else f"{expr.op}{operand}"
    if isinstance(expr, (BinaryOp, Compare)):
        return f"{_grouped(expr.left)} {expr.op} {_grouped(expr.right)}"
    if isinstance(expr, Call):
        return f"{expr.func}({', '.join(unparse(arg) for arg in expr.args)})"
    if isinstance(expr, ArrayDecl):
        return f"series_array({unparse(expr.length)})"
    raise TypeError(f"cannot render {type(expr).__name__}")


def _grouped(expr: Expr) -> str:
    text = unparse(expr)
    return f"({text})" if isinstance(expr, (BinaryOp, Compare, UnaryOp)) else text
