"""Temporary allocation planning.

Flattens the normalized right-hand side into three-address instructions over
series buffers and records every buffer the evaluator needs as a `Slot`.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Iterator, Union

from .ast import (
    ArrayDecl,
    BinaryOp,
    Block,
    Call,
    Compare,
    Conditional,
    Expr,
    Index,
    IndexedAssign,
    Literal,
    Loop,
    Name,
    PlainAssign,
    Span,
    Stmt,
    UnaryOp,
    unparse,
)
from .errors import DependencyCycleError
from .normalize import NormalizedFunction, kind_of
from .series import BINARY, ELEMENTARY, REFLECTED
from .symbols import Extent

logger = logging.getLogger(__name__)

TEMPORARY_PREFIX = "_tz_t"
PAIR_PREFIX = "_tz_p"
ORDINAL_PREFIX = "_tz_i"


@dataclass(frozen=True)
class Slot:
    """One preallocated coefficient buffer."""

    name: str
    kind: str
    extents: tuple[Extent, ...] = ()
    family: str | None = None
    origin: str | None = None


@dataclass(frozen=True)
class AllocationPlan:
    slots: tuple[Slot, ...]

    def __iter__(self) -> Iterator[Slot]:
        return iter(self.slots)

    def __len__(self) -> int:
        return len(self.slots)

    def __getitem__(self, name: str) -> Slot:
        for slot in self.slots:
            if slot.name == name:
                return slot
        raise KeyError(name)

    def of_kind(self, kind: str) -> tuple[Slot, ...]:
        return tuple(slot for slot in self.slots if slot.kind == kind)


@dataclass(frozen=True)
class SeriesRef:
    """A row of coefficients: `space` is state, output, time or slot."""

    space: str
    base: str
    index: tuple[Expr, ...] = ()
    member: int | None = None


@dataclass(frozen=True)
class ScalarRef:
    expr: Expr


Operand = Union[SeriesRef, ScalarRef]


@dataclass(frozen=True)
class Assign:
    op: str
    target: SeriesRef
    args: tuple[Operand, ...]
    span: Span | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class PairAssign:
    family: str
    target: SeriesRef
    arg: SeriesRef
    span: Span | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ScalarAssign:
    name: str
    expr: Expr
    span: Span | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Fallback:
    func: str
    target: SeriesRef
    args: tuple[Operand, ...]
    span: Span | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Test:
    op: str
    left: Operand
    right: Operand
    negate: bool = False


@dataclass(frozen=True)
class Branch:
    test: Test
    body: tuple["Instruction", ...]
    orelse: tuple["Instruction", ...]
    span: Span | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Repeat:
    var: str
    ordinal: str
    extent: Extent
    body: tuple["Instruction", ...]
    span: Span | None = field(default=None, compare=False, repr=False)


Instruction = Union[Assign, PairAssign, ScalarAssign, Fallback, Branch, Repeat]
Program = tuple[Instruction, ...]


class _Planner:
    def __init__(self, normalized: NormalizedFunction) -> None:
        self.normalized = normalized
        self.table = normalized.symbols
        self.slots: dict[str, Slot] = {}
        self.code: list[Instruction] = []
        self.scopes: list[dict[object, SeriesRef]] = [{}]
        self.loops: list[tuple[str, Extent]] = []
        self._temporaries = itertools.count()
        self._pairs = itertools.count()
        self._ordinals = itertools.count()
        self._span: Span | None = None

    # Slots

    def _slot(self, slot: Slot) -> Slot:
        return self.slots.setdefault(slot.name, slot)

    def _loop_index(self, depth: int | None = None) -> tuple[Expr, ...]:
        loops = self.loops if depth is None else self.loops[:depth]
        return tuple(Name(ordinal) for ordinal, _ in loops)

    def _loop_extents(self) -> tuple[Extent, ...]:
        return tuple(extent for _, extent in self.loops)

    def _temporary(self, expr: Expr) -> SeriesRef:
        name = f"{TEMPORARY_PREFIX}{next(self._temporaries)}"
        self._slot(Slot(name, "series", extents=self._loop_extents(), origin=unparse(expr)))
        return SeriesRef("slot", name, self._loop_index())

    def _pair(self, family: str, arg: SeriesRef, expr: Expr) -> SeriesRef:
        key = ("pair", family, arg)
        cached = self._cached(key)
        if cached is None:
            name = f"{PAIR_PREFIX}{next(self._pairs)}"
            self._slot(
                Slot(name, "pair", extents=self._loop_extents(), family=family, origin=f"{family}({unparse(expr)})")
            )
            cached = SeriesRef("slot", name, self._loop_index())
            self.code.append(PairAssign(family, cached, arg, span=self._span))
            self._remember(key, cached)
        return cached

    # Common subexpressions

    def _cached(self, key) -> SeriesRef | None:
        for scope in reversed(self.scopes):
            if key in scope:
                return scope[key]
        return None

    def _remember(self, key, ref: SeriesRef) -> None:
        self.scopes[-1][key] = ref

    # Statements

    def block(self, statements: tuple[Stmt, ...]) -> None:
        for stmt in statements:
            self._span = stmt.span
            self.statement(stmt)

    def nested(self, block: Block) -> tuple[Instruction, ...]:
        outer = self.code
        self.code = []
        self.scopes.append({})
        self.block(block.statements)
        self.scopes.pop()
        code, self.code = tuple(self.code), outer
        return code

    def statement(self, stmt: Stmt) -> None:
        if isinstance(stmt, PlainAssign):
            symbol = self.table[stmt.target]
            if isinstance(stmt.value, ArrayDecl):
                self._slot(Slot(symbol.name, "array", extents=symbol.extents, origin=unparse(stmt.value)))
            elif symbol.role == "local-scalar":
                self.code.append(ScalarAssign(symbol.name, stmt.value, span=stmt.span))
            else:
                self._slot(Slot(symbol.name, "series", extents=symbol.extents, origin=symbol.label))
                target = SeriesRef("slot", symbol.name, self._loop_index(len(symbol.extents)))
                self.emit(stmt.value, target)
        elif isinstance(stmt, IndexedAssign):
            self.emit(stmt.value, self._reference(stmt.target))
        elif isinstance(stmt, Conditional):
            test = self.predicate(stmt.test)
            body = self.nested(stmt.body)
            orelse = self.nested(stmt.orelse)
            self.code.append(Branch(test, body, orelse, span=stmt.span))
        elif isinstance(stmt, Loop):
            ordinal = f"{ORDINAL_PREFIX}{next(self._ordinals)}"
            extent = Extent(stmt.start, stmt.stop, stmt.step)
            self.loops.append((ordinal, extent))
            body = self.nested(stmt.body)
            self.loops.pop()
            self.code.append(Repeat(stmt.var, ordinal, extent, body, span=stmt.span))

    def predicate(self, expr: Expr) -> Test:
        negate = False
        while isinstance(expr, UnaryOp) and expr.op == "not":
            negate = not negate
            expr = expr.operand
        if not isinstance(expr, Compare):
            raise TypeError(f"cannot plan a {type(expr).__name__} condition")
        return Test(expr.op, self.operand(expr.left), self.operand(expr.right), negate)

    # Expressions

    def _reference(self, expr: Expr) -> SeriesRef | None:
        if isinstance(expr, Name):
            symbol = self.table.lookup(expr.id)
            if symbol is None:
                return None
            if symbol.role == "independent":
                return SeriesRef("time", symbol.name)
            if symbol.role == "local-series":
                return SeriesRef("slot", symbol.name, self._loop_index(len(symbol.extents)))
            return None
        if isinstance(expr, Index):
            symbol = self.table[expr.value.id]
            space = {"state": "state", "output": "output", "array-temporary": "slot"}.get(symbol.role)
            if space is None:
                return None
            return SeriesRef(space, symbol.name, (expr.index,))
        return None

    def operand(self, expr: Expr) -> Operand:
        if kind_of(expr, self.table) != "series":
            return ScalarRef(expr)
        ref = self._reference(expr)
        if ref is not None:
            return ref
        if isinstance(expr, Call) and expr.func in ELEMENTARY:
            family, member = ELEMENTARY[expr.func]
            if member is not None:
                return self._pair_member(family, member, expr)
        cached = self._cached(expr)
        if cached is not None:
            return cached
        target = self._temporary(expr)
        self.emit(expr, target)
        return target

    def _pair_member(self, family: str, member: int, expr: Call) -> SeriesRef:
        arg = self.operand(expr.args[0])
        pair = self._pair(family, arg, expr.args[0])
        return SeriesRef(pair.space, pair.base, pair.index, member)

    def emit(self, expr: Expr, target: SeriesRef) -> None:
        """Write the value of `expr` into `target`, one instruction at the top."""
        span = self._span
        if kind_of(expr, self.table) != "series":
            self.code.append(Assign("const", target, (ScalarRef(expr),), span=span))
            return
        source = self._reference(expr) or self._cached(expr)
        if source is None and isinstance(expr, Call) and expr.func in ELEMENTARY:
            family, member = ELEMENTARY[expr.func]
            if member is not None:
                source = self._pair_member(family, member, expr)
        if source is not None:
            self.code.append(Assign("copy", target, (source,), span=span))
        elif isinstance(expr, UnaryOp):
            self.code.append(Assign("neg", target, (self.operand(expr.operand),), span=span))
        elif isinstance(expr, BinaryOp):
            self.code.append(self._binary(expr, target))
        elif isinstance(expr, Call) and expr.func in ELEMENTARY:
            self.code.append(Assign(expr.func, target, (self.operand(expr.args[0]),), span=span))
        elif isinstance(expr, Call):
            args = tuple(self.operand(arg) for arg in expr.args)
            self.code.append(Fallback(expr.func, target, args, span=span))
        else:
            raise TypeError(f"cannot plan {type(expr).__name__}")
        self._remember(expr, target)

    def _binary(self, expr: BinaryOp, target: SeriesRef) -> Assign:
        left = self.operand(expr.left)
        right = self.operand(expr.right)
        if isinstance(left, SeriesRef):
            update = BINARY[(expr.op, True, isinstance(right, SeriesRef))]
            return Assign(update.__name__, target, (left, right), span=self._span)
        update = REFLECTED[expr.op]
        return Assign(update.__name__, target, (right, left), span=self._span)


def _is_written(key, written: set) -> bool:
    # Element keys are (container, position); a computed position is "*".
    # A constant position needs a store at that position: a loop may run zero
    # times. Computed reads are replayed against concrete bounds when the
    # buffers are allocated.
    if key is None or key in written:
        return True
    if len(key) == 1:
        return False
    base, position = key
    return position == "*" and any(len(entry) == 2 and entry[0] == base for entry in written)


class _Verifier:
    """Checks that every buffer row is written before it is read."""

    def __init__(self, normalized: NormalizedFunction) -> None:
        self.normalized = normalized

    def _key(self, ref: SeriesRef):
        if ref.space in ("state", "time"):
            return None
        symbol = self.normalized.symbols.lookup(ref.base)
        if ref.space == "slot" and (symbol is None or symbol.role != "array-temporary"):
            return (ref.base,)
        (index,) = ref.index
        return (ref.base, index.value if isinstance(index, Literal) else "*")

    def _read(self, ref: Operand, written: set, span: Span | None) -> None:
        if not isinstance(ref, SeriesRef):
            return
        key = self._key(ref)
        if _is_written(key, written):
            return
        symbol = self.normalized.symbols.lookup(ref.base)
        label = symbol.label if symbol is not None else ref.base
        if len(key) == 2:
            label = f"{label}[{key[1] if key[1] != '*' else unparse(ref.index[0])}]"
        function = self.normalized.function
        raise DependencyCycleError(
            f"'{label}' is read before it is written",
            construct="read before write",
            span=span,
            statement=function.snippet(span) if function is not None else None,
            filename=function.filename if function is not None else None,
        )

    def block(self, code: tuple[Instruction, ...], written: set) -> set:
        for instruction in code:
            if isinstance(instruction, (Assign, Fallback)):
                for arg in instruction.args:
                    self._read(arg, written, instruction.span)
                written.add(self._key(instruction.target))
            elif isinstance(instruction, PairAssign):
                self._read(instruction.arg, written, instruction.span)
                written.add(self._key(instruction.target))
            elif isinstance(instruction, Branch):
                self._read(instruction.test.left, written, instruction.span)
                self._read(instruction.test.right, written, instruction.span)
                body = self.block(instruction.body, set(written))
                orelse = self.block(instruction.orelse, set(written))
                written = body & orelse
            elif isinstance(instruction, Repeat):
                written = self.block(instruction.body, set(written))
        return written


def plan(normalized: NormalizedFunction) -> tuple[Program, AllocationPlan]:
    """Flatten a normalized right-hand side and plan its temporaries."""
    planner = _Planner(normalized)
    planner.block(normalized.body.statements)
    program: Program = tuple(planner.code)
    allocation = AllocationPlan(tuple(planner.slots.values()))
    verify(program, normalized)
    logger.debug(
        "planned %s: %d instructions, %d slots (%d pairs)",
        normalized.name,
        len(program),
        len(allocation),
        len(allocation.of_kind("pair")),
    )
    return program, allocation


def verify(program: Program, normalized: NormalizedFunction) -> None:
    _Verifier(normalized).block(program, set())
