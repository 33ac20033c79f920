"""Dataflow normalization of a parsed right-hand side.

Resolves every identifier to a role, folds literal arithmetic, unrolls
constant-bound loops, and validates the single-assignment and static-shape
rules the planner relies on.
"""

from __future__ import annotations

import builtins
import inspect
import logging
import numbers
import operator
import warnings
from dataclasses import dataclass, field
from typing import Callable, Mapping

import numpy as np

from .ast import (
    ArrayDecl,
    Attribute,
    BinaryOp,
    Block,
    Call,
    Compare,
    Conditional,
    Expr,
    Function,
    Index,
    IndexedAssign,
    Literal,
    Loop,
    Name,
    PlainAssign,
    Return,
    Signature,
    Stmt,
    UnaryOp,
    unparse,
    walk,
)
from .errors import (
    DependencyCycleError,
    ShapeMismatchError,
    TaylorizeCompileError,
    UnknownCallWarning,
    UnsupportedConstructError,
)
from .series import canonical_name
from .symbols import RESERVED_PREFIXES, SERIES_ROLES, Extent, Symbol, SymbolTable, is_reserved

logger = logging.getLogger(__name__)

_FOLD = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "**": operator.pow,
    "//": operator.floordiv,
    "%": operator.mod,
}
_SCALAR_ONLY_OPS = {"//", "%"}
_POWER_CALLS = {"pow", "power"}
_SQUARE_CALLS = {"square"}
# Roles whose values are known before the evaluator runs.
_STATIC_ROLES = {"parameter", "constant"}
_INDEXABLE_ROLES = {"state", "output", "array-temporary", "parameter", "constant"}
_MISSING = object()


@dataclass(frozen=True)
class NormalizedFunction:
    name: str
    signature: Signature
    body: Block
    symbols: SymbolTable
    functions: Mapping[str, Callable] = field(default_factory=dict)
    constants: Mapping[str, object] = field(default_factory=dict)
    function: Function | None = field(default=None, compare=False, repr=False)


def kind_of(expr: Expr, table: SymbolTable) -> str:
    """Classify a normalized expression as `scalar`, `series` or `container`."""
    if isinstance(expr, (Literal, Attribute)):
        return "scalar"
    if isinstance(expr, Name):
        symbol = table.lookup(expr.id)
        if symbol is None:
            return "scalar"
        if symbol.is_container or symbol.role == "constant":
            return "container"
        return "series" if symbol.role in SERIES_ROLES else "scalar"
    if isinstance(expr, Index):
        symbol = table[expr.value.id]
        return "series" if symbol.is_container else "scalar"
    if isinstance(expr, Call) and expr.func == "len":
        return "scalar"
    if isinstance(expr, (UnaryOp, BinaryOp, Compare, Call)):
        kinds = {kind_of(child, table) for child in _operands(expr)}
        return "series" if "series" in kinds else "scalar"
    return "scalar"


def _operands(expr: Expr):
    if isinstance(expr, UnaryOp):
        return (expr.operand,)
    if isinstance(expr, (BinaryOp, Compare)):
        return (expr.left, expr.right)
    return expr.args


def namespace_of(func) -> dict[str, object]:
    """Names a function body can see: builtins, module globals, closure cells."""
    closure = inspect.getclosurevars(func)
    return {**vars(builtins), **func.__globals__, **closure.nonlocals}


def _assigned_names(block: Block) -> set[str]:
    names: set[str] = set()
    for stmt in block.statements:
        if isinstance(stmt, PlainAssign):
            names.add(stmt.target)
        elif isinstance(stmt, Conditional):
            names |= _assigned_names(stmt.body) | _assigned_names(stmt.orelse)
        elif isinstance(stmt, Loop):
            names.add(stmt.var)
            names |= _assigned_names(stmt.body)
    return names


class _Normalizer:
    def __init__(
        self,
        function: Function,
        namespace: Mapping[str, object],
        *,
        max_unroll: int,
        strict_calls: bool,
    ) -> None:
        self.function = function
        self.namespace = namespace
        self.max_unroll = max_unroll
        self.strict_calls = strict_calls
        self.table = SymbolTable()
        self.visible: dict[str, str] = {}
        self.substitutions: dict[str, Literal] = {}
        # (container, position) for constant stores; (container, "*", progression, text) otherwise.
        self.written: set[tuple] = set()
        self.assigned: set[tuple] = set()
        self.runtime_loops: list[Extent] = []
        self.loop_extents: dict[str, Extent] = {}
        self.functions: dict[str, Callable] = {}
        self.constants: dict[str, object] = {}
        self.depth = 0
        self.iteration: list[int] = []
        self._iterations = 0
        self._statement: Stmt | None = None
        self._later = _assigned_names(function.body)

        signature = function.signature
        roles = zip(signature, ("output", "state", "parameter", "independent"))
        for name, role in roles:
            self._check_identifier(name)
            element = "scalar" if role == "parameter" else "series"
            self.table.declare(Symbol(name, role, element=element))
            self.visible[name] = name

    # Diagnostics

    def _error(self, cls, message: str, *, construct: str | None = None, node=None) -> TaylorizeCompileError:
        statement_span = getattr(self._statement, "span", None)
        span = getattr(node, "span", None) or statement_span
        return cls(
            message,
            construct=construct,
            span=span,
            statement=self.function.snippet(statement_span),
            filename=self.function.filename,
        )

    def _unsupported(self, construct: str, hint: str | None = None, node=None) -> TaylorizeCompileError:
        message = f"unsupported construct: {construct}"
        if hint:
            message = f"{message} ({hint})"
        return self._error(UnsupportedConstructError, message, construct=construct, node=node)

    def _check_identifier(self, name: str, node=None) -> None:
        if is_reserved(name):
            raise self._unsupported(
                "reserved identifier",
                f"names starting with {' or '.join(RESERVED_PREFIXES)} are reserved for generated temporaries",
                node,
            )

    # Statements

    def block(self, block: Block) -> list[Stmt]:
        statements: list[Stmt] = []
        for stmt in block.statements:
            self._statement = stmt
            statements.extend(self.statement(stmt))
        return statements

    def statement(self, stmt: Stmt) -> list[Stmt]:
        if isinstance(stmt, PlainAssign):
            return self._plain(stmt)
        if isinstance(stmt, IndexedAssign):
            return self._indexed(stmt)
        if isinstance(stmt, Conditional):
            return self._conditional(stmt)
        if isinstance(stmt, Loop):
            return self._loop(stmt)
        if isinstance(stmt, Return):
            output = self.function.signature.output
            if stmt.value is not None and stmt.value.id != output:
                raise self._unsupported("return value", f"return nothing or '{output}'")
            return []
        raise self._unsupported(type(stmt).__name__)

    def _plain(self, stmt: PlainAssign) -> list[Stmt]:
        name = stmt.target
        self._check_identifier(name, stmt)
        if name in self.substitutions or name in self.visible:
            symbol = self.table.lookup(self.visible.get(name, ""))
            if symbol is not None and symbol.role in ("output", "state", "parameter", "independent"):
                raise self._unsupported(f"assignment to {symbol.role} '{name}'")
            raise self._unsupported("reassignment", f"'{name}' is already assigned; every name is assigned once")
        if isinstance(stmt.value, ArrayDecl):
            return [self._declaration(name, stmt)]

        value = self.value(stmt.value)
        kind = kind_of(value, self.table)
        internal = self._local_name(name)
        if kind == "series":
            symbol = Symbol(internal, "local-series", extents=tuple(self.runtime_loops), display=name)
        else:
            symbol = Symbol(internal, "local-scalar", element="scalar", display=name)
        self.table.declare(symbol)
        self.visible[name] = internal
        self.assigned.add(("local", name, kind))
        return [PlainAssign(target=internal, value=value, span=stmt.span)]

    def _local_name(self, name: str) -> str:
        if self.iteration:
            return f"_tz_{name}_{self.iteration[-1]}"
        return name

    def _declaration(self, name: str, stmt: PlainAssign) -> Stmt:
        if self.depth:
            raise self._unsupported("array declaration inside a block", "declare arrays at the top level")
        length = self.value(stmt.value.length)
        self._require_static(length, "array length")
        if isinstance(length, Literal) and (not isinstance(length.value, int) or length.value < 0):
            raise self._error(ShapeMismatchError, f"array length must be a non-negative integer, got {length.value!r}")
        self.table.declare(Symbol(name, "array-temporary", extents=(Extent.of_length(length),)))
        self.visible[name] = name
        return PlainAssign(target=name, value=ArrayDecl(length=length, span=stmt.value.span), span=stmt.span)

    def _indexed(self, stmt: IndexedAssign) -> list[Stmt]:
        target = stmt.target
        container = self._container(target)
        if container.role not in ("output", "array-temporary"):
            if container.role in ("state", "parameter", "independent"):
                raise self._unsupported(f"assignment to {container.role} '{container.label}'")
            raise self._unsupported("indexed assignment to a non-array", node=target)
        index = self._store_index(target, container)
        value = self.value(stmt.value)
        self._record_store(container, index)
        self.assigned.add(("store", container.name, repr(index)))
        node = Index(value=Name(container.name, span=target.value.span), index=index, span=target.span)
        return [IndexedAssign(target=node, value=value, span=stmt.span)]

    def _record_store(self, container: Symbol, index: Expr) -> None:
        stores = [entry for entry in self.written if entry[0] == container.name]
        if isinstance(index, Literal):
            position = index.value
            for entry in stores:
                if len(entry) == 2 and entry[1] == position:
                    raise self._unsupported(
                        "repeated store", f"'{container.label}[{position}]' is assigned more than once"
                    )
                if len(entry) == 4 and _reaches(entry[2], position):
                    raise self._unsupported(
                        "repeated store",
                        f"'{container.label}[{position}]' may also be assigned by the store to "
                        f"'{container.label}[{entry[3]}]'",
                    )
            self.written.add((container.name, position))
            return
        progression = self._progression(index)
        text = unparse(index)
        for entry in stores:
            if len(entry) == 2 and _reaches(progression, entry[1]):
                raise self._unsupported(
                    "repeated store",
                    f"the store to '{container.label}[{text}]' may also assign '{container.label}[{entry[1]}]'",
                )
        # Overlap between two computed stores depends on the dimension. The
        # allocator replays them once the bounds are known.
        self.written.add((container.name, "*", progression, text))

    def _progression(self, index: Expr) -> tuple[int, int] | None:
        """`(first, step)` of the positions a loop store reaches, when known."""
        offset = 0
        if isinstance(index, BinaryOp) and index.op in ("+", "-"):
            if isinstance(index.right, Literal) and isinstance(index.right.value, int):
                offset = index.right.value if index.op == "+" else -index.right.value
                index = index.left
            elif index.op == "+" and isinstance(index.left, Literal) and isinstance(index.left.value, int):
                offset = index.left.value
                index = index.right
            else:
                return None
        if not isinstance(index, Name) or index.id not in self.loop_extents:
            return None
        extent = self.loop_extents[index.id]
        start, step = extent.start, extent.step
        if not (isinstance(start, Literal) and isinstance(step, Literal) and step.value > 0):
            return None
        return start.value + offset, step.value

    def _store_index(self, target: Index, container: Symbol) -> Expr:
        index = self.value(target.index)
        if kind_of(index, self.table) != "scalar":
            raise self._unsupported("series-valued index", node=target)
        if isinstance(index, Literal):
            if not isinstance(index.value, int):
                raise self._unsupported("non-integer index", node=target)
            if index.value < 0:
                raise self._unsupported("negative store index", node=target)
            if self.runtime_loops:
                raise self._unsupported(
                    "constant-index store inside a loop", "the element would be written on every iteration"
                )
            self._check_bounds(container, index.value, target)
        return index

    def _check_bounds(self, container: Symbol, position: int, node) -> None:
        if container.role != "array-temporary":
            return
        length = container.extents[0].static_length
        if length is not None and position >= length:
            raise self._error(
                ShapeMismatchError,
                f"index {position} is out of bounds for '{container.label}' of length {length}",
                node=node,
            )

    def _container(self, target: Index) -> Symbol:
        name = target.value.id
        if name in self.substitutions:
            raise self._unsupported("indexing a loop variable", node=target)
        internal = self.visible.get(name)
        if internal is None:
            return self._global_container(name, target)
        return self.table[internal]

    def _conditional(self, stmt: Conditional) -> list[Stmt]:
        test = self.predicate(stmt.test)
        outer = (self.table.copy(), dict(self.visible), set(self.written), self.assigned)

        self.depth += 1
        self.assigned = set()
        body = self.block(stmt.body)
        body_state = (self.table, self.visible, self.written, self.assigned)

        self.table, self.visible, self.written = outer[0].copy(), dict(outer[1]), set(outer[2])
        self.assigned = set()
        orelse = self.block(stmt.orelse)
        self.depth -= 1
        self._statement = stmt

        body_table, body_visible, body_written, body_assigned = body_state
        if body_assigned != self.assigned:
            raise self._error(
                ShapeMismatchError,
                "branches assign different values: "
                f"{_describe(body_assigned - self.assigned, body_table)} only in the if branch, "
                f"{_describe(self.assigned - body_assigned, self.table)} only in the else branch",
                construct="branch",
            )
        for symbol in body_table:
            self.table.declare(symbol)
        self.visible.update(body_visible)
        self.written |= body_written
        self.assigned = outer[3] | body_assigned
        return [Conditional(test=test, body=Block(tuple(body)), orelse=Block(tuple(orelse)), span=stmt.span)]

    def _loop(self, stmt: Loop) -> list[Stmt]:
        var = stmt.var
        self._check_identifier(var, stmt)
        if var in self.visible or var in self.substitutions:
            raise self._unsupported("reassignment", f"loop variable '{var}' shadows an existing name")
        bounds = [self.value(bound) for bound in (stmt.start, stmt.stop, stmt.step)]
        for bound in bounds:
            if kind_of(bound, self.table) != "scalar":
                raise self._unsupported("series-valued loop bound")
            if isinstance(bound, Literal) and not isinstance(bound.value, int):
                raise self._unsupported("non-integer range bound")
        if isinstance(bounds[2], Literal) and bounds[2].value == 0:
            raise self._error(ShapeMismatchError, "range() step must not be zero")
        if all(isinstance(bound, Literal) for bound in bounds):
            values = range(*(bound.value for bound in bounds))
            if len(values) <= self.max_unroll:
                return self._unroll(stmt, values)
        for bound in bounds:
            self._require_static(bound, "loop bound")
        return self._runtime_loop(stmt, Extent(*bounds))

    def _enter(self):
        saved = dict(self.visible), self.assigned
        self.depth += 1
        self.assigned = set()
        return saved

    def _leave(self, saved) -> None:
        # Names bound inside a loop body go out of scope after the loop.
        visible, assigned = saved
        self.depth -= 1
        self.visible = visible
        self.assigned = assigned | {entry for entry in self.assigned if entry[0] == "store"}

    def _unroll(self, stmt: Loop, values: range) -> list[Stmt]:
        statements: list[Stmt] = []
        saved = self._enter()
        for value in values:
            self._iterations += 1
            self.iteration.append(self._iterations)
            self.substitutions[stmt.var] = Literal(value, span=stmt.span)
            statements.extend(self.block(stmt.body))
            self.iteration.pop()
            self.visible = dict(saved[0])
        self.substitutions.pop(stmt.var, None)
        self._leave(saved)
        self._statement = stmt
        logger.debug("unrolled loop over %r: %d iterations", stmt.var, len(values))
        return statements

    def _runtime_loop(self, stmt: Loop, extent: Extent) -> list[Stmt]:
        saved = self._enter()
        self.table.declare(Symbol(stmt.var, "loop-index", element="scalar"))
        self.visible[stmt.var] = stmt.var
        self.runtime_loops.append(extent)
        self.loop_extents[stmt.var] = extent
        # Every runtime loop names its locals apart, so a later loop may reuse a name.
        self._iterations += 1
        self.iteration.append(self._iterations)
        body = self.block(stmt.body)
        self.iteration.pop()
        del self.loop_extents[stmt.var]
        self.runtime_loops.pop()
        self._leave(saved)
        self._statement = stmt
        return [
            Loop(
                var=stmt.var,
                start=extent.start,
                stop=extent.stop,
                step=extent.step,
                body=Block(tuple(body)),
                span=stmt.span,
            )
        ]

    def _require_static(self, expr: Expr, what: str) -> None:
        for sub in walk(expr):
            if isinstance(sub, Name):
                symbol = self.table.lookup(sub.id)
                if symbol is None or symbol.role in _STATIC_ROLES:
                    continue
                if symbol.role in ("state", "output") and _is_len_argument(expr, sub):
                    continue
                raise self._error(
                    ShapeMismatchError,
                    f"{what} depends on '{symbol.label}', which is not known before evaluation",
                    node=sub,
                )

    # Expressions

    def value(self, expr: Expr) -> Expr:
        """Normalize an operand, rejecting whole-container values."""
        result = self.expr(expr)
        if kind_of(result, self.table) == "container":
            raise self._unsupported("broadcasting", "index the array to use one element", node=expr)
        return result

    def predicate(self, expr: Expr) -> Expr:
        if isinstance(expr, UnaryOp) and expr.op == "not":
            return UnaryOp(op="not", operand=self.predicate(expr.operand), span=expr.span)
        if isinstance(expr, Compare):
            return Compare(op=expr.op, left=self.value(expr.left), right=self.value(expr.right), span=expr.span)
        raise self._unsupported("non-comparison condition", "use a single comparison such as x[0] > 0", node=expr)

    def expr(self, expr: Expr) -> Expr:
        if isinstance(expr, Literal):
            return expr
        if isinstance(expr, Name):
            return self._name(expr)
        if isinstance(expr, Attribute):
            return self._attribute(expr)
        if isinstance(expr, Index):
            return self._index(expr)
        if isinstance(expr, UnaryOp):
            return self._unary(expr)
        if isinstance(expr, BinaryOp):
            return self._binary(expr.op, self.value(expr.left), self.value(expr.right), expr)
        if isinstance(expr, Compare):
            raise self._unsupported("comparison used as a value", "comparisons may only appear in if conditions", expr)
        if isinstance(expr, Call):
            return self._call(expr)
        raise self._unsupported(f"{type(expr).__name__} expression", node=expr)

    def _name(self, expr: Name) -> Expr:
        name = expr.id
        if name in self.substitutions:
            return Literal(self.substitutions[name].value, span=expr.span)
        if name in self.visible:
            return Name(self.visible[name], span=expr.span)
        self._check_identifier(name, expr)
        if name in self._later:
            raise self._error(
                DependencyCycleError,
                f"'{name}' is read before it is assigned on this path",
                construct="read before write",
                node=expr,
            )
        value = self._resolve(name)
        if value is _MISSING:
            raise self._unsupported("undefined name", f"'{name}' is not defined", expr)
        literal = _literal(value, expr)
        if literal is not None:
            return literal
        if _is_sequence(value):
            self._declare_constant(name, value)
            return Name(name, span=expr.span)
        raise self._unsupported("non-numeric global", f"'{name}' is a {type(value).__name__}", expr)

    def _attribute(self, expr: Attribute) -> Expr:
        base = expr.value
        if isinstance(base, Name) and base.id in self.visible:
            symbol = self.table[self.visible[base.id]]
            if symbol.role != "parameter":
                raise self._unsupported("attribute access", f"'{symbol.label}' has no attributes", expr)
            return Attribute(value=Name(symbol.name, span=base.span), attr=expr.attr, span=expr.span)
        dotted = _dotted(expr)
        value = _MISSING if dotted is None else self._resolve(dotted)
        literal = _literal(value, expr)
        if literal is None:
            raise self._unsupported("attribute access", f"'{dotted}' is not a numeric constant", expr)
        return literal

    def _index(self, expr: Index) -> Expr:
        container = self._container(expr)
        if container.role not in _INDEXABLE_ROLES:
            raise self._unsupported("indexing a non-array", f"'{container.label}' is a {container.role}", expr)
        index = self.value(expr.index)
        if kind_of(index, self.table) != "scalar":
            raise self._unsupported("series-valued index", node=expr)
        if isinstance(index, Literal):
            if not isinstance(index.value, int):
                raise self._unsupported("non-integer index", node=expr)
            if container.role in ("output", "array-temporary"):
                if index.value < 0:
                    raise self._unsupported("negative index into a written array", node=expr)
                self._check_bounds(container, index.value, expr)
            if container.role == "constant":
                values = self.constants[container.name]
                if not -len(values) <= index.value < len(values):
                    raise self._error(
                        ShapeMismatchError,
                        f"index {index.value} is out of bounds for '{container.label}' of length {len(values)}",
                        node=expr,
                    )
                return _literal(values[index.value], expr)
        return Index(value=Name(container.name, span=expr.value.span), index=index, span=expr.span)

    def _global_container(self, name: str, node: Expr) -> Symbol:
        self._check_identifier(name, node)
        if name in self._later:
            raise self._error(
                DependencyCycleError,
                f"'{name}' is read before it is assigned on this path",
                construct="read before write",
                node=node,
            )
        value = self._resolve(name)
        if value is _MISSING:
            raise self._unsupported("undefined name", f"'{name}' is not defined", node)
        if not _is_sequence(value):
            raise self._unsupported("indexing a non-array", f"'{name}' is a {type(value).__name__}", node)
        return self._declare_constant(name, value)

    def _declare_constant(self, name: str, value) -> Symbol:
        self.constants[name] = value
        return self.table.declare(Symbol(name, "constant", element="scalar"))

    def _unary(self, expr: UnaryOp) -> Expr:
        if expr.op == "not":
            raise self._unsupported("boolean negation outside a condition", node=expr)
        operand = self.value(expr.operand)
        if expr.op == "+":
            return operand
        if isinstance(operand, Literal):
            return Literal(-operand.value, span=expr.span)
        return UnaryOp(op=expr.op, operand=operand, span=expr.span)

    def _binary(self, op: str, left: Expr, right: Expr, node: Expr) -> Expr:
        if isinstance(left, Literal) and isinstance(right, Literal):
            try:
                return Literal(_FOLD[op](left.value, right.value), span=node.span)
            except (ArithmeticError, ValueError):
                pass
        left_kind = kind_of(left, self.table)
        right_kind = kind_of(right, self.table)
        if op in _SCALAR_ONLY_OPS and "series" in (left_kind, right_kind):
            raise self._unsupported(f"'{op}' on a series operand", node=node)
        if op == "**" and right_kind == "series":
            log = Call(func="log", args=(left,), span=node.span)
            product = BinaryOp(op="*", left=right, right=log, span=node.span)
            return Call(func="exp", args=(product,), span=node.span)
        return BinaryOp(op=op, left=left, right=right, span=node.span)

    def _call(self, expr: Call) -> Expr:
        short = expr.short_name
        if short == "len":
            return self._length(expr)
        args = tuple(self.value(arg) for arg in expr.args)
        if all(kind_of(arg, self.table) == "scalar" for arg in args):
            return self._scalar_call(expr, args)
        canonical = canonical_name(short)
        if canonical is not None:
            self._arity(expr, args, 1)
            return Call(func=canonical, args=args, span=expr.span)
        if short in _SQUARE_CALLS:
            self._arity(expr, args, 1)
            return self._binary("**", args[0], Literal(2, span=expr.span), expr)
        if short in _POWER_CALLS:
            self._arity(expr, args, 2)
            return self._binary("**", args[0], args[1], expr)
        return self._unknown_call(expr, args)

    def _arity(self, expr: Call, args: tuple[Expr, ...], count: int) -> None:
        if len(args) != count:
            raise self._unsupported(f"'{expr.func}' with {len(args)} arguments", f"expected {count}", expr)

    def _length(self, expr: Call) -> Expr:
        self._arity(expr, expr.args, 1)
        (arg,) = expr.args
        if not isinstance(arg, Name):
            raise self._unsupported("len of a computed value", node=expr)
        if arg.id in self.visible:
            symbol = self.table[self.visible[arg.id]]
        else:
            symbol = self._global_container(arg.id, arg)
        if symbol.role in ("state", "output", "parameter"):
            return Call(func="len", args=(Name(symbol.name, span=arg.span),), span=expr.span)
        if symbol.role == "array-temporary":
            extent = symbol.extents[0]
            return extent.stop
        if symbol.role == "constant":
            return Literal(len(self.constants[symbol.name]), span=expr.span)
        raise self._unsupported("len of a non-array", f"'{symbol.label}' is a {symbol.role}", expr)

    def _scalar_call(self, expr: Call, args: tuple[Expr, ...]) -> Expr:
        # Scalar arguments call the very function the source names.
        func = self._resolve(expr.func)
        if func is _MISSING or not callable(func):
            canonical = canonical_name(expr.short_name)
            if canonical is None:
                raise self._unsupported("undefined function", f"'{expr.func}' is not a known callable", expr)
            self._arity(expr, args, 1)
            return Call(func=canonical, args=args, span=expr.span)
        self.functions[expr.func] = func
        return Call(func=expr.func, args=args, span=expr.span)

    def _unknown_call(self, expr: Call, args: tuple[Expr, ...]) -> Expr:
        func = self._resolve(expr.func)
        if func is _MISSING or not callable(func):
            raise self._unsupported("undefined function", f"'{expr.func}' is not a known callable", expr)
        if self.strict_calls:
            raise self._unsupported(
                "unknown call", f"'{expr.func}' has no series recurrence and strict call checking is on", expr
            )
        where = f" at {expr.span}" if expr.span is not None else ""
        warnings.warn(
            f"call to unrecognized function '{expr.func}'{where} in '{self.function.name}' is passed "
            "through to whole-series evaluation; check the result against the generic evaluator",
            UnknownCallWarning,
            stacklevel=2,
        )
        self.functions[expr.func] = func
        return Call(func=expr.func, args=args, span=expr.span)

    def _resolve(self, dotted: str):
        head, *rest = dotted.split(".")
        value = self.namespace.get(head, _MISSING)
        for attr in rest:
            if value is _MISSING:
                break
            value = getattr(value, attr, _MISSING)
        return value


def _describe(entries: set[tuple], table: SymbolTable) -> str:
    if not entries:
        return "nothing"
    labels = []
    for entry in sorted(entries, key=repr):
        if entry[0] == "local":
            labels.append(f"'{entry[1]}' ({entry[2]})")
        else:
            symbol = table.lookup(entry[1])
            labels.append(f"a store into '{symbol.label if symbol else entry[1]}'")
    return ", ".join(labels)


def _reaches(progression: tuple[int, int] | None, position: int) -> bool:
    # Unknown progressions are left to the allocator's replay.
    if progression is None:
        return False
    first, step = progression
    return position >= first and (position - first) % step == 0


def _literal(value, node: Expr) -> Literal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return Literal(int(value), span=node.span)
    if isinstance(value, numbers.Real):
        return Literal(float(value), span=node.span)
    return None


def _is_sequence(value) -> bool:
    if not isinstance(value, (list, tuple, np.ndarray)):
        return False
    return all(isinstance(item, numbers.Real) and not isinstance(item, bool) for item in value)


def _dotted(expr: Expr) -> str | None:
    if isinstance(expr, Name):
        return expr.id
    if isinstance(expr, Attribute):
        head = _dotted(expr.value)
        return None if head is None else f"{head}.{expr.attr}"
    return None


def _is_len_argument(expr: Expr, name: Name) -> bool:
    return any(isinstance(sub, Call) and sub.func == "len" and sub.args == (name,) for sub in walk(expr))


def normalize(
    function: Function,
    *,
    namespace: Mapping[str, object] | None = None,
    max_unroll: int = 64,
    strict_calls: bool = False,
) -> NormalizedFunction:
    """Resolve and validate a parsed right-hand side."""
    normalizer = _Normalizer(
        function,
        namespace if namespace is not None else vars(builtins),
        max_unroll=max_unroll,
        strict_calls=strict_calls,
    )
    body = normalizer.block(function.body)
    logger.debug(
        "normalized %s: %d statements, %d symbols, %d pass-through calls",
        function.name,
        len(body),
        len(normalizer.table),
        len(normalizer.functions),
    )
    return NormalizedFunction(
        name=function.name,
        signature=function.signature,
        body=Block(tuple(body)),
        symbols=normalizer.table,
        functions=dict(normalizer.functions),
        constants=dict(normalizer.constants),
        function=function,
    )
