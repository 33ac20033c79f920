"""Recurrence code generation: bind planned instructions to series updates."""

from __future__ import annotations

import logging
import operator
from typing import Callable, Final

from .ast import Attribute, BinaryOp, Call, Expr, Index, Literal, Name, UnaryOp, unparse
from .normalize import NormalizedFunction
from .plan import (
    Assign,
    Branch,
    Fallback,
    Instruction,
    Operand,
    PairAssign,
    Program,
    Repeat,
    ScalarAssign,
    SeriesRef,
    Test,
)
from .series import PAIRS, SCALAR_FUNCTIONS, UPDATES, Series, coefficient

logger = logging.getLogger(__name__)

# Environment key holding the state dimension; reserved names cannot clash.
DIMENSION: Final[str] = "__dimension__"

_ARITHMETIC: Final[dict[str, Callable]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "**": operator.pow,
    "//": operator.floordiv,
    "%": operator.mod,
}
_COMPARISONS: Final[dict[str, Callable]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

Step = Callable[[int, dict, dict], None]


class ScalarCompiler:
    """Compile scalar expressions into closures over an environment dict."""

    def __init__(self, normalized: NormalizedFunction) -> None:
        self._table = normalized.symbols
        self._functions = normalized.functions

    def compile(self, expr: Expr) -> Callable[[dict], object]:
        if isinstance(expr, Literal):
            value = expr.value
            return lambda env: value
        if isinstance(expr, Name):
            name = expr.id
            return lambda env: env[name]
        if isinstance(expr, Attribute):
            base = self.compile(expr.value)
            attr = expr.attr
            return lambda env: getattr(base(env), attr)
        if isinstance(expr, Index):
            name = expr.value.id
            index = self.compile(expr.index)
            return lambda env: env[name][operator.index(index(env))]
        if isinstance(expr, UnaryOp):
            operand = self.compile(expr.operand)
            return lambda env: -operand(env)
        if isinstance(expr, BinaryOp):
            apply = _ARITHMETIC[expr.op]
            left = self.compile(expr.left)
            right = self.compile(expr.right)
            return lambda env: apply(left(env), right(env))
        if isinstance(expr, Call):
            return self._call(expr)
        raise TypeError(f"cannot compile {type(expr).__name__} as a scalar")

    def _call(self, expr: Call) -> Callable[[dict], object]:
        if expr.func == "len":
            (arg,) = expr.args
            symbol = self._table.lookup(arg.id)
            if symbol is not None and symbol.role in ("state", "output"):
                return lambda env: env[DIMENSION]
            name = arg.id
            return lambda env: len(env[name])
        func = self._functions.get(expr.func) or SCALAR_FUNCTIONS[expr.func]
        args = tuple(self.compile(arg) for arg in expr.args)
        return lambda env: func(*(arg(env) for arg in args))


class _Binder:
    def __init__(self, normalized: NormalizedFunction) -> None:
        self.normalized = normalized
        self.scalars = ScalarCompiler(normalized)

    def row(self, ref: SeriesRef) -> Callable[[dict, dict], object]:
        base = ref.base
        member = () if ref.member is None else (ref.member,)
        if not ref.index and not member:
            return lambda store, env: store[base]
        if all(isinstance(part, Literal) for part in ref.index):
            key = tuple(part.value for part in ref.index) + member
            return lambda store, env: store[base][key]
        index = tuple(self.scalars.compile(part) for part in ref.index)

        def row(store, env):
            return store[base][tuple(operator.index(part(env)) for part in index) + member]

        return row

    def operand(self, operand: Operand) -> Callable[[dict, dict], object]:
        if isinstance(operand, SeriesRef):
            return self.row(operand)
        value = self.scalars.compile(operand.expr)
        return lambda store, env: value(env)

    def order_zero(self, operand: Operand) -> Callable[[dict, dict], object]:
        if isinstance(operand, SeriesRef):
            row = self.row(operand)
            return lambda store, env: row(store, env)[0]
        return self.operand(operand)

    def test(self, test: Test) -> Callable[[dict, dict], bool]:
        compare = _COMPARISONS[test.op]
        left = self.order_zero(test.left)
        right = self.order_zero(test.right)
        negate = test.negate
        return lambda store, env: bool(compare(left(store, env), right(store, env))) != negate

    def bind_all(self, code: tuple[Instruction, ...]) -> tuple[Step, ...]:
        return tuple(self.bind(instruction) for instruction in code)

    def bind(self, instruction: Instruction) -> Step:
        if isinstance(instruction, Assign):
            return self._assign(instruction)
        if isinstance(instruction, PairAssign):
            update = PAIRS[instruction.family]
            target = self.row(instruction.target)
            arg = self.row(instruction.arg)

            def pair_step(k, store, env):
                first, second = target(store, env)
                update(first, second, arg(store, env), k)

            return pair_step
        if isinstance(instruction, ScalarAssign):
            name = instruction.name
            value = self.scalars.compile(instruction.expr)

            def scalar_step(k, store, env):
                env[name] = value(env)

            return scalar_step
        if isinstance(instruction, Fallback):
            return self._fallback(instruction)
        if isinstance(instruction, Branch):
            test = self.test(instruction.test)
            body = self.bind_all(instruction.body)
            orelse = self.bind_all(instruction.orelse)

            def branch_step(k, store, env):
                for step in body if test(store, env) else orelse:
                    step(k, store, env)

            return branch_step
        if isinstance(instruction, Repeat):
            return self._repeat(instruction)
        raise TypeError(f"cannot bind {type(instruction).__name__}")

    def _assign(self, instruction: Assign) -> Step:
        update = UPDATES[instruction.op]
        target = self.row(instruction.target)
        args = tuple(self.operand(arg) for arg in instruction.args)
        if len(args) == 1:
            (a,) = args

            def unary_step(k, store, env):
                update(target(store, env), a(store, env), k)

            return unary_step
        a, b = args

        def binary_step(k, store, env):
            update(target(store, env), a(store, env), b(store, env), k)

        return binary_step

    def _fallback(self, instruction: Fallback) -> Step:
        func = self.normalized.functions[instruction.func]
        target = self.row(instruction.target)
        args = tuple((isinstance(arg, SeriesRef), self.operand(arg)) for arg in instruction.args)

        def fallback_step(k, store, env):
            values = [Series(get(store, env)[: k + 1]) if is_series else get(store, env) for is_series, get in args]
            target(store, env)[k] = coefficient(func(*values), k)

        return fallback_step

    def _repeat(self, instruction: Repeat) -> Step:
        extent = instruction.extent
        start, stop, step = (self.scalars.compile(part) for part in (extent.start, extent.stop, extent.step))
        body = self.bind_all(instruction.body)
        var = instruction.var
        ordinal = instruction.ordinal

        def repeat_step(k, store, env):
            for position, value in enumerate(range(start(env), stop(env), step(env))):
                env[var] = value
                env[ordinal] = position
                for inner in body:
                    inner(k, store, env)

        return repeat_step


class Evaluator:
    """Computes one expansion order of every temporary and of the outputs.

    Calling `evaluator(k, x, dx, p, t, buffers)` requires orders `0..k-1`
    to have been computed by earlier calls with the same buffers, and
    coefficients `0..k` of `x` and `t` to be filled in.
    """

    def __init__(self, name: str, program: Program, normalized: NormalizedFunction) -> None:
        self.name = name
        self.program = program
        self._signature = normalized.signature
        self._constants = dict(normalized.constants)
        self._steps = _Binder(normalized).bind_all(program)

    def __call__(self, k: int, x, dx, p, t, buffers) -> None:
        signature = self._signature
        store = dict(buffers)
        store[signature.state] = x
        store[signature.output] = dx
        store[signature.time] = t
        env = dict(self._constants)
        env[signature.params] = p
        env[DIMENSION] = len(x)
        for step in self._steps:
            step(k, store, env)

    def source(self) -> str:
        signature = self._signature
        lines = [f"def {self.name}_order(k, {signature.state}, {signature.output}, {signature.params}, {signature.time}, buffers):"]
        for slot in dict.fromkeys(_slot_names(self.program)):
            lines.append(f"    {slot} = buffers[{slot!r}]")
        lines.extend(render(self.program, indent=1))
        if len(lines) == 1:
            lines.append("    pass")
        return "\n".join(lines)


def _slot_names(code: tuple[Instruction, ...]):
    for instruction in code:
        if isinstance(instruction, (Branch, Repeat)):
            if isinstance(instruction, Branch):
                for operand in (instruction.test.left, instruction.test.right):
                    if isinstance(operand, SeriesRef) and operand.space == "slot":
                        yield operand.base
                yield from _slot_names(instruction.body)
                yield from _slot_names(instruction.orelse)
            else:
                yield from _slot_names(instruction.body)
            continue
        if isinstance(instruction, ScalarAssign):
            continue
        refs = [instruction.target]
        refs.extend(instruction.args if isinstance(instruction, (Assign, Fallback)) else (instruction.arg,))
        for ref in refs:
            if isinstance(ref, SeriesRef) and ref.space == "slot":
                yield ref.base


def render_ref(ref: SeriesRef) -> str:
    text = ref.base + "".join(f"[{unparse(part)}]" for part in ref.index)
    return text if ref.member is None else f"{text}[{ref.member}]"


def render_operand(operand: Operand) -> str:
    return render_ref(operand) if isinstance(operand, SeriesRef) else unparse(operand.expr)


def _render_test(test: Test) -> str:
    def side(operand: Operand) -> str:
        return f"{render_ref(operand)}[0]" if isinstance(operand, SeriesRef) else render_operand(operand)

    text = f"{side(test.left)} {test.op} {side(test.right)}"
    return f"not ({text})" if test.negate else text


def render(code: tuple[Instruction, ...], indent: int = 0) -> list[str]:
    """Pseudo-source for a planned program, one line per update."""
    pad = "    " * indent
    lines: list[str] = []
    for instruction in code:
        if isinstance(instruction, Assign):
            args = ", ".join(render_operand(arg) for arg in instruction.args)
            lines.append(f"{pad}{instruction.op}({render_ref(instruction.target)}, {args}, k)")
        elif isinstance(instruction, PairAssign):
            target = render_ref(instruction.target)
            lines.append(f"{pad}{instruction.family}({target}[0], {target}[1], {render_ref(instruction.arg)}, k)")
        elif isinstance(instruction, ScalarAssign):
            lines.append(f"{pad}{instruction.name} = {unparse(instruction.expr)}")
        elif isinstance(instruction, Fallback):
            args = ", ".join(
                f"Series({render_ref(arg)}[:k + 1])" if isinstance(arg, SeriesRef) else render_operand(arg)
                for arg in instruction.args
            )
            target = render_ref(instruction.target)
            lines.append(f"{pad}{target}[k] = coefficient({instruction.func}({args}), k)")
        elif isinstance(instruction, Branch):
            lines.append(f"{pad}if {_render_test(instruction.test)}:")
            lines.extend(render(instruction.body, indent + 1) or [f"{pad}    pass"])
            if instruction.orelse:
                lines.append(f"{pad}else:")
                lines.extend(render(instruction.orelse, indent + 1))
        elif isinstance(instruction, Repeat):
            extent = instruction.extent
            bounds = ", ".join(unparse(part) for part in (extent.start, extent.stop, extent.step))
            lines.append(f"{pad}for {instruction.ordinal}, {instruction.var} in enumerate(range({bounds})):")
            lines.extend(render(instruction.body, indent + 1) or [f"{pad}    pass"])
    return lines


def generate_evaluator(name: str, program: Program, normalized: NormalizedFunction) -> Evaluator:
    evaluator = Evaluator(name, program, normalized)
    logger.debug("generated evaluator %s_order with %d top-level steps", name, len(program))
    return evaluator
