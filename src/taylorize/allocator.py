"""Allocator generation: build every planned buffer once per integration run."""

from __future__ import annotations

import logging
import operator
from collections.abc import Mapping
from typing import Callable, Iterator

import numpy as np

from .ast import Span, unparse
from .codegen import DIMENSION, ScalarCompiler
from .errors import DependencyCycleError, ShapeMismatchError, UnsupportedConstructError
from .normalize import NormalizedFunction
from .plan import (
    AllocationPlan,
    Assign,
    Branch,
    Fallback,
    Instruction,
    PairAssign,
    Program,
    Repeat,
    ScalarAssign,
    SeriesRef,
    Slot,
)

logger = logging.getLogger(__name__)


class _Replay:
    """Element rows stored so far along the paths of one evaluation."""

    def __init__(self, lengths: dict[str, int], written=(), possible=()) -> None:
        self.lengths = lengths
        self.written = set(written)
        self.possible = set(possible)

    def copy(self) -> "_Replay":
        return _Replay(self.lengths, self.written, self.possible)


class ElementCheck:
    """Replays the indexed stores and reads of a program with concrete bounds.

    Loop bounds may depend on the dimension and the parameters, so whether
    every element of `dx` or of an array temporary is stored exactly once
    and read only after its store is decided here, once per allocation.
    Both arms of a branch are replayed; an element counts as stored after
    the branch only when both arms store it.
    """

    def __init__(self, program: Program, normalized: NormalizedFunction) -> None:
        self._table = normalized.symbols
        self._function = normalized.function
        self._scalars = ScalarCompiler(normalized)
        self._checks = self._bind_all(program)

    def __call__(self, env: dict, lengths: dict[str, int]) -> None:
        replay = _Replay(lengths)
        for check in self._checks:
            check(env, replay)

    def _error(self, cls, message: str, construct: str, span: Span | None):
        function = self._function
        return cls(
            message,
            construct=construct,
            span=span,
            statement=function.snippet(span) if function is not None else None,
            filename=function.filename if function is not None else None,
        )

    def _element(self, ref):
        if not isinstance(ref, SeriesRef) or ref.space not in ("output", "slot") or len(ref.index) != 1:
            return None
        symbol = self._table.lookup(ref.base)
        if ref.space == "slot" and (symbol is None or symbol.role != "array-temporary"):
            return None
        label = symbol.label if symbol is not None else ref.base
        return ref.base, label, self._scalars.compile(ref.index[0])

    def _locate(self, element, env: dict, replay: _Replay, span: Span | None) -> tuple[str, int]:
        base, label, position = element
        value = operator.index(position(env))
        length = replay.lengths[base]
        if not 0 <= value < length:
            raise self._error(
                ShapeMismatchError,
                f"index {value} is out of bounds for '{label}' of length {length}",
                "index out of bounds",
                span,
            )
        return base, value

    def _access(self, reads, write, span: Span | None) -> Callable[[dict, _Replay], None]:
        reads = tuple(element for element in map(self._element, reads) if element is not None)
        write = self._element(write)

        def access(env, replay):
            for element in reads:
                key = self._locate(element, env, replay, span)
                if key not in replay.written:
                    raise self._error(
                        DependencyCycleError,
                        f"'{element[1]}[{key[1]}]' is read before it is written",
                        "read before write",
                        span,
                    )
            if write is not None:
                key = self._locate(write, env, replay, span)
                if key in replay.possible:
                    raise self._error(
                        UnsupportedConstructError,
                        f"'{write[1]}[{key[1]}]' is assigned more than once",
                        "repeated store",
                        span,
                    )
                replay.written.add(key)
                replay.possible.add(key)

        return access

    def _bind_all(self, code: tuple[Instruction, ...]) -> tuple[Callable[[dict, _Replay], None], ...]:
        return tuple(check for check in map(self._bind, code) if check is not None)

    def _bind(self, instruction: Instruction):
        if isinstance(instruction, (Assign, Fallback)):
            return self._access(instruction.args, instruction.target, instruction.span)
        if isinstance(instruction, PairAssign):
            return self._access((instruction.arg,), instruction.target, instruction.span)
        if isinstance(instruction, ScalarAssign):
            name = instruction.name
            value = self._scalars.compile(instruction.expr)

            def scalar(env, replay):
                env[name] = value(env)

            return scalar
        if isinstance(instruction, Branch):
            test = self._access((instruction.test.left, instruction.test.right), None, instruction.span)
            body = self._bind_all(instruction.body)
            orelse = self._bind_all(instruction.orelse)

            def branch(env, replay):
                test(env, replay)
                arms = []
                for checks in (body, orelse):
                    arm = replay.copy()
                    for check in checks:
                        check(env, arm)
                    arms.append(arm)
                replay.written = arms[0].written & arms[1].written
                replay.possible = arms[0].possible | arms[1].possible

            return branch
        if isinstance(instruction, Repeat):
            extent = instruction.extent
            start, stop, step = (self._scalars.compile(part) for part in (extent.start, extent.stop, extent.step))
            body = self._bind_all(instruction.body)
            var, ordinal = instruction.var, instruction.ordinal

            def repeat(env, replay):
                for position, value in enumerate(range(start(env), stop(env), step(env))):
                    env[var] = value
                    env[ordinal] = position
                    for check in body:
                        check(env, replay)

            return repeat
        return None


class Buffers(Mapping):
    """Read-only mapping of slot name to coefficient buffer for one run."""

    def __init__(self, arrays: dict[str, np.ndarray], order: int) -> None:
        self._arrays = arrays
        self.order = order

    def __getitem__(self, name: str) -> np.ndarray:
        return self._arrays[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._arrays)

    def __len__(self) -> int:
        return len(self._arrays)

    def shapes(self) -> dict[str, tuple[int, ...]]:
        return {name: array.shape for name, array in self._arrays.items()}

    def __repr__(self) -> str:
        return f"Buffers(order={self.order}, shapes={self.shapes()!r})"


class Allocator:
    """Constructs the buffers a specialized evaluator reads and writes."""

    def __init__(
        self, name: str, plan: AllocationPlan, normalized: NormalizedFunction, program: Program = ()
    ) -> None:
        self.name = name
        self.plan = plan
        self._params = normalized.signature.params
        self._output = normalized.signature.output
        self._constants = dict(normalized.constants)
        self._elements = ElementCheck(program, normalized)
        compiler = ScalarCompiler(normalized)
        self._extents = tuple(
            (slot, tuple(tuple(compiler.compile(part) for part in (e.start, e.stop, e.step)) for e in slot.extents))
            for slot in plan
        )

    def __call__(self, order: int, dimension: int, params=None) -> Buffers:
        order = operator.index(order)
        dimension = operator.index(dimension)
        if order < 0:
            raise ValueError(f"order must be non-negative, got {order}")
        if dimension < 0:
            raise ValueError(f"dimension must be non-negative, got {dimension}")
        env = dict(self._constants)
        env[self._params] = params
        env[DIMENSION] = dimension
        arrays = {}
        for slot, extents in self._extents:
            shape = tuple(_length(slot, bounds, env) for bounds in extents)
            if slot.kind == "pair":
                shape += (2,)
            arrays[slot.name] = np.zeros(shape + (order + 1,))
        lengths = {self._output: dimension}
        lengths.update((slot.name, arrays[slot.name].shape[0]) for slot in self.plan if slot.kind == "array")
        self._elements(env, lengths)
        logger.debug("allocated %d buffers for %s at order %d", len(arrays), self.name, order)
        return Buffers(arrays, order)

    def source(self) -> str:
        lines = [f"def {self.name}_allocate(order, dimension, {self._params}):", "    return {"]
        for slot in self.plan:
            dims = [_render_extent(extent) for extent in slot.extents]
            if slot.kind == "pair":
                dims.append("2")
            dims.append("order + 1")
            comment = f"  # {slot.origin}" if slot.origin else ""
            lines.append(f"        {slot.name!r}: zeros(({', '.join(dims)},)),{comment}")
        lines.append("    }")
        return "\n".join(lines)


def _length(slot: Slot, bounds, env: dict) -> int:
    start, stop, step = (operator.index(bound(env)) for bound in bounds)
    if step == 0:
        raise ValueError(f"slot {slot.name!r} has a range with zero step")
    if slot.kind == "array" and stop < 0:
        raise ValueError(f"array {slot.name!r} has negative length {stop}")
    return len(range(start, stop, step))


def _render_extent(extent) -> str:
    start, stop, step = (unparse(part) for part in (extent.start, extent.stop, extent.step))
    if (start, step) == ("0", "1"):
        return stop
    return f"len(range({start}, {stop}, {step}))"


def generate_allocator(
    name: str, plan: AllocationPlan, normalized: NormalizedFunction, program: Program = ()
) -> Allocator:
    return Allocator(name, plan, normalized, program)
