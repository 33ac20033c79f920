"""Specialization registry and the compile pipeline entry points."""

from __future__ import annotations

import builtins
import logging
import os
import weakref
from dataclasses import dataclass
from typing import Callable, Final, Mapping

from .allocator import Allocator, generate_allocator
from .codegen import Evaluator, generate_evaluator
from .normalize import namespace_of, normalize
from .parser import parse, parse_function
from .plan import AllocationPlan, plan

logger = logging.getLogger(__name__)

STRICT_CALLS: Final[bool] = os.environ.get("TAYLORIZE_STRICT_CALLS", "0") == "1"
MAX_UNROLL: Final[int] = max(0, int(os.environ.get("TAYLORIZE_MAX_UNROLL", "64")))
DISABLE_SPECIALIZATION: Final[bool] = os.environ.get("TAYLORIZE_DISABLE_SPECIALIZATION", "0") == "1"


@dataclass(frozen=True)
class Specialization:
    """The evaluator/allocator pair compiled for one right-hand side."""

    name: str
    plan: AllocationPlan
    evaluator: Evaluator
    allocator: Allocator

    def source(self) -> str:
        return f"{self.allocator.source()}\n\n\n{self.evaluator.source()}\n"


def compile_rhs(
    rhs: Callable | str,
    *,
    namespace: Mapping[str, object] | None = None,
    name: str | None = None,
    strict_calls: bool | None = None,
    max_unroll: int | None = None,
) -> Specialization:
    """Run parser, normalizer, planner and both generators on one RHS.

    `rhs` is a function object or the source text of one function
    definition. For source text, `namespace` supplies the module names it
    refers to; for a function it extends the function's own globals.
    """
    if isinstance(rhs, str):
        function = parse(rhs)
        scope = {**vars(builtins), **(namespace or {})}
    else:
        function = parse_function(rhs)
        scope = {**namespace_of(rhs), **(namespace or {})}
    normalized = normalize(
        function,
        namespace=scope,
        max_unroll=MAX_UNROLL if max_unroll is None else max_unroll,
        strict_calls=STRICT_CALLS if strict_calls is None else strict_calls,
    )
    program, allocation = plan(normalized)
    label = name or function.name
    specialization = Specialization(
        name=label,
        plan=allocation,
        evaluator=generate_evaluator(label, program, normalized),
        allocator=generate_allocator(label, allocation, normalized, program),
    )
    logger.debug("compiled specialization for %s", label)
    return specialization


class SpecializationRegistry:
    """Weak mapping from RHS function objects to their specializations."""

    def __init__(self) -> None:
        self._entries: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    def register(self, func: Callable, specialization: Specialization | None = None, **options) -> Specialization:
        # Compile before touching the mapping so a failure registers nothing.
        if specialization is None:
            specialization = compile_rhs(func, **options)
        self._entries[func] = specialization
        return specialization

    def lookup(self, func: Callable) -> Specialization | None:
        try:
            return self._entries.get(func)
        except TypeError:
            return None

    def unregister(self, func: Callable) -> None:
        if func in self:
            del self._entries[func]

    def select(self, func: Callable, use_specialization: bool = True) -> Specialization | None:
        """The dispatch decision: a specialization, or None for the generic path."""
        if not use_specialization or DISABLE_SPECIALIZATION:
            logger.debug("generic evaluation for %r: specialization disabled", func)
            return None
        specialization = self.lookup(func)
        if specialization is None:
            logger.debug("generic evaluation for %r: no specialization registered", func)
        return specialization

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, func: object) -> bool:
        return self.lookup(func) is not None

    def __len__(self) -> int:
        return len(self._entries)


default_registry = SpecializationRegistry()


def taylorize(func: Callable | None = None, *, registry: SpecializationRegistry | None = None, **options):
    """Compile and register a right-hand side; returns the function unchanged.

    Usable bare (`@taylorize`) or with options
    (`@taylorize(strict_calls=True)`).
    """

    def decorate(f: Callable) -> Callable:
        (default_registry if registry is None else registry).register(f, **options)
        return f

    if func is None:
        return decorate
    return decorate(func)
