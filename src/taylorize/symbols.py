"""Symbol table for the dataflow normalizer and planner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal as Lit

from .ast import Expr, Literal

Role = Lit[
    "output",
    "state",
    "parameter",
    "independent",
    "constant",
    "loop-index",
    "local-scalar",
    "local-series",
    "array-temporary",
    "temporary",
]
ElementType = Lit["scalar", "series", "pair"]

RESERVED_PREFIXES = ("_tz", "__")

# Roles whose names denote a container of series rather than one value.
CONTAINER_ROLES = frozenset({"output", "state", "array-temporary"})
SERIES_ROLES = frozenset({"independent", "local-series"})


@dataclass(frozen=True)
class Extent:
    """Integer range `range(start, stop, step)` resolved at allocation time."""

    start: Expr
    stop: Expr
    step: Expr

    @classmethod
    def of_length(cls, length: Expr) -> "Extent":
        return cls(start=Literal(0), stop=length, step=Literal(1))

    @property
    def static_length(self) -> int | None:
        parts = (self.start, self.stop, self.step)
        if all(isinstance(part, Literal) and isinstance(part.value, int) for part in parts):
            return len(range(self.start.value, self.stop.value, self.step.value))
        return None


@dataclass(frozen=True)
class Symbol:
    name: str
    role: Role
    element: ElementType = "series"
    extents: tuple[Extent, ...] = ()
    display: str | None = None

    @property
    def label(self) -> str:
        return self.display or self.name

    @property
    def is_container(self) -> bool:
        return self.role in CONTAINER_ROLES

    @property
    def is_series(self) -> bool:
        return self.role in SERIES_ROLES


class SymbolTable:
    """Mapping from resolved identifiers to their roles."""

    def __init__(self, symbols: dict[str, Symbol] | None = None) -> None:
        self._symbols: dict[str, Symbol] = dict(symbols or {})

    def declare(self, symbol: Symbol) -> Symbol:
        self._symbols[symbol.name] = symbol
        return symbol

    def lookup(self, name: str) -> Symbol | None:
        return self._symbols.get(name)

    def __getitem__(self, name: str) -> Symbol:
        return self._symbols[name]

    def __contains__(self, name: object) -> bool:
        return name in self._symbols

    def __iter__(self):
        return iter(self._symbols.values())

    def __len__(self) -> int:
        return len(self._symbols)

    def copy(self) -> "SymbolTable":
        return SymbolTable(self._symbols)

    def by_role(self, role: Role) -> tuple[Symbol, ...]:
        return tuple(symbol for symbol in self._symbols.values() if symbol.role == role)


def is_reserved(name: str) -> bool:
    return name.startswith(RESERVED_PREFIXES)
