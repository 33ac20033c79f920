"""Structured error types for the specialization compile stages."""

from __future__ import annotations

from .ast import Span


class TaylorizeError(Exception):
    """Base class for structured taylorize errors."""


class TaylorizeCompileError(TaylorizeError):
    """Compile-time failure tied to a location in the right-hand side."""

    def __init__(
        self,
        message: str,
        *,
        construct: str | None = None,
        span: Span | None = None,
        statement: str | None = None,
        filename: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.construct = construct
        self.span = span
        self.statement = statement
        self.filename = filename

    def __str__(self) -> str:
        text = self.message
        if self.span is not None:
            where = str(self.span)
            if self.filename:
                where = f"{self.filename}, {where}"
            text = f"{text} at {where}"
        if self.statement:
            text = f"{text}: {self.statement}"
        return text


class ParseError(TaylorizeCompileError):
    """Source is not a parsable right-hand-side function definition."""


class UnsupportedConstructError(TaylorizeCompileError):
    """Construct exists in Python but lies outside the compiled subset."""


class ShapeMismatchError(TaylorizeCompileError):
    """Branches or array extents do not determine a static slot set."""


class DependencyCycleError(TaylorizeCompileError):
    """A value is read before the statement that writes it."""


class UnknownCallWarning(UserWarning):
    """An unrecognized call on series operands is passed through verbatim."""
