"""Truncated power series with per-order coefficient recurrences.

Every update function computes the coefficient of order `k` of its result
from orders `0..k` of its operands and orders `0..k-1` of its own output,
writing in place into `out[k]`. Coefficients are normalized Taylor
coefficients, `x(t0 + h) = sum(c[k] * h**k)`.

The `Series` class evaluates whole truncated series by looping the very same
update functions over all orders, so that a specialized evaluator and an
operator-overloaded evaluation of one right-hand side agree bit for bit.
"""

from __future__ import annotations

import numbers
import operator
from typing import Callable, Final

import numpy as np

# Scalar operands are python or numpy numbers, series operands 1-d float arrays.


def copy(out, a, k: int) -> None:
    out[k] = a[k]


def const(out, value, k: int) -> None:
    out[k] = value if k == 0 else 0.0


def neg(out, a, k: int) -> None:
    out[k] = -a[k]


def add(out, a, b, k: int) -> None:
    out[k] = a[k] + b[k]


def add_scalar(out, a, s, k: int) -> None:
    out[k] = a[k] + s if k == 0 else a[k]


def sub(out, a, b, k: int) -> None:
    out[k] = a[k] - b[k]


def sub_scalar(out, a, s, k: int) -> None:
    out[k] = a[k] - s if k == 0 else a[k]


def rsub_scalar(out, a, s, k: int) -> None:
    """`s - a`."""
    out[k] = s - a[k] if k == 0 else -a[k]


def mul(out, a, b, k: int) -> None:
    out[k] = np.dot(a[: k + 1], b[k::-1])


def mul_scalar(out, a, s, k: int) -> None:
    out[k] = a[k] * s


def div(out, a, b, k: int) -> None:
    out[k] = (a[k] - np.dot(out[:k], b[k:0:-1])) / b[0]


def div_scalar(out, a, s, k: int) -> None:
    out[k] = a[k] / s


def rdiv_scalar(out, a, s, k: int) -> None:
    """`s / a`."""
    numerator = s if k == 0 else 0.0
    out[k] = (numerator - np.dot(out[:k], a[k:0:-1])) / a[0]


def sqr(out, a, k: int) -> None:
    out[k] = np.dot(a[: k + 1], a[k::-1])


def _truncated_power(a, n: int, k: int) -> float:
    acc = np.zeros(k + 1)
    acc[0] = 1.0
    for _ in range(n):
        acc = np.convolve(acc, a[: k + 1])[: k + 1]
    return acc[k]


def pow_scalar(out, a, p, k: int) -> None:
    """`a ** p` for a scalar exponent `p`."""
    if p == 0:
        out[k] = 1.0 if k == 0 else 0.0
        return
    if p == 1:
        out[k] = a[k]
        return
    if p == 2:
        sqr(out, a, k)
        return
    if k == 0:
        out[0] = a[0] ** p
        return
    if a[0] == 0:
        if float(p).is_integer() and p > 0:
            out[k] = _truncated_power(a, int(p), k)
            return
        raise ValueError(f"power {p} of a series with zero constant term has no Taylor expansion")
    m = np.arange(1, k + 1)
    out[k] = np.dot(((p + 1) * m - k) * a[1 : k + 1], out[k - 1 :: -1]) / (k * a[0])


def exp(out, a, k: int) -> None:
    if k == 0:
        out[0] = np.exp(a[0])
        return
    weights = np.arange(1, k + 1) * a[1 : k + 1]
    out[k] = np.dot(weights, out[k - 1 :: -1]) / k


def log(out, a, k: int) -> None:
    if k == 0:
        out[0] = np.log(a[0])
        return
    acc = np.dot(a[1:k] * np.arange(k - 1, 0, -1), out[k - 1 : 0 : -1])
    out[k] = (a[k] - acc / k) / a[0]


def sqrt(out, a, k: int) -> None:
    if k == 0:
        out[0] = np.sqrt(a[0])
        return
    acc = np.dot(out[1:k], out[k - 1 : 0 : -1])
    out[k] = (a[k] - acc) / (2 * out[0])


def abs_(out, a, k: int) -> None:
    out[k] = a[k] if a[0] >= 0 else -a[k]


def sincos(s, c, a, k: int) -> None:
    """Sine and cosine; each order reads the partner's lower orders."""
    if k == 0:
        s[0] = np.sin(a[0])
        c[0] = np.cos(a[0])
        return
    weights = np.arange(1, k + 1) * a[1 : k + 1]
    s[k] = np.dot(weights, c[k - 1 :: -1]) / k
    c[k] = -np.dot(weights, s[k - 1 :: -1]) / k


def sinhcosh(s, c, a, k: int) -> None:
    if k == 0:
        s[0] = np.sinh(a[0])
        c[0] = np.cosh(a[0])
        return
    weights = np.arange(1, k + 1) * a[1 : k + 1]
    s[k] = np.dot(weights, c[k - 1 :: -1]) / k
    c[k] = np.dot(weights, s[k - 1 :: -1]) / k


def tan(t, q, a, k: int) -> None:
    """Tangent with its square as the auxiliary series."""
    if k == 0:
        t[0] = np.tan(a[0])
    else:
        weights = np.arange(1, k + 1) * a[1 : k + 1]
        t[k] = a[k] + np.dot(weights, q[k - 1 :: -1]) / k
    sqr(q, t, k)


def tanh(t, q, a, k: int) -> None:
    """Hyperbolic tangent with its square as the auxiliary series."""
    if k == 0:
        t[0] = np.tanh(a[0])
    else:
        weights = np.arange(1, k + 1) * a[1 : k + 1]
        t[k] = a[k] - np.dot(weights, q[k - 1 :: -1]) / k
    sqr(q, t, k)


def atan(r, q, a, k: int) -> None:
    """Arctangent with `1 + a**2` as the auxiliary series."""
    sqr(q, a, k)
    if k == 0:
        q[0] += 1.0
        r[0] = np.arctan(a[0])
        return
    acc = np.dot(np.arange(k - 1, 0, -1) * q[1:k], r[k - 1 : 0 : -1])
    r[k] = (a[k] - acc / k) / q[0]


UNARY: Final[dict[str, Callable]] = {
    "copy": copy,
    "neg": neg,
    "exp": exp,
    "log": log,
    "sqrt": sqrt,
    "abs": abs_,
}
PAIRS: Final[dict[str, Callable]] = {
    "sincos": sincos,
    "sinhcosh": sinhcosh,
    "tan": tan,
    "tanh": tanh,
    "atan": atan,
}
# Binary updates keyed by (operator, left is series, right is series).
BINARY: Final[dict[tuple[str, bool, bool], Callable]] = {
    ("+", True, True): add,
    ("+", True, False): add_scalar,
    ("-", True, True): sub,
    ("-", True, False): sub_scalar,
    ("*", True, True): mul,
    ("*", True, False): mul_scalar,
    ("/", True, True): div,
    ("/", True, False): div_scalar,
    ("**", True, False): pow_scalar,
}
# Scalar-left variants take the series operand first.
REFLECTED: Final[dict[str, Callable]] = {
    "+": add_scalar,
    "-": rsub_scalar,
    "*": mul_scalar,
    "/": rdiv_scalar,
}
UPDATES: Final[dict[str, Callable]] = {
    **UNARY,
    "const": const,
    **{update.__name__: update for update in BINARY.values()},
    **{update.__name__: update for update in REFLECTED.values()},
}

# Recognized function names -> (update family, member of a coupled pair).
ELEMENTARY: Final[dict[str, tuple[str, int | None]]] = {
    "sin": ("sincos", 0),
    "cos": ("sincos", 1),
    "sinh": ("sinhcosh", 0),
    "cosh": ("sinhcosh", 1),
    "tan": ("tan", 0),
    "tanh": ("tanh", 0),
    "atan": ("atan", 0),
    "exp": ("exp", None),
    "log": ("log", None),
    "sqrt": ("sqrt", None),
    "abs": ("abs", None),
}
ALIASES: Final[dict[str, str]] = {"arctan": "atan", "absolute": "abs", "fabs": "abs"}
SCALAR_FUNCTIONS: Final[dict[str, Callable]] = {
    "sin": np.sin,
    "cos": np.cos,
    "sinh": np.sinh,
    "cosh": np.cosh,
    "tan": np.tan,
    "tanh": np.tanh,
    "atan": np.arctan,
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "abs": np.abs,
}


def canonical_name(name: str) -> str | None:
    name = ALIASES.get(name, name)
    return name if name in ELEMENTARY else None


class Series:
    """Truncated Taylor series backed by a float64 coefficient array."""

    __slots__ = ("coeffs",)
    __hash__ = None

    def __init__(self, coeffs) -> None:
        self.coeffs = np.asarray(coeffs, dtype=np.float64)
        if self.coeffs.ndim != 1 or self.coeffs.size == 0:
            raise ValueError("Series coefficients must be a non-empty 1-d array")

    @classmethod
    def constant(cls, value, order: int) -> "Series":
        coeffs = np.zeros(order + 1)
        coeffs[0] = value
        return cls(coeffs)

    @classmethod
    def variable(cls, value, order: int) -> "Series":
        """The independent variable expanded around `value`."""
        coeffs = np.zeros(order + 1)
        coeffs[0] = value
        if order >= 1:
            coeffs[1] = 1.0
        return cls(coeffs)

    @property
    def order(self) -> int:
        return self.coeffs.size - 1

    def __len__(self) -> int:
        return self.coeffs.size

    def __getitem__(self, k):
        return self.coeffs[k]

    def __repr__(self) -> str:
        return f"Series({self.coeffs.tolist()!r})"

    def __float__(self) -> float:
        raise TypeError("a Series has no float value; use series[0] for the constant term")

    def evaluate(self, dt):
        """Horner evaluation of the truncated polynomial at offset `dt`."""
        acc = self.coeffs[-1]
        for c in self.coeffs[-2::-1]:
            acc = acc * dt + c
        return acc

    # Whole-series application of the per-order updates

    def _apply(self, update, *operands) -> "Series":
        out = np.zeros_like(self.coeffs)
        for k in range(out.size):
            update(out, *operands, k)
        return Series(out)

    def _apply_pair(self, family: str, member: int) -> "Series":
        first = np.zeros_like(self.coeffs)
        second = np.zeros_like(self.coeffs)
        update = PAIRS[family]
        for k in range(first.size):
            update(first, second, self.coeffs, k)
        return Series((first, second)[member])

    def _check_order(self, other: "Series") -> None:
        if other.coeffs.size != self.coeffs.size:
            raise ValueError(f"series orders differ: {self.order} and {other.order}")

    def _binary(self, op: str, other) -> "Series":
        if isinstance(other, Series):
            self._check_order(other)
            return self._apply(BINARY[(op, True, True)], self.coeffs, other.coeffs)
        if isinstance(other, numbers.Number):
            return self._apply(BINARY[(op, True, False)], self.coeffs, other)
        return NotImplemented

    def _reflected(self, op: str, other) -> "Series":
        if isinstance(other, numbers.Number):
            return self._apply(REFLECTED[op], self.coeffs, other)
        return NotImplemented

    def __add__(self, other):
        return self._binary("+", other)

    def __radd__(self, other):
        return self._reflected("+", other)

    def __sub__(self, other):
        return self._binary("-", other)

    def __rsub__(self, other):
        return self._reflected("-", other)

    def __mul__(self, other):
        return self._binary("*", other)

    def __rmul__(self, other):
        return self._reflected("*", other)

    def __truediv__(self, other):
        return self._binary("/", other)

    def __rtruediv__(self, other):
        return self._reflected("/", other)

    def __pow__(self, other):
        if isinstance(other, Series):
            return (other * self.log()).exp()
        return self._binary("**", other)

    def __rpow__(self, other):
        if isinstance(other, numbers.Number):
            return (self * np.log(other)).exp()
        return NotImplemented

    def __neg__(self):
        return self._apply(neg, self.coeffs)

    def __pos__(self):
        return self._apply(copy, self.coeffs)

    def __abs__(self):
        return self.abs()

    # Comparisons look at the constant term only.

    def _constant_term(self, other):
        return other.coeffs[0] if isinstance(other, Series) else other

    def __lt__(self, other):
        return self.coeffs[0] < self._constant_term(other)

    def __le__(self, other):
        return self.coeffs[0] <= self._constant_term(other)

    def __gt__(self, other):
        return self.coeffs[0] > self._constant_term(other)

    def __ge__(self, other):
        return self.coeffs[0] >= self._constant_term(other)

    def __eq__(self, other):
        return self.coeffs[0] == self._constant_term(other)

    def __ne__(self, other):
        return self.coeffs[0] != self._constant_term(other)

    # Elementary functions

    def exp(self) -> "Series":
        return self._apply(exp, self.coeffs)

    def log(self) -> "Series":
        return self._apply(log, self.coeffs)

    def sqrt(self) -> "Series":
        return self._apply(sqrt, self.coeffs)

    def abs(self) -> "Series":
        return self._apply(abs_, self.coeffs)

    def sin(self) -> "Series":
        return self._apply_pair("sincos", 0)

    def cos(self) -> "Series":
        return self._apply_pair("sincos", 1)

    def sinh(self) -> "Series":
        return self._apply_pair("sinhcosh", 0)

    def cosh(self) -> "Series":
        return self._apply_pair("sinhcosh", 1)

    def tan(self) -> "Series":
        return self._apply_pair("tan", 0)

    def tanh(self) -> "Series":
        return self._apply_pair("tanh", 0)

    def atan(self) -> "Series":
        return self._apply_pair("atan", 0)

    # numpy interoperability: np.sin(series), np.float64(2.0) * series, ...

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        if method != "__call__" or kwargs:
            return NotImplemented
        operands = [item.item() if isinstance(item, np.generic) else item for item in inputs]
        if len(operands) == 1:
            name = ALIASES.get(ufunc.__name__, ufunc.__name__)
            if name in ELEMENTARY:
                return getattr(self, name)()
            if name == "square":
                return self ** 2
            if name == "negative":
                return -self
            if name == "positive":
                return +self
            return NotImplemented
        binary = _UFUNC_OPERATORS.get(ufunc.__name__)
        if binary is None or len(operands) != 2:
            return NotImplemented
        return binary(*operands)


_UFUNC_OPERATORS: Final[dict[str, Callable]] = {
    "add": operator.add,
    "subtract": operator.sub,
    "multiply": operator.mul,
    "true_divide": operator.truediv,
    "divide": operator.truediv,
    "power": operator.pow,
    "less": operator.lt,
    "less_equal": operator.le,
    "greater": operator.gt,
    "greater_equal": operator.ge,
    "equal": operator.eq,
    "not_equal": operator.ne,
}


def coefficient(value, k: int):
    """Order-`k` coefficient of a series or of a constant."""
    if isinstance(value, Series):
        return value.coeffs[k]
    if value is None:
        return 0.0
    return value if k == 0 else 0.0


def series_array(length: int):
    """Declare a fixed-length array of series inside a right-hand side."""
    return [None] * length
