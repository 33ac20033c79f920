"""Generic jet evaluation by operator overloading on truncated series."""

from __future__ import annotations

from typing import Callable

import numpy as np

from .series import Series, coefficient


def generic_jet(f: Callable, x: np.ndarray, params, t: np.ndarray, order: int) -> np.ndarray:
    """Fill `x[:, 1:order + 1]` in place from `x[:, 0]` and `t`.

    Order `k` re-evaluates the whole right-hand side on series truncated
    after `k + 1` coefficients and keeps the coefficient of order `k`.
    """
    dimension = x.shape[0]
    for k in range(order):
        state = [Series(x[i, : k + 1]) for i in range(dimension)]
        time = Series(t[: k + 1])
        dx = [None] * dimension
        f(dx, state, params, time)
        for i in range(dimension):
            x[i, k + 1] = coefficient(dx[i], k) / (k + 1)
    return x
