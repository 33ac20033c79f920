"""Taylor-mode automatic differentiation reference built on `jax.experimental.jet`.

Independent of the series library; used to cross-check coefficients.
Only branch-free right-hand sides are supported, because conditions on
traced values cannot be decided during tracing.
"""

from __future__ import annotations

import math
import types
from typing import Callable

import jax.numpy as jnp
import numpy as np
from jax.experimental.jet import jet


def _rebind(f: Callable) -> Callable:
    # Route numpy calls made by the right-hand side to jax.numpy.
    scope = dict(f.__globals__)
    for key, value in f.__globals__.items():
        if value is np:
            scope[key] = jnp
        elif isinstance(value, np.ufunc):
            scope[key] = getattr(jnp, value.__name__, value)
    return types.FunctionType(f.__code__, scope, f.__name__, f.__defaults__, f.__closure__)


def odejet(f: Callable, t0, x0, params=None, *, order: int) -> np.ndarray:
    """Normalized Taylor coefficients of the solution through `order`.

    Returns an array of shape `(len(x0), order + 1)` like `jetcoeffs`.
    The state is augmented with the independent variable so that `t`
    carries its own expansion `t0 + h`.
    """
    rhs = _rebind(f)
    x0 = jnp.asarray(x0, dtype=float)
    dimension = x0.shape[0]

    def vf(u):
        state = [u[i] for i in range(dimension)]
        dx = [None] * dimension
        rhs(dx, state, params, u[dimension])
        derivatives = [jnp.zeros((), dtype=u.dtype) if d is None else jnp.asarray(d, dtype=u.dtype) for d in dx]
        return jnp.stack([*derivatives, jnp.ones((), dtype=u.dtype)])

    u0 = jnp.concatenate([x0, jnp.asarray([t0], dtype=x0.dtype)])
    coeffs = [u0]
    if order >= 1:
        coeffs.append(vf(u0))
    for _ in range(order - 1):
        primal, series = jet(vf, (u0,), (coeffs[1:],))
        coeffs = [u0, primal, *series]

    result = np.zeros((dimension, order + 1))
    for k, coefficient in enumerate(coeffs):
        result[:, k] = np.asarray(coefficient[:dimension]) / math.factorial(k)
    return result
