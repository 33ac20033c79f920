"""Integrator-facing jet driver."""

from __future__ import annotations

import logging
import operator
from typing import Callable

import numpy as np

from .generic import generic_jet
from .registry import SpecializationRegistry, default_registry

logger = logging.getLogger(__name__)


class Jet:
    """Computes the Taylor expansion of `x' = f(x, p, t)` up to `order`.

    The dispatch between the specialized evaluator and the generic one is
    decided once, here; buffers are allocated once and reused by every call.
    """

    def __init__(
        self,
        f: Callable,
        *,
        order: int,
        dimension: int,
        params=None,
        use_specialization: bool = True,
        registry: SpecializationRegistry | None = None,
    ) -> None:
        self.f = f
        self.order = operator.index(order)
        self.dimension = operator.index(dimension)
        if self.order < 0:
            raise ValueError(f"order must be non-negative, got {self.order}")
        if self.dimension < 1:
            raise ValueError(f"dimension must be positive, got {self.dimension}")
        self.params = params
        registry = default_registry if registry is None else registry
        self.specialization = registry.select(f, use_specialization)
        self.buffers = None
        if self.specialization is not None:
            self.buffers = self.specialization.allocator(self.order, self.dimension, params)
        self.x = np.zeros((self.dimension, self.order + 1))
        self.dx = np.zeros((self.dimension, self.order + 1))
        self.t = np.zeros(self.order + 1)
        logger.debug(
            "jet for %s: order %d, dimension %d, %s",
            getattr(f, "__name__", f),
            self.order,
            self.dimension,
            "specialized" if self.specialized else "generic",
        )

    @property
    def specialized(self) -> bool:
        return self.specialization is not None

    def __call__(self, t0, x0) -> np.ndarray:
        """Expand around `(t0, x0)`; returns the shared coefficient buffer.

        Row `i` of the result holds the normalized coefficients of `x[i]`.
        The array is overwritten by the next call.
        """
        x0 = np.asarray(x0, dtype=np.float64)
        if x0.shape != (self.dimension,):
            raise ValueError(f"expected a state of shape ({self.dimension},), got {x0.shape}")
        x, dx, t = self.x, self.dx, self.t
        x.fill(0.0)
        dx.fill(0.0)
        t.fill(0.0)
        x[:, 0] = x0
        t[0] = t0
        if self.order >= 1:
            t[1] = 1.0
        if self.specialization is None:
            return generic_jet(self.f, x, self.params, t, self.order)
        evaluator = self.specialization.evaluator
        for k in range(self.order):
            evaluator(k, x, dx, self.params, t, self.buffers)
            x[:, k + 1] = dx[:, k] / (k + 1)
        return x


def jetcoeffs(
    f: Callable,
    t0,
    x0,
    params=None,
    *,
    order: int,
    use_specialization: bool = True,
    registry: SpecializationRegistry | None = None,
) -> np.ndarray:
    """One-shot expansion; returns a fresh `(dimension, order + 1)` array."""
    jet = Jet(
        f,
        order=order,
        dimension=np.size(x0),
        params=params,
        use_specialization=use_specialization,
        registry=registry,
    )
    return jet(t0, x0).copy()
