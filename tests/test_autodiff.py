from __future__ import annotations

import importlib.util
import unittest

import numpy as np

from taylorize import SpecializationRegistry, jetcoeffs


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


def pendulum(dx, x, p, t):
    dx[0] = x[1]
    dx[1] = -np.sin(x[0])


def lorenz(dx, x, p, t):
    dx[0] = p[0] * (x[1] - x[0])
    dx[1] = (x[0] * (p[1] - x[2])) - x[1]
    dx[2] = (x[0] * x[1]) - (p[2] * x[2])


def kepler(dx, x, p, t):
    r2 = (x[0] * x[0]) + (x[1] * x[1])
    r3 = r2 ** 1.5
    dx[0] = x[2]
    dx[1] = x[3]
    dx[2] = -x[0] / r3
    dx[3] = -x[1] / r3


def forced(dx, x, p, t):
    dx[0] = x[1]
    dx[1] = (np.exp(-t) * np.cos(t)) - (p[0] * x[0])


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for the autodiff reference tests")
class AutodiffReferenceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        import jax

        jax.config.update("jax_enable_x64", True)

    def setUp(self) -> None:
        self.registry = SpecializationRegistry()

    def _assert_matches_reference(self, f, x0, params=None, *, order: int = 8, t0: float = 0.0) -> None:
        from taylorize import odejet

        self.registry.register(f)
        specialized = jetcoeffs(f, t0, x0, params, order=order, registry=self.registry)
        reference = odejet(f, t0, x0, params, order=order)
        self.assertEqual(reference.shape, specialized.shape)
        np.testing.assert_allclose(specialized, reference, rtol=1e-9, atol=1e-12)

    def test_pendulum(self) -> None:
        self._assert_matches_reference(pendulum, [1.3, 0.0], order=10)

    def test_lorenz(self) -> None:
        self._assert_matches_reference(lorenz, [1.0, 0.5, 0.25], (10.0, 28.0, 8.0 / 3.0))

    def test_kepler(self) -> None:
        self._assert_matches_reference(kepler, [1.0, 0.0, 0.0, 1.1])

    def test_time_dependence(self) -> None:
        self._assert_matches_reference(forced, [0.3, -0.4], (2.0,), t0=0.7)

    def test_order_zero_and_one(self) -> None:
        from taylorize import odejet

        np.testing.assert_allclose(odejet(pendulum, 0.0, [1.3, 0.0], order=0), [[1.3], [0.0]])
        np.testing.assert_allclose(odejet(pendulum, 0.0, [1.3, 0.0], order=1), [[1.3, 0.0], [0.0, -np.sin(1.3)]])


if __name__ == "__main__":
    unittest.main()
