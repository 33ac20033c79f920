from __future__ import annotations

import gc
import unittest
import warnings

import numpy as np

from taylorize import (
    Jet,
    Specialization,
    SpecializationRegistry,
    UnsupportedConstructError,
    compile_rhs,
    default_registry,
    taylorize,
)


@taylorize
def oscillator(dx, x, p, t):
    dx[0] = x[1]
    dx[1] = -x[0]


def accumulating(dx, x, p, t):
    dx[0] = x[0]
    dx[0] += x[1]


def smooth(value):
    return value * value


def with_unknown_call(dx, x, p, t):
    dx[0] = smooth(x[0])


class RegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = SpecializationRegistry()

    def test_bare_decorator_uses_the_default_registry(self) -> None:
        self.assertIn(oscillator, default_registry)
        jet = Jet(oscillator, order=4, dimension=2)
        self.assertTrue(jet.specialized)
        np.testing.assert_allclose(jet(0.0, [1.0, 0.0])[0], [1.0, 0.0, -0.5, 0.0, 1.0 / 24.0])

    def test_decorator_with_options_returns_the_function(self) -> None:
        def harmonic(dx, x, p, t):
            dx[0] = x[1]
            dx[1] = -(p[0] * x[0])

        decorated = taylorize(registry=self.registry, max_unroll=4)(harmonic)
        self.assertIs(decorated, harmonic)
        self.assertIn(harmonic, self.registry)
        self.assertEqual(len(self.registry), 1)

    def test_failed_compile_registers_nothing(self) -> None:
        with self.assertRaises(UnsupportedConstructError) as ctx:
            self.registry.register(accumulating)
        self.assertEqual(ctx.exception.construct, "compound assignment")
        self.assertTrue(ctx.exception.filename.endswith("test_registry.py"))
        self.assertNotIn(accumulating, self.registry)
        self.assertEqual(len(self.registry), 0)

    def test_strict_calls_option(self) -> None:
        with self.assertRaises(UnsupportedConstructError):
            taylorize(with_unknown_call, registry=self.registry, strict_calls=True)
        self.assertNotIn(with_unknown_call, self.registry)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            taylorize(with_unknown_call, registry=self.registry)
        self.assertIn(with_unknown_call, self.registry)

    def test_select(self) -> None:
        specialization = self.registry.register(oscillator)
        self.assertIs(self.registry.select(oscillator), specialization)
        self.assertIsNone(self.registry.select(oscillator, use_specialization=False))
        self.assertIsNone(self.registry.select(accumulating))

    def test_opt_out_takes_the_generic_path(self) -> None:
        self.registry.register(oscillator)
        jet = Jet(oscillator, order=4, dimension=2, use_specialization=False, registry=self.registry)
        self.assertFalse(jet.specialized)

    def test_unregister_and_clear(self) -> None:
        self.registry.register(oscillator)
        self.registry.unregister(oscillator)
        self.registry.unregister(oscillator)
        self.assertNotIn(oscillator, self.registry)
        self.registry.register(oscillator)
        self.registry.clear()
        self.assertEqual(len(self.registry), 0)

    def test_lookup_of_unreferenceable_objects(self) -> None:
        self.assertIsNone(self.registry.lookup(42))
        self.assertNotIn("oscillator", self.registry)

    def test_entries_do_not_keep_functions_alive(self) -> None:
        namespace: dict = {}
        exec("def temporary(dx, x, p, t):\n    dx[0] = x[0]\n", namespace)
        self.registry.register(namespace["temporary"], compile_rhs("def temporary(dx, x, p, t):\n    dx[0] = x[0]\n"))
        self.assertEqual(len(self.registry), 1)
        namespace.clear()
        gc.collect()
        self.assertEqual(len(self.registry), 0)


class CompileTests(unittest.TestCase):
    def test_compile_source_text(self) -> None:
        specialization = compile_rhs(
            "def rhs(dx, x, p, t):\n    dx[0] = x[1]\n    dx[1] = -np.sin(x[0])\n",
            namespace={"np": np},
            name="pendulum",
        )
        self.assertIsInstance(specialization, Specialization)
        self.assertEqual(specialization.name, "pendulum")
        source = specialization.source()
        self.assertIn("def pendulum_allocate(order, dimension, p):", source)
        self.assertIn("def pendulum_order(k, x, dx, p, t, buffers):", source)
        self.assertIn("    _tz_p0 = buffers['_tz_p0']", source)
        self.assertIn("    sincos(_tz_p0[0], _tz_p0[1], x[0], k)", source)
        self.assertIn("    neg(dx[1], _tz_p0[0], k)", source)

    def test_rendered_loops_and_branches(self) -> None:
        source = compile_rhs(
            "def rhs(dx, x, p, t):\n"
            "    for i in range(len(x)):\n"
            "        if x[i] > 0:\n"
            "            dx[i] = x[i] * x[i]\n"
            "        else:\n"
            "            dx[i] = -x[i]\n",
        ).evaluator.source()
        self.assertIn("    for _tz_i0, i in enumerate(range(0, len(x), 1)):", source)
        self.assertIn("        if x[i][0] > 0:", source)
        self.assertIn("            mul(dx[i], x[i], x[i], k)", source)
        self.assertIn("        else:", source)

    def test_max_unroll_option(self) -> None:
        body = "def rhs(dx, x, p, t):\n    for i in range(3):\n        dx[i] = x[i]\n"
        unrolled = compile_rhs(body, max_unroll=8).evaluator.program
        kept = compile_rhs(body, max_unroll=2).evaluator.program
        self.assertEqual(len(unrolled), 3)
        self.assertEqual(len(kept), 1)


if __name__ == "__main__":
    unittest.main()
