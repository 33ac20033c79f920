from __future__ import annotations

import unittest

import numpy as np

from taylorize import compile_rhs
from taylorize.allocator import Buffers
from taylorize.errors import DependencyCycleError, ShapeMismatchError, UnsupportedConstructError


PENDULUM = """
def pendulum(dx, x, p, t):
    dx[0] = x[1]
    dx[1] = -np.sin(x[0])
"""

CHAIN = """
def chain(dx, x, p, t):
    for i in range(len(x)):
        dx[i] = (p[0] * x[i]) + np.sin(x[(i + 1) % len(x)])
"""

SIZED = """
def sized(dx, x, p, t):
    s = series_array(p[0])
    for i in range(p[0]):
        s[i] = x[0] * x[0]
    dx[0] = x[0]
"""

SPLIT = """
def split(dx, x, p, t):
    for i in range(len(x) - 1):
        dx[i] = x[i] * x[i]
    for j in range(len(x) - 1, len(x)):
        dx[j] = -x[j]
"""

OVERLAP = """
def overlap(dx, x, p, t):
    for i in range(len(x)):
        dx[i] = x[i]
    for j in range(len(x) - 1, len(x)):
        dx[j] = x[j] * 2.0
"""

SHIFTED = """
def shifted(dx, x, p, t):
    s = series_array(len(x))
    for i in range(1, len(x)):
        s[i] = x[i] * x[i]
    for j in range(len(x)):
        dx[j] = s[j] + 1.0
"""

SIZED_READ = """
def sized_read(dx, x, p, t):
    s = series_array(len(x))
    for i in range(p[0]):
        s[i] = x[0] * x[i]
    for j in range(len(x)):
        dx[j] = s[j]
"""

PICKED = """
def picked(dx, x, p, t):
    dx[0] = x[0]
    dx[p[0]] = x[1]
"""

SHIFTED_STORE = """
def shifted_store(dx, x, p, t):
    for i in range(len(x)):
        dx[i + 1] = x[i]
"""


def _compile(source: str):
    return compile_rhs(source, namespace={"np": np})


class AllocatorTests(unittest.TestCase):
    def test_pair_buffer_shape(self) -> None:
        buffers = _compile(PENDULUM).allocator(order=7, dimension=2)
        self.assertIsInstance(buffers, Buffers)
        self.assertEqual(buffers.order, 7)
        self.assertEqual(buffers.shapes(), {"_tz_p0": (2, 8)})

    def test_loop_buffers_follow_the_dimension(self) -> None:
        allocator = _compile(CHAIN).allocator
        buffers = allocator(4, 5, (1.0,))
        shapes = buffers.shapes()
        self.assertEqual(len(shapes), 2)
        self.assertIn((5, 2, 5), shapes.values())
        self.assertIn((5, 5), shapes.values())
        self.assertEqual(set(allocator(4, 3, (1.0,)).shapes().values()), {(3, 2, 5), (3, 5)})

    def test_array_length_from_parameters(self) -> None:
        allocator = _compile(SIZED).allocator
        self.assertEqual(allocator(3, 1, (4,))["s"].shape, (4, 4))
        with self.assertRaises(ValueError):
            allocator(3, 1, (-1,))

    def test_allocations_are_independent_and_zeroed(self) -> None:
        allocator = _compile(PENDULUM).allocator
        first = allocator(5, 2)
        second = allocator(5, 2)
        self.assertEqual(first.shapes(), second.shapes())
        self.assertIsNot(first["_tz_p0"], second["_tz_p0"])
        self.assertFalse(first["_tz_p0"].any())

    def test_invalid_sizes(self) -> None:
        allocator = _compile(PENDULUM).allocator
        with self.assertRaises(ValueError):
            allocator(-1, 2)
        with self.assertRaises(ValueError):
            allocator(3, -2)
        with self.assertRaises(TypeError):
            allocator(2.5, 2)

    def test_rendered_source(self) -> None:
        source = _compile(PENDULUM).allocator.source()
        self.assertTrue(source.startswith("def pendulum_allocate(order, dimension, p):"))
        self.assertIn("'_tz_p0': zeros((2, order + 1,)),  # sincos(x[0])", source)


class ElementCheckTests(unittest.TestCase):
    def test_disjoint_loop_stores(self) -> None:
        allocator = _compile(SPLIT).allocator
        for dimension in (1, 2, 5):
            with self.subTest(dimension=dimension):
                self.assertEqual(allocator(3, dimension).order, 3)

    def test_overlapping_loop_stores(self) -> None:
        allocator = _compile(OVERLAP).allocator
        with self.assertRaises(UnsupportedConstructError) as ctx:
            allocator(3, 2)
        self.assertEqual(ctx.exception.construct, "repeated store")
        self.assertIn("'dx[1]' is assigned more than once", str(ctx.exception))
        self.assertEqual(ctx.exception.statement, "dx[j] = x[j] * 2.0")

    def test_element_read_before_its_loop_store(self) -> None:
        allocator = _compile(SHIFTED).allocator
        with self.assertRaises(DependencyCycleError) as ctx:
            allocator(3, 3)
        self.assertIn("'s[0]' is read before it is written", str(ctx.exception))

    def test_loop_bound_from_parameters(self) -> None:
        allocator = _compile(SIZED_READ).allocator
        self.assertEqual(allocator(2, 3, (3,))["s"].shape, (3, 3))
        with self.assertRaises(DependencyCycleError) as ctx:
            allocator(2, 3, (2,))
        self.assertIn("'s[2]' is read before it is written", str(ctx.exception))

    def test_store_at_a_parameter_index(self) -> None:
        allocator = _compile(PICKED).allocator
        self.assertEqual(allocator(2, 2, (1,)).order, 2)
        with self.assertRaises(UnsupportedConstructError) as ctx:
            allocator(2, 2, (0,))
        self.assertIn("'dx[0]' is assigned more than once", str(ctx.exception))

    def test_store_out_of_bounds(self) -> None:
        allocator = _compile(SHIFTED_STORE).allocator
        with self.assertRaises(ShapeMismatchError) as ctx:
            allocator(3, 2)
        self.assertIn("index 2 is out of bounds for 'dx' of length 2", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
