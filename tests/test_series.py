from __future__ import annotations

import math
import unittest

import numpy as np

from taylorize.series import Series, coefficient, pow_scalar, series_array


ORDER = 12


def _variable(value: float = 0.0) -> Series:
    return Series.variable(value, ORDER)


class SeriesArithmeticTests(unittest.TestCase):
    def test_product(self) -> None:
        h = _variable(1.0)
        np.testing.assert_array_equal((h * h).coeffs[:4], [1.0, 2.0, 1.0, 0.0])

    def test_scalar_variants(self) -> None:
        h = _variable(1.0)
        np.testing.assert_array_equal((h + 2.0).coeffs[:2], [3.0, 1.0])
        np.testing.assert_array_equal((2.0 - h).coeffs[:2], [1.0, -1.0])
        np.testing.assert_array_equal((h - 2.0).coeffs[:2], [-1.0, 1.0])
        np.testing.assert_array_equal((3.0 * h).coeffs[:2], [3.0, 3.0])
        np.testing.assert_array_equal((h / 2.0).coeffs[:2], [0.5, 0.5])

    def test_geometric_series(self) -> None:
        h = _variable(0.0)
        np.testing.assert_array_equal((1.0 / (1.0 - h)).coeffs, np.ones(ORDER + 1))

    def test_quotient_inverts_product(self) -> None:
        a = Series(np.linspace(1.0, 2.0, ORDER + 1))
        b = Series(np.linspace(0.5, -0.5, ORDER + 1))
        np.testing.assert_allclose(((a * b) / b).coeffs, a.coeffs, rtol=1e-12, atol=1e-12)

    def test_integer_powers(self) -> None:
        h = _variable(1.0)
        np.testing.assert_allclose((h ** 3).coeffs[:5], [1.0, 3.0, 3.0, 1.0, 0.0])
        np.testing.assert_array_equal((h ** 2).coeffs, (h * h).coeffs)
        np.testing.assert_array_equal((h ** 1).coeffs, h.coeffs)
        np.testing.assert_array_equal((h ** 0).coeffs, Series.constant(1.0, ORDER).coeffs)

    def test_power_of_zero_constant_term(self) -> None:
        h = _variable(0.0)
        expected = np.zeros(ORDER + 1)
        expected[3] = 1.0
        np.testing.assert_array_equal((h ** 3).coeffs, expected)
        with self.assertRaises(ValueError):
            h ** 0.5

    def test_fractional_power_matches_sqrt(self) -> None:
        a = Series(np.linspace(2.0, 0.1, ORDER + 1))
        np.testing.assert_allclose((a ** 0.5).coeffs, a.sqrt().coeffs, rtol=1e-12, atol=1e-14)

    def test_pow_update_writes_one_order(self) -> None:
        a = np.array([2.0, 1.0, 0.0])
        out = np.zeros(3)
        for k in range(3):
            pow_scalar(out, a, -1.0, k)
        np.testing.assert_allclose(out, [0.5, -0.25, 0.125])

    def test_series_exponent(self) -> None:
        a = Series(np.linspace(2.0, 0.5, ORDER + 1))
        b = Series(np.linspace(0.3, 0.1, ORDER + 1))
        np.testing.assert_array_equal((a ** b).coeffs, (b * a.log()).exp().coeffs)
        np.testing.assert_array_equal((2.0 ** b).coeffs, (b * np.log(2.0)).exp().coeffs)


class SeriesElementaryTests(unittest.TestCase):
    def test_exp_and_log(self) -> None:
        h = _variable(0.0)
        expected = [1.0 / math.factorial(k) for k in range(ORDER + 1)]
        np.testing.assert_allclose(h.exp().coeffs, expected, rtol=1e-13)
        log = (1.0 + h).log().coeffs
        np.testing.assert_allclose(log[1:], [(-1.0) ** (k + 1) / k for k in range(1, ORDER + 1)], rtol=1e-14)

    def test_sqrt(self) -> None:
        a = Series(np.linspace(4.0, 1.0, ORDER + 1))
        np.testing.assert_allclose((a.sqrt() * a.sqrt()).coeffs, a.coeffs, rtol=1e-12, atol=1e-12)

    def test_abs_follows_constant_sign(self) -> None:
        a = Series([-2.0, 1.0, -3.0])
        np.testing.assert_array_equal(abs(a).coeffs, [2.0, -1.0, 3.0])

    def test_sine_and_cosine_through_many_orders(self) -> None:
        a = Series(np.linspace(0.7, -0.2, ORDER + 1))
        sin, cos = a.sin(), a.cos()
        np.testing.assert_allclose(((sin * sin) + (cos * cos)).coeffs, Series.constant(1.0, ORDER).coeffs, atol=1e-12)
        h = _variable(0.0)
        expected = [0.0 if k % 2 == 0 else (-1.0) ** (k // 2) / math.factorial(k) for k in range(ORDER + 1)]
        np.testing.assert_allclose(h.sin().coeffs, expected, atol=1e-16)

    def test_hyperbolic_pair(self) -> None:
        a = Series(np.linspace(0.4, 0.1, ORDER + 1))
        sinh, cosh = a.sinh(), a.cosh()
        np.testing.assert_allclose(((cosh * cosh) - (sinh * sinh)).coeffs, Series.constant(1.0, ORDER).coeffs, atol=1e-12)

    def test_tangents_match_quotients(self) -> None:
        a = Series(np.linspace(0.3, -0.6, ORDER + 1))
        np.testing.assert_allclose(a.tan().coeffs, (a.sin() / a.cos()).coeffs, rtol=1e-11, atol=1e-13)
        np.testing.assert_allclose(a.tanh().coeffs, (a.sinh() / a.cosh()).coeffs, rtol=1e-11, atol=1e-13)

    def test_arctangent(self) -> None:
        h = _variable(0.0)
        expected = [0.0 if k % 2 == 0 else (-1.0) ** (k // 2) / k for k in range(ORDER + 1)]
        np.testing.assert_allclose(h.atan().coeffs, expected, atol=1e-15)
        a = Series(np.linspace(0.5, 0.2, ORDER + 1))
        np.testing.assert_allclose(a.tan().atan().coeffs, a.coeffs, rtol=1e-11, atol=1e-13)


class SeriesProtocolTests(unittest.TestCase):
    def test_numpy_ufuncs_dispatch_to_recurrences(self) -> None:
        a = Series(np.linspace(0.9, 0.1, ORDER + 1))
        np.testing.assert_array_equal(np.sin(a).coeffs, a.sin().coeffs)
        np.testing.assert_array_equal(np.arctan(a).coeffs, a.atan().coeffs)
        np.testing.assert_array_equal(np.square(a).coeffs, (a ** 2).coeffs)
        np.testing.assert_array_equal((np.float64(2.0) * a).coeffs, (2.0 * a).coeffs)

    def test_comparisons_use_the_constant_term(self) -> None:
        a = Series([1.0, -5.0])
        b = Series([0.5, 7.0])
        self.assertTrue(a > b)
        self.assertTrue(a > 0.0)
        self.assertTrue(0.0 < a)
        self.assertTrue(np.float64(2.0) > a)
        self.assertFalse(a == b)

    def test_horner_evaluation(self) -> None:
        a = Series([1.0, 2.0, 3.0])
        self.assertEqual(a.evaluate(2.0), 17.0)

    def test_no_implicit_float(self) -> None:
        with self.assertRaises(TypeError):
            float(Series([1.0, 2.0]))

    def test_orders_must_agree(self) -> None:
        with self.assertRaises(ValueError):
            Series([1.0, 2.0]) + Series([1.0, 2.0, 3.0])

    def test_coefficient_of_constants(self) -> None:
        self.assertEqual(coefficient(3.0, 0), 3.0)
        self.assertEqual(coefficient(3.0, 2), 0.0)
        self.assertEqual(coefficient(None, 0), 0.0)
        self.assertEqual(coefficient(Series([1.0, 4.0]), 1), 4.0)

    def test_series_array_is_a_list(self) -> None:
        self.assertEqual(series_array(3), [None, None, None])


if __name__ == "__main__":
    unittest.main()
