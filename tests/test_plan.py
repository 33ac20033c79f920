from __future__ import annotations

import textwrap
import unittest
import warnings

import numpy as np

from taylorize.ast import Call, Literal, Name
from taylorize.errors import DependencyCycleError
from taylorize.normalize import normalize
from taylorize.parser import parse
from taylorize.plan import Assign, Branch, Fallback, PairAssign, Repeat, ScalarRef, SeriesRef, plan


def _plan(body: str, namespace: dict | None = None):
    source = "def f(dx, x, p, t):\n" + textwrap.indent(textwrap.dedent(body), "    ")
    scope = {"np": np, "len": len}
    scope.update(namespace or {})
    return plan(normalize(parse(source), namespace=scope))


def halve(value):
    return value * 0.5


class PlannerSlotTests(unittest.TestCase):
    def test_pendulum_needs_one_pair(self) -> None:
        program, allocation = _plan("dx[0] = x[1]\ndx[1] = -np.sin(x[0])\n")
        (slot,) = allocation
        self.assertEqual(slot.kind, "pair")
        self.assertEqual(slot.family, "sincos")
        self.assertEqual(slot.extents, ())
        self.assertEqual([type(instruction) for instruction in program], [Assign, PairAssign, Assign])
        self.assertEqual(program[2].op, "neg")
        self.assertEqual(program[2].args, (SeriesRef("slot", slot.name, (), 0),))

    def test_sine_and_cosine_share_a_pair(self) -> None:
        program, allocation = _plan("dx[0] = np.sin(x[0])\ndx[1] = np.cos(x[0])\n")
        self.assertEqual(len(allocation), 1)
        pairs = [instruction for instruction in program if isinstance(instruction, PairAssign)]
        self.assertEqual(len(pairs), 1)
        copies = [instruction.args[0].member for instruction in program if isinstance(instruction, Assign)]
        self.assertEqual(copies, [0, 1])

    def test_distinct_arguments_get_distinct_pairs(self) -> None:
        _, allocation = _plan("dx[0] = np.sin(x[0])\ndx[1] = np.sin(x[1])\n")
        self.assertEqual(len(allocation.of_kind("pair")), 2)

    def test_common_subexpressions_share_a_temporary(self) -> None:
        program, allocation = _plan("dx[0] = (x[0] * x[1]) + 1.0\ndx[1] = (x[0] * x[1]) - 1.0\n")
        self.assertEqual(len(allocation.of_kind("series")), 1)
        self.assertEqual([instruction.op for instruction in program], ["mul", "add_scalar", "sub_scalar"])
        (temporary,) = allocation
        self.assertEqual(temporary.origin, "x[0] * x[1]")

    def test_local_series_is_a_named_slot(self) -> None:
        program, allocation = _plan("a = x[0] * x[1]\ndx[0] = a\n")
        self.assertEqual(allocation["a"].kind, "series")
        self.assertEqual(program[0].target, SeriesRef("slot", "a"))

    def test_local_scalars_have_no_slot(self) -> None:
        _, allocation = _plan("c = p[0] * 2.0\ndx[0] = c * x[0]\n")
        self.assertEqual(len(allocation), 0)

    def test_array_slot(self) -> None:
        _, allocation = _plan("s = series_array(2)\ns[0] = x[0]\ns[1] = x[1]\ndx[0] = s[0] + s[1]\n")
        slot = allocation["s"]
        self.assertEqual(slot.kind, "array")
        self.assertEqual(slot.extents[0].static_length, 2)

    def test_runtime_loop_temporaries_carry_extents(self) -> None:
        program, allocation = _plan("for i in range(len(x)):\n    dx[i] = (x[i] * x[i]) + 1.0\n")
        (temporary,) = allocation
        (extent,) = temporary.extents
        self.assertEqual(extent.stop, Call("len", (Name("x"),)))
        (loop,) = program
        self.assertIsInstance(loop, Repeat)
        self.assertEqual(loop.body[0].target, SeriesRef("slot", temporary.name, (Name(loop.ordinal),)))


class PlannerInstructionTests(unittest.TestCase):
    def test_scalar_left_operands_use_reflected_updates(self) -> None:
        program, _ = _plan("dx[0] = 2.0 - x[0]\ndx[1] = 3.0 / x[1]\n")
        self.assertEqual([instruction.op for instruction in program], ["rsub_scalar", "rdiv_scalar"])
        self.assertEqual(program[0].args, (SeriesRef("state", "x", (Literal(0),)), ScalarRef(Literal(2.0))))

    def test_constant_outputs(self) -> None:
        program, _ = _plan("dx[0] = p[0]\n")
        self.assertEqual(program[0].op, "const")

    def test_branch_test_reads_operands(self) -> None:
        program, _ = _plan("if x[0] > 0.5:\n    dx[0] = x[1]\nelse:\n    dx[0] = -x[1]\n")
        (branch,) = program
        self.assertIsInstance(branch, Branch)
        self.assertEqual(branch.test.op, ">")
        self.assertEqual(branch.test.right, ScalarRef(Literal(0.5)))
        self.assertEqual(branch.orelse[0].op, "neg")

    def test_unknown_call_falls_back(self) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            program, _ = _plan("dx[0] = halve(x[0])\n", {"halve": halve})
        (instruction,) = program
        self.assertIsInstance(instruction, Fallback)
        self.assertEqual(instruction.func, "halve")


class PlannerOrderingTests(unittest.TestCase):
    def test_output_read_before_it_is_written(self) -> None:
        with self.assertRaises(DependencyCycleError) as ctx:
            _plan("dx[0] = dx[1] * 2.0\ndx[1] = x[0]\n")
        self.assertIn("'dx[1]' is read before it is written", str(ctx.exception))
        self.assertEqual(ctx.exception.statement, "dx[0] = dx[1] * 2.0")

    def test_output_read_after_both_branches_write_it(self) -> None:
        body = """\
        if x[0] > 0:
            dx[0] = x[1]
        else:
            dx[0] = x[0]
        dx[1] = dx[0] * 2.0
        """
        program, _ = _plan(body)
        self.assertEqual(len(program), 2)

    def test_array_element_read_before_it_is_written(self) -> None:
        with self.assertRaises(DependencyCycleError):
            _plan("s = series_array(2)\ns[0] = s[1] * 2.0\ns[1] = x[0]\ndx[0] = s[0]\n")

    def test_constant_read_is_not_covered_by_a_loop_store(self) -> None:
        body = """\
        s = series_array(len(x))
        for i in range(1, len(x)):
            s[i] = x[i] * 2.0
        dx[0] = s[0] * 2.0
        for j in range(1, len(x)):
            dx[j] = s[j]
        """
        with self.assertRaises(DependencyCycleError) as ctx:
            _plan(body)
        self.assertIn("'s[0]' is read before it is written", str(ctx.exception))
        self.assertEqual(ctx.exception.statement, "dx[0] = s[0] * 2.0")

    def test_computed_read_after_a_loop_store(self) -> None:
        body = """\
        s = series_array(len(x))
        for i in range(len(x)):
            s[i] = x[i] * 2.0
        for j in range(len(x)):
            dx[j] = s[j]
        """
        program, allocation = _plan(body)
        self.assertEqual([type(instruction) for instruction in program], [Repeat, Repeat])
        self.assertEqual(allocation["s"].kind, "array")


if __name__ == "__main__":
    unittest.main()
