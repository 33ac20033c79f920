from __future__ import annotations

import ast
from pathlib import Path
import unittest


REPO_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_DIR = REPO_ROOT / "src" / "taylorize"
AUTODIFF_MODULES = {"autodiff.py"}


def _iter_package_files() -> list[Path]:
    return sorted(PACKAGE_DIR.rglob("*.py"))


def _imported_roots(tree: ast.AST) -> set[str]:
    roots: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            roots.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            roots.add(node.module.split(".")[0])
    return roots


class PackageHygieneTests(unittest.TestCase):
    def test_jax_is_confined_to_the_reference_module(self) -> None:
        violations: list[str] = []

        for path in _iter_package_files():
            if path.name in AUTODIFF_MODULES:
                continue
            tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
            if "jax" in _imported_roots(tree):
                violations.append(str(path.relative_to(REPO_ROOT)))

        self.assertEqual(
            [],
            violations,
            msg="jax imported outside the autodiff reference:\n" + "\n".join(violations),
        )

    def test_no_bare_except_or_print(self) -> None:
        violations: list[str] = []

        for path in _iter_package_files():
            tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
            rel = path.relative_to(REPO_ROOT)
            for node in ast.walk(tree):
                if isinstance(node, ast.ExceptHandler) and node.type is None:
                    violations.append(f"{rel}:{node.lineno} bare except")
                if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == "print":
                    violations.append(f"{rel}:{node.lineno} print")

        self.assertEqual([], violations, msg="\n".join(violations))


if __name__ == "__main__":
    unittest.main()
