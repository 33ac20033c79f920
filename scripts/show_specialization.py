"""Print the allocation plan and the generated routines for one right-hand side."""

from __future__ import annotations

import argparse
import importlib
import sys
from pathlib import Path

from taylorize import TaylorizeCompileError, compile_rhs


def _load(target: str):
    module_name, _, attr = target.partition(":")
    if not attr:
        raise SystemExit(f"expected module:function, got {target!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--function", help="importable right-hand side as module:function")
    source.add_argument("--file", help="file holding the source of one right-hand-side function")
    parser.add_argument("--strict-calls", action="store_true", help="reject calls without a series recurrence")
    parser.add_argument("--max-unroll", type=int, default=None, help="largest constant loop to unroll")
    args = parser.parse_args()

    sys.path.insert(0, str(Path.cwd()))
    rhs = _load(args.function) if args.function else Path(args.file).read_text()
    try:
        specialization = compile_rhs(rhs, strict_calls=args.strict_calls, max_unroll=args.max_unroll)
    except TaylorizeCompileError as err:
        print(f"error: {err}", file=sys.stderr)
        return 1

    print(f"specialization: {specialization.name}")
    print(f"slots: {len(specialization.plan)}")
    for slot in specialization.plan:
        extents = f" x{len(slot.extents)}" if slot.extents else ""
        print(f"  - {slot.name} [{slot.kind}{extents}] {slot.origin or ''}".rstrip())
    print()
    print(specialization.source())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
