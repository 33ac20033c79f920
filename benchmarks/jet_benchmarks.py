"""Specialized versus generic jet evaluation on a few classic ODE right-hand sides."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict, dataclass
from pathlib import Path

import numpy as np

from taylorize import Jet, SpecializationRegistry, series_array
from _bench_utils import host_metadata, time_call


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


RING = 8


def coupled_ring(dx, x, p, t):
    s = series_array(RING)
    for i in range(RING):
        s[i] = np.sin(x[(i + 1) % RING] - x[i])
    for i in range(RING):
        dx[i] = p[0] + s[i]


@dataclass(frozen=True)
class JetCase:
    name: str
    f: object
    x0: tuple[float, ...]
    params: object
    note: str


@dataclass(frozen=True)
class TimingRow:
    case: str
    order: int
    mode: str
    mean_ms: float
    p50_ms: float
    p90_ms: float
    stddev_ms: float


CASES = (
    JetCase("pendulum", pendulum, (1.3, 0.0), None, "one sincos pair"),
    JetCase("lorenz", lorenz, (1.0, 0.0, 0.0), (10.0, 28.0, 8.0 / 3.0), "quadratic polynomial"),
    JetCase("kepler", kepler, (1.0, 0.0, 0.0, 1.0), None, "non-integer power"),
    JetCase("coupled_ring", coupled_ring, tuple(np.linspace(0.0, 1.0, RING)), (0.5,), "arrays and unrolled loops"),
)


def run(orders: list[int], *, samples: int, warmup: int, repeats: int) -> list[TimingRow]:
    rows: list[TimingRow] = []
    registry = SpecializationRegistry()
    for case in CASES:
        registry.register(case.f)
        for order in orders:
            for mode, specialized in (("specialized", True), ("generic", False)):
                jet = Jet(
                    case.f,
                    order=order,
                    dimension=len(case.x0),
                    params=case.params,
                    use_specialization=specialized,
                    registry=registry,
                )
                summary = time_call(lambda: jet(0.0, case.x0), repeats=repeats, warmup=warmup, samples=samples)
                rows.append(
                    TimingRow(
                        case=case.name,
                        order=order,
                        mode=mode,
                        mean_ms=summary.mean_ms,
                        p50_ms=summary.p50_ms,
                        p90_ms=summary.p90_ms,
                        stddev_ms=summary.stddev_ms,
                    )
                )
    return rows


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--orders", type=int, nargs="+", default=[10, 20, 30], help="expansion orders to time")
    parser.add_argument("--samples", type=int, default=5, help="timing sample count")
    parser.add_argument("--warmup", type=int, default=1, help="warmup rounds")
    parser.add_argument("--repeats", type=int, default=20, help="calls per sample")
    parser.add_argument("--json-out", default="", help="optional path to write machine-readable results")
    args = parser.parse_args()

    rows = run(args.orders, samples=args.samples, warmup=args.warmup, repeats=args.repeats)
    print("taylorize jet benchmarks")
    print(f"{'case':<14} {'order':>5} {'mode':<12} {'mean ms':>10} {'p50 ms':>10} {'p90 ms':>10} {'sd ms':>8}")
    for row in rows:
        print(
            f"{row.case:<14} {row.order:>5} {row.mode:<12} "
            f"{row.mean_ms:>10.3f} {row.p50_ms:>10.3f} {row.p90_ms:>10.3f} {row.stddev_ms:>8.3f}"
        )
    if args.json_out:
        out = Path(args.json_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps({"host": host_metadata(), "rows": [asdict(row) for row in rows]}, indent=2))


if __name__ == "__main__":
    main()
