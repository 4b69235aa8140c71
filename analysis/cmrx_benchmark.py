# %%
"""Benchmark: CMRx branch-and-bound on random coupled monotonic regression problems.

Compares the two upper bound seeders and a range of optimality tolerances
across problem sizes.

Outputs:
- detail CSV with one row per solved instance,
- summary CSV with medians per (nvar, ncond, seeder, tolerance).
"""

from __future__ import annotations

import argparse
import csv
import sys
from pathlib import Path

import pandas as pd

# Allow direct execution via `python analysis/<script>.py`.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from cmrx import CMRx as cmrx
from cmrx import Problem as pb
from cmrx.Progress import TqdmProgress

OUTPUT_DETAIL = "cache/cmrx-benchmark-detail.csv"
OUTPUT_SUMMARY = "cache/cmrx-benchmark-summary.csv"


def _parse_list(raw: str) -> list[str]:
    return [token.strip() for token in raw.split(",") if token.strip()]


def _parse_int_list(raw: str) -> list[int]:
    return [int(token) for token in _parse_list(raw)]


def _parse_float_list(raw: str) -> list[float]:
    return [float(token) for token in _parse_list(raw)]


def _write_rows(path: str, rows: list[dict]) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    if not rows:
        with output.open("w", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["empty"])
        return
    with output.open("w", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Benchmark CMRx seeders and tolerances on random problems."
    )
    parser.add_argument("--nvars", default="2,3")
    parser.add_argument("--nconds", default="4,6,8")
    parser.add_argument("--seeders", default="fan_out,survivors")
    parser.add_argument("--tolerances", default="0,0.05")
    parser.add_argument("--num-trials", type=int, default=3)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--noise", type=float, default=2.0)
    parser.add_argument("--time-limit", type=float, default=None)
    parser.add_argument("--progress", action="store_true")
    parser.add_argument("--smoke", action="store_true")
    parser.add_argument("--output-detail", default=OUTPUT_DETAIL)
    parser.add_argument("--output-summary", default=OUTPUT_SUMMARY)
    args = parser.parse_args()

    if args.smoke:
        args.nvars = "2"
        args.nconds = "4"
        args.num_trials = 1
    if args.num_trials < 1:
        parser.error("--num-trials must be >= 1.")
    if args.noise < 0:
        parser.error("--noise must be >= 0.")
    return args


def _solve_row(problem, seeder, tolerance, args, nvar, ncond, seed) -> dict:
    listener = None
    if args.progress or args.time_limit is not None:
        listener = TqdmProgress(time_limit=args.time_limit, disable=not args.progress)
    solver = cmrx.CMRxSolver(seeder=seeder, tolerance=tolerance)
    solution = solver.solve(problem, listener=listener)
    return {
        "nvar": nvar,
        "ncond": ncond,
        "seed": seed,
        "seeder": seeder,
        "tolerance": tolerance,
        "objective": solution.objective,
        "seconds": solution.seconds,
        "mr_calls": solution.calls,
        "iterations": len(solution.iterations),
        "f_bar_reductions": solution.f_bar_reductions,
        "collisions": solution.collisions,
        "cancelled": solution.cancelled,
    }


def main() -> None:
    args = _parse_args()
    seeders = _parse_list(args.seeders)
    for seeder in seeders:
        if seeder not in ("fan_out", "survivors"):
            raise ValueError(f"Unknown seeder '{seeder}'.")
    tolerances = _parse_float_list(args.tolerances)

    rows = []
    for nvar in _parse_int_list(args.nvars):
        for ncond in _parse_int_list(args.nconds):
            for trial in range(args.num_trials):
                seed = args.seed + trial
                problem = pb.random_problem(nvar=nvar, ncond=ncond, seed=seed, noise=args.noise)
                for seeder in seeders:
                    for tolerance in tolerances:
                        rows.append(
                            _solve_row(problem, seeder, tolerance, args, nvar, ncond, seed)
                        )

    _write_rows(args.output_detail, rows)
    if not rows:
        _write_rows(args.output_summary, [])
        print("No rows generated.")
        return

    detail_df = pd.DataFrame(rows)
    summary_df = (
        detail_df.groupby(["nvar", "ncond", "seeder", "tolerance"])[
            ["objective", "seconds", "mr_calls", "iterations"]
        ]
        .median()
        .reset_index()
    )
    summary_df.to_csv(args.output_summary, index=False)
    print(summary_df.to_string(index=False))
    print(f"Saved detail: {args.output_detail}\nSaved summary: {args.output_summary}")


if __name__ == "__main__":
    main()
