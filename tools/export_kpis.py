#!/usr/bin/env python3
"""Compute derived KPIs for replay runs and export a per-run CSV.

Outputs per run (under <run>/kpi_metrics/):
- derived_kpis.json

Outputs under base directory:
- long/registration_kpis.csv (one row per run)

Examples:
  python tools/export_kpis.py --base output_runs
  python tools/export_kpis.py --run output_runs/office --run output_runs/corridor
"""
from __future__ import annotations

import argparse
import csv
import os
from typing import List

from scanner_common.kpi_derive import derive_kpis_for_run, write_json


def _runs_from_base(base: str) -> List[str]:
    if not os.path.isdir(base):
        return []
    return sorted(os.path.join(base, name) for name in os.listdir(base)
                  if os.path.isdir(os.path.join(base, name)))


def _fmt(v) -> str:
    return "" if v is None else f"{float(v):.9g}"


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Compute derived registration KPIs for replay runs.")
    ap.add_argument("--base", help="Base directory containing one or more run subdirectories")
    ap.add_argument("--run", action="append", help="Run directory (can be specified multiple times)")
    return ap.parse_args()


def main() -> int:
    args = parse_args()
    runs: List[str] = []
    if args.run:
        runs.extend(args.run)
    if args.base:
        runs.extend(_runs_from_base(args.base))
    runs = [r for r in runs if r and os.path.isdir(r)]
    if not runs:
        print("No runs found. Provide --base or at least one --run.")
        return 2

    base = args.base or os.path.dirname(os.path.commonpath(runs)) or os.getcwd()
    long_dir = os.path.join(base, "long")
    os.makedirs(long_dir, exist_ok=True)
    csv_path = os.path.join(long_dir, "registration_kpis.csv")

    with open(csv_path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(["run", "records", "keyframes", "keyframe_ratio", "scans_rejected",
                         "loop_closure_attempts", "loop_closures_accepted", "fitness_mean",
                         "primary_align_mean_s"])
        for run in runs:
            derived = derive_kpis_for_run(run)
            out_json = os.path.join(run, "kpi_metrics", "derived_kpis.json")
            write_json(out_json, derived)
            print(f"Wrote: {out_json}")
            primary = derived.get("alignment_timing", {}).get("primary", {})
            writer.writerow([
                run,
                derived["records"],
                derived["keyframes"],
                _fmt(derived["keyframe_ratio"]),
                derived["scans_rejected"],
                derived["loop_closure_attempts"],
                derived["loop_closures_accepted"],
                _fmt(derived["fitness"].get("mean")),
                _fmt(primary.get("mean")),
            ])

    print(f"Wrote: {csv_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
