#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from pathlib import Path
from datetime import datetime

from src.cascade.harness import SensitivityReport, run_batch
from src.cascade.schema import load_batch


def write_report(report: SensitivityReport, out_dir: Path, save_csv: bool = True) -> dict:
    """Write trials/exclusions/failures CSVs and metrics.json; return the metrics."""
    out_dir.mkdir(parents=True, exist_ok=True)
    metrics = report.summary()
    if save_csv:
        report.trials.to_csv(out_dir / "trials.csv", index=False)
        report.exclusions.to_csv(out_dir / "exclusions.csv", index=False)
        report.failures.to_csv(out_dir / "failures.csv", index=False)
    with open(out_dir / "metrics.json", "w", encoding="utf-8") as f:
        json.dump(metrics, f, indent=2, sort_keys=True)
    return metrics


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a cascade sensitivity batch.")
    parser.add_argument("--batch", required=True, help="Path to batch YAML.")
    parser.add_argument("--out-dir", dest="out_dir", type=str, default=None,
                       help="Output directory (if not provided, uses runs/<batch>/<timestamp>/)")
    args = parser.parse_args()

    cfg = load_batch(args.batch)
    report = run_batch(cfg)

    # Determine output directory
    if args.out_dir:
        out_dir = Path(args.out_dir)
    else:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_dir = Path(cfg.outputs.out_dir) / cfg.name / ts

    metrics = write_report(report, out_dir, save_csv=cfg.outputs.save_csv)

    # Print summary
    print(f"Batch: {cfg.name} ({cfg.mode})")
    print(f"Intervention: {cfg.intervention.model_dump(exclude_defaults=True)} -> {cfg.intervention.target_tier}")
    for k in sorted(metrics):
        print(f"{k}: {metrics[k]:.6f}")
    print(f"Outputs: {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
