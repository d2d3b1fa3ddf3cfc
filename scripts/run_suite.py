#!/usr/bin/env python3
from __future__ import annotations

from pathlib import Path
from datetime import datetime
from typing import List

import pandas as pd

from src.cascade.harness import run_batch
from src.cascade.schema import load_batch
from src.utils.logging_utils import get_logger
from scripts.run_batch import write_report

logger = get_logger(__name__)


def find_batches(scenarios_dir: Path) -> List[Path]:
    """Find all YAML batch files in the scenarios directory."""
    if not scenarios_dir.exists():
        raise FileNotFoundError(f"Scenarios directory not found: {scenarios_dir}")
    return sorted(scenarios_dir.glob("*.yaml"))


def run_suite(scenarios_dir: Path = Path("scenarios"), output_base: Path = Path("runs")) -> pd.DataFrame:
    """
    Run all batches in the scenarios directory and return summary DataFrame.

    Args:
        scenarios_dir: Directory containing batch YAML files
        output_base: Base directory for outputs

    Returns:
        DataFrame with one row per batch and all metrics as columns
    """
    batch_files = find_batches(scenarios_dir)

    if not batch_files:
        raise ValueError(f"No batch files found in {scenarios_dir}")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suite_dir = output_base / f"suite_{timestamp}"
    suite_dir.mkdir(parents=True, exist_ok=True)

    summary_rows = []

    for batch_path in batch_files:
        try:
            cfg = load_batch(str(batch_path))
            report = run_batch(cfg)
            metrics = write_report(report, suite_dir / cfg.name, save_csv=cfg.outputs.save_csv)

            summary_rows.append({
                "batch": cfg.name,
                "batch_file": batch_path.name,
                "mode": cfg.mode,
                **metrics
            })

        except Exception as e:
            # Log error but continue with other batches
            logger.error(f"Error running {batch_path.name}: {e}")
            summary_rows.append({
                "batch": batch_path.stem,
                "batch_file": batch_path.name,
                "error": str(e)
            })

    summary_df = pd.DataFrame(summary_rows)

    summary_path = suite_dir / "summary.csv"
    summary_df.to_csv(summary_path, index=False)

    print(f"Suite run complete: {len(summary_df)} batches")
    print(f"Summary: {summary_path}")
    print(f"Outputs: {suite_dir}")

    return summary_df


def main() -> int:
    """Main entrypoint for the batch suite runner."""
    import argparse

    parser = argparse.ArgumentParser(description="Run all batches in scenarios/ directory")
    parser.add_argument("--scenarios-dir", type=str, default="scenarios",
                       help="Directory containing batch YAML files")
    parser.add_argument("--output-dir", type=str, default="runs",
                       help="Base output directory")
    args = parser.parse_args()

    summary_df = run_suite(Path(args.scenarios_dir), Path(args.output_dir))

    print("\n=== Summary ===")
    print(summary_df.to_string(index=False))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
