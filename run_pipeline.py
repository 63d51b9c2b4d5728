#!/usr/bin/env python3
"""
Entity Spectral Clustering - Full Reproducibility Pipeline
===========================================================

Runs the clustering and its diagnostics from the cleaned feature tables.
Execute from the repository root:

    python run_pipeline.py            # Run everything
    python run_pipeline.py --step 1   # Run only Step 1 (clustering)
    python run_pipeline.py --from 2   # Resume from Step 2

Steps:
    1.  Spectral clustering (K = 18) -> distances, affinity, embedding, labels
    2.  Bandwidth sweep on the saved distance matrix -> affinity spread per sigma
    3.  Cluster-count diagnostics on the saved embedding -> elbow, silhouette, gap
"""

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parent


def run_step(cli_args, description, step_num):
    """Run one CLI command as a subprocess and report timing."""
    command = [sys.executable, "-m", "entity_clustering.cli", *cli_args]
    print(f"\n{'─' * 70}")
    print(f"  Step {step_num}: {description}")
    print(f"  Command: entity-clusters {' '.join(cli_args)}")
    print(f"{'─' * 70}")

    t0 = time.time()
    result = subprocess.run(command, cwd=str(ROOT))
    elapsed = time.time() - t0

    if result.returncode != 0:
        print(f"\n  ✗ FAILED (exit code {result.returncode}) after {elapsed:.1f}s")
        print(f"    Re-run with: entity-clusters {' '.join(cli_args)}")
        sys.exit(result.returncode)

    print(f"\n  ✓ Done ({elapsed:.1f}s)")
    return elapsed


def main():
    parser = argparse.ArgumentParser(
        description="Run the full entity spectral clustering pipeline."
    )
    parser.add_argument(
        "--step", type=int, default=None,
        help="Run only this step number (1–3)."
    )
    parser.add_argument(
        "--from", dest="from_step", type=int, default=1,
        help="Start from this step number (default: 1)."
    )
    parser.add_argument(
        "--gap-refs", type=int, default=50,
        help="Reference datasets for the gap statistic in Step 3."
    )
    args = parser.parse_args()

    steps = [
        (1, ["cluster", "--plots"], "Spectral clustering"),
        (2, ["sigma", "--plots"], "RBF bandwidth sweep"),
        (3, ["find-k", "--plots", "--gap-refs", str(args.gap_refs)],
         "Cluster-count diagnostics (elbow, silhouette, Calinski-Harabasz, gap)"),
    ]

    if args.step is not None:
        steps = [(n, a, d) for n, a, d in steps if n == args.step]
        if not steps:
            print(f"Error: no step {args.step}. Valid range: 1–3.")
            sys.exit(1)
    else:
        steps = [(n, a, d) for n, a, d in steps if n >= args.from_step]

    print("=" * 70)
    print("  ENTITY SPECTRAL CLUSTERING — FULL PIPELINE")
    print(f"  Steps to run: {[n for n, _, _ in steps]}")
    print("=" * 70)

    total = 0
    for step_num, cli_args, description in steps:
        total += run_step(cli_args, description, step_num)

    print(f"\n{'=' * 70}")
    print(f"  PIPELINE COMPLETE — Total time: {total / 60:.1f} minutes")
    print(f"{'=' * 70}")
    print("\nOutputs:")
    print("  Results: outputs/clustering_results/")
    print("  Figures: outputs/figures/")


if __name__ == "__main__":
    main()
