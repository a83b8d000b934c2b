#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
run_layer_parity.py

Run the layer parity case table outside of pytest and print a summary.

What this script does
---------------------
1) Loads settings from a YAML config (optional), overridden by CLI flags.
2) Runs every selected case group through the parity harness on the
   chosen device (CUDA when available, else CPU).
3) Optionally runs the zero-input / no-bias checks.
4) Prints one row per layer and exits with status 1 if any case FAILED.
   XFAIL and XPASS rows are reported but never change the exit status.

Usage
-----
# Default run
python scripts/run_layer_parity.py

# Using the bundled config, only conv and pooling groups
python scripts/run_layer_parity.py --config configs/parity.yaml \
  --groups Conv Pooling

# Tighter tolerances, forced CPU
python scripts/run_layer_parity.py --rtol 1e-6 --atol 1e-6 --cpu
"""

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np
import torch

from layerparity.cases import iter_cases, run_cases, run_zero_bias_checks
from layerparity.device import get_device
from layerparity.harness import CaseResult, Status, resolve_broken_layers
from layerparity.utils.config_utils import (
    ParityConfig,
    build_parity_config,
    load_yaml_config,
    merge_yaml_cli,
    str2bool,
)

logger = logging.getLogger("layerparity.run")


# --------------------------------------------------------------------------- #
#                               Helper functions                              #
# --------------------------------------------------------------------------- #

def set_seed(seed: int = 42) -> None:
    torch.manual_seed(seed)
    np.random.seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def use_full_precision() -> None:
    """TF32 kernels are far less precise than the parity tolerances."""
    torch.backends.cuda.matmul.allow_tf32 = False
    torch.backends.cudnn.allow_tf32 = False


def print_results(results: List[CaseResult], device: torch.device) -> None:
    """Tabular summary, one row per layer."""
    print("\n=== Layer Parity ===")
    print(f"Device: {device}")
    print("--------------------------------------------------------------")
    header = f"{'Group':<24} {'Layer':<24} {'Status':>7}"
    print(header)
    print("-" * len(header))
    for r in results:
        print(f"{r.group:<24} {r.label:<24} {r.status.value:>7}")
        for msg in r.failures:
            print(f"{'':<24}   ! {msg}")

    counts = {s.value: 0 for s in Status}
    for r in results:
        counts[r.status.value] += 1
    print("-" * len(header))
    print("  ".join(f"{k}={v}" for k, v in counts.items()))


def run(cfg: ParityConfig) -> int:
    """Run the configured parity checks. Returns the process exit status."""
    set_seed(cfg.seed)
    use_full_precision()
    device = get_device(cfg.device, force_cpu=cfg.force_cpu)
    broken = resolve_broken_layers(cfg.broken_layers)

    reports = run_cases(
        iter_cases(cfg.groups), device=device,
        rtol=cfg.rtol, atol=cfg.atol, broken=broken,
    )
    results = [r for report in reports for r in report.results]
    if cfg.zero_bias:
        results.extend(run_zero_bias_checks(device=device, broken=broken))

    print_results(results, device)
    n_failed = sum(r.status is Status.FAILED for r in results)
    if n_failed:
        logger.error(f"{n_failed} parity case(s) failed")
        return 1
    return 0


# --------------------------------------------------------------------------- #
#                                    Main                                     #
# --------------------------------------------------------------------------- #

def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Check layer outputs and gradients for host/device parity.")
    p.add_argument("--config", type=str, default=None,
                   help="Path to a YAML config. CLI flags override values in this file.")
    p.add_argument("--device", type=str, default="auto", help="auto | cpu | cuda | cuda:N")
    p.add_argument("--groups", type=str, nargs="+", default=None, help="Case groups to run.")
    p.add_argument("--rtol", type=float, default=1e-4, help="Relative tolerance.")
    p.add_argument("--atol", type=float, default=1e-4, help="Absolute tolerance.")
    p.add_argument("--seed", type=int, default=42, help="Global torch seed.")
    p.add_argument("--zero_bias", type=str2bool, default=True, help="Run zero-input / no-bias checks.")
    p.add_argument("--cpu", dest="force_cpu", action="store_true", help="Force CPU even if CUDA is available.")
    p.add_argument("--verbose", action="store_true", help="Debug logging.")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    merged = merge_yaml_cli(load_yaml_config(args.config), args, parser)
    merged.pop("verbose", None)
    return run(build_parity_config(merged))


if __name__ == "__main__":
    sys.exit(main())
