#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
LayerParity

Host/device parity checks for neural-network layers built on PyTorch.

Modules:
  - device: device resolution, gpu()/cpu() movement, residency checks
  - autodiff: named parameter collection, pullback, input gradients, isapprox
  - layers: layer constructors used by the case table
  - harness: parity_gradtest / check_layer / zero_bias_check
  - cases: the case table and its runners
  - utils.config_utils: YAML + CLI configuration

Author: LayerParity project
Version: 1.0.0
"""

from layerparity.device import cpu, get_device, gpu, is_on_device
from layerparity.autodiff import gradient, isapprox, params, pullback
from layerparity.harness import (
    BROKEN_LAYERS,
    CaseResult,
    GroupReport,
    MissingInputError,
    Status,
    check_layer,
    parity_gradtest,
    zero_bias_check,
)
from layerparity.cases import CASES, ZERO_BIAS_CASES, iter_cases, run_cases, run_zero_bias_checks

__all__ = [
    # Device movement
    "cpu",
    "get_device",
    "gpu",
    "is_on_device",
    # Autodiff helpers
    "gradient",
    "isapprox",
    "params",
    "pullback",
    # Harness
    "BROKEN_LAYERS",
    "CaseResult",
    "GroupReport",
    "MissingInputError",
    "Status",
    "check_layer",
    "parity_gradtest",
    "zero_bias_check",
    # Case table
    "CASES",
    "ZERO_BIAS_CASES",
    "iter_cases",
    "run_cases",
    "run_zero_bias_checks",
]

__version__ = "1.0.0"
