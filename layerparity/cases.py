#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
layerparity/cases.py

The case table: which layers the parity harness runs, on which inputs.

Each ParityCase is one harness invocation. Inputs are produced by seeded
factories so every run (pytest or CLI) sees the same data. Shapes are NCHW,
e.g. a single 28x28 one-channel image is (1, 1, 28, 28).

Zero-bias cases are listed separately: they feed an all-zero input to layers
built without a bias and expect an exactly-zero output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
import logging

import torch
import torch.nn as nn

from layerparity.harness import (
    BROKEN_LAYERS,
    DEFAULT_ATOL,
    DEFAULT_RTOL,
    CaseResult,
    GroupReport,
    as_constructors,
    parity_gradtest,
    zero_bias_check,
)
from layerparity.device import DeviceLike, get_device
from layerparity.layers import (
    AdaptiveMaxPool, AdaptiveMeanPool, AlphaDropout,
    BatchNorm, Conv, ConvNoBias, ConvTranspose, ConvTransposeNoBias,
    CrossCor, CrossCorNoBias, Dense, DepthwiseConv, DepthwiseConvNoBias,
    Dropout, GroupNorm, InstanceNorm, LayerNorm, MaxPool, MeanPool,
    normalise,
)

__all__ = [
    "ParityCase",
    "ZeroBiasCase",
    "CASES",
    "ZERO_BIAS_CASES",
    "ZERO_BIAS_LAYERS",
    "iter_cases",
    "run_cases",
    "run_zero_bias_checks",
]

logger = logging.getLogger(__name__)

INPUT_SEED = 0


def rand_input(*shape: int, seed: int = INPUT_SEED) -> Callable[[], torch.Tensor]:
    """Factory for a reproducible uniform [0, 1) float32 input of `shape`."""

    def make() -> torch.Tensor:
        g = torch.Generator().manual_seed(seed)
        return torch.rand(*shape, generator=g, dtype=torch.float32)

    return make


def zeros_input(*shape: int) -> Callable[[], torch.Tensor]:
    def make() -> torch.Tensor:
        return torch.zeros(*shape, dtype=torch.float32)

    return make


@dataclass
class ParityCase:
    """One harness invocation: group name, layers, input and construction args."""

    name: str
    layers: Any
    make_input: Callable[[], torch.Tensor]
    args: Tuple[Any, ...] = ()
    test_cpu: bool = True

    @property
    def constructors(self) -> List[Any]:
        return as_constructors(self.layers)


@dataclass
class ZeroBiasCase:
    """A no-bias layer factory fed with an all-zero input."""

    name: str
    build: Callable[[], nn.Module]
    make_input: Callable[[], torch.Tensor] = field(default_factory=lambda: zeros_input(1, 1, 28, 28))


# --------------------------------------------------------------------------- #
#                              Function layers                                #
# --------------------------------------------------------------------------- #

def normalise_dims0(x: torch.Tensor) -> torch.Tensor:
    return normalise(x, dims=0).sum()


def normalise_dims1(x: torch.Tensor) -> torch.Tensor:
    return normalise(x, dims=1).sum()


def normalise_default(x: torch.Tensor) -> torch.Tensor:
    return normalise(x).sum()


# --------------------------------------------------------------------------- #
#                                 Case table                                  #
# --------------------------------------------------------------------------- #

IMAGE = rand_input(1, 1, 28, 28)

CONV_LAYERS = [
    Conv, ConvNoBias,
    ConvTranspose, ConvTransposeNoBias,
    CrossCor, CrossCorNoBias,
    DepthwiseConv, DepthwiseConvNoBias,
]

CASES: List[ParityCase] = [
    ParityCase("Conv", CONV_LAYERS, IMAGE, ((2, 2), (1, 3))),
    ParityCase("Pooling", [MaxPool, MeanPool], IMAGE, ((2, 2),)),
    ParityCase("AdaptivePooling", [AdaptiveMaxPool, AdaptiveMeanPool], IMAGE, ((7, 7),)),
    # dropout is not deterministic
    ParityCase("Dropout", [Dropout, AlphaDropout], IMAGE, (0.5,), test_cpu=False),
    ParityCase("LayerNorm 1", [LayerNorm], rand_input(4, 3, 28, 28), (28,), test_cpu=False),
    ParityCase("LayerNorm 2", [LayerNorm], rand_input(4, 5), (5,)),
    ParityCase("BatchNorm 1", [BatchNorm], rand_input(4, 3, 28, 28), (3,), test_cpu=False),
    ParityCase("BatchNorm 2", [BatchNorm], rand_input(4, 5), (5,)),
    ParityCase("InstanceNorm", [InstanceNorm], IMAGE, (1,)),
    ParityCase("GroupNorm", [GroupNorm], rand_input(1, 3, 28, 28), (3, 1)),
    ParityCase("function layers", normalise_dims0, rand_input(3, 3)),
    ParityCase("function layers", normalise_dims1, rand_input(3, 3)),
    ParityCase("function layers", normalise_default, rand_input(3, 3)),
]

ZERO_BIAS_LAYERS = (Conv, ConvTranspose, CrossCor, DepthwiseConv)


def _no_bias(cls: Callable[..., nn.Module]) -> Callable[[], nn.Module]:
    def build() -> nn.Module:
        return cls((2, 2), (1, 3), bias=False)

    return build


def _dense_zero_bias() -> nn.Module:
    return Dense.from_weight(torch.ones(4, 3), bias=False)


ZERO_BIAS_CASES: List[ZeroBiasCase] = [
    ZeroBiasCase(f"Zeros mapped for {cls.__name__}", _no_bias(cls)) for cls in ZERO_BIAS_LAYERS
] + [
    ZeroBiasCase("Dense with Zeros bias", _dense_zero_bias, zeros_input(7, 3)),
]


# --------------------------------------------------------------------------- #
#                                   Runners                                   #
# --------------------------------------------------------------------------- #

def iter_cases(groups: Optional[Iterable[str]] = None) -> List[ParityCase]:
    """
    Cases of the table, optionally restricted to the named groups.

    Unknown group names raise ValueError so a typo in a config does not
    silently run nothing.
    """
    if groups is None:
        return list(CASES)
    wanted = list(groups)
    known = {c.name for c in CASES}
    unknown = [g for g in wanted if g not in known]
    if unknown:
        raise ValueError(f"Unknown case group(s) {unknown}. Known groups: {sorted(known)}")
    return [c for c in CASES if c.name in wanted]


def run_cases(
    cases: Optional[Sequence[ParityCase]] = None,
    device: DeviceLike = None,
    rtol: float = DEFAULT_RTOL,
    atol: float = DEFAULT_ATOL,
    broken: Sequence[type] = BROKEN_LAYERS,
) -> List[GroupReport]:
    """Run every case through parity_gradtest and collect the reports."""
    device = get_device(device)
    reports = []
    for case in CASES if cases is None else cases:
        reports.append(
            parity_gradtest(
                case.name, case.layers, case.make_input(), *case.args,
                test_cpu=case.test_cpu, device=device,
                rtol=rtol, atol=atol, broken=broken,
            )
        )
    return reports


def run_zero_bias_checks(
    device: DeviceLike = None,
    broken: Sequence[type] = BROKEN_LAYERS,
) -> List[CaseResult]:
    """Run every zero-bias case on `device`."""
    device = get_device(device)
    return [
        zero_bias_check(case.name, case.build(), case.make_input(), device=device, broken=broken)
        for case in ZERO_BIAS_CASES
    ]
