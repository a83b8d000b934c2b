#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
layerparity/layers.py

Layer constructors exercised by the parity case table.

Every constructor takes its configuration positionally, the way the case
table passes it, e.g. ``Conv((2, 2), (1, 3))`` for a 2x2 kernel mapping
1 input channel to 3 output channels. All layers are plain torch.nn modules,
so device transfer, parameter collection and autograd come from torch.

Components:
  1) Convolutions: Conv (true convolution), CrossCor (cross-correlation),
     ConvTranspose, DepthwiseConv, plus *NoBias helpers for readable labels
  2) Pooling: MaxPool, MeanPool, AdaptiveMaxPool, AdaptiveMeanPool
  3) Dropout, AlphaDropout
  4) Normalization: LayerNorm, BatchNorm (any rank >= 2), InstanceNorm, GroupNorm
  5) Dense (fully-connected), with an optional disabled bias
  6) FunctionLayer + normalise for parameter-free elementwise cases

Layout is NCHW: a single 28x28 one-channel image is shape (1, 1, 28, 28).
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence, Tuple, Union
import logging

import torch
import torch.nn as nn
from torch.nn.modules.batchnorm import _BatchNorm

__all__ = [
    "Conv", "ConvNoBias",
    "CrossCor", "CrossCorNoBias",
    "ConvTranspose", "ConvTransposeNoBias",
    "DepthwiseConv", "DepthwiseConvNoBias",
    "MaxPool", "MeanPool", "AdaptiveMaxPool", "AdaptiveMeanPool",
    "Dropout", "AlphaDropout",
    "LayerNorm", "BatchNorm", "InstanceNorm", "GroupNorm",
    "Dense", "FunctionLayer", "normalise",
]

logger = logging.getLogger(__name__)

KernelSize = Union[int, Tuple[int, int]]
Channels = Tuple[int, int]


def _split_channels(channels: Sequence[int]) -> Tuple[int, int]:
    """(in, out) channel pair -> two ints, with validation."""
    try:
        in_ch, out_ch = channels
    except (TypeError, ValueError) as e:
        raise ValueError(f"channels must be an (in, out) pair, got {channels!r}") from e
    in_ch, out_ch = int(in_ch), int(out_ch)
    if in_ch <= 0 or out_ch <= 0:
        raise ValueError(f"channel counts must be positive, got {channels!r}")
    return in_ch, out_ch


# --------------------------------------------------------------------------- #
#                                Convolutions                                 #
# --------------------------------------------------------------------------- #

class CrossCor(nn.Conv2d):
    """
    2-D cross-correlation (what torch calls Conv2d).

    Parameters
    ----------
    kernel_size : int | (int, int)
    channels : (int, int)
        (in_channels, out_channels).
    bias : bool
        Learnable bias. When False, `self.bias` is None and the bias is not
        part of the parameter collection.
    """

    def __init__(
        self,
        kernel_size: KernelSize,
        channels: Channels,
        bias: bool = True,
        stride: KernelSize = 1,
        padding: KernelSize = 0,
        groups: int = 1,
    ):
        in_ch, out_ch = _split_channels(channels)
        super().__init__(
            in_ch, out_ch, kernel_size,
            stride=stride, padding=padding, groups=groups, bias=bias,
        )


class Conv(CrossCor):
    """
    2-D convolution in the mathematical sense: the kernel is flipped along
    both spatial axes before the cross-correlation.
    """

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self._conv_forward(x, torch.flip(self.weight, dims=(-2, -1)), self.bias)


class DepthwiseConv(Conv):
    """
    Depthwise convolution: one group per input channel.

    out_channels must be a multiple of in_channels.
    """

    def __init__(
        self,
        kernel_size: KernelSize,
        channels: Channels,
        bias: bool = True,
        stride: KernelSize = 1,
        padding: KernelSize = 0,
    ):
        in_ch, out_ch = _split_channels(channels)
        if out_ch % in_ch != 0:
            raise ValueError(
                f"DepthwiseConv needs out_channels to be a multiple of in_channels, got {channels!r}"
            )
        super().__init__(
            kernel_size, (in_ch, out_ch),
            bias=bias, stride=stride, padding=padding, groups=in_ch,
        )


class ConvTranspose(nn.ConvTranspose2d):
    """2-D transposed convolution with (kernel, (in, out)) construction."""

    def __init__(
        self,
        kernel_size: KernelSize,
        channels: Channels,
        bias: bool = True,
        stride: KernelSize = 1,
        padding: KernelSize = 0,
    ):
        in_ch, out_ch = _split_channels(channels)
        super().__init__(
            in_ch, out_ch, kernel_size,
            stride=stride, padding=padding, bias=bias,
        )


# Named helpers so the case labels read "ConvNoBias" rather than a partial.

def ConvNoBias(*args, **kwargs) -> Conv:
    return Conv(*args, bias=False, **kwargs)


def CrossCorNoBias(*args, **kwargs) -> CrossCor:
    return CrossCor(*args, bias=False, **kwargs)


def ConvTransposeNoBias(*args, **kwargs) -> ConvTranspose:
    return ConvTranspose(*args, bias=False, **kwargs)


def DepthwiseConvNoBias(*args, **kwargs) -> DepthwiseConv:
    return DepthwiseConv(*args, bias=False, **kwargs)


# --------------------------------------------------------------------------- #
#                                   Pooling                                   #
# --------------------------------------------------------------------------- #

class MaxPool(nn.MaxPool2d):
    """Max pooling; stride defaults to the window size."""


class MeanPool(nn.AvgPool2d):
    """Mean pooling; stride defaults to the window size."""


class AdaptiveMaxPool(nn.AdaptiveMaxPool2d):
    """Max pooling to a fixed output size, e.g. AdaptiveMaxPool((7, 7))."""


class AdaptiveMeanPool(nn.AdaptiveAvgPool2d):
    """Mean pooling to a fixed output size."""


# --------------------------------------------------------------------------- #
#                                   Dropout                                   #
# --------------------------------------------------------------------------- #

class Dropout(nn.Dropout):
    """Standard dropout. Active in training mode (the default after construction)."""


class AlphaDropout(nn.AlphaDropout):
    """Alpha dropout, keeps mean and variance of SELU activations."""


# --------------------------------------------------------------------------- #
#                                Normalization                                #
# --------------------------------------------------------------------------- #

class LayerNorm(nn.LayerNorm):
    """Layer normalization over the trailing `normalized_shape` dims."""


class BatchNorm(_BatchNorm):
    """
    Batch normalization over dim 1 for inputs of any rank >= 2.

    torch splits this into BatchNorm1d/2d/3d by input rank; the case table
    uses one constructor for both (N, C) and (N, C, H, W) inputs.
    """

    def _check_input_dim(self, input: torch.Tensor) -> None:
        if input.dim() < 2:
            raise ValueError(f"expected at least 2D input (got {input.dim()}D input)")


class InstanceNorm(nn.InstanceNorm2d):
    """Instance normalization with a learnable affine transform by default."""

    def __init__(
        self,
        num_features: int,
        eps: float = 1e-5,
        momentum: float = 0.1,
        affine: bool = True,
        track_running_stats: bool = False,
    ):
        super().__init__(
            num_features, eps=eps, momentum=momentum,
            affine=affine, track_running_stats=track_running_stats,
        )


class GroupNorm(nn.GroupNorm):
    """
    Group normalization constructed as GroupNorm(channels, groups).

    Note the argument order is (channels, groups), the reverse of
    torch.nn.GroupNorm.
    """

    def __init__(self, channels: int, groups: int, eps: float = 1e-5, affine: bool = True):
        super().__init__(groups, channels, eps=eps, affine=affine)


# --------------------------------------------------------------------------- #
#                                    Dense                                    #
# --------------------------------------------------------------------------- #

class Dense(nn.Linear):
    """Fully-connected layer, Dense(in_features, out_features, bias=True)."""

    @classmethod
    def from_weight(
        cls,
        weight: torch.Tensor,
        bias: Union[bool, torch.Tensor, None] = False,
    ) -> "Dense":
        """
        Build a Dense layer around an explicit (out, in) weight matrix.

        `bias` may be a tensor of shape (out,), True for a freshly
        initialised bias, or False/None for no bias at all. A disabled bias
        behaves as a constant zero and is never a learnable parameter.
        """
        weight = torch.as_tensor(weight, dtype=torch.float32)
        if weight.dim() != 2:
            raise ValueError(f"weight must be 2D (out, in), got shape {tuple(weight.shape)}")
        out_features, in_features = weight.shape
        has_bias = isinstance(bias, torch.Tensor) or bool(bias)
        layer = cls(in_features, out_features, bias=has_bias)
        with torch.no_grad():
            layer.weight.copy_(weight)
            if isinstance(bias, torch.Tensor):
                layer.bias.copy_(bias)
        return layer


# --------------------------------------------------------------------------- #
#                               Function layers                               #
# --------------------------------------------------------------------------- #

class FunctionLayer(nn.Module):
    """
    Wrap a pure function as a parameter-free layer.

    Lets the harness treat `x -> f(x)` exactly like a constructed layer:
    it has an empty parameter collection and moves between devices
    trivially.
    """

    def __init__(self, fn: Callable[[torch.Tensor], torch.Tensor], label: Optional[str] = None):
        super().__init__()
        self.fn = fn
        self.label = label or getattr(fn, "__name__", repr(fn))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.fn(x)

    def extra_repr(self) -> str:
        return self.label


def normalise(x: torch.Tensor, dims: Union[int, Tuple[int, ...]] = -1, eps: float = 1e-5) -> torch.Tensor:
    """
    Shift and scale `x` to zero mean and unit std along `dims`.

    Uses the uncorrected (population) standard deviation and adds `eps` to
    it, not to the variance.
    """
    mu = x.mean(dim=dims, keepdim=True)
    sigma = torch.std(x, dim=dims, correction=0, keepdim=True)
    return (x - mu) / (sigma + eps)
