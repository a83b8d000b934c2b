#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
layerparity/autodiff.py

Thin reverse-mode helpers over torch.autograd with a pullback-style API.

Components:
  1) params: ordered {qualified name: parameter} collection of a layer
  2) pullback: run a zero-argument computation, return (y, back) where
     back(seed) yields a gradient map keyed by parameter name
  3) gradient: gradient of a scalar function w.r.t. one input tensor
  4) isapprox: host-side tolerance comparison

Gradient maps are keyed by name rather than by parameter identity. Names are
stable across copy.deepcopy() and Module.to(), so the host map and the device
map of the same layer can be paired key by key.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Dict, Mapping, Optional, Tuple, Union

import torch
import torch.nn as nn

__all__ = ["params", "pullback", "gradient", "isapprox", "max_abs_diff", "GradMap"]

GradMap = Dict[str, torch.Tensor]


def params(layer: nn.Module) -> "OrderedDict[str, nn.Parameter]":
    """
    Collect the trainable parameters reachable from `layer`.

    Frozen parameters (requires_grad=False) are not part of the collection.
    A disabled bias is stored as None by torch and never shows up here.
    """
    return OrderedDict(
        (name, p) for name, p in layer.named_parameters() if p.requires_grad
    )


def pullback(
    fn: Callable[[], torch.Tensor],
    ps: Mapping[str, torch.Tensor],
) -> Tuple[torch.Tensor, Callable[..., GradMap]]:
    """
    Evaluate `fn()` and return its result with a pullback closure.

    Parameters
    ----------
    fn : callable
        Zero-argument computation producing a scalar tensor.
    ps : mapping
        Named parameters to differentiate against.

    Returns
    -------
    y : torch.Tensor
        The scalar result (still attached to the graph).
    back : callable
        back(seed=1.0) -> {name: grad}. Parameters that did not take part in
        the computation are left out of the map. The graph is retained, so
        back may be called more than once.
    """
    y = fn()
    names = list(ps.keys())
    tensors = [ps[n] for n in names]

    def back(seed: Union[float, torch.Tensor] = 1.0) -> GradMap:
        if not tensors or not y.requires_grad:
            return {}
        seed_t = torch.as_tensor(seed, dtype=y.dtype, device=y.device).expand_as(y)
        grads = torch.autograd.grad(
            y, tensors, grad_outputs=seed_t, retain_graph=True, allow_unused=True
        )
        return {n: g for n, g in zip(names, grads) if g is not None}

    return y, back


def gradient(fn: Callable[[torch.Tensor], torch.Tensor], x: torch.Tensor) -> torch.Tensor:
    """
    Gradient of the scalar `fn(x)` with respect to `x`.

    `x` is detached and re-marked as a leaf, so the caller's tensor is not
    modified. The result lives on `x`'s device. If `fn` does not depend on
    `x` a zero tensor is returned.
    """
    x_leaf = x.detach().clone().requires_grad_(True)
    y = fn(x_leaf)
    if not y.requires_grad:
        return torch.zeros_like(x_leaf)
    (g,) = torch.autograd.grad(y, (x_leaf,), allow_unused=True)
    if g is None:
        g = torch.zeros_like(x_leaf)
    return g


def isapprox(
    a: Union[torch.Tensor, float],
    b: Union[torch.Tensor, float],
    rtol: float = 1e-4,
    atol: float = 1e-4,
) -> bool:
    """
    Element-wise |a - b| <= atol + rtol * |b|, evaluated on the host.

    Both sides are detached and brought to CPU first. A shape mismatch is
    reported as False instead of broadcasting.
    """
    ta = torch.as_tensor(a).detach().cpu()
    tb = torch.as_tensor(b).detach().cpu()
    if ta.shape != tb.shape:
        return False
    if ta.dtype != tb.dtype:
        ta, tb = ta.double(), tb.double()
    return bool(torch.allclose(ta, tb, rtol=rtol, atol=atol))


def max_abs_diff(a: torch.Tensor, b: torch.Tensor) -> Optional[float]:
    """Largest absolute difference between `a` and `b` on the host, None on shape mismatch."""
    ta = torch.as_tensor(a).detach().cpu().double()
    tb = torch.as_tensor(b).detach().cpu().double()
    if ta.shape != tb.shape:
        return None
    if ta.numel() == 0:
        return 0.0
    return (ta - tb).abs().max().item()
