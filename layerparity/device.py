#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
layerparity/device.py

Host/device movement helpers for the parity harness.

What's included
---------------
- get_device: resolve "auto" / "cpu" / "cuda" / "cuda:1" into a torch.device.
- gpu / cpu: move tensors, modules and nested containers between host and
  device memory. Modules are deep-copied before the move, so the host
  instance keeps its own parameters (torch's Module.to() works in-place).
- is_on_device: residency check used for gradient sanity checks.

Tensor moves go through Tensor.to(), which is differentiable, so
gradients flow through gpu(x) and cpu(x) as they would through any other op.
"""

from __future__ import annotations

from typing import Any, Optional, Union
import copy
import logging

import torch
import torch.nn as nn

__all__ = ["get_device", "gpu", "cpu", "is_on_device"]

logger = logging.getLogger(__name__)

DeviceLike = Union[str, torch.device, None]


def get_device(spec: DeviceLike = "auto", force_cpu: bool = False) -> torch.device:
    """
    Return a torch.device.

    "auto" (or None) picks CUDA when available and falls back to CPU.
    An explicit CUDA request on a machine without CUDA is an error rather
    than a silent fallback, since the parity run would then compare the
    host against itself.

    Parameters
    ----------
    spec : str | torch.device | None
        Device description.
    force_cpu : bool
        Return CPU regardless of `spec`.
    """
    if force_cpu:
        return torch.device("cpu")
    if spec is None or (isinstance(spec, str) and spec.strip().lower() == "auto"):
        if torch.cuda.is_available():
            return torch.device("cuda")
        logger.info("CUDA not available, parity device falls back to CPU")
        return torch.device("cpu")

    device = torch.device(spec) if isinstance(spec, str) else spec
    if device.type == "cuda" and not torch.cuda.is_available():
        raise RuntimeError(f"Requested device {device} but CUDA is not available")
    return device


def _move(obj: Any, device: torch.device) -> Any:
    if isinstance(obj, torch.Tensor):
        return obj.to(device)
    if isinstance(obj, nn.Module):
        return copy.deepcopy(obj).to(device)
    if isinstance(obj, dict):
        return {k: _move(v, device) for k, v in obj.items()}
    if isinstance(obj, tuple):
        return tuple(_move(v, device) for v in obj)
    if isinstance(obj, list):
        return [_move(v, device) for v in obj]
    # Numbers, strings, None...
    return obj


def gpu(obj: Any, device: DeviceLike = None) -> Any:
    """
    Move `obj` to the parity device (CUDA when available).

    Works on tensors, nn.Modules and arbitrarily nested dict/list/tuple
    containers of those. Other leaves are returned unchanged.
    """
    return _move(obj, get_device(device))


def cpu(obj: Any) -> Any:
    """Move `obj` back to host memory. Counterpart of gpu()."""
    return _move(obj, torch.device("cpu"))


def is_on_device(t: Optional[torch.Tensor], device: DeviceLike) -> bool:
    """
    True if tensor `t` lives on the same kind of device as `device`.

    Compares device *types* (cuda:0 and cuda are considered the same place).
    `device` is resolved with get_device(), so None means the parity device.
    """
    if t is None:
        return False
    target = get_device(device)
    return t.device.type == target.type
