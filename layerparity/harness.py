#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
layerparity/harness.py

Host/device parity harness for neural-network layers.

For every layer constructor the harness:
  1. builds the layer on the host and collects its parameters,
  2. runs sum(layer(x)) and its pullback w.r.t. the parameters on the host,
  3. mirrors the input and (a deep copy of) the layer to the device,
  4. for known-broken layer types, expects the device gradient to raise,
  5. otherwise runs the same computation on the device, plus the gradient
     of sum(layer(x)) w.r.t. the input on both sides,
  6. compares outputs and gradients within rtol/atol (when enabled) and
     always checks that device gradients actually live on the device.

Checks are soft: a failed check is recorded on the CaseResult and the next
layer still runs. Only a missing input aborts, before any computation.

Outcomes
--------
PASSED  all checks held
FAILED  at least one check failed, or the computation raised
XFAIL   known-broken layer raised on the device, as expected
XPASS   known-broken layer did *not* raise (worth noticing, not fatal)

Usage
-----
>>> from layerparity.harness import parity_gradtest
>>> from layerparity.layers import Conv, CrossCor
>>> x = torch.rand(1, 1, 28, 28)
>>> report = parity_gradtest("Conv", [Conv, CrossCor], x, (2, 2), (1, 3))
>>> report.ok
True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging

import torch
import torch.nn as nn

from layerparity import layers as L
from layerparity.autodiff import gradient, isapprox, max_abs_diff, params, pullback
from layerparity.device import DeviceLike, cpu, get_device, gpu, is_on_device

__all__ = [
    "BROKEN_LAYERS",
    "LAYER_TYPES",
    "CaseResult",
    "GroupReport",
    "MissingInputError",
    "Status",
    "as_constructors",
    "check_layer",
    "is_broken",
    "label_of",
    "parity_gradtest",
    "resolve_broken_layers",
    "zero_bias_check",
]

logger = logging.getLogger(__name__)

DEFAULT_RTOL = 1e-4
DEFAULT_ATOL = 1e-4
MISSING_INPUT = "Missing input to test the layers against."

# Layer types whose device gradients are known not to work. Depthwise conv,
# instance norm and group norm hit scalar indexing on the device backend;
# alpha dropout fails to compile there.
BROKEN_LAYERS: Tuple[type, ...] = (
    L.DepthwiseConv,
    L.AlphaDropout,
    L.InstanceNorm,
    L.GroupNorm,
)

LAYER_TYPES: Dict[str, type] = {
    cls.__name__: cls
    for cls in (
        L.Conv, L.CrossCor, L.ConvTranspose, L.DepthwiseConv,
        L.MaxPool, L.MeanPool, L.AdaptiveMaxPool, L.AdaptiveMeanPool,
        L.Dropout, L.AlphaDropout,
        L.LayerNorm, L.BatchNorm, L.InstanceNorm, L.GroupNorm,
        L.Dense, L.FunctionLayer,
    )
}

Constructor = Callable[..., nn.Module]


class MissingInputError(ValueError):
    """Raised when a harness call is made without an input tensor."""


class Status(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    XFAIL = "xfail"
    XPASS = "xpass"


@dataclass
class CaseResult:
    """Outcome of one layer in one harness invocation."""

    group: str
    label: str
    status: Status = Status.PASSED
    failures: List[str] = field(default_factory=list)
    error: Optional[BaseException] = None

    def check(self, ok: bool, message: str) -> bool:
        """Record `message` as a failure unless `ok`. Returns `ok`."""
        if not ok:
            self.failures.append(message)
        return ok

    @property
    def ok(self) -> bool:
        return self.status is not Status.FAILED

    def raise_for_status(self) -> None:
        """
        Turn the recorded outcome into an exception for test runners.

        FAILED raises AssertionError listing every failed check. XFAIL
        re-raises the captured device error so an xfail marker sees it.
        PASSED and XPASS return normally.
        """
        if self.status is Status.FAILED:
            lines = "\n  - ".join(self.failures) or "unknown failure"
            raise AssertionError(f"[{self.group}] {self.label}:\n  - {lines}") from self.error
        if self.status is Status.XFAIL and self.error is not None:
            raise self.error

    def __str__(self) -> str:
        return f"{self.group} / {self.label}: {self.status.value}"


@dataclass
class GroupReport:
    """All case results of one parity_gradtest call."""

    name: str
    device: str
    results: List[CaseResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[CaseResult]:
        return [r for r in self.results if r.status is Status.FAILED]

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in Status}
        for r in self.results:
            out[r.status.value] += 1
        return out


# --------------------------------------------------------------------------- #
#                                   Helpers                                   #
# --------------------------------------------------------------------------- #

def label_of(ctor: Any) -> str:
    """Readable name for a constructor, function or layer instance."""
    label = getattr(ctor, "label", None)
    if isinstance(label, str):
        return label
    if isinstance(ctor, nn.Module):
        return type(ctor).__name__
    return getattr(ctor, "__name__", repr(ctor))


def is_broken(layer: nn.Module, broken: Sequence[type] = BROKEN_LAYERS) -> bool:
    """True if `layer` belongs to one of the known-broken layer types."""
    return bool(broken) and isinstance(layer, tuple(broken))


def resolve_broken_layers(names: Optional[Iterable[str]]) -> Tuple[type, ...]:
    """
    Map layer type names (e.g. from a YAML config) to layer classes.

    None means "use the default BROKEN_LAYERS"; an empty list disables the
    expected-failure handling entirely.
    """
    if names is None:
        return BROKEN_LAYERS
    resolved = []
    for name in names:
        cls = LAYER_TYPES.get(str(name))
        if cls is None:
            raise ValueError(
                f"Unknown layer type {name!r} in broken_layers. "
                f"Known types: {sorted(LAYER_TYPES)}"
            )
        resolved.append(cls)
    return tuple(resolved)


def _function_constructor(fn: Callable[[torch.Tensor], torch.Tensor]) -> Constructor:
    label = getattr(fn, "__name__", repr(fn))

    def build(*_args: Any) -> nn.Module:
        return L.FunctionLayer(fn, label=label)

    build.label = label  # type: ignore[attr-defined]
    return build


def as_constructors(layers: Any) -> List[Constructor]:
    """Normalise `layers` (sequence, single layer class, or pure function) to a list of constructors."""
    if isinstance(layers, (list, tuple)):
        return list(layers)
    if isinstance(layers, type) and issubclass(layers, nn.Module):
        return [layers]
    if callable(layers):
        # A single pure function x -> y
        return [_function_constructor(layers)]
    raise TypeError(
        f"layers must be a sequence of constructors or a function, got {type(layers).__name__}"
    )


def _fmt_diff(a: torch.Tensor, b: torch.Tensor) -> str:
    diff = max_abs_diff(a, b)
    if diff is None:
        return f"shape {tuple(a.shape)} vs {tuple(b.shape)}"
    return f"max |diff| = {diff:.3e}"


def _expect_device_failure(result: CaseResult, attempt: Callable[[], Any]) -> CaseResult:
    try:
        attempt()
    except Exception as e:
        result.status = Status.XFAIL
        result.error = e
        logger.debug(f"[{result.group}] {result.label}: expected device failure ({type(e).__name__}: {e})")
        return result
    result.status = Status.XPASS
    logger.warning(f"[{result.group}] {result.label}: marked broken on the device but succeeded")
    return result


def _finish(result: CaseResult) -> CaseResult:
    if result.failures:
        result.status = Status.FAILED
        logger.error(f"[{result.group}] {result.label}: " + "; ".join(result.failures))
    else:
        logger.debug(f"[{result.group}] {result.label}: passed")
    return result


# --------------------------------------------------------------------------- #
#                                  Harness                                    #
# --------------------------------------------------------------------------- #

def check_layer(
    group: str,
    ctor: Constructor,
    x: torch.Tensor,
    args: Sequence[Any] = (),
    *,
    test_cpu: bool = True,
    device: DeviceLike = None,
    rtol: float = DEFAULT_RTOL,
    atol: float = DEFAULT_ATOL,
    broken: Sequence[type] = BROKEN_LAYERS,
) -> CaseResult:
    """
    Run the host/device parity check for a single layer constructor.

    Parameters
    ----------
    group : str
        Name of the case group, used in labels and log lines.
    ctor : callable
        Layer constructor, called as ctor(*args).
    x : torch.Tensor
        Representative input. Moved to host before use.
    args : sequence
        Positional construction arguments.
    test_cpu : bool
        Compare numbers against the host. Disable for non-deterministic
        layers (dropout); device residency is still checked.
    device : str | torch.device | None
        Device backend; "auto"/None picks CUDA when available.
    rtol, atol : float
        Tolerances for every numeric comparison.
    broken : sequence of types
        Layer types expected to fail on the device.

    Returns
    -------
    CaseResult
    """
    if x is None:
        raise MissingInputError(MISSING_INPUT)

    device = get_device(device)
    result = CaseResult(group=group, label=label_of(ctor))
    x_cpu = cpu(x)

    try:
        l_cpu = ctor(*args)
        ps_cpu = params(l_cpu)
        y_cpu, back_cpu = pullback(lambda: l_cpu(x_cpu).sum(), ps_cpu)
        gs_cpu = back_cpu(1.0)

        x_dev = gpu(x_cpu, device)
        l_dev = gpu(l_cpu, device)
        ps_dev = params(l_dev)
    except Exception as e:
        result.error = e
        result.check(False, f"host computation raised {type(e).__name__}: {e}")
        return _finish(result)

    if is_broken(l_dev, broken):
        return _expect_device_failure(
            result, lambda: pullback(lambda: l_dev(x_dev).sum(), ps_dev)[1](1.0)
        )

    try:
        y_dev, back_dev = pullback(lambda: l_dev(x_dev).sum(), ps_dev)
        gs_dev = back_dev(1.0)

        xg_cpu = gradient(lambda t: l_cpu(t).sum(), x_cpu)
        xg_dev = gradient(lambda t: l_dev(t).sum(), x_dev)
    except Exception as e:
        result.error = e
        result.check(False, f"device computation raised {type(e).__name__}: {e}")
        return _finish(result)

    if test_cpu:
        result.check(
            isapprox(y_dev, y_cpu, rtol=rtol, atol=atol),
            f"output mismatch: host {y_cpu.item():.6g} vs device {y_dev.item():.6g}",
        )
        result.check(
            isapprox(xg_dev, xg_cpu, rtol=rtol, atol=atol),
            f"input gradient mismatch ({_fmt_diff(xg_dev, xg_cpu)})",
        )

    result.check(
        set(gs_dev) == set(gs_cpu),
        f"gradient keys differ: host {sorted(gs_cpu)} vs device {sorted(gs_dev)}",
    )
    for name in ps_dev:
        g_dev = gs_dev.get(name)
        if not result.check(g_dev is not None, f"no device gradient for parameter {name!r}"):
            continue
        result.check(
            is_on_device(g_dev, device),
            f"gradient of {name!r} lives on {g_dev.device}, expected {device.type}",
        )
        if test_cpu and name in gs_cpu:
            result.check(
                isapprox(g_dev, gs_cpu[name], rtol=rtol, atol=atol),
                f"gradient mismatch for {name!r} ({_fmt_diff(g_dev, gs_cpu[name])})",
            )

    return _finish(result)


def parity_gradtest(
    name: str,
    layers: Union[Sequence[Constructor], Callable[[torch.Tensor], torch.Tensor]],
    x: Optional[torch.Tensor] = None,
    *args: Any,
    test_cpu: bool = True,
    device: DeviceLike = None,
    rtol: float = DEFAULT_RTOL,
    atol: float = DEFAULT_ATOL,
    broken: Sequence[type] = BROKEN_LAYERS,
) -> GroupReport:
    """
    Check every layer in `layers` for host/device parity on input `x`.

    `layers` is a sequence of constructors, each called with `*args`, or a
    single pure function of the input. Raises MissingInputError when `x`
    is None; everything else is recorded in the returned report.
    """
    if x is None:
        raise MissingInputError(MISSING_INPUT)

    device = get_device(device)
    report = GroupReport(name=name, device=str(device))
    for ctor in as_constructors(layers):
        report.results.append(
            check_layer(
                name, ctor, x, args,
                test_cpu=test_cpu, device=device,
                rtol=rtol, atol=atol, broken=broken,
            )
        )

    logger.info(f"{name} parity on {device}: {report.counts()}")
    return report


def zero_bias_check(
    group: str,
    layer: nn.Module,
    x: torch.Tensor,
    *,
    device: DeviceLike = None,
    broken: Sequence[type] = BROKEN_LAYERS,
) -> CaseResult:
    """
    Degenerate-input check for a layer built without a bias.

    With an all-zero input and no bias the summed device output must be
    exactly 0.0, and no bias may show up among the gradient keys. For
    known-broken layer types both checks are expected to fail.
    """
    if x is None:
        raise MissingInputError(MISSING_INPUT)

    device = get_device(device)
    result = CaseResult(group=group, label=label_of(layer))
    l_dev = gpu(layer, device)
    ip = gpu(cpu(x), device)
    ps = params(l_dev)

    def bias_keys(gs: Dict[str, torch.Tensor]) -> List[str]:
        return [k for k in gs if k == "bias" or k.endswith(".bias")]

    if is_broken(l_dev, broken):
        def attempt() -> None:
            y, back = pullback(lambda: l_dev(ip).sum(), ps)
            if y.item() != 0.0:
                raise AssertionError(f"output sum {y.item()!r} != 0.0")
            leaked = bias_keys(back(1.0))
            if leaked:
                raise AssertionError(f"bias present in gradients: {leaked}")

        return _expect_device_failure(result, attempt)

    try:
        y, back = pullback(lambda: l_dev(ip).sum(), ps)
        gs = back(1.0)
    except Exception as e:
        result.error = e
        result.check(False, f"device computation raised {type(e).__name__}: {e}")
        return _finish(result)

    result.check(y.item() == 0.0, f"output sum {y.item()!r} != 0.0 for zero input")
    leaked = bias_keys(gs)
    result.check(not leaked, f"disabled bias present in gradients: {leaked}")
    return _finish(result)
