# layerparity/utils/config_utils.py
"""
config_utils.py

Configuration helpers for parity runs:
  • parse booleans robustly (str2bool),
  • load a YAML config file (load_yaml_config),
  • deep-merge YAML with CLI args while respecting parser defaults
    (merge_yaml_cli / merge_config_dicts),
  • validate the merged mapping into a ParityConfig (build_parity_config).

Config keys
-----------
device        : "auto" | "cpu" | "cuda" | "cuda:N"   (default "auto")
rtol, atol    : comparison tolerances                (default 1e-4)
seed          : global torch seed                    (default 42)
groups        : list of case group names, or null for all
broken_layers : list of layer type names expected to fail on the device,
                or null for the built-in list
zero_bias     : also run the zero-input / no-bias checks (default true)

Typical usage (in a runner script)
----------------------------------
>>> parser = build_arg_parser()
>>> args = parser.parse_args()
>>> yaml_cfg = load_yaml_config(args.config)
>>> merged = merge_yaml_cli(yaml_cfg, args, parser)
>>> cfg = build_parity_config(merged)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional
import argparse
import os


# --------------------------------------------------------------------------- #
#                              Boolean parsing                                #
# --------------------------------------------------------------------------- #

def str2bool(v: Any) -> bool:
    """
    Robust boolean parser:
      - Pass-through if already a bool.
      - Accepts: "true","t","yes","y","1","on"  -> True
                 "false","f","no","n","0","off" -> False
      - Integers: 0 -> False; nonzero -> True.
    """
    if isinstance(v, bool):
        return v
    if isinstance(v, int):
        return v != 0
    if v is None:
        return False
    s = str(v).strip().lower()
    if s in {"true", "t", "yes", "y", "1", "on"}:
        return True
    if s in {"false", "f", "no", "n", "0", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"Cannot parse boolean value from: {v!r}")


# --------------------------------------------------------------------------- #
#                              YAML utilities                                 #
# --------------------------------------------------------------------------- #

def load_yaml_config(path: Optional[str]) -> Dict[str, Any]:
    """
    Load a YAML config file. If `path` is None or the file does not exist,
    returns an empty dict. Raises on YAML syntax errors and on a top level
    that is not a mapping.
    """
    if path is None:
        return {}
    path = os.path.expanduser(path)
    if not os.path.isfile(path):
        return {}
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "PyYAML is required to load config files. Install with `pip install pyyaml`."
        ) from e

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)  # can be None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping (dict). Got: {type(data).__name__}")
    return data


# --------------------------------------------------------------------------- #
#                        Deep-merge & override detection                       #
# --------------------------------------------------------------------------- #

def deep_merge(base: MutableMapping[str, Any], upd: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    Recursively merge mapping `upd` into mapping `base` in-place and return `base`.

    Dicts on both sides are merged key by key; anything else (lists
    included) is replaced by the value from `upd`.
    """
    for k, v in upd.items():
        if k in base and isinstance(base[k], Mapping) and isinstance(v, Mapping):
            deep_merge(base[k], v)  # type: ignore[arg-type]
        else:
            base[k] = v
    return base


def detect_cli_overrides(
    cli_dict: Mapping[str, Any],
    defaults: Optional[Mapping[str, Any]] = None,
    *,
    skip_none: bool = True,
) -> Dict[str, Any]:
    """
    Return only those CLI key/value pairs that should override config.

    With `defaults`, a key counts as set by the user when its value differs
    from the parser default. The "config" key itself is never propagated.
    """
    overrides: Dict[str, Any] = {}
    for k, v in cli_dict.items():
        if k == "config":
            continue
        if v is None and skip_none:
            continue
        if defaults is not None and k in defaults and v == defaults[k]:
            continue
        overrides[k] = v
    return overrides


def merge_config_dicts(
    base: Optional[Mapping[str, Any]],
    overlay: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Deep-merge two (possibly None) mappings into a new dict; `overlay` wins."""
    out: Dict[str, Any] = {}
    if base:
        deep_merge(out, dict(base))
    if overlay:
        deep_merge(out, dict(overlay))
    return out


def merge_yaml_cli(
    yaml_cfg: Optional[Mapping[str, Any]],
    cli_args: argparse.Namespace | Mapping[str, Any],
    parser: Optional[argparse.ArgumentParser] = None,
) -> Dict[str, Any]:
    """
    Merge YAML config with CLI args; CLI flags that differ from the parser
    defaults override the YAML values.
    """
    cli_dict = dict(cli_args) if isinstance(cli_args, Mapping) else vars(cli_args)
    defaults = vars(parser.parse_args([])) if parser is not None else None
    cli_overrides = detect_cli_overrides(cli_dict=cli_dict, defaults=defaults)
    return merge_config_dicts(base=yaml_cfg, overlay=cli_overrides)


# --------------------------------------------------------------------------- #
#                               Parity config                                 #
# --------------------------------------------------------------------------- #

@dataclass
class ParityConfig:
    """Validated settings for a parity run."""

    device: str = "auto"
    rtol: float = 1e-4
    atol: float = 1e-4
    seed: int = 42
    groups: Optional[List[str]] = None
    broken_layers: Optional[List[str]] = None
    zero_bias: bool = True
    force_cpu: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


PARITY_KEYS = ("device", "rtol", "atol", "seed", "groups", "broken_layers", "zero_bias", "force_cpu")


def _as_name_list(key: str, value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"'{key}' must be a list of names, got {type(value).__name__}")
    return [str(v) for v in value]


def build_parity_config(cfg: Optional[Mapping[str, Any]]) -> ParityConfig:
    """
    Validate a merged config mapping into a ParityConfig.

    Unknown keys are kept in `extra` (harmless, but visible for
    reproducibility). Bad types or non-positive tolerances raise ValueError.
    """
    cfg = dict(cfg or {})
    out = ParityConfig()

    if "device" in cfg and cfg["device"] is not None:
        out.device = str(cfg["device"])
    for key in ("rtol", "atol"):
        if key in cfg and cfg[key] is not None:
            try:
                val = float(cfg[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"'{key}' must be a number, got {cfg[key]!r}") from e
            if val < 0:
                raise ValueError(f"'{key}' must be non-negative, got {val}")
            setattr(out, key, val)
    if "seed" in cfg and cfg["seed"] is not None:
        try:
            out.seed = int(cfg["seed"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"'seed' must be an integer, got {cfg['seed']!r}") from e
    out.groups = _as_name_list("groups", cfg.get("groups"))
    out.broken_layers = _as_name_list("broken_layers", cfg.get("broken_layers"))
    if "zero_bias" in cfg:
        out.zero_bias = str2bool(cfg["zero_bias"])
    if "force_cpu" in cfg:
        out.force_cpu = str2bool(cfg["force_cpu"])

    out.extra = {k: v for k, v in cfg.items() if k not in PARITY_KEYS}
    return out


def load_parity_config(path: Optional[str], overrides: Optional[Mapping[str, Any]] = None) -> ParityConfig:
    """YAML file (if any) deep-merged with `overrides`, then validated."""
    return build_parity_config(merge_config_dicts(load_yaml_config(path), overrides))
