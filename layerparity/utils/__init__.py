"""
layerparity/utils/__init__.py

Configuration helpers re-exported for convenience:

    from layerparity.utils import load_parity_config, ParityConfig
"""

from __future__ import annotations

from layerparity.utils.config_utils import (
    ParityConfig,
    build_parity_config,
    deep_merge,
    detect_cli_overrides,
    load_parity_config,
    load_yaml_config,
    merge_config_dicts,
    merge_yaml_cli,
    str2bool,
)

__all__ = [
    "ParityConfig",
    "build_parity_config",
    "deep_merge",
    "detect_cli_overrides",
    "load_parity_config",
    "load_yaml_config",
    "merge_config_dicts",
    "merge_yaml_cli",
    "str2bool",
]
