from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""


DEFAULTS: dict[str, Any] = {
    "origin": 0x3000,
    "breakpoints": [],
    "input": "",
    "lenient_log": False,
}

MAX_ADDR = 0xFFFF


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _to_addr(v: Any) -> int:
    """Accept ints and strings such as '0x3000', 'x3000' or '12288'."""
    if isinstance(v, str):
        s = v.strip()
        if s[:1] in ("x", "X"):
            return int(s[1:], 16)
        return int(s, 0)
    return int(v)


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        cfg["origin"] = _to_addr(cfg.get("origin", DEFAULTS["origin"]))

        bps = cfg.get("breakpoints")
        if bps is None:
            cfg["breakpoints"] = []
        else:
            cfg["breakpoints"] = [_to_addr(b) for b in bps]

        text = cfg.get("input")
        cfg["input"] = "" if text is None else str(text)

        # lenient_log (bool coercion)
        cfg["lenient_log"] = bool(cfg.get("lenient_log", DEFAULTS["lenient_log"]))
    except Exception as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if not (0 <= cfg["origin"] <= MAX_ADDR):
        msg = f"origin ({cfg['origin']}) out of memory range (0..{MAX_ADDR})"
        raise ConfigError(msg)

    for bp in cfg["breakpoints"]:
        if not (0 <= bp <= MAX_ADDR):
            msg = f"breakpoint ({bp}) out of memory range (0..{MAX_ADDR})"
            raise ConfigError(msg)


def load_config(path_or_dict: str | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str (path) -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        cfg = dict(DEFAULTS)
        cfg.update(path_or_dict)
    elif isinstance(path_or_dict, str):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(data)
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
