"""Tests for the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from config import DEFAULTS, ConfigError, load_config


def test_defaults() -> None:
    cfg = load_config()
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_dict_overlay_and_address_forms() -> None:
    cfg = load_config({"origin": "x4000", "breakpoints": ["0x3005", 12294, "x3010"]})
    assert cfg["origin"] == 0x4000
    assert cfg["breakpoints"] == [0x3005, 12294, 0x3010]
    assert cfg["lenient_log"] is False


def test_yaml_file(tmp_path: Path) -> None:
    p = tmp_path / "machine.yaml"
    p.write_text("origin: 0x3100\ninput: hello\nlenient_log: true\nbreakpoints: [0x3102]\n", encoding="utf-8")
    cfg = load_config(str(p))
    assert cfg["origin"] == 0x3100
    assert cfg["input"] == "hello"
    assert cfg["lenient_log"] is True
    assert cfg["breakpoints"] == [0x3102]


def test_null_values_fall_back() -> None:
    cfg = load_config({"breakpoints": None, "input": None})
    assert cfg["breakpoints"] == []
    assert cfg["input"] == ""


@pytest.mark.parametrize(
    "bad",
    [
        {"origin": 0x10000},
        {"origin": -1},
        {"origin": "nope"},
        {"breakpoints": [0x10000]},
        {"breakpoints": 5},
    ],
)
def test_bad_values(bad: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(bad)


def test_missing_file() -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/machine.yaml")


def test_non_mapping_file(tmp_path: Path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(p))


def test_unsupported_input() -> None:
    with pytest.raises(ConfigError):
        load_config(42)  # type: ignore[arg-type]
