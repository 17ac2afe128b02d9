from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

SEPARATOR = "=" * 58
DEFAULT_BAUDRATE = 115200
DEFAULT_BUFFER_CAP = 10_000
DEFAULT_HISTORY_WINDOW = 50

_PARITIES = {"none", "even", "odd", "mark", "space"}
_FLOW_CONTROLS = {"none", "hardware", "software"}


@dataclass
class SerialSettings:
    port: Optional[str] = None
    baudrate: int = DEFAULT_BAUDRATE
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "none"
    flow_control: str = "none"
    settle_delay_sec: float = 0.1

    def __post_init__(self) -> None:
        if self.parity not in _PARITIES:
            raise ValueError(f"Unsupported parity '{self.parity}'")
        if self.flow_control not in _FLOW_CONTROLS:
            raise ValueError(f"Unsupported flow_control '{self.flow_control}'")


@dataclass
class CellThresholds:
    """Voltage bands used to classify a cell (nominal 3.0-4.2 V lithium)."""

    danger_below: float = 0.1
    good_min: float = 3.0
    good_max: float = 4.3
    warning_below: float = 2.5
    present_above: float = 0.1


@dataclass
class MonitorConfig:
    serial: SerialSettings = field(default_factory=SerialSettings)
    buffer_cap: int = DEFAULT_BUFFER_CAP
    history_window: int = DEFAULT_HISTORY_WINDOW
    thresholds: CellThresholds = field(default_factory=CellThresholds)
    export_dir: Path | None = None
    stats_log_interval: float = 60.0
    queue_maxsize: int = 256


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> MonitorConfig:
    """
    Build a monitor configuration from an optional JSON file plus overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["serial.baudrate=9600", "thresholds.good_max=4.2"]
    Values are read as JSON literals where possible, otherwise kept as text.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    for item in overrides or []:
        _apply_override(data, item)

    serial_data = data.get("serial") or {}
    thresholds_data = data.get("thresholds") or {}
    serial_defaults = SerialSettings()
    threshold_defaults = CellThresholds()
    port = serial_data.get("port")
    return MonitorConfig(
        serial=SerialSettings(
            port=str(port) if port else None,
            baudrate=int(serial_data.get("baudrate", serial_defaults.baudrate)),
            data_bits=int(serial_data.get("data_bits", serial_defaults.data_bits)),
            stop_bits=int(serial_data.get("stop_bits", serial_defaults.stop_bits)),
            parity=str(serial_data.get("parity", serial_defaults.parity)).lower(),
            flow_control=str(serial_data.get("flow_control", serial_defaults.flow_control)).lower(),
            settle_delay_sec=float(serial_data.get("settle_delay_sec", serial_defaults.settle_delay_sec)),
        ),
        buffer_cap=int(data.get("buffer_cap", DEFAULT_BUFFER_CAP)),
        history_window=int(data.get("history_window", DEFAULT_HISTORY_WINDOW)),
        thresholds=CellThresholds(
            **{
                name: float(thresholds_data.get(name, getattr(threshold_defaults, name)))
                for name in ("danger_below", "good_min", "good_max", "warning_below", "present_above")
            }
        ),
        export_dir=Path(data["export_dir"]) if data.get("export_dir") else None,
        stats_log_interval=float(data.get("stats_log_interval", 60.0)),
        queue_maxsize=int(data.get("queue_maxsize", 256)),
    )


def _apply_override(data: Dict[str, Any], item: str) -> None:
    """Write one dotted ``key=value`` override into *data*, creating sections as needed."""
    key, sep, raw_value = item.partition("=")
    path = [part.strip() for part in key.split(".")]
    if not sep or not all(path):
        raise ValueError(f"Override '{item}' must use section.key=value syntax")
    section = data
    for part in path[:-1]:
        child = section.get(part)
        if not isinstance(child, dict):
            child = section[part] = {}
        section = child
    section[path[-1]] = _literal(raw_value.strip())


def _literal(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false", "null", "none"}:
        return {"true": True, "false": False}.get(lowered)
    try:
        return json.loads(raw)
    except ValueError:
        return raw
