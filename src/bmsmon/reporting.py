"""Export writers for readings and voltage history."""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable

import pandas as pd

from .monitor.history import VoltageHistory
from .monitor.models import Cell, Module, Reading

CSV_COLUMNS = [
    "Timestamp",
    "Cell",
    "Cumulative Voltage (V)",
    "Individual Voltage (V)",
    "RAW",
    "Module",
    "Pin",
    "Status",
]


def reading_to_dict(reading: Reading) -> Dict[str, Any]:
    """Document form of a reading; every field of :class:`Reading` is present."""

    return {
        "timestamp": reading.timestamp.isoformat(),
        "cell_count": reading.cell_count,
        "total_voltage": reading.total_voltage,
        "cells": [_cell_to_dict(cell) for cell in reading.cells],
        "modules": [_module_to_dict(module) for module in reading.modules],
        "individual_cells": [
            {
                "number": entry.number,
                "name": entry.name,
                "voltage": entry.voltage,
                "status": entry.status.value,
            }
            for entry in reading.individual_cells
        ],
    }


def _cell_to_dict(cell: Cell) -> Dict[str, Any]:
    return {
        "number": cell.number,
        "name": cell.name,
        "cumulative_voltage": cell.cumulative_voltage,
        "individual_voltage": cell.individual_voltage,
        "status": cell.status.value,
        "raw": cell.raw,
        "module": cell.module,
        "pin": cell.pin,
    }


def _module_to_dict(module: Module) -> Dict[str, Any]:
    return {
        "id": module.id,
        "address": module.address,
        "pins": [
            {
                "pin": pin.pin,
                "cell": pin.cell,
                "cell_number": pin.cell_number,
                "raw": pin.raw,
                "voltage": pin.voltage,
            }
            for pin in module.pins
        ],
    }


def export_json(reading: Reading) -> str:
    return json.dumps(reading_to_dict(reading), indent=2, ensure_ascii=False)


def readings_to_frame(readings: Iterable[Reading]) -> pd.DataFrame:
    rows: list[dict[str, object]] = []
    for reading in readings:
        timestamp = reading.timestamp.strftime("%H:%M:%S")
        for cell in reading.cells:
            rows.append(
                {
                    "Timestamp": timestamp,
                    "Cell": cell.name,
                    "Cumulative Voltage (V)": f"{cell.cumulative_voltage:.3f}",
                    "Individual Voltage (V)": f"{cell.individual_voltage:.3f}",
                    "RAW": cell.raw,
                    "Module": cell.module,
                    "Pin": cell.pin,
                    "Status": cell.status.value,
                }
            )
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def export_csv(reading: Reading) -> str:
    return readings_to_frame([reading]).to_csv(index=False, lineterminator="\n")


def history_to_frame(history: VoltageHistory) -> pd.DataFrame:
    return history.to_frame()


def export_history_json(history: VoltageHistory) -> str:
    return json.dumps(history.export_data(), indent=2)


def export_history_csv(history: VoltageHistory) -> str:
    return history_to_frame(history).to_csv(
        index=False, float_format="%.3f", na_rep="", lineterminator="\n"
    )


def export_filename(kind: str, suffix: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"battery-{kind}-{stamp}.{suffix}"


def write_export(output_dir: Path, kind: str, content: str, suffix: str) -> Path:
    """Persist *content* under *output_dir* with a timestamped file name."""

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / export_filename(kind, suffix)
    path.write_text(content, encoding="utf-8")
    return path
