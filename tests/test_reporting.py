from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from bmsmon.monitor.history import VoltageHistory
from bmsmon.monitor.parser import parse_reading
from bmsmon.plotting import plot_history
from bmsmon.reporting import (
    export_csv,
    export_filename,
    export_history_csv,
    export_history_json,
    export_json,
    write_export,
)

from conftest import SAMPLE_RECORD

STAMP = datetime(2024, 5, 1, 12, 30, 5)


def test_export_csv_rows() -> None:
    lines = export_csv(parse_reading(SAMPLE_RECORD, timestamp=STAMP)).splitlines()
    assert lines[0] == (
        "Timestamp,Cell,Cumulative Voltage (V),Individual Voltage (V),RAW,Module,Pin,Status"
    )
    assert lines[1] == "12:30:05,1S,3.963,3.960,22645,1,A0,good"
    assert lines[2] == "12:30:05,2S,7.953,3.990,22723,1,A1,good"


def test_export_json_has_all_fields() -> None:
    document = json.loads(export_json(parse_reading(SAMPLE_RECORD, timestamp=STAMP)))
    assert document["timestamp"] == "2024-05-01T12:30:05"
    assert document["cell_count"] == 2
    assert document["total_voltage"] == pytest.approx(7.95)
    assert document["cells"][0]["status"] == "good"
    assert document["cells"][1]["cumulative_voltage"] == pytest.approx(7.953)
    assert document["modules"][0]["address"] == "48"
    assert document["modules"][0]["pins"][1]["cell"] == "2S"
    assert [entry["name"] for entry in document["individual_cells"]] == ["1S", "2S"]


def test_history_exports() -> None:
    history = VoltageHistory()
    history.update_cells({"1S": 3.9, "2S": 4.0}, "10:00:00")
    history.update_cells({"1S": 3.85}, "10:00:01")

    assert export_history_csv(history).splitlines() == [
        "Timestamp,1S,2S",
        "10:00:00,3.900,4.000",
        "10:00:01,3.850,",
    ]
    data = json.loads(export_history_json(history))
    assert data["labels"] == ["10:00:00", "10:00:01"]
    assert data["datasets"][1] == {"label": "2S", "data": [4.0, None]}


def test_export_filename_and_write(tmp_path: Path) -> None:
    assert export_filename("reading", "json", now=STAMP) == "battery-reading-2024-05-01T12-30-05.json"
    path = write_export(tmp_path / "out", "history", "payload", "csv")
    assert path.parent == tmp_path / "out"
    assert path.name.startswith("battery-history-")
    assert path.suffix == ".csv"
    assert path.read_text(encoding="utf-8") == "payload"


def test_plot_history_requires_data(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        plot_history(VoltageHistory(), tmp_path)


def test_plot_history_writes_png(tmp_path: Path) -> None:
    pytest.importorskip("matplotlib")
    history = VoltageHistory()
    for index in range(12):
        history.update_cells({"1S": 3.9, "2S": 4.0 - index / 100}, f"10:00:{index:02d}")
    path = plot_history(history, tmp_path)
    assert path.suffix == ".png"
    assert path.stat().st_size > 0
