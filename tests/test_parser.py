from __future__ import annotations

from datetime import datetime

import pytest

from bmsmon.monitor.models import CellStatus
from bmsmon.monitor.parser import (
    RecordParser,
    match_individual_cell,
    match_module_header,
    match_pin,
    match_total_voltage,
    parse_reading,
)

from conftest import SAMPLE_RECORD


def test_line_matchers() -> None:
    assert match_total_voltage("BATERIA TOTAL (4S): 15.82V") == (4, 15.82)
    assert match_individual_cell("Cel 3: 3.95V") == (3, 3.95)
    assert match_module_header("Módulo 2 (0x49):") == (2, "49")
    assert match_module_header("Modulo 1 (0X4a):") == (1, "4a")

    pin = match_pin("A1 (2S): RAW=22723  Tensão=7.953V")
    assert pin is not None
    assert pin.pin == "A1"
    assert pin.cell == "2S"
    assert pin.cell_number == 2
    assert pin.raw == 22723
    assert pin.voltage == pytest.approx(7.953)


def test_matchers_reject_other_lines() -> None:
    assert match_total_voltage("Cel 1: 3.96V") is None
    assert match_individual_cell("BATERIA TOTAL (2S): 7.95V") is None
    assert match_module_header("A0 (1S): RAW=1  Tensão=0.1V") is None
    assert match_pin("Módulo 1 (0x48):") is None
    assert match_pin("A0 (1S): RAW=abc  Tensão=0.1V") is None


def test_negative_pin_values() -> None:
    pin = match_pin("A3 (4S): RAW=-1  Tensão=-0.001V")
    assert pin is not None
    assert pin.raw == -1
    assert pin.voltage == pytest.approx(-0.001)


def test_parse_sample_record() -> None:
    stamp = datetime(2024, 5, 1, 12, 30, 0)
    reading = parse_reading(SAMPLE_RECORD, timestamp=stamp)

    assert reading.timestamp == stamp
    assert reading.cell_count == 2
    assert reading.total_voltage == pytest.approx(7.95)
    assert [cell.name for cell in reading.cells] == ["1S", "2S"]
    assert [cell.individual_voltage for cell in reading.cells] == pytest.approx([3.96, 3.99])
    assert [cell.cumulative_voltage for cell in reading.cells] == pytest.approx([3.963, 7.953])
    assert all(cell.status is CellStatus.GOOD for cell in reading.cells)
    assert reading.cells[0].raw == 22645
    assert reading.cells[1].pin == "A1"

    assert len(reading.modules) == 1
    module = reading.modules[0]
    assert module.id == 1
    assert module.address == "48"
    assert [pin.pin for pin in module.pins] == ["A0", "A1"]
    assert [entry.number for entry in reading.individual_cells] == [1, 2]


def test_cells_sorted_across_modules() -> None:
    text = """\
BATERIA TOTAL (4S): 15.8V
Módulo 2 (0x49):
  A0 (3S): RAW=1  Tensão=11.8V
  A1 (4S): RAW=2  Tensão=15.8V
Módulo 1 (0x48):
  A1 (2S): RAW=3  Tensão=7.9V
  A0 (1S): RAW=4  Tensão=3.9V
"""
    raw = RecordParser().parse(text)
    assert [cell.number for cell in raw.cumulative] == [1, 2, 3, 4]
    assert [cell.module for cell in raw.cumulative] == [1, 1, 2, 2]
    assert [module.id for module in raw.modules] == [2, 1]


def test_duplicate_cell_number_keeps_last_pin() -> None:
    text = """\
Módulo 1 (0x48):
  A0 (1S): RAW=10  Tensão=3.9V
Módulo 2 (0x49):
  A2 (1S): RAW=20  Tensão=3.8V
"""
    raw = RecordParser().parse(text)
    assert len(raw.cumulative) == 1
    assert raw.cumulative[0].pin == "A2"
    assert raw.cumulative[0].module == 2


def test_first_total_line_wins_and_pins_outside_module_ignored() -> None:
    text = """\
A0 (1S): RAW=10  Tensão=3.9V
BATERIA TOTAL (2S): 7.9V
BATERIA TOTAL (3S): 11.9V
"""
    raw = RecordParser().parse(text)
    assert raw.cell_count == 2
    assert raw.total_voltage == pytest.approx(7.9)
    assert raw.cumulative == []


def test_garbage_yields_empty_reading() -> None:
    reading = parse_reading("nothing useful here\n\n")
    assert reading.cell_count == 0
    assert reading.total_voltage == 0.0
    assert reading.cells == ()
    assert reading.modules == ()
