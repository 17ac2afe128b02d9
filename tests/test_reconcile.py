from __future__ import annotations

from dataclasses import replace

import pytest

from bmsmon.monitor.config import CellThresholds
from bmsmon.monitor.models import CellStatus
from bmsmon.monitor.parser import parse_reading
from bmsmon.monitor.reconcile import get_cell_status, present_cells, summarize, validate

from conftest import SAMPLE_RECORD


@pytest.mark.parametrize(
    ("voltage", "expected"),
    [
        (3.96, CellStatus.GOOD),
        (3.0, CellStatus.GOOD),
        (4.3, CellStatus.GOOD),
        (0.05, CellStatus.DANGER),
        (-0.001, CellStatus.DANGER),
        (2.0, CellStatus.WARNING),
        (4.5, CellStatus.WARNING),
        (-4.5, CellStatus.WARNING),
    ],
)
def test_get_cell_status(voltage: float, expected: CellStatus) -> None:
    assert get_cell_status(voltage) is expected


def test_custom_thresholds() -> None:
    limits = CellThresholds(good_max=4.2)
    assert get_cell_status(4.25, limits) is CellStatus.WARNING
    assert get_cell_status(4.25) is CellStatus.GOOD


def test_section_missing_cell_is_zero_and_danger() -> None:
    text = """\
BATERIA TOTAL (2S): 7.95V
Cel 1: 3.96V
Módulo 1 (0x48):
  A0 (1S): RAW=22645  Tensão=3.963V
  A1 (2S): RAW=22723  Tensão=7.953V
"""
    reading = parse_reading(text)
    assert reading.cells[0].individual_voltage == pytest.approx(3.96)
    assert reading.cells[1].individual_voltage == 0.0
    assert reading.cells[1].status is CellStatus.DANGER
    assert reading.cells[1].cumulative_voltage == pytest.approx(7.953)


def test_differential_without_section() -> None:
    text = """\
BATERIA TOTAL (3S): 11.8V
Módulo 1 (0x48):
  A0 (1S): RAW=1  Tensão=3.9V
  A1 (2S): RAW=2  Tensão=7.9V
  A2 (3S): RAW=3  Tensão=11.8V
"""
    reading = parse_reading(text)
    assert [cell.individual_voltage for cell in reading.cells] == pytest.approx([3.9, 4.0, 3.9])
    assert all(cell.status is CellStatus.GOOD for cell in reading.cells)
    assert reading.individual_cells == ()


def test_disconnected_pin_is_kept_but_not_present() -> None:
    text = """\
BATERIA TOTAL (2S): 3.96V
Cel 1: 3.96V
Cel 2: -0.001V
Módulo 1 (0x48):
  A0 (1S): RAW=22645  Tensão=3.963V
  A1 (2S): RAW=-1  Tensão=-0.001V
"""
    reading = parse_reading(text)
    assert len(reading.cells) == 2
    assert reading.cells[1].status is CellStatus.DANGER
    assert reading.cells[1].raw == -1
    visible = present_cells(reading.cells)
    assert [cell.name for cell in visible] == ["1S"]


def test_present_cells_threshold_is_exclusive() -> None:
    reading = parse_reading(SAMPLE_RECORD)
    assert present_cells(reading.cells, threshold=3.96) == [reading.cells[1]]


def test_validate() -> None:
    reading = parse_reading(SAMPLE_RECORD)
    assert validate(reading)
    assert not validate(None)
    assert not validate(replace(reading, total_voltage="7.95"))
    assert not validate(replace(reading, total_voltage=True))
    assert not validate(replace(reading, cells=None))
    assert not validate(object())


def test_summarize_ignores_zero_cells() -> None:
    reading = parse_reading(SAMPLE_RECORD)
    summary = summarize(reading)
    assert summary.count == 2
    assert summary.average == pytest.approx(3.975)
    assert summary.minimum == pytest.approx(3.96)
    assert summary.maximum == pytest.approx(3.99)
    assert summary.spread == pytest.approx(0.03)

    empty = summarize(parse_reading(""))
    assert empty.count == 0
    assert empty.spread == 0.0
