from __future__ import annotations

import logging
from dataclasses import dataclass
from numbers import Real
from typing import Iterable, List, Optional, Sequence

import numpy as np

from .config import CellThresholds
from .models import Cell, CellStatus, CumulativeCell, IndividualCell, RawRecord, Reading

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = CellThresholds()


@dataclass(frozen=True)
class CellSummary:
    count: int = 0
    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    spread: float = 0.0


def get_cell_status(voltage: float, thresholds: Optional[CellThresholds] = None) -> CellStatus:
    """Classify a cell voltage; the sign of the reading is ignored."""
    limits = thresholds or DEFAULT_THRESHOLDS
    value = abs(voltage)
    if value < limits.danger_below:
        return CellStatus.DANGER
    if limits.good_min <= value <= limits.good_max:
        return CellStatus.GOOD
    if value > limits.good_max or limits.danger_below < value < limits.warning_below:
        return CellStatus.WARNING
    return CellStatus.GOOD


def reconcile(raw: RawRecord, thresholds: Optional[CellThresholds] = None) -> Reading:
    """
    Merge the direct per-cell section with the cumulative pin readings.

    When the record carries a ``Cel <k>`` section its values win; cells the
    section does not mention are reported as 0 V / danger. Without the section
    each cell's voltage is derived from the difference between consecutive
    cumulative readings, which assumes the pins measure a stack (cell n's pin
    sees cells 1..n). Non-monotonic stacks are not detected.
    """
    individual = tuple(
        IndividualCell(
            number=number,
            name=f"{number}S",
            voltage=voltage,
            status=get_cell_status(voltage, thresholds),
        )
        for number, voltage in sorted(raw.individual.items())
    )
    if individual:
        by_number = {entry.number: entry for entry in individual}
        cells = [_from_section(cell, by_number.get(cell.number)) for cell in raw.cumulative]
    else:
        cells = _differential(raw.cumulative, thresholds)
    return Reading(
        timestamp=raw.timestamp,
        cell_count=raw.cell_count,
        total_voltage=raw.total_voltage,
        cells=tuple(cells),
        modules=tuple(raw.modules),
        individual_cells=individual,
    )


def _from_section(cell: CumulativeCell, entry: Optional[IndividualCell]) -> Cell:
    if entry is None:
        logger.debug("Cell %d missing from individual section, marking disconnected", cell.number)
        return _build_cell(cell, 0.0, CellStatus.DANGER)
    return _build_cell(cell, entry.voltage, entry.status)


def _differential(cumulative: Sequence[CumulativeCell], thresholds: Optional[CellThresholds]) -> List[Cell]:
    cells: List[Cell] = []
    previous: Optional[CumulativeCell] = None
    for cell in cumulative:
        voltage = cell.voltage if previous is None else cell.voltage - previous.voltage
        cells.append(_build_cell(cell, voltage, get_cell_status(voltage, thresholds)))
        previous = cell
    return cells


def _build_cell(cell: CumulativeCell, individual_voltage: float, status: CellStatus) -> Cell:
    return Cell(
        number=cell.number,
        name=cell.name,
        cumulative_voltage=cell.voltage,
        individual_voltage=individual_voltage,
        status=status,
        raw=cell.raw,
        module=cell.module,
        pin=cell.pin,
    )


def present_cells(cells: Iterable[Cell], threshold: float = DEFAULT_THRESHOLDS.present_above) -> List[Cell]:
    """Cells considered physically connected for display and charting."""
    return [cell for cell in cells if cell.individual_voltage > threshold]


def validate(reading: object) -> bool:
    """Structural check only; voltage ranges are not inspected."""
    if reading is None:
        return False
    total = getattr(reading, "total_voltage", None)
    if not isinstance(total, Real) or isinstance(total, bool):
        return False
    for name in ("cells", "modules"):
        value = getattr(reading, name, None)
        if not isinstance(value, (list, tuple)):
            return False
    return True


def summarize(reading: Reading) -> CellSummary:
    voltages = np.array(
        [cell.individual_voltage for cell in reading.cells if cell.individual_voltage > 0],
        dtype=float,
    )
    if voltages.size == 0:
        return CellSummary()
    minimum = float(voltages.min())
    maximum = float(voltages.max())
    return CellSummary(
        count=int(voltages.size),
        average=float(voltages.mean()),
        minimum=minimum,
        maximum=maximum,
        spread=maximum - minimum,
    )
