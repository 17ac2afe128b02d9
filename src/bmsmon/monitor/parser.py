"""
Line-oriented parser for the battery monitor's text records.

A record looks like::

    BATERIA TOTAL (2S): 7.95V
    Cel 1: 3.96V
    Cel 2: 3.99V
    Módulo 1 (0x48):
      A0 (1S): RAW=22645  Tensão=3.963V
      A1 (2S): RAW=22723  Tensão=7.953V

Each line pattern has its own matcher so they can be exercised in isolation.
Parsing never raises: anything that does not match is ignored and absent
fields keep their zero/empty defaults.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .config import CellThresholds
from .models import CumulativeCell, Module, Pin, RawRecord, Reading
from .reconcile import reconcile

logger = logging.getLogger(__name__)

_NUMBER = r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)"
_INTEGER = r"[-+]?\d+"

TOTAL_VOLTAGE_RE = re.compile(rf"BATERIA TOTAL \((\d+)S\):\s*({_NUMBER})\s*V")
INDIVIDUAL_CELL_RE = re.compile(rf"Cel\s+(\d+):\s*({_NUMBER})\s*V")
MODULE_HEADER_RE = re.compile(r"M[óo]dulo\s+(\d+)\s+\(0[xX]([0-9A-Fa-f]+)\):")
PIN_RE = re.compile(
    rf"A(\d+)\s+\((\d+)S\):\s+RAW=({_INTEGER})\s+Tens[ãa]o=({_NUMBER})\s*V"
)


def match_total_voltage(line: str) -> Optional[Tuple[int, float]]:
    """Return ``(cell_count, total_voltage)`` for a pack total line."""
    match = TOTAL_VOLTAGE_RE.search(line)
    if not match:
        return None
    return int(match.group(1)), float(match.group(2))


def match_individual_cell(line: str) -> Optional[Tuple[int, float]]:
    match = INDIVIDUAL_CELL_RE.search(line)
    if not match:
        return None
    return int(match.group(1)), float(match.group(2))


def match_module_header(line: str) -> Optional[Tuple[int, str]]:
    match = MODULE_HEADER_RE.search(line)
    if not match:
        return None
    return int(match.group(1)), match.group(2)


def match_pin(line: str) -> Optional[Pin]:
    match = PIN_RE.search(line)
    if not match:
        return None
    cell_number = int(match.group(2))
    return Pin(
        pin=f"A{match.group(1)}",
        cell=f"{cell_number}S",
        cell_number=cell_number,
        raw=int(match.group(3)),
        voltage=float(match.group(4)),
    )


def split_lines(text: str) -> List[str]:
    return [line.strip() for line in text.strip().splitlines() if line.strip()]


class RecordParser:
    """Convert one framed record into a :class:`RawRecord`."""

    def parse(self, text: str, timestamp: Optional[datetime] = None) -> RawRecord:
        record = RawRecord(timestamp=timestamp or datetime.now())
        lines = split_lines(text)

        for line in lines:
            total = match_total_voltage(line)
            if total is not None:
                record.cell_count, record.total_voltage = total
                break

        for line in lines:
            cell = match_individual_cell(line)
            if cell is not None:
                number, voltage = cell
                record.individual[number] = voltage

        record.modules, cumulative = self._parse_modules(lines)
        record.cumulative = _dedupe_sorted(cumulative)
        return record

    def _parse_modules(self, lines: List[str]) -> Tuple[List[Module], List[CumulativeCell]]:
        modules: List[Module] = []
        cumulative: List[CumulativeCell] = []
        current: Optional[Tuple[int, str]] = None
        pins: List[Pin] = []
        for line in lines:
            header = match_module_header(line)
            if header is not None:
                if current is not None:
                    modules.append(Module(id=current[0], address=current[1], pins=tuple(pins)))
                current = header
                pins = []
                continue
            pin = match_pin(line)
            if pin is None:
                continue
            if current is None:
                logger.debug("Ignoring pin line outside a module: %s", line)
                continue
            pins.append(pin)
            cumulative.append(
                CumulativeCell(
                    number=pin.cell_number,
                    voltage=pin.voltage,
                    raw=pin.raw,
                    module=current[0],
                    pin=pin.pin,
                )
            )
        if current is not None:
            modules.append(Module(id=current[0], address=current[1], pins=tuple(pins)))
        return modules, cumulative


def _dedupe_sorted(cells: List[CumulativeCell]) -> List[CumulativeCell]:
    by_number: Dict[int, CumulativeCell] = {}
    for cell in cells:
        if cell.number in by_number:
            logger.debug("Cell %d reported by more than one pin; keeping %s", cell.number, cell.pin)
        by_number[cell.number] = cell
    return sorted(by_number.values(), key=lambda cell: cell.number)


def parse_reading(
    text: str,
    thresholds: Optional[CellThresholds] = None,
    timestamp: Optional[datetime] = None,
) -> Reading:
    """Parse and reconcile a record in one step."""
    return reconcile(RecordParser().parse(text, timestamp), thresholds)
