from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple


class CellStatus(str, enum.Enum):
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class Pin:
    pin: str
    cell: str
    cell_number: int
    raw: int
    voltage: float


@dataclass(frozen=True)
class Module:
    id: int
    address: str
    pins: Tuple[Pin, ...] = ()


@dataclass(frozen=True)
class IndividualCell:
    """Entry of the direct per-cell section (``Cel <k>: <v>V``)."""

    number: int
    name: str
    voltage: float
    status: CellStatus


@dataclass(frozen=True)
class Cell:
    number: int
    name: str
    cumulative_voltage: float
    individual_voltage: float
    status: CellStatus
    raw: int
    module: int
    pin: str


@dataclass(frozen=True)
class Reading:
    """Finalized battery snapshot built from one record."""

    timestamp: datetime
    cell_count: int
    total_voltage: float
    cells: Tuple[Cell, ...] = ()
    modules: Tuple[Module, ...] = ()
    individual_cells: Tuple[IndividualCell, ...] = ()

    def cell(self, number: int) -> Optional[Cell]:
        for cell in self.cells:
            if cell.number == number:
                return cell
        return None


@dataclass
class CumulativeCell:
    """Pin reading keyed by cell number, before reconciliation."""

    number: int
    voltage: float
    raw: int
    module: int
    pin: str

    @property
    def name(self) -> str:
        return f"{self.number}S"


@dataclass
class RawRecord:
    """Output of the record parser; mutable until reconciled."""

    timestamp: datetime
    cell_count: int = 0
    total_voltage: float = 0.0
    individual: Dict[int, float] = field(default_factory=dict)
    cumulative: List[CumulativeCell] = field(default_factory=list)
    modules: List[Module] = field(default_factory=list)
