"""
Serial battery monitor: record framing, connection lifecycle, parsing and
cell voltage reconciliation.

The subpackage keeps the instrument-facing logic independent from the CLI so
sessions can be driven from tests or other front ends.
"""

from .config import CellThresholds, MonitorConfig, SerialSettings, load_config
from .connection import (
    AcquisitionFailed,
    ConnectionState,
    MonitorError,
    ReadFailure,
    SerialConnection,
    SerialTransport,
    StateChange,
    TransportUnsupported,
    WriteRejected,
)
from .events import EventStream
from .framing import RecordFramer
from .history import VoltageHistory
from .models import Cell, CellStatus, IndividualCell, Module, Pin, Reading
from .parser import RecordParser, parse_reading
from .reconcile import CellSummary, get_cell_status, present_cells, reconcile, summarize, validate
from .runner import MonitorSession

__all__ = [
    "CellThresholds",
    "MonitorConfig",
    "SerialSettings",
    "load_config",
    "AcquisitionFailed",
    "ConnectionState",
    "MonitorError",
    "ReadFailure",
    "SerialConnection",
    "SerialTransport",
    "StateChange",
    "TransportUnsupported",
    "WriteRejected",
    "EventStream",
    "RecordFramer",
    "VoltageHistory",
    "Cell",
    "CellStatus",
    "IndividualCell",
    "Module",
    "Pin",
    "Reading",
    "RecordParser",
    "parse_reading",
    "CellSummary",
    "get_cell_status",
    "present_cells",
    "reconcile",
    "summarize",
    "validate",
    "MonitorSession",
]
