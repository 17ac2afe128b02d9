from __future__ import annotations

import logging
import queue
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .config import MonitorConfig
from .connection import SerialConnection, SerialTransport, StateChange
from .events import EventStream
from .framing import RecordFramer
from .history import VoltageHistory
from .models import Reading
from .parser import RecordParser
from .reconcile import present_cells, reconcile, summarize, validate

logger = logging.getLogger(__name__)


def format_timestamp(reading: Reading) -> str:
    return reading.timestamp.strftime("%H:%M:%S")


class MonitorSession:
    """
    One monitoring session: a serial connection feeding the parser, the
    reconciler and the rolling voltage history.

    Sessions hold no global state, so several can coexist (e.g. in tests).
    Finalized readings are published on ``readings``; connection state changes
    are available on ``states``.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        transport: Optional[SerialTransport] = None,
        connection: Optional[SerialConnection] = None,
    ):
        self.config = config or MonitorConfig()
        if connection is None:
            transport = transport or SerialTransport(port=self.config.serial.port)
            connection = SerialConnection(
                transport,
                self.config.serial,
                max_buffer=self.config.buffer_cap,
            )
        self.connection = connection
        self.parser = RecordParser()
        self.history = VoltageHistory(self.config.history_window)
        self.readings: EventStream[Reading] = EventStream("readings")
        self.last_reading: Optional[Reading] = None
        self.reading_count = 0
        self.dropped_records = 0
        self._unsubscribe = self.connection.records.subscribe(self.handle_record)

    @property
    def states(self) -> EventStream[StateChange]:
        return self.connection.states

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def connect(self) -> None:
        self.connection.connect(self.config.serial.baudrate)

    def disconnect(self) -> None:
        self.connection.disconnect()

    def toggle_connection(self) -> None:
        if self.connection.is_connected:
            self.disconnect()
        else:
            self.connect()

    def write(self, data: str) -> None:
        self.connection.write(data)

    def close(self) -> None:
        self.disconnect()
        self._unsubscribe()

    def handle_record(self, text: str) -> Optional[Reading]:
        try:
            reading = reconcile(self.parser.parse(text), self.config.thresholds)
            if not validate(reading):
                self.dropped_records += 1
                logger.warning("Invalid reading received, dropping record")
                return None
            self.last_reading = reading
            self.reading_count += 1
            self._update_history(reading)
        except Exception:
            self.dropped_records += 1
            logger.exception("Error handling record")
            return None
        self.readings.publish(reading)
        return reading

    def _update_history(self, reading: Reading) -> None:
        threshold = self.config.thresholds.present_above
        values = {cell.name: cell.individual_voltage for cell in present_cells(reading.cells, threshold)}
        self.history.update_cells(values, format_timestamp(reading))

    def clear_history(self) -> None:
        self.history.clear()
        logger.info("History cleared")

    def replay(self, chunks: Iterable[str]) -> List[Reading]:
        """Frame and process a captured stream without touching the serial port."""
        framer = RecordFramer(max_buffer=self.config.buffer_cap)
        readings: List[Reading] = []
        for record in framer.iter_records(chunks):
            reading = self.handle_record(record)
            if reading is not None:
                readings.append(reading)
        pending = framer.pending.strip()
        if pending:
            logger.debug("Ignoring %d trailing characters without a separator", len(pending))
        return readings

    def export_current(self, directory: Path, fmt: str = "json") -> Path:
        from ..reporting import export_csv, export_json, write_export

        if self.last_reading is None:
            raise ValueError("No data to export. Connect and receive at least one reading.")
        fmt = fmt.lower()
        content = export_csv(self.last_reading) if fmt == "csv" else export_json(self.last_reading)
        return write_export(directory, "reading", content, "csv" if fmt == "csv" else "json")

    def export_history(self, directory: Path, fmt: str = "json") -> Path:
        from ..reporting import export_history_csv, export_history_json, write_export

        if not self.history.labels:
            raise ValueError("No history to export. Collect some data first.")
        fmt = fmt.lower()
        content = export_history_csv(self.history) if fmt == "csv" else export_history_json(self.history)
        return write_export(directory, "history", content, "csv" if fmt == "csv" else "json")

    def run(
        self,
        commands: Sequence[str] = (),
        on_reading: Optional[Callable[[Reading], None]] = None,
        stop_after: Optional[int] = None,
    ) -> None:
        """Connect and process readings until Ctrl+C (or ``stop_after`` readings)."""
        channel: "queue.Queue[Reading]" = self.readings.listen(self.config.queue_maxsize)
        interval_sec = max(float(self.config.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec
        processed = 0

        def emit_stats() -> None:
            stats = self.connection.stats()
            logger.info(
                "readings=%d records=%d dropped=%d overflows=%d connects=%d",
                self.reading_count,
                stats.get("records", 0),
                self.dropped_records,
                stats.get("overflows", 0),
                stats.get("connects", 0),
            )

        try:
            self.connect()
            for command in commands:
                self.write(command)
            while self.connection.is_connected or not channel.empty():
                try:
                    reading = channel.get(timeout=1.0)
                except queue.Empty:
                    if time.monotonic() >= next_log:
                        emit_stats()
                        next_log = time.monotonic() + interval_sec
                    continue
                processed += 1
                summary = summarize(reading)
                logger.info(
                    "Reading %d: %.3fV (%dS) cells=%d min=%.3f max=%.3f spread=%.3f",
                    self.reading_count,
                    reading.total_voltage,
                    reading.cell_count,
                    summary.count,
                    summary.minimum,
                    summary.maximum,
                    summary.spread,
                )
                if on_reading is not None:
                    on_reading(reading)
                if stop_after is not None and processed >= stop_after:
                    break
                if time.monotonic() >= next_log:
                    emit_stats()
                    next_log = time.monotonic() + interval_sec
        except KeyboardInterrupt:
            logger.info("Stopping monitor (Ctrl+C)")
        finally:
            self.readings.unlisten(channel)
            self.disconnect()
            emit_stats()

