from __future__ import annotations

import codecs
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

try:
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - reported through SerialTransport.is_available
    serial = None  # type: ignore[assignment]

from .config import DEFAULT_BUFFER_CAP, SerialSettings
from .events import EventStream
from .framing import RecordFramer

_PARITY = {"none": "N", "even": "E", "odd": "O", "mark": "M", "space": "S"}


class MonitorError(Exception):
    """Base class for connection lifecycle errors."""


class TransportUnsupported(MonitorError):
    pass


class AcquisitionFailed(MonitorError):
    pass


class ReadFailure(MonitorError):
    pass


class ExpectedTeardownError(MonitorError):
    pass


class CleanupStepFailure(MonitorError):
    def __init__(self, step: str, error: BaseException):
        super().__init__(f"{step} failed: {error}")
        self.step = step
        self.error = error


class WriteRejected(MonitorError):
    pass


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class StateChange:
    state: ConnectionState
    message: str = ""


class HandleReader:
    """Text reader bound to an open handle; ``None`` marks end of stream."""

    def __init__(self, handle: "SerialHandle", port: Any, encoding: str = "utf-8"):
        self._handle = handle
        self._port = port
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._cancelled = threading.Event()

    def read(self) -> Optional[str]:
        if self._cancelled.is_set():
            return None
        data = self._port.read(self._port.in_waiting or 1)
        if not data:
            return None
        return self._decoder.decode(data)

    def cancel(self) -> None:
        self._cancelled.set()
        try:
            cancel_read = getattr(self._port, "cancel_read", None)
            if cancel_read is not None:
                cancel_read()
        finally:
            self._handle._release(self)


class HandleWriter:
    def __init__(self, handle: "SerialHandle", port: Any):
        self._handle = handle
        self._port = port
        self._closed = False

    def write(self, data: bytes) -> int:
        if self._closed:
            raise RuntimeError("writer is closed")
        written = self._port.write(data)
        self._port.flush()
        return written

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._port.flush()
        finally:
            self._handle._release(self)


class SerialHandle:
    """
    A selected serial device. At most one reader and one writer may be bound
    to it at a time; cancelling the reader or closing the writer releases it.
    """

    def __init__(self, port: str):
        self.port = port
        self._serial: Any = None
        self._reader: Optional[HandleReader] = None
        self._writer: Optional[HandleWriter] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._serial is not None

    def open(
        self,
        baudrate: int,
        data_bits: int = 8,
        stop_bits: int = 1,
        parity: str = "none",
        flow_control: str = "none",
    ) -> None:
        if serial is None:
            raise TransportUnsupported("pyserial is required but not installed")
        if self._serial is not None:
            raise RuntimeError(f"{self.port} is already open")
        self._serial = serial.Serial(
            port=self.port,
            baudrate=baudrate,
            bytesize=data_bits,
            stopbits=stop_bits,
            parity=_PARITY[parity],
            rtscts=flow_control == "hardware",
            xonxoff=flow_control == "software",
            timeout=None,
        )

    def get_reader(self) -> HandleReader:
        with self._lock:
            if self._serial is None:
                raise RuntimeError(f"{self.port} is not open")
            if self._reader is not None:
                raise RuntimeError(f"{self.port} already has a reader bound")
            self._reader = HandleReader(self, self._serial)
            return self._reader

    def get_writer(self) -> HandleWriter:
        with self._lock:
            if self._serial is None:
                raise RuntimeError(f"{self.port} is not open")
            if self._writer is not None:
                raise RuntimeError(f"{self.port} already has a writer bound")
            self._writer = HandleWriter(self, self._serial)
            return self._writer

    def _release(self, owner: object) -> None:
        with self._lock:
            if self._reader is owner:
                self._reader = None
            if self._writer is owner:
                self._writer = None

    def close(self) -> None:
        port, self._serial = self._serial, None
        if port is not None:
            port.close()


class SerialTransport:
    """pyserial-backed device transport. Port selection is delegated to ``chooser``."""

    def __init__(
        self,
        port: Optional[str] = None,
        chooser: Optional[Callable[[Sequence[Tuple[str, str]]], Optional[str]]] = None,
    ):
        self.port = port
        self.chooser = chooser

    def is_available(self) -> bool:
        return serial is not None

    def describe_ports(self) -> List[Tuple[str, str]]:
        if serial is None:
            return []
        from serial.tools import list_ports  # type: ignore[import]

        return [(info.device, info.description) for info in list_ports.comports()]

    def request_handle(self) -> SerialHandle:
        port = self.port
        if port is None:
            ports = self.describe_ports()
            if self.chooser is not None:
                port = self.chooser(ports)
            elif ports:
                port = ports[0][0]
            if not port:
                raise AcquisitionFailed("No serial port selected")
        return SerialHandle(port)


class SerialConnection:
    """
    Connection lifecycle for one serial instrument.

    ``connect()`` acquires and opens a handle, binds exactly one reader and one
    writer and starts the read loop on a daemon thread. Complete records are
    published on ``records`` in arrival order; every state transition is
    published on ``states``. ``disconnect()`` is idempotent and always ends in
    ``idle``; each teardown step is attempted even when an earlier one fails.
    """

    def __init__(
        self,
        transport: SerialTransport,
        settings: Optional[SerialSettings] = None,
        max_buffer: int = DEFAULT_BUFFER_CAP,
        join_timeout: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.settings = settings or SerialSettings()
        self.framer = RecordFramer(max_buffer=max_buffer)
        self.records: EventStream[str] = EventStream("records")
        self.states: EventStream[StateChange] = EventStream("states")
        self.last_exception: Optional[Exception] = None
        self.cleanup_failures: List[CleanupStepFailure] = []
        self._join_timeout = join_timeout
        self._sleep = sleep
        self._state = ConnectionState.IDLE
        self._lock = threading.RLock()
        self._disconnecting = threading.Event()
        self._handle: Optional[SerialHandle] = None
        self._reader: Optional[HandleReader] = None
        self._writer: Optional[HandleWriter] = None
        self._thread: Optional[threading.Thread] = None
        self._connects = 0
        self._teardowns = 0
        self._log = logging.getLogger(__name__)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def connect(self, baudrate: Optional[int] = None) -> None:
        if not self.transport.is_available():
            message = "Serial transport not available (pyserial missing)"
            self.states.publish(StateChange(ConnectionState.ERROR, message))
            raise TransportUnsupported(message)

        with self._lock:
            if self._disconnecting.is_set():
                self._log.info("Still disconnecting, ignoring connect request")
                return
            if self._state is ConnectionState.CONNECTING:
                self._log.info("Connect already in progress")
                return
            if self._handle is not None and self._state is ConnectionState.CONNECTED:
                self._log.info("Already connected to %s", self._handle.port)
                return
            stale = self._handle is not None
            self._state = ConnectionState.CONNECTING
            self._publish(ConnectionState.CONNECTING, "Connecting...")

        if stale:
            self._log.info("Cleaning up previous connection")
            self._cleanup()

        settings = self.settings
        handle: Optional[SerialHandle] = None
        reader: Optional[HandleReader] = None
        writer: Optional[HandleWriter] = None
        try:
            handle = self.transport.request_handle()
            with self._lock:
                self._check_cancelled()
                self._handle = handle
            handle.open(
                baudrate=baudrate or settings.baudrate,
                data_bits=settings.data_bits,
                stop_bits=settings.stop_bits,
                parity=settings.parity,
                flow_control=settings.flow_control,
            )
            reader = handle.get_reader()
            writer = handle.get_writer()
            with self._lock:
                self._check_cancelled()
                if self._handle is not handle:
                    raise AcquisitionFailed(f"{handle.port} was released while opening")
                self._reader = reader
                self._writer = writer
                self.framer.reset()
                self._state = ConnectionState.CONNECTED
                thread = threading.Thread(
                    target=self._read_loop, args=(reader,), name=f"bmsmon-read-{handle.port}", daemon=True
                )
                self._thread = thread
                self._connects += 1
                self._log.info("Serial port %s connected at %d baud", handle.port, baudrate or settings.baudrate)
                self._publish(ConnectionState.CONNECTED, f"Connected to {handle.port}")
                thread.start()
        except Exception as exc:
            self._cleanup(handle, reader, writer)
            with self._lock:
                cancelled = self._disconnecting.is_set()
                if cancelled:
                    self._state = ConnectionState.IDLE
                    self._disconnecting.clear()
                    self._teardowns += 1
                else:
                    self._state = ConnectionState.ERROR
            if cancelled:
                self._log.info("Connect cancelled by disconnect")
                self._publish(ConnectionState.IDLE, "Disconnected from serial port")
            else:
                self._log.error("Connection error: %s", exc)
                self._publish(ConnectionState.ERROR, str(exc))
                self._settle_idle()
            if isinstance(exc, MonitorError):
                raise
            raise AcquisitionFailed(str(exc)) from exc

    def _check_cancelled(self) -> None:
        if self._disconnecting.is_set():
            raise AcquisitionFailed("Connect cancelled by disconnect")

    def disconnect(self) -> None:
        """
        Tear the connection down and settle in ``idle``.

        A connect still in flight is only flagged here; the connecting thread
        owns the half-open handle, releases it at its next checkpoint and
        publishes the final ``idle``.
        """
        with self._lock:
            if self._disconnecting.is_set():
                self._log.info("Already disconnecting")
                return
            if self._state is ConnectionState.CONNECTING:
                self._disconnecting.set()
                self._state = ConnectionState.DISCONNECTING
                self._publish(ConnectionState.DISCONNECTING, "Disconnecting...")
                action = "cancel"
            elif self._handle is None:
                self._state = ConnectionState.IDLE
                action = "idle"
            else:
                self._disconnecting.set()
                self._state = ConnectionState.DISCONNECTING
                self._publish(ConnectionState.DISCONNECTING, "Disconnecting...")
                action = "teardown"
        if action == "idle":
            self._log.info("Not connected")
            self._publish(ConnectionState.IDLE, "Disconnected")
            return
        if action == "cancel":
            self._log.info("Cancelling connect in progress")
            return
        self._log.info("Starting disconnection")
        self._finish_teardown(ConnectionState.IDLE, "Disconnected from serial port")

    def write(self, data: str) -> None:
        writer = self._writer
        if writer is None or self._disconnecting.is_set() or self._state is not ConnectionState.CONNECTED:
            raise WriteRejected("Cannot write, port is not connected")
        self._log.debug("Sending: %s", data)
        try:
            writer.write((data + "\r\n").encode("utf-8"))
        except Exception as exc:
            if self._disconnecting.is_set():
                self._log.debug("Write interrupted by disconnect: %s", exc)
                return
            self._log.error("Write error: %s", exc)
            raise

    def stats(self) -> Dict[str, int]:
        stats = self.framer.stats()
        stats["connects"] = self._connects
        stats["teardowns"] = self._teardowns
        stats["dropped_records"] = self.records.dropped
        return stats

    def _read_loop(self, reader: HandleReader) -> None:
        try:
            while self._state is ConnectionState.CONNECTED and not self._disconnecting.is_set():
                payload = reader.read()
                if payload is None:
                    if not self._disconnecting.is_set():
                        self._log.info("Stream closed by device")
                    break
                if not payload:
                    continue
                for record in self.framer.feed(payload):
                    self.records.publish(record)
        except Exception as exc:
            if self._disconnecting.is_set():
                self.last_exception = ExpectedTeardownError(str(exc))
                self._log.debug("Read interrupted by disconnect: %s", exc)
                return
            failure = ReadFailure(f"Read error: {exc}")
            failure.__cause__ = exc
            self.last_exception = failure
            self._log.error("Error in read loop: %s", exc)
            self._self_teardown(ConnectionState.ERROR, str(failure))
            return
        self._self_teardown(ConnectionState.IDLE, "Stream closed by device")

    def _self_teardown(self, final_state: ConnectionState, message: str) -> None:
        with self._lock:
            if self._disconnecting.is_set() or self._state is not ConnectionState.CONNECTED:
                return
            self._disconnecting.set()
            self._state = ConnectionState.DISCONNECTING
        self._publish(ConnectionState.DISCONNECTING, "Disconnecting...")
        self._finish_teardown(final_state, message)

    def _finish_teardown(self, final_state: ConnectionState, message: str) -> None:
        try:
            self._cleanup()
        finally:
            with self._lock:
                self._state = final_state
                self._disconnecting.clear()
                self._teardowns += 1
            self._publish(final_state, message)
        if final_state is ConnectionState.ERROR:
            self._settle_idle()

    def _settle_idle(self) -> None:
        with self._lock:
            if self._state is not ConnectionState.ERROR:
                return
            self._state = ConnectionState.IDLE
        self._publish(ConnectionState.IDLE, "Disconnected")

    def _cleanup(
        self,
        handle: Optional[SerialHandle] = None,
        reader: Optional[HandleReader] = None,
        writer: Optional[HandleWriter] = None,
    ) -> List[CleanupStepFailure]:
        """Release everything owned by the connection plus any unadopted resources passed in."""
        self._log.debug("Starting connection cleanup")
        with self._lock:
            handle = self._handle or handle
            reader = self._reader or reader
            writer = self._writer or writer
            thread = self._thread
            self._handle = self._reader = self._writer = self._thread = None
        failures: List[CleanupStepFailure] = []
        if reader is not None:
            self._safe_step("cancel reader", reader.cancel, failures)
        if writer is not None:
            self._safe_step("close writer", writer.close, failures)
        if thread is not None and thread is not threading.current_thread():
            self._safe_step("join read loop", lambda: self._join(thread), failures)
        if handle is not None:
            self._safe_step("close port", handle.close, failures)
            self._sleep(self.settings.settle_delay_sec)
        self.framer.reset()
        self.cleanup_failures = failures
        self._log.info("Cleanup completed, port released")
        return failures

    def _join(self, thread: threading.Thread) -> None:
        if thread.ident is None:
            return
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            raise TimeoutError(f"read loop still running after {self._join_timeout:.1f}s")

    def _safe_step(self, name: str, step: Callable[[], Any], failures: List[CleanupStepFailure]) -> None:
        try:
            step()
        except Exception as exc:
            failure = CleanupStepFailure(name, exc)
            failures.append(failure)
            self._log.warning("%s", failure)

    def _publish(self, state: ConnectionState, message: str) -> None:
        self._log.debug("Connection state -> %s (%s)", state.value, message)
        self.states.publish(StateChange(state, message))
