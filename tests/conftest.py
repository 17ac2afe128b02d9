from __future__ import annotations

import queue
import threading
from typing import List, Optional

import pytest

SEPARATOR = "=" * 58

SAMPLE_RECORD = """\
BATERIA TOTAL (2S): 7.95V
Cel 1: 3.96V
Cel 2: 3.99V
Módulo 1 (0x48):
  A0 (1S): RAW=22645  Tensão=3.963V
  A1 (2S): RAW=22723  Tensão=7.953V
"""


class FakePort:
    """Blocking stand-in for ``serial.Serial``; ``b""`` ends a pending read."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.in_waiting = 0
        self.written: List[bytes] = []
        self.closed = False
        self._chunks: "queue.Queue[object]" = queue.Queue()

    def feed(self, data: bytes) -> None:
        self._chunks.put(data)

    def fail(self, exc: Exception) -> None:
        self._chunks.put(exc)

    def read(self, size: int = 1) -> bytes:
        item = self._chunks.get(timeout=5.0)
        if isinstance(item, Exception):
            raise item
        return item  # type: ignore[return-value]

    def cancel_read(self) -> None:
        self._chunks.put(b"")

    def write(self, data: bytes) -> int:
        self.written.append(data)
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
        self._chunks.put(b"")


class FakeSerialModule:
    def __init__(self, initial: Optional[List[bytes]] = None, error: Optional[Exception] = None):
        self.ports: List[FakePort] = []
        self.initial = list(initial or [])
        self.error = error
        self.SerialException = OSError
        self.gate: Optional[threading.Event] = None
        self.opening = threading.Event()

    def Serial(self, **kwargs) -> FakePort:
        self.opening.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if self.error is not None:
            raise self.error
        port = FakePort(**kwargs)
        for chunk in self.initial:
            port.feed(chunk)
        self.ports.append(port)
        return port


@pytest.fixture
def sample_record() -> str:
    return SAMPLE_RECORD


@pytest.fixture
def fake_serial(monkeypatch) -> FakeSerialModule:
    module = FakeSerialModule()
    monkeypatch.setattr("bmsmon.monitor.connection.serial", module)
    return module
