from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Generic, List, TypeVar

T = TypeVar("T")


class EventStream(Generic[T]):
    """
    Fan-out channel for events produced by the monitor.

    Consumers either register a callback or take a bounded queue. Publishing
    never raises on behalf of a consumer: callback errors are logged and a full
    queue drops the event.
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: List[Callable[[T], None]] = []
        self._queues: List["queue.Queue[T]"] = []
        self._lock = threading.Lock()
        self._dropped = 0
        self._log = logging.getLogger(__name__)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def listen(self, maxsize: int = 0) -> "queue.Queue[T]":
        channel: "queue.Queue[T]" = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._queues.append(channel)
        return channel

    def unlisten(self, channel: "queue.Queue[T]") -> None:
        with self._lock:
            if channel in self._queues:
                self._queues.remove(channel)

    def publish(self, event: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
            queues = list(self._queues)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                self._log.exception("Listener on '%s' failed", self.name)
        for channel in queues:
            try:
                channel.put_nowait(event)
            except queue.Full:
                self._dropped += 1
                self._log.warning("Queue on '%s' full (%d), dropping event", self.name, channel.qsize())

    @property
    def dropped(self) -> int:
        return self._dropped
