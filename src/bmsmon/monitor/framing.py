from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List

from .config import DEFAULT_BUFFER_CAP, SEPARATOR


class RecordFramer:
    """
    Streaming splitter turning arbitrary text chunks into complete records.

    Records are delimited by a separator line of 58 ``=`` characters. The
    trailing partial record stays buffered; when the buffer grows beyond
    ``max_buffer`` characters it is discarded wholesale.
    """

    def __init__(self, separator: str = SEPARATOR, max_buffer: int = DEFAULT_BUFFER_CAP):
        if not separator:
            raise ValueError("separator may not be empty")
        self.separator = separator
        self.max_buffer = max_buffer
        self._buffer = ""
        self._stats: Dict[str, int] = {"records": 0, "overflows": 0, "discarded_chars": 0}
        self._log = logging.getLogger(__name__)

    def feed(self, chunk: str) -> List[str]:
        if not chunk:
            return []
        parts = (self._buffer + chunk).split(self.separator)
        records: List[str] = []
        for part in parts[:-1]:
            record = part.strip()
            if record:
                records.append(record)
        self._buffer = parts[-1]
        if len(self._buffer) > self.max_buffer:
            self._stats["overflows"] += 1
            self._stats["discarded_chars"] += len(self._buffer)
            self._log.warning("Record buffer overflow (%d chars), clearing", len(self._buffer))
            self._buffer = ""
        self._stats["records"] += len(records)
        return records

    def iter_records(self, chunks: Iterable[str]) -> Iterator[str]:
        for chunk in chunks:
            yield from self.feed(chunk)

    @property
    def pending(self) -> str:
        return self._buffer

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._buffer = ""


def iterate_text_chunks(handle: Any, chunk_size: int = 4096) -> Iterator[str]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            break
        yield chunk
