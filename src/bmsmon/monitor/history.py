from __future__ import annotations

import threading
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Tuple

import pandas as pd

from .config import DEFAULT_HISTORY_WINDOW


class VoltageHistory:
    """Rolling window of per-cell voltages keyed by a time label."""

    def __init__(self, max_points: int = DEFAULT_HISTORY_WINDOW):
        if max_points < 1:
            raise ValueError("max_points must be at least 1")
        self._lock = threading.Lock()
        self._rows: Deque[Tuple[str, Dict[str, float]]] = deque(maxlen=max_points)
        self._series: List[str] = []

    @property
    def max_points(self) -> int:
        return self._rows.maxlen or 0

    def set_max_points(self, max_points: int) -> None:
        if max_points < 1:
            raise ValueError("max_points must be at least 1")
        with self._lock:
            self._rows = deque(self._rows, maxlen=max_points)

    def update_cells(self, values: Mapping[str, float], label: str) -> None:
        with self._lock:
            self._rows.append((label, {name: float(value) for name, value in values.items()}))
            for name in values:
                if name not in self._series:
                    self._series.append(name)

    def add_point(self, name: str, value: float, label: str) -> None:
        """Set one series value; an existing label anywhere in the window is reused."""
        with self._lock:
            for row_label, values in self._rows:
                if row_label == label:
                    values[name] = float(value)
                    break
            else:
                self._rows.append((label, {name: float(value)}))
            if name not in self._series:
                self._series.append(name)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()
            self._series.clear()

    @property
    def labels(self) -> List[str]:
        with self._lock:
            return [label for label, _ in self._rows]

    @property
    def series_names(self) -> List[str]:
        with self._lock:
            return list(self._series)

    def __len__(self) -> int:
        return len(self._rows)

    def export_data(self) -> Dict[str, Any]:
        """Labels plus one dataset per series; gaps are ``None``."""
        with self._lock:
            rows = list(self._rows)
            series = list(self._series)
        return {
            "labels": [label for label, _ in rows],
            "datasets": [
                {"label": name, "data": [values.get(name) for _, values in rows]} for name in series
            ],
        }

    def to_frame(self) -> pd.DataFrame:
        with self._lock:
            rows = list(self._rows)
            series = list(self._series)
        frame = pd.DataFrame(
            [values for _, values in rows],
            columns=series,
            dtype=float,
        )
        frame.insert(0, "Timestamp", [label for label, _ in rows])
        return frame
