"""Plotting helpers for the cell voltage history."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from .monitor.history import VoltageHistory
from .reporting import export_filename


def plot_history(history: VoltageHistory, output_dir: Path) -> Path:
    """Render the rolling history to a PNG and return its path."""

    frame = history.to_frame()
    if frame.empty:
        raise ValueError("No history to plot. Collect some data first.")
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(11, 5))

    x = range(len(frame))
    for name in history.series_names:
        ax.plot(x, frame[name], linewidth=2, label=name)

    ticks = list(x)
    step = max(1, len(ticks) // 10)
    ax.set_xticks(ticks[::step])
    ax.set_xticklabels(frame["Timestamp"].iloc[::step], rotation=0)
    ax.set_title("Cell voltages")
    ax.set_xlabel("Time")
    ax.set_ylabel("Voltage (V)")
    ax.set_ylim(bottom=0.0)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper left", fontsize="small")

    fig.tight_layout()
    out_path = output_dir / export_filename("chart", "png")
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _require_matplotlib() -> Any:
    home_cache = Path.home() / ".cache" / "fontconfig"
    try:
        home_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError("matplotlib cannot write font cache in this environment") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install bmsmon[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
