"""Command line interface for the bmsmon package."""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import typer

from .monitor.config import load_config
from .monitor.connection import ConnectionState, MonitorError, SerialTransport, StateChange
from .monitor.framing import iterate_text_chunks
from .monitor.models import Reading
from .monitor.reconcile import present_cells, summarize
from .monitor.runner import MonitorSession, format_timestamp
from .reporting import readings_to_frame, reading_to_dict

app = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]})


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )


def _prompt_for_port(ports: Sequence[Tuple[str, str]]) -> Optional[str]:
    if not ports:
        typer.echo("No serial ports found.", err=True)
        return None
    if len(ports) == 1:
        return ports[0][0]
    for index, (device, description) in enumerate(ports, start=1):
        typer.echo(f"  [{index}] {device}  {description}")
    choice = typer.prompt("Select port", default=1, type=int)
    if not 1 <= choice <= len(ports):
        return None
    return ports[choice - 1][0]


def _format_reading(reading: Reading, threshold: float) -> str:
    cells = present_cells(reading.cells, threshold)
    parts = [f"{cell.name} {cell.individual_voltage:.3f}V {cell.status.value}" for cell in cells]
    body = " | ".join(parts) if parts else "no cells detected"
    return f"{format_timestamp(reading)}  {reading.total_voltage:.3f}V ({reading.cell_count}S)  {body}"


def _on_state(change: StateChange) -> None:
    if change.state is ConnectionState.ERROR and change.message:
        typer.echo(f"Error: {change.message}", err=True)
    else:
        typer.echo(f"[{change.state.value}] {change.message}", err=True)


@app.command()
def run(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device. Prompts when omitted."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Serial baudrate (default 115200)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to monitor config JSON."),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override config keys, e.g. --set thresholds.good_max=4.2"
    ),
    send: Optional[List[str]] = typer.Option(None, "--send", help="Command line to send after connecting."),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="Stop after N readings."),
    export_dir: Optional[Path] = typer.Option(None, "--export-dir", help="Write exports here on exit."),
    plot: bool = typer.Option(False, "--plot", help="Also render the history to PNG on exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Connect to the monitor and print readings until Ctrl+C."""

    _configure_logging(verbose)
    overrides = list(override or [])
    if port:
        overrides.append(f"serial.port={port}")
    if baudrate:
        overrides.append(f"serial.baudrate={baudrate}")
    try:
        cfg = load_config(config_path, overrides or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    transport = SerialTransport(port=cfg.serial.port, chooser=_prompt_for_port)
    session = MonitorSession(cfg, transport=transport)
    session.states.subscribe(_on_state)
    threshold = cfg.thresholds.present_above
    try:
        session.run(
            commands=send or (),
            on_reading=lambda reading: typer.echo(_format_reading(reading, threshold)),
            stop_after=count,
        )
    except MonitorError as exc:
        typer.echo(f"Connection failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    target = export_dir or cfg.export_dir
    if target is None:
        return
    if session.last_reading is None:
        typer.echo("No data to export.", err=True)
        return
    for fmt in ("json", "csv"):
        typer.echo(f"Wrote {session.export_current(target, fmt)}")
        typer.echo(f"Wrote {session.export_history(target, fmt)}")
    if plot:
        from .plotting import plot_history

        try:
            typer.echo(f"Wrote {plot_history(session.history, target)}")
        except RuntimeError as exc:
            typer.echo(f"[warning] plotting skipped: {exc}", err=True)


@app.command()
def ports() -> None:
    """List serial ports."""

    transport = SerialTransport()
    if not transport.is_available():
        typer.echo("pyserial is not installed.", err=True)
        raise typer.Exit(code=1)
    found = transport.describe_ports()
    if not found:
        typer.echo("No serial ports found.")
        return
    for device, description in found:
        typer.echo(f"{device}\t{description}")


@app.command()
def parse(
    input_path: Path = typer.Argument(..., help="Captured monitor output. Use '-' for stdin."),
    fmt: str = typer.Option("summary", "--format", "-f", help="Output format: summary|json|csv."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Frame and parse a captured stream."""

    _configure_logging(verbose)
    fmt = fmt.lower()
    if fmt not in {"summary", "json", "csv"}:
        raise typer.BadParameter("--format must be one of summary, json, csv")
    try:
        cfg = load_config(None, override or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    session = MonitorSession(cfg)

    if str(input_path) == "-":
        readings = session.replay(iterate_text_chunks(sys.stdin))
    else:
        if not input_path.exists():
            raise typer.BadParameter(f"{input_path} does not exist")
        with input_path.open("r", encoding="utf-8", errors="replace") as fh:
            readings = session.replay(iterate_text_chunks(fh))

    if fmt == "json":
        typer.echo(json.dumps([reading_to_dict(reading) for reading in readings], indent=2, ensure_ascii=False))
        return
    if fmt == "csv":
        typer.echo(readings_to_frame(readings).to_csv(index=False, lineterminator="\n"), nl=False)
        return
    threshold = cfg.thresholds.present_above
    for reading in readings:
        typer.echo(_format_reading(reading, threshold))
        summary = summarize(reading)
        typer.echo(
            f"  cells={summary.count} avg={summary.average:.3f} min={summary.minimum:.3f} "
            f"max={summary.maximum:.3f} spread={summary.spread:.3f}"
        )
    typer.echo(f"{len(readings)} readings, {session.dropped_records} dropped")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
