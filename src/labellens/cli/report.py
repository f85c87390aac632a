"""CLI commands for running catalog reports."""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from labellens.api.schemas import AggregateRowOut, ReportOut
from labellens.config.settings import settings
from labellens.errors import IngestionAbort, LabelLensError
from labellens.services.ingestion import load_candidates_csv
from labellens.services.record_store import BuildResult, RecordStore
from labellens.services.reports import run_report

console = Console()


def format_value(value: Any) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:.2f}"
    return escape(str(value))


def print_failures(failures, limit: int = 20) -> None:
    table = Table(title=f"Rejected records ({len(failures)})")
    table.add_column("#", justify="right")
    table.add_column("record_id", style="cyan")
    table.add_column("kind", style="magenta")
    table.add_column("message", style="red")
    for f in list(failures)[:limit]:
        table.add_row(str(f.index), escape(f.record_id or ""), f.kind, escape(f.message))
    console.print(table)


def write_json(path: Path, payload: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload.model_dump_json(indent=2), encoding="utf-8")
    console.print(f"[green]✓[/green] Wrote {escape(str(path))}")


def load_store(input_path: Path, policy: Optional[str]) -> BuildResult:
    """Read a CSV export and build the record store; exits 1 on unreadable input or a strict-mode rejection."""
    try:
        candidates = load_candidates_csv(input_path)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        console.print(f"[red]✗[/red] Cannot read {escape(str(input_path))}: {escape(str(e))}")
        raise typer.Exit(1)
    try:
        return RecordStore.build(candidates, policy=policy or settings.ingest_policy)
    except IngestionAbort as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        print_failures(e.failures)
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]✗[/red] Error: {escape(str(e))}")
        raise typer.Exit(1)


def report_cmd(
    name: str = typer.Argument(..., help="Report name (see list-reports)"),
    input_path: Path = typer.Option(..., "--input", help="Path to annotation CSV"),
    policy: Optional[str] = typer.Option(None, help="Ingest policy: strict or skip"),
    digits: Optional[int] = typer.Option(None, help="Rounding digits for metric values"),
    json_out: Optional[Path] = typer.Option(None, "--json", help="Also write the report as JSON"),
) -> None:
    """Run a named report over an annotation CSV and print it."""
    built = load_store(input_path, policy)
    if built.failures:
        console.print(f"[yellow]![/yellow] Skipped {len(built.failures)} invalid record(s)")

    try:
        result = run_report(built.store, name, digits=digits)
    except LabelLensError as e:
        console.print(f"[red]✗[/red] Error: {escape(str(e))}")
        raise typer.Exit(1)

    table = Table(title=f"{result.name} (n={len(built.store)})")
    if result.rows:
        first = result.rows[0]
        for dim in first.dimensions:
            table.add_column(dim, style="cyan")
        for metric in first.values:
            table.add_column(metric, style="green", justify="right")
        for row in result.rows:
            table.add_row(
                *[format_value(v) for v in row.key],
                *[format_value(v) for v in row.values.values()],
            )
    console.print(table)

    if json_out is not None:
        payload = ReportOut(
            name=result.name,
            description=result.description,
            record_count=len(built.store),
            generated_at=datetime.now(timezone.utc),
            rows=[AggregateRowOut.from_row(r) for r in result.rows],
        )
        write_json(json_out, payload)


if __name__ == "__main__":
    typer.run(report_cmd)
