"""CLI command for the cost impact model."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from labellens.api.schemas import CostReportOut, CostSummaryOut
from labellens.cli.report import format_value, load_store, write_json
from labellens.config.settings import settings
from labellens.services.cost import cost_summary, platform_cost_breakdown

console = Console()


def cost_cmd(
    total: Optional[int] = typer.Option(None, help="Total annotation count"),
    errors: Optional[int] = typer.Option(None, help="Erroneous annotation count"),
    input_path: Optional[Path] = typer.Option(None, "--input", help="Annotation CSV for a per-platform breakdown"),
    policy: Optional[str] = typer.Option(None, help="Ingest policy: strict or skip"),
    annotation_unit_cost: Optional[float] = typer.Option(None, help="Cost per annotation"),
    rework_unit_cost: Optional[float] = typer.Option(None, help="Extra cost per reworked annotation"),
    json_out: Optional[Path] = typer.Option(None, "--json", help="Also write the summaries as JSON"),
) -> None:
    """Summarize annotation and rework cost from counts or from a CSV export."""
    unit = settings.annotation_unit_cost if annotation_unit_cost is None else annotation_unit_cost
    rework = settings.rework_unit_cost if rework_unit_cost is None else rework_unit_cost

    if input_path is not None:
        built = load_store(input_path, policy)
        summaries = platform_cost_breakdown(built.store, unit, rework)
    elif total is not None and errors is not None:
        try:
            summaries = {"ALL": cost_summary(total, errors, unit, rework)}
        except ValueError as e:
            console.print(f"[red]✗[/red] Error: {escape(str(e))}")
            raise typer.Exit(1)
    else:
        console.print("[red]✗[/red] Pass --total and --errors, or --input")
        raise typer.Exit(1)

    table = Table(title=f"Cost Summary (unit={unit}, rework={rework})")
    table.add_column("Metric", style="cyan")
    for scope in summaries:
        table.add_column(scope, style="green", justify="right")

    rows = [
        ("annotations", lambda s: str(s.total_count)),
        ("errors", lambda s: str(s.total_error_count)),
        ("annotation_cost", lambda s: format_value(s.annotation_cost)),
        ("rework_cost", lambda s: format_value(s.rework_cost)),
        ("total_cost", lambda s: format_value(s.total_cost)),
        ("rework_pct_of_total", lambda s: format_value(s.rework_pct_of_total)),
        (
            "cost_per_annotation",
            lambda s: "n/a" if s.cost_per_annotation is None else f"{s.cost_per_annotation:.4f}",
        ),
    ]
    for label, render in rows:
        table.add_row(label, *[render(s) for s in summaries.values()])

    console.print(table)

    if json_out is not None:
        payload = CostReportOut(
            annotation_unit_cost=unit,
            rework_unit_cost=rework,
            summaries=[CostSummaryOut.from_summary(scope, s) for scope, s in summaries.items()],
        )
        write_json(json_out, payload)


if __name__ == "__main__":
    typer.run(cost_cmd)
