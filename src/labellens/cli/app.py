from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from labellens.api.schemas import ValidationFailureOut, ValidationReportOut
from labellens.cli.cost import cost_cmd
from labellens.cli.report import load_store, print_failures, report_cmd, write_json
from labellens.config.settings import settings
from labellens.services.reports import list_reports

app = typer.Typer(help="LabelLens CLI (validate annotation exports, run reports, cost impact).")
console = Console()


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (default from settings)"),
) -> None:
    level = (log_level or settings.log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command("list-reports")
def list_reports_cmd() -> None:
    """List the named reports in the catalog."""
    table = Table(title="Reports")
    table.add_column("Name", style="cyan")
    table.add_column("Description", style="green")
    for name, description in list_reports():
        table.add_row(name, description)
    console.print(table)


@app.command("validate")
def validate_cmd(
    input_path: Path = typer.Option(..., "--input", help="Path to annotation CSV"),
    policy: Optional[str] = typer.Option(None, help="Ingest policy: strict or skip"),
    json_out: Optional[Path] = typer.Option(None, "--json", help="Also write accepted/rejected counts and failures as JSON"),
) -> None:
    """Validate an annotation CSV against the record invariants."""
    policy = policy or settings.ingest_policy
    built = load_store(input_path, policy)
    console.print(f"[green]✓[/green] Accepted {len(built.store)} record(s)")
    if built.failures:
        console.print(f"[yellow]![/yellow] Rejected {len(built.failures)} record(s)")
        print_failures(built.failures)

    if json_out is not None:
        payload = ValidationReportOut(
            source=str(input_path),
            policy=policy,
            accepted=len(built.store),
            rejected=len(built.failures),
            failures=[ValidationFailureOut.from_failure(f) for f in built.failures],
        )
        write_json(json_out, payload)


app.command("report")(report_cmd)
app.command("cost")(cost_cmd)


if __name__ == "__main__":
    app()
