"""Rich terminal output for netbench."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from netbench.models import ResultRow, RunReport, RunState
from netbench.stats import STATUS_FAIL, STATUS_FAILED, STATUS_PARTIAL, STATUS_SUCCESS

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    STATUS_SUCCESS: "green",
    STATUS_PARTIAL: "yellow",
    STATUS_FAIL: "red",
    STATUS_FAILED: "red",
}


def _fmt_metric(value: Optional[float]) -> Text:
    if value is None:
        return Text("-", style="dim")
    return Text(f"{value:,.2f}")


def _status(status: str) -> Text:
    return Text(status, style=STATUS_STYLES.get(status, ""))


def build_results_table(rows: list[ResultRow]) -> Table:
    """One line per result row with its headline statistics."""
    table = Table(
        show_header=True,
        border_style="bright_black",
        expand=False,
        pad_edge=True,
        header_style="bold",
    )
    table.add_column("Test", style="bold")
    table.add_column("Endpoint", overflow="fold", max_width=48)
    table.add_column("Status")
    table.add_column("Samples", justify="right")
    table.add_column("Median", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("P10", justify="right")
    table.add_column("P90", justify="right")
    table.add_column("Rstdev %", justify="right")
    table.add_column("Unit", style="dim")

    for row in rows:
        s = row.summary
        if s is None:
            table.add_row(row.test, row.test_endpoint, _status(row.status), *[Text("-", style="dim")] * 7)
            continue
        table.add_row(
            row.test,
            row.test_endpoint,
            _status(row.status),
            str(s.samples),
            _fmt_metric(s.median),
            _fmt_metric(s.mean),
            _fmt_metric(s.p10),
            _fmt_metric(s.p90),
            _fmt_metric(s.rstdev),
            row.metric_unit or "",
        )
    return table


def render_report(report: RunReport) -> None:
    if not report.rows:
        console.print("[dim]No results.[/dim]")
    else:
        console.print(build_results_table(report.rows))

    summary = f"{report.tests_completed} completed, {report.tests_failed} failed"
    if report.state == RunState.ABORTED:
        console.print(f"[bold red]Run aborted:[/bold red] {summary}")
    else:
        console.print(f"[dim]{summary}[/dim]")


def render_errors(errors: dict[str, str]) -> None:
    """Display configuration validation errors, one per option."""
    table = Table(show_header=True, header_style="bold red", border_style="bright_black", title="Invalid options")
    table.add_column("Option", style="bold")
    table.add_column("Error")
    for name, message in sorted(errors.items()):
        table.add_row(f"--{name}", message)
    err_console.print(table)


def render_error(message: str) -> None:
    """Display an error message."""
    err_console.print(f"[bold red]Error:[/bold red] {message}")


def render_warning(message: str) -> None:
    """Display a warning message."""
    err_console.print(f"[yellow]Warning:[/yellow] {message}")
