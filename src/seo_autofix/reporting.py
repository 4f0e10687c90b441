"""Human-readable rendering of run reports and rollback results."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from .models import RollbackResult, RunReport


def build_run_table(report: RunReport) -> Table:
    table = Table(title=f"Fix Run: {report.run_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Applied", str(report.applied))
    table.add_row("Failed", str(report.failed))
    table.add_row("Rejected", str(report.rejected))
    table.add_row("Revised", str(report.revised))
    table.add_row("Approved After Revision", str(report.revision_approved))
    table.add_row("Dropped", str(report.dropped))
    table.add_row("Consistency Score", f"{report.consistency_score}/100")
    table.add_row("Started", report.started_at.strftime("%Y-%m-%d %H:%M:%S"))
    if report.completed_at:
        table.add_row("Completed", report.completed_at.strftime("%Y-%m-%d %H:%M:%S"))
    if report.message:
        table.add_row("Message", report.message)

    return table


def build_results_table(report: RunReport) -> Table:
    table = Table(title="Applied Fixes")
    table.add_column("Issue", style="cyan")
    table.add_column("Record")
    table.add_column("Status")
    table.add_column("Error")

    for result in report.results:
        table.add_row(
            str(result.issue_id),
            str(result.fix_id) if result.fix_id is not None else "-",
            "[green]fixed[/green]" if result.success else "[red]failed[/red]",
            result.error_message or "",
        )

    return table


def build_errors_table(report: RunReport) -> Table:
    table = Table(title="Errors")
    table.add_column("Issue", style="cyan")
    table.add_column("Stage")
    table.add_column("Code", style="yellow")
    table.add_column("Message")

    for error in report.errors:
        message = error.message[:80] + "..." if len(error.message) > 80 else error.message
        table.add_row(str(error.issue_id), error.stage, error.code.value, message)

    return table


def print_run_report(report: RunReport, console: Optional[Console] = None):
    console = console or Console()
    console.print(build_run_table(report))
    if report.results:
        console.print(build_results_table(report))
    if report.errors:
        console.print(build_errors_table(report))
    if report.consistency and report.consistency.recommendations:
        console.print("\n[bold]Consistency recommendations:[/bold]")
        for recommendation in report.consistency.recommendations:
            console.print(f"  - {recommendation}")


def print_rollback_result(result: RollbackResult, console: Optional[Console] = None):
    console = console or Console()
    if not result.success:
        code = f" ({result.error_code.value})" if result.error_code else ""
        console.print(f"[red]Rollback of fix {result.fix_id} failed{code}: {result.message}[/red]")
        return

    table = Table(title=f"Rollback: fix {result.fix_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Issue", str(result.issue_id))
    table.add_row("Reversal Record", str(result.reversal_fix_id))
    preview = result.restored_value or ""
    table.add_row("Restored Value", preview[:200] + "..." if len(preview) > 200 else preview)
    console.print(table)
