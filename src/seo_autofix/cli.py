"""Command-line interface for SEO Autofix.

Usage:
    seo-autofix run [ISSUE_ID ...] [--limit N]
    seo-autofix rollback <fix_id>
    seo-autofix stats
"""

import argparse
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from .config import configure_logging
from .fixer import FixOrchestrator
from .reporting import print_rollback_result, print_run_report

console = Console()


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="seo-autofix",
        description="SEO Autofix - generate, review and apply fixes for detected SEO issues",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the fix pipeline")
    run_parser.add_argument(
        "issue_ids", nargs="*", type=int,
        help="Issues to fix (default: open auto-fixable issues by priority)"
    )
    run_parser.add_argument(
        "--limit", "-l", type=int, default=None,
        help="Maximum open issues to pick when no IDs are given"
    )

    # rollback command
    rollback_parser = subparsers.add_parser("rollback", help="Roll back an applied fix")
    rollback_parser.add_argument("fix_id", type=int, help="Fix record ID")

    # stats command
    subparsers.add_parser("stats", help="Show fix statistics")

    return parser


def cmd_run(args):
    """Handle run command."""
    orchestrator = FixOrchestrator.from_settings()
    issue_ids = args.issue_ids or orchestrator.pending_issue_ids(args.limit)

    if not issue_ids:
        console.print("[dim]No open issues to fix[/dim]")
        return

    report = orchestrator.run_pipeline(issue_ids)
    print_run_report(report, console)


def cmd_rollback(args):
    """Handle rollback command."""
    orchestrator = FixOrchestrator.from_settings()
    result = orchestrator.rollback(args.fix_id)
    print_rollback_result(result, console)
    if not result.success:
        sys.exit(1)


def cmd_stats(args):
    """Handle stats command."""
    stats = FixOrchestrator.from_settings().fix_stats()

    table = Table(title="Fix Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")

    table.add_row("Total Fixes", str(stats["total_fixes"]))
    table.add_row("Successful", str(stats["successful_fixes"]))
    table.add_row("Failed", str(stats["failed_fixes"]))
    table.add_row("Rollback Available", str(stats["rollback_available"]))
    table.add_row("Rolled Back", str(stats["rolled_back"]))
    table.add_row("Success Rate", f"{stats['success_rate']}%")

    console.print(table)


def main(argv: Optional[list[str]] = None):
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)

    commands = {
        "run": cmd_run,
        "rollback": cmd_rollback,
        "stats": cmd_stats,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        cmd_func(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
