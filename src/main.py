"""Entry point for the TokenMeter usage service."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.providers import ProviderError, get_provider
from src.usage.scanner import resolve_projects_dir, scan_windows
from src.usage.summary import build_summary
from src.usage.windows import WindowInfo, windows_from_settings

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_CAPS = {
    "session": settings.session_limit_tokens,
    "weekly": settings.weekly_limit_tokens,
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting TokenMeter API Server", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def _windows_table(windows: dict[str, WindowInfo]) -> Table:
    table = Table(title="Rate limit windows")
    table.add_column("Window")
    table.add_column("Tokens", justify="right")
    table.add_column("% of cap", justify="right")
    table.add_column("Sessions", justify="right")
    table.add_column("Resets in", justify="right")
    for label, info in windows.items():
        cap = _CAPS.get(label, 0)
        pct = f"{info.percent_of(cap):.1f}%" if cap else "-"
        if info.minutes_until_reset is None:
            resets = "-"
        else:
            hours, minutes = divmod(info.minutes_until_reset, 60)
            resets = f"{hours}h {minutes}m"
        table.add_row(
            f"{label} ({info.window_hours}h)",
            f"{info.tokens_used:,}",
            pct,
            str(info.sessions_active),
            resets,
        )
    return table


def run_windows() -> None:
    """Scan local session logs and print the rolling windows."""
    projects_dir = resolve_projects_dir(settings.claude_dir or None)
    with console.status("[bold green]Scanning session logs..."):
        scan = scan_windows(projects_dir, windows_from_settings())
    console.print(_windows_table(scan.windows))
    stats = scan.stats
    console.print(
        f"[dim]{stats.files_scanned} files scanned, {stats.files_stale} stale, "
        f"{stats.lines_rejected} corrupt lines rejected[/dim]"
    )


def run_report() -> None:
    """Run one full refresh and print the summary."""
    provider = get_provider()
    try:
        with console.status(f"[bold green]Fetching usage via {provider.name}..."):
            summary = build_summary(
                provider,
                projects_dir=resolve_projects_dir(settings.claude_dir or None),
                windows=windows_from_settings(),
                fetch_days=settings.fetch_days,
            )
    except ProviderError as e:
        console.print(Panel(str(e), title="Refresh failed", style="bold red"))
        sys.exit(1)

    console.print(Panel(
        f"Today: ${summary.today_cost:.2f} ({summary.today_tokens:,} tokens)\n"
        f"Week:  ${summary.week_cost:.2f}\n"
        f"Month: ${summary.month_cost:.2f}",
        title=f"TokenMeter ({summary.provider})",
        style="bold blue",
    ))

    if summary.today_model_breakdowns:
        models = Table(title="Today by model")
        models.add_column("Model")
        models.add_column("Input", justify="right")
        models.add_column("Output", justify="right")
        models.add_column("Cost", justify="right")
        for m in summary.today_model_breakdowns:
            models.add_row(m.model_name, f"{m.input_tokens:,}", f"{m.output_tokens:,}", f"${m.cost:.2f}")
        console.print(models)

    console.print(_windows_table(summary.rate_limits))
    console.print(f"\n[dim]Last updated {summary.last_updated}[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="TokenMeter - Claude Code usage and rate limits")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")
    sub.add_parser("report", help="Refresh once and print the usage summary")
    sub.add_parser("windows", help="Print rolling windows from local logs only")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "report":
        run_report()
    elif args.command == "windows":
        run_windows()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
