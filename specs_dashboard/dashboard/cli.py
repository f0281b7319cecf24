"""Dashboard CLI entry point.

``specs-dashboard start`` detects the workspace flow and either runs the
interactive Rich dashboard or, with ``--no-watch``, prints one static
rendering and exits.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from .. import __version__
from ..exceptions import InvalidFlowError, NoFlowDetectedError
from .approval import get_current_bolt, get_current_spec
from .config import DEFAULT_REFRESH_MS, DashboardConfig, parse_refresh_ms, resolve_icon_set
from .detect import FLOW_MARKERS, SUPPORTED_FLOWS, detect_flow
from .parser import WorkspaceParser
from .terminal import TerminalDashboard
from .tui.layout import build_frame
from .tui.renderer import render_text

console = Console()
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

STATIC_ROWS = 60


def configure_logging(log_file: Optional[str], debug: bool, interactive: bool) -> None:
    """Set up logging once per process.

    The interactive dashboard owns the terminal, so records only go to a
    file there. Static mode falls back to stderr.
    """
    level = logging.DEBUG if debug else logging.WARNING
    if log_file:
        logging.basicConfig(filename=log_file, level=level, format=LOG_FORMAT)
    elif not interactive:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        logging.getLogger("specs_dashboard").setLevel(level)


def build_static_output(dashboard: TerminalDashboard, columns: int, rows: int = STATIC_ROWS) -> str:
    """Render the dashboard once as plain text.

    FIRE gets the full runs view. AIDLC and Simple get a three-line summary,
    or the error as ``[code] message``.
    """
    if dashboard.flow == "fire":
        return render_text(build_frame(dashboard.build_context(columns, rows)))

    if dashboard.error is not None:
        return f"[{dashboard.error.code}] {dashboard.error.message}"

    snapshot = dashboard.snapshot
    stats = snapshot.stats
    if dashboard.flow == "aidlc":
        bolt = get_current_bolt(snapshot)
        if bolt is not None:
            current = (
                f"current bolt: {bolt.id} ({bolt.current_stage or 'unknown stage'}) "
                f"in {bolt.intent or 'unknown intent'}"
            )
        else:
            current = "current bolt: none"
        return "\n".join([
            f"specs-dashboard | AIDLC | {snapshot.project.name}",
            f"intents {stats.completed_intents}/{stats.total_intents} | "
            f"stories {stats.completed_stories}/{stats.total_stories} | "
            f"bolts {stats.active_bolts_count} active / {stats.completed_bolts} done",
            current,
        ])

    spec = get_current_spec(snapshot)
    if spec is not None:
        current = f"current spec: {spec.name} ({spec.state}) {spec.tasks_completed}/{spec.tasks_total} tasks"
    else:
        current = "current spec: none"
    return "\n".join([
        f"specs-dashboard | SIMPLE | {snapshot.project.name}",
        f"specs {stats.completed_specs}/{stats.total_specs} complete | "
        f"tasks {stats.completed_tasks}/{stats.total_tasks} complete",
        current,
    ])


async def run_dashboard(dashboard: TerminalDashboard) -> None:
    """Run the interactive dashboard until it is stopped."""

    def signal_handler() -> None:
        logger.debug("Received shutdown signal")
        asyncio.ensure_future(dashboard.stop())

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in [signal.SIGINT, signal.SIGTERM]:
            loop.add_signal_handler(sig, signal_handler)

    try:
        await dashboard.start()
    finally:
        await dashboard.stop()


@click.group()
@click.version_option(__version__, prog_name="specs-dashboard")
def main() -> None:
    """Specs Dashboard - live view of FIRE, AIDLC and Simple workflows."""


@main.command()
@click.argument("path", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("--flow", default=None, help=f"Flow to show: {', '.join(SUPPORTED_FLOWS)}. Detected when omitted.")
@click.option("--watch/--no-watch", default=True, show_default=True,
              help="Run the interactive dashboard, or print one static rendering.")
@click.option("--refresh-ms", default=str(DEFAULT_REFRESH_MS), show_default=True,
              help="Refresh interval in milliseconds, clamped to 200-5000.")
@click.option("--icons", type=click.Choice(["auto", "ascii", "nerd"], case_sensitive=False), default=None,
              help="Icon set. Defaults to SPECS_DASHBOARD_ICON_SET, then auto.")
@click.option("--no-git", is_flag=True, help="Skip git change collection.")
@click.option("--worktree", default=None, help="Worktree to show, by id, path, branch or directory name.")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Write logs to this file.")
@click.option("--debug", is_flag=True, help="Log at DEBUG level.")
def start(path: Optional[Path], flow: Optional[str], watch: bool, refresh_ms: str, icons: Optional[str],
          no_git: bool, worktree: Optional[str], log_file: Optional[str], debug: bool) -> None:
    """Start the dashboard for the workspace at PATH (default: current directory)."""
    configure_logging(log_file, debug, interactive=watch)
    workspace = (path or Path.cwd()).resolve()

    try:
        detection = detect_flow(workspace, flow)
    except InvalidFlowError as error:
        click.echo(error.message, err=True)
        sys.exit(1)

    if detection.flow is None:
        error = NoFlowDetectedError(
            f"No supported flow detected. Expected one of: {', '.join(FLOW_MARKERS.values())}"
        )
        click.echo(error.message, err=True)
        sys.exit(1)

    if detection.warning:
        click.echo(f"Warning: {detection.warning}", err=True)

    config = DashboardConfig(
        workspace_path=workspace,
        flow=detection.flow,
        watch=watch,
        refresh_ms=parse_refresh_ms(refresh_ms),
        include_git=not no_git,
        worktree=worktree,
        icons=resolve_icon_set(icons),
    )
    available_flows = detection.available_flows or [detection.flow]
    if detection.flow not in available_flows:
        available_flows = [detection.flow] + list(available_flows)

    dashboard = TerminalDashboard(
        WorkspaceParser(workspace, include_git=config.include_git, worktree_selector=config.worktree),
        config,
        available_flows=available_flows,
        initial_flow=detection.flow,
    )

    if not watch:
        dashboard.refresh()
        click.echo(build_static_output(dashboard, console.size.width))
        sys.exit(1 if dashboard.error is not None else 0)

    try:
        asyncio.run(run_dashboard(dashboard))
    except KeyboardInterrupt:
        console.print("\n[yellow]Dashboard stopped[/yellow]")
    except Exception as error:
        logger.exception("Dashboard crashed")
        console.print(f"[red]Dashboard error: {error}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
