"""Command line interface for the vault orchestrator.

Every command builds its settings from the environment, with the
``--vault``, ``--projects`` and ``--claude`` options taking precedence, and
runs its async implementation with ``asyncio.run``.
"""

import asyncio
import functools
import getpass
import logging
import signal
import sys
from typing import Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from vault_orchestra import __version__
from vault_orchestra.config import OrchestraSettings
from vault_orchestra.exceptions import ConfigurationError
from vault_orchestra.orchestrator import Orchestrator, render_queue, render_task
from vault_orchestra.utils import find_claude_executable

console = Console()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def load_settings(vault: Optional[str], projects: Optional[str], claude: Optional[str]) -> OrchestraSettings:
    try:
        settings = OrchestraSettings.from_env(
            vault_path=vault,
            code_projects_path=projects,
            claude_code_path=claude,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    setup_logging(settings.log_level)
    return settings


def settings_options(command: Callable) -> Callable:
    """Attach the shared path options and resolve them into settings."""

    @click.option('--claude', default=None, help='Claude Code executable (env: CLAUDE_CODE_PATH)')
    @click.option('--projects', default=None, help='Default working directory (env: CODE_PROJECTS_PATH)')
    @click.option('--vault', default=None, help='Obsidian vault root (env: OBSIDIAN_VAULT_PATH)')
    @functools.wraps(command)
    def wrapper(vault: Optional[str], projects: Optional[str], claude: Optional[str], **kwargs):
        return command(load_settings(vault, projects, claude), **kwargs)

    return wrapper


def install_signal_handlers(handler: Callable[[], None]) -> None:
    if sys.platform == 'win32':
        return
    loop = asyncio.get_running_loop()
    for sig in [signal.SIGINT, signal.SIGTERM]:
        loop.add_signal_handler(sig, handler)


@click.group()
@click.version_option(version=__version__, prog_name="vault-orchestra")
def main() -> None:
    """Vault Orchestra - Run Claude Code against tasks kept in an Obsidian vault."""
    pass


@main.command()
@click.option('--auto-run', is_flag=True, help='Start Claude Code when an IN_PROGRESS task is activated')
@settings_options
def watch(settings: OrchestraSettings, auto_run: bool) -> None:
    """Watch the vault and report task changes."""
    try:
        asyncio.run(_watch_async(settings, auto_run))
    except KeyboardInterrupt:
        console.print("\n[yellow]Orchestrator stopped[/yellow]")


async def _watch_async(settings: OrchestraSettings, auto_run: bool) -> None:
    console.print("🎼 [bold cyan]Vault Orchestra[/bold cyan]")
    console.print(f"[dim]Watching {settings.layout.root}[/dim]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    orchestrator = Orchestrator(settings, console=console, auto_run=auto_run)
    stop_requested = asyncio.Event()

    def signal_handler():
        console.print("\n[yellow]Shutting down...[/yellow]")
        stop_requested.set()

    install_signal_handlers(signal_handler)

    try:
        await orchestrator.start()
        await stop_requested.wait()
    finally:
        await orchestrator.shutdown()


@main.command()
@settings_options
def status(settings: OrchestraSettings) -> None:
    """Show the active task."""
    orchestrator = Orchestrator(settings, console=console)
    task = orchestrator.current_task()
    if task is None:
        console.print("[yellow]No active task.[/yellow]")
        return
    console.print(render_task(task))


@main.command()
@settings_options
def queue(settings: OrchestraSettings) -> None:
    """List the tasks waiting in the queue."""
    orchestrator = Orchestrator(settings, console=console)
    tasks = orchestrator.monitor.get_queued_tasks()
    if not tasks:
        console.print("[dim]The queue is empty.[/dim]")
        return
    console.print(render_queue(tasks))


@main.command()
@settings_options
def run(settings: OrchestraSettings) -> None:
    """Run Claude Code against the active task and stream its output."""
    try:
        asyncio.run(_run_async(settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted[/yellow]")


async def _run_async(settings: OrchestraSettings) -> None:
    executable = await find_claude_executable(settings.claude_code_path)
    if executable is None:
        raise click.ClickException(
            f"Claude Code executable not found: {settings.claude_code_path}. "
            "Set CLAUDE_CODE_PATH or pass --claude."
        )
    settings = settings.model_copy(update={'claude_code_path': executable})

    orchestrator = Orchestrator(settings, console=console)
    orchestrator.wire()

    def signal_handler():
        console.print("\n[yellow]Stopping Claude Code...[/yellow]")
        asyncio.ensure_future(orchestrator.process_manager.stop('Interrupted by user'))

    install_signal_handlers(signal_handler)

    try:
        result = await orchestrator.run_active_task()
        if not result.success:
            raise click.ClickException(result.message)
        await orchestrator.session_finished.wait()
    finally:
        await orchestrator.shutdown()


def _require_active_task(orchestrator: Orchestrator):
    task = orchestrator.current_task()
    if task is None:
        raise click.ClickException("No active task.")
    return task


@main.command()
@click.option('--notes', default=None, help='Notes recorded with the approval')
@click.option('--by', 'approver', default=None, help='Approver name (default: current user)')
@settings_options
def approve(settings: OrchestraSettings, notes: Optional[str], approver: Optional[str]) -> None:
    """Approve the active task and move it to completed."""
    orchestrator = Orchestrator(settings, console=console)
    task = _require_active_task(orchestrator)
    result = orchestrator.approval.approve(task, approver or getpass.getuser(), notes)
    if not result.success:
        raise click.ClickException(result.message)
    console.print(f"✅ [green]{result.message}[/green]")


@main.command()
@click.argument('reason')
@click.option('--by', 'rejector', default=None, help='Reviewer name (default: current user)')
@settings_options
def reject(settings: OrchestraSettings, reason: str, rejector: Optional[str]) -> None:
    """Send the active task back to IN_PROGRESS with REASON."""
    orchestrator = Orchestrator(settings, console=console)
    task = _require_active_task(orchestrator)
    result = orchestrator.approval.reject(task, rejector or getpass.getuser(), reason)
    if not result.success:
        raise click.ClickException(result.message)
    console.print(f"🔁 [yellow]{result.message}[/yellow]")


@main.command()
@click.argument('reason')
@click.option('--by', 'blocker', default=None, help='Reporter name (default: current user)')
@settings_options
def block(settings: OrchestraSettings, reason: str, blocker: Optional[str]) -> None:
    """Mark the active task BLOCKED with REASON."""
    orchestrator = Orchestrator(settings, console=console)
    task = _require_active_task(orchestrator)
    result = orchestrator.approval.block(task, blocker or getpass.getuser(), reason)
    if not result.success:
        raise click.ClickException(result.message)
    console.print(f"⛔ [red]{result.message}[/red]")


@main.command()
@click.argument('filename')
@settings_options
def activate(settings: OrchestraSettings, filename: str) -> None:
    """Make FILENAME from the queue the active task."""
    orchestrator = Orchestrator(settings, console=console)
    result = orchestrator.file_mover.activate_from_queue(filename)
    if not result.success:
        raise click.ClickException(result.error or f"Could not activate {filename}")
    console.print(f"🚀 [green]Activated {filename}[/green]")
    task = orchestrator.current_task()
    if task is not None:
        console.print(render_task(task))


if __name__ == "__main__":
    main()
