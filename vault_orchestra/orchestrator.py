"""Composition root wiring the monitor, the executor and the workflow services.

The ``Orchestrator`` owns every long-lived component and all mutable session
state. It is created at startup, subscribes the console renderer to the
component channels, and detaches everything again on shutdown. Command
handlers receive only a ``StreamingControl``, never the orchestrator itself.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from vault_orchestra.config import ACTIVE_PLACEHOLDER, OrchestraSettings
from vault_orchestra.executor.process_manager import BUSY_MESSAGE, ProcessManager
from vault_orchestra.executor.streamer import OutputSink, Streamer
from vault_orchestra.models import ParsedTask, ProcessResult, QueuedTask, TaskDiff
from vault_orchestra.watcher.monitor import VaultMonitor
from vault_orchestra.watcher.parser import parse_task
from vault_orchestra.workflow.approval import ApprovalService
from vault_orchestra.workflow.file_mover import FileMover
from vault_orchestra.workflow.state_machine import TaskStatus, parse_status


logger = logging.getLogger(__name__)

STATUS_COLORS = {
    'IN_PROGRESS': 'cyan',
    'EXECUTING': 'magenta',
    'PENDING_REVIEW': 'yellow',
    'COMPLETED': 'green',
    'BLOCKED': 'red',
}


def status_color(status: str) -> str:
    return STATUS_COLORS.get(status.strip().upper().replace(' ', '_'), 'white')


class ConsoleSink(OutputSink):
    """Prints streamed output to a Rich console."""

    def __init__(self, console: Console):
        self.console = console

    async def deliver(self, text: str) -> None:
        self.console.print(Text(text))


@dataclass
class StreamingControl:
    """The part of the orchestrator command handlers are allowed to use."""
    start_streaming: Callable[[], Awaitable[None]]
    active_sink: Callable[[], Optional[OutputSink]]


async def start_task(
    control: StreamingControl,
    task: Optional[ParsedTask],
    process_manager: ProcessManager,
) -> ProcessResult:
    """Start the CLI for a task with output streaming attached.

    Streaming starts before the process so no early output is lost.
    """
    if task is None:
        return ProcessResult(success=False, message="No active task. Activate a task first.")
    if process_manager.is_busy():
        return ProcessResult(success=False, message=BUSY_MESSAGE)

    await control.start_streaming()
    return await process_manager.start(task)


def render_task(task: ParsedTask) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()

    color = status_color(task.metadata.status)
    table.add_row("Status", f"[{color}]{escape(task.metadata.status)}[/{color}]")
    for label, value in (
        ("Project", task.metadata.project),
        ("Priority", task.metadata.priority),
        ("Trust level", task.metadata.trust_level),
        ("Branch", task.metadata.branch),
        ("Repo path", task.metadata.repo_path),
    ):
        if value:
            table.add_row(label, escape(value))

    if task.acceptance_criteria:
        done = len(task.acceptance_criteria) - len(task.incomplete_criteria)
        table.add_row("Criteria", f"{done}/{len(task.acceptance_criteria)} completed")
        for criterion in task.acceptance_criteria:
            mark = "[green]✓[/green]" if criterion.completed else "[dim]○[/dim]"
            table.add_row("", f"{mark} {escape(criterion.text)}")

    return Panel(table, title=f"[bold cyan]{escape(task.id)}[/bold cyan] {escape(task.title)}", expand=False)


def render_queue(tasks: List[QueuedTask]) -> Table:
    table = Table(title="Queued tasks")
    table.add_column("File", style="cyan")
    table.add_column("Title")
    table.add_column("Project")
    table.add_column("Priority")
    for task in tasks:
        table.add_row(task.filename, task.title, task.project, task.priority)
    return table


class Orchestrator:
    """Owns the components of one orchestrator process."""

    def __init__(
        self,
        settings: OrchestraSettings,
        console: Optional[Console] = None,
        sink: Optional[OutputSink] = None,
        auto_run: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Validated runtime settings.
            console: Console for status output.
            sink: Destination of streamed CLI output (defaults to the console).
            auto_run: Start the CLI whenever an IN_PROGRESS task is activated.
        """
        self.settings = settings
        self.console = console or Console()
        self.sink = sink or ConsoleSink(self.console)
        self.auto_run = auto_run

        layout = settings.layout
        self.monitor = VaultMonitor(
            layout,
            stability_threshold=settings.stability_threshold_ms / 1000,
            use_polling=settings.use_polling,
        )
        self.process_manager = ProcessManager(settings)
        self.file_mover = FileMover(layout)
        self.approval = ApprovalService(self.file_mover, is_busy=self.process_manager.is_busy)

        self.streamer: Optional[Streamer] = None
        self.session_finished = asyncio.Event()
        self._session_start: Optional[float] = None
        self._unsubscribers: List[Callable[[], None]] = []

        self.control = StreamingControl(
            start_streaming=self.start_streaming,
            active_sink=lambda: self.sink if self.streamer else None,
        )

    def current_task(self) -> Optional[ParsedTask]:
        """Last task seen by the monitor, or a fresh parse of the active file.

        Returns None while the active file is missing or holds the placeholder.
        """
        task = self.monitor.get_current_task()
        if task is None:
            content = self.file_mover.read_active_file()
            task = parse_task(content) if content.strip() else None
        if task is None or task.raw_content == ACTIVE_PLACEHOLDER:
            return None
        return task

    def wire(self) -> None:
        if self._unsubscribers:
            return
        monitor = self.monitor
        manager = self.process_manager
        self._unsubscribers = [
            monitor.task_activated.subscribe(self._on_task_activated),
            monitor.task_updated.subscribe(self._on_task_updated),
            monitor.task_queued.subscribe(self._on_task_queued),
            monitor.task_completed.subscribe(self._on_task_completed),
            monitor.task_blocked.subscribe(self._on_task_blocked),
            monitor.error.subscribe(self._on_error),
            manager.started.subscribe(self._on_started),
            manager.output.subscribe(self._on_output),
            manager.completed.subscribe(self._on_completed),
            manager.stopped.subscribe(self._on_stopped),
            manager.error.subscribe(self._on_error),
        ]

    def unwire(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def start(self) -> None:
        self.wire()
        await self.monitor.start()

    async def shutdown(self) -> None:
        """Stop streaming, the CLI and the monitor, in that order."""
        logger.info("Shutting down orchestrator")
        if self.streamer is not None:
            await self.streamer.stop()
        if self.process_manager.is_running():
            await self.process_manager.stop('Shutdown')
        await self.process_manager.stopped.drain()
        await self.process_manager.completed.drain()
        await self._finish_session(None)
        if self.monitor.is_watching:
            await self.monitor.stop()
        self.unwire()

    async def start_streaming(self) -> None:
        """Replace any running streamer with a fresh session."""
        if self.streamer is not None:
            await self.streamer.stop()

        self.streamer = Streamer(
            self.sink,
            flush_interval=self.settings.flush_interval_ms / 1000,
            max_buffer_size=self.settings.max_buffer_size,
        )
        self.session_finished.clear()
        self._session_start = time.monotonic()
        await self.streamer.start()

    async def run_active_task(self) -> ProcessResult:
        result = await start_task(self.control, self.current_task(), self.process_manager)
        if not result.success and self.streamer is not None:
            await self.streamer.stop()
            self.streamer = None
        return result

    async def _finish_session(self, exit_code: Optional[int]) -> None:
        streamer, self.streamer = self.streamer, None
        if streamer is not None:
            await streamer.stop()
            duration = time.monotonic() - (self._session_start or time.monotonic())
            await streamer.send_summary(exit_code, duration, ''.join(self.process_manager.get_output()))
        self.session_finished.set()

    async def _on_task_activated(self, task: ParsedTask) -> None:
        self.console.print("🚀 [bold cyan]Task activated[/bold cyan]")
        self.console.print(render_task(task))

        if self.auto_run and parse_status(task.metadata.status) == TaskStatus.IN_PROGRESS:
            result = await self.run_active_task()
            if not result.success:
                self.console.print(f"[yellow]{escape(result.message)}[/yellow]")

    def _on_task_updated(self, task: ParsedTask, diff: TaskDiff) -> None:
        self.console.print(f"📝 [cyan]Task updated:[/cyan] {escape(task.id)} {escape(task.title)}")
        if diff.status_changed:
            color = status_color(diff.new_status or '')
            self.console.print(f"   Status: {escape(diff.old_status or '')} → [{color}]{escape(diff.new_status or '')}[/{color}]")
        for change in diff.changed_criteria:
            mark = "[green]✓[/green]" if change.new_completed else "[yellow]○[/yellow]"
            self.console.print(f"   {mark} {escape(change.text)}")
        for entry in diff.new_log_entries:
            self.console.print(f"   [dim]{escape(entry)}[/dim]")

    def _on_task_queued(self, task: QueuedTask) -> None:
        details = ", ".join(escape(value) for value in (task.project, task.priority) if value)
        suffix = f" [dim]({details})[/dim]" if details else ''
        self.console.print(f"📥 [blue]Task queued:[/blue] {escape(task.title)}{suffix}")

    def _on_task_completed(self, filename: str, title: str) -> None:
        self.console.print(f"✅ [green]Task completed:[/green] {escape(title)} [dim]{escape(filename)}[/dim]")

    def _on_task_blocked(self, filename: str, title: str) -> None:
        self.console.print(f"⛔ [red]Task blocked:[/red] {escape(title)} [dim]{escape(filename)}[/dim]")

    def _on_error(self, error: Exception) -> None:
        self.console.print(f"[red]Error: {escape(str(error))}[/red]")

    def _on_started(self) -> None:
        state = self.process_manager.get_state()
        self.console.print(f"⚙️  [magenta]Claude Code started[/magenta] for {state.task_id} [dim](pid {state.pid})[/dim]")

    def _on_output(self, chunk: str) -> None:
        if self.streamer is not None:
            self.streamer.append(chunk)

    async def _on_completed(self, exit_code: Optional[int]) -> None:
        await self._finish_session(exit_code)

    async def _on_stopped(self, reason: Optional[str]) -> None:
        if reason:
            self.console.print(f"⏹️  [yellow]Claude Code stopped:[/yellow] {escape(reason)}")
        await self._finish_session(None)
