"""File system monitoring of the task vault.

This module watches the ``_orchestra`` directory with the watchdog library and
turns file changes into task lifecycle events:

- changes to ``ACTIVE.md`` become ``task_activated`` or ``task_updated``
- new documents in ``queue/`` become ``task_queued``
- new documents in ``completed/`` and ``blocked/`` become ``task_completed``
  and ``task_blocked``

Watchdog delivers notifications on its observer thread. They are handed to the
event loop, debounced per path until writes pause for the stability window,
and processed one at a time by a single worker so every change is diffed
against the snapshot left by the previous one.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from vault_orchestra.config import ACTIVE_PLACEHOLDER, VaultLayout
from vault_orchestra.events import EventChannel
from vault_orchestra.models import ParsedTask, QueuedTask, TaskDiff
from vault_orchestra.watcher.differ import diff_tasks, has_meaningful_changes
from vault_orchestra.watcher.parser import parse_task, read_task


logger = logging.getLogger(__name__)

TASK_SUFFIX = '.md'


def normalize(path: Union[str, Path]) -> Path:
    return Path(os.path.normpath(os.path.abspath(path)))


class VaultEventHandler(FileSystemEventHandler):
    """Forwards file notifications from the observer thread to the monitor."""

    def __init__(self, monitor: 'VaultMonitor'):
        self.monitor = monitor

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self.monitor.notify(event.src_path)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.monitor.notify(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        # Atomic saves replace the target through a rename.
        if not event.is_directory:
            self.monitor.notify(event.dest_path)


class VaultMonitor:
    """Tracks the active task and announces arrivals in the task directories.

    The only retained state is the last parsed version of the active file and
    the last seen content hash of each arrived document. Both are replaced
    whole after each processed change.
    """

    def __init__(
        self,
        layout: VaultLayout,
        stability_threshold: float = 0.5,
        use_polling: bool = False,
    ) -> None:
        """Initialize the monitor.

        Args:
            layout: Vault paths to watch.
            stability_threshold: Seconds without further notifications before
                a file is read.
            use_polling: Use watchdog's PollingObserver instead of the native
                observer (network drives, containers).
        """
        self.layout = layout
        self.stability_threshold = stability_threshold
        self.use_polling = use_polling

        self.task_activated: EventChannel[Callable[[ParsedTask], object]] = EventChannel('task_activated')
        self.task_updated: EventChannel[Callable[[ParsedTask, TaskDiff], object]] = EventChannel('task_updated')
        self.task_queued: EventChannel[Callable[[QueuedTask], object]] = EventChannel('task_queued')
        self.task_completed: EventChannel[Callable[[str, str], object]] = EventChannel('task_completed')
        self.task_blocked: EventChannel[Callable[[str, str], object]] = EventChannel('task_blocked')
        self.error: EventChannel[Callable[[Exception], object]] = EventChannel('error')

        self._active_path = normalize(layout.active_path)
        self._arrival_dirs: Dict[Path, Callable[[Path, ParsedTask], None]] = {
            normalize(layout.queue_path): self._announce_queued,
            normalize(layout.completed_path): self._announce_completed,
            normalize(layout.blocked_path): self._announce_blocked,
        }

        self._last_active_task: Optional[ParsedTask] = None
        self._seen_hashes: Dict[Path, str] = {}

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer = None
        self._changes: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._debounce_handles: Dict[Path, asyncio.TimerHandle] = {}

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    async def start(self) -> None:
        """Announce the current active task and begin watching the vault."""
        self._loop = asyncio.get_running_loop()
        await self.check_active_file()

        self.layout.root.mkdir(parents=True, exist_ok=True)

        self._changes = asyncio.Queue()
        self._worker = asyncio.create_task(self._process_changes())

        observer_class = PollingObserver if self.use_polling else Observer
        self._observer = observer_class()
        self._observer.schedule(VaultEventHandler(self), str(self.layout.root), recursive=True)
        self._observer.start()

        logger.info("Watching %s", self.layout.root)

    async def stop(self) -> None:
        """Stop the observer and the change worker."""
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

        # The observer thread is gone; notifications from here on are dropped.
        self._loop = None
        for handle in self._debounce_handles.values():
            handle.cancel()
        self._debounce_handles.clear()

        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self._changes = None

        logger.info("Stopped watching %s", self.layout.root)

    def notify(self, path: Union[str, Path]) -> None:
        """Report a raw file notification; safe to call from any thread."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._debounce, normalize(path))

    async def check_active_file(self) -> None:
        """Emit ``task_activated`` for an existing active file, once."""
        if self._last_active_task is not None or not self.layout.active_path.exists():
            return
        try:
            task = await read_task(self.layout.active_path)
        except Exception as e:
            logger.error("Failed to read %s: %s", self.layout.active_path, e)
            self.error.emit(e)
            return

        if task.raw_content == ACTIVE_PLACEHOLDER:
            return

        self._last_active_task = task
        self.task_activated.emit(task)

    async def process_change(self, path: Union[str, Path]) -> None:
        """Handle one settled change of a file inside the vault.

        Errors while reading are reported on the ``error`` channel and leave
        the stored snapshots untouched.
        """
        path = normalize(path)

        if path == self._active_path:
            await self._handle_active_change()
            return

        announce = self._arrival_dirs.get(path.parent)
        if announce is not None and path.suffix == TASK_SUFFIX:
            await self._handle_arrival(path, announce)

    def get_queued_tasks(self) -> List[QueuedTask]:
        """Scan the queue directory.

        Unreadable files are logged and skipped.

        Returns:
            Summaries of every queued document, sorted by filename.
        """
        queue_path = self.layout.queue_path
        if not queue_path.exists():
            return []

        tasks = []
        for file_path in sorted(queue_path.iterdir()):
            if not file_path.is_file() or file_path.suffix != TASK_SUFFIX:
                continue
            try:
                content = file_path.read_text(encoding='utf-8')
            except OSError as e:
                logger.warning("Error reading queued task %s: %s", file_path.name, e)
                continue
            tasks.append(QueuedTask.from_task(file_path.name, parse_task(content)))

        return tasks

    def get_current_task(self) -> Optional[ParsedTask]:
        return self._last_active_task

    def _debounce(self, path: Path) -> None:
        if self._loop is None:
            return
        handle = self._debounce_handles.pop(path, None)
        if handle:
            handle.cancel()
        self._debounce_handles[path] = self._loop.call_later(
            self.stability_threshold, self._settle, path
        )

    def _settle(self, path: Path) -> None:
        self._debounce_handles.pop(path, None)
        if self._changes is not None:
            self._changes.put_nowait(path)

    async def _process_changes(self) -> None:
        while True:
            path = await self._changes.get()
            try:
                await self.process_change(path)
            except Exception as e:
                logger.exception("Unexpected error while handling %s", path)
                self.error.emit(e)
            finally:
                self._changes.task_done()

    async def _handle_active_change(self) -> None:
        try:
            new_task = await read_task(self.layout.active_path)
        except Exception as e:
            logger.error("Failed to read %s: %s", self.layout.active_path, e)
            self.error.emit(e)
            return

        last_task = self._last_active_task
        if last_task is not None and last_task.content_hash == new_task.content_hash:
            logger.debug("Active task unchanged, ignoring notification")
            return

        if new_task.raw_content == ACTIVE_PLACEHOLDER:
            logger.debug("Active slot cleared")
            self._last_active_task = None
            return

        diff = diff_tasks(last_task, new_task)
        self._last_active_task = new_task

        if not has_meaningful_changes(diff):
            logger.debug("Active task %s changed without status, criteria or log updates", new_task.id)
            return

        if diff.is_new_task:
            logger.debug("Active task %s activated", new_task.id)
            self.task_activated.emit(new_task)
        else:
            logger.debug("Active task %s updated", new_task.id)
            self.task_updated.emit(new_task, diff)

    async def _handle_arrival(self, path: Path, announce: Callable[[Path, ParsedTask], None]) -> None:
        try:
            task = await read_task(path)
        except Exception as e:
            logger.error("Failed to read %s: %s", path, e)
            self.error.emit(e)
            return

        if self._seen_hashes.get(path) == task.content_hash:
            logger.debug("Ignoring repeated notification for %s", path.name)
            return

        self._seen_hashes[path] = task.content_hash
        announce(path, task)

    def _announce_queued(self, path: Path, task: ParsedTask) -> None:
        self.task_queued.emit(QueuedTask.from_task(path.name, task))

    def _announce_completed(self, path: Path, task: ParsedTask) -> None:
        self.task_completed.emit(path.name, task.title)

    def _announce_blocked(self, path: Path, task: ParsedTask) -> None:
        self.task_blocked.emit(path.name, task.title)
