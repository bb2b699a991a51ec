"""Lifecycle management of the Claude Code subprocess.

The manager owns at most one CLI process. Output is relayed chunk by chunk on
the ``output`` channel while the process runs; stderr chunks carry a
``[stderr] `` tag. A run ends in exactly one of three ways:

- the process exits by itself: ``completed(exit_code)``
- ``stop()`` is called, directly or by the execution timeout: ``stopped(reason)``
- the process cannot be spawned: ``error(exc)``

Run state is cleared in one place whichever way the run ends, together with
the execution timer, so a stale timer can never hit a later process.

The CLI runs in its own session and is signalled as a process group, which
takes down the tool processes it started along with it. While it runs, its pid
is kept in the vault run lock so other orchestrator processes see it as busy.
"""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from vault_orchestra.config import OrchestraSettings
from vault_orchestra.events import EventChannel
from vault_orchestra.exceptions import SpawnError
from vault_orchestra.models import ParsedTask, ProcessResult, ProcessState
from vault_orchestra.workflow.state_machine import TaskStatus, can_transition, parse_status


logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 8192
STREAM_LIMIT = 50 * 1024 * 1024
STDERR_TAG = '[stderr] '
TIMEOUT_REASON = 'Execution timeout reached'
# Grace period for the relay tasks to drain the pipes after the process exits.
DRAIN_TIMEOUT = 1.0
EXIT_POLL_INTERVAL = 0.02
BUSY_MESSAGE = "Claude Code is already running. Stop it before starting another task."


def build_prompt(task: ParsedTask) -> str:
    """Build the single prompt argument handed to the CLI."""
    criteria = '\n'.join(
        f"- [{'x' if c.completed else ' '}] {c.text}" for c in task.acceptance_criteria
    )
    return f"""Execute task: {task.id} - {task.title}

{task.description}

Acceptance Criteria:
{criteria}

Instructions:
1. Work through each acceptance criterion
2. Update the task file as you complete work
3. When done, set status to PENDING_REVIEW"""


def signal_process_group(process: asyncio.subprocess.Process, force: bool = False) -> None:
    """Terminate (or kill) the CLI together with every child it started.

    The CLI runs in its own session, so its pid is also its process group id.
    """
    try:
        if sys.platform == 'win32':
            if force:
                process.kill()
            else:
                process.terminate()
        else:
            os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        pass


def read_lock_pid(lock_path: Path) -> Optional[int]:
    """Return the pid recorded in a run lock, or None when there is none."""
    try:
        return int(lock_path.read_text(encoding='utf-8').split()[0])
    except (OSError, ValueError, IndexError):
        return None


def pid_alive(pid: int) -> bool:
    if sys.platform == 'win32':
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ProcessManager:
    """Starts, streams and stops the Claude Code CLI for the active task."""

    def __init__(
        self,
        settings: OrchestraSettings,
        command_builder: Optional[Callable[[str, str], List[str]]] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Executable path, default working directory and timeouts.
            command_builder: Maps (executable, prompt) to the argument vector.
                Defaults to the non-interactive, permission-bypassing form.
        """
        self.settings = settings
        self.graceful_stop_timeout = settings.graceful_stop_timeout_ms / 1000
        self.execution_timeout = settings.execution_timeout_ms / 1000
        self._command_builder = command_builder or self._default_command

        self.started: EventChannel[Callable[[], object]] = EventChannel('started')
        self.output: EventChannel[Callable[[str], object]] = EventChannel('output')
        self.completed: EventChannel[Callable[[Optional[int]], object]] = EventChannel('completed')
        self.stopped: EventChannel[Callable[[Optional[str]], object]] = EventChannel('stopped')
        self.error: EventChannel[Callable[[Exception], object]] = EventChannel('error')

        self._process: Optional[asyncio.subprocess.Process] = None
        self._current_task_id: Optional[str] = None
        self._start_time: Optional[datetime] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._output_chunks: List[str] = []
        self.lock_path = settings.layout.lock_path

    @staticmethod
    def _default_command(executable: str, prompt: str) -> List[str]:
        return [executable, '--dangerously-skip-permissions', '-p', prompt]

    def is_running(self) -> bool:
        return self._process is not None

    def is_busy(self) -> bool:
        """True while this manager or any other orchestrator process runs the CLI.

        Other processes are seen through the run lock in the vault. A lock
        whose pid no longer exists is ignored.
        """
        if self._process is not None or self._current_task_id is not None:
            return True
        pid = read_lock_pid(self.lock_path)
        return pid is not None and pid_alive(pid)

    def get_state(self) -> ProcessState:
        return ProcessState(
            is_running=self._process is not None,
            task_id=self._current_task_id,
            start_time=self._start_time,
            pid=self._process.pid if self._process else None,
        )

    def get_output(self) -> List[str]:
        return list(self._output_chunks)

    async def start(self, task: ParsedTask) -> ProcessResult:
        """Spawn the CLI against a task.

        The task's status must allow a move to EXECUTING. The working directory
        is the task's repo path or the configured projects directory, created
        when missing.

        Args:
            task: The active task.

        Returns:
            ProcessResult; spawn failures are also emitted on ``error``.
        """
        # The task id is claimed before the first await, so it also guards a
        # spawn that is still in flight.
        if self.is_busy():
            return ProcessResult(success=False, message=BUSY_MESSAGE)

        status = parse_status(task.metadata.status)
        if status is None:
            return ProcessResult(success=False, message=f"Unknown task status: {task.metadata.status}")
        if not can_transition(status, TaskStatus.EXECUTING):
            return ProcessResult(
                success=False,
                message=f"Cannot start task in {status.value} status. Task must be IN_PROGRESS.",
            )

        working_dir = Path(task.metadata.repo_path or self.settings.code_projects_path)
        executable = self.settings.claude_code_path
        args = self._command_builder(executable, build_prompt(task))

        self._current_task_id = task.id
        self._start_time = datetime.now()
        self._output_chunks = []

        try:
            working_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Executing Claude Code for task %s in %s", task.id, working_dir)
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(working_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            # ValueError: the prompt or a path holds a NUL byte.
            self._cleanup()
            error = SpawnError(executable, str(e))
            logger.error(str(error))
            self.error.emit(error)
            return ProcessResult(success=False, message=str(error))

        self._process = process
        self._write_lock(process.pid)
        self._monitor_task = asyncio.create_task(self._monitor(process))
        self._timeout_handle = asyncio.get_running_loop().call_later(
            self.execution_timeout, self._on_execution_timeout
        )

        self.started.emit()
        logger.info("Started Claude Code for task %s (pid %s)", task.id, process.pid)
        return ProcessResult(success=True, message=f"Started Claude Code for task {task.id}.")

    async def stop(self, reason: Optional[str] = None) -> ProcessResult:
        """Terminate the running CLI, escalating to a kill after the grace period.

        Concurrent calls share the same stop cycle, so ``stopped`` is emitted
        once per cycle.

        Args:
            reason: Free text forwarded to ``stopped``.

        Returns:
            ProcessResult; failure when nothing is running.
        """
        if self._process is None:
            logger.debug("No process running to stop")
            return ProcessResult(success=False, message="Claude Code is not currently running.")

        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._stop(self._process, reason))
        await asyncio.shield(self._stop_task)
        return ProcessResult(success=True, message="Claude Code stopped." + (f" Reason: {reason}" if reason else ''))

    async def _stop(self, process: asyncio.subprocess.Process, reason: Optional[str]) -> None:
        logger.info("Stopping Claude Code (reason: %s)", reason)
        monitor = self._monitor_task
        try:
            signal_process_group(process)

            try:
                await asyncio.wait_for(asyncio.shield(monitor), self.graceful_stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("Process did not exit after %.1fs, force killing", self.graceful_stop_timeout)
                signal_process_group(process, force=True)
                await monitor
        finally:
            self._stop_task = None
            self.stopped.emit(reason)

    async def _monitor(self, process: asyncio.subprocess.Process) -> None:
        relays = [
            asyncio.create_task(self._relay(process.stdout, '')),
            asyncio.create_task(self._relay(process.stderr, STDERR_TAG)),
        ]
        return_code = await self._wait_for_exit(process)

        # Children of the CLI may keep the pipes open after it exits.
        _, still_reading = await asyncio.wait(relays, timeout=DRAIN_TIMEOUT)
        if still_reading:
            logger.warning("Output pipes still open after exit, killing leftover children")
            signal_process_group(process, force=True)
            for relay in still_reading:
                relay.cancel()

        stopping = self._stop_task is not None
        self._cleanup()
        logger.info("Claude Code exited with code %s", return_code)

        if not stopping:
            # Negative return codes mean the process was killed by a signal.
            self.completed.emit(return_code if return_code >= 0 else None)

    @staticmethod
    async def _wait_for_exit(process: asyncio.subprocess.Process) -> int:
        # Process.wait() also waits for every pipe to close; the return code
        # is set as soon as the CLI itself has exited.
        while process.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        return process.returncode

    async def _relay(self, stream: Optional[asyncio.StreamReader], tag: str) -> None:
        if stream is None:
            return
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                return
            text = tag + data.decode('utf-8', errors='replace')
            if tag:
                logger.warning("Claude stderr: %s", text.rstrip())
            else:
                logger.debug("Claude output (%d chars)", len(text))
            self._output_chunks.append(text)
            self.output.emit(text)

    def _on_execution_timeout(self) -> None:
        self._timeout_handle = None
        logger.warning("Execution timeout reached after %.0fs", self.execution_timeout)
        asyncio.ensure_future(self.stop(TIMEOUT_REASON))

    def _write_lock(self, pid: int) -> None:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_path.write_text(f"{pid}\n", encoding='utf-8')
        except OSError as e:
            logger.warning("Could not write run lock %s: %s", self.lock_path, e)

    def _release_lock(self, pid: int) -> None:
        if read_lock_pid(self.lock_path) != pid:
            return
        try:
            self.lock_path.unlink()
        except OSError as e:
            logger.warning("Could not remove run lock %s: %s", self.lock_path, e)

    def _cleanup(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._process is not None:
            self._release_lock(self._process.pid)
        self._process = None
        self._monitor_task = None
        self._current_task_id = None
        self._start_time = None
