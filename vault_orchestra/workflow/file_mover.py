"""Relocation of task documents between vault directories.

Writes are plain, synchronous file writes. A crash in the middle of a write
can leave a document half written; the vault is not transactional.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from vault_orchestra.config import ACTIVE_PLACEHOLDER, VaultLayout
from vault_orchestra.models import MoveResult


logger = logging.getLogger(__name__)

STATUS_ROW_RE = re.compile(r'\|\s*Status\s*\|\s*[^|]+\s*\|', re.IGNORECASE)
ACTIVATED_ROW_RE = re.compile(r'\|\s*Activated\s*\|\s*[^|]*\|', re.IGNORECASE)


def date_prefix(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime('%Y-%m-%d')


class FileMover:
    """Moves task documents between the active file and the task directories."""

    def __init__(self, layout: VaultLayout) -> None:
        """Initialize the mover.

        Args:
            layout: Paths of the vault's active file and task directories.
        """
        self.layout = layout

    @property
    def active_path(self) -> Path:
        return self.layout.active_path

    def move_to_completed(self, task_id: str, content: str) -> MoveResult:
        """Write a finished document into ``completed/<date>-<id>.md``."""
        return self._write_dated(self.layout.completed_path, task_id, content)

    def move_to_blocked(self, task_id: str, content: str) -> MoveResult:
        """Write a blocked document into ``blocked/<date>-<id>.md``."""
        return self._write_dated(self.layout.blocked_path, task_id, content)

    def clear_active_file(self) -> None:
        self.write_active_file(ACTIVE_PLACEHOLDER)

    def read_active_file(self) -> str:
        if not self.active_path.exists():
            return ''
        return self.active_path.read_text(encoding='utf-8')

    def write_active_file(self, content: str) -> None:
        self.active_path.parent.mkdir(parents=True, exist_ok=True)
        self.active_path.write_text(content, encoding='utf-8')

    def has_active_task(self) -> bool:
        """Check whether the active file holds a real task.

        Returns:
            False when the file is missing, blank, or the placeholder
        """
        content = self.read_active_file()
        return bool(content.strip()) and content != ACTIVE_PLACEHOLDER

    def activate_from_queue(self, filename: str) -> MoveResult:
        """Promote a queued document to the active file.

        The document's status becomes IN_PROGRESS and its Activated row is set
        to today's date. The queue file is removed after the active file has
        been written.

        Args:
            filename: Name of a file inside the queue directory.

        Returns:
            MoveResult with the active path on success.
        """
        source = self.layout.queue_path / Path(filename).name
        if not source.is_file():
            return MoveResult(success=False, error=f"Queued task not found: {filename}")

        if self.has_active_task():
            return MoveResult(
                success=False,
                error="An active task already exists. Approve, reject or block it first.",
            )

        try:
            content = source.read_text(encoding='utf-8')
            content = STATUS_ROW_RE.sub('| Status | IN_PROGRESS |', content, count=1)
            content = ACTIVATED_ROW_RE.sub(f'| Activated | {date_prefix()} |', content, count=1)
            self.write_active_file(content)
            source.unlink()
        except OSError as e:
            logger.error("Failed to activate %s: %s", filename, e)
            return MoveResult(success=False, error=str(e))

        logger.info("Activated queued task %s", filename)
        return MoveResult(success=True, new_path=self.active_path)

    def _write_dated(self, directory: Path, task_id: str, content: str) -> MoveResult:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            new_path = directory / f"{date_prefix()}-{task_id}.md"
            new_path.write_text(content, encoding='utf-8')
        except OSError as e:
            logger.error("Failed to write %s into %s: %s", task_id, directory, e)
            return MoveResult(success=False, error=str(e))

        return MoveResult(success=True, new_path=new_path)
