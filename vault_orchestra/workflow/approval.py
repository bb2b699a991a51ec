"""Approval, rejection and blocking of the active task.

Each operation mutates the task document text (status row, audit rows,
execution log) and then writes it either back into the active file or into
one of the archive directories. Failures are returned as result records with
a message that can be shown to the user as-is.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional

from vault_orchestra.models import ApprovalResult, ParsedTask, RejectionResult
from vault_orchestra.workflow.file_mover import FileMover
from vault_orchestra.workflow.state_machine import TaskStatus, can_transition, parse_status


logger = logging.getLogger(__name__)

STATUS_ROW_RE = re.compile(r'\|\s*Status\s*\|\s*[^|]+\s*\|', re.IGNORECASE)
TABLE_END_RE = re.compile(r'(\|\s*[^|]+\s*\|\s*[^|]+\s*\|\n)(\n|## )')
RETRY_COUNT_RE = re.compile(r'\|\s*Retry Count\s*\|\s*(\d+)\s*\|', re.IGNORECASE)
RETRY_ROW_RE = re.compile(r'\|\s*Retry Count\s*\|', re.IGNORECASE)
EXECUTION_LOG_RE = re.compile(r'(## Execution Log\s*\n[\s\S]*?)(\n---|\n\Z|\Z)')

BUSY_MESSAGE = "Claude Code is running. Stop it before changing the task."


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def update_task_status(content: str, status: TaskStatus) -> str:
    return STATUS_ROW_RE.sub(lambda _: f'| Status | {status.value} |', content, count=1)


def insert_metadata_rows(content: str, *rows: str) -> str:
    """Insert table rows after the last row of the metadata table.

    The table end is the first row followed by a blank line or a heading.
    Content without such a table is returned unchanged.
    """
    match = TABLE_END_RE.search(content)
    if not match:
        return content
    insert_at = match.end(1)
    return content[:insert_at] + ''.join(f'{row}\n' for row in rows) + content[insert_at:]


def get_retry_count(content: str) -> int:
    match = RETRY_COUNT_RE.search(content)
    return int(match.group(1)) if match else 0


def update_retry_count(content: str, count: int) -> str:
    if RETRY_ROW_RE.search(content):
        return RETRY_COUNT_RE.sub(lambda _: f'| Retry Count | {count} |', content, count=1)
    return insert_metadata_rows(content, f'| Retry Count | {count} |')


def append_to_execution_log(content: str, entry: str) -> str:
    """Append a line at the end of the Execution Log section.

    A missing section is created at the end of the document.
    """
    match = EXECUTION_LOG_RE.search(content)
    if match:
        insert_at = match.end(1)
        return content[:insert_at] + '\n' + entry + content[insert_at:]
    return content + '\n\n## Execution Log\n\n' + entry + '\n'


class ApprovalService:
    """Validates workflow preconditions and applies approve/reject/block.

    Document writes race with a running CLI session editing the same file, so
    every operation is refused while ``is_busy`` reports an active process.
    """

    def __init__(self, file_mover: FileMover, is_busy: Optional[Callable[[], bool]] = None) -> None:
        """Initialize the service.

        Args:
            file_mover: Mover bound to the vault layout.
            is_busy: Returns True while the CLI subprocess is alive.
        """
        self.file_mover = file_mover
        self._is_busy = is_busy or (lambda: False)

    def approve(self, task: ParsedTask, approver: str, notes: Optional[str] = None) -> ApprovalResult:
        """Approve the task and archive it into the completed directory.

        Approval needs PENDING_REVIEW status, or every acceptance criterion
        ticked for any non-terminal status. Open criteria never block an
        approval but are reported as a warning.

        Args:
            task: The active task.
            approver: Name recorded in the audit rows.
            notes: Optional remark appended to the log line.

        Returns:
            ApprovalResult with the archive path on success.
        """
        if self._is_busy():
            return ApprovalResult(success=False, message=BUSY_MESSAGE)

        current = parse_status(task.metadata.status)
        if current is None:
            return ApprovalResult(success=False, message=f"Unknown task status: {task.metadata.status}")

        eligible = (
            current == TaskStatus.PENDING_REVIEW
            or can_transition(current, TaskStatus.COMPLETED)
            or (task.all_criteria_completed and current != TaskStatus.COMPLETED)
        )
        if not eligible:
            return ApprovalResult(
                success=False,
                message=(
                    f"Cannot approve task in {current.value} status. "
                    f"Expected PENDING_REVIEW or all criteria completed."
                ),
            )

        warning = ''
        incomplete = task.incomplete_criteria
        if incomplete:
            warning = f" Warning: {len(incomplete)} criteria still incomplete."

        timestamp = utc_timestamp()
        approval_line = f"- [{timestamp}] APPROVED by {approver}" + (f": {notes}" if notes else '')

        content = update_task_status(task.raw_content, TaskStatus.COMPLETED)
        content = insert_metadata_rows(content, f'| Approved | {timestamp} |', f'| Approved By | {approver} |')
        content = append_to_execution_log(content, approval_line)

        move = self.file_mover.move_to_completed(task.id, content)
        if not move.success:
            return ApprovalResult(success=False, message=f"Failed to move task to completed: {move.error}")

        self.file_mover.clear_active_file()
        logger.info("Task %s approved by %s", task.id, approver)

        return ApprovalResult(
            success=True,
            message=f"Task {task.id} approved and moved to completed.{warning}",
            new_path=move.new_path,
        )

    def reject(self, task: ParsedTask, rejector: str, reason: str) -> RejectionResult:
        """Send the task back for another attempt.

        The retry counter in the metadata table is incremented (starting from
        0 when absent), status returns to IN_PROGRESS and the document is
        written back into the active file.

        Returns:
            RejectionResult carrying the new retry count on success.
        """
        if not reason or not reason.strip():
            return RejectionResult(success=False, message="Rejection requires a reason.")

        if self._is_busy():
            return RejectionResult(success=False, message=BUSY_MESSAGE)

        current = parse_status(task.metadata.status)
        if current is None:
            return RejectionResult(success=False, message=f"Unknown task status: {task.metadata.status}")
        if current == TaskStatus.COMPLETED:
            return RejectionResult(success=False, message=f"Cannot reject task {task.id}: it is already COMPLETED.")

        retry_count = get_retry_count(task.raw_content) + 1
        rejection_line = f"- [{utc_timestamp()}] REJECTED by {rejector}: {reason}"

        content = update_task_status(task.raw_content, TaskStatus.IN_PROGRESS)
        content = update_retry_count(content, retry_count)
        content = append_to_execution_log(content, rejection_line)

        try:
            self.file_mover.write_active_file(content)
        except OSError as e:
            return RejectionResult(success=False, message=f"Failed to write task {task.id}: {e}")

        logger.info("Task %s rejected by %s (retry #%d)", task.id, rejector, retry_count)
        return RejectionResult(
            success=True,
            message=f"Task {task.id} rejected. Retry #{retry_count}. Reason: {reason}",
            retry_count=retry_count,
        )

    def block(self, task: ParsedTask, blocker: str, reason: str) -> ApprovalResult:
        """Mark the task BLOCKED and move it into the blocked directory."""
        if not reason or not reason.strip():
            return ApprovalResult(success=False, message="Blocking requires a reason.")

        if self._is_busy():
            return ApprovalResult(success=False, message=BUSY_MESSAGE)

        current = parse_status(task.metadata.status)
        if current is None:
            return ApprovalResult(success=False, message=f"Unknown task status: {task.metadata.status}")
        if not can_transition(current, TaskStatus.BLOCKED):
            return ApprovalResult(
                success=False,
                message=f"Cannot block task in {current.value} status. Expected IN_PROGRESS.",
            )

        content = update_task_status(task.raw_content, TaskStatus.BLOCKED)
        content = append_to_execution_log(content, f"- [{utc_timestamp()}] BLOCKED by {blocker}: {reason}")

        move = self.file_mover.move_to_blocked(task.id, content)
        if not move.success:
            return ApprovalResult(success=False, message=f"Failed to move task to blocked: {move.error}")

        self.file_mover.clear_active_file()
        logger.info("Task %s blocked by %s", task.id, blocker)

        return ApprovalResult(
            success=True,
            message=f"Task {task.id} blocked and moved to blocked. Reason: {reason}",
            new_path=move.new_path,
        )
