"""Data models for task documents, diffs and workflow results.

This module defines the core data structures shared by the watcher, the
executor and the workflow services. Following the dataclass-based models used
throughout the project, records are plain dataclasses; parsed documents are
recreated on every read and never mutated in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional


UNKNOWN_ID = "UNKNOWN"
UNKNOWN_STATUS = "UNKNOWN"
UNKNOWN_TITLE = "Unknown Task"


@dataclass
class TaskMetadata:
    """Fields read from the pipe-delimited metadata table of a task document.

    All values are free text except ``status``, which callers validate against
    the state machine. Missing rows leave the defaults in place.
    """
    status: str = UNKNOWN_STATUS
    project: str = ""
    trust_level: str = ""
    priority: str = ""
    created: str = ""
    activated: str = ""
    branch: str = ""
    repo_path: str = ""


@dataclass
class AcceptanceCriterion:
    """A single checkbox line from the Acceptance Criteria section."""
    text: str
    completed: bool = False


@dataclass
class ParsedTask:
    """Structured view of a task document.

    ``content_hash`` is a pure function of ``raw_content`` and is only used
    for change detection.
    """
    id: str
    title: str
    metadata: TaskMetadata
    description: str
    acceptance_criteria: List[AcceptanceCriterion]
    execution_log: List[str]
    raw_content: str
    content_hash: str

    @property
    def all_criteria_completed(self) -> bool:
        """Check whether the task has criteria and every one is ticked.

        Returns:
            True if there is at least one criterion and none is open
        """
        return bool(self.acceptance_criteria) and all(
            criterion.completed for criterion in self.acceptance_criteria
        )

    @property
    def incomplete_criteria(self) -> List[AcceptanceCriterion]:
        return [c for c in self.acceptance_criteria if not c.completed]


@dataclass
class ChangedCriterion:
    """A criterion whose completion flag flipped between two versions."""
    text: str
    old_completed: bool
    new_completed: bool


@dataclass
class TaskDiff:
    """Change descriptor between two versions of the active task."""
    is_new_task: bool = False
    status_changed: bool = False
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    criteria_changed: bool = False
    changed_criteria: List[ChangedCriterion] = field(default_factory=list)
    new_log_entries: List[str] = field(default_factory=list)


@dataclass
class QueuedTask:
    """Summary of a document waiting in the queue directory."""
    filename: str
    title: str
    project: str
    priority: str

    @classmethod
    def from_task(cls, filename: str, task: ParsedTask) -> 'QueuedTask':
        return cls(
            filename=filename,
            title=task.title,
            project=task.metadata.project,
            priority=task.metadata.priority,
        )


@dataclass
class ProcessState:
    """Snapshot of the CLI subprocess owned by the process manager."""
    is_running: bool = False
    task_id: Optional[str] = None
    start_time: Optional[datetime] = None
    pid: Optional[int] = None


@dataclass
class StreamStats:
    """Delivery counters for one streaming session."""
    messages_sent: int = 0
    total_characters: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    last_message_time: Optional[datetime] = None


@dataclass
class ProcessResult:
    """Outcome of a start or stop request."""
    success: bool
    message: str


@dataclass
class MoveResult:
    """Outcome of writing a task document into another vault directory."""
    success: bool
    new_path: Optional[Path] = None
    error: Optional[str] = None


@dataclass
class ApprovalResult:
    """Outcome of approving (or blocking) the active task."""
    success: bool
    message: str
    new_path: Optional[Path] = None


@dataclass
class RejectionResult:
    """Outcome of rejecting the active task."""
    success: bool
    message: str
    retry_count: Optional[int] = None
