"""Task status state machine.

The status set is closed. Transitions are directed:

    IN_PROGRESS    -> EXECUTING, BLOCKED
    EXECUTING      -> IN_PROGRESS, PENDING_REVIEW
    PENDING_REVIEW -> COMPLETED, IN_PROGRESS
    COMPLETED      -> (terminal)
    BLOCKED        -> IN_PROGRESS
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from vault_orchestra.exceptions import InvalidTransitionError, UnknownStatusError


class TaskStatus(Enum):
    """Status enumeration for task documents.

    IN_PROGRESS: Task is active and waiting to be executed
    EXECUTING: The CLI is working on the task
    PENDING_REVIEW: Work is done and waits for approval
    COMPLETED: Task was approved and archived
    BLOCKED: Task cannot proceed until unblocked
    """
    IN_PROGRESS = "IN_PROGRESS"
    EXECUTING = "EXECUTING"
    PENDING_REVIEW = "PENDING_REVIEW"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"


VALID_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.IN_PROGRESS: [TaskStatus.EXECUTING, TaskStatus.BLOCKED],
    TaskStatus.EXECUTING: [TaskStatus.IN_PROGRESS, TaskStatus.PENDING_REVIEW],
    TaskStatus.PENDING_REVIEW: [TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS],
    TaskStatus.COMPLETED: [],
    TaskStatus.BLOCKED: [TaskStatus.IN_PROGRESS],
}


@dataclass
class StateTransitionResult:
    """Outcome of a transition request."""
    success: bool
    new_status: Optional[TaskStatus] = None
    error: Optional[str] = None


def parse_status(status: str) -> Optional[TaskStatus]:
    """Normalize a status string and look it up in the closed set.

    ``"pending review"`` and ``"Pending_Review"`` both map to PENDING_REVIEW.

    Returns:
        The matching TaskStatus, or None for anything outside the set.
    """
    normalized = re.sub(r'\s+', '_', status.strip().upper())
    try:
        return TaskStatus(normalized)
    except ValueError:
        return None


def require_status(status: str) -> TaskStatus:
    """Raising variant of ``parse_status``.

    Raises:
        UnknownStatusError: If the string is outside the status set.
    """
    parsed = parse_status(status)
    if parsed is None:
        raise UnknownStatusError(status)
    return parsed


def can_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def get_valid_next_states(current: TaskStatus) -> List[TaskStatus]:
    return list(VALID_TRANSITIONS.get(current, []))


def transition(from_status: TaskStatus, to_status: TaskStatus) -> StateTransitionResult:
    if not can_transition(from_status, to_status):
        return StateTransitionResult(
            success=False,
            error=f"Invalid transition: {from_status.value} → {to_status.value}",
        )
    return StateTransitionResult(success=True, new_status=to_status)


def require_transition(from_status: TaskStatus, to_status: TaskStatus) -> TaskStatus:
    """Raising variant of ``transition`` for internal callers.

    Raises:
        InvalidTransitionError: If the move is not in the transition table.
    """
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status.value, to_status.value)
    return to_status
