"""Task status lifecycle and the review workflow."""

from .state_machine import (
    TaskStatus,
    StateTransitionResult,
    parse_status,
    require_status,
    can_transition,
    get_valid_next_states,
    transition,
)
from .file_mover import FileMover
from .approval import ApprovalService

__all__ = [
    'TaskStatus',
    'StateTransitionResult',
    'parse_status',
    'require_status',
    'can_transition',
    'get_valid_next_states',
    'transition',
    'FileMover',
    'ApprovalService',
]
