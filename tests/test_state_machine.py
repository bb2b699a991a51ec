import pytest

from vault_orchestra.exceptions import InvalidTransitionError, UnknownStatusError
from vault_orchestra.workflow.state_machine import (
    VALID_TRANSITIONS,
    TaskStatus,
    can_transition,
    get_valid_next_states,
    parse_status,
    require_status,
    require_transition,
    transition,
)


ALLOWED = {
    (TaskStatus.IN_PROGRESS, TaskStatus.EXECUTING),
    (TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED),
    (TaskStatus.EXECUTING, TaskStatus.IN_PROGRESS),
    (TaskStatus.EXECUTING, TaskStatus.PENDING_REVIEW),
    (TaskStatus.PENDING_REVIEW, TaskStatus.COMPLETED),
    (TaskStatus.PENDING_REVIEW, TaskStatus.IN_PROGRESS),
    (TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS),
}


@pytest.mark.parametrize("from_status", list(TaskStatus))
@pytest.mark.parametrize("to_status", list(TaskStatus))
def test_transition_table(from_status: TaskStatus, to_status: TaskStatus) -> None:
    assert can_transition(from_status, to_status) == ((from_status, to_status) in ALLOWED)


def test_completed_is_terminal() -> None:
    assert get_valid_next_states(TaskStatus.COMPLETED) == []


def test_get_valid_next_states_returns_a_copy() -> None:
    states = get_valid_next_states(TaskStatus.IN_PROGRESS)
    states.clear()

    assert VALID_TRANSITIONS[TaskStatus.IN_PROGRESS] == [TaskStatus.EXECUTING, TaskStatus.BLOCKED]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("IN_PROGRESS", TaskStatus.IN_PROGRESS),
        ("pending review", TaskStatus.PENDING_REVIEW),
        ("  Pending_Review ", TaskStatus.PENDING_REVIEW),
        ("blocked", TaskStatus.BLOCKED),
        ("UNKNOWN", None),
        ("DONE", None),
        ("", None),
    ],
)
def test_parse_status(raw: str, expected) -> None:
    assert parse_status(raw) == expected


def test_transition_result() -> None:
    ok = transition(TaskStatus.IN_PROGRESS, TaskStatus.EXECUTING)
    assert ok.success and ok.new_status == TaskStatus.EXECUTING

    failed = transition(TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS)
    assert not failed.success
    assert failed.new_status is None
    assert failed.error == "Invalid transition: COMPLETED → IN_PROGRESS"


def test_require_transition_raises() -> None:
    assert require_transition(TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS) == TaskStatus.IN_PROGRESS

    with pytest.raises(InvalidTransitionError, match="BLOCKED → COMPLETED"):
        require_transition(TaskStatus.BLOCKED, TaskStatus.COMPLETED)


def test_require_status_raises_for_unknown() -> None:
    assert require_status("executing") == TaskStatus.EXECUTING

    with pytest.raises(UnknownStatusError, match="Unknown task status: WAITING") as info:
        require_status("WAITING")
    assert info.value.status == "WAITING"
