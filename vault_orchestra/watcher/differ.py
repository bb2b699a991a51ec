"""Change detection between two parsed versions of the active task."""

from typing import Dict, Optional

from vault_orchestra.models import ChangedCriterion, ParsedTask, TaskDiff


def diff_tasks(old_task: Optional[ParsedTask], new_task: ParsedTask) -> TaskDiff:
    """Compare two versions of a task.

    Criteria are matched by their text, so reordering is not a change and a
    criterion that only exists in the new version is not reported. Log
    entries are new when their exact text is absent from the old log; a line
    repeated in the new version is not flagged again once the old version
    already contains it.

    Args:
        old_task: Previous version, or None when the task was just seen.
        new_task: Current version.

    Returns:
        TaskDiff describing status, criteria and log changes.
    """
    if old_task is None:
        return TaskDiff(
            is_new_task=True,
            status_changed=True,
            new_status=new_task.metadata.status,
            new_log_entries=list(new_task.execution_log),
        )

    diff = TaskDiff()

    if old_task.metadata.status != new_task.metadata.status:
        diff.status_changed = True
        diff.old_status = old_task.metadata.status
        diff.new_status = new_task.metadata.status

    old_criteria: Dict[str, bool] = {
        criterion.text: criterion.completed for criterion in old_task.acceptance_criteria
    }
    for criterion in new_task.acceptance_criteria:
        old_completed = old_criteria.get(criterion.text)
        if old_completed is not None and old_completed != criterion.completed:
            diff.criteria_changed = True
            diff.changed_criteria.append(ChangedCriterion(
                text=criterion.text,
                old_completed=old_completed,
                new_completed=criterion.completed,
            ))

    old_log = set(old_task.execution_log)
    diff.new_log_entries = [entry for entry in new_task.execution_log if entry not in old_log]

    return diff


def has_meaningful_changes(diff: TaskDiff) -> bool:
    return (
        diff.is_new_task
        or diff.status_changed
        or diff.criteria_changed
        or len(diff.new_log_entries) > 0
    )
