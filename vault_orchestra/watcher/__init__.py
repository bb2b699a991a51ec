"""Task document parsing, diffing and vault monitoring."""

from .parser import parse_task, read_task, compute_hash
from .differ import diff_tasks, has_meaningful_changes
from .monitor import VaultMonitor

__all__ = [
    'parse_task',
    'read_task',
    'compute_hash',
    'diff_tasks',
    'has_meaningful_changes',
    'VaultMonitor',
]
