"""Task document parsing.

This module turns the Markdown task format into ``ParsedTask`` records:

    # Task: ABC-1 - Fix the login bug

    | Field | Value |
    |-------|-------|
    | Status | IN_PROGRESS |
    | Project | web |

    ## Task Description
    ...

    ## Acceptance Criteria
    - [ ] tests pass
    - [x] bug reproduced

    ## Execution Log
    - [2026-01-05T10:00:00Z] Started

Parsing never raises on document content. Anything that cannot be recognised
falls back to the defaults on ``TaskMetadata`` and the ``UNKNOWN`` identifiers.
"""

import hashlib
import re
from pathlib import Path
from typing import Dict, List, Tuple, Union

import aiofiles

from vault_orchestra.models import (
    UNKNOWN_ID,
    UNKNOWN_TITLE,
    AcceptanceCriterion,
    ParsedTask,
    TaskMetadata,
)


TITLE_WITH_ID_RE = re.compile(r'^# Task:\s*(\S+)\s*-\s*(.+)$', re.MULTILINE)
TITLE_RE = re.compile(r'^# Task:\s*(.+)$', re.MULTILINE)
TABLE_ROW_RE = re.compile(r'\|\s*([^|]+)\s*\|\s*([^|]+)\s*\|')
CRITERIA_SECTION_RE = re.compile(r'## Acceptance Criteria\s*([\s\S]*?)(?=\n##|\n---|\n?\Z)')
CHECKBOX_RE = re.compile(r'- \[([ xX])\][ \t]*(.+)')
LOG_SECTION_RE = re.compile(r'## Execution Log\s*([\s\S]*?)(?=\n---|\n?\Z)')
DESCRIPTION_SECTION_RE = re.compile(r'## Task Description\s*([\s\S]*?)(?=\n##|\Z)')

# lower-cased table label -> TaskMetadata attribute
METADATA_FIELDS: Dict[str, str] = {
    'status': 'status',
    'project': 'project',
    'trust level': 'trust_level',
    'priority': 'priority',
    'created': 'created',
    'activated': 'activated',
    'branch': 'branch',
    'repo path': 'repo_path',
}

CHECKBOX_PREFIXES = ('- [ ]', '- [x]', '- [X]')


def compute_hash(content: str) -> str:
    """Digest of the raw document text, used for change detection only."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def parse_task_title(content: str) -> Tuple[str, str]:
    """Extract the task id and title from the ``# Task:`` heading.

    Args:
        content: Raw document text.

    Returns:
        Tuple of (id, title); id is ``UNKNOWN`` when the heading has no
        ``ID - Title`` form, and title is ``Unknown Task`` without a heading.
    """
    match = TITLE_WITH_ID_RE.search(content)
    if match:
        return match.group(1), match.group(2).strip()

    match = TITLE_RE.search(content)
    if match:
        return UNKNOWN_ID, match.group(1).strip()

    return UNKNOWN_ID, UNKNOWN_TITLE


def parse_metadata_table(content: str) -> TaskMetadata:
    """Read recognised rows of the metadata table; the last duplicate wins."""
    metadata = TaskMetadata()

    for match in TABLE_ROW_RE.finditer(content):
        label = match.group(1).strip().lower()
        attribute = METADATA_FIELDS.get(label)
        if attribute:
            setattr(metadata, attribute, match.group(2).strip())

    return metadata


def parse_acceptance_criteria(content: str) -> List[AcceptanceCriterion]:
    """Collect checkbox lines from the Acceptance Criteria section.

    The section ends at the next heading or horizontal rule. Both ``x`` and
    ``X`` mark a criterion as completed.
    """
    section = CRITERIA_SECTION_RE.search(content)
    if not section:
        return []

    return [
        AcceptanceCriterion(text=match.group(2).strip(), completed=match.group(1).lower() == 'x')
        for match in CHECKBOX_RE.finditer(section.group(1))
    ]


def parse_execution_log(content: str) -> List[str]:
    """Collect ``- [...]`` entries of the Execution Log section.

    Checkbox lines are not log entries. The leading ``- `` is stripped so an
    entry reads ``[timestamp] message``.
    """
    section = LOG_SECTION_RE.search(content)
    if not section:
        return []

    entries = []
    for line in section.group(1).split('\n'):
        trimmed = line.strip()
        if trimmed.startswith('- [') and not trimmed.startswith(CHECKBOX_PREFIXES):
            entries.append(trimmed[2:])
    return entries


def parse_description(content: str) -> str:
    section = DESCRIPTION_SECTION_RE.search(content)
    return section.group(1).strip() if section else ''


def parse_task(content: str) -> ParsedTask:
    """Parse a full task document.

    Args:
        content: Raw document text.

    Returns:
        ParsedTask; malformed input degrades to defaults.
    """
    task_id, title = parse_task_title(content)
    return ParsedTask(
        id=task_id,
        title=title,
        metadata=parse_metadata_table(content),
        description=parse_description(content),
        acceptance_criteria=parse_acceptance_criteria(content),
        execution_log=parse_execution_log(content),
        raw_content=content,
        content_hash=compute_hash(content),
    )


async def read_task(path: Union[str, Path]) -> ParsedTask:
    """Read and parse a task document.

    Raises:
        OSError: If the file cannot be read.
    """
    async with aiofiles.open(path, encoding='utf-8') as f:
        content = await f.read()
    return parse_task(content)
