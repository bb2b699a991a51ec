"""Classification of Claude Code output lines.

Used to render a compact, icon-prefixed digest of a session's output.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from vault_orchestra.executor.process_manager import STDERR_TAG


class OutputType(Enum):
    """Kind of an output line.

    PROGRESS: The CLI reports work it is doing
    ERROR: Error text or anything written to stderr
    COMPLETION: The CLI reports something finished
    INFO: Everything else
    """
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETION = "completion"
    INFO = "info"


OUTPUT_ICONS = {
    OutputType.PROGRESS: '🔄',
    OutputType.ERROR: '❌',
    OutputType.COMPLETION: '✅',
    OutputType.INFO: '📝',
}

COMPLETION_WORDS = ('completed', 'finished', 'done')
PROGRESS_MARKS = ('✓', '✔')
PROGRESS_PHRASES = ('working on', 'updating', 'creating')


@dataclass
class ParsedOutput:
    type: OutputType
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


def parse_line(line: str) -> Optional[ParsedOutput]:
    trimmed = line.strip()
    if not trimmed:
        return None

    lowered = trimmed.lower()

    if 'error' in lowered or trimmed.startswith(STDERR_TAG.strip()):
        return ParsedOutput(OutputType.ERROR, trimmed.replace(STDERR_TAG, '', 1))

    if any(word in lowered for word in COMPLETION_WORDS):
        return ParsedOutput(OutputType.COMPLETION, trimmed)

    if any(mark in trimmed for mark in PROGRESS_MARKS) or any(p in lowered for p in PROGRESS_PHRASES):
        return ParsedOutput(OutputType.PROGRESS, trimmed)

    return ParsedOutput(OutputType.INFO, trimmed)


def parse_claude_output(raw_output: str) -> List[ParsedOutput]:
    """Classify every non-blank line of raw CLI output."""
    results = []
    for line in raw_output.split('\n'):
        parsed = parse_line(line)
        if parsed:
            results.append(parsed)
    return results


def format_output(outputs: List[ParsedOutput], limit: int = 1900) -> str:
    return '\n'.join(f"{OUTPUT_ICONS[o.type]} {o.message}" for o in outputs)[:limit]
