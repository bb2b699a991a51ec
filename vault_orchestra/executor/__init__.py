"""Claude Code process management and output streaming."""

from .process_manager import ProcessManager, build_prompt
from .stream_buffer import StreamBuffer
from .streamer import OutputSink, Streamer
from .output_parser import OutputType, ParsedOutput, parse_claude_output, format_output

__all__ = [
    'ProcessManager',
    'build_prompt',
    'StreamBuffer',
    'OutputSink',
    'Streamer',
    'OutputType',
    'ParsedOutput',
    'parse_claude_output',
    'format_output',
]
