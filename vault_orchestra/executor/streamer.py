"""Delivery of batched CLI output to a rate-limited sink.

The streamer sits between the process manager's ``output`` channel and an
``OutputSink``. Batches from its ``StreamBuffer`` are split into pieces that
fit the sink's message limit, framed as code blocks, and delivered one at a
time. A rate-limited delivery is retried once after a fixed backoff; any other
failure, or a second rate limit, drops the piece.
"""

import asyncio
import logging
import re
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from vault_orchestra.exceptions import RateLimitError
from vault_orchestra.executor.output_parser import OutputType, format_output, parse_claude_output
from vault_orchestra.executor.stream_buffer import (
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_MAX_BUFFER_SIZE,
    StreamBuffer,
)
from vault_orchestra.models import StreamStats
from vault_orchestra.utils import format_duration


logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1900
CODE_BLOCK_OVERHEAD = 8  # ```\n ... \n```
RATE_LIMIT_BACKOFF = 2.0
ZERO_WIDTH_SPACE = '\u200b'
FENCE = '```'
BACKTICK_RUN = re.compile(r'`{3,}')
# Notable output lines quoted in the session summary.
SUMMARY_DIGEST_LINES = 5


class OutputSink:
    """Destination for streamed output.

    Subclasses implement ``deliver``. To request the streamer's single retry,
    raise ``RateLimitError`` (or an error the streamer's ``is_rate_limited``
    predicate accepts).
    """

    async def deliver(self, text: str) -> None:
        raise NotImplementedError


def is_rate_limit_error(error: BaseException) -> bool:
    """Default rate-limit classification.

    Accepts ``RateLimitError`` and HTTP-style errors carrying a 429 status in
    ``status``, ``http_status`` or ``httpStatus``.
    """
    if isinstance(error, RateLimitError):
        return True
    for attribute in ('status', 'http_status', 'httpStatus'):
        if getattr(error, attribute, None) == 429:
            return True
    return False


def split_content(content: str, max_length: int) -> List[str]:
    """Split text into pieces no longer than ``max_length``.

    Lines are kept together where possible; a single line longer than the
    limit is cut into fixed-size slices.
    """
    pieces: List[str] = []
    current = ''

    for line in content.split('\n'):
        if len(line) > max_length:
            if current:
                pieces.append(current)
                current = ''
            pieces.extend(line[i:i + max_length] for i in range(0, len(line), max_length))
            continue

        new_length = len(current) + (1 if current else 0) + len(line)
        if new_length > max_length:
            if current:
                pieces.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line

    if current:
        pieces.append(current)

    return pieces


def escape_fences(content: str) -> str:
    """Break up backtick runs inside the output so they cannot close the block early."""
    return BACKTICK_RUN.sub(lambda match: ZERO_WIDTH_SPACE.join(match.group(0)), content)


def frame_code_block(escaped: str) -> str:
    return f"{FENCE}\n{escaped}\n{FENCE}"


def wrap_in_code_block(content: str) -> str:
    return frame_code_block(escape_fences(content))


def classify_exit(exit_code: Optional[int]) -> str:
    if exit_code == 0:
        return '✅ Completed'
    if exit_code is None:
        return '⏹️ Stopped'
    return f'❌ Failed (exit {exit_code})'


class Streamer:
    """One streaming session of CLI output into a sink."""

    def __init__(
        self,
        sink: OutputSink,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        use_code_blocks: bool = True,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        rate_limit_backoff: float = RATE_LIMIT_BACKOFF,
        is_rate_limited: Callable[[BaseException], bool] = is_rate_limit_error,
    ) -> None:
        """Initialize the streamer.

        Args:
            sink: Destination of the framed pieces and the summary.
            flush_interval: Seconds between timed batch flushes.
            max_buffer_size: Characters that force an immediate flush.
            use_code_blocks: Frame every piece as a fenced code block.
            max_message_length: Sink limit per delivery, framing included.
            rate_limit_backoff: Seconds to wait before the single retry.
            is_rate_limited: Tells rate-limit failures apart from the rest.
        """
        self.sink = sink
        self.use_code_blocks = use_code_blocks
        self.max_message_length = max_message_length
        self.rate_limit_backoff = rate_limit_backoff
        self.is_rate_limited = is_rate_limited

        self.buffer = StreamBuffer(
            on_flush=self._send,
            flush_interval=flush_interval,
            max_buffer_size=max_buffer_size,
        )
        self.stats = StreamStats()
        self._summary_sent = False

    @property
    def piece_limit(self) -> int:
        if self.use_code_blocks:
            return self.max_message_length - CODE_BLOCK_OVERHEAD
        return self.max_message_length

    async def start(self) -> None:
        self.stats.start_time = datetime.now()
        self.buffer.start()

    async def stop(self) -> None:
        """Stop batching and deliver the remaining output."""
        await self.buffer.stop()

    def append(self, chunk: str) -> None:
        self.buffer.append(chunk)

    def get_stats(self) -> StreamStats:
        return replace(self.stats)

    async def send_summary(
        self,
        exit_code: Optional[int],
        duration: float,
        output: Optional[str] = None,
    ) -> bool:
        """Deliver the end-of-session summary.

        Only the first call of a session delivers anything.

        Args:
            exit_code: Exit code of the CLI, or None when it was stopped.
            duration: Session length in seconds.
            output: Raw session output; its last progress, completion and
                error lines are quoted as a digest.

        Returns:
            True if the summary was delivered by this call.
        """
        if self._summary_sent:
            return False
        self._summary_sent = True

        summary = '\n'.join([
            '─' * 40,
            f"**Execution {classify_exit(exit_code)}**",
            f"Duration: {format_duration(duration)}",
            f"Messages: {self.stats.messages_sent}",
            f"Output: {self.stats.total_characters} characters",
        ])

        notable = [o for o in parse_claude_output(output or '') if o.type != OutputType.INFO]
        room = self.max_message_length - len(summary) - 1
        if notable and room > 0:
            summary += '\n' + format_output(notable[-SUMMARY_DIGEST_LINES:], limit=room)
        return await self._deliver_with_retry(summary)

    async def _send(self, content: str) -> None:
        if not content.strip():
            return

        if self.use_code_blocks:
            # Escape before splitting so the limit holds for the escaped text.
            content = escape_fences(content)

        for piece in split_content(content, self.piece_limit):
            message = frame_code_block(piece) if self.use_code_blocks else piece
            if await self._deliver_with_retry(message):
                self.stats.messages_sent += 1
                self.stats.total_characters += len(piece) - piece.count(ZERO_WIDTH_SPACE)
                self.stats.last_message_time = datetime.now()

    async def _deliver_with_retry(self, message: str) -> bool:
        try:
            await self.sink.deliver(message)
            return True
        except Exception as e:
            if not self.is_rate_limited(e):
                logger.error("Output delivery failed, dropping message: %s", e)
                return False
            logger.warning("Output sink rate limited, retrying in %.1fs", self.rate_limit_backoff)

        await asyncio.sleep(self.rate_limit_backoff)
        try:
            await self.sink.deliver(message)
            return True
        except Exception as e:
            logger.error("Output delivery retry failed, dropping message: %s", e)
            return False
