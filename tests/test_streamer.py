import asyncio

import pytest

from vault_orchestra.exceptions import DeliveryError, RateLimitError
from vault_orchestra.executor.streamer import (
    CODE_BLOCK_OVERHEAD,
    ZERO_WIDTH_SPACE,
    OutputSink,
    Streamer,
    classify_exit,
    escape_fences,
    is_rate_limit_error,
    split_content,
    wrap_in_code_block,
)


class RecordingSink(OutputSink):
    """Sink that fails with the queued errors before succeeding."""

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.attempts = 0
        self.messages = []

    async def deliver(self, text: str) -> None:
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        self.messages.append(text)


class HttpError(Exception):
    def __init__(self, status):
        super().__init__(f"HTTP {status}")
        self.status = status


def stream(streamer: Streamer, *chunks: str) -> None:
    async def scenario():
        await streamer.start()
        for chunk in chunks:
            streamer.append(chunk)
        await streamer.stop()

    asyncio.run(scenario())


def test_split_keeps_lines_together() -> None:
    assert split_content("one\ntwo\nthree", 7) == ["one\ntwo", "three"]


def test_split_cuts_long_lines() -> None:
    assert split_content("short\n" + "x" * 12, 5) == ["short", "xxxxx", "xxxxx", "xx"]


def test_wrap_escapes_fences() -> None:
    wrapped = wrap_in_code_block("a ``` b")

    assert wrapped == f"```\na `{ZERO_WIDTH_SPACE}`{ZERO_WIDTH_SPACE}` b\n```"


def test_adjacent_fences_are_all_broken_up() -> None:
    escaped = escape_fences("``````py")

    assert "```" not in escaped
    assert escaped.replace(ZERO_WIDTH_SPACE, "") == "``````py"


def test_classify_exit() -> None:
    assert classify_exit(0) == "✅ Completed"
    assert classify_exit(None) == "⏹️ Stopped"
    assert classify_exit(2) == "❌ Failed (exit 2)"


def test_rate_limit_classification() -> None:
    assert is_rate_limit_error(RateLimitError())
    assert is_rate_limit_error(HttpError(429))
    assert not is_rate_limit_error(HttpError(500))
    assert not is_rate_limit_error(DeliveryError("closed"))


def test_output_is_framed_and_counted() -> None:
    sink = RecordingSink()
    streamer = Streamer(sink, flush_interval=60)

    stream(streamer, "hel", "lo")

    assert sink.messages == ["```\nhello\n```"]
    stats = streamer.get_stats()
    assert stats.messages_sent == 1
    assert stats.total_characters == 5
    assert stats.last_message_time is not None


def test_pieces_fit_message_limit() -> None:
    sink = RecordingSink()
    streamer = Streamer(sink, flush_interval=60, max_message_length=20)

    stream(streamer, "line one\nline two\n" + "z" * 30)

    assert len(sink.messages) > 1
    assert all(len(message) <= 20 for message in sink.messages)
    assert streamer.piece_limit == 20 - CODE_BLOCK_OVERHEAD


def test_plain_mode_sends_raw_text() -> None:
    sink = RecordingSink()

    stream(Streamer(sink, flush_interval=60, use_code_blocks=False), "raw")

    assert sink.messages == ["raw"]


def test_blank_output_is_not_sent() -> None:
    sink = RecordingSink()

    stream(Streamer(sink, flush_interval=60), "  \n ")

    assert sink.attempts == 0


def test_rate_limited_delivery_is_retried_once() -> None:
    sink = RecordingSink(errors=[RateLimitError()])
    streamer = Streamer(sink, flush_interval=60, rate_limit_backoff=0)

    stream(streamer, "hello")

    assert sink.attempts == 2
    assert sink.messages == ["```\nhello\n```"]
    assert streamer.get_stats().messages_sent == 1


def test_second_rate_limit_drops_the_piece() -> None:
    sink = RecordingSink(errors=[HttpError(429), HttpError(429)])
    streamer = Streamer(sink, flush_interval=60, rate_limit_backoff=0)

    stream(streamer, "hello")

    assert sink.attempts == 2
    assert sink.messages == []
    assert streamer.get_stats().messages_sent == 0


def test_other_errors_are_not_retried() -> None:
    sink = RecordingSink(errors=[DeliveryError("channel gone")])
    streamer = Streamer(sink, flush_interval=60, rate_limit_backoff=0)

    stream(streamer, "hello")

    assert sink.attempts == 1
    assert sink.messages == []


def test_custom_rate_limit_predicate() -> None:
    sink = RecordingSink(errors=[ValueError("slow down")])
    streamer = Streamer(
        sink,
        flush_interval=60,
        rate_limit_backoff=0,
        is_rate_limited=lambda e: "slow down" in str(e),
    )

    stream(streamer, "hello")

    assert sink.attempts == 2


@pytest.mark.parametrize("exit_code, label", [(0, "✅ Completed"), (None, "⏹️ Stopped")])
def test_summary_is_sent_once(exit_code, label) -> None:
    sink = RecordingSink()
    streamer = Streamer(sink, flush_interval=60)

    async def scenario():
        await streamer.start()
        first = await streamer.send_summary(exit_code, 65)
        second = await streamer.send_summary(exit_code, 65)
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert len(sink.messages) == 1
    assert label in sink.messages[0]
    assert "Duration: 1m 5s" in sink.messages[0]


def test_escaped_fences_stay_within_message_limit() -> None:
    sink = RecordingSink()
    streamer = Streamer(sink, flush_interval=60, max_message_length=40)
    line = "```" * 10 + "a" * (40 - CODE_BLOCK_OVERHEAD - 30)

    stream(streamer, line)

    assert all(len(message) <= 40 for message in sink.messages)
    assert all(message.count("```") == 2 for message in sink.messages)
    assert streamer.get_stats().total_characters == len(line)


def test_summary_quotes_notable_output() -> None:
    sink = RecordingSink()
    streamer = Streamer(sink, flush_interval=60)
    output = "Reading files\nCreating login.py\n[stderr] Error: token expired\nAll tests done\n"

    async def scenario():
        await streamer.start()
        await streamer.send_summary(1, 3, output)

    asyncio.run(scenario())

    summary = sink.messages[0]
    assert "❌ Failed (exit 1)" in summary
    assert summary.endswith("🔄 Creating login.py\n❌ Error: token expired\n✅ All tests done")
    assert "Reading files" not in summary
