import asyncio

from vault_orchestra.executor.stream_buffer import StreamBuffer


def test_threshold_flush_empties_buffer_immediately() -> None:
    delivered = []

    async def scenario():
        buffer = StreamBuffer(delivered.append, flush_interval=60, max_buffer_size=10)
        buffer.append("x" * 4)
        assert buffer.buffer_size == 4
        buffer.append("y" * 6)
        assert buffer.buffer_size == 0
        await buffer.flush()

    asyncio.run(scenario())

    assert delivered == ["xxxxyyyyyy"]


def test_timer_flushes_periodically() -> None:
    delivered = []

    async def scenario():
        buffer = StreamBuffer(delivered.append, flush_interval=0.05, max_buffer_size=1000)
        buffer.start()
        buffer.append("abc")
        await asyncio.sleep(0.2)
        assert buffer.buffer_size == 0
        await buffer.stop()

    asyncio.run(scenario())

    assert delivered == ["abc"]


def test_stop_flushes_remaining_content() -> None:
    delivered = []

    async def scenario():
        buffer = StreamBuffer(delivered.append, flush_interval=60, max_buffer_size=1000)
        buffer.start()
        assert buffer.is_running()
        buffer.append("tail")
        await buffer.stop()
        assert not buffer.is_running()

    asyncio.run(scenario())

    assert delivered == ["tail"]


def test_content_due_during_delivery_is_queued_in_order() -> None:
    delivered = []

    async def scenario():
        gate = asyncio.Event()

        async def slow_flush(content):
            await gate.wait()
            delivered.append(content)

        buffer = StreamBuffer(slow_flush, flush_interval=60, max_buffer_size=3)
        buffer.append("aaa")
        await asyncio.sleep(0)
        assert buffer.is_flushing()
        buffer.append("bbb")
        buffer.append("ccc")
        assert buffer.buffer_size == 0

        gate.set()
        await buffer.flush()
        assert not buffer.is_flushing()

    asyncio.run(scenario())

    assert delivered == ["aaa", "bbbccc"]


def test_failing_callback_does_not_stop_later_flushes() -> None:
    delivered = []

    def flaky(content):
        if content == "bad":
            raise RuntimeError("sink down")
        delivered.append(content)

    async def scenario():
        buffer = StreamBuffer(flaky, flush_interval=60, max_buffer_size=1000)
        buffer.append("bad")
        await buffer.flush()
        buffer.append("good")
        await buffer.flush()

    asyncio.run(scenario())

    assert delivered == ["good"]


def test_clear_drops_content() -> None:
    delivered = []

    async def scenario():
        buffer = StreamBuffer(delivered.append, flush_interval=60, max_buffer_size=1000)
        buffer.append("secret")
        buffer.clear()
        await buffer.flush()

    asyncio.run(scenario())

    assert delivered == []


def test_stop_on_empty_buffer_never_flushes() -> None:
    calls = []

    async def scenario():
        buffer = StreamBuffer(calls.append, flush_interval=60, max_buffer_size=1000)
        buffer.start()
        await buffer.stop()

    asyncio.run(scenario())

    assert calls == []


def test_stop_with_content_flushes_exactly_once() -> None:
    calls = []

    async def scenario():
        buffer = StreamBuffer(calls.append, flush_interval=60, max_buffer_size=1000)
        buffer.start()
        buffer.append("one ")
        buffer.append("two")
        await buffer.stop()
        await buffer.stop()

    asyncio.run(scenario())

    assert calls == ["one two"]
