import asyncio

from vault_orchestra.events import EventChannel


def test_handlers_receive_arguments_and_can_unsubscribe() -> None:
    channel = EventChannel("sample")
    received = []

    unsubscribe = channel.subscribe(lambda *args: received.append(args))
    channel.emit(1, "two")
    unsubscribe()
    unsubscribe()
    channel.emit(3, "four")

    assert received == [(1, "two")]
    assert channel.handler_count == 0


def test_failing_handler_does_not_affect_others() -> None:
    channel = EventChannel("sample")
    received = []

    def broken(value):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(received.append)
    channel.emit("value")

    assert received == ["value"]


def test_coroutine_handlers_are_scheduled_and_drained() -> None:
    channel = EventChannel("sample")
    received = []

    async def handler(value):
        await asyncio.sleep(0)
        received.append(value)

    async def failing(value):
        raise RuntimeError("boom")

    async def scenario():
        channel.subscribe(handler)
        channel.subscribe(failing)
        channel.emit("a")
        assert received == []
        await channel.drain()

    asyncio.run(scenario())

    assert received == ["a"]


def test_clear_removes_all_handlers() -> None:
    channel = EventChannel("sample")
    channel.subscribe(print)
    channel.subscribe(print)

    channel.clear()

    assert channel.handler_count == 0
