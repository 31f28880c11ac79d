import asyncio
import json
import time

import pytest

from src.projectbot.services.streaming import (
    OPEN_COMMENT,
    RelayState,
    RelayStateError,
    StreamConfig,
    StreamRelay,
    error_frame,
    sse_data,
    sse_event,
)

from .utils import seed_chatbot


class Upstream:
    """Async iterator over scripted items that records ``aclose`` calls."""

    def __init__(self, items):
        self.items = list(items)
        self.closed = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.items:
            raise StopAsyncIteration
        item = self.items.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, (int, float)):
            await asyncio.sleep(item)
            return await self.__anext__()
        return item

    async def aclose(self):
        self.closed += 1


def _run(relay):
    async def go():
        await relay.open()
        return [frame async for frame in relay.frames()]

    return asyncio.run(go())


def _config(**overrides):
    values = dict(first_token_timeout=1.0, idle_timeout=1.0, total_timeout=5.0)
    values.update(overrides)
    return StreamConfig(**values)


def test_sse_framing():
    assert sse_data("hello") == "data: hello\n\n"
    assert sse_data("a\nb\r\nc") == "data: a\ndata: b\ndata: c\n\n"
    assert sse_data("") == "data: \n\n"
    assert sse_event("done", {"message_id": 3}) == 'event: done\ndata: {"message_id": 3}\n\n'
    assert json.loads(error_frame().split("data: ")[1]) == {"error": "Error generating response"}


def test_happy_path_walks_to_closed(storage):
    bot = seed_chatbot(storage)
    upstream = Upstream(["Hel", "lo"])
    relay = StreamRelay(storage, bot.id, upstream, config=_config())

    frames = _run(relay)

    assert frames[:2] == ["data: Hel\n\n", "data: lo\n\n"]
    assert frames[2].startswith("event: done")
    assert relay.state is RelayState.CLOSED
    assert upstream.closed == 1
    [message] = storage.list_messages(bot.id)
    assert message.id == relay.message_id
    assert message.content == "Hello"


def test_empty_stream_still_completes(storage):
    bot = seed_chatbot(storage)
    relay = StreamRelay(storage, bot.id, Upstream([]), config=_config())
    frames = _run(relay)
    assert frames[-1].startswith("event: done")
    assert relay.state is RelayState.CLOSED


def test_failure_after_first_token_errors_once(storage):
    bot = seed_chatbot(storage)
    upstream = Upstream(["partial", RuntimeError("socket reset")])
    relay = StreamRelay(storage, bot.id, upstream, config=_config())

    frames = _run(relay)

    assert frames[0] == "data: partial\n\n"
    assert frames[-1].startswith("event: error")
    assert sum(f.startswith("event: ") for f in frames) == 1
    assert relay.state is RelayState.ERRORED
    assert upstream.closed == 1
    assert storage.list_messages(bot.id) == []


def test_total_deadline_bounds_a_slow_stream(storage):
    bot = seed_chatbot(storage)
    upstream = Upstream(["a", 0.05, "b", 0.05, "c", 0.05, "d"])
    relay = StreamRelay(storage, bot.id, upstream, config=_config(idle_timeout=1.0, total_timeout=0.08))

    frames = _run(relay)

    assert frames[-1].startswith("event: error")
    assert relay.state is RelayState.ERRORED
    assert storage.list_messages(bot.id) == []


def test_open_failure_closes_upstream_and_errors(storage):
    bot = seed_chatbot(storage)
    upstream = Upstream([RuntimeError("401 from provider")])
    relay = StreamRelay(storage, bot.id, upstream, config=_config())

    with pytest.raises(RuntimeError):
        asyncio.run(relay.open())
    assert relay.state is RelayState.ERRORED
    assert upstream.closed == 1


def test_frames_cannot_be_replayed(storage):
    bot = seed_chatbot(storage)
    relay = StreamRelay(storage, bot.id, Upstream(["x"]), config=_config())
    _run(relay)

    async def again():
        return [f async for f in relay.frames()]

    with pytest.raises(RelayStateError):
        asyncio.run(again())


def test_client_disconnect_closes_upstream_without_persisting(storage):
    bot = seed_chatbot(storage)
    upstream = Upstream(["one", "two", "three"])
    relay = StreamRelay(storage, bot.id, upstream, config=_config())

    async def go():
        await relay.open()
        gen = relay.frames()
        first = await gen.__anext__()
        await gen.aclose()
        return first

    assert asyncio.run(go()) == "data: one\n\n"
    assert relay.state is RelayState.ERRORED
    assert upstream.closed == 1
    assert storage.list_messages(bot.id) == []


def test_stream_flushes_comment_then_reports_open_failure_in_band(storage):
    bot = seed_chatbot(storage)
    upstream = Upstream([RuntimeError("401 from provider")])
    relay = StreamRelay(storage, bot.id, upstream, config=_config())

    async def go():
        return [frame async for frame in relay.stream()]

    frames = asyncio.run(go())
    assert frames[0] == OPEN_COMMENT
    assert frames[1:] == [error_frame()]
    assert relay.state is RelayState.ERRORED
    assert upstream.closed == 1
    assert storage.list_messages(bot.id) == []


def test_stream_wraps_the_full_relay(storage):
    bot = seed_chatbot(storage)
    relay = StreamRelay(storage, bot.id, Upstream(["Hi"]), config=_config())

    async def go():
        return [frame async for frame in relay.stream()]

    frames = asyncio.run(go())
    assert frames[:2] == [OPEN_COMMENT, "data: Hi\n\n"]
    assert frames[-1].startswith("event: done")
    assert relay.state is RelayState.CLOSED


class SlowInsertStorage:
    """Delegates to a real store but blocks the calling thread on message inserts."""

    def __init__(self, inner, delay):
        self.inner = inner
        self.delay = delay

    def create_message(self, *args, **kwargs):
        time.sleep(self.delay)
        return self.inner.create_message(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_completion_insert_does_not_block_the_event_loop(storage):
    bot = seed_chatbot(storage)
    relay = StreamRelay(SlowInsertStorage(storage, 0.3), bot.id, Upstream(["done"]), config=_config())
    ticks = []

    async def ticker(stop):
        while not stop.is_set():
            ticks.append(1)
            await asyncio.sleep(0.01)

    async def go():
        stop = asyncio.Event()
        task = asyncio.create_task(ticker(stop))
        await asyncio.sleep(0)
        await relay.open()
        frames = [frame async for frame in relay.frames()]
        stop.set()
        await task
        return frames

    frames = asyncio.run(go())
    assert frames[-1].startswith("event: done")
    assert len(ticks) > 5
    assert len(storage.list_messages(bot.id)) == 1
