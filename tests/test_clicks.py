"""Unit tests for the fire-and-forget click dispatcher."""

import asyncio

import pytest

from shortener.clicks import ClickDispatcher, ClickSource


class Recorder:
    def __init__(self, fail_on=()):
        self.codes = []
        self.sources = []
        self.fail_on = set(fail_on)

    async def __call__(self, code, source=None):
        await asyncio.sleep(0)
        if code in self.fail_on:
            raise RuntimeError(f"handler failed for {code}")
        self.codes.append(code)
        self.sources.append(source)


@pytest.mark.asyncio
async def test_dispatched_clicks_are_handled():
    recorder = Recorder()
    dispatcher = ClickDispatcher(recorder, queue_size=100, worker_count=2)
    await dispatcher.start()

    for code in ("a", "b", "a"):
        assert dispatcher.dispatch(code) is True
    await dispatcher.drain()

    assert sorted(recorder.codes) == ["a", "a", "b"]
    assert dispatcher.pending == 0
    await dispatcher.stop()
    assert not dispatcher.running


@pytest.mark.asyncio
async def test_dispatch_hands_source_to_handler():
    recorder = Recorder()
    dispatcher = ClickDispatcher(recorder, queue_size=10, worker_count=1)
    await dispatcher.start()
    source = ClickSource(user_agent="curl/8.5.0", referer="https://news.example.com/")

    dispatcher.dispatch("a", source)
    dispatcher.dispatch("b")
    await dispatcher.stop()

    assert recorder.sources == [source, None]


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking():
    recorder = Recorder()
    dispatcher = ClickDispatcher(recorder, queue_size=2, worker_count=1)

    assert dispatcher.dispatch("a") is True
    assert dispatcher.dispatch("b") is True
    assert dispatcher.dispatch("c") is False
    assert dispatcher.pending == 2

    await dispatcher.start()
    await dispatcher.drain()
    assert recorder.codes == ["a", "b"]
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_handler_failure_does_not_kill_worker():
    recorder = Recorder(fail_on={"bad"})
    dispatcher = ClickDispatcher(recorder, queue_size=10, worker_count=1)
    await dispatcher.start()

    dispatcher.dispatch("bad")
    dispatcher.dispatch("good")
    await dispatcher.drain()

    assert recorder.codes == ["good"]
    assert dispatcher.running
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_stop_drains_queued_clicks():
    recorder = Recorder()
    dispatcher = ClickDispatcher(recorder, queue_size=10, worker_count=1)
    await dispatcher.start()

    for _ in range(5):
        dispatcher.dispatch("abc")
    await dispatcher.stop(timeout=1.0)

    assert recorder.codes == ["abc"] * 5


@pytest.mark.asyncio
async def test_start_is_idempotent():
    dispatcher = ClickDispatcher(Recorder(), worker_count=3)
    await dispatcher.start()
    workers = list(dispatcher._workers)
    await dispatcher.start()

    assert dispatcher._workers == workers
    await dispatcher.stop()
