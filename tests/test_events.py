"""Tests for the checkout event emitter."""
import asyncio
import logging

import pytest

from postpay.utils.events import EventEmitter


@pytest.mark.asyncio
async def test_emit_calls_sync_and_async_listeners():
    events = EventEmitter()
    seen = []

    async def async_listener(value):
        seen.append(("async", value))

    events.on("progress", seen.append)
    events.on("progress", async_listener)
    await events.emit("progress", 1)

    assert seen == [1, ("async", 1)]


@pytest.mark.asyncio
async def test_listener_errors_are_logged_not_raised(caplog):
    events = EventEmitter()

    def broken(value):
        raise RuntimeError("listener blew up")

    events.on("progress", broken)
    with caplog.at_level(logging.ERROR):
        await events.emit("progress", 1)
        events.emit_sync("progress", 2)

    assert caplog.text.count("listener blew up") == 2


@pytest.mark.asyncio
async def test_emit_sync_keeps_async_listener_tasks_until_done():
    events = EventEmitter()
    release = asyncio.Event()
    seen = []

    async def slow_listener(value):
        await release.wait()
        seen.append(value)

    events.on("progress", slow_listener)
    events.emit_sync("progress", 7)
    assert len(events._pending) == 1

    release.set()
    await events.drain()

    assert seen == [7]
    assert not events._pending


@pytest.mark.asyncio
async def test_emit_sync_async_listener_error_is_logged(caplog):
    events = EventEmitter()

    async def broken(value):
        raise ValueError("async listener failed")

    events.on("progress", broken)
    with caplog.at_level(logging.ERROR):
        events.emit_sync("progress", 1)
        await events.drain()
        # done callbacks run on the next loop iteration
        await asyncio.sleep(0)

    assert "async listener failed" in caplog.text
    assert not events._pending


def test_off_removes_listener():
    events = EventEmitter()
    seen = []
    events.on("progress", seen.append)
    events.off("progress", seen.append)

    events.emit_sync("progress", 1)

    assert seen == []
