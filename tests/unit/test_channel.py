"""Tests for the SSE lane-update channel."""
import asyncio
import json

import pytest
import requests
from tenacity import wait_none

from conftest import ids, make_record
from queueboard.channel import LaneUpdateChannel, iter_sse_events
from queueboard.models import Lane, LaneUpdate


class FakeStreamResponse:
    def __init__(self, lines):
        self.lines = lines
        self.closed = False

    def iter_lines(self, decode_unicode=False):
        return iter(self.lines)

    def close(self):
        self.closed = True


def sse(update: LaneUpdate) -> list:
    return [f"data: {json.dumps(update.to_wire())}", ""]


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestSseParsing:
    def test_parses_data_events(self):
        lines = ['data: {"lane": "waiting", "records": []}', "", 'data: {"a": 1}', ""]
        assert list(iter_sse_events(lines)) == [{"lane": "waiting", "records": []}, {"a": 1}]

    def test_skips_keepalive_comments(self):
        lines = [": keepalive", "", 'data: {"a": 1}', ""]
        assert list(iter_sse_events(lines)) == [{"a": 1}]

    def test_joins_multiline_data(self):
        lines = ['data: {"a":', "data: 1}", ""]
        assert list(iter_sse_events(lines)) == [{"a": 1}]

    def test_drops_malformed_payload(self):
        lines = ["data: {not json", "", b'data: {"ok": true}', b""]
        assert list(iter_sse_events(lines)) == [{"ok": True}]

    def test_ignores_other_fields(self):
        lines = ["event: lane", "id: 7", 'data: {"a": 1}', ""]
        assert list(iter_sse_events(lines)) == [{"a": 1}]


class FakeBackend:
    """Serves scripted stream connections, then refuses to connect."""

    def __init__(self, connections):
        self.connections = list(connections)
        self.opened = []
        self.board = {
            Lane.WAITING: [make_record("P1"), make_record("P2")],
            Lane.IN_SERVICE: [make_record("P4", Lane.IN_SERVICE)],
            Lane.COMPLETED: [],
        }

    def open_stream(self):
        if not self.connections:
            raise requests.exceptions.ConnectionError("backend gone")
        response = FakeStreamResponse(self.connections.pop(0))
        self.opened.append(response)
        return response

    async def fetch_board(self):
        return {lane: list(records) for lane, records in self.board.items()}


@pytest.mark.asyncio
async def test_snapshot_delivered_before_events():
    update = LaneUpdate(lane=Lane.WAITING, records=[make_record("P2"), make_record("P1")])
    backend = FakeBackend([sse(update)])
    received = []
    channel = LaneUpdateChannel(backend.open_stream, backend.fetch_board,
                                lambda lane, records: received.append((lane, ids(records))),
                                wait=wait_none())

    channel.start()
    await wait_until(lambda: len(received) >= 4)
    await channel.stop()

    assert received[:4] == [
        (Lane.WAITING, ["P1", "P2"]),
        (Lane.IN_SERVICE, ["P4"]),
        (Lane.COMPLETED, []),
        (Lane.WAITING, ["P2", "P1"]),
    ]
    assert backend.opened[0].closed


@pytest.mark.asyncio
async def test_reconnect_resnapshots_first():
    first = LaneUpdate(lane=Lane.COMPLETED, records=[make_record("P9", Lane.COMPLETED)])
    backend = FakeBackend([sse(first), []])
    received = []
    channel = LaneUpdateChannel(backend.open_stream, backend.fetch_board,
                                lambda lane, records: received.append(lane),
                                wait=wait_none())

    channel.start()
    await wait_until(lambda: channel.connect_count >= 2 and len(received) >= 7)
    await channel.stop()

    # snapshot, event, then a fresh snapshot after the drop
    assert received[:7] == list(Lane) + [Lane.COMPLETED] + list(Lane)
    assert not channel.running


@pytest.mark.asyncio
async def test_listener_errors_do_not_end_subscription():
    update = LaneUpdate(lane=Lane.WAITING, records=[])
    backend = FakeBackend([sse(update)])
    received = []

    def deliver(lane, records):
        received.append(lane)
        if lane == Lane.IN_SERVICE:
            raise RuntimeError("listener bug")

    channel = LaneUpdateChannel(backend.open_stream, backend.fetch_board, deliver, wait=wait_none())
    channel.start()
    await wait_until(lambda: len(received) >= 4)
    await channel.stop()

    assert received[:4] == [Lane.WAITING, Lane.IN_SERVICE, Lane.COMPLETED, Lane.WAITING]


@pytest.mark.asyncio
async def test_invalid_updates_are_ignored():
    good = LaneUpdate(lane=Lane.IN_SERVICE, records=[])
    lines = ['data: {"lane": "lobby", "records": []}', ""] + sse(good)
    backend = FakeBackend([lines])
    received = []
    channel = LaneUpdateChannel(backend.open_stream, backend.fetch_board,
                                lambda lane, records: received.append(lane),
                                wait=wait_none())

    channel.start()
    await wait_until(lambda: len(received) >= 4)
    await channel.stop()

    assert received[3] == Lane.IN_SERVICE


@pytest.mark.asyncio
async def test_start_is_idempotent():
    backend = FakeBackend([])
    channel = LaneUpdateChannel(backend.open_stream, backend.fetch_board,
                                lambda lane, records: None, wait=wait_none())
    channel.start()
    task = channel._task
    channel.start()
    assert channel._task is task
    await channel.stop()
    assert not channel.running
