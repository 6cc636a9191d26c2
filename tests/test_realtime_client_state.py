import asyncio

import pytest

from realtime_client import LockState, MessageDecodeError, decode_message, iter_sse_data
from realtime_client.messages import aiter_sse_data


def test_decode_message():
    message = decode_message('{"type": "lock-acquired", "data": {"entity_id": "5", "triggered_by": "a@example.com"}}')
    assert message.kind == "lock-acquired"
    assert message.payload["entity_id"] == "5"
    assert message.triggered_by == "a@example.com"
    assert decode_message('{"type": "connected"}').payload == {}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"data": {}}', '{"type": "x", "data": [1]}'])
def test_decode_rejects_malformed_frames(raw):
    with pytest.raises(MessageDecodeError):
        decode_message(raw)


def test_sse_framing_skips_comments_and_joins_lines():
    lines = [
        "data: {\"a\": 1}",
        "",
        ":keepalive 2026-01-01T00:00:00",
        "",
        "event: ignored",
        "data: first",
        "data: second",
        "",
        "data: no terminator",
    ]
    assert list(iter_sse_data(lines)) == ['{"a": 1}', "first\nsecond"]


def test_async_sse_framing():
    async def _lines():
        for line in ["data: one\n", "\n", "data:two\n", "\n"]:
            yield line

    async def _run():
        return [data async for data in aiter_sse_data(_lines())]

    assert asyncio.run(_run()) == ["one", "two"]


def test_lock_events_update_state():
    state = LockState("me@example.com")
    state.apply_lock_acquired("5", "other@example.com")
    assert state.is_locked_by("5") == "other@example.com"
    assert not state.am_i_editing("5")

    # Same admin in another tab
    state.apply_lock_acquired("6", "me@example.com")
    assert state.am_i_editing("6")

    state.apply_lock_released("5")
    state.apply_lock_released("6")
    assert state.is_locked_by("5") is None
    assert not state.am_i_editing("6")
    assert state.locked_entities == set()


def test_snapshot_replaces_state():
    state = LockState("me@example.com")
    state.apply_lock_acquired("stale", "gone@example.com")
    state.load_snapshot([
        {"locked_entity_id": "1", "lock_holder_label": "me@example.com"},
        {"locked_entity_id": 2, "lock_holder_label": "b@example.com"},
    ])
    assert state.locked_entities == {"1", "2"}
    assert state.is_locked_by("2") == "b@example.com"
    assert state.am_i_editing("1")
    assert state.is_locked_by("stale") is None


def test_start_and_end_editing():
    state = LockState("me@example.com")
    state.start_editing("9")
    assert state.is_locked_by("9") == "me@example.com"
    assert state.am_i_editing("9")
    state.end_editing("9")
    assert not state.am_i_editing("9")
    assert state.is_locked_by("9") is None


def test_clear():
    state = LockState("me@example.com")
    state.is_connected = True
    state.assigned_role = "admin"
    state.start_editing("1")
    state.clear()
    assert not state.is_connected
    assert state.assigned_role is None
    assert state.locked_entities == set()
    assert state.my_editing_entities == set()
