"""Tests for the message and rate-limit pollers against a temporary store."""

import asyncio
import json
import os
import time

import pytest

from usagepulse.ratelimits import RateLimitWatcher
from usagepulse.watcher import MessageWatcher


def _write_message(storage, session, msg_id, created=1_000, tokens=True):
    data = {
        "id": msg_id,
        "sessionID": session,
        "role": "assistant",
        "time": {"created": created},
        "modelID": "gpt-5",
        "providerID": "openai",
        "cost": 0.02,
    }
    if tokens:
        data["tokens"] = {"input": 10, "output": 5, "reasoning": 0, "cache": {"read": 0, "write": 0}}
    path = storage / "message" / session / f"{msg_id}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


def _write_part(storage, message, part_id, status="error", error="429 Too Many Requests", tool=None):
    data = {
        "id": part_id,
        "sessionID": "ses_1",
        "messageID": message,
        "type": "tool",
        "tool": tool,
        "state": {"status": status, "error": error},
    }
    path = storage / "part" / message / f"{part_id}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


# --- MessageWatcher ---


@pytest.mark.asyncio
async def test_load_all_messages_skips_tokenless_and_malformed(tmp_path):
    _write_message(tmp_path, "ses_1", "msg_a")
    _write_message(tmp_path, "ses_1", "msg_b", tokens=False)
    _write_message(tmp_path, "ses_2", "msg_c")
    broken = tmp_path / "message" / "ses_2" / "msg_broken.json"
    broken.write_text("{not json")
    (tmp_path / "message" / "ses_2" / "other.json").write_text("{}")

    watcher = MessageWatcher(tmp_path)
    messages = await watcher.load_all_messages()

    assert sorted(m.id for m in messages) == ["msg_a", "msg_c"]
    # Every candidate file is marked seen, valid or not
    assert len(watcher.seen) == 4


@pytest.mark.asyncio
async def test_load_all_messages_missing_directory(tmp_path):
    watcher = MessageWatcher(tmp_path / "nowhere")
    assert await watcher.load_all_messages() == []


@pytest.mark.asyncio
async def test_poll_delivers_each_new_file_once(tmp_path):
    received = []
    _write_message(tmp_path, "ses_1", "msg_a")
    watcher = MessageWatcher(tmp_path, on_message=received.append, settle_delay=0)
    await watcher.load_all_messages()

    _write_message(tmp_path, "ses_1", "msg_b")
    _write_message(tmp_path, "ses_3", "msg_c", tokens=False)

    assert await watcher.poll() == 2
    assert [m.id for m in received] == ["msg_b"]

    assert await watcher.poll() == 0
    assert len(received) == 1


@pytest.mark.asyncio
async def test_no_callbacks_after_stop(tmp_path):
    received = []
    watcher = MessageWatcher(tmp_path, on_message=received.append, settle_delay=0)
    watcher.start()
    assert watcher.running
    watcher.stop()
    assert not watcher.running

    _write_message(tmp_path, "ses_1", "msg_a")
    await watcher.poll()
    assert received == []


@pytest.mark.asyncio
async def test_background_polling_picks_up_new_files(tmp_path):
    received = []
    watcher = MessageWatcher(tmp_path, on_message=received.append, interval=0.01, settle_delay=0)
    watcher.start()
    try:
        _write_message(tmp_path, "ses_1", "msg_a")
        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0.01)
    finally:
        watcher.stop()
    assert [m.id for m in received] == ["msg_a"]


# --- RateLimitWatcher ---


@pytest.mark.asyncio
async def test_load_recent_events_uses_file_mtime(tmp_path):
    fresh = _write_part(tmp_path, "msg_1", "prt_fresh", error="anthropic: 429 Too Many Requests")
    old = _write_part(tmp_path, "msg_1", "prt_old")
    _write_part(tmp_path, "msg_2", "prt_fine", status="completed", error=None)
    two_hours_ago = time.time() - 2 * 60 * 60
    os.utime(old, (two_hours_ago, two_hours_ago))

    watcher = RateLimitWatcher(tmp_path)
    events = await watcher.load_recent_events()

    assert [e.part_id for e in events] == ["prt_fresh"]
    assert events[0].provider_id == "anthropic"
    assert events[0].timestamp == int(fresh.stat().st_mtime * 1000)
    assert len(watcher.seen) == 3


@pytest.mark.asyncio
async def test_rate_limit_poll_stamps_detection_time(tmp_path):
    received = []
    watcher = RateLimitWatcher(tmp_path, on_rate_limit=received.append, settle_delay=0, clock=lambda: 42_000)
    await watcher.load_recent_events()

    _write_part(tmp_path, "msg_1", "prt_a", error="quota exceeded", tool="gemini_call")
    _write_part(tmp_path, "msg_1", "prt_b", status="running", error="429")

    assert await watcher.poll() == 2
    assert len(received) == 1
    assert received[0].timestamp == 42_000
    assert received[0].provider_id == "google"

    await watcher.poll()
    assert len(received) == 1
