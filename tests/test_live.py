"""Tests for the live session wiring, without a terminal."""

import asyncio
import json

import pytest
from rich.console import Console

from usagepulse.live import LiveSession, restore_terminal
from usagepulse.models import RateLimitEvent, SortMode, ViewMode, WindowSize


def _session(state, tmp_path):
    return LiveSession(state, tmp_path, console=Console(record=True, width=120))


def test_handle_key_changes_preferences(state, tmp_path):
    session = _session(state, tmp_path)

    session.handle_key("a")
    assert state.view_mode == ViewMode.ALL
    session.handle_key("c")
    assert state.sort_mode == SortMode.TOKENS
    session.handle_key("w")
    assert state.current_window == WindowSize.ONE_DAY
    session.handle_key("x")
    assert state.view_mode == ViewMode.ALL


def test_help_overlay_open_and_close(state, tmp_path):
    session = _session(state, tmp_path)
    session.handle_key("?")
    assert session.show_help
    session.handle_key("\r")
    assert not session.show_help

    session.handle_key("?")
    session.handle_key("?")
    assert not session.show_help


def test_quit_sets_stop_event(state, tmp_path):
    session = _session(state, tmp_path)
    session._stop_event = asyncio.Event()
    session.handle_key("q")
    assert session._stop_event.is_set()


def test_callbacks_feed_state(state, tmp_path, make_message, now):
    session = _session(state, tmp_path)
    session.on_message(make_message("msg_1"))
    session.on_rate_limit(RateLimitEvent(timestamp=now, provider_id="openai", error_message="429"))

    assert len(state.messages) == 1
    assert len(state.rate_limit_events) == 1


@pytest.mark.asyncio
async def test_load_initial_reads_store(state, tmp_path, now):
    path = tmp_path / "message" / "ses_1" / "msg_1.json"
    path.parent.mkdir(parents=True)
    path.write_text(
        json.dumps(
            {
                "id": "msg_1",
                "sessionID": "ses_1",
                "time": {"created": now},
                "providerID": "openai",
                "modelID": "gpt-5",
                "tokens": {"input": 1, "output": 2},
            }
        )
    )
    session = _session(state, tmp_path)
    await session.load_initial()

    assert [m.id for m in state.messages] == ["msg_1"]
    assert session.message_watcher.seen == {path}


class _FakeTty:
    def isatty(self):
        return True

    def fileno(self):
        return 42


def test_restore_terminal_puts_attributes_back(monkeypatch):
    termios = pytest.importorskip("termios")
    restored = []
    monkeypatch.setattr(termios, "tcgetattr", lambda fd: ["saved", fd])
    monkeypatch.setattr(termios, "tcsetattr", lambda fd, when, attrs: restored.append((fd, when, attrs)))

    with pytest.raises(KeyboardInterrupt):
        with restore_terminal(_FakeTty()):
            raise KeyboardInterrupt

    assert restored == [(42, termios.TCSADRAIN, ["saved", 42])]


def test_restore_terminal_ignores_non_tty(monkeypatch):
    termios = pytest.importorskip("termios")
    monkeypatch.setattr(termios, "tcsetattr", lambda *args: pytest.fail("tcsetattr called"))

    class Pipe(_FakeTty):
        def isatty(self):
            return False

    with restore_terminal(Pipe()):
        pass
