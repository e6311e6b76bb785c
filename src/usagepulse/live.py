"""Live dashboard session: watchers feed the state, a timer decays health, rich paints."""

import asyncio
import contextlib
import logging
import signal
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from .config import REFRESH_INTERVAL, STORAGE_DIR
from .models import WindowSize
from .ratelimits import RateLimitWatcher
from .state import LiveState
from .ui import build_dashboard
from .watcher import MessageWatcher

logger = logging.getLogger("usagepulse")

QUIT_KEYS = {"q", "Q"}
HELP_CLOSE_KEYS = {"\x1b", "\r", "\n", " ", "?"}


@contextlib.contextmanager
def restore_terminal(stream=None):
    """Put the tty attributes of `stream` back on exit.

    The key reader thread can be blocked inside `click.getchar()` in raw mode
    when the session ends; it is never joined, so its own cleanup may not run.
    """
    stream = stream or sys.stdin
    saved = None
    if stream.isatty():
        # termios is POSIX only
        with contextlib.suppress(ImportError):
            import termios

            saved = termios.tcgetattr(stream.fileno())
    try:
        yield
    finally:
        if saved is not None:
            termios.tcsetattr(stream.fileno(), termios.TCSADRAIN, saved)


class LiveSession:
    def __init__(
        self,
        state: LiveState,
        storage_dir: Path = STORAGE_DIR,
        console: Console | None = None,
        refresh_interval: float = REFRESH_INTERVAL,
    ):
        self.state = state
        self.console = console or Console()
        self.refresh_interval = refresh_interval
        self.show_help = False
        self.message_watcher = MessageWatcher(storage_dir, on_message=self.on_message)
        self.rate_limit_watcher = RateLimitWatcher(storage_dir, on_rate_limit=self.on_rate_limit, clock=state.clock)
        self._live: Live | None = None
        self._stop_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # --- Callbacks (always on the event loop thread) ---

    def on_message(self, msg):
        self.state.add_messages([msg])
        self.render()

    def on_rate_limit(self, event):
        self.state.add_rate_limit_event(event)
        self.render()

    def refresh(self):
        self.state.prune()
        self.render()

    def render(self):
        if self._live is not None:
            self._live.update(build_dashboard(self.state.snapshot(), self.show_help), refresh=True)

    def handle_key(self, key: str):
        if self.show_help and key in HELP_CLOSE_KEYS:
            self.show_help = False
        elif key in QUIT_KEYS:
            self.stop()
            return
        elif key == "a":
            self.state.toggle_view_mode()
        elif key == "c":
            self.state.cycle_sort_mode()
        elif key == "w":
            self.state.cycle_window()
        elif key == "r":
            self.state.prune()
        elif key == "?":
            self.show_help = True
        else:
            return
        self.render()

    def stop(self):
        if self._stop_event is not None:
            self._stop_event.set()

    # --- Lifecycle ---

    async def _tick(self):
        while True:
            await asyncio.sleep(self.refresh_interval)
            self.refresh()

    def _read_keys(self):
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                key = click.getchar()
            except (KeyboardInterrupt, EOFError):
                key = "q"
            except OSError as e:
                logger.warning("Keyboard input unavailable: %s", e)
                return
            self._loop.call_soon_threadsafe(self.handle_key, key)
            if key in QUIT_KEYS:
                return

    async def load_initial(self):
        messages, events = await asyncio.gather(
            self.message_watcher.load_all_messages(),
            self.rate_limit_watcher.load_recent_events(),
        )
        added = self.state.add_messages(messages)
        for event in events:
            self.state.add_rate_limit_event(event)
        logger.info("Initial load: %d messages, %d rate-limit events", added, len(events))

    async def run(self):
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                self._loop.add_signal_handler(sig, self.stop)

        loading = Panel(Text("Loading..."), border_style="cyan")
        with restore_terminal(), Live(loading, console=self.console, screen=True, auto_refresh=False) as live:
            live.refresh()
            await self.load_initial()
            self._live = live
            self.render()

            self.message_watcher.start()
            self.rate_limit_watcher.start()
            tick = asyncio.create_task(self._tick())
            if sys.stdin.isatty():
                threading.Thread(target=self._read_keys, name="usagepulse-keys", daemon=True).start()

            try:
                await self._stop_event.wait()
            finally:
                tick.cancel()
                self.message_watcher.stop()
                self.rate_limit_watcher.stop()
                self._live = None


def start_live(state: LiveState, storage_dir: Path = STORAGE_DIR, window: str | None = None):
    if window:
        state.set_window(WindowSize(window))
    session = LiveSession(state, storage_dir)
    asyncio.run(session.run())
