"""Polling watchers that discover new record files and hand them to the live state."""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from .config import MESSAGE_POLL_INTERVAL, STORAGE_DIR
from .models import UsageMessage
from .storage import read_record, record_files

logger = logging.getLogger("usagepulse")


class JsonFilePoller:
    """Fixed-interval scan of ``<directory>/<group>/<prefix>*.json``.

    Every file path is processed at most once per poller. A newly discovered
    file is read only after ``settle_delay`` seconds so a record still being
    written is not caught half-way.
    """

    prefix = ""

    def __init__(self, directory: Path, interval: float, settle_delay: float):
        self.directory = Path(directory)
        self.interval = interval
        self.settle_delay = settle_delay
        self.seen: set[Path] = set()
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self):
        if self._task is not None:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run())

    def stop(self):
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll()
            except Exception:
                logger.exception("Polling %s failed", self.directory)

    async def poll(self) -> int:
        """Process files not seen before. Returns how many were new."""
        files = await asyncio.to_thread(record_files, self.directory, self.prefix)
        new = 0
        for path in files:
            if path in self.seen:
                continue
            self.seen.add(path)
            new += 1
            await self._process_new_file(path)
            if self._stopped:
                break
        return new

    async def _process_new_file(self, path: Path):
        raise NotImplementedError


class MessageWatcher(JsonFilePoller):
    """Watches ``message/<session>/msg_*.json`` for new assistant messages."""

    prefix = "msg_"

    def __init__(
        self,
        storage_dir: Path = STORAGE_DIR,
        on_message: Callable[[UsageMessage], None] | None = None,
        interval: float = MESSAGE_POLL_INTERVAL,
        settle_delay: float = 0.05,
    ):
        super().__init__(Path(storage_dir) / "message", interval, settle_delay)
        self.on_message = on_message

    async def load_all_messages(self) -> list[UsageMessage]:
        """Read every existing message with token data and mark all files as seen."""
        return await asyncio.to_thread(self._load_all)

    def _load_all(self) -> list[UsageMessage]:
        messages = []
        for path in record_files(self.directory, self.prefix):
            self.seen.add(path)
            msg = read_record(path, UsageMessage)
            if msg is not None and msg.tokens is not None:
                messages.append(msg)
        logger.info("Loaded %d messages from %s", len(messages), self.directory)
        return messages

    async def _process_new_file(self, path: Path):
        await asyncio.sleep(self.settle_delay)
        msg = await asyncio.to_thread(read_record, path, UsageMessage)
        if msg is None or msg.tokens is None or self._stopped:
            return
        logger.debug("New message %s model=%s", msg.id, msg.model_id)
        if self.on_message is not None:
            self.on_message(msg)
