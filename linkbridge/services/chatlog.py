"""
linkbridge.services.chatlog — Relayed Chat Log File
====================================================

While ``log_chat`` is on, every game and Discord chat message seen by the
bridge is appended to ``chatlog_path``.  The logger follows the config
store's ``chatlog_enabled`` / ``chatlog_disabled`` / ``chatlog_path_changed``
signals, so toggling the option takes effect on the next save.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import TextIO

from linkbridge.engine.config_store import ConfigStore
from linkbridge.engine.events import BridgeEvent, EventType
from linkbridge.game import ChatSent
from linkbridge.interfaces import RemoteMessage

logger = logging.getLogger(__name__)

CHATLOG_TRIGGERS = EventType.GAME_MESSAGE_SENT | EventType.REMOTE_MESSAGE_SENT


class ChatLogger:
    def __init__(self, store: ConfigStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._file: TextIO | None = None
        self._path: Path | None = None

        store.register_callback("chatlog_enabled", self.start)
        store.register_callback("chatlog_disabled", self.stop)
        store.register_callback("chatlog_path_changed", self.restart)

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._file is not None

    @property
    def path(self) -> Path | None:
        return self._path

    def start(self) -> None:
        path = Path(self._store.data.chatlog_path)
        with self._lock:
            if self._file is not None:
                return
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                self._file = open(path, "a", encoding="utf-8")
                self._path = path
            except OSError:
                logger.exception("Could not open chat log at %s", path)
                return
        logger.info("Chat log writing to %s", path)

    def stop(self) -> None:
        with self._lock:
            if self._file is None:
                return
            self._file.close()
            self._file = None
        logger.info("Chat log closed")

    def restart(self) -> None:
        """Reopen at the configured path if logging is on."""
        self.stop()
        if self._store.data.log_chat:
            self.start()

    def write_line(self, line: str) -> None:
        with self._lock:
            if self._file is None:
                return
            stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            self._file.write(f"[{stamp}] {line}\n")
            self._file.flush()

    async def handle_event(self, event: BridgeEvent) -> None:
        message = event.payload
        if isinstance(message, ChatSent):
            line = f"[Game] [#{message.channel}] {message.citizen}: {message.message}"
        elif isinstance(message, RemoteMessage):
            line = (
                f"[Discord] [{message.guild_name} #{message.channel_name}] "
                f"{message.author}: {message.content}"
            )
        else:
            return
        if self.is_open:
            await asyncio.to_thread(self.write_line, line)
