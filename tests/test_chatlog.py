"""
tests/test_chatlog.py — Chat Log Writer Tests
==============================================
"""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path

from linkbridge.engine.events import BridgeEvent, EventType
from linkbridge.game import ChatSent
from linkbridge.interfaces import RemoteMessage
from linkbridge.services.chatlog import ChatLogger


def run_async(coro):
    """Run a coroutine in a fresh event loop (test helper)."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class TestChatLogger:
    def test_enabled_by_config_save(self, store):
        chatlog = ChatLogger(store)
        store.data.log_chat = True
        store.save()
        assert chatlog.is_open

        run_async(chatlog.handle_event(
            BridgeEvent(EventType.GAME_MESSAGE_SENT, (ChatSent("Alice", "General", "hello"),))
        ))
        run_async(chatlog.handle_event(BridgeEvent(
            EventType.REMOTE_MESSAGE_SENT,
            (RemoteMessage("1", "MyGuild", "2", "my-channel", "Carol", "hey"),),
        )))

        store.data.log_chat = False
        store.save()
        assert not chatlog.is_open

        lines = Path(store.data.chatlog_path).read_text(encoding="utf-8").splitlines()
        assert lines[0].endswith("[Game] [#General] Alice: hello")
        assert lines[1].endswith("[Discord] [MyGuild #my-channel] Carol: hey")

    def test_nothing_written_while_disabled(self, store):
        chatlog = ChatLogger(store)
        chatlog.write_line("ignored")
        assert not Path(store.data.chatlog_path).exists()

    def test_path_change_reopens(self, store, tmp_path):
        chatlog = ChatLogger(store)
        store.data.log_chat = True
        store.save()

        store.data.chatlog_path = str(tmp_path / "logs" / "moved.txt")
        store.save()
        assert chatlog.path == tmp_path / "logs" / "moved.txt"
        chatlog.write_line("after move")
        chatlog.stop()
        assert "after move" in (tmp_path / "logs" / "moved.txt").read_text(encoding="utf-8")

    def test_event_lines_written_off_the_loop_thread(self, store):
        chatlog = ChatLogger(store)
        store.data.log_chat = True
        store.save()

        writer_threads = []
        original = chatlog.write_line

        def recording_write(line):
            writer_threads.append(threading.current_thread())
            original(line)

        chatlog.write_line = recording_write
        run_async(chatlog.handle_event(
            BridgeEvent(EventType.GAME_MESSAGE_SENT, (ChatSent("Alice", "General", "hi"),))
        ))
        chatlog.stop()

        assert len(writer_threads) == 1
        assert writer_threads[0] is not threading.current_thread()
        assert "Alice: hi" in Path(store.data.chatlog_path).read_text(encoding="utf-8")
