"""
tests/test_config_store.py — ConfigStore Save / Diff Tests
===========================================================

Normalization and defaulting on save, the change callbacks, and the
verification request that follows an external config edit.
"""

from __future__ import annotations

import logging
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from linkbridge.config import ChannelLink, CurrencyChannel, StatusChannel
from linkbridge.constants import DEFAULT_INVITE_MESSAGE, INVITE_LINK_TOKEN
from linkbridge.services import log_buffer


class TestSaveNormalization:
    def test_channel_names_lowercased_and_dashed(self, store):
        store.data.chat_links.append(
            ChannelLink(guild="MyGuild", channel="My Channel", local_channel="General")
        )
        store.data.status_channels.append(StatusChannel(guild="MyGuild", channel="Server Status"))

        assert store.save() is False
        assert store.data.chat_links[0].channel == "my-channel"
        assert store.data.status_channels[0].channel == "server-status"

    def test_second_save_is_idempotent(self, store):
        store.data.chat_links.append(
            ChannelLink(guild="G", channel="Mixed Case Name", local_channel="General")
        )
        store.save()
        assert store.save() is True
        assert store.data.chat_links[0].channel == "mixed-case-name"

    def test_every_target_kind_is_normalized(self, store):
        store.data.currency_channels.append(CurrencyChannel(guild="G", channel="Money Talk"))
        store.save()
        assert store.data.currency_channels[0].channel == "money-talk"

    def test_blank_channel_left_alone(self, store):
        store.data.chat_links.append(ChannelLink(guild="G", channel="", local_channel="L"))
        assert store.save() is True
        assert store.data.chat_links[0].channel == ""

    def test_canonical_config_returns_true(self, store):
        assert store.save() is True

    def test_guild_name_is_not_touched(self, store):
        store.data.chat_links.append(
            ChannelLink(guild="My Guild", channel="c", local_channel="General")
        )
        store.save()
        assert store.data.chat_links[0].guild == "My Guild"


class TestSaveDefaults:
    def test_empty_invite_message_reset_to_template(self, store):
        store.data.invite_message = ""
        assert store.save() is False
        assert store.data.invite_message == DEFAULT_INVITE_MESSAGE
        assert INVITE_LINK_TOKEN in store.data.invite_message

    @pytest.mark.parametrize("field, expected", [
        ("command_prefix", "?"),
        ("local_command_channel", "General"),
    ])
    def test_empty_scalar_defaulted(self, store, field, expected):
        setattr(store.data, field, "")
        assert store.save() is False
        assert getattr(store.data, field) == expected

    def test_empty_chatlog_path_defaulted(self, store):
        store.data.chatlog_path = ""
        assert store.save() is False
        assert store.data.chatlog_path.endswith("Chatlog.txt")

    def test_save_failure_is_contained(self, store):
        with patch("linkbridge.engine.config_store.iter_remote_targets", side_effect=RuntimeError):
            assert store.save() is False


class TestSaveCallbacks:
    def test_snapshot_replaced(self, store):
        store.data.server_name = "Renamed"
        store.save()
        assert store.previous.server_name == "Renamed"
        assert store.previous is not store.data

    def test_chatlog_toggle_callbacks(self, store):
        enabled, disabled = MagicMock(), MagicMock()
        store.register_callback("chatlog_enabled", enabled)
        store.register_callback("chatlog_disabled", disabled)

        store.data.log_chat = True
        store.save()
        store.save()
        store.data.log_chat = False
        store.save()

        enabled.assert_called_once()
        disabled.assert_called_once()

    def test_chatlog_path_change_callback(self, store, tmp_path):
        changed = MagicMock()
        store.register_callback("chatlog_path_changed", changed)
        store.data.chatlog_path = str(tmp_path / "other.log")
        store.save()
        changed.assert_called_once()

    def test_config_saved_fires_every_save(self, store):
        saved = MagicMock()
        store.register_callback("config_saved", saved)
        store.save()
        store.save()
        assert saved.call_count == 2

    def test_unknown_callback_name_rejected(self, store):
        with pytest.raises(ValueError, match="Unknown config callback"):
            store.register_callback("on_everything", MagicMock())

    def test_failing_callback_does_not_break_save(self, store):
        store.register_callback("config_saved", MagicMock(side_effect=RuntimeError("boom")))
        assert store.save() is True
        assert store.previous.bot_token == "token"


class TestOnConfigChanged:
    @pytest.fixture
    def signals(self, store):
        verify, token = MagicMock(), MagicMock()
        store.register_callback("verification_requested", verify)
        store.register_callback("token_changed", token)
        return verify, token

    def test_clean_change_requests_verification(self, store, signals):
        verify, token = signals
        store.data.server_name = "Changed"
        store.on_config_changed()
        verify.assert_called_once()
        token.assert_not_called()

    def test_token_change_skips_verification(self, store, signals):
        verify, token = signals
        store.data.bot_token = "new-token"
        store.on_config_changed()
        token.assert_called_once()
        verify.assert_not_called()

    def test_correction_verifies_once_on_canonical_pass(self, store, signals):
        verify, _ = signals
        store.data.chat_links.append(
            ChannelLink(guild="G", channel="Needs Fixing", local_channel="General")
        )
        store.on_config_changed()
        verify.assert_called_once()
        assert store.data.chat_links[0].channel == "needs-fixing"

    def test_editing_context_runs_change_path(self, store, signals):
        verify, _ = signals
        with store.editing() as data:
            data.chat_links.append(
                ChannelLink(guild="MyGuild", channel="My Channel", local_channel="General")
            )
        assert store.data.chat_links[0].channel == "my-channel"
        verify.assert_called_once()


class TestReloadAndLookups:
    def test_reload_copies_into_live_root(self, store, tmp_path):
        path = tmp_path / "linkbridge.yaml"
        path.write_text(
            "bot_token: token\n"
            "chat_links:\n"
            "  - {guild: MyGuild, channel: Some Channel, local_channel: General}\n",
            encoding="utf-8",
        )
        live = store.data
        assert store.reload(path) is True
        assert store.data is live
        assert live.chat_links[0].channel == "some-channel"

    def test_reload_failure_returns_false(self, store, tmp_path):
        assert store.reload(tmp_path / "missing.yaml") is False

    def test_empty_int_field_reloads_with_default(self, store, tmp_path):
        path = tmp_path / "linkbridge.yaml"
        path.write_text(
            "bot_token: token\n"
            "currency_channels:\n"
            "  - guild: MyGuild\n"
            "    channel: money\n"
            "    max_currency_count:\n",
            encoding="utf-8",
        )
        assert store.reload(path) is True
        assert store.data.currency_channels[0].max_currency_count == 5

    @pytest.mark.parametrize("document", [
        "chat_links: {guild: G, channel: c, local_channel: L}\n",
        "status_channels:\n  - just-a-name\n",
        "log_chat: maybe\n",
        "currency_channels:\n  - {guild: G, channel: c, max_currency_count: lots}\n",
    ])
    def test_malformed_document_returns_false_and_keeps_live_config(
        self, store, tmp_path, document,
    ):
        store.data.server_name = "Before"
        path = tmp_path / "linkbridge.yaml"
        path.write_text(document, encoding="utf-8")
        assert store.reload(path) is False
        assert store.data.server_name == "Before"
        assert store.data.chat_links == []

    def test_write_then_reload(self, store):
        store.data.server_name = "Persisted"
        store.write()
        store.data.server_name = "Scratch"
        assert store.reload() is True
        assert store.data.server_name == "Persisted"

    def test_chat_link_lookups_are_case_insensitive(self, store):
        store.data.chat_links.extend([
            ChannelLink(guild="MyGuild", channel="my-channel", local_channel="General"),
            ChannelLink(guild="", channel="my-channel", local_channel="General"),
        ])
        assert len(store.chat_links_for_local("general")) == 1
        assert len(store.chat_links_for_remote(("123", "myguild"), ("456", "MY-CHANNEL"))) == 1
        assert store.chat_links_for_remote(("other",), ("my-channel",)) == []


class TestDebugFlag:
    def test_debug_raises_logger_and_capture_level(self, store):
        handler = log_buffer.install_handler()
        try:
            store.data.debug = True
            store.save()
            assert logging.getLogger("linkbridge").level == logging.DEBUG
            assert handler.level == logging.DEBUG
        finally:
            store.data.debug = False
            store.save()
        assert logging.getLogger("linkbridge").level == logging.NOTSET
        assert handler.level == logging.INFO


class TestConcurrentSaves:
    def test_saves_never_interleave(self, store):
        inside: list[int] = []
        overlaps: list[int] = []
        guard = threading.Lock()

        def slow_saved_callback():
            with guard:
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(len(inside))
            time.sleep(0.005)
            with guard:
                inside.pop()

        store.register_callback("config_saved", slow_saved_callback)
        start = threading.Barrier(8)

        def editor(n: int):
            start.wait()
            for i in range(5):
                store.data.server_name = f"editor-{n}-{i}"
                store.data.chat_links.append(
                    ChannelLink(guild="G", channel=f"Room {n} {i}", local_channel="L")
                )
                store.save()

        threads = [threading.Thread(target=editor, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert overlaps == []
        assert len(store.data.chat_links) == 40
        # A final save leaves the snapshot equal to the live config.
        store.save()
        assert store.previous == store.data
        assert store.previous is not store.data
        assert all(" " not in link.channel for link in store.previous.chat_links)
