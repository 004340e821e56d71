"""
linkbridge.engine.config_store — Live Config Store & Differ
============================================================

Owns the live :class:`~linkbridge.config.BridgeConfigData` and a snapshot of
it as of the last successful save.  Every save:

1. normalizes the document (Discord channel names lower-case with dashes,
   empty required scalars reset to their defaults);
2. diffs it against the snapshot and fires the change callbacks
   (chat-log toggled, chat-log path changed, config saved);
3. replaces the snapshot.

Saves are serialized by a re-entrant lock so concurrent editors cannot
interleave their read-modify-write of the snapshot.

Usage::

    store = ConfigStore(load_config(), path="linkbridge.yaml")
    store.register_callback("verification_requested", verifier.verify_config)

    with store.editing() as data:
        data.chat_links.append(ChannelLink(guild="MyGuild", channel="My Channel",
                                           local_channel="General"))
    # → normalized to "my-channel", snapshot replaced, verification requested
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import yaml

from linkbridge.config import (
    BridgeConfigData,
    ChannelLink,
    copy_into,
    iter_remote_targets,
    load_config,
    write_config,
)
from linkbridge.constants import (
    DEFAULT_COMMAND_PREFIX,
    DEFAULT_INVITE_MESSAGE,
    DEFAULT_LOCAL_COMMAND_CHANNEL,
    default_chatlog_path,
    normalize_channel_name,
)
from linkbridge.services import log_buffer

logger = logging.getLogger(__name__)

# Allowlist of callback names accepted by register_callback().
CALLBACK_NAMES: frozenset[str] = frozenset({
    "config_saved",
    "chatlog_enabled",
    "chatlog_disabled",
    "chatlog_path_changed",
    "token_changed",
    "verification_requested",
})


def _matches(value: str, candidates: tuple[str, ...]) -> bool:
    folded = value.strip().casefold()
    return any(folded == c.strip().casefold() for c in candidates if c)


class ConfigStore:
    """Thread-safe holder of the live configuration and its last-saved snapshot."""

    def __init__(self, data: BridgeConfigData, path: str | Path | None = None) -> None:
        self._data = data
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._previous = data.clone()
        self._callbacks: dict[str, list[Callable[[], object]]] = {
            name: [] for name in CALLBACK_NAMES
        }

    @property
    def data(self) -> BridgeConfigData:
        """The live configuration.  Same object for the life of the process."""
        return self._data

    @property
    def previous(self) -> BridgeConfigData:
        """Snapshot taken at the end of the last successful save."""
        return self._previous

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------
    def register_callback(self, name: str, callback: Callable[[], object]) -> None:
        """Register a zero-argument *callback* for the change signal *name*."""
        if name not in CALLBACK_NAMES:
            raise ValueError(
                f"Unknown config callback '{name}'. Allowed: {sorted(CALLBACK_NAMES)}"
            )
        self._callbacks[name].append(callback)

    def _fire(self, name: str) -> None:
        for callback in list(self._callbacks[name]):
            try:
                callback()
            except Exception:
                logger.exception("Config callback '%s' failed", name)

    # -------------------------------------------------------------------
    # Save / normalize / diff
    # -------------------------------------------------------------------
    def save(self) -> bool:
        """Normalize, diff and snapshot the live config.

        Returns True when nothing needed correcting, False when at least one
        field was defaulted or normalized (the save still completes).
        """
        try:
            with self._lock:
                return self._save_locked()
        except Exception:
            logger.exception("Config save failed")
            return False

    def _save_locked(self) -> bool:
        data = self._data
        prev = self._previous
        corrected = False

        # Command prefix
        if not data.command_prefix:
            data.command_prefix = DEFAULT_COMMAND_PREFIX
            corrected = True
            logger.info("Command prefix found empty - resetting to default.")
        if data.command_prefix != prev.command_prefix:
            logger.info("Command prefix changed - restart required to take effect.")

        # Remote channel names
        for target in iter_remote_targets(data):
            if not target.channel.strip():
                continue
            original = target.channel
            fixed = normalize_channel_name(original)
            if fixed != original:
                target.channel = fixed
                corrected = True
                logger.info(
                    'Corrected Discord channel name in %s with guild "%s" from "%s" to "%s"',
                    target.KIND, target.guild, original, fixed,
                )

        # Chat log toggle
        if data.log_chat and not prev.log_chat:
            logger.info("Chatlog enabled")
            self._fire("chatlog_enabled")
        elif not data.log_chat and prev.log_chat:
            logger.info("Chatlog disabled")
            self._fire("chatlog_disabled")

        # Chat log path
        if not data.chatlog_path:
            data.chatlog_path = default_chatlog_path()
            corrected = True
        if data.chatlog_path != prev.chatlog_path:
            logger.info("Chatlog path changed. New path: %s", data.chatlog_path)
            self._fire("chatlog_path_changed")

        # Local command channel
        if not data.local_command_channel:
            data.local_command_channel = DEFAULT_LOCAL_COMMAND_CHANNEL
            corrected = True

        # Invite message
        if not data.invite_message:
            data.invite_message = DEFAULT_INVITE_MESSAGE
            corrected = True

        # Debug output
        logging.getLogger("linkbridge").setLevel(
            logging.DEBUG if data.debug else logging.NOTSET
        )
        log_buffer.set_capture_level("DEBUG" if data.debug else "INFO")

        self._fire("config_saved")
        self._previous = data.clone()
        return not corrected

    def on_config_changed(self) -> None:
        """Entry point for external edits of the live config.

        A bot-token change triggers ``token_changed`` and no verification
        (the reconnect verifies).  A save that needed corrections does not
        verify either; the corrected config goes through the change path
        once more, and that canonical pass requests verification.
        """
        self._handle_change(retrigger=True)

    def _handle_change(self, retrigger: bool) -> None:
        try:
            with self._lock:
                token_changed = self._data.bot_token != self._previous.bot_token
                correction_made = not self.save()

            if token_changed:
                self._fire("token_changed")

            if correction_made:
                if retrigger and not token_changed:
                    self._handle_change(retrigger=False)
            elif not token_changed:
                self._fire("verification_requested")
        except Exception:
            logger.exception("Failed to handle config change")

    @contextmanager
    def editing(self) -> Iterator[BridgeConfigData]:
        """Edit the live config under the save lock, then run the change path."""
        with self._lock:
            yield self._data
        self.on_config_changed()

    # -------------------------------------------------------------------
    # Disk
    # -------------------------------------------------------------------
    def reload(self, path: str | Path | None = None) -> bool:
        """Re-read the document into the live config.  Returns False on failure."""
        source = Path(path) if path is not None else self._path
        if source is None:
            logger.warning("Config reload requested but no path is configured")
            return False
        try:
            fresh = load_config(source)
        except (OSError, TypeError, ValueError, yaml.YAMLError):
            logger.exception("Failed to reload config from %s", source)
            return False

        with self._lock:
            copy_into(self._data, fresh)
        logger.info("Config reloaded from %s", source)
        self.on_config_changed()
        return True

    def write(self, path: str | Path | None = None) -> None:
        target = Path(path) if path is not None else self._path
        if target is None:
            raise ValueError("No config path configured")
        with self._lock:
            write_config(self._data, target)

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def chat_links_for_remote(
        self, guild_keys: tuple[str, ...], channel_keys: tuple[str, ...],
    ) -> list[ChannelLink]:
        """Chat links whose guild and channel match any of the given names/IDs."""
        return [
            link for link in list(self._data.chat_links)
            if link.is_valid()
            and _matches(link.guild, guild_keys)
            and _matches(link.channel, channel_keys)
        ]

    def chat_links_for_local(self, channel: str) -> list[ChannelLink]:
        """Chat links bound to the game chat channel *channel*."""
        return [
            link for link in list(self._data.chat_links)
            if link.is_valid() and _matches(link.local_channel, (channel,))
        ]
