"""
linkbridge.config — Live Configuration Tree & YAML Loader
==========================================================

**Why this file exists:**
The bridge is configured by a single human-editable YAML document that
server admins change while the server runs.  This module defines the typed
(but mutable) tree that document is parsed into, plus the helpers that move
it to and from disk.

The root object is created once per process.  Reloads copy new values into
the existing tree (:func:`copy_into`) so every component holding a
reference keeps seeing the live data.

Usage::

    from linkbridge.config import load_config

    data = load_config("linkbridge.yaml")
    for link in data.chat_links:
        print(link.link_id)      # "MyGuild - my-channel <--> General (Chat Link)"
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import yaml

from linkbridge.constants import (
    DEFAULT_COMMAND_PREFIX,
    DEFAULT_INVITE_MESSAGE,
    DEFAULT_LOCAL_COMMAND_CHANNEL,
    default_chatlog_path,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "linkbridge.yaml"


# ---------------------------------------------------------------------------
# Remote targets: anything that points at a Discord guild + channel
# ---------------------------------------------------------------------------
@dataclass
class RemoteTarget:
    """A Discord guild/channel pair, each given by name or ID."""

    KIND: ClassVar[str] = "Remote Target"

    guild: str = ""
    channel: str = ""

    def is_valid(self) -> bool:
        """False for inert targets (any required identifier blank)."""
        return bool(self.guild.strip()) and bool(self.channel.strip())

    @property
    def link_id(self) -> str:
        return f"{self.guild} - {self.channel} ({self.KIND})"


@dataclass
class ChannelLink(RemoteTarget):
    """Two-way chat link between a Discord channel and a game chat channel."""

    KIND: ClassVar[str] = "Chat Link"

    local_channel: str = ""
    allow_user_mentions: bool = True
    allow_role_mentions: bool = True
    allow_channel_mentions: bool = True

    def is_valid(self) -> bool:
        return super().is_valid() and bool(self.local_channel.strip())

    @property
    def link_id(self) -> str:
        return f"{self.guild} - {self.channel} <--> {self.local_channel} ({self.KIND})"


@dataclass
class StatusChannel(RemoteTarget):
    """Channel holding the persistent server-info display."""

    KIND: ClassVar[str] = "Server Info"

    use_name: bool = True
    use_description: bool = False
    use_logo: bool = True
    use_address: bool = True
    use_player_count: bool = True
    use_player_list: bool = True


@dataclass
class CurrencyChannel(RemoteTarget):
    KIND: ClassVar[str] = "Currency Display"

    max_currency_count: int = 5
    use_trade_count: bool = True


@dataclass
class FeedChannel(RemoteTarget):
    """A channel that receives one-shot feed posts."""

    KIND: ClassVar[str] = "Feed"


@dataclass
class CraftingFeedChannel(FeedChannel):
    KIND: ClassVar[str] = "Crafting Feed"


@dataclass
class TradeFeedChannel(FeedChannel):
    KIND: ClassVar[str] = "Trade Feed"


@dataclass
class PlayerStatusFeedChannel(FeedChannel):
    KIND: ClassVar[str] = "Player Status Feed"


@dataclass
class ServerStatusFeedChannel(FeedChannel):
    KIND: ClassVar[str] = "Server Status Feed"


@dataclass
class ElectionFeedChannel(FeedChannel):
    KIND: ClassVar[str] = "Election Feed"


# ---------------------------------------------------------------------------
# Per-user overrides
# ---------------------------------------------------------------------------
@dataclass
class ChannelIdentifier:
    guild: str = ""
    channel: str = ""


@dataclass
class IdentityLinkConfig:
    """Per-user override keyed by the game-side user name."""

    username: str = ""
    default_channel: ChannelIdentifier = field(default_factory=ChannelIdentifier)


# Collection field name → item class.  Order is the verification order.
TARGET_COLLECTIONS: dict[str, type[RemoteTarget]] = {
    "chat_links": ChannelLink,
    "status_channels": StatusChannel,
    "currency_channels": CurrencyChannel,
    "crafting_feed_channels": CraftingFeedChannel,
    "trade_feed_channels": TradeFeedChannel,
    "player_status_feed_channels": PlayerStatusFeedChannel,
    "server_status_feed_channels": ServerStatusFeedChannel,
    "election_feed_channels": ElectionFeedChannel,
}


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------
@dataclass
class BridgeConfigData:
    """The whole live configuration.  Mutable; never reconstructed at runtime."""

    # Bot
    bot_token: str = ""
    debug: bool = False

    # Commands
    command_prefix: str = DEFAULT_COMMAND_PREFIX
    local_command_channel: str = DEFAULT_LOCAL_COMMAND_CHANNEL
    invite_message: str = DEFAULT_INVITE_MESSAGE

    # Chat log
    log_chat: bool = False
    chatlog_path: str = field(default_factory=default_chatlog_path)

    # Server details
    server_name: str = ""
    server_description: str = ""
    server_logo: str = ""
    server_address: str = ""

    # Roles
    linked_user_role: str = ""

    # Channels
    chat_links: list[ChannelLink] = field(default_factory=list)
    status_channels: list[StatusChannel] = field(default_factory=list)
    currency_channels: list[CurrencyChannel] = field(default_factory=list)
    crafting_feed_channels: list[CraftingFeedChannel] = field(default_factory=list)
    trade_feed_channels: list[TradeFeedChannel] = field(default_factory=list)
    player_status_feed_channels: list[PlayerStatusFeedChannel] = field(default_factory=list)
    server_status_feed_channels: list[ServerStatusFeedChannel] = field(default_factory=list)
    election_feed_channels: list[ElectionFeedChannel] = field(default_factory=list)

    # Users
    identity_links: list[IdentityLinkConfig] = field(default_factory=list)

    def clone(self) -> BridgeConfigData:
        """Deep copy, used for the previous-save snapshot."""
        return copy.deepcopy(self)


def iter_remote_targets(data: BridgeConfigData) -> Iterator[RemoteTarget]:
    """Yield every configured remote target, inert ones included."""
    for name in TARGET_COLLECTIONS:
        yield from getattr(data, name)


def iter_valid_targets(data: BridgeConfigData) -> Iterator[RemoteTarget]:
    """Yield only the non-inert targets."""
    return (t for t in iter_remote_targets(data) if t.is_valid())


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0"})


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _coerce(value: Any, default: Any) -> Any:
    """Coerce a raw YAML value to the type of the field's default.

    ``None`` (an empty YAML value) keeps the default.
    """
    if value is None:
        return default
    if isinstance(default, bool):
        return _coerce_bool(value)
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Expected an integer, got {value!r}") from None
    if isinstance(value, (dict, list)):
        raise ValueError(f"Expected a scalar, got {value!r}")
    return str(value)


def _build(cls: type, raw: Any) -> Any:
    """Instantiate a flat dataclass *cls* from *raw*, ignoring unknown keys."""
    obj = cls()
    if not raw:
        return obj
    if not isinstance(raw, dict):
        raise ValueError(f"{cls.__name__} entry must be a mapping, got {raw!r}")
    known = {f.name: f for f in dataclasses.fields(cls)}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Unknown %s key '%s', ignoring", cls.__name__, key)
            continue
        setattr(obj, key, _coerce(value, getattr(obj, key)))
    return obj


def _build_identity_link(raw: Any) -> IdentityLinkConfig:
    if raw is not None and not isinstance(raw, dict):
        raise ValueError(f"identity_links entry must be a mapping, got {raw!r}")
    raw = dict(raw or {})
    channel_raw = raw.pop("default_channel", None)
    link = _build(IdentityLinkConfig, raw)
    link.default_channel = _build(ChannelIdentifier, channel_raw)
    return link


def _as_list(key: str, value: Any) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list, got {type(value).__name__}")
    return value


def config_from_dict(raw: dict) -> BridgeConfigData:
    """Build a :class:`BridgeConfigData` from a parsed YAML mapping.

    Raises ``ValueError`` when a value has the wrong shape.
    """
    data = BridgeConfigData()
    for key, value in raw.items():
        if key in TARGET_COLLECTIONS:
            item_cls = TARGET_COLLECTIONS[key]
            setattr(data, key, [_build(item_cls, item) for item in _as_list(key, value)])
        elif key == "identity_links":
            data.identity_links = [
                _build_identity_link(item) for item in _as_list(key, value)
            ]
        elif hasattr(data, key):
            setattr(data, key, _coerce(value, getattr(data, key)))
        else:
            logger.warning("Unknown config key '%s', ignoring", key)
    return data


def config_to_dict(data: BridgeConfigData) -> dict[str, Any]:
    return dataclasses.asdict(data)


def copy_into(dst: BridgeConfigData, src: BridgeConfigData) -> None:
    """Copy every field of *src* into the existing *dst* object."""
    for f in dataclasses.fields(BridgeConfigData):
        setattr(dst, f.name, copy.deepcopy(getattr(src, f.name)))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> BridgeConfigData:
    """Read *path* and return a :class:`BridgeConfigData` instance.

    Missing keys take their defaults.  An empty ``bot_token`` falls back to
    the ``DISCORD_TOKEN`` environment variable.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If the document root is not a mapping, or a value has the wrong
        type (a collection that is not a list, a non-boolean flag).
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy linkbridge.yaml.example → linkbridge.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    data = config_from_dict(raw)
    if not data.bot_token:
        data.bot_token = os.getenv("DISCORD_TOKEN", "")
    return data


def write_config(data: BridgeConfigData, path: str | Path = DEFAULT_CONFIG_PATH) -> None:
    """Persist *data* to *path*, keeping field order."""
    with open(Path(path), "w", encoding="utf-8") as fh:
        yaml.safe_dump(config_to_dict(data), fh, sort_keys=False, allow_unicode=True)
