"""
linkbridge.interfaces — Collaborator Contracts
===============================================

The core never talks to discord.py directly.  It talks to a
:class:`RemotePlatform`, which :class:`linkbridge.bot.client.DiscordPlatform`
implements and tests replace with fakes.  The value types exchanged across
that seam live here too.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "DisplayContent",
    "MentionPolicy",
    "RemoteMessage",
    "RemotePlatform",
]


@dataclass(frozen=True, slots=True)
class MentionPolicy:
    """Which mention kinds may be forwarded into a Discord channel."""

    users: bool = True
    roles: bool = True
    channels: bool = True


@dataclass(frozen=True, slots=True)
class DisplayContent:
    """One persistent display message, identified within its channel by *tag*."""

    tag: str
    title: str
    fields: dict[str, str] = field(default_factory=dict)
    thumbnail_url: str | None = None


@dataclass(frozen=True, slots=True)
class RemoteMessage:
    """A chat message observed on the Discord side."""

    guild_id: str
    guild_name: str
    channel_id: str
    channel_name: str
    author: str
    content: str


@runtime_checkable
class RemotePlatform(Protocol):
    """What the bridge needs from the Discord side."""

    @property
    def is_connected(self) -> bool: ...

    def guild_by_name_or_id(self, name_or_id: str) -> Any | None: ...

    def channel_by_name_or_id(self, guild: Any, name_or_id: str) -> Any | None: ...

    async def send_message(
        self, channel: Any, content: str, mentions: MentionPolicy | None = None,
    ) -> None: ...

    async def render_display(self, channel: Any, content: DisplayContent) -> None: ...

    async def set_activity(self, text: str) -> None: ...

    async def grant_role(self, guild: Any, member_id: str, role_name: str) -> bool: ...

    async def revoke_role(self, guild: Any, member_id: str, role_name: str) -> bool: ...

    async def restart(self, token: str) -> bool: ...
