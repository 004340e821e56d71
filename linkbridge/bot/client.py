"""
linkbridge.bot.client — discord.py Adapter
===========================================

:class:`DiscordPlatform` is the only place that touches discord.py.  It is
both the :class:`~linkbridge.interfaces.RemotePlatform` the core sends
through and the event source that tells the plugin about connection
changes and incoming chat.

Guilds and channels are looked up from the gateway cache by ID (all
digits) or by case-insensitive name.  Persistent displays are embeds
edited in place; the message for each ``(channel, tag)`` pair is cached and
re-found from recent channel history after a restart via the embed footer.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import discord

from linkbridge.engine.events import EventType
from linkbridge.interfaces import DisplayContent, MentionPolicy, RemoteMessage

if TYPE_CHECKING:
    from linkbridge.bot.core import BridgePlugin

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
MAX_FIELD_LENGTH = 1024
DISPLAY_HISTORY_SCAN = 25
DISPLAY_COLOUR = discord.Colour.dark_teal()

_CHANNEL_MENTION = re.compile(r"<#(\d+)>")


class DiscordPlatform(discord.Client):
    """discord.py client implementing the remote-platform contract."""

    def __init__(self, plugin: BridgePlugin) -> None:
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: chat relay
        intents.members = True            # Privileged: role grants
        intents.presences = False
        super().__init__(intents=intents)

        self.plugin = plugin
        self.restart_token: str | None = None
        self._displays: dict[tuple[int, str], discord.Message] = {}

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    @property
    def is_connected(self) -> bool:
        return self.is_ready() and not self.is_closed()

    def guild_by_name_or_id(self, name_or_id: str) -> discord.Guild | None:
        key = name_or_id.strip()
        if not key:
            return None
        if key.isdigit():
            guild = self.get_guild(int(key))
            if guild is not None:
                return guild
        folded = key.casefold()
        return next((g for g in self.guilds if g.name.casefold() == folded), None)

    def channel_by_name_or_id(
        self, guild: discord.Guild, name_or_id: str,
    ) -> discord.TextChannel | None:
        key = name_or_id.strip().lstrip("#")
        if not key:
            return None
        if key.isdigit():
            channel = guild.get_channel(int(key))
            if isinstance(channel, discord.TextChannel):
                return channel
        folded = key.casefold()
        return next((c for c in guild.text_channels if c.name.casefold() == folded), None)

    # -------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------
    async def send_message(
        self,
        channel: discord.abc.Messageable,
        content: str,
        mentions: MentionPolicy | None = None,
    ) -> None:
        policy = mentions or MentionPolicy()
        if not policy.channels:
            content = _CHANNEL_MENTION.sub(r"#\1", content)
        if len(content) > MAX_MESSAGE_LENGTH:
            content = content[: MAX_MESSAGE_LENGTH - 3] + "..."
        allowed = discord.AllowedMentions(
            everyone=False, users=policy.users, roles=policy.roles, replied_user=False,
        )
        await channel.send(content, allowed_mentions=allowed)

    def _build_embed(self, content: DisplayContent) -> discord.Embed:
        embed = discord.Embed(title=content.title, colour=DISPLAY_COLOUR)
        for name, value in content.fields.items():
            embed.add_field(name=name, value=(value or "-")[:MAX_FIELD_LENGTH], inline=False)
        if content.thumbnail_url:
            embed.set_thumbnail(url=content.thumbnail_url)
        embed.set_footer(text=content.tag)
        return embed

    async def _find_display(
        self, channel: discord.TextChannel, tag: str,
    ) -> discord.Message | None:
        async for message in channel.history(limit=DISPLAY_HISTORY_SCAN):
            if message.author != self.user:
                continue
            if any(e.footer and e.footer.text == tag for e in message.embeds):
                return message
        return None

    async def render_display(self, channel: discord.TextChannel, content: DisplayContent) -> None:
        key = (channel.id, content.tag)
        embed = self._build_embed(content)

        message = self._displays.get(key)
        if message is None:
            message = await self._find_display(channel, content.tag)
        if message is not None:
            try:
                self._displays[key] = await message.edit(embed=embed)
                return
            except discord.NotFound:
                self._displays.pop(key, None)

        self._displays[key] = await channel.send(embed=embed)

    async def set_activity(self, text: str) -> None:
        await self.change_presence(
            activity=discord.Activity(type=discord.ActivityType.watching, name=text),
        )

    # -------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------
    async def _resolve_member_and_role(
        self, guild: discord.Guild, member_id: str, role_name: str,
    ) -> tuple[discord.Member, discord.Role] | None:
        role = discord.utils.get(guild.roles, name=role_name)
        if role is None:
            logger.warning("Role %r not found in guild %s", role_name, guild.name)
            return None
        member = guild.get_member(int(member_id))
        if member is None:
            try:
                member = await guild.fetch_member(int(member_id))
            except discord.NotFound:
                logger.warning("Member %s not found in guild %s", member_id, guild.name)
                return None
        return member, role

    async def grant_role(self, guild: discord.Guild, member_id: str, role_name: str) -> bool:
        resolved = await self._resolve_member_and_role(guild, member_id, role_name)
        if resolved is None:
            return False
        member, role = resolved
        if role in member.roles:
            return False
        try:
            await member.add_roles(role, reason="LinkBridge: account link verified")
        except discord.Forbidden:
            logger.warning("Missing permissions to grant %r in guild %s", role_name, guild.name)
            return False
        return True

    async def revoke_role(self, guild: discord.Guild, member_id: str, role_name: str) -> bool:
        resolved = await self._resolve_member_and_role(guild, member_id, role_name)
        if resolved is None:
            return False
        member, role = resolved
        if role not in member.roles:
            return False
        try:
            await member.remove_roles(role, reason="LinkBridge: account link removed")
        except discord.Forbidden:
            logger.warning("Missing permissions to revoke %r in guild %s", role_name, guild.name)
            return False
        return True

    async def restart(self, token: str) -> bool:
        """Close this client; the runner reconnects with *token*."""
        if not token:
            logger.warning("Restart requested without a bot token")
            return False
        self.restart_token = token
        await self.close()
        return True

    # -------------------------------------------------------------------
    # Lifecycle hooks
    # -------------------------------------------------------------------
    async def setup_hook(self) -> None:
        self.plugin.on_client_connecting()

    async def on_ready(self) -> None:
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)
        await self.plugin.on_client_connected(self)

    async def on_resumed(self) -> None:
        await self.plugin.on_client_connected(self)

    async def on_disconnect(self) -> None:
        await self.plugin.on_client_disconnected()

    async def close(self) -> None:
        await self.plugin.on_client_disconnected()
        self.plugin.attach_platform(None)
        await super().close()

    async def on_message(self, message: discord.Message) -> None:
        if message.author == self.user or message.author.bot or message.webhook_id:
            return
        if message.guild is None or not message.content:
            return
        self.plugin.dispatcher.dispatch(
            EventType.REMOTE_MESSAGE_SENT,
            RemoteMessage(
                guild_id=str(message.guild.id),
                guild_name=message.guild.name,
                channel_id=str(message.channel.id),
                channel_name=getattr(message.channel, "name", ""),
                author=message.author.display_name,
                content=message.clean_content,
            ),
        )
