"""
linkbridge.modules.feeds — Chat Relay & Event Feeds
====================================================

:class:`ChatRelay` is the two-way chat link: game chat goes out to every
chat link bound to the game channel, Discord chat comes back into the
link's game channel.  The feeds post a one-line announcement per matching
game event to their configured channels.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from linkbridge.config import FeedChannel
from linkbridge.engine.events import EventType
from linkbridge.game import (
    ChatSent,
    CreateWorkOrder,
    CurrencyTrade,
    Election,
    GameUser,
)
from linkbridge.interfaces import MentionPolicy, RemoteMessage
from linkbridge.modules.base import FeedModule, Module, any_valid

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Chat relay
# ---------------------------------------------------------------------------
class ChatRelay(Module):
    NAME = "Chat Relay"

    @property
    def triggers(self) -> EventType:
        return super().triggers | EventType.GAME_MESSAGE_SENT | EventType.REMOTE_MESSAGE_SENT

    def should_run(self) -> bool:
        return any_valid(self.ctx.store.data.chat_links)

    async def update_internal(self, trigger: EventType, *data: Any) -> None:
        message = data[0] if data else None
        if trigger & EventType.GAME_MESSAGE_SENT and isinstance(message, ChatSent):
            await self._relay_to_remote(message)
        elif trigger & EventType.REMOTE_MESSAGE_SENT and isinstance(message, RemoteMessage):
            await self._relay_to_game(message)

    async def _relay_to_remote(self, message: ChatSent) -> None:
        platform = self.ctx.platform
        if platform is None:
            return
        for link in self.ctx.store.chat_links_for_local(message.channel):
            channel = self.ctx.resolve(link)
            if channel is None:
                continue
            policy = MentionPolicy(
                users=link.allow_user_mentions,
                roles=link.allow_role_mentions,
                channels=link.allow_channel_mentions,
            )
            try:
                await platform.send_message(
                    channel, f"**{message.citizen}**: {message.message}", policy,
                )
                self.op_count += 1
            except Exception:
                logger.exception("Failed to relay game chat to %s", link.link_id)

    async def _relay_to_game(self, message: RemoteMessage) -> None:
        links = self.ctx.store.chat_links_for_remote(
            (message.guild_id, message.guild_name),
            (message.channel_id, message.channel_name),
        )
        for link in links:
            try:
                await asyncio.to_thread(
                    self.ctx.game.send_chat,
                    link.local_channel,
                    f"[Discord] {message.author}: {message.content}",
                )
                self.op_count += 1
            except Exception:
                logger.exception("Failed to relay Discord chat to #%s", link.local_channel)


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------
class CraftingFeed(FeedModule):
    NAME = "Crafting Feed"
    FEED_TRIGGERS = EventType.WORK_ORDER_CREATED

    def get_feed_targets(self) -> list[FeedChannel]:
        return list(self.ctx.store.data.crafting_feed_channels)

    def format_event(self, trigger: EventType, *data: Any) -> str | None:
        order = data[0] if data else None
        if not isinstance(order, CreateWorkOrder):
            return None
        text = f"{order.citizen} started creating {order.count} {order.item}"
        if order.station:
            text += f" at {order.station}"
        return text


class TradeFeed(FeedModule):
    NAME = "Trade Feed"
    FEED_TRIGGERS = EventType.TRADE

    def get_feed_targets(self) -> list[FeedChannel]:
        return list(self.ctx.store.data.trade_feed_channels)

    def format_event(self, trigger: EventType, *data: Any) -> str | None:
        trade = data[0] if data else None
        if not isinstance(trade, CurrencyTrade):
            return None
        verb, preposition = ("bought", "from") if trade.bought else ("sold", "to")
        item = f" {trade.item}" if trade.item else ""
        return (
            f"{trade.citizen} {verb}{item} {preposition} {trade.other_party} "
            f"for {trade.amount:g} {trade.currency}"
        )


class PlayerStatusFeed(FeedModule):
    NAME = "Player Status Feed"
    FEED_TRIGGERS = EventType.JOIN | EventType.LOGIN | EventType.LOGOUT

    _VERBS = {
        EventType.JOIN: "joined the server for the first time",
        EventType.LOGIN: "logged in",
        EventType.LOGOUT: "logged out",
    }

    def get_feed_targets(self) -> list[FeedChannel]:
        return list(self.ctx.store.data.player_status_feed_channels)

    def format_event(self, trigger: EventType, *data: Any) -> str | None:
        user = data[0] if data else None
        name = user.name if isinstance(user, GameUser) else user
        if not name:
            return None
        for kind, verb in self._VERBS.items():
            if trigger & kind:
                return f"{name} {verb}"
        return None


class ServerStatusFeed(FeedModule):
    NAME = "Server Status Feed"
    FEED_TRIGGERS = EventType.SERVER_STARTED | EventType.SERVER_STOPPED | EventType.WORLD_RESET

    def get_feed_targets(self) -> list[FeedChannel]:
        return list(self.ctx.store.data.server_status_feed_channels)

    def format_event(self, trigger: EventType, *data: Any) -> str | None:
        name = self.ctx.store.data.server_name or self.ctx.game.server_info().name or "The server"
        if trigger & EventType.SERVER_STARTED:
            return f"{name} is now online"
        if trigger & EventType.SERVER_STOPPED:
            return f"{name} is shutting down"
        if trigger & EventType.WORLD_RESET:
            return f"{name} has been reset to a new world"
        return None


class ElectionFeed(FeedModule):
    NAME = "Election Feed"
    FEED_TRIGGERS = EventType.ELECTION_STARTED | EventType.ELECTION_STOPPED

    def get_feed_targets(self) -> list[FeedChannel]:
        return list(self.ctx.store.data.election_feed_channels)

    def format_event(self, trigger: EventType, *data: Any) -> str | None:
        election = data[0] if data else None
        if not isinstance(election, Election):
            return None
        if trigger & EventType.ELECTION_STARTED:
            by = f" (proposed by {election.proposer})" if election.proposer else ""
            return f"Election started: {election.name}{by}"
        if election.winner:
            return f"Election finished: {election.name}. Winner: {election.winner}"
        return f"Election finished: {election.name}. No winner"
