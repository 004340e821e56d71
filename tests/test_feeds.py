"""
tests/test_feeds.py — Chat Relay, Feed & Role Module Tests
===========================================================
"""

from __future__ import annotations

import asyncio

import pytest

from linkbridge.config import (
    ChannelLink,
    CraftingFeedChannel,
    ElectionFeedChannel,
    PlayerStatusFeedChannel,
    TradeFeedChannel,
)
from linkbridge.engine.dispatcher import EventDispatcher
from linkbridge.engine.events import EventType
from linkbridge.game import ChatSent, CreateWorkOrder, CurrencyTrade, Election, GameUser
from linkbridge.interfaces import MentionPolicy, RemoteMessage
from linkbridge.modules.base import ModuleContext
from linkbridge.modules.feeds import (
    ChatRelay,
    CraftingFeed,
    ElectionFeed,
    PlayerStatusFeed,
    TradeFeed,
)
from linkbridge.modules.roles import AccountLinkRoleModule
from linkbridge.services.storage_service import LinkedUser


def run_async(coro):
    """Run a coroutine in a fresh event loop (test helper)."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


@pytest.fixture
def ctx(store, game, platform) -> ModuleContext:
    return ModuleContext(store=store, game=game, dispatcher=EventDispatcher(), platform=platform)


class TestChatRelay:
    @pytest.fixture
    def relay(self, ctx, store):
        store.data.chat_links.append(ChannelLink(
            guild="MyGuild", channel="my-channel", local_channel="General",
            allow_role_mentions=False,
        ))
        return ChatRelay(ctx)

    def test_game_chat_goes_to_linked_channel(self, relay, platform):
        run_async(relay.update(EventType.GAME_MESSAGE_SENT, ChatSent("Alice", "General", "hi all")))
        guild, channel, content, mentions = platform.sent[0]
        assert (guild, channel) == ("MyGuild", "my-channel")
        assert content == "**Alice**: hi all"
        assert mentions == MentionPolicy(users=True, roles=False, channels=True)

    def test_unlinked_game_channel_ignored(self, relay, platform):
        run_async(relay.update(EventType.GAME_MESSAGE_SENT, ChatSent("Alice", "Trade", "wts logs")))
        assert platform.sent == []

    def test_remote_chat_goes_to_game(self, relay, game):
        message = RemoteMessage("1", "MyGuild", "2", "my-channel", "Carol", "hello game")
        run_async(relay.update(EventType.REMOTE_MESSAGE_SENT, message))
        assert game.sent_chat == [("General", "[Discord] Carol: hello game")]
        assert relay.op_count == 1

    def test_not_running_without_links(self, ctx):
        relay = ChatRelay(ctx)
        assert not relay.should_run()


class TestFeeds:
    def test_crafting_feed(self, ctx, store, platform):
        store.data.crafting_feed_channels.append(CraftingFeedChannel(guild="MyGuild", channel="feed"))
        feed = CraftingFeed(ctx)
        run_async(feed.update(
            EventType.WORK_ORDER_CREATED, CreateWorkOrder("Alice", "Iron Bar", 4, "Bloomery"),
        ))
        assert platform.sent[0][2] == "Alice started creating 4 Iron Bar at Bloomery"
        assert feed.op_count == 1

    def test_feed_sends_to_every_valid_channel(self, ctx, store, platform):
        store.data.trade_feed_channels.extend([
            TradeFeedChannel(guild="MyGuild", channel="feed"),
            TradeFeedChannel(guild="MyGuild", channel="status"),
            TradeFeedChannel(guild="MyGuild", channel="missing"),
            TradeFeedChannel(guild="", channel="feed"),
        ])
        feed = TradeFeed(ctx)
        trade = CurrencyTrade("Alice", "Bob", "Gold", 12.5, item="Wheat", bought=False)
        run_async(feed.update(EventType.TRADE, trade))
        assert [s[1] for s in platform.sent] == ["feed", "status"]
        assert platform.sent[0][2] == "Alice sold Wheat to Bob for 12.5 Gold"

    def test_feed_ignores_other_triggers(self, ctx, store, platform):
        store.data.trade_feed_channels.append(TradeFeedChannel(guild="MyGuild", channel="feed"))
        run_async(TradeFeed(ctx).update(EventType.VOTE, "whatever"))
        assert platform.sent == []

    @pytest.mark.parametrize("kind, expected", [
        (EventType.JOIN, "Bob joined the server for the first time"),
        (EventType.LOGIN, "Bob logged in"),
        (EventType.LOGOUT, "Bob logged out"),
    ])
    def test_player_status_feed(self, ctx, store, platform, kind, expected):
        store.data.player_status_feed_channels.append(
            PlayerStatusFeedChannel(guild="MyGuild", channel="feed")
        )
        run_async(PlayerStatusFeed(ctx).update(kind, GameUser("Bob")))
        assert platform.sent[0][2] == expected

    def test_election_feed(self, ctx, store, platform):
        store.data.election_feed_channels.append(ElectionFeedChannel(guild="MyGuild", channel="feed"))
        feed = ElectionFeed(ctx)

        async def scenario():
            await feed.update(EventType.ELECTION_STARTED, Election("Mayor", proposer="Alice"))
            await feed.update(EventType.ELECTION_STOPPED, Election("Mayor", winner="Bob"))

        run_async(scenario())
        assert [s[2] for s in platform.sent] == [
            "Election started: Mayor (proposed by Alice)",
            "Election finished: Mayor. Winner: Bob",
        ]

    def test_send_failure_is_logged_and_skipped(self, ctx, store, platform):
        store.data.crafting_feed_channels.extend([
            CraftingFeedChannel(guild="MyGuild", channel="feed"),
            CraftingFeedChannel(guild="MyGuild", channel="status"),
        ])
        original = platform.send_message

        async def flaky(channel, content, mentions=None):
            if channel.name == "feed":
                raise RuntimeError("rate limited")
            await original(channel, content, mentions)

        platform.send_message = flaky
        feed = CraftingFeed(ctx)
        run_async(feed.update(EventType.WORK_ORDER_CREATED, CreateWorkOrder("Alice", "Axe")))
        assert [s[1] for s in platform.sent] == ["status"]
        assert feed.op_count == 1


class TestAccountLinkRoles:
    def test_grant_and_revoke(self, ctx, store, platform):
        store.data.linked_user_role = "Linked"
        module = AccountLinkRoleModule(ctx)
        user = LinkedUser("Alice", "111", guild_id="MyGuild", verified=True)

        async def scenario():
            await module.update(EventType.ACCOUNT_LINK_VERIFIED, user)
            await module.update(EventType.ACCOUNT_LINK_REMOVED, user)

        run_async(scenario())
        assert platform.granted == [("MyGuild", "111", "Linked")]
        assert platform.revoked == [("MyGuild", "111", "Linked")]
        assert module.op_count == 2

    def test_disabled_without_role(self, ctx, platform):
        module = AccountLinkRoleModule(ctx)
        user = LinkedUser("Alice", "111", guild_id="MyGuild", verified=True)
        run_async(module.update(EventType.ACCOUNT_LINK_VERIFIED, user))
        assert platform.granted == []
