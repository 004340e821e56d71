"""
tests/test_verification.py — Link Verification State Machine Tests
===================================================================

Static checks, channel-link resolution against a fake topology, the
timeout report, timer cancellation and the disconnect reset.
"""

from __future__ import annotations

import threading
import time

import pytest

from linkbridge.config import ChannelIdentifier, ChannelLink, IdentityLinkConfig, StatusChannel
from linkbridge.engine.verification import (
    LinkVerifier,
    VerificationFlags,
    VerificationState,
)


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def verifier(store, game, platform):
    v = LinkVerifier(store, game, static_delay=0.01, channel_delay=0.02, timeout=0.1)
    v.bind_platform(platform)
    yield v
    v.dequeue_all_verification()


class TestStaticVerification:
    def test_clean_config_has_no_errors(self, verifier):
        assert verifier.verify_static() == []

    def test_no_client(self, verifier):
        verifier.bind_platform(None)
        errors = verifier.verify_static()
        assert errors == ["[General Verification] No Discord client connected."]

    def test_missing_token(self, verifier, store):
        store.data.bot_token = "  "
        assert any(e.startswith("[Bot Token]") for e in verifier.verify_static())

    def test_unknown_identity_link_user(self, verifier, store):
        store.data.identity_links.extend([
            IdentityLinkConfig(username="Alice"),
            IdentityLinkConfig(username="Mallory"),
        ])
        errors = verifier.verify_static()
        assert errors == ['[Identity Links] No user with name "Mallory" was found']

    def test_half_configured_default_channel(self, verifier, store):
        store.data.identity_links.extend([
            IdentityLinkConfig(
                username="Alice",
                default_channel=ChannelIdentifier(guild="MyGuild", channel=""),
            ),
            IdentityLinkConfig(
                username="Bob",
                default_channel=ChannelIdentifier(guild="MyGuild", channel="general"),
            ),
        ])
        errors = verifier.verify_static()
        assert errors == [
            '[Identity Links] Default channel for "Alice" needs both a guild and a channel'
        ]

    def test_channel_indicator_in_command_channel(self, verifier, store):
        store.data.local_command_channel = "#General"
        assert any(e.startswith("[Local Command Channel]") for e in verifier.verify_static())

    def test_invite_without_token(self, verifier, store):
        store.data.invite_message = "Join us at discord.gg/abc"
        assert any(e.startswith("[Invite Message]") for e in verifier.verify_static())


class TestChannelLinkVerification:
    def test_example_link_fully_verified(self, verifier, store):
        store.data.chat_links.append(
            ChannelLink(guild="MyGuild", channel="My Channel", local_channel="General")
        )
        store.save()

        assert verifier.verify_static() == []
        result = verifier.verify_channel_links()

        assert result.fully_verified
        assert result.unverified == ()
        assert verifier.verified_links == {"MyGuild - my-channel <--> General (Chat Link)"}
        assert verifier.state is VerificationState.VERIFIED

    def test_no_links_is_vacuously_verified(self, verifier):
        result = verifier.verify_channel_links()
        assert result.fully_verified
        assert result.unverified == ()
        assert verifier.report_unverified() == []

    def test_inert_links_are_skipped(self, verifier, store):
        store.data.chat_links.append(ChannelLink(guild="MyGuild", channel="", local_channel="General"))
        assert verifier.verify_channel_links().fully_verified

    def test_missing_guild_reported_immediately_without_timeout(self, verifier, store):
        store.data.status_channels.append(StatusChannel(guild="NoSuchGuild", channel="status"))
        store.data.chat_links.append(
            ChannelLink(guild="MyGuild", channel="my-channel", local_channel="General")
        )
        result = verifier.verify_channel_links()

        assert not result.fully_verified
        assert result.unverified == ("NoSuchGuild - status (Server Info)",)
        assert verifier.last_unverified == ("NoSuchGuild - status (Server Info)",)
        assert verifier.state is VerificationState.PARTIALLY_VERIFIED

    def test_not_connected_returns_none(self, verifier, platform):
        platform.connected = False
        assert verifier.verify_channel_links() is None
        assert verifier.verify_config(VerificationFlags.CHANNEL_LINKS).links is None

    def test_verify_config_never_raises(self, verifier, game, monkeypatch):
        monkeypatch.setattr(game, "users", lambda: (_ for _ in ()).throw(RuntimeError("boom")))
        report = verifier.verify_config()
        assert report.static_errors == []


class TestTimers:
    def test_timeout_reports_exactly_the_missing_link(self, verifier, store):
        store.data.chat_links.extend([
            ChannelLink(guild="MyGuild", channel="my-channel", local_channel="General"),
            ChannelLink(guild="GhostGuild", channel="my-channel", local_channel="General"),
        ])
        verifier.enqueue_full_verification()
        verifier.enqueue_guild_verification()

        assert wait_for(lambda: verifier.state is VerificationState.PARTIALLY_VERIFIED)
        assert verifier.last_unverified == ("GhostGuild - my-channel <--> General (Chat Link)",)
        assert verifier.verified_links == {"MyGuild - my-channel <--> General (Chat Link)"}
        assert not verifier.has_pending_timers

    def test_all_resolved_before_timeout(self, verifier, store):
        store.data.status_channels.append(StatusChannel(guild="MyGuild", channel="status"))
        verifier.enqueue_full_verification()
        verifier.enqueue_guild_verification()
        assert wait_for(lambda: verifier.state is VerificationState.VERIFIED and not verifier.has_pending_timers)
        assert verifier.last_unverified == ()

    def test_dequeue_cancels_everything(self, store, game, platform):
        v = LinkVerifier(store, game, static_delay=0.05, channel_delay=0.05, timeout=0.05)
        v.bind_platform(platform)
        store.data.status_channels.append(StatusChannel(guild="MyGuild", channel="status"))
        v.enqueue_full_verification()
        v.enqueue_guild_verification()
        v.dequeue_all_verification()

        time.sleep(0.2)
        assert v.verified_links == frozenset()
        assert v.state is VerificationState.PENDING_STATIC
        assert not v.has_pending_timers

    def test_disconnect_clears_verified_set(self, verifier, store, platform):
        store.data.status_channels.append(StatusChannel(guild="MyGuild", channel="status"))
        verifier.verify_channel_links()
        assert verifier.verified_links

        verifier.on_client_stopped()
        assert verifier.verified_links == frozenset()
        assert verifier.state is VerificationState.IDLE

        # Topology changed while disconnected: nothing stale carries over.
        platform.topology = {"MyGuild": []}
        result = verifier.verify_channel_links()
        assert result.verified == frozenset()
        assert not result.fully_verified


class TestConcurrency:
    def test_disconnect_during_pass_discards_its_results(self, verifier, store, platform):
        store.data.status_channels.append(StatusChannel(guild="MyGuild", channel="status"))
        entered = threading.Event()
        release = threading.Event()
        lookup = platform.guild_by_name_or_id

        def blocking_lookup(name_or_id):
            entered.set()
            assert release.wait(timeout=2)
            return lookup(name_or_id)

        platform.guild_by_name_or_id = blocking_lookup
        results = []
        worker = threading.Thread(target=lambda: results.append(verifier.verify_channel_links()))
        worker.start()

        assert entered.wait(timeout=2)
        verifier.on_client_stopped()
        release.set()
        worker.join(timeout=2)

        assert results == [None]
        assert verifier.verified_links == frozenset()
        assert verifier.state is VerificationState.IDLE

    def test_superseded_timer_does_nothing_when_it_fires(self, store, game, platform):
        v = LinkVerifier(store, game, static_delay=10, channel_delay=10, timeout=10)
        v.bind_platform(platform)
        calls = []
        try:
            v.enqueue_guild_verification()
            stale = v._channel_timer
            v.enqueue_guild_verification()
            current = v._channel_timer
            assert current is not stale

            # The stale timer was already running when the re-arm cancelled it.
            v._fire("_channel_timer", stale, lambda: calls.append("stale"))
            assert calls == []
            assert v._channel_timer is current

            v._fire("_channel_timer", current, lambda: calls.append("current"))
            assert calls == ["current"]
            assert v._channel_timer is None

            # A second delivery of the same timer is a no-op too.
            v._fire("_channel_timer", current, lambda: calls.append("again"))
            assert calls == ["current"]
        finally:
            v.dequeue_all_verification()
