"""
linkbridge.engine.verification — Channel-Link Verification State Machine
=========================================================================

Checks that the configuration is usable:

* **Static** verification looks only at the config itself (bot token set,
  identity links naming real game users, command channel and invite
  message sanity).
* **Channel-link** verification resolves every non-inert remote target
  against the live Discord topology and records the ones that resolve in
  the verified-links set.

Both are normally run from single-shot timers armed when Discord connects:
the static pass waits for server start-up log noise to settle, the
channel-link pass waits for the guild cache to fill, and a timeout reports
whatever is still unverified.  Timers are cancelled on disconnect; a timer
that fires after being cancelled does nothing.

States::

    IDLE → PENDING_STATIC → PENDING_CHANNEL_LINKS → VERIFIED
                                                  ↘ PARTIALLY_VERIFIED

Verification can be requested again at any time and simply moves back to
the relevant pending state.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from linkbridge.config import iter_valid_targets
from linkbridge.constants import (
    CHANNEL_VERIFICATION_DELAY,
    INVITE_LINK_TOKEN,
    LINK_VERIFICATION_TIMEOUT,
    STATIC_VERIFICATION_DELAY,
)
from linkbridge.engine.config_store import ConfigStore
from linkbridge.game import GameServer
from linkbridge.interfaces import RemotePlatform

logger = logging.getLogger(__name__)


class VerificationFlags(enum.Flag):
    STATIC = enum.auto()
    CHANNEL_LINKS = enum.auto()
    ALL = STATIC | CHANNEL_LINKS


class VerificationState(enum.StrEnum):
    IDLE = "idle"
    PENDING_STATIC = "pending_static"
    PENDING_CHANNEL_LINKS = "pending_channel_links"
    VERIFIED = "verified"
    PARTIALLY_VERIFIED = "partially_verified"


@dataclass(frozen=True, slots=True)
class LinkVerificationResult:
    verified: frozenset[str]
    unverified: tuple[str, ...]
    fully_verified: bool


@dataclass(slots=True)
class VerificationReport:
    static_errors: list[str] = field(default_factory=list)
    links: LinkVerificationResult | None = None


class LinkVerifier:
    """Verifies the live config against the game and Discord.

    Parameters
    ----------
    store:
        The live config store.
    game:
        Game-side collaborator, used to resolve identity-link user names.
    static_delay, channel_delay, timeout:
        Timer lengths in seconds.
    """

    def __init__(
        self,
        store: ConfigStore,
        game: GameServer,
        *,
        static_delay: float = STATIC_VERIFICATION_DELAY,
        channel_delay: float = CHANNEL_VERIFICATION_DELAY,
        timeout: float = LINK_VERIFICATION_TIMEOUT,
    ) -> None:
        self._store = store
        self._game = game
        self._platform: RemotePlatform | None = None
        self._static_delay = static_delay
        self._channel_delay = channel_delay
        self._timeout = timeout

        self._lock = threading.Lock()
        self._verified: set[str] = set()
        # Bumped on every disconnect; passes started before it don't write.
        self._generation = 0
        self._state = VerificationState.IDLE

        self._timeout_timer: threading.Timer | None = None
        self._static_timer: threading.Timer | None = None
        self._channel_timer: threading.Timer | None = None

        self.last_unverified: tuple[str, ...] = ()

    # -------------------------------------------------------------------
    # Wiring / inspection
    # -------------------------------------------------------------------
    def bind_platform(self, platform: RemotePlatform | None) -> None:
        self._platform = platform

    @property
    def state(self) -> VerificationState:
        with self._lock:
            return self._state

    @property
    def verified_links(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._verified)

    @property
    def has_pending_timers(self) -> bool:
        with self._lock:
            return any(
                t is not None
                for t in (self._timeout_timer, self._static_timer, self._channel_timer)
            )

    def _client_connected(self) -> bool:
        platform = self._platform
        return platform is not None and platform.is_connected

    # -------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------
    def _arm(self, attr: str, delay: float, callback: Callable[[], object]) -> None:
        """Start a single-shot timer stored in *attr*.  Caller holds the lock."""
        existing: threading.Timer | None = getattr(self, attr)
        if existing is not None:
            existing.cancel()
        timer = threading.Timer(delay, self._fire)
        timer.args = (attr, timer, callback)
        timer.daemon = True
        timer.name = f"verify-{attr.strip('_')}"
        setattr(self, attr, timer)
        timer.start()

    def _fire(self, attr: str, timer: threading.Timer, callback: Callable[[], object]) -> None:
        # Check-and-clear: a cancelled or superseded timer must not run.
        with self._lock:
            if getattr(self, attr) is not timer:
                return
            setattr(self, attr, None)
        try:
            callback()
        except Exception:
            logger.exception("Verification timer %s failed", timer.name)

    def enqueue_full_verification(self) -> None:
        """Arm the static-verification delay and the link-verification timeout."""
        with self._lock:
            self._arm("_timeout_timer", self._timeout, self._on_timeout)
            self._arm("_static_timer", self._static_delay, self._on_static_timer)
            self._state = VerificationState.PENDING_STATIC

    def enqueue_guild_verification(self) -> None:
        """Arm the channel-link verification delay."""
        with self._lock:
            self._arm("_channel_timer", self._channel_delay, self._on_channel_timer)
            if self._state is not VerificationState.PENDING_STATIC:
                self._state = VerificationState.PENDING_CHANNEL_LINKS

    def dequeue_all_verification(self) -> None:
        """Cancel every pending timer."""
        with self._lock:
            self._cancel_all_locked()

    def _cancel_all_locked(self) -> None:
        for attr in ("_timeout_timer", "_static_timer", "_channel_timer"):
            timer: threading.Timer | None = getattr(self, attr)
            if timer is not None:
                timer.cancel()
                setattr(self, attr, None)

    def _on_static_timer(self) -> None:
        self.verify_config(VerificationFlags.STATIC)

    def _on_channel_timer(self) -> None:
        self.verify_config(VerificationFlags.CHANNEL_LINKS)

    def _on_timeout(self) -> None:
        with self._lock:
            generation = self._generation
        unverified = self.report_unverified()
        with self._lock:
            if generation != self._generation:
                return
            # The attempt is over; anything still pending is abandoned.
            self._cancel_all_locked()
            self._state = (
                VerificationState.PARTIALLY_VERIFIED if unverified
                else VerificationState.VERIFIED
            )

    def on_client_stopped(self) -> None:
        """Discord went away: drop timers and forget every verification."""
        with self._lock:
            self._cancel_all_locked()
            self._verified.clear()
            self._generation += 1
            self._state = VerificationState.IDLE
        logger.debug("Verified links cleared after client stop")

    # -------------------------------------------------------------------
    # Verification passes
    # -------------------------------------------------------------------
    def verify_config(
        self, flags: VerificationFlags = VerificationFlags.ALL,
    ) -> VerificationReport:
        """Run the requested passes.  Never raises."""
        report = VerificationReport()
        try:
            if VerificationFlags.STATIC in flags:
                report.static_errors = self.verify_static()
            if VerificationFlags.CHANNEL_LINKS in flags and self._client_connected():
                report.links = self.verify_channel_links()
        except Exception:
            logger.exception("Config verification failed")
        return report

    def verify_static(self) -> list[str]:
        """Check config-internal consistency.  Returns the error lines."""
        data = self._store.data
        errors: list[str] = []

        if not self._client_connected():
            errors.append("[General Verification] No Discord client connected.")

        if not data.bot_token.strip():
            errors.append(
                "[Bot Token] Bot token not configured. "
                "See the README for install instructions."
            )

        known_users = {user.name for user in self._game.users()}
        for identity in list(data.identity_links):
            if not identity.username.strip():
                continue
            if identity.username not in known_users:
                errors.append(
                    f'[Identity Links] No user with name "{identity.username}" was found'
                )
            default = identity.default_channel
            if bool(default.guild.strip()) != bool(default.channel.strip()):
                errors.append(
                    f'[Identity Links] Default channel for "{identity.username}" '
                    "needs both a guild and a channel"
                )

        if data.local_command_channel.strip() and "#" in data.local_command_channel:
            errors.append(
                "[Local Command Channel] Channel name contains a channel indicator (#). "
                "The channel indicator will be added automatically and adding one "
                "manually may cause message sending to fail"
            )

        if data.invite_message.strip() and INVITE_LINK_TOKEN not in data.invite_message:
            errors.append(
                f"[Invite Message] Message does not contain the invite link token "
                f"{INVITE_LINK_TOKEN}. If the invite link has been added manually, "
                "consider adding it to the network config instead"
            )

        if errors:
            logger.error("Static configuration errors detected!\n%s", "\n".join(errors))
        else:
            logger.info("Static configuration verification completed without errors")

        with self._lock:
            if self._state is VerificationState.PENDING_STATIC:
                self._state = VerificationState.PENDING_CHANNEL_LINKS
        return errors

    def verify_channel_links(self) -> LinkVerificationResult | None:
        """Resolve every non-inert target against Discord.

        A guild or channel that can't be found is not an error; it simply
        stays unverified.  Returns None when no client is connected.
        """
        platform = self._platform
        if platform is None or not platform.is_connected:
            logger.debug("Channel link verification skipped: no Discord client")
            return None

        with self._lock:
            generation = self._generation

        targets = list(iter_valid_targets(self._store.data))
        for target in targets:
            guild = platform.guild_by_name_or_id(target.guild)
            if guild is None:
                continue  # The channel always fails if the guild does
            channel = platform.channel_by_name_or_id(guild, target.channel)
            if channel is None:
                continue

            link_id = target.link_id
            with self._lock:
                if generation != self._generation:
                    logger.debug("Discord disconnected mid-verification; discarding pass")
                    return None
                if link_id in self._verified:
                    continue
                self._verified.add(link_id)
            logger.info("Channel Link Verified: %s", link_id)

        with self._lock:
            verified = frozenset(self._verified)
            # Count comparison; stale entries for removed links still count.
            fully_verified = len(verified) >= len(targets)
            timeout_armed = self._timeout_timer is not None

        unverified = tuple(t.link_id for t in targets if t.link_id not in verified)
        result = LinkVerificationResult(verified, unverified, fully_verified)

        if fully_verified:
            logger.info("All channel links successfully verified")
            new_state = VerificationState.VERIFIED
        elif timeout_armed:
            new_state = VerificationState.PENDING_CHANNEL_LINKS
        else:
            # No timeout pending means the guild cache is already populated.
            self.report_unverified()
            new_state = VerificationState.PARTIALLY_VERIFIED

        with self._lock:
            if generation == self._generation:
                self._state = new_state
        return result

    def report_unverified(self) -> list[str]:
        """Log and return the non-inert targets not yet verified."""
        targets = list(iter_valid_targets(self._store.data))
        with self._lock:
            verified = set(self._verified)

        if len(verified) >= len(targets):
            self.last_unverified = ()
            return []

        unverified = [t.link_id for t in targets if t.link_id not in verified]
        self.last_unverified = tuple(unverified)
        if unverified:
            logger.info("Unverified channels detected:\n%s", "\n".join(unverified))
        return unverified
