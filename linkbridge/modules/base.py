"""
linkbridge.modules.base — Module Lifecycle Contract
====================================================

A *module* is one self-contained bridge feature (the chat relay, a feed, a
display).  The orchestrator drives every module through the same lifecycle::

    setup()  →  handle_start_or_stop()  →  update(trigger, *data) …
                                       →  stop()  →  destroy()

* ``setup`` / ``destroy`` are cheap and synchronous.
* ``should_run`` is evaluated against the live config on every update, so a
  module with no valid target can come alive purely from a config edit.
* ``update`` returns at once when the trigger is not in ``triggers``.
  Updates of one module are serialized by its own :class:`asyncio.Lock`.

Two partial implementations cover most modules: :class:`DisplayModule`
keeps persistent messages up to date on a timer, :class:`FeedModule` posts
one message per matching event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from linkbridge.config import FeedChannel, RemoteTarget
from linkbridge.engine.config_store import ConfigStore
from linkbridge.engine.dispatcher import EventDispatcher
from linkbridge.engine.events import EventType
from linkbridge.game import GameServer
from linkbridge.interfaces import DisplayContent, MentionPolicy, RemotePlatform
from linkbridge.services.identity_links import IdentityLinkManager
from linkbridge.services.storage_service import BridgeStorage

logger = logging.getLogger(__name__)


@dataclass
class ModuleContext:
    """Everything a module may talk to.  ``platform`` is set on connect."""

    store: ConfigStore
    game: GameServer
    dispatcher: EventDispatcher
    platform: RemotePlatform | None = None
    storage: BridgeStorage | None = None
    identities: IdentityLinkManager | None = None

    def resolve(self, target: RemoteTarget) -> Any | None:
        """Look up the Discord channel for *target*, or None."""
        platform = self.platform
        if platform is None or not platform.is_connected:
            return None
        guild = platform.guild_by_name_or_id(target.guild)
        if guild is None:
            return None
        return platform.channel_by_name_or_id(guild, target.channel)


class Module:
    """Base class for every bridge module."""

    NAME: ClassVar[str] = "Module"

    def __init__(self, ctx: ModuleContext) -> None:
        self.ctx = ctx
        self.op_count = 0
        self._running = False
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} running={self._running}>"

    @property
    def triggers(self) -> EventType:
        return EventType.FORCE_UPDATE

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def setup(self) -> None:
        pass

    def destroy(self) -> None:
        pass

    def should_run(self) -> bool:
        return False

    async def start(self) -> None:
        self._running = True
        logger.info("%s started", self.NAME)

    async def stop(self) -> None:
        self._running = False
        logger.info("%s stopped", self.NAME)

    async def handle_start_or_stop(self) -> None:
        async with self._lock:
            await self._handle_start_or_stop()

    async def _handle_start_or_stop(self) -> None:
        should_run = self.should_run()
        if should_run and not self._running:
            await self.start()
        elif not should_run and self._running:
            await self.stop()

    async def update(self, trigger: EventType, *data: Any) -> None:
        if not (trigger & self.triggers):
            return
        await self._locked_update(trigger, *data)

    async def _locked_update(self, trigger: EventType, *data: Any) -> None:
        async with self._lock:
            await self._handle_start_or_stop()
            if not self._running:
                return
            await self.update_internal(trigger, *data)

    async def update_internal(self, trigger: EventType, *data: Any) -> None:
        raise NotImplementedError

    def get_display_text(self, verbose: bool = False) -> str:
        state = "Running" if self._running else "Stopped"
        text = f"{self.NAME}: {state}"
        if verbose:
            text += f" ({self.op_count} operations)"
        return text


def any_valid(targets: list[RemoteTarget]) -> bool:
    return any(t.is_valid() for t in targets)


# ---------------------------------------------------------------------------
# Displays
# ---------------------------------------------------------------------------
class DisplayModule(Module):
    """Keeps one or more persistent messages per target channel current.

    Subclasses supply the targets and the content; a background task feeds
    ``TIMER`` updates into the module every ``TIMER_INTERVAL`` seconds while
    it runs.
    """

    BASE_TAG: ClassVar[str] = "Display"
    TIMER_START_DELAY: ClassVar[float] = 0.0
    TIMER_INTERVAL: ClassVar[float] = 60.0

    def __init__(self, ctx: ModuleContext) -> None:
        super().__init__(ctx)
        self._timer_task: asyncio.Task | None = None

    @property
    def triggers(self) -> EventType:
        return super().triggers | EventType.CLIENT_CONNECTED

    def get_display_targets(self) -> list[RemoteTarget]:
        raise NotImplementedError

    def get_display_content(self, target: RemoteTarget) -> list[DisplayContent]:
        raise NotImplementedError

    async def refresh_state(self) -> None:
        """Gather anything the content needs that requires I/O."""

    def should_run(self) -> bool:
        return any_valid(self.get_display_targets())

    async def start(self) -> None:
        await super().start()
        if self._timer_task is None:
            self._timer_task = asyncio.get_running_loop().create_task(
                self._timer_loop(), name=f"{self.NAME}-timer",
            )

    async def stop(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is not None:
            task.cancel()
        await super().stop()

    async def _timer_loop(self) -> None:
        await asyncio.sleep(self.TIMER_START_DELAY)
        while True:
            try:
                await self._locked_update(EventType.TIMER)
            except Exception:
                logger.exception("%s timer update failed", self.NAME)
            await asyncio.sleep(self.TIMER_INTERVAL)

    async def update_internal(self, trigger: EventType, *data: Any) -> None:
        platform = self.ctx.platform
        if platform is None:
            return
        await self.refresh_state()
        for target in self.get_display_targets():
            if not target.is_valid():
                continue
            channel = self.ctx.resolve(target)
            if channel is None:
                continue
            for content in self.get_display_content(target):
                try:
                    await platform.render_display(channel, content)
                    self.op_count += 1
                except Exception:
                    logger.exception(
                        "Failed to render %s display in %s", content.tag, target.link_id,
                    )


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------
class FeedModule(Module):
    """Posts a message to every feed channel for each matching event."""

    FEED_TRIGGERS: ClassVar[EventType] = EventType.NONE

    @property
    def triggers(self) -> EventType:
        return super().triggers | self.FEED_TRIGGERS

    def get_feed_targets(self) -> list[FeedChannel]:
        raise NotImplementedError

    def format_event(self, trigger: EventType, *data: Any) -> str | None:
        raise NotImplementedError

    def should_run(self) -> bool:
        return any_valid(self.get_feed_targets())

    async def update_internal(self, trigger: EventType, *data: Any) -> None:
        if not (trigger & self.FEED_TRIGGERS):
            return
        text = self.format_event(trigger, *data)
        if text:
            await self.send_to_feeds(text)

    async def send_to_feeds(self, text: str, mentions: MentionPolicy | None = None) -> int:
        """Send *text* to every resolvable feed channel.  Returns the send count."""
        platform = self.ctx.platform
        if platform is None:
            return 0
        sent = 0
        for target in self.get_feed_targets():
            if not target.is_valid():
                continue
            channel = self.ctx.resolve(target)
            if channel is None:
                continue
            try:
                await platform.send_message(channel, text, mentions)
                sent += 1
            except Exception:
                logger.exception("%s failed to post to %s", self.NAME, target.link_id)
        self.op_count += sent
        return sent
