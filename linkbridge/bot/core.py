"""
linkbridge.bot.core — Bridge Plugin
====================================

**Why this file exists:**
:class:`BridgePlugin` is the object the game host talks to.  It builds and
wires every component once per process:

* the :class:`~linkbridge.engine.dispatcher.EventDispatcher` and its four
  stages (storage + chat log, identity links, modules, presence);
* the :class:`~linkbridge.engine.verification.LinkVerifier`, hooked to the
  config store's ``verification_requested`` signal;
* the :class:`~linkbridge.modules.registry.ModuleOrchestrator`, populated
  when Discord connects and torn down when it disconnects.

Game-side occurrences enter through :meth:`BridgePlugin.action_performed`
and the ``user_*`` / ``election_*`` helpers, from any thread.  Discord-side
connection changes enter through :meth:`on_client_connected` /
:meth:`on_client_disconnected`, called by
:class:`~linkbridge.bot.client.DiscordPlatform` on the event loop.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Coroutine
from typing import Any

from linkbridge.constants import ACTIVITY_UPDATE_INTERVAL
from linkbridge.engine.config_store import ConfigStore
from linkbridge.engine.dispatcher import DispatchStage, EventDispatcher
from linkbridge.engine.events import PRESENCE_TRIGGERS, BridgeEvent, EventType
from linkbridge.engine.verification import LinkVerifier
from linkbridge.game import (
    ChatSent,
    CompletedWorkParty,
    CreateCurrency,
    CreateWorkOrder,
    CurrencyTrade,
    DemographicChange,
    Election,
    GainSpecialty,
    GameAction,
    GameServer,
    GameUser,
    JoinedWorkParty,
    LeftWorkParty,
    LoseSpecialty,
    PostedWorkParty,
    Vote,
    WorkedForWorkParty,
)
from linkbridge.interfaces import RemotePlatform
from linkbridge.modules.base import ModuleContext
from linkbridge.modules.registry import ModuleFactory, ModuleOrchestrator, build_default_modules
from linkbridge.services import log_buffer
from linkbridge.services.chatlog import CHATLOG_TRIGGERS, ChatLogger
from linkbridge.services.identity_links import IdentityLinkManager
from linkbridge.services.storage_service import STORAGE_TRIGGERS, BridgeStorage

logger = logging.getLogger(__name__)


class PluginStatus(enum.StrEnum):
    UNINITIALIZED = "Uninitialized"
    INITIALIZING_PLUGIN = "Initializing plugin"
    INITIALIZING_MODULES = "Initializing modules"
    INITIALIZATION_ABORTED = "Initialization aborted"
    AWAITING_GUILD_DOWNLOAD = "Awaiting guild download"
    POST_SERVER_INIT = "Waiting for Discord connection"
    SHUTTING_DOWN_PLUGIN = "Shutting down plugin"
    SHUTTING_DOWN_MODULES = "Shutting down modules"
    CONNECTED = "Connected"
    SERVER_CONNECTION_FAILED = "Connection to Discord failed"
    DISCONNECTED = "Disconnected"


# Game action class → event kind.  DemographicChange is resolved separately.
ACTION_EVENTS: dict[type[GameAction], EventType] = {
    ChatSent: EventType.GAME_MESSAGE_SENT,
    CurrencyTrade: EventType.TRADE,
    CreateWorkOrder: EventType.WORK_ORDER_CREATED,
    PostedWorkParty: EventType.POSTED_WORK_PARTY,
    CompletedWorkParty: EventType.COMPLETED_WORK_PARTY,
    JoinedWorkParty: EventType.JOINED_WORK_PARTY,
    LeftWorkParty: EventType.LEFT_WORK_PARTY,
    WorkedForWorkParty: EventType.WORKED_WORK_PARTY,
    Vote: EventType.VOTE,
    CreateCurrency: EventType.CURRENCY_CREATED,
    GainSpecialty: EventType.GAINED_SPECIALTY,
    LoseSpecialty: EventType.LOST_SPECIALTY,
}


def event_for_action(action: GameAction) -> EventType:
    """The event kind for *action*, or ``EventType.NONE`` if it isn't bridged."""
    if isinstance(action, DemographicChange):
        return EventType.ENTERED_DEMOGRAPHIC if action.entered else EventType.LEFT_DEMOGRAPHIC
    return ACTION_EVENTS.get(type(action), EventType.NONE)


class BridgePlugin:
    """Owns and wires the bridge components.

    Parameters
    ----------
    store:
        The live config store.
    game:
        The game server collaborator.
    storage:
        Persistent bridge state.
    module_factory:
        Builds the module registry on every connect.  Tests pass their own.
    verifier:
        Optional pre-built verifier (tests inject short timers).
    activity_interval:
        Seconds between ``TIMER`` dispatches.
    """

    def __init__(
        self,
        store: ConfigStore,
        game: GameServer,
        storage: BridgeStorage,
        *,
        module_factory: ModuleFactory = build_default_modules,
        verifier: LinkVerifier | None = None,
        activity_interval: float = ACTIVITY_UPDATE_INTERVAL,
    ) -> None:
        self.status = PluginStatus.UNINITIALIZED
        self.store = store
        self.game = game
        self.storage = storage

        self.dispatcher = EventDispatcher()
        self.verifier = verifier or LinkVerifier(store, game)
        self.identities = IdentityLinkManager(storage, self.dispatcher)
        self.chatlog = ChatLogger(store)
        self.ctx = ModuleContext(
            store=store,
            game=game,
            dispatcher=self.dispatcher,
            storage=storage,
            identities=self.identities,
        )
        self.orchestrator = ModuleOrchestrator(self.ctx, module_factory)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._activity_interval = activity_interval
        self._activity_task: asyncio.Task | None = None
        self._last_activity: str | None = None

        self._wire()

    # -------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------
    def _wire(self) -> None:
        d = self.dispatcher
        d.subscribe(DispatchStage.STORAGE, self.storage.handle_event, STORAGE_TRIGGERS)
        d.subscribe(DispatchStage.STORAGE, self.chatlog.handle_event, CHATLOG_TRIGGERS)
        d.subscribe(DispatchStage.IDENTITY, self.identities.handle_event, EventType.CLIENT_CONNECTED)
        d.subscribe(DispatchStage.MODULES, self.orchestrator.update)
        d.subscribe(DispatchStage.PRESENCE, self._update_activity, PRESENCE_TRIGGERS)

        self.store.register_callback("verification_requested", self.verifier.verify_config)
        self.store.register_callback("token_changed", self._on_token_changed)
        self.store.register_callback("config_saved", self._on_config_saved)

    @property
    def platform(self) -> RemotePlatform | None:
        return self.ctx.platform

    def attach_platform(self, platform: RemotePlatform | None) -> None:
        self.ctx.platform = platform
        self.verifier.bind_platform(platform)

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run *coro* on the bot loop from whichever thread we're on."""
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.create_task(coro)
        else:
            asyncio.run_coroutine_threadsafe(coro, loop)

    # -------------------------------------------------------------------
    # Plugin lifecycle
    # -------------------------------------------------------------------
    def initialize(self) -> None:
        """Called once by the host after the server finished loading."""
        self.status = PluginStatus.INITIALIZING_PLUGIN
        log_buffer.install_handler()
        try:
            self.store.save()
            if self.store.data.log_chat:
                self.chatlog.start()
        except Exception:
            self.status = PluginStatus.INITIALIZATION_ABORTED
            logger.exception("Plugin initialization failed")
            return
        self.status = PluginStatus.POST_SERVER_INIT
        logger.info("LinkBridge initialized")

    def on_client_connecting(self) -> None:
        self.status = PluginStatus.AWAITING_GUILD_DOWNLOAD

    def on_connection_failed(self) -> None:
        self.status = PluginStatus.SERVER_CONNECTION_FAILED
        logger.error("Failed to connect to Discord")

    async def on_client_connected(self, platform: RemotePlatform) -> None:
        """Discord is connected and the guild cache is populated."""
        self._loop = asyncio.get_running_loop()
        self.dispatcher.bind_loop(self._loop)
        self.attach_platform(platform)

        self.status = PluginStatus.INITIALIZING_MODULES
        self.verifier.enqueue_full_verification()
        self.verifier.enqueue_guild_verification()
        try:
            await self.orchestrator.initialize()
        except Exception:
            logger.exception("Module initialization failed")

        self._start_activity_timer()
        self.status = PluginStatus.CONNECTED
        logger.info("Connected to Discord")
        await self._await_dispatch(EventType.CLIENT_CONNECTED)

    async def on_client_disconnected(self) -> None:
        if self.status not in (PluginStatus.CONNECTED, PluginStatus.SHUTTING_DOWN_PLUGIN):
            return
        self.status = PluginStatus.SHUTTING_DOWN_MODULES
        await self._await_dispatch(EventType.CLIENT_DISCONNECTED)
        self.verifier.on_client_stopped()
        self._stop_activity_timer()
        await self.orchestrator.shutdown()
        self._last_activity = None
        self.status = PluginStatus.DISCONNECTED
        logger.info("Disconnected from Discord")

    async def shutdown(self) -> None:
        """Host is stopping: announce it, tear everything down."""
        was_connected = self.status is PluginStatus.CONNECTED
        self.status = PluginStatus.SHUTTING_DOWN_PLUGIN
        if was_connected:
            await self._await_dispatch(EventType.SERVER_STOPPED)
            await self.on_client_disconnected()
        self.verifier.dequeue_all_verification()
        self.chatlog.stop()
        self.status = PluginStatus.DISCONNECTED

    async def _await_dispatch(self, kind: EventType, *data: object) -> None:
        handle = self.dispatcher.dispatch(kind, *data)
        if isinstance(handle, asyncio.Task):
            await handle
        elif handle is not None:
            await asyncio.wrap_future(handle)

    # -------------------------------------------------------------------
    # Game-side entry points (any thread)
    # -------------------------------------------------------------------
    def action_performed(self, action: GameAction) -> None:
        kind = event_for_action(action)
        if kind is EventType.NONE:
            return
        self.dispatcher.dispatch(kind, action)

    def user_joined(self, user: GameUser) -> None:
        self.dispatcher.dispatch(EventType.JOIN, user)

    def user_logged_in(self, user: GameUser) -> None:
        self.dispatcher.dispatch(EventType.LOGIN, user)

    def user_logged_out(self, user: GameUser) -> None:
        self.dispatcher.dispatch(EventType.LOGOUT, user)

    def election_started(self, election: Election) -> None:
        self.dispatcher.dispatch(EventType.ELECTION_STARTED, election)

    def election_stopped(self, election: Election) -> None:
        self.dispatcher.dispatch(EventType.ELECTION_STOPPED, election)

    def server_started(self) -> None:
        self.dispatcher.dispatch(EventType.SERVER_STARTED)

    def world_reset(self) -> None:
        self.dispatcher.dispatch(EventType.WORLD_RESET)

    # -------------------------------------------------------------------
    # Admin operations
    # -------------------------------------------------------------------
    async def force_update(self) -> None:
        """Re-evaluate every module, then push a FORCE_UPDATE through."""
        if self.status is not PluginStatus.CONNECTED:
            logger.warning("Force update skipped: not connected to Discord")
            return
        await self.orchestrator.refresh()
        await self._await_dispatch(EventType.FORCE_UPDATE)

    async def restart_client(self) -> bool:
        platform = self.platform
        if platform is None:
            return False
        logger.info("Restarting Discord client")
        try:
            return await platform.restart(self.store.data.bot_token)
        except Exception:
            logger.exception("Discord client restart failed")
            return False

    def _on_token_changed(self) -> None:
        logger.info("Bot token changed - restarting Discord client")
        self._schedule(self.restart_client())

    def _on_config_saved(self) -> None:
        if self.orchestrator.initialized:
            self._schedule(self.orchestrator.refresh())

    # -------------------------------------------------------------------
    # Presence
    # -------------------------------------------------------------------
    def activity_text(self) -> str:
        count = len(self.game.online_users())
        return f"{count} online player" + ("" if count == 1 else "s")

    async def _update_activity(self, event: BridgeEvent | None = None) -> None:
        platform = self.platform
        if platform is None or not platform.is_connected:
            return
        text = self.activity_text()
        if text == self._last_activity:
            return
        await platform.set_activity(text)
        self._last_activity = text

    def _start_activity_timer(self) -> None:
        if self._activity_task is not None:
            return

        async def _tick() -> None:
            while True:
                await asyncio.sleep(self._activity_interval)
                self.dispatcher.dispatch(EventType.TIMER)

        self._activity_task = asyncio.get_running_loop().create_task(
            _tick(), name="activity-timer",
        )

    def _stop_activity_timer(self) -> None:
        if self._activity_task is not None:
            self._activity_task.cancel()
            self._activity_task = None

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    def get_display_text(self, verbose: bool = False) -> str:
        lines = [
            f"Status: {self.status}",
            f"Link verification: {self.verifier.state}",
            f"Verified links: {len(self.verifier.verified_links)}",
        ]
        if verbose and self.verifier.last_unverified:
            lines.append("Unverified links:")
            lines.extend(f"  {link_id}" for link_id in self.verifier.last_unverified)
        lines.append(self.orchestrator.get_display_text(verbose))
        problems = log_buffer.recent_problems()
        if problems:
            lines.append("Recent problems:")
            lines.extend(f"  {p}" for p in problems)
        return "\n".join(lines)
