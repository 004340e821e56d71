"""
linkbridge.modules.registry — Module Orchestrator
==================================================

**Why this file exists:**
The orchestrator owns every module for the lifetime of one Discord
connection.  It is populated when the client connects and torn down when it
disconnects:

* ``initialize`` — ``setup()`` on every module, then
  ``handle_start_or_stop()`` on every module.
* ``update`` — one isolated task per module, run concurrently; a failing
  module never stops the others from seeing the event.
* ``shutdown`` — ``stop()`` on every module, then ``destroy()`` on every
  module.  Each call is isolated, so one broken module can't leave the
  rest running.

Usage::

    orchestrator = ModuleOrchestrator(ctx)
    dispatcher.subscribe(DispatchStage.MODULES, orchestrator.update)
    await orchestrator.initialize()
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable

from linkbridge.engine.events import BridgeEvent
from linkbridge.modules.base import Module, ModuleContext
from linkbridge.modules.displays import CurrencyDisplay, ServerInfoDisplay
from linkbridge.modules.feeds import (
    ChatRelay,
    CraftingFeed,
    ElectionFeed,
    PlayerStatusFeed,
    ServerStatusFeed,
    TradeFeed,
)
from linkbridge.modules.roles import AccountLinkRoleModule

logger = logging.getLogger(__name__)


class ModuleType(enum.StrEnum):
    CHAT_RELAY = "chat_relay"
    SERVER_INFO_DISPLAY = "server_info_display"
    CURRENCY_DISPLAY = "currency_display"
    CRAFTING_FEED = "crafting_feed"
    TRADE_FEED = "trade_feed"
    PLAYER_STATUS_FEED = "player_status_feed"
    SERVER_STATUS_FEED = "server_status_feed"
    ELECTION_FEED = "election_feed"
    ACCOUNT_LINK_ROLES = "account_link_roles"


MODULE_CLASSES: dict[ModuleType, type[Module]] = {
    ModuleType.CHAT_RELAY: ChatRelay,
    ModuleType.SERVER_INFO_DISPLAY: ServerInfoDisplay,
    ModuleType.CURRENCY_DISPLAY: CurrencyDisplay,
    ModuleType.CRAFTING_FEED: CraftingFeed,
    ModuleType.TRADE_FEED: TradeFeed,
    ModuleType.PLAYER_STATUS_FEED: PlayerStatusFeed,
    ModuleType.SERVER_STATUS_FEED: ServerStatusFeed,
    ModuleType.ELECTION_FEED: ElectionFeed,
    ModuleType.ACCOUNT_LINK_ROLES: AccountLinkRoleModule,
}

ModuleFactory = Callable[[ModuleContext], dict[ModuleType, Module]]


def build_default_modules(ctx: ModuleContext) -> dict[ModuleType, Module]:
    return {kind: cls(ctx) for kind, cls in MODULE_CLASSES.items()}


class ModuleOrchestrator:
    def __init__(
        self, ctx: ModuleContext, factory: ModuleFactory = build_default_modules,
    ) -> None:
        self._ctx = ctx
        self._factory = factory
        self._modules: dict[ModuleType, Module] = {}

    @property
    def modules(self) -> dict[ModuleType, Module]:
        return dict(self._modules)

    @property
    def initialized(self) -> bool:
        return bool(self._modules)

    def get(self, kind: ModuleType) -> Module | None:
        return self._modules.get(kind)

    # -------------------------------------------------------------------
    # Isolation helpers
    # -------------------------------------------------------------------
    def _call_each(self, action: str, fn: Callable[[Module], object]) -> None:
        for kind, module in list(self._modules.items()):
            try:
                fn(module)
            except Exception:
                logger.exception("Module %s failed during %s", kind, action)

    async def _await_each(self, action: str, fn: Callable[[Module], Awaitable[None]]) -> None:
        for kind, module in list(self._modules.items()):
            try:
                await fn(module)
            except Exception:
                logger.exception("Module %s failed during %s", kind, action)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def initialize(self) -> None:
        if self._modules:
            await self.shutdown()
        self._modules = self._factory(self._ctx)
        self._call_each("setup", lambda m: m.setup())
        await self._await_each("start/stop", lambda m: m.handle_start_or_stop())
        logger.info("Initialized %d modules", len(self._modules))

    async def refresh(self) -> None:
        """Re-evaluate every module's should-run predicate."""
        await self._await_each("start/stop", lambda m: m.handle_start_or_stop())

    async def shutdown(self) -> None:
        await self._await_each("stop", lambda m: m.stop())
        self._call_each("destroy", lambda m: m.destroy())
        self._modules = {}
        logger.info("Modules shut down")

    # -------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------
    async def update(self, event: BridgeEvent) -> None:
        modules = list(self._modules.items())
        if not modules:
            return
        await asyncio.gather(*(
            self._update_module(kind, module, event) for kind, module in modules
        ))

    async def _update_module(self, kind: ModuleType, module: Module, event: BridgeEvent) -> None:
        try:
            await module.update(event.kind, *event.data)
        except Exception:
            logger.exception("An error occurred while updating module %s", kind)

    def get_display_text(self, verbose: bool = False) -> str:
        if not self._modules:
            return "Modules: not initialized"
        return "\n".join(m.get_display_text(verbose) for m in self._modules.values())
