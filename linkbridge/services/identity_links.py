"""
linkbridge.services.identity_links — Account Link Manager
==========================================================

Pairs a game account with a Discord account.  A pair starts unverified
(the game user claimed a Discord id) and becomes verified once the Discord
side confirms it.  Verification and removal are published as
``ACCOUNT_LINK_VERIFIED`` / ``ACCOUNT_LINK_REMOVED`` so role modules can
react.

The manager keeps an in-memory view of the stored pairs; it is subscribed
in the dispatcher's ``IDENTITY`` stage and reloads that view whenever
Discord connects.
"""

from __future__ import annotations

import dataclasses
import logging
import threading

from linkbridge.database.engine import run_db
from linkbridge.engine.dispatcher import EventDispatcher
from linkbridge.engine.events import BridgeEvent, EventType
from linkbridge.services.storage_service import BridgeStorage, LinkedUser

logger = logging.getLogger(__name__)


class IdentityLinkManager:
    def __init__(self, storage: BridgeStorage, dispatcher: EventDispatcher) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._lock = threading.Lock()
        self._links: dict[str, LinkedUser] = {}

    async def initialize(self) -> None:
        """Load the stored pairs into memory."""
        users = await run_db(self._storage.load_linked_users)
        with self._lock:
            self._links = {u.game_name: u for u in users}
        logger.info("Loaded %d linked users", len(users))

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def get_by_game_name(self, game_name: str) -> LinkedUser | None:
        with self._lock:
            return self._links.get(game_name)

    def get_by_discord_id(self, discord_id: str) -> LinkedUser | None:
        with self._lock:
            for user in self._links.values():
                if user.discord_id == discord_id:
                    return user
        return None

    def verified_links(self) -> list[LinkedUser]:
        with self._lock:
            return [u for u in self._links.values() if u.verified]

    def all_links(self) -> list[LinkedUser]:
        with self._lock:
            return list(self._links.values())

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    async def link(self, game_name: str, discord_id: str, guild_id: str = "") -> LinkedUser:
        """Record an unverified pair, replacing any previous one for *game_name*."""
        user = LinkedUser(game_name=game_name, discord_id=discord_id, guild_id=guild_id)
        await run_db(self._storage.upsert_linked_user, user)
        with self._lock:
            self._links[game_name] = user
        logger.info("Account link requested: %s → %s", game_name, discord_id)
        return user

    async def verify(self, game_name: str) -> bool:
        """Mark the pair for *game_name* verified.  False if there is none."""
        with self._lock:
            current = self._links.get(game_name)
        if current is None:
            logger.warning("Cannot verify account link: no link for %s", game_name)
            return False
        if current.verified:
            return True

        verified = dataclasses.replace(current, verified=True)
        await run_db(self._storage.upsert_linked_user, verified)
        with self._lock:
            self._links[game_name] = verified
        logger.info("Account link verified: %s ↔ %s", game_name, verified.discord_id)
        self._dispatcher.dispatch(EventType.ACCOUNT_LINK_VERIFIED, verified)
        return True

    async def unlink(self, game_name: str) -> bool:
        """Remove the pair for *game_name*.  False if there was none."""
        with self._lock:
            removed = self._links.pop(game_name, None)
        if removed is None:
            return False
        await run_db(self._storage.delete_linked_user, game_name)
        logger.info("Account link removed: %s", game_name)
        if removed.verified:
            self._dispatcher.dispatch(EventType.ACCOUNT_LINK_REMOVED, removed)
        return True

    # -------------------------------------------------------------------
    # Dispatcher stage
    # -------------------------------------------------------------------
    async def handle_event(self, event: BridgeEvent) -> None:
        if event.kind & EventType.CLIENT_CONNECTED:
            await self.initialize()
