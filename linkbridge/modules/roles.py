"""
linkbridge.modules.roles — Linked-Account Role Sync
====================================================

Grants the configured ``linked_user_role`` when a game account link is
verified and revokes it when the link is removed.
"""

from __future__ import annotations

import logging
from typing import Any

from linkbridge.engine.events import EventType
from linkbridge.modules.base import Module
from linkbridge.services.storage_service import LinkedUser

logger = logging.getLogger(__name__)


class AccountLinkRoleModule(Module):
    NAME = "Linked User Roles"

    @property
    def triggers(self) -> EventType:
        return (
            super().triggers
            | EventType.ACCOUNT_LINK_VERIFIED
            | EventType.ACCOUNT_LINK_REMOVED
        )

    def should_run(self) -> bool:
        return bool(self.ctx.store.data.linked_user_role.strip())

    async def update_internal(self, trigger: EventType, *data: Any) -> None:
        if trigger & EventType.FORCE_UPDATE:
            await self._sync_all()
            return

        user = data[0] if data else None
        if not isinstance(user, LinkedUser):
            return
        if trigger & EventType.ACCOUNT_LINK_VERIFIED:
            await self._apply(user, grant=True)
        elif trigger & EventType.ACCOUNT_LINK_REMOVED:
            await self._apply(user, grant=False)

    async def _sync_all(self) -> None:
        identities = self.ctx.identities
        if identities is None:
            return
        for user in identities.verified_links():
            await self._apply(user, grant=True)

    async def _apply(self, user: LinkedUser, grant: bool) -> None:
        platform = self.ctx.platform
        if platform is None or not platform.is_connected:
            return
        role = self.ctx.store.data.linked_user_role.strip()
        guild = platform.guild_by_name_or_id(user.guild_id) if user.guild_id else None
        if guild is None:
            logger.warning(
                "Cannot %s role for %s: guild %r not found",
                "grant" if grant else "revoke", user.game_name, user.guild_id,
            )
            return
        try:
            if grant:
                changed = await platform.grant_role(guild, user.discord_id, role)
            else:
                changed = await platform.revoke_role(guild, user.discord_id, role)
        except Exception:
            logger.exception("Role update failed for %s", user.game_name)
            return
        if changed:
            self.op_count += 1
