"""
linkbridge.modules.displays — Persistent Discord Displays
==========================================================

* :class:`ServerInfoDisplay` — server name, description, address, logo and
  who is online, in every configured status channel.
* :class:`CurrencyDisplay` — the most traded (or largest) currencies, in
  every configured currency channel.
"""

from __future__ import annotations

import logging

from linkbridge.config import CurrencyChannel, RemoteTarget, StatusChannel
from linkbridge.database.engine import run_db
from linkbridge.engine.events import EventType
from linkbridge.interfaces import DisplayContent
from linkbridge.modules.base import DisplayModule, ModuleContext

logger = logging.getLogger(__name__)


class ServerInfoDisplay(DisplayModule):
    NAME = "Server Info Display"
    BASE_TAG = "Server Info"
    TIMER_START_DELAY = 5.0
    TIMER_INTERVAL = 60.0

    @property
    def triggers(self) -> EventType:
        return super().triggers | EventType.JOIN | EventType.LOGIN | EventType.LOGOUT

    def get_display_targets(self) -> list[RemoteTarget]:
        return list(self.ctx.store.data.status_channels)

    def get_display_content(self, target: RemoteTarget) -> list[DisplayContent]:
        if not isinstance(target, StatusChannel):
            return []
        data = self.ctx.store.data
        info = self.ctx.game.server_info()
        fields: dict[str, str] = {}

        name = data.server_name or info.name
        if target.use_name and name:
            fields["Name"] = name
        description = data.server_description or info.description
        if target.use_description and description:
            fields["Description"] = description
        address = data.server_address or info.address
        if target.use_address and address:
            fields["Connection Info"] = address

        online = sorted(u.name for u in self.ctx.game.online_users())
        if target.use_player_count:
            fields["Online Players"] = f"{len(online)}/{len(self.ctx.game.users())}"
        if target.use_player_list:
            fields["Players"] = "\n".join(online) if online else "-- No players online --"

        thumbnail = data.server_logo if target.use_logo and data.server_logo else None
        return [DisplayContent(
            tag=self.BASE_TAG, title=name or "Server Info",
            fields=fields, thumbnail_url=thumbnail,
        )]


class CurrencyDisplay(DisplayModule):
    NAME = "Currency Display"
    BASE_TAG = "Currency"
    TIMER_START_DELAY = 10.0
    TIMER_INTERVAL = 60.0

    def __init__(self, ctx: ModuleContext) -> None:
        super().__init__(ctx)
        self._trade_counts: dict[str, int] = {}

    @property
    def triggers(self) -> EventType:
        return super().triggers | EventType.TRADE | EventType.CURRENCY_CREATED | EventType.WORLD_RESET

    def get_display_targets(self) -> list[RemoteTarget]:
        return list(self.ctx.store.data.currency_channels)

    async def refresh_state(self) -> None:
        storage = self.ctx.storage
        if storage is not None:
            self._trade_counts = await run_db(storage.trade_counts)

    def get_display_content(self, target: RemoteTarget) -> list[DisplayContent]:
        if not isinstance(target, CurrencyChannel):
            return []
        currencies = self.ctx.game.currencies()
        if target.use_trade_count:
            currencies.sort(key=lambda c: self._trade_counts.get(c.name, 0), reverse=True)
        else:
            currencies.sort(key=lambda c: c.total_supply, reverse=True)
        currencies = currencies[: max(target.max_currency_count, 0)]

        fields: dict[str, str] = {}
        for currency in currencies:
            parts = [f"Supply: {currency.total_supply:,.2f}"]
            if target.use_trade_count:
                parts.append(f"Trades: {self._trade_counts.get(currency.name, 0)}")
            if currency.backed:
                parts.append("Backed")
            fields[currency.name] = " | ".join(parts)
        if not fields:
            fields["Currencies"] = "-- No currencies --"
        return [DisplayContent(tag=self.BASE_TAG, title="Currencies", fields=fields)]
