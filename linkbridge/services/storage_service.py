"""
linkbridge.services.storage_service — Persistent Bridge State
==============================================================

Two small pieces of state survive a restart:

* **Linked users** — game account ↔ Discord account pairs with a verified
  flag.  The whole set can be loaded and replaced atomically.
* **Currency trade counts** — how many trades each currency has seen since
  the last world reset, shown by the currency display.

:meth:`BridgeStorage.handle_event` is subscribed in the dispatcher's
``STORAGE`` stage so counts are already updated when modules render.

All methods except :meth:`handle_event` are synchronous; call them from the
event loop through :func:`~linkbridge.database.engine.run_db`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, delete, select

from linkbridge.database.engine import get_session, run_db
from linkbridge.database.models import CurrencyTradeCount, LinkedUserRow
from linkbridge.engine.events import BridgeEvent, EventType
from linkbridge.game import CurrencyTrade

logger = logging.getLogger(__name__)

# Kinds handled in the storage stage.
STORAGE_TRIGGERS = EventType.TRADE | EventType.WORLD_RESET


@dataclass(frozen=True, slots=True)
class LinkedUser:
    game_name: str
    discord_id: str
    guild_id: str = ""
    verified: bool = False


def _to_linked_user(row: LinkedUserRow) -> LinkedUser:
    return LinkedUser(
        game_name=row.game_name,
        discord_id=row.discord_id,
        guild_id=row.guild_id,
        verified=row.verified,
    )


class BridgeStorage:
    """SQLAlchemy-backed store for linked users and trade counts."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    # -------------------------------------------------------------------
    # Linked users
    # -------------------------------------------------------------------
    def load_linked_users(self) -> list[LinkedUser]:
        with get_session(self._engine) as session:
            rows = session.scalars(select(LinkedUserRow).order_by(LinkedUserRow.id)).all()
            return [_to_linked_user(r) for r in rows]

    def replace_linked_users(self, users: list[LinkedUser]) -> None:
        """Replace the whole set in one transaction."""
        with get_session(self._engine) as session:
            session.execute(delete(LinkedUserRow))
            session.add_all(
                LinkedUserRow(
                    game_name=u.game_name,
                    discord_id=u.discord_id,
                    guild_id=u.guild_id,
                    verified=u.verified,
                )
                for u in users
            )
        logger.debug("Linked users replaced (%d entries)", len(users))

    def upsert_linked_user(self, user: LinkedUser) -> None:
        with get_session(self._engine) as session:
            row = session.scalar(
                select(LinkedUserRow).where(LinkedUserRow.game_name == user.game_name)
            )
            if row is None:
                row = LinkedUserRow(game_name=user.game_name)
                session.add(row)
            row.discord_id = user.discord_id
            row.guild_id = user.guild_id
            row.verified = user.verified

    def delete_linked_user(self, game_name: str) -> bool:
        with get_session(self._engine) as session:
            result = session.execute(
                delete(LinkedUserRow).where(LinkedUserRow.game_name == game_name)
            )
            return result.rowcount > 0

    # -------------------------------------------------------------------
    # Trade counts
    # -------------------------------------------------------------------
    def increment_trade_count(self, currency: str) -> int:
        with get_session(self._engine) as session:
            row = session.get(CurrencyTradeCount, currency)
            if row is None:
                row = CurrencyTradeCount(currency=currency, trades=0)
                session.add(row)
            row.trades += 1
            return row.trades

    def trade_counts(self) -> dict[str, int]:
        with get_session(self._engine) as session:
            rows = session.scalars(select(CurrencyTradeCount)).all()
            return {r.currency: r.trades for r in rows}

    def reset_trade_counts(self) -> None:
        with get_session(self._engine) as session:
            session.execute(delete(CurrencyTradeCount))
        logger.info("Currency trade counts reset")

    # -------------------------------------------------------------------
    # Dispatcher stage
    # -------------------------------------------------------------------
    async def handle_event(self, event: BridgeEvent) -> None:
        if event.kind & EventType.TRADE:
            trade = event.payload
            if isinstance(trade, CurrencyTrade) and trade.currency:
                await run_db(self.increment_trade_count, trade.currency)
        elif event.kind & EventType.WORLD_RESET:
            await run_db(self.reset_trade_counts)
