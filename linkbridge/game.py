"""
linkbridge.game — Game-Side Payloads & Server Contract
=======================================================

The game host reports occurrences to the bridge as the small dataclasses
below (passed to :meth:`BridgePlugin.action_performed`) and answers the
bridge's queries through :class:`GameServer`.

:class:`InMemoryGameServer` is a complete, thread-safe implementation used
by standalone mode (``python -m linkbridge.bot``) and by the tests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GameUser:
    name: str
    online: bool = False
    login_time: datetime | None = None


@dataclass(frozen=True, slots=True)
class Currency:
    id: int
    name: str
    backed: bool = False
    total_supply: float = 0.0


@dataclass(frozen=True, slots=True)
class Election:
    name: str
    proposer: str = ""
    winner: str = ""


@dataclass(frozen=True, slots=True)
class ServerInfo:
    name: str = ""
    description: str = ""
    address: str = ""


# ---------------------------------------------------------------------------
# Game actions: one class per reported occurrence
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GameAction:
    citizen: str


@dataclass(frozen=True, slots=True)
class ChatSent(GameAction):
    channel: str
    message: str


@dataclass(frozen=True, slots=True)
class CurrencyTrade(GameAction):
    other_party: str
    currency: str
    amount: float
    item: str = ""
    bought: bool = True


@dataclass(frozen=True, slots=True)
class CreateWorkOrder(GameAction):
    item: str
    count: int = 1
    station: str = ""


@dataclass(frozen=True, slots=True)
class WorkPartyAction(GameAction):
    work_party: str


@dataclass(frozen=True, slots=True)
class PostedWorkParty(WorkPartyAction):
    pass


@dataclass(frozen=True, slots=True)
class CompletedWorkParty(WorkPartyAction):
    pass


@dataclass(frozen=True, slots=True)
class JoinedWorkParty(WorkPartyAction):
    pass


@dataclass(frozen=True, slots=True)
class LeftWorkParty(WorkPartyAction):
    pass


@dataclass(frozen=True, slots=True)
class WorkedForWorkParty(WorkPartyAction):
    pass


@dataclass(frozen=True, slots=True)
class Vote(GameAction):
    election: str


@dataclass(frozen=True, slots=True)
class CreateCurrency(GameAction):
    currency: str


@dataclass(frozen=True, slots=True)
class DemographicChange(GameAction):
    demographic: str
    entered: bool


@dataclass(frozen=True, slots=True)
class GainSpecialty(GameAction):
    specialty: str


@dataclass(frozen=True, slots=True)
class LoseSpecialty(GameAction):
    specialty: str


# ---------------------------------------------------------------------------
# Server contract
# ---------------------------------------------------------------------------
@runtime_checkable
class GameServer(Protocol):
    """What the bridge needs from the game side."""

    def users(self) -> list[GameUser]: ...

    def online_users(self) -> list[GameUser]: ...

    def currencies(self) -> list[Currency]: ...

    def server_info(self) -> ServerInfo: ...

    def send_chat(self, channel: str, text: str) -> None: ...


class InMemoryGameServer:
    """Thread-safe :class:`GameServer` backed by plain collections."""

    def __init__(self, info: ServerInfo | None = None) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, GameUser] = {}
        self._currencies: dict[int, Currency] = {}
        self._info = info or ServerInfo()
        self.sent_chat: list[tuple[str, str]] = []

    # -- mutation (host side) -------------------------------------------
    def add_user(self, name: str, online: bool = False) -> GameUser:
        user = GameUser(name=name, online=online, login_time=datetime.now() if online else None)
        with self._lock:
            self._users[name] = user
        return user

    def set_online(self, name: str, online: bool) -> GameUser:
        with self._lock:
            user = GameUser(
                name=name, online=online, login_time=datetime.now() if online else None,
            )
            self._users[name] = user
        return user

    def add_currency(self, currency: Currency) -> None:
        with self._lock:
            self._currencies[currency.id] = currency

    # -- GameServer -----------------------------------------------------
    def users(self) -> list[GameUser]:
        with self._lock:
            return list(self._users.values())

    def online_users(self) -> list[GameUser]:
        with self._lock:
            return [u for u in self._users.values() if u.online]

    def currencies(self) -> list[Currency]:
        with self._lock:
            return list(self._currencies.values())

    def server_info(self) -> ServerInfo:
        return self._info

    def send_chat(self, channel: str, text: str) -> None:
        with self._lock:
            self.sent_chat.append((channel, text))
        logger.info("[#%s] %s", channel, text)
