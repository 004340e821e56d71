"""
linkbridge.engine.events — EventType and BridgeEvent
=====================================================

The universal event envelope.  Every game action, Discord occurrence,
connection change and timer tick is normalized into a :class:`BridgeEvent`
before the dispatcher fans it out.

:class:`EventType` is a closed set of bit flags so a module can declare the
kinds it cares about as a single mask and test a trigger with one ``&``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

__all__ = ["EventType", "BridgeEvent", "PRESENCE_TRIGGERS"]


class EventType(enum.IntFlag):
    """Everything that can happen on either side of the bridge."""

    NONE = 0
    GAME_MESSAGE_SENT = enum.auto()
    REMOTE_MESSAGE_SENT = enum.auto()
    TRADE = enum.auto()
    WORK_ORDER_CREATED = enum.auto()
    POSTED_WORK_PARTY = enum.auto()
    COMPLETED_WORK_PARTY = enum.auto()
    JOINED_WORK_PARTY = enum.auto()
    LEFT_WORK_PARTY = enum.auto()
    WORKED_WORK_PARTY = enum.auto()
    VOTE = enum.auto()
    CURRENCY_CREATED = enum.auto()
    ENTERED_DEMOGRAPHIC = enum.auto()
    LEFT_DEMOGRAPHIC = enum.auto()
    GAINED_SPECIALTY = enum.auto()
    LOST_SPECIALTY = enum.auto()
    JOIN = enum.auto()
    LOGIN = enum.auto()
    LOGOUT = enum.auto()
    ELECTION_STARTED = enum.auto()
    ELECTION_STOPPED = enum.auto()
    CLIENT_CONNECTED = enum.auto()
    CLIENT_DISCONNECTED = enum.auto()
    ACCOUNT_LINK_VERIFIED = enum.auto()
    ACCOUNT_LINK_REMOVED = enum.auto()
    TIMER = enum.auto()
    FORCE_UPDATE = enum.auto()
    WORLD_RESET = enum.auto()
    SERVER_STARTED = enum.auto()
    SERVER_STOPPED = enum.auto()


# Kinds that refresh the Discord presence string.
PRESENCE_TRIGGERS = EventType.JOIN | EventType.LOGIN | EventType.LOGOUT | EventType.TIMER


@dataclass(frozen=True, slots=True)
class BridgeEvent:
    """One dispatched occurrence.

    ``data`` holds the domain objects relevant to ``kind`` (a chat message,
    a trade, a user...).  Consumers read it; nobody mutates it.
    """

    kind: EventType
    data: tuple[Any, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def payload(self) -> Any:
        """The first data item, or None."""
        return self.data[0] if self.data else None
