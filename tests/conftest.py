"""
tests/conftest.py — Shared Test Fixtures
=========================================

In-memory SQLite engine, an in-memory game server and a fake Discord
platform whose guild/channel topology is a plain dict.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from linkbridge.config import BridgeConfigData
from linkbridge.database.models import Base
from linkbridge.engine.config_store import ConfigStore
from linkbridge.game import InMemoryGameServer, ServerInfo


class FakePlatform:
    """RemotePlatform double.  ``topology`` maps guild name → channel names."""

    def __init__(self, topology: dict[str, list[str]] | None = None, connected: bool = True):
        self.topology = topology if topology is not None else {}
        self.connected = connected
        self.sent: list[tuple[str, str, str, object]] = []
        self.displays: list[tuple[str, object]] = []
        self.activities: list[str] = []
        self.granted: list[tuple[str, str, str]] = []
        self.revoked: list[tuple[str, str, str]] = []
        self.restarts: list[str] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    def guild_by_name_or_id(self, name_or_id: str):
        for name, channels in self.topology.items():
            if name.casefold() == name_or_id.strip().casefold():
                return SimpleNamespace(name=name, channels=channels)
        return None

    def channel_by_name_or_id(self, guild, name_or_id: str):
        for channel in guild.channels:
            if channel.casefold() == name_or_id.strip().casefold():
                return SimpleNamespace(guild=guild.name, name=channel)
        return None

    async def send_message(self, channel, content, mentions=None) -> None:
        self.sent.append((channel.guild, channel.name, content, mentions))

    async def render_display(self, channel, content) -> None:
        self.displays.append((channel.name, content))

    async def set_activity(self, text: str) -> None:
        self.activities.append(text)

    async def grant_role(self, guild, member_id: str, role_name: str) -> bool:
        self.granted.append((guild.name, member_id, role_name))
        return True

    async def revoke_role(self, guild, member_id: str, role_name: str) -> bool:
        self.revoked.append((guild.name, member_id, role_name))
        return True

    async def restart(self, token: str) -> bool:
        self.restarts.append(token)
        return True


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all LinkBridge tables.

    StaticPool keeps one shared connection so ``asyncio.to_thread`` workers
    see the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def game() -> InMemoryGameServer:
    server = InMemoryGameServer(ServerInfo(name="Test Server", address="play.example.org"))
    server.add_user("Alice", online=True)
    server.add_user("Bob")
    return server


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform({"MyGuild": ["my-channel", "status", "feed"]})


@pytest.fixture
def store(tmp_path) -> ConfigStore:
    data = BridgeConfigData(bot_token="token", chatlog_path=str(tmp_path / "chat.log"))
    return ConfigStore(data, path=tmp_path / "linkbridge.yaml")


@pytest.fixture
def make_platform():
    """Factory for platforms with a custom topology."""
    return FakePlatform
