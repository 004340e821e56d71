"""
linkbridge.bot.__main__ — Entry point for ``python -m linkbridge.bot``
======================================================================

Standalone mode, for running the bridge outside a game host (the game
side is an :class:`~linkbridge.game.InMemoryGameServer`).

Wiring:
1. Load .env (secrets).
2. Load linkbridge.yaml (or ``$LINKBRIDGE_CONFIG``).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the BridgePlugin and initialize it.
5. Run the Discord client, reconnecting when the bot token changes.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import discord
import yaml
from dotenv import load_dotenv

from linkbridge.bot.client import DiscordPlatform
from linkbridge.bot.core import BridgePlugin
from linkbridge.config import DEFAULT_CONFIG_PATH, load_config
from linkbridge.database.engine import create_db_engine, init_db
from linkbridge.engine.config_store import ConfigStore
from linkbridge.game import InMemoryGameServer, ServerInfo
from linkbridge.services.storage_service import BridgeStorage

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("discord").setLevel(logging.WARNING)
logger = logging.getLogger("linkbridge")


async def run_bridge(plugin: BridgePlugin, token: str) -> None:
    """Run Discord clients until one stops without asking for a restart."""
    try:
        while True:
            platform = DiscordPlatform(plugin)
            try:
                await platform.start(token)
            except discord.LoginFailure:
                plugin.on_connection_failed()
                logger.critical("Discord rejected the bot token.")
                return
            finally:
                if not platform.is_closed():
                    await platform.close()

            if platform.restart_token is None:
                return
            token = platform.restart_token
            logger.info("Reconnecting to Discord…")
    finally:
        await plugin.shutdown()


def main() -> None:
    """Bootstrap and run the bridge."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Configuration document.
    config_path = os.getenv("LINKBRIDGE_CONFIG", DEFAULT_CONFIG_PATH)
    try:
        data = load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    store = ConfigStore(data, path=config_path)

    if not data.bot_token:
        logger.critical(
            "No bot token configured.  "
            "Set bot_token in %s or DISCORD_TOKEN in .env.", config_path,
        )
        sys.exit(1)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Plugin.
    game = InMemoryGameServer(ServerInfo(
        name=data.server_name,
        description=data.server_description,
        address=data.server_address,
    ))
    plugin = BridgePlugin(store, game, BridgeStorage(engine))
    plugin.initialize()

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting LinkBridge…")
    try:
        asyncio.run(run_bridge(plugin, store.data.bot_token))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
