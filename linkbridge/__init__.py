"""
LinkBridge — Game Server ↔ Discord Bridge
==========================================
Relays chat, status and role state between a game server and a Discord
guild.  The configuration is hot-reloadable; channel links are verified
against the live Discord topology; every game or Discord occurrence is
normalized into a typed event and fanned out to independently
lifecycled modules.

Package layout::

    linkbridge/
    ├── config.py          # YAML ↔ mutable config tree
    ├── constants.py       # Defaults, tokens, timer intervals
    ├── game.py            # Game-side payloads + GameServer protocol
    ├── interfaces.py      # RemotePlatform protocol, DisplayContent
    ├── engine/
    │   ├── events.py      # EventType flags + BridgeEvent envelope
    │   ├── config_store.py  # Save/normalize/diff of the live config
    │   ├── verification.py  # Channel-link verification state machine
    │   └── dispatcher.py  # Staged event fan-out
    ├── modules/
    │   ├── base.py        # Module / DisplayModule / FeedModule
    │   ├── displays.py    # Server info + currency displays
    │   ├── feeds.py       # Chat relay + one-shot feeds
    │   ├── roles.py       # Account-link role module
    │   └── registry.py    # ModuleType registry + orchestrator
    ├── services/
    │   ├── chatlog.py     # Chat-log file writer
    │   ├── identity_links.py  # Linked account manager
    │   ├── storage_service.py # Persistent linked users + world data
    │   └── log_buffer.py  # In-memory ring buffer for status text
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models
    └── bot/
        ├── core.py        # BridgePlugin — wires everything together
        ├── client.py      # discord.py adapter
        └── __main__.py    # ``python -m linkbridge.bot``
"""

__version__ = "0.1.0"
