"""
linkbridge.constants — Shared Constants
========================================

Single source of truth for config defaults, the invite-link token and the
timer intervals used by verification and the presence refresh.
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Config defaults
# ---------------------------------------------------------------------------
INVITE_LINK_TOKEN = "[LINK]"

DEFAULT_COMMAND_PREFIX = "?"
DEFAULT_LOCAL_COMMAND_CHANNEL = "General"
DEFAULT_INVITE_MESSAGE = "Join us on Discord!\n" + INVITE_LINK_TOKEN


def default_chatlog_path() -> str:
    """Chat-log location relative to the server's working directory."""
    return os.path.join(os.getcwd(), "Mods", "LinkBridge", "Chatlog.txt")


# ---------------------------------------------------------------------------
# Verification timing (seconds)
# ---------------------------------------------------------------------------
LINK_VERIFICATION_TIMEOUT = 15.0
STATIC_VERIFICATION_DELAY = 2.0
CHANNEL_VERIFICATION_DELAY = 3.0

# ---------------------------------------------------------------------------
# Presence refresh
# ---------------------------------------------------------------------------
ACTIVITY_UPDATE_INTERVAL = 60.0

# Remote channel names never contain upper case or spaces.
CHANNEL_NAME_SPACE_REPLACEMENT = "-"


def normalize_channel_name(name: str) -> str:
    """Return *name* the way Discord stores text-channel names."""
    return name.lower().replace(" ", CHANNEL_NAME_SPACE_REPLACEMENT)
