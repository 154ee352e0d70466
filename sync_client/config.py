"""
Sync client configuration — all environment variables in one place.

Read from environment at runtime. Every setting has a default so the
client can be constructed in tests without any environment.
"""

from __future__ import annotations

import os


def _bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Settings:
    """Client settings from environment variables."""

    # Remote bridge
    BRIDGE_URL: str = os.environ.get("BRIDGE_URL", "http://127.0.0.1:26722")
    BRIDGE_DEVICE_ID: str = os.environ.get("BRIDGE_DEVICE_ID", "default")
    BRIDGE_TIMEOUT_SECONDS: float = float(os.environ.get("BRIDGE_TIMEOUT_SECONDS", "30"))

    # Sync behaviour
    AUTO_JOIN_INVITES: bool = _bool("AUTO_JOIN_INVITES", "true")
    TIMELINE_PAGE_SIZE: int = int(os.environ.get("TIMELINE_PAGE_SIZE", "30"))
    USER_SEARCH_LIMIT: int = 10

    # Mentions
    MENTION_LINK_BASE: str = os.environ.get("MENTION_LINK_BASE", "https://matrix.to/#/")


# Singleton instance
settings = Settings()
