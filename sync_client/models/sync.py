"""Sync status and user directory models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SyncStatus = Literal["uninitialized", "initialSync", "syncing", "synced", "stopped"]

BackPaginationStatus = Literal["idle", "paginating", "timelineStartReached"]


class DirectoryUser(BaseModel):
    id: str
    display_name: str = ""
    avatar_url: str | None = None


class SearchResults(BaseModel):
    """What search_user_directory returns."""

    results: list[DirectoryUser] = Field(default_factory=list)
    limited: bool = False
