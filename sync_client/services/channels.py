"""
Outbound update channels.

The orchestrator never calls into the application. It publishes normalized
updates, one channel per category, and the application consumes them:

    async for update in channels.room_timeline:
        ...

Channels are unbounded asyncio queues. Publishing never blocks, so a slow
consumer cannot stall the sync loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sync_client.models import MatrixAuth, Room, RoomMember, RoomPowerLevels, SyncStatus
from sync_engine.kernel.types import Diff, Event, RoomListItem

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Update envelopes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoomListUpdate:
    diffs: list[Diff[RoomListItem]]
    items: tuple[RoomListItem, ...]


@dataclass(frozen=True)
class TimelineUpdate:
    """`diffs` are the normalized diffs; `items` is the timeline after applying them."""

    room_id: str
    diffs: list[Diff[Event | None]]
    items: tuple[Event | None, ...]


@dataclass(frozen=True)
class MembersUpdate:
    room_id: str
    members: list[RoomMember]


@dataclass(frozen=True)
class PowerLevelsUpdate:
    room_id: str
    power_levels: RoomPowerLevels


@dataclass(frozen=True)
class ProcessingError:
    """A non-fatal data error. The subscription carried on."""

    key: tuple[str, ...]
    message: str
    raw: Any = None


@dataclass(frozen=True)
class SubscriptionFailure:
    """A subscription could not be started or hit a protocol error and stopped."""

    key: tuple[str, ...]
    message: str


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class Channel(Generic[T]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: asyncio.Queue[T] = asyncio.Queue()

    def publish(self, item: T) -> None:
        self._queue.put_nowait(item)

    async def get(self) -> T:
        return await self._queue.get()

    def drain(self) -> list[T]:
        """Everything published so far and not yet consumed."""
        items: list[T] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def __len__(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            yield await self._queue.get()


@dataclass
class Channels:
    status: Channel[SyncStatus] = field(default_factory=lambda: Channel("status"))
    auth: Channel[MatrixAuth] = field(default_factory=lambda: Channel("auth"))
    room_list: Channel[RoomListUpdate] = field(default_factory=lambda: Channel("room_list"))
    room_info: Channel[Room] = field(default_factory=lambda: Channel("room_info"))
    room_members: Channel[MembersUpdate] = field(default_factory=lambda: Channel("room_members"))
    room_timeline: Channel[TimelineUpdate] = field(default_factory=lambda: Channel("room_timeline"))
    room_power_levels: Channel[PowerLevelsUpdate] = field(default_factory=lambda: Channel("room_power_levels"))
    errors: Channel[ProcessingError] = field(default_factory=lambda: Channel("errors"))
    failures: Channel[SubscriptionFailure] = field(default_factory=lambda: Channel("failures"))
