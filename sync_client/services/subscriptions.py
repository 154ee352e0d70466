"""
Per-resource subscription state machine.

    unsubscribed → subscribing → active → (error | unsubscribed)

- subscribing → active on receipt of the initial snapshot
- active → error on a protocol error (bad diff); the handle is released
- error / unsubscribed → subscribing again when the caller re-subscribes

Keys:
    ("roomList",)  ("status",)
    ("timeline", room_id)  ("members", room_id)  ("info", room_id)

List subscriptions keep their current collection in `items`; value
subscriptions keep their latest value in `value`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sync_engine.kernel.diffs import apply_all
from sync_engine.kernel.types import Diff

SubscriptionKey = tuple[str, ...]

ROOM_LIST_KEY: SubscriptionKey = ("roomList",)
STATUS_KEY: SubscriptionKey = ("status",)


def timeline_key(room_id: str) -> SubscriptionKey:
    return ("timeline", room_id)


def members_key(room_id: str) -> SubscriptionKey:
    return ("members", room_id)


def info_key(room_id: str) -> SubscriptionKey:
    return ("info", room_id)


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    ERROR = "error"


@dataclass
class Subscription:
    key: SubscriptionKey
    state: SubscriptionState = SubscriptionState.UNSUBSCRIBED
    handle: int | None = None
    items: list[Any] = field(default_factory=list)
    value: Any = None
    error: str | None = None
    on_update: Callable[[Any], Any] | None = None

    @property
    def is_live(self) -> bool:
        return self.state in (SubscriptionState.SUBSCRIBING, SubscriptionState.ACTIVE)

    def begin(self) -> bool:
        """Start subscribing. False when already subscribing or active."""
        if self.is_live:
            return False
        self.state = SubscriptionState.SUBSCRIBING
        self.handle = None
        self.items = []
        self.value = None
        self.error = None
        return True

    def activate(self, handle: int | None, on_update: Callable[[Any], Any] | None = None) -> None:
        self.state = SubscriptionState.ACTIVE
        self.handle = handle
        self.on_update = on_update

    def apply(self, diffs: list[Diff]) -> list[Any]:
        """Apply diffs to the current collection. Raises DiffProtocolError."""
        self.items = apply_all(self.items, diffs)
        return self.items

    def fail(self, message: str) -> int | None:
        """Move to error. Returns the handle to release, if any."""
        handle = self.handle
        self.state = SubscriptionState.ERROR
        self.error = message
        self.handle = None
        self.on_update = None
        return handle

    def release(self) -> int | None:
        """Move to unsubscribed. Returns the handle to release, if any."""
        handle = self.handle
        self.state = SubscriptionState.UNSUBSCRIBED
        self.handle = None
        self.on_update = None
        return handle


class SubscriptionRegistry:
    """All subscriptions by key, plus the handle → key index for routing updates."""

    def __init__(self) -> None:
        self._subs: dict[SubscriptionKey, Subscription] = {}
        self._by_handle: dict[int, SubscriptionKey] = {}

    def get(self, key: SubscriptionKey) -> Subscription | None:
        return self._subs.get(key)

    def ensure(self, key: SubscriptionKey) -> Subscription:
        sub = self._subs.get(key)
        if sub is None:
            sub = self._subs[key] = Subscription(key=key)
        return sub

    def state(self, key: SubscriptionKey) -> SubscriptionState:
        sub = self._subs.get(key)
        return sub.state if sub else SubscriptionState.UNSUBSCRIBED

    def bind(self, key: SubscriptionKey, handle: int) -> None:
        self._by_handle[handle] = key

    def discard(self, key: SubscriptionKey) -> None:
        sub = self._subs.pop(key, None)
        if sub is not None:
            self.unbind(sub.handle)

    def unbind(self, handle: int | None) -> None:
        if handle is not None:
            self._by_handle.pop(handle, None)

    def by_handle(self, handle: Any) -> Subscription | None:
        key = self._by_handle.get(handle)
        if key is None:
            return None
        sub = self._subs.get(key)
        if sub is None or sub.handle != handle:
            return None
        return sub

    def live(self) -> list[Subscription]:
        return [sub for sub in self._subs.values() if sub.is_live]

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subs.values()))

    def __len__(self) -> int:
        return len(self._subs)
