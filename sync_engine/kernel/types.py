"""
Sync Kernel — Shared Types

Data classes used across diffs, content, consolidation and mentions.
These are the contracts that bind the kernel together.

Two ordered collections are driven by diffs:
- room list: RoomListItem entries ("loading" placeholders or ready room ids)
- timeline:  Event entries, or None placeholders for filtered-out items

Events are never mutated in place. Consolidation produces new Event values
with dataclasses.replace().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Diff kinds
# ---------------------------------------------------------------------------

DIFF_KINDS: set[str] = {
    "append",
    "insert",
    "remove",
    "set",
    "pushFront",
    "pushBack",
    "popFront",
    "popBack",
    "truncate",
    "clear",
    "reset",
}

# Kinds that carry no value and pass through map_diff unchanged
VALUELESS_DIFF_KINDS: set[str] = {"remove", "popFront", "popBack", "truncate", "clear"}

# Kinds that carry a list of values
MULTI_VALUE_DIFF_KINDS: set[str] = {"append", "reset"}

# Kinds that carry exactly one value
SINGLE_VALUE_DIFF_KINDS: set[str] = {"insert", "set", "pushFront", "pushBack"}


# ---------------------------------------------------------------------------
# Event status
# ---------------------------------------------------------------------------

EventStatus = Literal["sent", "pending", "failed", "cancelled"]

RoomListItemStatus = Literal["loading", "ready"]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Diff(Generic[T]):
    """
    One incremental operation over an ordered collection.

    Only the fields relevant to `kind` are populated:
      append, reset                    → values
      insert, set                      → index, value
      pushFront, pushBack              → value
      remove                           → index
      truncate                         → length
      popFront, popBack, clear         → (nothing)
    """

    kind: str
    values: tuple[T, ...] | None = None
    index: int | None = None
    value: T | None = None
    length: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": self.kind}
        if self.kind in MULTI_VALUE_DIFF_KINDS:
            d["values"] = list(self.values or ())
        if self.index is not None:
            d["index"] = self.index
        if self.kind in SINGLE_VALUE_DIFF_KINDS:
            d["value"] = self.value
        if self.length is not None:
            d["length"] = self.length
        return d


@dataclass(frozen=True)
class RoomListItem:
    """An entry of the room list. Loading entries have no id yet."""

    status: RoomListItemStatus
    id: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.status == "ready" and self.id is not None


@dataclass(frozen=True)
class Event:
    """
    A normalized timeline event.

    `id` is the timeline item id. `event_id` is the durable remote id and
    `txn_id` the local transaction id of a locally authored event that has
    not been acknowledged yet. At least one of the two is set.

    `content` is one of the closed Content kinds from kernel.content.
    `consolidated` marks payment rows produced by consolidate_payments.
    """

    id: str
    room_id: str
    sender_id: str | None
    timestamp: int  # ms since epoch
    status: EventStatus
    content: Any
    event_id: str | None = None
    txn_id: str | None = None
    error: str | None = None
    consolidated: bool = False

    @property
    def msgtype(self) -> str:
        return getattr(self.content, "msgtype", "m.unknown")


@dataclass
class Member:
    """
    Minimal room-member view used by the mention parser.
    The client layer's RoomMember model converts to this.
    """

    id: str
    display_name: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def user_localpart(user_id: str | None) -> str:
    """
    "@alice:example.com" → "alice". Returns "?" for empty ids.
    """
    if not user_id:
        return "?"
    return user_id.split(":")[0].replace("@", "")
