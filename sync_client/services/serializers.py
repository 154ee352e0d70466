"""
Bridge payload → normalized domain values.

Timeline items
--------------
Diffs index into the bridge's timeline, so every bridge item must map to
exactly one local entry. Items we don't render (date dividers, read
markers, state events) become None placeholders instead of being dropped.

Two content shapes are accepted:
  - wrapped:  {"kind": "json", "value": {"type": "m.room.message", "content": {...}}}
              {"kind": "message", "value": {...content}}
              {"kind": "redactedMessage"}
  - tagged:   {"msgtype": "m.text", ...}  ("redacted" for a deleted message)
              Any payload with a msgtype is tagged, including polls and
              multispend events whose own "kind" field is part of the content.

A redacted message becomes xyz.fedi.deleted content.

Anything structurally wrong with an item raises MalformedItemError; the
caller decides how to recover.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from sync_client.models import (
    DirectoryUser,
    MatrixAuth,
    Room,
    RoomMember,
    RoomPowerLevels,
    RoomPreview,
    SearchResults,
    SyncStatus,
)
from sync_engine.kernel.content import validate_content
from sync_engine.kernel.types import Event, EventStatus, RoomListItem

DELETED_MSGTYPE = "xyz.fedi.deleted"

ROOM_MESSAGE_TYPE = "m.room.message"

_SEND_STATES: dict[str, EventStatus] = {
    "sent": "sent",
    "cancelled": "cancelled",
    "sendingFailed": "failed",
    "notSentYet": "pending",
}

_ROOM_STATES = {"joined": "Joined", "left": "Left", "invited": "Invited", "banned": "Banned", "knocked": "Knocked"}


class MalformedItemError(ValueError):
    """A bridge payload doesn't have the shape we need."""

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


# ---------------------------------------------------------------------------
# Room list
# ---------------------------------------------------------------------------


def room_list_item(raw: Any) -> RoomListItem:
    """{"kind": "filled", "value": room_id} → ready; "empty"/"invalidated" → loading."""
    if isinstance(raw, str):
        return RoomListItem(status="ready", id=raw)
    if not isinstance(raw, dict):
        raise MalformedItemError("room list entry is not an object", raw)
    if raw.get("kind") in ("empty", "invalidated") or not raw.get("value"):
        return RoomListItem(status="loading")
    return RoomListItem(status="ready", id=raw["value"])


def room_list_key(item: RoomListItem) -> str | None:
    """Key used to discover newly listed rooms. Loading entries have none."""
    return item.id if item.is_ready else None


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


def timeline_item(raw: Any, room_id: str) -> Event | None:
    """One bridge timeline item → Event, or None for items that aren't messages."""
    if not isinstance(raw, dict):
        raise MalformedItemError("timeline item is not an object", raw)
    if raw.get("kind") != "event":
        return None

    value = raw.get("value")
    if not isinstance(value, dict) or not value.get("id"):
        raise MalformedItemError("timeline event without id", raw)

    content = _event_content(value, raw)
    if content is None:
        return None

    status, error = send_status(value)
    item_id = str(value["id"])
    event_id = value.get("eventId") or _sent_event_id(value) or (item_id if item_id.startswith("$") else None)

    return Event(
        id=item_id,
        room_id=room_id,
        sender_id=value.get("sender"),
        timestamp=_int(value.get("timestamp")),
        status=status,
        content=validate_content(content),
        event_id=event_id,
        txn_id=value.get("txnId"),
        error=error,
    )


def send_status(value: dict[str, Any]) -> tuple[EventStatus, str | None]:
    """
    Remote events are always "sent". Local echoes follow their send state;
    a missing or unrecognised send state means the send is still pending.
    """
    if not value.get("localEcho"):
        return "sent", None
    send_state = _send_state(value)
    status = _SEND_STATES.get(send_state.get("kind"), "pending")
    if status == "failed":
        return status, str(send_state.get("error") or "Unknown error")
    return status, None


def _event_content(value: dict[str, Any], raw: Any) -> dict[str, Any] | None:
    wrapped = value.get("content")
    if not isinstance(wrapped, dict):
        raise MalformedItemError("timeline event without content", raw)

    # Tagged form. Some kinds (polls, multispend) carry their own "kind" field.
    if "msgtype" in wrapped:
        msgtype = wrapped["msgtype"]
        if msgtype == "redacted":
            return _deleted(value.get("eventId") or value["id"])
        if msgtype == "unknown":
            return None
        return wrapped

    kind = wrapped.get("kind")
    if kind == "redactedMessage":
        return _deleted(value.get("eventId") or value["id"])
    if kind not in ("json", "message"):
        return None

    inner = wrapped.get("value")
    if not isinstance(inner, dict):
        raise MalformedItemError(f"{kind} content without value", raw)

    if kind == "json":
        if inner.get("type") != ROOM_MESSAGE_TYPE:
            return None
        content = inner.get("content")
    else:
        content = inner

    unsigned = inner.get("unsigned") or {}
    if not isinstance(unsigned, dict):
        raise MalformedItemError("unsigned is not an object", raw)
    redacted_because = unsigned.get("redacted_because")
    if redacted_because is not None:
        if not isinstance(redacted_because, dict):
            raise MalformedItemError("redacted_because is not an object", raw)
        reason = redacted_because.get("content") or {}
        if not isinstance(reason, dict):
            raise MalformedItemError("redaction content is not an object", raw)
        return {"msgtype": DELETED_MSGTYPE, "body": "", **reason}

    return content if isinstance(content, dict) else None


def _deleted(redacts: str) -> dict[str, Any]:
    return {"msgtype": DELETED_MSGTYPE, "body": "", "redacts": redacts}


def _send_state(value: dict[str, Any]) -> dict[str, Any]:
    send_state = value.get("sendState") or {}
    if not isinstance(send_state, dict):
        raise MalformedItemError("sendState is not an object", value)
    return send_state


def _sent_event_id(value: dict[str, Any]) -> str | None:
    send_state = _send_state(value)
    if send_state.get("kind") == "sent":
        return send_state.get("eventId") or send_state.get("event_id")
    return None


# ---------------------------------------------------------------------------
# Rooms, members, power levels
# ---------------------------------------------------------------------------


def room_info(raw: Any) -> Room:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise MalformedItemError("room info without id", raw)
    try:
        return Room(
            id=raw["id"],
            name=raw.get("name") or "",
            avatar_url=raw.get("avatarUrl"),
            preview=_room_preview(raw.get("preview")),
            direct_user_id=raw.get("directUserId"),
            notification_count=raw.get("notificationCount"),
            is_marked_unread=bool(raw.get("isMarkedUnread")),
            joined_member_count=raw.get("joinedMemberCount"),
            is_preview=bool(raw.get("isPreview")),
            is_public=raw.get("isPublic"),
            room_state=room_state(raw.get("roomState")),
        )
    except ValidationError as e:
        raise MalformedItemError(f"invalid room info: {e.error_count()} errors", raw) from e


def room_state(raw: Any) -> str:
    """Bridge room states arrive as "joined" or "Joined"; default Joined."""
    if not isinstance(raw, str):
        return "Joined"
    return _ROOM_STATES.get(raw.lower(), "Joined")


def _room_preview(raw: Any) -> RoomPreview | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    content = raw.get("content") or {}
    return RoomPreview(
        event_id=str(raw["id"]),
        sender_id=raw.get("sender") or "",
        body=content.get("body") or "",
        timestamp=_int(raw.get("timestamp")),
        is_deleted=content.get("msgtype") == "redacted",
    )


def room_member(raw: Any, room_id: str) -> RoomMember:
    if not isinstance(raw, dict) or not raw.get("userId"):
        raise MalformedItemError("room member without userId", raw)
    try:
        return RoomMember(
            room_id=room_id,
            id=raw["userId"],
            display_name=raw.get("displayName") or "",
            avatar_url=raw.get("avatarUrl"),
            power_level=_int(raw.get("powerLevel")),
            membership=str(raw.get("membership") or "join").lower(),
            ignored=bool(raw.get("ignored")),
        )
    except ValidationError as e:
        raise MalformedItemError(f"invalid room member: {e.error_count()} errors", raw) from e


def power_levels(raw: Any) -> RoomPowerLevels:
    if not isinstance(raw, dict):
        raise MalformedItemError("power levels are not an object", raw)
    try:
        return RoomPowerLevels.model_validate(raw)
    except ValidationError as e:
        raise MalformedItemError(f"invalid power levels: {e.error_count()} errors", raw) from e


# ---------------------------------------------------------------------------
# Account, directory, sync indicator
# ---------------------------------------------------------------------------


def auth(raw: Any) -> MatrixAuth:
    if not isinstance(raw, dict) or not raw.get("userId"):
        raise MalformedItemError("account session without userId", raw)
    return MatrixAuth(
        user_id=raw["userId"],
        device_id=raw.get("deviceId") or "",
        display_name=raw.get("displayName"),
        avatar_url=raw.get("avatarUrl"),
    )


def search_results(raw: Any) -> SearchResults:
    if not isinstance(raw, dict):
        raise MalformedItemError("search response is not an object", raw)
    return SearchResults(
        results=[
            DirectoryUser(id=user["userId"], display_name=user.get("displayName") or "", avatar_url=user.get("avatarUrl"))
            for user in raw.get("results") or []
            if isinstance(user, dict) and user.get("userId")
        ],
        limited=bool(raw.get("limited")),
    )


def sync_status(indicator: Any) -> SyncStatus:
    """The bridge's sync indicator is "show" while syncing and "hide" once caught up."""
    return "syncing" if indicator == "show" else "synced"


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
