"""
Fixtures for sync client tests.

`bridge` is a MemoryTransport scripted with a signed-in account, an empty
room list and one response per room-scoped RPC. Tests override single
responses with bridge.respond(...) / bridge.fail(...).
"""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from sync_client.services.orchestrator import SyncOrchestrator
from sync_client.services.transport import MemoryTransport

ME = "@alice:example.com"
BOB = "@bob:example.com"
ROOM = "!room:example.com"
DM = "!dm:example.com"


# ---------------------------------------------------------------------------
# Bridge payload builders
# ---------------------------------------------------------------------------


def message_item(
    item_id: str,
    body: str = "hi",
    *,
    sender: str = BOB,
    timestamp: int = 1000,
    content: dict[str, Any] | None = None,
    local_echo: bool = False,
    send_state: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """A wrapped m.room.message timeline item."""
    return {
        "kind": "event",
        "value": {
            "id": item_id,
            "eventId": item_id if item_id.startswith("$") else None,
            "txnId": None if item_id.startswith("$") else item_id,
            "content": {
                "kind": "json",
                "value": {
                    "type": "m.room.message",
                    "content": content or {"msgtype": "m.text", "body": body},
                },
            },
            "localEcho": local_echo,
            "sendState": send_state,
            "timestamp": timestamp,
            "sender": sender,
        },
    }


def payment_item(item_id: str, payment_id: str, status: str, **kwargs: Any) -> dict[str, Any]:
    content = {
        "msgtype": "xyz.fedi.payment",
        "body": f"Payment {status}",
        "status": status,
        "paymentId": payment_id,
        "amount": 1000,
    }
    return message_item(item_id, content=content, **kwargs)


DATE_DIVIDER = {"kind": "dateDivider", "value": 1700000000000}


def room_info_payload(
    room_id: str,
    name: str = "Room",
    *,
    room_state: str = "joined",
    direct_user_id: str | None = None,
) -> dict[str, Any]:
    return {
        "id": room_id,
        "name": name,
        "avatarUrl": None,
        "preview": None,
        "directUserId": direct_user_id,
        "notificationCount": 0,
        "isMarkedUnread": False,
        "joinedMemberCount": 2,
        "isPreview": False,
        "isPublic": False,
        "roomState": room_state,
    }


def member_payload(user_id: str, display_name: str, power_level: int = 0) -> dict[str, Any]:
    return {
        "userId": user_id,
        "displayName": display_name,
        "avatarUrl": None,
        "powerLevel": power_level,
        "membership": "join",
        "ignored": False,
    }


def filled(room_id: str) -> dict[str, Any]:
    return {"kind": "filled", "value": room_id}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def bridge() -> MemoryTransport:
    t = MemoryTransport()
    t.respond("matrixGetAccountSession", {"userId": ME, "deviceId": "DEVICE", "displayName": "Alice"})
    t.respond("matrixRoomList", lambda p: t.observable([]))
    t.respond("matrixObserveSyncIndicator", lambda p: t.observable("show"))
    t.respond("matrixRoomObserveInfo", lambda p: t.observable(room_info_payload(p["roomId"])))
    t.respond("matrixRoomTimelineItems", lambda p: t.observable([]))
    t.respond(
        "matrixRoomGetMembers",
        [member_payload(ME, "Alice", 100), member_payload(BOB, "Bob Smith")],
    )
    t.respond("matrixRoomGetPowerLevels", {"ban": 50, "users": {ME: 100}})
    for method in (
        "matrixRoomJoin",
        "matrixRoomJoinPublic",
        "matrixRoomLeave",
        "matrixSendMessageJson",
        "matrixSetDisplayName",
        "matrixSetAvatarUrl",
        "matrixRoomSetName",
        "matrixRoomSetPowerLevels",
        "matrixRoomSendReceipt",
    ):
        t.respond(method, None)
    return t


@pytest_asyncio.fixture
async def orchestrator(bridge):
    """An orchestrator over `bridge`, stopped after the test."""
    orch = SyncOrchestrator(bridge, auto_join=True, page_size=20)
    yield orch
    await orch.stop()
