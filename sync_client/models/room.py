"""Room models for the room list and room info subscriptions."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

RoomState = Literal["Joined", "Left", "Invited", "Banned", "Knocked"]


class RoomPreview(BaseModel):
    """Latest event of a room, as shown in the room list."""

    event_id: str
    sender_id: str
    display_name: str = ""
    avatar_url: str | None = None
    body: str = ""
    timestamp: int = 0
    is_deleted: bool = False


class Room(BaseModel):
    """Normalized room info. One per observed room."""

    id: str
    name: str = ""
    avatar_url: str | None = None
    preview: RoomPreview | None = None
    direct_user_id: str | None = None
    notification_count: int | None = None
    is_marked_unread: bool = False
    joined_member_count: int | None = None
    is_preview: bool = False
    is_public: bool | None = None
    room_state: RoomState = "Joined"

    @property
    def is_direct(self) -> bool:
        return self.direct_user_id is not None

    @property
    def is_invited(self) -> bool:
        return self.room_state == "Invited"
