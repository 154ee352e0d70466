"""Room member models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from sync_engine.kernel.types import Member

Membership = Literal["join", "leave", "invite", "ban", "knock"]


class RoomMember(BaseModel):
    """A member of one room, with their power level in that room."""

    room_id: str
    id: str
    display_name: str = ""
    avatar_url: str | None = None
    power_level: int = 0
    membership: Membership = "join"
    ignored: bool = False

    def to_member(self) -> Member:
        """The minimal view the mention parser works with."""
        return Member(id=self.id, display_name=self.display_name or None)
