"""Room power level models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class RoomPowerLevels(BaseModel):
    """
    Power levels of one room. Unknown keys from the server are kept so a
    read-modify-write never drops them.
    """

    model_config = {"extra": "allow"}

    ban: int | None = None
    invite: int | None = None
    kick: int | None = None
    redact: int | None = None
    state_default: int | None = None
    events_default: int | None = None
    users_default: int | None = None
    events: dict[str, int] | None = None
    users: dict[str, int] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def merged(self, changes: dict[str, Any] | RoomPowerLevels) -> RoomPowerLevels:
        """Shallow merge: keys in `changes` replace the current ones."""
        if isinstance(changes, RoomPowerLevels):
            changes = changes.to_wire()
        return RoomPowerLevels.model_validate({**self.to_wire(), **changes})

    def with_user_level(self, user_id: str, level: int) -> RoomPowerLevels:
        users = dict(self.users or {})
        users[user_id] = level
        return self.merged({"users": users})

    def user_level(self, user_id: str) -> int:
        if self.users and user_id in self.users:
            return self.users[user_id]
        return self.users_default or 0
