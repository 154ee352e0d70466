"""
Invite auto-join policy.

Rooms we are invited to are joined automatically. The set of attempted
room ids keeps us from joining the same invite twice while a join is in
flight or after it succeeded. A failed join is forgotten so the next
room info update for that invite retries it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from sync_client.models import Room

logger = logging.getLogger(__name__)

JoinFn = Callable[[str], Awaitable[None]]


class AutoJoinPolicy:
    def __init__(self, join: JoinFn, enabled: bool = True) -> None:
        self._join = join
        self.enabled = enabled
        self.attempted: set[str] = set()

    def should_join(self, room: Room) -> bool:
        return self.enabled and room.is_invited and room.id not in self.attempted

    async def handle_room(self, room: Room) -> bool:
        """
        Join `room` if it is an invite we haven't attempted yet.
        Returns True if the join succeeded. Failures are logged, never raised.
        """
        if not self.should_join(room):
            return False

        self.attempted.add(room.id)
        try:
            await self._join(room.id)
        except Exception as e:
            self.attempted.discard(room.id)
            logger.warning("auto_join: failed to join %s: %s", room.id, e)
            return False

        logger.info("auto_join: joined %s", room.id)
        return True
