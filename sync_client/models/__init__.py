"""
Pydantic models for the sync client.

Domain values handed to the application. No imports from services.
"""

from sync_client.models.auth import MatrixAuth
from sync_client.models.member import Membership, RoomMember
from sync_client.models.power_levels import RoomPowerLevels
from sync_client.models.room import Room, RoomPreview, RoomState
from sync_client.models.sync import BackPaginationStatus, DirectoryUser, SearchResults, SyncStatus

__all__ = [
    # Room models
    "Room",
    "RoomPreview",
    "RoomState",
    # Member models
    "RoomMember",
    "Membership",
    # Power level models
    "RoomPowerLevels",
    # Account
    "MatrixAuth",
    # Sync
    "SyncStatus",
    "BackPaginationStatus",
    "DirectoryUser",
    "SearchResults",
]
