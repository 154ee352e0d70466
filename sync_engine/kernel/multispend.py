"""
Sync Kernel — Multi-party Spend Groups

A multispend group lives in one room. It starts as an invitation proposed
by one member to a set of signers with an approval threshold, and ends up
either finalized (every signer accepted) or canceled.

Group status is read from an authoritative status query on the transport,
not reconstructed from timeline events: votes, cancels and reannounces are
filtered out of the rendered timeline (see consolidation.filter_multispend).

Roles are derived, never stored:
    proposer → proposed the active/finalized invitation
    voter    → listed as a signer
    member   → anyone else in the room
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, ValidationError

from sync_engine.kernel.content import CustomModel, GroupInvitation, content_of

MultispendRole = Literal["proposer", "voter", "member"]

GROUP_STATUSES: set[str] = {"inactive", "activeInvitation", "finalized", "canceled"}


class MultispendGroupStatus(CustomModel):
    """
    Current state of a room's multispend group.

    `status` is activeInvitation, finalized or canceled. `inactive` means the
    room has no invitation at all, in which case the other fields are empty.
    """

    status: Literal["inactive", "activeInvitation", "finalized", "canceled"]
    invitation_id: str | None = None
    invitation: GroupInvitation | None = None
    proposer: str | None = None
    pubkeys: dict[str, str] = Field(default_factory=dict)
    rejections: list[str] = Field(default_factory=list)
    federation_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "activeInvitation"

    @property
    def is_finalized(self) -> bool:
        return self.status == "finalized"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def multispend_role(status: MultispendGroupStatus | None, user_id: str | None) -> MultispendRole | None:
    """
    Role of user_id in the group. None when there is no group or no user.
    """
    if status is None or not user_id or status.invitation is None:
        return None
    if status.proposer == user_id:
        return "proposer"
    if user_id in status.invitation.signers:
        return "voter"
    return "member"


def parse_group_status(raw: Any) -> MultispendGroupStatus | None:
    """
    Parse the transport's group status payload.

    Accepts both the flat form above and the nested form the bridge
    returns ({"status": "activeInvitation", "activeInviteId", "state": {...}}
    or {"status": "finalized", "inviteEventId", "finalizedGroup": {...}}).
    Returns None for anything unparseable.
    """
    if not isinstance(raw, dict) or raw.get("status") not in GROUP_STATUSES:
        return None

    flat: dict[str, Any] = {"status": raw["status"]}
    nested = raw.get("state") or raw.get("finalizedGroup")
    if isinstance(nested, dict):
        flat.update(nested)
        flat["invitationId"] = raw.get("activeInviteId") or raw.get("inviteEventId")
    else:
        flat.update({k: v for k, v in raw.items() if k != "status"})

    try:
        return MultispendGroupStatus.model_validate(flat)
    except ValidationError:
        return None


def is_multispend_reannounce(item: Any) -> bool:
    content = content_of(item)
    return getattr(content, "msgtype", None) == "xyz.fedi.multispend" and getattr(content, "kind", None) == "groupReannounce"
