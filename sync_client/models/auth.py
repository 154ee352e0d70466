"""Account session model."""

from __future__ import annotations

from pydantic import BaseModel


class MatrixAuth(BaseModel):
    """The signed-in account. Obtaining it is the bridge's job; we only read it."""

    user_id: str
    device_id: str
    display_name: str | None = None
    avatar_url: str | None = None
