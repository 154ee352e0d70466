"""
Sync Kernel — Event Construction

Factory functions for creating well-formed events and outgoing contents.
Used by the serializers to wrap validated content, by the orchestrator to
build outgoing messages, and by tests to build events concisely.
"""

from __future__ import annotations

import time
from typing import Any

from sync_engine.kernel.content import PaymentContent, validate_content
from sync_engine.kernel.replies import reply_fallback_body
from sync_engine.kernel.types import Event, EventStatus


def now_ms() -> int:
    return int(time.time() * 1000)


def make_event(
    seq: int,
    content: Any,
    *,
    room_id: str = "!room:example.com",
    sender_id: str | None = "@alice:example.com",
    status: EventStatus = "sent",
    timestamp: int | None = None,
    event_id: str | None = None,
    txn_id: str | None = None,
    error: str | None = None,
) -> Event:
    """
    Build a complete Event from minimal inputs.

    content may be a raw dict (validated here) or an already validated
    content model. seq determines the default ids; everything else has
    sensible defaults for testing.
    """
    if isinstance(content, dict):
        content = validate_content(content)
    if event_id is None and txn_id is None:
        event_id = f"$evt_{seq:03d}"
    return Event(
        id=event_id or txn_id or f"item_{seq:03d}",
        room_id=room_id,
        sender_id=sender_id,
        timestamp=timestamp if timestamp is not None else now_ms(),
        status=status,
        content=content,
        event_id=event_id,
        txn_id=txn_id,
        error=error,
    )


def make_payment_event(
    seq: int,
    payment_id: str,
    status: str,
    *,
    amount: int = 1000,
    **fields: Any,
) -> Event:
    """
    Payment event for payment_id. Extra keyword arguments go into the
    content (snake_case names), except the Event-level ones make_event takes.
    """
    event_kwargs = {
        k: fields.pop(k)
        for k in ("room_id", "sender_id", "timestamp", "event_id", "txn_id", "error")
        if k in fields
    }
    content = PaymentContent(
        body=f"Payment {status}",
        status=status,
        payment_id=payment_id,
        amount=amount,
        **fields,
    )
    return make_event(seq, content, **event_kwargs)


def text_content(
    body: str,
    *,
    mentions: dict[str, Any] | None = None,
    extra: dict[str, str] | None = None,
    in_reply_to: str | None = None,
) -> dict[str, Any]:
    """
    Wire content for an outgoing text message.

    mentions/extra come from prepare_mentions_payload and are only added
    when something was mentioned.
    """
    content: dict[str, Any] = {"msgtype": "m.text", "body": body}
    if mentions:
        content["mentions"] = mentions
        content.update(extra or {})
    if in_reply_to:
        content["m.relates_to"] = {"m.in_reply_to": {"event_id": in_reply_to}}
    return content


def reply_content(
    in_reply_to: str,
    original_sender_id: str,
    original_body: str,
    body: str,
) -> dict[str, Any]:
    """Outgoing reply: relation plus the quoted plain-text fallback, no <mx-reply>."""
    return text_content(
        reply_fallback_body(original_sender_id, original_body, body),
        in_reply_to=in_reply_to,
    )
