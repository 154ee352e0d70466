"""
Sync Kernel — Event Consolidation

Folds multi-event transactions into one row per logical transaction.

The timeline is an append-only log: a payment is a push/request followed by
accepted/rejected/canceled/received events that all share a payment id. The
chat surface shows one line per payment, positioned where the payment
started, reflecting its latest state.

Everything here is a pure function of the event list. Consolidated views
are recomputed on every read and never stored, so they cannot drift from
the underlying log.

Read path:
    room_events(timeline) = consolidate_payments(filter_multispend(non-null))
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from sync_engine.kernel.content import (
    INITIATING_PAYMENT_STATUSES,
    PaymentContent,
    is_payment_event,
)
from sync_engine.kernel.types import Event

logger = logging.getLogger(__name__)

# Sub-kinds whose effect is read from the group status query, not rendered
HIDDEN_MULTISPEND_KINDS: set[str] = {
    "groupReannounce",
    "groupInvitationCancel",
    "withdrawalResponse",
    "groupInvitationVote",
}

# Latest statuses for which the recipient can still claim the bearer token
RECEIVABLE_PAYMENT_STATUSES: set[str] = {"pushed", "accepted"}

# Optional fields copied from the latest event only when it carries them
_OVERLAY_FIELDS = ("bearer_token", "sender_operation_id", "receiver_operation_id")


@dataclass(frozen=True)
class JoinedFederation:
    """A federation the local user has joined. Recovering ones can't claim yet."""

    id: str
    recovering: bool = False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def consolidate_payments(events: Sequence[Event]) -> list[Event]:
    """
    Collapse each payment's event chain into its initiating event.

    Input is ordered oldest → newest. For each payment id the latest event
    wins; the initiating event (pushed/requested) keeps its position and id
    and takes the latest status and operation fields. Non-initiating
    payment events are dropped. Non-payment events pass through unchanged.

    A payment id with no initiating event in the input yields no row.

    Idempotent: emitted rows are marked consolidated, and a consolidated row
    is treated as initiating when the output is fed back in.
    """
    latest: dict[str, Event] = {}
    for event in events:
        if is_payment_event(event):
            latest[event.content.payment_id] = event

    result: list[Event] = []
    for event in events:
        if not is_payment_event(event):
            result.append(event)
            continue
        if not _is_initiating(event):
            continue
        source = latest[event.content.payment_id]
        if event.consolidated and source.consolidated:
            # Already folded on a previous pass
            result.append(event)
        else:
            result.append(_overlay(event, source))
    return result


def filter_multispend(events: Iterable[Event]) -> list[Event]:
    """Drop multi-party-spend votes, cancels, reannounces and withdrawal responses."""
    return [e for e in events if _multispend_kind(e) not in HIDDEN_MULTISPEND_KINDS]


def room_events(timeline: Iterable[Event | None]) -> list[Event]:
    """The renderable event list for a room: placeholders removed, then both filters."""
    events = [e for e in timeline if e is not None]
    return consolidate_payments(filter_multispend(events))


def latest_payment_event(events: Iterable[Event | None], payment_id: str) -> Event | None:
    """Newest event in the chain for payment_id, or None if there is none."""
    found: Event | None = None
    for event in events:
        if event is not None and is_payment_event(event) and event.content.payment_id == payment_id:
            found = event
    return found


def receivable_payment_events(
    timeline: Iterable[Event | None],
    my_id: str,
    joined_federations: Iterable[JoinedFederation] | Mapping[str, bool],
) -> list[Event]:
    """
    Payments the local user can claim right now.

    A payment is receivable when it is addressed to my_id, comes from a
    federation the user has joined and is not recovering, and its latest
    status is pushed or accepted. Returns the latest event of each such
    payment, in order of first appearance of the payment id.
    """
    federations = _federation_index(joined_federations)
    latest: dict[str, Event] = {}
    for event in timeline:
        if event is None or not is_payment_event(event):
            continue
        content: PaymentContent = event.content
        if content.recipient_id != my_id or not content.federation_id:
            continue
        recovering = federations.get(content.federation_id)
        if recovering is None:
            logger.info(
                "consolidation: can't claim from federation %s, user is not joined",
                content.federation_id,
            )
            continue
        if recovering:
            logger.info(
                "consolidation: can't claim from federation %s, recovery in progress",
                content.federation_id,
            )
            continue
        latest[content.payment_id] = event

    return [e for e in latest.values() if e.content.status in RECEIVABLE_PAYMENT_STATUSES]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _is_initiating(event: Event) -> bool:
    return event.consolidated or event.content.status in INITIATING_PAYMENT_STATUSES


def _overlay(initiating: Event, latest: Event) -> Event:
    """The initiating event with the latest event's mutable fields."""
    update: dict[str, Any] = {"status": latest.content.status}
    for name in _OVERLAY_FIELDS:
        value = getattr(latest.content, name)
        if value is not None:
            update[name] = value
    content = initiating.content.model_copy(update=update)
    return replace(initiating, content=content, consolidated=True)


def _multispend_kind(event: Event) -> str | None:
    content = event.content
    if getattr(content, "msgtype", None) != "xyz.fedi.multispend":
        return None
    return getattr(content, "kind", None)


def _federation_index(
    joined: Iterable[JoinedFederation] | Mapping[str, bool],
) -> dict[str, bool]:
    """federation id → recovering"""
    if isinstance(joined, Mapping):
        return {fid: bool(recovering) for fid, recovering in joined.items()}
    return {f.id: f.recovering for f in joined}
