"""
Sync Kernel — the pure engine.

Five components:
  diffs          — (collection, diff) → collection  (pure, deterministic)
  content        — raw payload → closed content model, never raises
  consolidation  — payment chains → one row per payment, hidden multispend kinds
  mentions       — plain text ↔ rich text with mention links
  replies        — reply relations and reply-fallback stripping

Plus multispend (group status, roles) and events (factories).
"""

from sync_engine.kernel.consolidation import (
    consolidate_payments,
    filter_multispend,
    receivable_payment_events,
    room_events,
)
from sync_engine.kernel.content import content_to_wire, validate_content
from sync_engine.kernel.diffs import (
    DiffProtocolError,
    apply_all,
    apply_diff,
    initial_reset,
    map_diff,
    parse_diff,
)
from sync_engine.kernel.mentions import (
    extract_mentions,
    parse_mentions,
    prepare_mentions_payload,
    split_html_runs,
)
from sync_engine.kernel.multispend import multispend_role
from sync_engine.kernel.replies import is_reply, strip_reply, strip_reply_from_body

__all__ = [
    "apply_diff",
    "apply_all",
    "map_diff",
    "parse_diff",
    "initial_reset",
    "DiffProtocolError",
    "validate_content",
    "content_to_wire",
    "consolidate_payments",
    "filter_multispend",
    "room_events",
    "receivable_payment_events",
    "multispend_role",
    "parse_mentions",
    "prepare_mentions_payload",
    "extract_mentions",
    "split_html_runs",
    "strip_reply",
    "strip_reply_from_body",
    "is_reply",
]
