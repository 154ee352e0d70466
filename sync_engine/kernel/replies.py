"""
Sync Kernel — Replies

A reply is identified by its relation only:
    content["m.relates_to"]["m.in_reply_to"]["event_id"]

Older senders also embed the quoted message in the reply itself, as an
<mx-reply> element in the rich body and as "> " quote lines in the plain
body. That fallback is presentation only. It is stripped before display and
never used to detect a reply.

Regex based, no HTML parser: the rich subset is small and malformed markup
is left as it is rather than rejected.
"""

from __future__ import annotations

import re
from html import unescape
from typing import Any

from sync_engine.kernel.content import content_of

_MX_REPLY_RE = re.compile(r"<mx-reply\b[^>]*>.*?</mx-reply\s*>", re.IGNORECASE | re.DOTALL)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"</?[a-zA-Z][^<>]*>")

# First line of a quote fallback: "> <@user:server> text"
_QUOTE_HEAD_RE = re.compile(r"^> <@[^>\s]+> ")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def strip_reply(formatted_body: str) -> str:
    """
    Remove the <mx-reply> element and everything inside it.
    The rest of the markup is returned untouched.
    """
    return _MX_REPLY_RE.sub("", formatted_body)


def strip_reply_from_body(body: str, formatted_body: str | None = None) -> str:
    """
    Plain-text view of a message with any reply fallback removed.

    With a rich body: drop <mx-reply>, then flatten the remaining markup.
    Otherwise: drop a leading "> <@user> ..." quote block, which must be
    followed by an empty line. A body that doesn't follow that shape is
    returned unchanged.
    """
    if formatted_body:
        text = html_to_text(strip_reply(formatted_body))
        if text:
            return text
    return _strip_quote_fallback(body)


def html_to_text(html: str) -> str:
    """Flatten rich text: <br> becomes a newline, other tags are dropped."""
    text = _BR_RE.sub("\n", html)
    text = _TAG_RE.sub("", text)
    return unescape(text).strip()


def reply_event_id(item: Any) -> str | None:
    """Event id this message replies to, from m.relates_to only."""
    relates_to = _relates_to(item)
    if not isinstance(relates_to, dict):
        return None
    in_reply_to = relates_to.get("m.in_reply_to")
    if not isinstance(in_reply_to, dict):
        return None
    event_id = in_reply_to.get("event_id")
    if isinstance(event_id, str) and event_id:
        return event_id
    return None


def is_reply(item: Any) -> bool:
    return reply_event_id(item) is not None


def reply_fallback_body(sender_id: str, original_body: str, reply_body: str) -> str:
    """
    Plain-text body for an outgoing reply:

        > <@alice:example.com> original line 1
        > original line 2

        reply
    """
    lines = original_body.split("\n") or [""]
    quoted = [f"> <{sender_id}> {lines[0]}"] + [f"> {line}" for line in lines[1:]]
    return "\n".join(quoted) + "\n\n" + reply_body


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _strip_quote_fallback(body: str) -> str:
    lines = body.split("\n")
    if not lines or not _QUOTE_HEAD_RE.match(lines[0]):
        return body

    i = 0
    while i < len(lines) and lines[i].startswith(">"):
        i += 1

    # The quote block must be separated from the reply by an empty line
    if i >= len(lines) or lines[i].strip():
        return body
    return "\n".join(lines[i + 1 :])


def _relates_to(item: Any) -> Any:
    if isinstance(item, dict):
        return item.get("m.relates_to")
    content = content_of(item)
    if content is None:
        return None
    return getattr(content, "relates_to", None)
