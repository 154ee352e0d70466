"""
Sync Kernel — Mentions

Forward: plain text + room members → rich text with mention links, plus the
structured mentions record sent alongside the message.

    "hi @alice" → 'hi <a href="https://matrix.to/#/@alice:example.com">@Alice</a>'
                  mentions = {"user_ids": ["@alice:example.com"]}

Reverse: a received message's rich body → the user ids it links to, and
whether it mentions the whole room.

Token rules (forward):
- "@" must start the text or follow whitespace or one of ( [ { < " '
- the name after "@" must end the text or be followed by whitespace or one
  of . , ! ? ; : ) ] } > " ' @
- a member matches by trimmed display name or by user id localpart,
  case-insensitively, at most 64 characters
- when several names match at the same "@", the longest one wins
- @room / @everyone set the room flag and stay plain text

"test@host.com" never matches: its "@" follows a letter.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from html import escape as _html_escape
from html import unescape
from typing import Any
from urllib.parse import unquote

from sync_engine.kernel.content import content_of
from sync_engine.kernel.replies import strip_reply
from sync_engine.kernel.types import Member, user_localpart

MATRIX_TO_BASE = "https://matrix.to/#/"
RICH_TEXT_FORMAT = "org.matrix.custom.html"

MAX_MENTION_LENGTH = 64

ROOM_MENTION_TOKENS: tuple[str, ...] = ("room", "everyone")

LEADING_DELIMITERS = frozenset("([{<\"'")
TRAILING_DELIMITERS = frozenset(".,!?;:)]}>\"'@")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ParsedMentions:
    """
    `mentions` omits "user_ids" when no user was mentioned and omits "room"
    when the room wasn't, so an empty dict means "nothing mentioned".
    """

    mentions: dict[str, Any]
    formatted_body: str


@dataclass(frozen=True)
class FormattedMention:
    user_id: str
    text: str


@dataclass
class ExtractedMentions:
    mentioned_user_ids: list[str] = field(default_factory=list)
    has_room_mention: bool = False
    formatted_mentions: list[FormattedMention] = field(default_factory=list)


@dataclass(frozen=True)
class HtmlRun:
    """One run of flattened rich text. Links keep their target in `href`."""

    type: str  # "text" | "link"
    text: str
    href: str | None = None


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------


def escape_html(text: str) -> str:
    """Escape & < > " and ' (as &#39;)."""
    return _html_escape(text, quote=True).replace("&#x27;", "&#39;")


def unescape_html(text: str) -> str:
    return unescape(text)


# ---------------------------------------------------------------------------
# Forward transform
# ---------------------------------------------------------------------------


def parse_mentions(
    text: str,
    members: Iterable[Member],
    exclude_user_id: str | None = None,
    link_base: str = MATRIX_TO_BASE,
) -> ParsedMentions:
    """
    Turn plain text into rich text with mention links.

    Members matching exclude_user_id (normally the sender) are recognised,
    so their name is consumed as one token, but are rendered as plain text
    and never listed.
    """
    candidates = _candidate_names(members)
    out: list[str] = []
    user_ids: list[str] = []
    room = False

    plain_start = 0
    i = 0
    n = len(text)
    while i < n:
        if text[i] != "@" or not _leading_ok(text, i):
            i += 1
            continue

        token_end = _match_room_token(text, i + 1)
        if token_end is not None:
            room = True
            i = token_end
            continue

        match = _match_member(text, i + 1, candidates)
        if match is None:
            i += 1
            continue

        member, end = match
        out.append(escape_html(text[plain_start:i]))
        visible = "@" + ((member.display_name or "").strip() or member.id)
        if member.id == exclude_user_id:
            out.append(escape_html(visible))
        else:
            out.append(
                f'<a href="{escape_html(link_base + member.id)}">{escape_html(visible)}</a>'
            )
            if member.id not in user_ids:
                user_ids.append(member.id)
        plain_start = i = end

    out.append(escape_html(text[plain_start:]))

    mentions: dict[str, Any] = {}
    if user_ids:
        mentions["user_ids"] = user_ids
    if room:
        mentions["room"] = True
    return ParsedMentions(mentions=mentions, formatted_body="".join(out))


def has_mentions(mentions: dict[str, Any] | None) -> bool:
    if not mentions:
        return False
    return bool(mentions.get("user_ids")) or bool(mentions.get("room"))


def prepare_mentions_payload(
    text: str,
    members: Iterable[Member],
    exclude_user_id: str | None = None,
    link_base: str = MATRIX_TO_BASE,
) -> tuple[dict[str, Any] | None, dict[str, str]]:
    """
    Mention fields for an outgoing message: (mentions, extra).

    Nothing mentioned → (None, {}) and the message carries no mention fields
    at all. Otherwise extra holds the rich body:
        {"format": RICH_TEXT_FORMAT, "formatted_body": ...}
    """
    if "@" not in text:
        return None, {}

    parsed = parse_mentions(text, members, exclude_user_id=exclude_user_id, link_base=link_base)
    if not has_mentions(parsed.mentions):
        return None, {}
    return parsed.mentions, {"format": RICH_TEXT_FORMAT, "formatted_body": parsed.formatted_body}


# ---------------------------------------------------------------------------
# Reverse transform
# ---------------------------------------------------------------------------


def extract_mentions(item: Any, link_base: str = MATRIX_TO_BASE) -> ExtractedMentions:
    """
    Mentions carried by a received message (an Event, a content model or a
    raw content dict).

    User mentions come from the links in the rich body (quoted reply markup
    excluded) and from the structured mentions record. The room flag comes
    from a plain "@room"/"@everyone" token or from the record.
    """
    body, formatted_body, record = _message_parts(item)
    result = ExtractedMentions()

    if formatted_body:
        runs = split_html_runs(strip_reply(formatted_body))
        for run in runs:
            if run.type == "link":
                user_id = _user_id_from_href(run.href, link_base)
                if user_id:
                    result.formatted_mentions.append(FormattedMention(user_id=user_id, text=run.text))
                    _add_unique(result.mentioned_user_ids, user_id)
            elif _contains_room_token(run.text):
                result.has_room_mention = True
    elif body and _contains_room_token(body):
        result.has_room_mention = True

    if isinstance(record, dict):
        for user_id in record.get("user_ids") or ():
            if isinstance(user_id, str):
                _add_unique(result.mentioned_user_ids, user_id)
        if record.get("room") is True:
            result.has_room_mention = True

    return result


def split_html_runs(html: str) -> list[HtmlRun]:
    """
    Flatten a small rich-text subset into text and link runs.

    - <br> becomes its own "\\n" text run
    - <a href=...>...</a> becomes a link run holding only the plain text
      inside it (nested markup dropped)
    - other tags are dropped, their text kept
    - an <a> that is never closed degrades to text
    Entities are decoded in every run.
    """
    runs: list[HtmlRun] = []
    text_buf: list[str] = []
    link_buf: list[str] | None = None
    link_href: str | None = None

    def flush_text() -> None:
        if text_buf:
            runs.append(HtmlRun(type="text", text=unescape("".join(text_buf))))
            text_buf.clear()

    pos = 0
    for m in _TAG_RE.finditer(html):
        chunk = html[pos : m.start()]
        pos = m.end()
        (link_buf if link_buf is not None else text_buf).append(chunk)

        closing, name, attrs = m.group(1) == "/", m.group(2).lower(), m.group(3)
        if name == "br":
            if link_buf is not None:
                link_buf.append("\n")
            else:
                flush_text()
                runs.append(HtmlRun(type="text", text="\n"))
        elif name == "a" and not closing and link_buf is None:
            flush_text()
            link_buf = []
            link_href = _href(attrs)
        elif name == "a" and closing and link_buf is not None:
            runs.append(HtmlRun(type="link", text=unescape("".join(link_buf)), href=link_href))
            link_buf = None
            link_href = None

    tail = html[pos:]
    if link_buf is not None:
        # Unterminated link: keep what it held as plain text
        text_buf.extend(link_buf)
    text_buf.append(tail)
    flush_text()
    return [r for r in runs if r.text or r.type == "link"]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9-]*)([^<>]*)>")
_HREF_RE = re.compile(r"""href\s*=\s*(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)
_ROOM_TOKEN_RE = re.compile(
    r"""(?:^|(?<=[\s(\[{<"']))@(?:room|everyone)(?=$|[\s.,!?;:)\]}>"'@])""",
    re.IGNORECASE,
)


def _candidate_names(members: Iterable[Member]) -> list[tuple[str, Member]]:
    """
    (lowercased name, member) pairs. All display names come before all
    localparts, so on an equal-length tie the display name wins.
    """
    members = list(members)
    display = [((m.display_name or "").strip(), m) for m in members]
    handles = [(user_localpart(m.id) if m.id else "", m) for m in members]
    return [
        (name.lower(), member)
        for name, member in display + handles
        if name and len(name) <= MAX_MENTION_LENGTH
    ]


def _leading_ok(text: str, at: int) -> bool:
    if at == 0:
        return True
    prev = text[at - 1]
    return prev.isspace() or prev in LEADING_DELIMITERS


def _trailing_ok(text: str, at: int) -> bool:
    if at >= len(text):
        return True
    nxt = text[at]
    return nxt.isspace() or nxt in TRAILING_DELIMITERS


def _match_room_token(text: str, start: int) -> int | None:
    for token in ROOM_MENTION_TOKENS:
        end = start + len(token)
        if text[start:end].lower() == token and _trailing_ok(text, end):
            return end
    return None


def _match_member(
    text: str, start: int, candidates: Sequence[tuple[str, Member]]
) -> tuple[Member, int] | None:
    # Scans every candidate at every "@"; fine for chat-sized member lists.
    window = text[start : start + MAX_MENTION_LENGTH].lower()
    best: tuple[Member, int] | None = None
    best_len = 0
    for name, member in candidates:
        if len(name) > best_len and window.startswith(name) and _trailing_ok(text, start + len(name)):
            best = (member, start + len(name))
            best_len = len(name)
    return best


def _href(attrs: str) -> str | None:
    m = _HREF_RE.search(attrs)
    if m is None:
        return None
    return unescape(m.group(1) if m.group(1) is not None else m.group(2))


def _user_id_from_href(href: str | None, link_base: str) -> str | None:
    if not href or not href.startswith(link_base):
        return None
    target = unquote(href[len(link_base) :].split("?", 1)[0])
    if target.startswith("@") and ":" in target:
        return target
    return None


def _contains_room_token(text: str) -> bool:
    return _ROOM_TOKEN_RE.search(text) is not None


def _add_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def _message_parts(item: Any) -> tuple[str | None, str | None, Any]:
    """(body, formatted_body, mentions record) from a dict, content model or Event."""
    if isinstance(item, dict):
        formatted = item.get("formatted_body")
        if formatted is None and isinstance(item.get("formatted"), dict):
            formatted = item["formatted"].get("formatted_body") or item["formatted"].get("formattedBody")
        record = item.get("mentions", item.get("m.mentions"))
        return item.get("body"), formatted, record

    content = content_of(item)
    if content is None:
        return None, None, None
    return (
        getattr(content, "body", None),
        getattr(content, "formatted_body", None),
        getattr(content, "mentions", None),
    )
