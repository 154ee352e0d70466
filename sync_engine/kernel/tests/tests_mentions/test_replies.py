"""
Sync Kernel -- Reply Tests

Covers:
  - strip_reply removes <mx-reply> and keeps the remaining markup
  - strip_reply_from_body: rich body flattened, quote fallback removed
  - Quote fallback without a separating empty line is left alone
  - is_reply / reply_event_id use m.relates_to only
  - reply_content builds the relation and quoted fallback
"""

import pytest

from sync_engine.kernel.content import validate_content
from sync_engine.kernel.events import make_event, reply_content
from sync_engine.kernel.replies import (
    is_reply,
    reply_event_id,
    strip_reply,
    strip_reply_from_body,
)


MX_REPLY = (
    '<mx-reply><blockquote><a href="https://matrix.to/#/$event:matrix.org">In reply to</a> '
    '<a href="https://matrix.to/#/@user:matrix.org">User</a><br>Original message</blockquote></mx-reply>'
)


class TestStripReply:
    def test_keeps_remaining_markup(self):
        body = MX_REPLY + "<p>Reply with <strong>bold text</strong></p>"
        assert strip_reply(body) == "<p>Reply with <strong>bold text</strong></p>"

    def test_no_reply_markup_unchanged(self):
        assert strip_reply("<b>hi</b>") == "<b>hi</b>"

    def test_case_insensitive_and_multiline(self):
        assert strip_reply("<MX-REPLY>\nquoted\n</MX-REPLY>after") == "after"

    def test_unterminated_marker_left_alone(self):
        assert strip_reply("<mx-reply>quoted") == "<mx-reply>quoted"


class TestStripReplyFromBody:
    def test_rich_body(self):
        assert strip_reply_from_body("fallback text", MX_REPLY + "This is the actual reply content") == (
            "This is the actual reply content"
        )

    def test_rich_body_markup_flattened(self):
        formatted = MX_REPLY + "<p>Reply with <strong>bold text</strong> and <em>italics</em></p>"
        assert strip_reply_from_body("fallback", formatted) == "Reply with bold text and italics"

    def test_rich_body_entities_decoded(self):
        assert strip_reply_from_body("x", MX_REPLY + "a &amp; b") == "a & b"

    def test_plain_quote_fallback(self):
        body = "> <@alice:example.com> Hello there\n\nThis is my actual reply"
        assert strip_reply_from_body(body) == "This is my actual reply"

    def test_plain_multi_line_quote(self):
        body = "> <@alice:example.com> First line\n> Second line\n\nReply\nsecond reply line"
        assert strip_reply_from_body(body) == "Reply\nsecond reply line"

    @pytest.mark.parametrize(
        "body",
        [
            "Just a regular message",
            "> <@user1:example.com> First quote\n> <@user2:example.com> Second quote\nActual reply here",
            "> incomplete quote without user\n\nreply content",
            "> <@alice:example.com> only a quote",
        ],
    )
    def test_left_alone(self, body):
        assert strip_reply_from_body(body) == body

    def test_empty_rich_body_falls_back_to_plain(self):
        body = "> <@alice:example.com> hi\n\nyo"
        assert strip_reply_from_body(body, MX_REPLY) == "yo"


class TestReplyRelation:
    def test_relates_to_reply(self):
        content = {
            "msgtype": "m.text",
            "body": "> <@alice:matrix.org> Original\n\nReply",
            "m.relates_to": {"m.in_reply_to": {"event_id": "$orig:matrix.org"}},
        }
        assert is_reply(content)
        assert reply_event_id(content) == "$orig:matrix.org"
        assert reply_event_id(validate_content(content)) == "$orig:matrix.org"
        assert reply_event_id(make_event(1, content)) == "$orig:matrix.org"

    def test_mx_reply_markup_alone_is_not_a_reply(self):
        content = {
            "msgtype": "m.text",
            "body": "Fallback text",
            "format": "org.matrix.custom.html",
            "formatted_body": MX_REPLY + "Actual message content",
        }
        assert not is_reply(content)
        assert reply_event_id(make_event(1, content)) is None

    @pytest.mark.parametrize(
        "relates_to",
        [None, {}, {"m.in_reply_to": None}, {"m.in_reply_to": {}}, {"m.in_reply_to": {"event_id": ""}}],
    )
    def test_incomplete_relation(self, relates_to):
        assert not is_reply({"msgtype": "m.text", "body": "x", "m.relates_to": relates_to})

    def test_non_text_event(self):
        assert not is_reply(make_event(1, {"msgtype": "xyz.fedi.deleted", "body": "", "redacts": "$x"}))


class TestReplyContent:
    def test_builds_relation_and_fallback(self):
        content = reply_content(
            "$original-msg:matrix.org",
            "@alice:matrix.org",
            "What time is the meeting?",
            "The meeting is at 3 PM",
        )
        assert content["msgtype"] == "m.text"
        assert reply_event_id(content) == "$original-msg:matrix.org"
        assert content["body"] == "> <@alice:matrix.org> What time is the meeting?\n\nThe meeting is at 3 PM"
        assert "formatted_body" not in content
        assert strip_reply_from_body(content["body"]) == "The meeting is at 3 PM"
