"""
Sync Kernel -- Content Validation Tests

validate_content() maps a raw payload to its msgtype's model.

Covers:
  - Each known msgtype validates to its model
  - Rich text nested under "formatted" is lifted to format/formatted_body
  - Multispend sub-kinds dispatch on "kind"
  - Payment accepts the legacy "ecash" name for the bearer token
  - Custom kinds keep unknown fields; standard kinds drop them
  - content_to_wire emits camelCase for custom kinds and omits None
  - Wire output validates back to an equal model
  - Kind predicates
"""

import pytest

from sync_engine.kernel.content import (
    AudioContent,
    DeletedContent,
    EncryptedContent,
    FileContent,
    FormContent,
    GroupInvitationContent,
    GroupInvitationVoteContent,
    ImageContent,
    PaymentContent,
    PollContent,
    TextContent,
    UnknownContent,
    WithdrawalRequestContent,
    content_to_wire,
    is_deleted_event,
    is_media_event,
    is_multispend_event,
    is_payment_event,
    is_poll_event,
    is_text_event,
    validate_content,
)
from sync_engine.kernel.events import make_event


ENCRYPTED_FILE = {
    "hashes": {"sha256": "abc123"},
    "url": "mxc://example.com/file",
    "v": "v2",
    "key": {"k": "secret", "alg": "A256CTR"},
    "iv": "iv==",
}

PAYMENT = {
    "msgtype": "xyz.fedi.payment",
    "body": "Sent 1000 sats",
    "status": "pushed",
    "paymentId": "P1",
    "amount": 1000,
    "senderId": "@alice:example.com",
    "recipientId": "@bob:example.com",
    "federationId": "fed1",
    "bearerToken": "token",
}

GROUP_INVITATION = {
    "msgtype": "xyz.fedi.multispend",
    "body": "Multispend group invitation",
    "kind": "groupInvitation",
    "invitation": {
        "signers": ["@alice:example.com", "@bob:example.com"],
        "threshold": 2,
        "federationInviteCode": "fed11abc",
        "federationName": "Test Fed",
    },
    "proposerPubkey": "02abcdef",
}


# ============================================================================
# Standard kinds
# ============================================================================


class TestStandardKinds:
    def test_text(self):
        content = validate_content({"msgtype": "m.text", "body": "hello"})
        assert isinstance(content, TextContent)
        assert content.body == "hello"

    def test_text_with_rich_body_and_mentions(self):
        content = validate_content(
            {
                "msgtype": "m.text",
                "body": "hi @Alice",
                "format": "org.matrix.custom.html",
                "formatted_body": "hi <a>@Alice</a>",
                "m.mentions": {"user_ids": ["@alice:example.com"]},
            }
        )
        assert content.formatted_body == "hi <a>@Alice</a>"
        assert content.mentions == {"user_ids": ["@alice:example.com"]}

    def test_text_with_nested_formatted_body(self):
        content = validate_content(
            {
                "msgtype": "m.text",
                "body": "hi Alice",
                "formatted": {"format": "org.matrix.custom.html", "formattedBody": "hi <b>Alice</b>"},
            }
        )
        assert content.format == "org.matrix.custom.html"
        assert content.formatted_body == "hi <b>Alice</b>"

    def test_text_keeps_reply_relation(self):
        relation = {"m.in_reply_to": {"event_id": "$orig"}}
        content = validate_content({"msgtype": "m.text", "body": "yes", "m.relates_to": relation})
        assert content.relates_to == relation

    def test_image(self):
        content = validate_content(
            {
                "msgtype": "m.image",
                "body": "cat.png",
                "info": {"mimetype": "image/png", "size": 10, "w": 4, "h": 3},
                "file": ENCRYPTED_FILE,
            }
        )
        assert isinstance(content, ImageContent)
        assert content.info.w == 4

    def test_file_keeps_decryption_parameters(self):
        content = validate_content(
            {
                "msgtype": "m.file",
                "body": "doc.pdf",
                "info": {"mimetype": "application/pdf", "size": 10},
                "file": ENCRYPTED_FILE,
            }
        )
        assert isinstance(content, FileContent)
        assert content_to_wire(content)["file"]["key"] == {"k": "secret", "alg": "A256CTR"}

    def test_audio(self):
        content = validate_content(
            {
                "msgtype": "m.audio",
                "body": "voice.ogg",
                "info": {"mimetype": "audio/ogg", "size": 10},
                "file": ENCRYPTED_FILE,
            }
        )
        assert isinstance(content, AudioContent)

    def test_encrypted(self):
        content = validate_content(
            {
                "msgtype": "m.room.encrypted",
                "body": "Encrypted message",
                "algorithm": "m.megolm.v1.aes-sha2",
                "ciphertext": "...",
                "device_id": "DEV",
                "sender_key": "key",
                "session_id": "sess",
            }
        )
        assert isinstance(content, EncryptedContent)

    def test_poll(self):
        content = validate_content(
            {
                "msgtype": "m.poll",
                "body": "Lunch?",
                "answers": [{"id": "a1", "text": "Pizza"}, {"id": "a2", "text": "Sushi"}],
                "endTime": None,
                "hasBeenEdited": False,
                "kind": "disclosed",
                "maxSelections": 1,
                "votes": {"a1": ["@alice:example.com"]},
            }
        )
        assert isinstance(content, PollContent)
        assert content.max_selections == 1
        assert content.votes == {"a1": ["@alice:example.com"]}

    def test_standard_kind_drops_unknown_fields(self):
        content = validate_content({"msgtype": "m.text", "body": "x", "futureField": 1})
        assert "futureField" not in content_to_wire(content)


# ============================================================================
# Custom kinds
# ============================================================================


class TestCustomKinds:
    def test_payment(self):
        content = validate_content(PAYMENT)
        assert isinstance(content, PaymentContent)
        assert content.payment_id == "P1"
        assert content.bearer_token == "token"

    def test_payment_legacy_ecash_alias(self):
        raw = {k: v for k, v in PAYMENT.items() if k != "bearerToken"}
        raw["ecash"] = "legacy-token"
        content = validate_content(raw)
        assert content.bearer_token == "legacy-token"
        assert content_to_wire(content)["bearerToken"] == "legacy-token"

    def test_payment_older_sender_without_optional_ids(self):
        content = validate_content(
            {
                "msgtype": "xyz.fedi.payment",
                "body": "Requested",
                "status": "requested",
                "paymentId": "P9",
                "amount": 5,
            }
        )
        assert content.recipient_id is None
        assert content_to_wire(content) == {
            "msgtype": "xyz.fedi.payment",
            "body": "Requested",
            "status": "requested",
            "paymentId": "P9",
            "amount": 5,
        }

    def test_payment_keeps_unknown_fields(self):
        content = validate_content({**PAYMENT, "memo": "for lunch"})
        assert content_to_wire(content)["memo"] == "for lunch"

    def test_deleted(self):
        content = validate_content({"msgtype": "xyz.fedi.deleted", "body": "", "redacts": "$e1"})
        assert isinstance(content, DeletedContent)

    def test_form_type_alias(self):
        content = validate_content(
            {
                "msgtype": "xyz.fedi.form",
                "body": "Accept Terms",
                "i18nKeyLabel": "phrases.accept-terms",
                "type": "button",
                "value": "yes",
                "options": None,
                "formResponse": None,
            }
        )
        assert isinstance(content, FormContent)
        assert content.form_type == "button"
        assert content_to_wire(content)["type"] == "button"

    def test_multispend_dispatches_on_kind(self):
        content = validate_content(GROUP_INVITATION)
        assert isinstance(content, GroupInvitationContent)
        assert content.invitation.threshold == 2
        assert content.invitation.federation_name == "Test Fed"

    def test_multispend_vote(self):
        content = validate_content(
            {
                "msgtype": "xyz.fedi.multispend",
                "body": "vote",
                "kind": "groupInvitationVote",
                "invitation": "$inv",
                "vote": {"kind": "accept", "memberPubkey": "03ff"},
            }
        )
        assert isinstance(content, GroupInvitationVoteContent)
        assert content.vote.member_pubkey == "03ff"

    def test_withdrawal_request_keeps_snake_case_amount(self):
        content = validate_content(
            {
                "msgtype": "xyz.fedi.multispend",
                "body": "withdraw",
                "kind": "withdrawalRequest",
                "request": {"transfer_amount": 500},
                "description": "rent",
            }
        )
        assert isinstance(content, WithdrawalRequestContent)
        assert content_to_wire(content)["request"] == {"transfer_amount": 500}

    def test_multispend_wire_is_camel_case(self):
        wire = content_to_wire(validate_content(GROUP_INVITATION))
        assert wire == GROUP_INVITATION


# ============================================================================
# Round trip
# ============================================================================


class TestRoundTrip:
    @pytest.mark.parametrize(
        "raw",
        [
            {"msgtype": "m.notice", "body": "server notice"},
            {"msgtype": "m.emote", "body": "waves"},
            PAYMENT,
            GROUP_INVITATION,
            {"msgtype": "xyz.fedi.federationInvite", "body": "fed11xyz"},
            {"msgtype": "xyz.fedi.communityInvite", "body": "community"},
            {
                "msgtype": "xyz.fedi.preview-media",
                "body": "photo",
                "info": {"mimetype": "image/png", "w": 1, "h": 1, "uri": "file:///tmp/a.png"},
            },
            {"msgtype": "m.unknown", "body": "?", "originalContent": {"msgtype": "x"}},
        ],
        ids=lambda raw: raw["msgtype"],
    )
    def test_wire_validates_back_to_equal_model(self, raw):
        content = validate_content(raw)
        assert not isinstance(content, UnknownContent) or raw["msgtype"] == "m.unknown"
        assert validate_content(content_to_wire(content)) == content


# ============================================================================
# Predicates
# ============================================================================


class TestPredicates:
    def test_on_events_and_contents(self):
        payment = make_event(1, PAYMENT)
        text = make_event(2, {"msgtype": "m.text", "body": "hi"})

        assert is_payment_event(payment)
        assert is_payment_event(payment.content)
        assert not is_payment_event(text)
        assert is_text_event(text)
        assert not is_text_event(payment)

    def test_multispend_and_poll(self):
        assert is_multispend_event(validate_content(GROUP_INVITATION))
        assert not is_poll_event(validate_content(GROUP_INVITATION))

    def test_deleted(self):
        assert is_deleted_event(validate_content({"msgtype": "xyz.fedi.deleted", "body": "", "redacts": "$x"}))

    def test_media(self):
        image = {
            "msgtype": "m.video",
            "body": "clip",
            "info": {"mimetype": "video/mp4", "size": 1, "w": 1, "h": 1},
            "file": ENCRYPTED_FILE,
        }
        assert is_media_event(validate_content(image))
        assert not is_media_event(validate_content({"msgtype": "m.text", "body": "x"}))

    def test_none_is_nothing(self):
        assert not is_payment_event(None)
        assert not is_media_event(None)
