"""
Sync Kernel — Event Content Schema & Validator

Every timeline event carries a content payload discriminated by `msgtype`.
validate_content() turns an arbitrary raw payload into one of the closed
content models below. It never raises: a payload that does not match its
kind's shape (wrong discriminant, missing required field, wrong type) is
coerced to UnknownContent, which keeps the raw payload for debugging.

Standard kinds (m.*) ignore fields they don't know about.
Custom kinds (xyz.fedi.*) keep them, so payloads from newer clients survive
a validate → content_to_wire round trip untouched.

Custom kinds use camelCase on the wire; the models use snake_case
attributes with camelCase aliases.
"""

from __future__ import annotations

import logging
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

UNKNOWN_BODY = "Unknown message type"

PAYMENT_STATUSES: set[str] = {"pushed", "requested", "accepted", "rejected", "canceled", "received"}

# Statuses that start a payment's causal chain
INITIATING_PAYMENT_STATUSES: set[str] = {"pushed", "requested"}

MULTISPEND_KINDS: set[str] = {
    "groupInvitation",
    "groupInvitationVote",
    "groupInvitationCancel",
    "groupReannounce",
    "depositNotification",
    "withdrawalRequest",
    "withdrawalResponse",
}

MEDIA_MSGTYPES: set[str] = {"m.image", "m.video", "m.file", "m.audio"}


# ---------------------------------------------------------------------------
# Base models
# ---------------------------------------------------------------------------


class StandardModel(BaseModel):
    """Standard m.* shapes. Unknown fields are dropped."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}


class CustomModel(BaseModel):
    """Custom xyz.fedi.* shapes. camelCase on the wire, unknown fields kept."""

    model_config = {
        "extra": "allow",
        "populate_by_name": True,
        "alias_generator": to_camel,
        "frozen": True,
    }


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------


class FileHashes(BaseModel):
    model_config = {"extra": "allow", "frozen": True}

    sha256: str


class EncryptedFile(BaseModel):
    """
    Encrypted attachment descriptor. Decryption parameters beyond the
    required ones (key, iv, ...) are carried through unchanged.
    """

    model_config = {"extra": "allow", "frozen": True}

    hashes: FileHashes
    url: str
    v: Literal["v2"]

    @field_validator("url")
    @classmethod
    def _url_must_have_scheme(cls, value: str) -> str:
        parsed = urlparse(value)
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ValueError(f"not a URL: {value!r}")
        return value


class MediaInfo(StandardModel):
    mimetype: str
    size: int
    w: int
    h: int


class FileInfo(StandardModel):
    mimetype: str
    size: int


class PreviewMediaInfo(StandardModel):
    mimetype: str
    w: int
    h: int
    uri: str


# ---------------------------------------------------------------------------
# Standard kinds
# ---------------------------------------------------------------------------


class _TextLike(StandardModel):
    body: str
    format: str | None = None
    formatted_body: str | None = None
    mentions: dict[str, Any] | None = Field(
        default=None,
        alias="mentions",
        validation_alias=AliasChoices("mentions", "m.mentions"),
    )
    relates_to: dict[str, Any] | None = Field(default=None, alias="m.relates_to")

    @model_validator(mode="before")
    @classmethod
    def _lift_formatted(cls, data: Any) -> Any:
        """The bridge nests rich text as formatted: {format, formattedBody}."""
        if not isinstance(data, dict) or data.get("formatted_body") is not None:
            return data
        formatted = data.get("formatted")
        if not isinstance(formatted, dict):
            return data
        return {
            **data,
            "format": data.get("format") or formatted.get("format"),
            "formatted_body": formatted.get("formattedBody", formatted.get("formatted_body")),
        }


class TextContent(_TextLike):
    msgtype: Literal["m.text"] = "m.text"


class NoticeContent(_TextLike):
    msgtype: Literal["m.notice"] = "m.notice"


class EmoteContent(_TextLike):
    msgtype: Literal["m.emote"] = "m.emote"


class ImageContent(StandardModel):
    msgtype: Literal["m.image"] = "m.image"
    body: str
    info: MediaInfo
    file: EncryptedFile


class VideoContent(StandardModel):
    msgtype: Literal["m.video"] = "m.video"
    body: str
    info: MediaInfo
    file: EncryptedFile


class FileContent(StandardModel):
    msgtype: Literal["m.file"] = "m.file"
    body: str
    info: FileInfo
    file: EncryptedFile


class AudioContent(StandardModel):
    msgtype: Literal["m.audio"] = "m.audio"
    body: str
    info: FileInfo
    file: EncryptedFile


class EncryptedContent(StandardModel):
    """An event the local device could not decrypt (yet)."""

    msgtype: Literal["m.room.encrypted"] = "m.room.encrypted"
    body: str
    algorithm: str
    ciphertext: str
    device_id: str
    sender_key: str
    session_id: str


class PollAnswer(StandardModel):
    id: str
    text: str


class PollContent(StandardModel):
    model_config = {"extra": "ignore", "populate_by_name": True, "alias_generator": to_camel, "frozen": True}

    msgtype: Literal["m.poll"] = "m.poll"
    body: str
    answers: list[PollAnswer]
    end_time: int | None = None
    has_been_edited: bool = False
    kind: Literal["disclosed", "undisclosed"]
    max_selections: int
    votes: dict[str, list[str]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Custom kinds
# ---------------------------------------------------------------------------


class PaymentContent(CustomModel):
    """
    One event in a payment's causal chain. All events of one payment share
    `payment_id`; only the initiating one (pushed/requested) is rendered.
    """

    msgtype: Literal["xyz.fedi.payment"] = "xyz.fedi.payment"
    body: str
    status: Literal["pushed", "requested", "accepted", "rejected", "canceled", "received"]
    payment_id: str
    amount: int  # msats
    sender_id: str | None = None
    recipient_id: str | None = None
    federation_id: str | None = None
    bearer_token: str | None = Field(
        default=None,
        alias="bearerToken",
        validation_alias=AliasChoices("bearerToken", "ecash", "bearer_token"),
    )
    sender_operation_id: str | None = None
    receiver_operation_id: str | None = None
    bolt11: str | None = None
    invite_code: str | None = None


class DeletedContent(CustomModel):
    msgtype: Literal["xyz.fedi.deleted"] = "xyz.fedi.deleted"
    body: str
    redacts: str
    reason: str | None = None


class FederationInviteContent(CustomModel):
    msgtype: Literal["xyz.fedi.federationInvite"] = "xyz.fedi.federationInvite"
    body: str


class CommunityInviteContent(CustomModel):
    msgtype: Literal["xyz.fedi.communityInvite"] = "xyz.fedi.communityInvite"
    body: str


class PreviewMediaContent(CustomModel):
    msgtype: Literal["xyz.fedi.preview-media"] = "xyz.fedi.preview-media"
    body: str
    info: PreviewMediaInfo


class FormOption(CustomModel):
    value: str
    label: str | None = None
    i18n_key_label: str | None = Field(default=None, alias="i18nKeyLabel")


class FormContent(CustomModel):
    """Structured form used by scripted (bot) interactions."""

    msgtype: Literal["xyz.fedi.form"] = "xyz.fedi.form"
    body: str
    form_type: Literal["button", "radio", "text"] = Field(alias="type")
    i18n_key_label: str | None = Field(default=None, alias="i18nKeyLabel")
    value: str | None = None
    options: list[FormOption] | None = None
    form_response: dict[str, Any] | None = None


# Multi-party spend ----------------------------------------------------------


class GroupInvitation(CustomModel):
    signers: list[str]
    threshold: int
    federation_invite_code: str
    federation_name: str


class GroupVote(CustomModel):
    kind: Literal["accept", "reject"]
    member_pubkey: str | None = None


class WithdrawalRequestBody(CustomModel):
    transfer_amount: int = Field(alias="transfer_amount")


class WithdrawalResponseBody(CustomModel):
    kind: Literal["approve", "reject", "complete", "txRejected"]


class _MultispendBase(CustomModel):
    msgtype: Literal["xyz.fedi.multispend"] = "xyz.fedi.multispend"
    body: str


class GroupInvitationContent(_MultispendBase):
    kind: Literal["groupInvitation"] = "groupInvitation"
    invitation: GroupInvitation
    proposer_pubkey: str


class GroupInvitationVoteContent(_MultispendBase):
    kind: Literal["groupInvitationVote"] = "groupInvitationVote"
    invitation: str  # invitation event id
    vote: GroupVote


class GroupInvitationCancelContent(_MultispendBase):
    kind: Literal["groupInvitationCancel"] = "groupInvitationCancel"
    invitation: str


class GroupReannounceContent(_MultispendBase):
    kind: Literal["groupReannounce"] = "groupReannounce"
    invitation_id: str
    invitation: GroupInvitation
    proposer: str
    pubkeys: dict[str, str] = Field(default_factory=dict)
    rejections: list[str] = Field(default_factory=list)


class DepositNotificationContent(_MultispendBase):
    kind: Literal["depositNotification"] = "depositNotification"
    fiat_amount: int
    txid: str
    description: str


class WithdrawalRequestContent(_MultispendBase):
    kind: Literal["withdrawalRequest"] = "withdrawalRequest"
    request: WithdrawalRequestBody
    description: str


class WithdrawalResponseContent(_MultispendBase):
    kind: Literal["withdrawalResponse"] = "withdrawalResponse"
    request: str  # withdrawal request event id
    response: WithdrawalResponseBody


# Fallback -------------------------------------------------------------------


class UnknownContent(StandardModel):
    """Anything that failed validation. Never dropped, rendered as a placeholder."""

    msgtype: Literal["m.unknown"] = "m.unknown"
    body: str = UNKNOWN_BODY
    original_content: Any = Field(default=None, alias="originalContent")


MultispendContent = (
    GroupInvitationContent
    | GroupInvitationVoteContent
    | GroupInvitationCancelContent
    | GroupReannounceContent
    | DepositNotificationContent
    | WithdrawalRequestContent
    | WithdrawalResponseContent
)

Content = (
    TextContent
    | NoticeContent
    | EmoteContent
    | ImageContent
    | VideoContent
    | FileContent
    | AudioContent
    | EncryptedContent
    | PollContent
    | PaymentContent
    | DeletedContent
    | FederationInviteContent
    | CommunityInviteContent
    | PreviewMediaContent
    | FormContent
    | MultispendContent
    | UnknownContent
)

_CONTENT_MODELS: dict[str, type[BaseModel]] = {
    "m.text": TextContent,
    "m.notice": NoticeContent,
    "m.emote": EmoteContent,
    "m.image": ImageContent,
    "m.video": VideoContent,
    "m.file": FileContent,
    "m.audio": AudioContent,
    "m.room.encrypted": EncryptedContent,
    "m.poll": PollContent,
    "xyz.fedi.payment": PaymentContent,
    "xyz.fedi.deleted": DeletedContent,
    "xyz.fedi.federationInvite": FederationInviteContent,
    "xyz.fedi.communityInvite": CommunityInviteContent,
    "xyz.fedi.preview-media": PreviewMediaContent,
    "xyz.fedi.form": FormContent,
    "m.unknown": UnknownContent,
}

_MULTISPEND_MODELS: dict[str, type[BaseModel]] = {
    "groupInvitation": GroupInvitationContent,
    "groupInvitationVote": GroupInvitationVoteContent,
    "groupInvitationCancel": GroupInvitationCancelContent,
    "groupReannounce": GroupReannounceContent,
    "depositNotification": DepositNotificationContent,
    "withdrawalRequest": WithdrawalRequestContent,
    "withdrawalResponse": WithdrawalResponseContent,
}

CONTENT_MSGTYPES: set[str] = set(_CONTENT_MODELS) | {"xyz.fedi.multispend"}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_content(raw: Any) -> Content:
    """
    Validate a raw content payload against its msgtype's shape.

    Never raises. Returns UnknownContent when:
    - raw is not an object
    - msgtype is missing or not one of the known kinds
    - the payload is missing a required field or has a wrong type
    """
    model = _model_for(raw)
    if model is None:
        logger.warning("content: unrecognised content kind, raw=%r", raw)
        return unknown_content(raw)

    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError as e:
        logger.warning(
            "content: invalid %s payload (%d errors), raw=%r",
            raw.get("msgtype"),
            e.error_count(),
            raw,
        )
        return unknown_content(raw)


def unknown_content(raw: Any) -> UnknownContent:
    """Fallback content: best-effort body plus the untouched raw payload."""
    body = raw.get("body") if isinstance(raw, dict) else None
    if not isinstance(body, str) or not body:
        body = UNKNOWN_BODY
    return UnknownContent(body=body, original_content=raw)


def content_to_wire(content: BaseModel) -> dict[str, Any]:
    """Serialise content back to its wire shape. None-valued fields are omitted."""
    return content.model_dump(mode="json", by_alias=True, exclude_none=True)


def content_body(content: Any) -> str:
    return getattr(content, "body", None) or UNKNOWN_BODY


# ---------------------------------------------------------------------------
# Kind predicates (accept an Event or a bare content model)
# ---------------------------------------------------------------------------


def is_payment_event(item: Any) -> bool:
    return isinstance(content_of(item), PaymentContent)


def is_multispend_event(item: Any) -> bool:
    return getattr(content_of(item), "msgtype", None) == "xyz.fedi.multispend"


def is_text_event(item: Any) -> bool:
    return isinstance(content_of(item), TextContent)


def is_poll_event(item: Any) -> bool:
    return isinstance(content_of(item), PollContent)


def is_deleted_event(item: Any) -> bool:
    return isinstance(content_of(item), DeletedContent)


def is_media_event(item: Any) -> bool:
    return getattr(content_of(item), "msgtype", None) in MEDIA_MSGTYPES


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _model_for(raw: Any) -> type[BaseModel] | None:
    if not isinstance(raw, dict):
        return None
    msgtype = raw.get("msgtype")
    if not isinstance(msgtype, str):
        return None
    if msgtype == "xyz.fedi.multispend":
        kind = raw.get("kind")
        return _MULTISPEND_MODELS.get(kind) if isinstance(kind, str) else None
    return _CONTENT_MODELS.get(msgtype)


def content_of(item: Any) -> Any:
    # Event dataclasses expose .content; content models are passed directly
    if isinstance(item, BaseModel):
        return item
    return getattr(item, "content", None)
