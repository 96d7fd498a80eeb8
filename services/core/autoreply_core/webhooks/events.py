"""Canonical inbound events parsed from platform webhook payloads.

Payloads are untrusted JSON. The parsers here walk them defensively and
return one of three variants:

- ``CommentEvent``: a public comment on a page post or Instagram media
- ``MessageEvent``: a direct message (Messenger, Instagram DM, WhatsApp)
- ``UnknownEvent``: anything else, including malformed shapes

No parser raises on bad input; malformed sub-payloads become
``UnknownEvent`` with a reason.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union


# =============================================================================
# EVENT TYPES
# =============================================================================


@dataclass(frozen=True)
class CommentEvent:
    """Public comment on a page post or media item."""

    platform: str
    page_id: str
    external_id: str
    author_id: str
    author_name: str
    text: str
    post_id: Optional[str] = None
    created_time: Optional[str] = None
    permalink: Optional[str] = None

    event_type = "comment"


@dataclass(frozen=True)
class MessageEvent:
    """Direct message sent to the page or business number."""

    platform: str
    page_id: str
    external_id: str
    sender_id: str
    sender_name: str
    text: str
    timestamp: Optional[str] = None

    event_type = "message"


@dataclass(frozen=True)
class UnknownEvent:
    """Delivery content that needs no reply."""

    platform: str
    page_id: Optional[str]
    reason: str

    event_type = "unknown"
    external_id = None


InboundEvent = Union[CommentEvent, MessageEvent, UnknownEvent]


@dataclass
class FormSubmission:
    """Lead captured from a website form."""

    id: str
    timestamp: str
    sender_email: str
    sender_name: str
    message: str
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CommentDetection:
    """Result of sniffing a payload for a comment."""

    is_comment: bool
    platform: Optional[str] = None
    data: Optional[dict[str, Any]] = None


# =============================================================================
# HELPERS
# =============================================================================


def _obj(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _str(value: Any, default: str = "") -> str:
    if value is None or isinstance(value, (dict, list)):
        return default
    return str(value)


def _opt_str(value: Any) -> Optional[str]:
    text = _str(value)
    return text or None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Payload "object" values accepted per platform route
ACCEPTED_OBJECTS = {
    "facebook": {"page", "instagram"},
    "instagram": {"instagram"},
    "whatsapp": {"whatsapp_business_account"},
}

# Feed change verbs that create a new comment; edits and moderation repeat an id
NEW_COMMENT_VERBS = (None, "add")


def payload_object_matches(platform: str, body: Any) -> bool:
    """Check the top-level ``object`` field against the platform route."""
    return _obj(body).get("object") in ACCEPTED_OBJECTS.get(platform, set())


# =============================================================================
# META (FACEBOOK / INSTAGRAM)
# =============================================================================


def _parse_facebook_comment(page_id: str, value: dict) -> InboundEvent:
    comment_id = _str(value.get("comment_id") or value.get("id"))
    if not comment_id:
        return UnknownEvent("facebook", page_id, "comment without id")
    verb = value.get("verb")
    if verb not in NEW_COMMENT_VERBS:
        return UnknownEvent("facebook", page_id, f"comment {verb}")

    author = _obj(value.get("from"))
    author_id = _str(author.get("id"))
    if author_id and author_id == page_id:
        return UnknownEvent("facebook", page_id, "comment by page")

    return CommentEvent(
        platform="facebook",
        page_id=page_id,
        external_id=comment_id,
        author_id=author_id,
        author_name=_str(author.get("name"), "Unknown"),
        text=_str(value.get("message")),
        post_id=_opt_str(value.get("post_id") or value.get("object_id")),
        created_time=_str(value.get("created_time")) or _now_iso(),
        permalink=_opt_str(value.get("permalink_url")),
    )


def _parse_instagram_comment(page_id: str, value: dict) -> InboundEvent:
    comment_id = _str(value.get("id") or value.get("comment_id"))
    if not comment_id:
        return UnknownEvent("instagram", page_id, "comment without id")

    author = _obj(value.get("from"))
    author_id = _str(author.get("id"))
    if author_id and author_id == page_id:
        return UnknownEvent("instagram", page_id, "comment by account")

    media = _obj(value.get("media"))
    return CommentEvent(
        platform="instagram",
        page_id=page_id,
        external_id=comment_id,
        author_id=author_id,
        author_name=_str(author.get("username") or author.get("name"), "Unknown"),
        text=_str(value.get("text") or value.get("message")),
        post_id=_opt_str(media.get("id")),
        created_time=_str(value.get("timestamp") or value.get("created_time")) or _now_iso(),
        permalink=_opt_str(value.get("permalink")),
    )


def _parse_messaging(platform: str, page_id: str, item: Any) -> InboundEvent:
    item = _obj(item)
    for ignorable in ("read", "delivery", "reaction"):
        if ignorable in item:
            return UnknownEvent(platform, page_id, ignorable)

    message = item.get("message")
    if not isinstance(message, dict):
        return UnknownEvent(platform, page_id, "messaging item without message")
    if message.get("is_echo"):
        return UnknownEvent(platform, page_id, "echo")

    sender_id = _str(_obj(item.get("sender")).get("id"))
    if not sender_id:
        return UnknownEvent(platform, page_id, "message without sender")
    if sender_id == page_id:
        return UnknownEvent(platform, page_id, "echo")

    timestamp = item.get("timestamp")
    return MessageEvent(
        platform=platform,
        page_id=page_id,
        external_id=_str(message.get("mid")),
        sender_id=sender_id,
        sender_name="User",
        text=_str(message.get("text")),
        timestamp=_opt_str(timestamp),
    )


def parse_meta_entry(platform: str, entry: Any) -> list[InboundEvent]:
    """Parse one ``entry`` item of a Facebook or Instagram delivery.

    Args:
        platform: ``facebook`` or ``instagram``.
        entry: One element of the payload's ``entry`` array.

    Returns:
        Events found in the entry's ``changes`` and ``messaging`` arrays,
        or a single UnknownEvent when the entry carries neither.
    """
    entry = _obj(entry)
    page_id = _str(entry.get("id"))
    if not page_id:
        return [UnknownEvent(platform, None, "entry without id")]

    events: list[InboundEvent] = []

    for change in _list(entry.get("changes")):
        change = _obj(change)
        field_name = change.get("field")
        value = _obj(change.get("value"))

        if platform == "instagram" and field_name == "comments":
            events.append(_parse_instagram_comment(page_id, value))
        elif field_name == "feed" and value.get("item") == "comment":
            events.append(_parse_facebook_comment(page_id, value))
        elif field_name == "comments":
            # Instagram comments delivered through a page subscription
            events.append(_parse_instagram_comment(page_id, value))
        else:
            events.append(
                UnknownEvent(platform, page_id, f"unhandled change {field_name!r}")
            )

    for item in _list(entry.get("messaging")):
        events.append(_parse_messaging(platform, page_id, item))

    if not events:
        events.append(UnknownEvent(platform, page_id, "empty entry"))
    return events


# =============================================================================
# WHATSAPP
# =============================================================================


def _whatsapp_text(message: dict) -> str:
    msg_type = _str(message.get("type"))
    if msg_type == "text":
        return _str(_obj(message.get("text")).get("body"))
    if msg_type == "audio":
        return "[Audio message]"
    if msg_type == "image":
        return "[Image message]"
    if msg_type == "video":
        return "[Video message]"
    if msg_type == "document":
        filename = _str(_obj(message.get("document")).get("filename"), "Unknown")
        return f"[Document: {filename}]"
    return f"[{msg_type or 'unknown'} message]"


def parse_whatsapp_entry(entry: Any) -> list[InboundEvent]:
    """Parse one ``entry`` item of a WhatsApp Business delivery.

    The page id of every event is the receiving ``phone_number_id``.
    Status updates (sent/delivered/read) and outbound messages yield
    UnknownEvent.
    """
    entry = _obj(entry)
    events: list[InboundEvent] = []

    for change in _list(entry.get("changes")):
        change = _obj(change)
        value = _obj(change.get("value"))
        metadata = _obj(value.get("metadata"))
        phone_number_id = _opt_str(metadata.get("phone_number_id"))
        business_number = _str(metadata.get("display_phone_number"))

        if change.get("field") != "messages":
            events.append(
                UnknownEvent("whatsapp", phone_number_id, f"unhandled change {change.get('field')!r}")
            )
            continue

        if not phone_number_id:
            events.append(UnknownEvent("whatsapp", None, "change without phone_number_id"))
            continue

        if value.get("statuses") and not value.get("messages"):
            events.append(UnknownEvent("whatsapp", phone_number_id, "status update"))
            continue

        names = {}
        for contact in _list(value.get("contacts")):
            contact = _obj(contact)
            wa_id = _str(contact.get("wa_id"))
            if wa_id:
                names[wa_id] = _str(_obj(contact.get("profile")).get("name"))

        for message in _list(value.get("messages")):
            message = _obj(message)
            sender = _str(message.get("from"))
            if not sender:
                events.append(UnknownEvent("whatsapp", phone_number_id, "message without sender"))
                continue
            if business_number and sender == business_number:
                events.append(UnknownEvent("whatsapp", phone_number_id, "outbound message"))
                continue

            events.append(
                MessageEvent(
                    platform="whatsapp",
                    page_id=phone_number_id,
                    external_id=_str(message.get("id")),
                    sender_id=sender,
                    sender_name=names.get(sender) or "Unknown",
                    text=_whatsapp_text(message),
                    timestamp=_opt_str(message.get("timestamp")),
                )
            )

    if not events:
        events.append(UnknownEvent("whatsapp", None, "empty entry"))
    return events


# =============================================================================
# WEBSITE FORMS
# =============================================================================


_MESSAGE_KEYS = ("message", "body", "content", "text")
_FALLBACK_MESSAGE_KEYS = (
    "subject",
    "title",
    "topic",
    "description",
    "details",
    "feedback",
    "comments",
    "question",
)
_CONSUMED_KEYS = {
    "id", "submission_id", "submissionId",
    "email", "sender_email", "senderEmail",
    "name", "sender_name", "senderName",
    "source", "form_id", "formId",
    "timestamp", "created_at",
    "workspace_id", "workspaceId",
    *_MESSAGE_KEYS,
}


def _first(payload: dict, keys: tuple) -> str:
    for key in keys:
        value = _str(payload.get(key)).strip()
        if value:
            return value
    return ""


def parse_form_submission(payload: Any) -> Optional[FormSubmission]:
    """Normalize a website form payload.

    Field names vary between form builders, so several aliases are tried
    for each field. When no message field is present, one is assembled
    from descriptive fields as ``field: value`` lines.

    Returns:
        FormSubmission, or None when no email or no message can be found.
    """
    if not isinstance(payload, dict):
        return None

    email = _first(payload, ("email", "sender_email", "senderEmail"))
    message = _first(payload, _MESSAGE_KEYS)
    if not message:
        lines = []
        for key in _FALLBACK_MESSAGE_KEYS:
            value = _str(payload.get(key)).strip()
            if value:
                lines.append(f"{key}: {value}")
        message = "\n".join(lines)

    if not email or not message:
        return None

    metadata = {
        key: value
        for key, value in payload.items()
        if key not in _CONSUMED_KEYS and not isinstance(value, (dict, list))
    }

    return FormSubmission(
        id=_first(payload, ("id", "submission_id", "submissionId")) or str(uuid.uuid4()),
        timestamp=_first(payload, ("timestamp", "created_at")) or _now_iso(),
        sender_email=email,
        sender_name=_first(payload, ("name", "sender_name", "senderName")) or "Anonymous",
        message=message,
        source=_first(payload, ("source", "form_id", "formId")) or "unknown",
        metadata=metadata,
    )


# =============================================================================
# COMMENT DETECTION
# =============================================================================


def detect_comment_event(body: Any) -> CommentDetection:
    """Find the first Facebook feed comment in a payload.

    Also accepts the development mock shape
    ``{"mock": true, "platform": ..., "pageId": ..., "comment": {...}}``.
    """
    body = _obj(body)

    for entry in _list(body.get("entry")):
        entry = _obj(entry)
        for change in _list(entry.get("changes")):
            change = _obj(change)
            value = _obj(change.get("value"))
            if change.get("field") == "feed" and value.get("item") == "comment":
                author = _obj(value.get("from"))
                return CommentDetection(
                    is_comment=True,
                    platform="facebook",
                    data={
                        "page_id": _opt_str(entry.get("id")),
                        "comment_id": _opt_str(value.get("comment_id") or value.get("id")),
                        "post_id": _opt_str(value.get("post_id")),
                        "content": _opt_str(value.get("message")),
                        "author_id": _opt_str(author.get("id")),
                        "author_name": _opt_str(author.get("name")),
                        "created_time": _opt_str(value.get("created_time")),
                        "permalink": _opt_str(value.get("permalink_url")),
                    },
                )

    comment = body.get("comment")
    if body.get("mock") is True and isinstance(comment, dict):
        return CommentDetection(
            is_comment=True,
            platform=_str(body.get("platform")) or "facebook",
            data={
                "page_id": _opt_str(body.get("pageId")),
                "comment_id": _opt_str(comment.get("id")),
                "post_id": _opt_str(comment.get("postId") or body.get("postId")),
                "content": _opt_str(comment.get("content")),
                "author_id": _opt_str(comment.get("authorId")),
                "author_name": _opt_str(comment.get("authorName")),
                "created_time": _str(comment.get("createdTime")) or _now_iso(),
                "permalink": _opt_str(comment.get("permalink")),
            },
        )

    return CommentDetection(is_comment=False)
