"""
Helpers to classify and extract data from WhatsApp and Telegram messages.

Pure functions only – no network or IO here.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from .content import (
    CALL_JID,
    GROUP_SUFFIX,
    RESERVED_JIDS,
    STATUS_JID,
    USER_SUFFIX,
    ContentKind,
    TelegramContent,
    WhatsAppContent,
)
from .schemas import TelegramUpdate, TgMessage, TgMessageEntity, TgPhotoSize, WaMessage

# Baileys wraps some payloads one level deeper; unwrap before classifying.
_WRAPPER_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
)

_VCARD_TEL = re.compile(r"TEL.*:(.*)")


# ---------------------------------------------------------------------------
# JIDs
# ---------------------------------------------------------------------------


def phone_from_jid(jid: str) -> str:
    """Bare phone number of a user JID (device suffix dropped)."""
    user = jid.split("@", 1)[0]
    return user.split(":", 1)[0]


def is_group_jid(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX)


def is_user_jid(jid: str) -> bool:
    return jid.endswith(USER_SUFFIX)


def is_reserved_jid(jid: str) -> bool:
    return jid in RESERVED_JIDS


def is_status_jid(jid: str) -> bool:
    return jid == STATUS_JID


def is_call_jid(jid: str) -> bool:
    return jid == CALL_JID


def to_user_jid(number: str) -> str:
    """Turn an operator-typed number (or JID) into a user JID."""
    number = number.strip()
    if "@" in number:
        return number
    digits = "".join(ch for ch in number if ch.isdigit())
    return f"{digits}{USER_SUFFIX}"


def format_phone(phone: str) -> str:
    return f"+{phone}"


# ---------------------------------------------------------------------------
# WhatsApp
# ---------------------------------------------------------------------------


def unwrap_whatsapp_message(message: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    node = message or {}
    for _ in range(3):
        for key in _WRAPPER_KEYS:
            inner = node.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                node = inner["message"]
                break
        else:
            return node
    return node


def extract_whatsapp_text(message: Optional[Dict[str, Any]]) -> str:
    """
    Body text of a WhatsApp message, falling back to media captions.
    """
    node = unwrap_whatsapp_message(message)
    if node.get("conversation"):
        return node["conversation"]
    for key, attr in (
        ("extendedTextMessage", "text"),
        ("imageMessage", "caption"),
        ("videoMessage", "caption"),
        ("documentMessage", "caption"),
        ("audioMessage", "caption"),
    ):
        value = (node.get(key) or {}).get(attr)
        if value:
            return value
    return ""


def parse_vcard_phone(vcard: str) -> str:
    match = _VCARD_TEL.search(vcard or "")
    return match.group(1).strip() if match else ""


def classify_whatsapp(msg: WaMessage) -> WhatsAppContent:
    """
    Classify a WhatsApp message into exactly one content kind.

    Precedence follows how WhatsApp nests payloads: a round video ("ptv") is
    also a videoMessage, so it is checked first.
    """
    node = unwrap_whatsapp_message(msg.message)
    text = extract_whatsapp_text(node)

    video = node.get("videoMessage")
    if node.get("ptvMessage") or (video and video.get("ptv")):
        media = node.get("ptvMessage") or video
        return WhatsAppContent(
            kind=ContentKind.VIDEO_NOTE,
            text=text,
            media_node=media,
            download_type="video",
            mime_type=media.get("mimetype"),
        )

    image = node.get("imageMessage")
    if image:
        return WhatsAppContent(
            kind=ContentKind.IMAGE,
            text=text,
            media_node=image,
            download_type="image",
            mime_type=image.get("mimetype"),
        )

    if video:
        return WhatsAppContent(
            kind=ContentKind.VIDEO,
            text=text,
            media_node=video,
            download_type="video",
            mime_type=video.get("mimetype"),
            gif_playback=bool(video.get("gifPlayback")),
        )

    audio = node.get("audioMessage")
    if audio:
        return WhatsAppContent(
            kind=ContentKind.VOICE if audio.get("ptt") else ContentKind.AUDIO,
            text=text,
            media_node=audio,
            download_type="audio",
            mime_type=audio.get("mimetype"),
            title=audio.get("title"),
        )

    document = node.get("documentMessage")
    if document:
        return WhatsAppContent(
            kind=ContentKind.DOCUMENT,
            text=text,
            media_node=document,
            download_type="document",
            file_name=document.get("fileName"),
            mime_type=document.get("mimetype"),
        )

    sticker = node.get("stickerMessage")
    if sticker:
        return WhatsAppContent(
            kind=ContentKind.STICKER,
            media_node=sticker,
            download_type="sticker",
            mime_type=sticker.get("mimetype") or "image/webp",
        )

    location = node.get("locationMessage") or node.get("liveLocationMessage")
    if location:
        return WhatsAppContent(
            kind=ContentKind.LOCATION,
            latitude=location.get("degreesLatitude"),
            longitude=location.get("degreesLongitude"),
        )

    contact = node.get("contactMessage")
    if contact:
        return WhatsAppContent(
            kind=ContentKind.CONTACT,
            contact_name=contact.get("displayName") or "Unknown Contact",
            contact_phone=parse_vcard_phone(contact.get("vcard", "")),
        )

    if text:
        return WhatsAppContent(kind=ContentKind.TEXT, text=text)

    return WhatsAppContent(kind=ContentKind.UNSUPPORTED)


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------


def extract_message_entity(update: TelegramUpdate) -> Optional[TgMessage]:
    """
    Return the effective message (either `message` or `channel_post`)
    from a Telegram update.
    """
    return update.message or update.channel_post


def find_photo_with_max_size(msg: TgMessage) -> Optional[TgPhotoSize]:
    """
    From a TgMessage, pick the largest photo variant if present.

    Telegram sends multiple sizes of the same photo in msg.photo.
    """
    if not msg.photo:
        return None

    return max(msg.photo, key=lambda p: p.width * p.height)


def has_spoiler(entities: Optional[Iterable[TgMessageEntity]]) -> bool:
    return any(entity.type == "spoiler" for entity in entities or ())


def is_forum_topic_message(msg: TgMessage) -> bool:
    return (
        msg.chat.type == "supergroup"
        and bool(msg.is_topic_message)
        and msg.message_thread_id is not None
    )


def build_vcard(first_name: str, last_name: str, phone: str) -> str:
    display = f"{first_name} {last_name}".strip() or phone
    lines: List[str] = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"N:{last_name};{first_name};;;",
        f"FN:{display}",
        f"TEL;TYPE=CELL:{phone}",
        "END:VCARD",
    ]
    return "\n".join(lines)


def classify_telegram(msg: TgMessage) -> TelegramContent:
    """Classify a Telegram topic message into exactly one content kind."""
    caption = msg.caption or ""
    spoiler = bool(msg.has_media_spoiler) or has_spoiler(msg.caption_entities)

    if msg.photo:
        photo = find_photo_with_max_size(msg)
        return TelegramContent(
            kind=ContentKind.IMAGE,
            text=caption,
            file_id=photo.file_id,
            mime_type="image/jpeg",
            spoiler=spoiler,
        )
    if msg.video:
        return TelegramContent(
            kind=ContentKind.VIDEO,
            text=caption,
            file_id=msg.video.file_id,
            file_name=msg.video.file_name,
            mime_type=msg.video.mime_type or "video/mp4",
            spoiler=spoiler,
        )
    if msg.animation:
        return TelegramContent(
            kind=ContentKind.ANIMATION,
            text=caption,
            file_id=msg.animation.file_id,
            mime_type=msg.animation.mime_type or "video/mp4",
            spoiler=spoiler,
        )
    if msg.video_note:
        return TelegramContent(
            kind=ContentKind.VIDEO_NOTE,
            text=caption,
            file_id=msg.video_note.file_id,
            mime_type="video/mp4",
            spoiler=spoiler,
        )
    if msg.voice:
        return TelegramContent(
            kind=ContentKind.VOICE,
            file_id=msg.voice.file_id,
            mime_type=msg.voice.mime_type or "audio/ogg",
        )
    if msg.audio:
        return TelegramContent(
            kind=ContentKind.AUDIO,
            text=caption,
            file_id=msg.audio.file_id,
            file_name=msg.audio.file_name,
            mime_type=msg.audio.mime_type,
            title=msg.audio.title,
        )
    if msg.document:
        return TelegramContent(
            kind=ContentKind.DOCUMENT,
            text=caption,
            file_id=msg.document.file_id,
            file_name=msg.document.file_name,
            mime_type=msg.document.mime_type,
        )
    if msg.sticker:
        return TelegramContent(
            kind=ContentKind.STICKER,
            file_id=msg.sticker.file_id,
            mime_type="image/webp",
            animated=msg.sticker.is_animated or msg.sticker.is_video,
        )
    if msg.location:
        return TelegramContent(
            kind=ContentKind.LOCATION,
            latitude=msg.location.latitude,
            longitude=msg.location.longitude,
        )
    if msg.contact:
        return TelegramContent(
            kind=ContentKind.CONTACT,
            contact={
                "first_name": msg.contact.first_name or "",
                "last_name": msg.contact.last_name or "",
                "phone_number": msg.contact.phone_number or "",
            },
        )
    if msg.text:
        return TelegramContent(
            kind=ContentKind.TEXT,
            text=msg.text,
            spoiler=has_spoiler(msg.entities),
        )
    return TelegramContent(kind=ContentKind.UNSUPPORTED)
