"""
Closed set of content kinds that cross the bridge.

Each platform has exactly one classifier (see message_parser) producing one of
these variants; everything downstream dispatches on `kind` and treats an
unknown kind as a programming error.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

STATUS_JID = "status@broadcast"
CALL_JID = "call@broadcast"
RESERVED_JIDS = (STATUS_JID, CALL_JID)

USER_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    ANIMATION = "animation"
    VIDEO_NOTE = "video_note"
    AUDIO = "audio"
    VOICE = "voice"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    UNSUPPORTED = "unsupported"


MEDIA_KINDS = frozenset(
    {
        ContentKind.IMAGE,
        ContentKind.VIDEO,
        ContentKind.ANIMATION,
        ContentKind.VIDEO_NOTE,
        ContentKind.AUDIO,
        ContentKind.VOICE,
        ContentKind.DOCUMENT,
        ContentKind.STICKER,
    }
)


class UnhandledContentKind(ValueError):
    """Raised when a dispatcher meets a kind it has no branch for."""

    def __init__(self, kind: ContentKind, where: str):
        super().__init__(f"{where}: unhandled content kind {kind.value!r}")
        self.kind = kind


@dataclass(frozen=True)
class WhatsAppContent:
    """Classified WhatsApp message payload."""

    kind: ContentKind
    text: str = ""
    # Raw `imageMessage`/`videoMessage`/... node, handed back to the gateway for download
    media_node: Optional[Dict[str, Any]] = None
    download_type: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    title: Optional[str] = None
    gif_playback: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None

    @property
    def is_media(self) -> bool:
        return self.kind in MEDIA_KINDS


@dataclass(frozen=True)
class TelegramContent:
    """Classified Telegram topic message payload."""

    kind: ContentKind
    text: str = ""
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    spoiler: bool = False
    animated: bool = False
    title: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    contact: Dict[str, str] = field(default_factory=dict)

    @property
    def is_media(self) -> bool:
        return self.kind in MEDIA_KINDS
