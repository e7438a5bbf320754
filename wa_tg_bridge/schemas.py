#!/usr/bin/env python3
"""
Pydantic models for external I/O and persisted state:

- Telegram update / message subset (forum topics, media, replies)
- WhatsApp gateway events (Baileys-shaped JSON, camelCase on the wire)
- Mapping records persisted by the store
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Telegram models (subset, enough for our use case)
# ---------------------------------------------------------------------------


class TgUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    username: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class TgChat(BaseModel):
    id: int
    type: str
    title: Optional[str] = None
    is_forum: Optional[bool] = None

    model_config = ConfigDict(extra="allow")


class TgPhotoSize(BaseModel):
    file_id: str
    width: int
    height: int
    file_size: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class TgFileBase(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class TgVideo(TgFileBase):
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None


class TgAnimation(TgFileBase):
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None


class TgDocument(TgFileBase):
    pass


class TgAudio(TgFileBase):
    duration: Optional[int] = None
    title: Optional[str] = None
    performer: Optional[str] = None


class TgVoice(TgFileBase):
    duration: Optional[int] = None


class TgVideoNote(TgFileBase):
    length: Optional[int] = None
    duration: Optional[int] = None


class TgSticker(TgFileBase):
    width: Optional[int] = None
    height: Optional[int] = None
    is_animated: bool = False
    is_video: bool = False
    emoji: Optional[str] = None


class TgLocation(BaseModel):
    latitude: float
    longitude: float

    model_config = ConfigDict(extra="allow")


class TgContact(BaseModel):
    phone_number: str
    first_name: str = ""
    last_name: Optional[str] = None
    vcard: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class TgMessageEntity(BaseModel):
    type: str
    offset: int = 0
    length: int = 0

    model_config = ConfigDict(extra="allow")


class TgMessage(BaseModel):
    message_id: int
    chat: TgChat
    from_user: Optional[TgUser] = Field(default=None, alias="from")
    message_thread_id: Optional[int] = None
    is_topic_message: Optional[bool] = None
    reply_to_message: Optional["TgMessage"] = None
    text: Optional[str] = None
    caption: Optional[str] = None
    entities: Optional[List[TgMessageEntity]] = None
    caption_entities: Optional[List[TgMessageEntity]] = None
    has_media_spoiler: Optional[bool] = None
    photo: Optional[List[TgPhotoSize]] = None
    video: Optional[TgVideo] = None
    animation: Optional[TgAnimation] = None
    document: Optional[TgDocument] = None
    audio: Optional[TgAudio] = None
    voice: Optional[TgVoice] = None
    video_note: Optional[TgVideoNote] = None
    sticker: Optional[TgSticker] = None
    location: Optional[TgLocation] = None
    contact: Optional[TgContact] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


TgMessage.model_rebuild()


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TgMessage] = None
    channel_post: Optional[TgMessage] = None

    model_config = ConfigDict(extra="allow")


class TgForumTopic(BaseModel):
    message_thread_id: int
    name: str
    icon_color: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class TelegramWebhookInfo(BaseModel):
    """Telegram webhook status model (mirrors getWebhookInfo result)."""

    url: Optional[str] = None
    has_custom_certificate: bool = False
    pending_update_count: int = 0
    ip_address: Optional[str] = None
    last_error_date: Optional[int] = None
    last_error_message: Optional[str] = None
    last_synchronization_error_date: Optional[int] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# WhatsApp gateway models
# ---------------------------------------------------------------------------


class WaMessageKey(BaseModel):
    remote_jid: str = Field(alias="remoteJid")
    from_me: bool = Field(default=False, alias="fromMe")
    id: Optional[str] = None
    participant: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WaMessage(BaseModel):
    key: WaMessageKey
    message: Optional[Dict[str, Any]] = None
    message_timestamp: int = Field(default=0, alias="messageTimestamp")
    push_name: Optional[str] = Field(default=None, alias="pushName")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("message_timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        # protobuf Long values arrive either as strings or {low, high} objects
        if value is None:
            return 0
        if isinstance(value, dict):
            low = int(value.get("low", 0)) & 0xFFFFFFFF
            high = int(value.get("high", 0))
            return (high << 32) | low
        return int(value)

    @property
    def chat_jid(self) -> str:
        return self.key.remote_jid

    @property
    def participant_jid(self) -> str:
        return self.key.participant or self.key.remote_jid


class WaMessagesUpsert(BaseModel):
    messages: List[WaMessage] = Field(default_factory=list)
    type: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WaContact(BaseModel):
    id: str
    name: Optional[str] = None
    notify: Optional[str] = None
    verified_name: Optional[str] = Field(default=None, alias="verifiedName")
    img_url: Optional[str] = Field(default=None, alias="imgUrl")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class WaChat(BaseModel):
    id: str
    name: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WaGroupUpdate(BaseModel):
    id: str
    subject: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WaGroupMetadata(BaseModel):
    id: str
    subject: str = ""
    participants: List[Dict[str, Any]] = Field(default_factory=list)
    creation: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class WaCall(BaseModel):
    id: str
    caller: str = Field(alias="from")
    status: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class WaConnectionUpdate(BaseModel):
    connection: Optional[str] = None
    qr: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WaGatewayEvent(BaseModel):
    """Envelope POSTed by the gateway for every socket event."""

    event: str
    data: Any = None

    model_config = ConfigDict(extra="allow")


class WaSendResult(BaseModel):
    key: Optional[WaMessageKey] = None

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# Mapping records (persisted)
# ---------------------------------------------------------------------------


class ChatMapping(BaseModel):
    whatsapp_jid: str
    telegram_topic_id: int
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)


class UserMapping(BaseModel):
    whatsapp_id: str
    phone: str
    name: Optional[str] = None
    first_seen: datetime = Field(default_factory=utcnow)
    message_count: int = 0
    last_seen: datetime = Field(default_factory=utcnow)


class ContactMapping(BaseModel):
    phone: str
    name: str
    updated_at: datetime = Field(default_factory=utcnow)
