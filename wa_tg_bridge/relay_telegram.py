"""
Inbound Telegram relay: forum topic messages -> WhatsApp chats.

Every relayed message gets a reaction in the topic: 👍 once WhatsApp
acknowledged it (✅ for status replies), ❌ when it could not be delivered.
"""

import logging
from pathlib import PurePath
from typing import Awaitable, Optional

import httpx

from .content import STATUS_JID, ContentKind, TelegramContent, UnhandledContentKind
from .media import MediaTransfer, needs_audio_conversion
from .message_parser import build_vcard, classify_telegram
from .presence import PresenceCoordinator
from .schemas import TgMessage, WaSendResult
from .telegram_api import TelegramAPIError, TelegramBotAPI
from .topics import TopicManager
from .whatsapp_api import WhatsAppGateway, WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.relay.tg")

SPOILER_MARK = "🫥 "
STATUS_REPLY_MISSING = "❌ Cannot find original status message to reply to"

_RELAY_ERRORS = (WhatsAppGatewayError, TelegramAPIError, httpx.HTTPError, RuntimeError)


class TelegramRelay:
    def __init__(
        self,
        settings,
        telegram: TelegramBotAPI,
        whatsapp: WhatsAppGateway,
        topics: TopicManager,
        media: MediaTransfer,
        presence: PresenceCoordinator,
    ):
        self.settings = settings
        self.telegram = telegram
        self.whatsapp = whatsapp
        self.topics = topics
        self.media = media
        self.presence = presence

    # -- reactions / relay attempt ------------------------------------------------

    async def react(self, msg: TgMessage, emoji: str) -> None:
        try:
            await self.telegram.set_message_reaction(msg.chat.id, msg.message_id, emoji)
        except (TelegramAPIError, httpx.HTTPError) as e:
            log.debug("Failed to set reaction: %s", e)

    async def _attempt(
        self,
        msg: TgMessage,
        jid: str,
        action: Awaitable[Optional[WaSendResult]],
        success: str = "👍",
        mark_read: bool = True,
    ) -> bool:
        try:
            result = await action
        except _RELAY_ERRORS as e:
            log.error("Failed to relay Telegram message %s to %s: %s", msg.message_id, jid, e)
            result = None

        if result is None or result.key is None or not result.key.id:
            await self.react(msg, "❌")
            return False

        await self.react(msg, success)
        if mark_read:
            self.presence.mark_read(jid, [result.key])
        return True

    # -- entry point --------------------------------------------------------------

    async def handle_message(self, msg: TgMessage) -> bool:
        jid = self.topics.find_jid_by_topic(msg.message_thread_id)
        if jid is None:
            log.warning("No WhatsApp chat mapped to topic %s", msg.message_thread_id)
            return False

        content = classify_telegram(msg)
        if content.kind is ContentKind.UNSUPPORTED:
            log.debug("Unsupported Telegram message %s, not relayed", msg.message_id)
            return False

        if (
            jid == STATUS_JID
            and msg.reply_to_message is not None
            and content.kind is ContentKind.TEXT
        ):
            return await self.handle_status_reply(msg, content)

        await self.presence.typing(jid)
        return await self._attempt(msg, jid, self.send_content(content, msg, jid))

    async def handle_status_reply(self, msg: TgMessage, content: TelegramContent) -> bool:
        key = self.topics.status_index.lookup(msg.reply_to_message.message_id)
        if key is None:
            try:
                await self.telegram.send_message(
                    msg.chat.id, STATUS_REPLY_MISSING, thread_id=msg.message_thread_id
                )
            except (TelegramAPIError, httpx.HTTPError) as e:
                log.debug("Could not report missing status: %s", e)
            return False

        target = key.participant or key.remote_jid
        return await self._attempt(
            msg,
            target,
            self.whatsapp.send_message(target, {"text": content.text}),
            success="✅",
            mark_read=False,
        )

    # -- content ------------------------------------------------------------------

    async def send_content(
        self, content: TelegramContent, msg: TgMessage, jid: str
    ) -> Optional[WaSendResult]:
        kind = content.kind

        if kind is ContentKind.TEXT:
            text = f"{SPOILER_MARK}{content.text}" if content.spoiler else content.text
            return await self.whatsapp.send_message(jid, {"text": text})

        if kind is ContentKind.LOCATION:
            return await self.whatsapp.send_message(
                jid,
                {
                    "location": {
                        "degreesLatitude": content.latitude,
                        "degreesLongitude": content.longitude,
                    }
                },
            )

        if kind is ContentKind.CONTACT:
            first = content.contact.get("first_name", "")
            last = content.contact.get("last_name", "")
            phone = content.contact.get("phone_number", "")
            display = f"{first} {last}".strip() or phone
            return await self.whatsapp.send_message(
                jid,
                {
                    "contacts": {
                        "displayName": display,
                        "contacts": [{"vcard": build_vcard(first, last, phone)}],
                    }
                },
            )

        if kind is ContentKind.STICKER:
            return await self._send_sticker(content, msg, jid)

        if not content.is_media:
            raise UnhandledContentKind(kind, "TelegramRelay.send_content")

        data = await self.media.download_telegram(content.file_id)
        if data is None:
            log.error("Could not download Telegram %s", kind.value)
            return None

        file_name = content.file_name
        mime_type = content.mime_type
        if kind is ContentKind.AUDIO and needs_audio_conversion(mime_type):
            converted = await self.media.convert_audio(data)
            if converted is not data:
                data = converted
                mime_type = "audio/mpeg"
                file_name = f"{PurePath(file_name or 'audio').stem}.mp3"

        return await self.media.upload_to_whatsapp(
            jid,
            kind,
            data,
            caption=content.text,
            view_once=content.spoiler,
            file_name=file_name,
            mime_type=mime_type,
        )

    async def _send_sticker(
        self, content: TelegramContent, msg: TgMessage, jid: str
    ) -> Optional[WaSendResult]:
        data = await self.media.download_telegram(content.file_id)
        if data is None:
            return None

        try:
            if content.animated:
                sticker = await self.media.convert_animated_sticker(data)
                if sticker is None:
                    raise RuntimeError("animated sticker conversion failed")
            else:
                sticker = data
            result = await self.media.upload_to_whatsapp(jid, ContentKind.STICKER, sticker)
            if result.key is None or not result.key.id:
                raise RuntimeError("sticker sent but not acknowledged")
            return result
        except (WhatsAppGatewayError, httpx.HTTPError, RuntimeError):
            await self._sticker_fallback(msg, data)
            raise

    async def _sticker_fallback(self, msg: TgMessage, data: bytes) -> None:
        """Post the sticker back into the topic as a PNG so it is not lost."""
        png = await self.media.sticker_to_png(data)
        if png is None:
            return
        try:
            await self.telegram.send_photo(
                msg.chat.id,
                png,
                thread_id=msg.message_thread_id,
                caption="Sticker (fallback)",
                filename="sticker.png",
                mime_type="image/png",
            )
        except (TelegramAPIError, httpx.HTTPError) as e:
            log.debug("Sticker fallback failed: %s", e)
