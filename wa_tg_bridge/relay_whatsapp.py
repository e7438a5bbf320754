"""
Inbound WhatsApp relay: gateway events -> messages in Telegram topics.
"""

import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Optional

import httpx

from .contacts import ContactDirectory
from .content import CALL_JID, STATUS_JID, ContentKind, UnhandledContentKind, WhatsAppContent
from .leases import LeaseGuard
from .media import MediaTransfer
from .message_parser import classify_whatsapp, format_phone, is_group_jid, phone_from_jid
from .presence import PresenceCoordinator
from .schemas import (
    TgMessage,
    UserMapping,
    WaCall,
    WaContact,
    WaGroupUpdate,
    WaMessage,
    WaMessagesUpsert,
    utcnow,
)
from .store import MappingStore
from .telegram_api import TelegramAPIError, TelegramBotAPI
from .topics import TopicManager
from .whatsapp_api import WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.relay.wa")

CALL_DEDUPE_SECONDS = 30.0


class WhatsAppRelay:
    def __init__(
        self,
        settings,
        telegram: TelegramBotAPI,
        store: MappingStore,
        topics: TopicManager,
        contacts: ContactDirectory,
        media: MediaTransfer,
        presence: PresenceCoordinator,
        leases: Optional[LeaseGuard] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.telegram = telegram
        self.store = store
        self.topics = topics
        self.contacts = contacts
        self.media = media
        self.presence = presence
        self.leases = leases or LeaseGuard(clock=monotonic)
        self.clock = clock
        self.monotonic = monotonic
        self._recent_calls: Dict[str, float] = {}

    @property
    def chat_id(self) -> int:
        return self.settings.telegram_chat_id

    # -- relay attempt ------------------------------------------------------------

    async def _attempt(self, jid: str, what: str, action: Awaitable) -> Optional[TgMessage]:
        """
        Run one send into Telegram. Platform failures are logged and the
        event abandoned; a missing topic also drops the mapping.
        """
        try:
            return await action
        except TelegramAPIError as e:
            if e.topic_missing:
                await self.topics.mark_stale(jid)
            log.error("Failed to relay %s from %s: %s", what, jid, e)
        except (WhatsAppGatewayError, httpx.HTTPError, RuntimeError) as e:
            log.error("Failed to relay %s from %s: %s", what, jid, e)
        return None

    # -- messages -----------------------------------------------------------------

    def is_stale(self, msg: WaMessage) -> bool:
        if not msg.message_timestamp:
            return False
        return self.clock() - msg.message_timestamp > self.settings.message_max_age

    async def handle_messages(self, upsert: WaMessagesUpsert) -> int:
        relayed = 0
        for msg in upsert.messages:
            try:
                if await self.handle_message(msg):
                    relayed += 1
            except Exception:
                log.exception("Error while relaying WhatsApp message %s", msg.key.id)
        return relayed

    async def handle_message(self, msg: WaMessage) -> bool:
        if self.is_stale(msg):
            log.debug("Skipping old message %s", msg.key.id)
            return False

        jid = msg.chat_jid
        if jid == STATUS_JID:
            return await self.handle_status(msg)

        if msg.key.from_me:
            if not self.settings.feature("biDirectional"):
                return False
            return await self.mirror_outgoing(msg)

        participant = msg.participant_jid
        if not self.leases.try_acquire(participant):
            # colliding event from the same sender is dropped
            log.debug("Sender %s busy, dropping message %s", participant, msg.key.id)
            return False

        try:
            await self.record_user(msg)
            topic_id = await self.topics.get_or_create(jid, msg)
            if topic_id is None:
                log.error("No topic for %s, message skipped", jid)
                return False

            content = classify_whatsapp(msg)
            sent = await self._attempt(
                jid, content.kind.value, self.send_content(content, msg, topic_id)
            )
            if sent is None:
                return False

            await self.store.touch_chat(jid)
            if msg.key.id:
                self.presence.queue_read_receipt(jid, msg.key)
            return True
        finally:
            self.leases.release(participant)

    async def mirror_outgoing(self, msg: WaMessage) -> bool:
        """Mirror a message sent from the phone into an already mapped topic."""
        jid = msg.chat_jid
        topic_id = self.topics.resolve(jid)
        if topic_id is None:
            return False
        content = classify_whatsapp(msg)
        sent = await self._attempt(
            jid, content.kind.value, self.send_content(content, msg, topic_id, outgoing=True)
        )
        return sent is not None

    async def record_user(self, msg: WaMessage) -> UserMapping:
        participant = msg.participant_jid
        now = utcnow()
        current = self.store.cache.users.get(participant)
        if current is not None:
            user = current.model_copy(
                update={
                    "name": msg.push_name or current.name,
                    "message_count": current.message_count + 1,
                    "last_seen": now,
                }
            )
        else:
            phone = phone_from_jid(participant)
            user = UserMapping(
                whatsapp_id=participant,
                phone=phone,
                name=msg.push_name or self.contacts.display_name(phone),
                first_seen=now,
                message_count=1,
                last_seen=now,
            )
        return await self.store.upsert_user(user)

    # -- content ------------------------------------------------------------------

    def _sender_label(self, msg: WaMessage) -> Optional[str]:
        """Display name of a group participant, None outside groups."""
        jid = msg.chat_jid
        participant = msg.participant_jid
        if not is_group_jid(jid) or participant == jid:
            return None
        return self.contacts.label(phone_from_jid(participant))

    def _caption(self, text: str, msg: WaMessage, outgoing: bool, media: bool) -> str:
        if outgoing:
            if text:
                return f"📤 You: {text}"
            return "📤 You sent media" if media else ""
        sender = self._sender_label(msg)
        if sender:
            return f"👤 {sender}:\n{text}"
        return text

    async def send_content(
        self,
        content: WhatsAppContent,
        msg: WaMessage,
        topic_id: int,
        outgoing: bool = False,
    ) -> Optional[TgMessage]:
        kind = content.kind
        chat_id = self.chat_id

        if kind is ContentKind.TEXT:
            text = self._caption(content.text, msg, outgoing, media=False)
            return await self.telegram.send_message(chat_id, text, thread_id=topic_id)

        if kind is ContentKind.LOCATION:
            sent = await self.telegram.send_location(
                chat_id, content.latitude, content.longitude, thread_id=topic_id
            )
            note = self._shared_note("location", msg, outgoing)
            if note:
                await self.telegram.send_message(chat_id, note, thread_id=topic_id)
            return sent

        if kind is ContentKind.CONTACT:
            sent = await self.telegram.send_contact(
                chat_id, content.contact_phone or "", content.contact_name, thread_id=topic_id
            )
            note = self._shared_note(f"contact: {content.contact_name}", msg, outgoing)
            if note:
                await self.telegram.send_message(chat_id, note, thread_id=topic_id)
            return sent

        if kind is ContentKind.UNSUPPORTED:
            log.debug("Unsupported WhatsApp message %s, not relayed", msg.key.id)
            return None

        if not content.is_media:
            raise UnhandledContentKind(kind, "WhatsAppRelay.send_content")

        data = await self.media.download_whatsapp(content)
        if data is None:
            return None
        caption = self._caption(content.text, msg, outgoing, media=True)
        return await self._send_media(content, data, caption, topic_id)

    def _shared_note(self, what: str, msg: WaMessage, outgoing: bool) -> Optional[str]:
        if outgoing:
            return f"📤 You shared {what}"
        sender = self._sender_label(msg)
        if sender:
            return f"👤 {sender} shared {what}"
        return None

    async def _send_media(
        self, content: WhatsAppContent, data: bytes, caption: str, topic_id: int
    ) -> TgMessage:
        chat_id = self.chat_id
        kind = content.kind

        if kind is ContentKind.VIDEO and content.gif_playback:
            kind = ContentKind.ANIMATION

        if kind is ContentKind.VIDEO_NOTE:
            data = await self.media.convert_to_circular_video(data)
            sent = await self.media.upload_to_telegram(kind, data, chat_id, topic_id)
            if caption:
                await self.telegram.send_message(chat_id, caption, thread_id=topic_id)
            return sent

        if kind is ContentKind.STICKER:
            try:
                return await self.media.upload_to_telegram(kind, data, chat_id, topic_id)
            except TelegramAPIError as e:
                if e.topic_missing:
                    raise
                log.debug("Sticker rejected (%s), sending as PNG", e)
            png = await self.media.sticker_to_png(data)
            if png is None:
                raise RuntimeError("sticker could not be converted to PNG")
            return await self.media.upload_to_telegram(
                ContentKind.IMAGE, png, chat_id, topic_id, caption=caption or "Sticker"
            )

        return await self.media.upload_to_telegram(
            kind,
            data,
            chat_id,
            topic_id,
            caption=caption,
            file_name=content.file_name,
            mime_type=content.mime_type,
            title=content.title,
        )

    # -- status -------------------------------------------------------------------

    async def handle_status(self, msg: WaMessage) -> bool:
        if not self.settings.feature("statusSync"):
            return False
        topic_id = await self.topics.get_or_create(STATUS_JID)
        if topic_id is None:
            return False

        phone = phone_from_jid(msg.participant_jid)
        name = self.contacts.display_name(phone) or format_phone(phone)
        content = classify_whatsapp(msg)
        header = f"📱 Status from {name}"
        status_text = f"{header}\n\n{content.text}" if content.text else header

        async def relay() -> Optional[TgMessage]:
            if content.kind in (ContentKind.IMAGE, ContentKind.VIDEO):
                data = await self.media.download_whatsapp(content)
                if data is None:
                    return None
                return await self._send_media(content, data, status_text, topic_id)
            if content.kind is ContentKind.TEXT:
                return await self.telegram.send_message(
                    self.chat_id, status_text, thread_id=topic_id
                )
            log.debug("Status of kind %s not relayed", content.kind.value)
            return None

        sent = await self._attempt(STATUS_JID, "status", relay())
        if sent is None:
            return False
        self.topics.status_index.remember(sent.message_id, msg.key)
        return True

    # -- calls --------------------------------------------------------------------

    def _seen_call(self, key: str) -> bool:
        now = self.monotonic()
        for stale in [k for k, expiry in self._recent_calls.items() if expiry <= now]:
            del self._recent_calls[stale]
        if key in self._recent_calls:
            return True
        self._recent_calls[key] = now + CALL_DEDUPE_SECONDS
        return False

    async def handle_calls(self, calls: Iterable[WaCall]) -> int:
        if not self.settings.feature("callLogs"):
            return 0
        posted = 0
        for call in calls:
            if self._seen_call(f"{call.caller}_{call.id}"):
                continue
            if await self.handle_call(call):
                posted += 1
        return posted

    async def handle_call(self, call: WaCall) -> bool:
        topic_id = await self.topics.get_or_create(CALL_JID)
        if topic_id is None:
            log.error("Could not create call topic")
            return False

        phone = phone_from_jid(call.caller)
        name = self.contacts.display_name(phone) or format_phone(phone)
        text = (
            "📞 *Incoming Call*\n\n"
            f"👤 *From:* {name}\n"
            f"📱 *Number:* {format_phone(phone)}\n"
            f"⏰ *Time:* {datetime.now():%Y-%m-%d %H:%M:%S}\n"
            f"📋 *Status:* {call.status or 'Incoming'}"
        )
        sent = await self._attempt(
            CALL_JID,
            "call",
            self.telegram.send_message(self.chat_id, text, thread_id=topic_id, parse_mode="Markdown"),
        )
        if sent is not None:
            log.info("Sent call notification from %s", name)
        return sent is not None

    # -- contact / group side events ----------------------------------------------

    async def handle_profile_picture_updates(self, contacts: Iterable[WaContact]) -> int:
        if not self.settings.feature("profilePicSync"):
            return 0
        posted = 0
        for contact in contacts:
            if not contact.img_url:
                continue
            topic_id = self.topics.resolve(contact.id)
            if topic_id is None:
                continue
            if await self.topics.send_profile_picture(topic_id, contact.id, is_update=True):
                posted += 1
        return posted

    async def handle_group_updates(self, updates: Iterable[WaGroupUpdate]) -> int:
        renamed = 0
        for update in updates:
            if not update.subject:
                continue
            if await self.topics.rename_topic(update.id, update.subject):
                log.info("Updated group topic name: %s", update.subject)
                renamed += 1
        return renamed
