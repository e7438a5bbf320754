"""
Topic manager: one Telegram forum topic per WhatsApp chat.

A chat moves UNMAPPED -> MAPPED on first traffic, MAPPED -> STALE when a
probe or a send reports the topic gone, and STALE -> UNMAPPED once the
mapping is deleted; the next event (or the sweep itself) maps it again.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import httpx

from .content import CALL_JID, STATUS_JID
from .message_parser import format_phone, is_group_jid, is_reserved_jid, is_user_jid, phone_from_jid
from .schemas import WaMessage, WaMessageKey
from .store import MappingStore
from .telegram_api import TelegramAPIError, TelegramBotAPI
from .whatsapp_api import WhatsAppGateway, WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.topics")

STATUS_TOPIC_NAME = "📊 Status Updates"
CALL_TOPIC_NAME = "📞 Call Logs"
GROUP_FALLBACK_NAME = "Group Chat"

COLOR_STATUS = 0xFF6B35
COLOR_CALLS = 0xFF4757
COLOR_GROUP = 0x6FB9F0
COLOR_CONTACT = 0x7ABA3C

_API_ERRORS = (TelegramAPIError, httpx.HTTPError)


class StatusIndex:
    """Telegram message id in the status topic -> key of the WhatsApp status."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._keys: "OrderedDict[int, WaMessageKey]" = OrderedDict()

    def remember(self, message_id: int, key: WaMessageKey) -> None:
        self._keys[message_id] = key
        self._keys.move_to_end(message_id)
        while len(self._keys) > self.max_size:
            self._keys.popitem(last=False)

    def lookup(self, message_id: int) -> Optional[WaMessageKey]:
        return self._keys.get(message_id)

    def __len__(self) -> int:
        return len(self._keys)


class TopicManager:
    def __init__(
        self,
        settings,
        telegram: TelegramBotAPI,
        whatsapp: WhatsAppGateway,
        store: MappingStore,
        clock: Callable[[], float] = time.monotonic,
        probe_delay: float = 0.1,
    ):
        self.settings = settings
        self.telegram = telegram
        self.whatsapp = whatsapp
        self.store = store
        self.clock = clock
        self.probe_delay = probe_delay
        self.status_index = StatusIndex()
        self._pending: Dict[str, "asyncio.Future[Optional[int]]"] = {}
        self._last_verify: Optional[float] = None

    @property
    def chat_id(self) -> int:
        return self.settings.telegram_chat_id

    # -- lookups ----------------------------------------------------------------

    def resolve(self, jid: str) -> Optional[int]:
        mapping = self.store.cache.chats.get(jid)
        return mapping.telegram_topic_id if mapping else None

    def find_jid_by_topic(self, topic_id: int) -> Optional[str]:
        for jid, mapping in self.store.cache.chats.items():
            if mapping.telegram_topic_id == topic_id:
                return jid
        return None

    def contact_display(self, phone: str) -> str:
        return self.store.cache.contact_name(phone) or format_phone(phone)

    async def topic_name_for(self, jid: str) -> str:
        if jid == STATUS_JID:
            return STATUS_TOPIC_NAME
        if jid == CALL_JID:
            return CALL_TOPIC_NAME
        if is_group_jid(jid):
            try:
                meta = await self.whatsapp.group_metadata(jid)
                return meta.subject or GROUP_FALLBACK_NAME
            except (WhatsAppGatewayError, httpx.HTTPError) as e:
                log.debug("Group metadata for %s unavailable: %s", jid, e)
                return GROUP_FALLBACK_NAME
        return self.contact_display(phone_from_jid(jid))

    @staticmethod
    def icon_color_for(jid: str) -> int:
        if jid == STATUS_JID:
            return COLOR_STATUS
        if jid == CALL_JID:
            return COLOR_CALLS
        if is_group_jid(jid):
            return COLOR_GROUP
        return COLOR_CONTACT

    # -- creation -----------------------------------------------------------------

    async def get_or_create(self, jid: str, message: Optional[WaMessage] = None) -> Optional[int]:
        """
        Topic for `jid`, creating it on first use.

        Concurrent callers for one jid share a single creation. When
        `message` is given, a freshly created topic also gets a welcome card.
        """
        topic_id = self.resolve(jid)
        if topic_id is not None:
            return topic_id

        pending = self._pending.get(jid)
        if pending is not None:
            return await asyncio.shield(pending)

        future: "asyncio.Future[Optional[int]]" = asyncio.get_running_loop().create_future()
        self._pending[jid] = future
        try:
            topic_id = await self._create(jid)
        finally:
            self._pending.pop(jid, None)
            if not future.done():
                future.set_result(self.resolve(jid))

        if topic_id is not None and message is not None and not is_reserved_jid(jid):
            if self.settings.feature_welcome_messages:
                await self.send_welcome(topic_id, jid, message)
        return topic_id

    async def _create(self, jid: str) -> Optional[int]:
        name = await self.topic_name_for(jid)

        # another path may have mapped it while we fetched metadata
        existing = self.resolve(jid)
        if existing is not None:
            return existing

        try:
            topic = await self.telegram.create_forum_topic(
                self.chat_id, name, icon_color=self.icon_color_for(jid)
            )
        except (*_API_ERRORS, RuntimeError) as e:
            log.error("Failed to create topic for %s: %s", jid, e)
            return None

        await self.store.upsert_chat(jid, topic.message_thread_id)
        log.info("Created topic %r (id=%s) for %s", name, topic.message_thread_id, jid)
        return topic.message_thread_id

    async def mark_stale(self, jid: str) -> None:
        log.warning("Topic for %s is gone; dropping mapping", jid)
        await self.store.delete_chat(jid)

    # -- verification -------------------------------------------------------------

    async def verify_all(self, force: bool = False) -> int:
        """
        Probe every mapped topic and recreate the ones Telegram reports missing.

        Runs at most once per `topic_verify_interval` unless `force` is set.
        Returns the number of topics recreated.
        """
        now = self.clock()
        interval = self.settings.topic_verify_interval
        if not force and self._last_verify is not None and now - self._last_verify < interval:
            log.debug("Topic verification skipped (cooldown)")
            return 0
        self._last_verify = now

        log.info("Verifying %d topics", len(self.store.cache.chats))
        recreated = 0
        for jid, mapping in list(self.store.cache.chats.items()):
            try:
                await self.telegram.send_chat_action(
                    self.chat_id, "typing", thread_id=mapping.telegram_topic_id
                )
            except TelegramAPIError as e:
                if e.topic_missing:
                    log.warning(
                        "Topic %s for %s was deleted, recreating", mapping.telegram_topic_id, jid
                    )
                    await self.store.delete_chat(jid)
                    if await self.get_or_create(jid) is not None:
                        recreated += 1
                else:
                    log.debug("Probe for %s failed: %s", jid, e)
            except (httpx.HTTPError, RuntimeError) as e:
                log.debug("Probe for %s failed: %s", jid, e)

            if self.probe_delay:
                await asyncio.sleep(self.probe_delay)

        if recreated:
            log.info("Recreated %d deleted topics", recreated)
        return recreated

    # -- naming -------------------------------------------------------------------

    async def rename_topic(self, jid: str, name: str) -> bool:
        topic_id = self.resolve(jid)
        if topic_id is None or not name:
            return False
        try:
            await self.telegram.edit_forum_topic(self.chat_id, topic_id, name)
        except (*_API_ERRORS, RuntimeError) as e:
            log.debug("Failed to rename topic %s for %s: %s", topic_id, jid, e)
            return False
        log.debug("Renamed topic for %s to %r", jid, name)
        return True

    async def update_topic_names(self) -> int:
        """Rename every individual chat topic after its current contact name."""
        renamed = 0
        for jid in list(self.store.cache.chats):
            if not is_user_jid(jid):
                continue
            if await self.rename_topic(jid, self.contact_display(phone_from_jid(jid))):
                renamed += 1
            if self.probe_delay:
                await asyncio.sleep(self.probe_delay)
        log.info("Updated %d topic names", renamed)
        return renamed

    # -- welcome card -------------------------------------------------------------

    async def send_welcome(self, topic_id: int, jid: str, message: WaMessage) -> None:
        try:
            if is_group_jid(jid):
                text = await self._group_card(jid)
            else:
                text = await self._contact_card(jid, message)
            sent = await self.telegram.send_message(
                self.chat_id, text, thread_id=topic_id, parse_mode="Markdown"
            )
            await self.telegram.pin_chat_message(self.chat_id, sent.message_id)
        except _API_ERRORS as e:
            log.error("Failed to send welcome message for %s: %s", jid, e)
            return
        await self.send_profile_picture(topic_id, jid)

    async def _group_card(self, jid: str) -> str:
        try:
            meta = await self.whatsapp.group_metadata(jid)
        except (WhatsAppGatewayError, httpx.HTTPError) as e:
            log.debug("Group metadata for %s unavailable: %s", jid, e)
            return "🏷️ *Group Chat*\n\n💬 Messages from this group will appear here"

        lines = [
            "🏷️ *Group Information*",
            "",
            f"📝 *Name:* {meta.subject}",
            f"👥 *Participants:* {len(meta.participants)}",
            f"🆔 *Group ID:* `{jid}`",
        ]
        if meta.creation:
            created = datetime.fromtimestamp(meta.creation, tz=timezone.utc)
            lines.append(f"📅 *Created:* {created:%Y-%m-%d}")
        lines += ["", "💬 Messages from this group will appear here"]
        return "\n".join(lines)

    async def _contact_card(self, jid: str, message: WaMessage) -> str:
        phone = phone_from_jid(jid)
        user = self.store.cache.users.get(message.participant_jid)
        handle = message.push_name or (user.name if user else None) or "Unknown"

        about = None
        try:
            about = await self.whatsapp.fetch_status(jid)
        except (WhatsAppGatewayError, httpx.HTTPError) as e:
            log.debug("Could not fetch about text for %s: %s", jid, e)

        lines = [
            "👤 *Contact Information*",
            "",
            f"📝 *Name:* {self.contact_display(phone)}",
            f"📱 *Phone:* {format_phone(phone)}",
            f"🖐️ *Handle:* {handle}",
        ]
        if about:
            lines.append(f"📝 *Status:* {about}")
        lines += [
            f"🆔 *WhatsApp ID:* `{jid}`",
            f"📅 *First Contact:* {datetime.now(timezone.utc):%Y-%m-%d}",
            "",
            "💬 Messages with this contact will appear here",
        ]
        return "\n".join(lines)

    async def send_profile_picture(self, topic_id: int, jid: str, is_update: bool = False) -> bool:
        if not self.settings.feature("profilePicSync"):
            return False
        try:
            url = await self.whatsapp.profile_picture_url(jid)
            if not url:
                return False
            caption = "📸 Profile picture updated" if is_update else "📸 Profile Picture"
            await self.telegram.send_photo(self.chat_id, url, thread_id=topic_id, caption=caption)
        except (*_API_ERRORS, WhatsAppGatewayError) as e:
            log.debug("Could not send profile picture for %s: %s", jid, e)
            return False
        return True
