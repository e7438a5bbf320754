"""
Bridge: owns every component and routes events from both platforms.

    gateway event  -> handle_gateway_event  -> WhatsAppRelay / ContactDirectory
    telegram update -> handle_telegram_update -> TelegramRelay / CommandConsole

Also runs the periodic contact sync and topic sweep, and the getUpdates loop
when TELEGRAM_UPDATE_MODE=polling.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .commands import CommandConsole
from .contacts import ContactDirectory
from .media import MediaTransfer, Transcoder
from .message_parser import extract_message_entity, is_forum_topic_message
from .presence import PresenceCoordinator
from .relay_telegram import TelegramRelay
from .relay_whatsapp import WhatsAppRelay
from .schemas import (
    TelegramUpdate,
    WaCall,
    WaConnectionUpdate,
    WaContact,
    WaGatewayEvent,
    WaGroupUpdate,
    WaMessagesUpsert,
)
from .store import MappingStore
from .telegram_api import TelegramAPIError, TelegramBotAPI
from .topics import TopicManager
from .whatsapp_api import WhatsAppGateway, WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.bridge")

POLL_RETRY_SECONDS = 5.0


def _as_list(data: Any) -> List[Any]:
    if data is None:
        return []
    return data if isinstance(data, list) else [data]


class Bridge:
    def __init__(
        self,
        settings,
        store: MappingStore,
        telegram: Optional[TelegramBotAPI] = None,
        whatsapp: Optional[WhatsAppGateway] = None,
        transcoder: Optional[Transcoder] = None,
    ):
        self.settings = settings
        self.store = store
        self.telegram = telegram or TelegramBotAPI.from_settings(settings)
        self.whatsapp = whatsapp or WhatsAppGateway.from_settings(settings)

        self.media = MediaTransfer(settings.temp_dir, self.whatsapp, self.telegram, transcoder)
        self.topics = TopicManager(settings, self.telegram, self.whatsapp, store)
        self.contacts = ContactDirectory(settings, self.whatsapp, store, self.topics)
        self.presence = PresenceCoordinator(settings, self.whatsapp)
        self.whatsapp_relay = WhatsAppRelay(
            settings, self.telegram, store, self.topics, self.contacts, self.media, self.presence
        )
        self.telegram_relay = TelegramRelay(
            settings, self.telegram, self.whatsapp, self.topics, self.media, self.presence
        )
        self.console = CommandConsole(self)

        self.whatsapp_user: Optional[Dict[str, Any]] = None
        self.started = False
        self._tasks: List[asyncio.Task] = []

    @property
    def whatsapp_connected(self) -> bool:
        return self.whatsapp_user is not None

    # -- lifecycle ----------------------------------------------------------------

    async def start(self) -> None:
        if not self.settings.telegram_chat_id:
            log.warning("TELEGRAM_CHAT_ID is not set; topics cannot be created")

        await self.console.register_commands()
        await self.refresh_whatsapp_user()

        self._tasks.append(
            asyncio.create_task(
                self._periodic(self.settings.contact_sync_interval, self.contacts.sync, "contact sync")
            )
        )
        self._tasks.append(
            asyncio.create_task(
                self._periodic(self.settings.topic_verify_interval, self.topics.verify_all, "topic sweep")
            )
        )
        if self.settings.telegram_update_mode == "polling":
            self._tasks.append(asyncio.create_task(self.poll_telegram()))

        self.started = True
        log.info(
            "Bridge started (updates via %s, WhatsApp %s)",
            self.settings.telegram_update_mode,
            "connected" if self.whatsapp_connected else "not connected",
        )

    async def shutdown(self) -> None:
        log.info("Shutting down bridge")
        self.started = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.presence.close()
        try:
            self.media.empty_temp_dir()
            log.info("Temp directory cleaned")
        except OSError as e:
            log.debug("Could not clean temp directory: %s", e)
        await self.store.close()

    async def _periodic(self, interval: float, job: Callable[[], Awaitable[Any]], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self.whatsapp_connected:
                log.debug("WhatsApp not connected, skipping %s", name)
                continue
            try:
                await job()
            except Exception:
                log.exception("Periodic %s failed", name)

    async def refresh_whatsapp_user(self) -> None:
        try:
            self.whatsapp_user = await self.whatsapp.me()
        except (WhatsAppGatewayError, httpx.HTTPError) as e:
            log.debug("Gateway not reachable yet: %s", e)
            self.whatsapp_user = None

    # -- WhatsApp side ------------------------------------------------------------

    async def handle_gateway_event(self, event: WaGatewayEvent) -> None:
        name = event.event
        data = event.data

        if name == "connection.update":
            await self.handle_connection_update(WaConnectionUpdate.model_validate(data or {}))
        elif name == "messages.upsert":
            await self.whatsapp_relay.handle_messages(WaMessagesUpsert.model_validate(data or {}))
        elif name == "contacts.update":
            contacts = [WaContact.model_validate(item) for item in _as_list(data)]
            await self.contacts.handle_contacts_update(contacts)
            await self.whatsapp_relay.handle_profile_picture_updates(contacts)
        elif name == "contacts.upsert":
            contacts = [WaContact.model_validate(item) for item in _as_list(data)]
            await self.contacts.handle_contacts_upsert(contacts)
        elif name == "groups.update":
            updates = [WaGroupUpdate.model_validate(item) for item in _as_list(data)]
            await self.whatsapp_relay.handle_group_updates(updates)
        elif name == "call":
            calls = [WaCall.model_validate(item) for item in _as_list(data)]
            await self.whatsapp_relay.handle_calls(calls)
        elif name == "presence.update":
            log.debug("Presence update: %s", data)
        else:
            log.debug("Ignoring gateway event %s", name)

    async def handle_connection_update(self, update: WaConnectionUpdate) -> None:
        if update.qr:
            log.info("WhatsApp gateway is waiting for a QR scan")
        if update.connection == "open":
            await self.on_connection_open()
        elif update.connection == "close":
            log.warning("WhatsApp connection closed")
            self.whatsapp_user = None

    async def on_connection_open(self) -> None:
        await self.refresh_whatsapp_user()
        if self.whatsapp_user is None:
            self.whatsapp_user = {}
        user_id = self.whatsapp_user.get("id", "unknown")
        log.info("Connected to WhatsApp as %s", user_id)

        await self.contacts.sync()
        await self.topics.verify_all()
        await self.log_to_telegram(
            "WhatsApp Connected",
            f"📱 WhatsApp: Connected ({user_id})\n"
            "🔗 Telegram Bridge: Active\n"
            f"📞 Contacts: {self.store.stats()['contacts']} synced\n"
            "🚀 Ready to bridge messages!",
        )

    # -- Telegram side ------------------------------------------------------------

    async def handle_telegram_update(self, update: TelegramUpdate) -> None:
        msg = extract_message_entity(update)
        if msg is None:
            log.debug("Update %s has no message, ignoring", update.update_id)
            return

        if msg.chat.type == "private":
            await self.console.handle(msg)
        elif is_forum_topic_message(msg):
            if self.settings.telegram_chat_id and msg.chat.id != self.settings.telegram_chat_id:
                log.info("Ignoring topic message from foreign chat %s", msg.chat.id)
                return
            await self.telegram_relay.handle_message(msg)
        else:
            log.debug("Ignoring message from chat type %s", msg.chat.type)

    async def poll_telegram(self) -> None:
        """getUpdates loop for deployments without a public webhook URL."""
        offset = 0
        log.info("Polling Telegram for updates")
        while True:
            try:
                updates = await self.telegram.get_updates(offset=offset)
            except (TelegramAPIError, httpx.HTTPError) as e:
                log.error("Telegram polling error: %s", e)
                await asyncio.sleep(POLL_RETRY_SECONDS)
                continue

            for update in updates:
                offset = update.update_id + 1
                try:
                    await self.handle_telegram_update(update)
                except Exception:
                    log.exception("Error while handling Telegram update %s", update.update_id)

    async def log_to_telegram(self, title: str, message: str) -> None:
        channel = self.settings.telegram_log_channel
        if not channel:
            log.debug("Telegram log channel not configured")
            return
        text = f"🤖 *{title}*\n\n{message}\n\n⏰ {datetime.now():%Y-%m-%d %H:%M:%S}"
        try:
            await self.telegram.send_message(channel, text, parse_mode="Markdown")
        except (TelegramAPIError, httpx.HTTPError, RuntimeError) as e:
            log.debug("Could not send log to Telegram: %s", e)
