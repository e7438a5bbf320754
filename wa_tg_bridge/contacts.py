"""
Contact directory: phone number -> human display name.

Names arrive from several places (the gateway's address book, a fresh
contact fetch, chat list titles, live contact events). Every write site goes
through `accept_candidate`, which rejects junk names and unchanged values.
"""

import logging
from typing import Iterable, List, Optional, Tuple

import httpx

from .content import STATUS_JID
from .message_parser import format_phone, is_user_jid, phone_from_jid
from .schemas import WaContact
from .store import MappingStore
from .topics import TopicManager
from .whatsapp_api import WhatsAppGateway, WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.contacts")

# ValueError covers malformed payloads (pydantic ValidationError, bad JSON)
_GATEWAY_ERRORS = (WhatsAppGatewayError, httpx.HTTPError, ValueError)


def is_valid_name(phone: str, name: Optional[str]) -> bool:
    """A usable display name: not the number itself, no leading '+', > 2 chars."""
    if not name:
        return False
    name = name.strip()
    return name != phone and not name.startswith("+") and len(name) > 2


def best_contact_name(phone: str, contact: WaContact) -> Optional[str]:
    for candidate in (contact.name, contact.notify, contact.verified_name):
        if is_valid_name(phone, candidate):
            return candidate.strip()
    return None


class ContactDirectory:
    def __init__(
        self,
        settings,
        whatsapp: WhatsAppGateway,
        store: MappingStore,
        topics: TopicManager,
    ):
        self.settings = settings
        self.whatsapp = whatsapp
        self.store = store
        self.topics = topics

    def display_name(self, phone: str) -> Optional[str]:
        return self.store.cache.contact_name(phone)

    def label(self, phone: str) -> str:
        """Display name, or the bare phone number when none is known."""
        return self.display_name(phone) or phone

    async def accept_candidate(self, phone: str, raw_name: Optional[str]) -> bool:
        """Store `raw_name` for `phone` if it is valid and differs from what we have."""
        if not phone or not is_valid_name(phone, raw_name):
            return False
        name = raw_name.strip()
        if self.display_name(phone) == name:
            return False
        await self.store.upsert_contact(phone, name)
        log.debug("Contact %s -> %s", phone, name)
        return True

    async def sync(self) -> int:
        """
        Pull names from every discovery signal.

        Each signal is isolated: one failing does not stop the others.
        Renames individual chat topics when anything changed.
        """
        log.info("Syncing contacts from WhatsApp")
        changed = 0

        try:
            for contact in await self.whatsapp.contacts():
                if not contact.id or contact.id == STATUS_JID:
                    continue
                phone = phone_from_jid(contact.id)
                if await self.accept_candidate(phone, best_contact_name(phone, contact)):
                    changed += 1
        except _GATEWAY_ERRORS as e:
            log.warning("Address book snapshot failed: %s", e)

        try:
            for contact in await self.whatsapp.fetch_contacts():
                if not contact.id or contact.id == STATUS_JID:
                    continue
                phone = phone_from_jid(contact.id)
                name = contact.name or contact.notify or contact.verified_name
                if await self.accept_candidate(phone, name):
                    changed += 1
        except _GATEWAY_ERRORS as e:
            log.debug("Direct contact fetch failed: %s", e)

        try:
            for chat in await self.whatsapp.chats():
                if not is_user_jid(chat.id):
                    continue
                if await self.accept_candidate(phone_from_jid(chat.id), chat.name):
                    changed += 1
        except _GATEWAY_ERRORS as e:
            log.debug("Chat list sync failed: %s", e)

        log.info(
            "Synced %d new/updated contacts (total %d)", changed, len(self.store.cache.contacts)
        )
        if changed:
            await self.topics.update_topic_names()
        return changed

    async def handle_contacts_update(self, contacts: Iterable[WaContact]) -> int:
        if not self.settings.feature("autoUpdateContactNames"):
            return 0
        changed = 0
        for contact in contacts:
            if not contact.id or not contact.name:
                continue
            phone = phone_from_jid(contact.id)
            if not await self.accept_candidate(phone, contact.name):
                continue
            changed += 1
            log.info("Updated contact %s -> %s", phone, contact.name)
            if self.settings.feature("autoUpdateTopicNames"):
                await self.topics.rename_topic(contact.id, contact.name.strip())
        return changed

    async def handle_contacts_upsert(self, contacts: Iterable[WaContact]) -> int:
        """Learn names for phones we have never seen; never overwrite."""
        learned = 0
        for contact in contacts:
            if not contact.id or not contact.name:
                continue
            phone = phone_from_jid(contact.id)
            if phone in self.store.cache.contacts:
                continue
            if await self.accept_candidate(phone, contact.name):
                learned += 1
                log.info("New contact %s -> %s", phone, contact.name)
        return learned

    def search(self, query: str, limit: int = 20) -> List[Tuple[str, str]]:
        """Case-insensitive match on name or phone, as (phone, name) pairs."""
        needle = query.strip().lower()
        if not needle:
            return []
        hits = [
            (phone, contact.name)
            for phone, contact in self.store.cache.contacts.items()
            if needle in contact.name.lower() or needle in phone
        ]
        hits.sort(key=lambda item: item[1].lower())
        return hits[:limit]

    def listing(self, limit: int = 50) -> List[str]:
        entries = sorted(
            self.store.cache.contacts.values(), key=lambda c: c.name.lower()
        )
        return [f"📱 {c.name} ({format_phone(c.phone)})" for c in entries[:limit]]
