"""
Tests for the mapping store (SQLite via aiosqlite).
"""

import pytest
from sqlalchemy import select

from wa_tg_bridge.schemas import UserMapping
from wa_tg_bridge.store import BridgeRecord, MappingStore, StoreUnavailableError

JID = "15551234567@s.whatsapp.net"


class TestChats:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store):
        """Writing the same mapping twice leaves one row and one cache entry."""
        await store.upsert_chat(JID, 42)
        await store.upsert_chat(JID, 42)

        async with store._sessions() as session:
            rows = (await session.execute(select(BridgeRecord))).scalars().all()
        assert len(rows) == 1
        assert store.stats()["chats"] == 1

    @pytest.mark.asyncio
    async def test_same_topic_keeps_created_at(self, store):
        first = await store.upsert_chat(JID, 42)
        second = await store.upsert_chat(JID, 42)
        assert second.created_at == first.created_at
        assert second.last_activity >= first.last_activity

        moved = await store.upsert_chat(JID, 43)
        assert moved.telegram_topic_id == 43
        assert moved.created_at >= first.created_at

    @pytest.mark.asyncio
    async def test_mappings_survive_reload(self, store, tmp_path):
        await store.upsert_chat(JID, 42)
        await store.upsert_contact("15551234567", "Alice")
        await store.upsert_user(UserMapping(whatsapp_id=JID, phone="15551234567", name="Al"))

        reopened = MappingStore(store.database_url)
        await reopened.connect()
        try:
            cache = await reopened.load_all()
        finally:
            await reopened.close()

        assert cache.chats[JID].telegram_topic_id == 42
        assert cache.contact_name("15551234567") == "Alice"
        assert cache.users[JID].name == "Al"

    @pytest.mark.asyncio
    async def test_delete_chat(self, store):
        await store.upsert_chat(JID, 42)
        await store.delete_chat(JID)
        assert JID not in store.cache.chats

        cache = await store.load_all()
        assert JID not in cache.chats

    @pytest.mark.asyncio
    async def test_touch_chat_ignores_unknown(self, store):
        await store.touch_chat("nobody@s.whatsapp.net")
        assert store.stats()["chats"] == 0

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, store):
        async with store._sessions() as session, session.begin():
            session.add(BridgeRecord(kind="chat", key="broken", data={"nope": 1}))
        await store.upsert_chat(JID, 42)

        cache = await store.load_all()
        assert list(cache.chats) == [JID]


class TestCacheFirst:
    @pytest.mark.asyncio
    async def test_failed_write_still_updates_cache(self, store):
        """A dead database loses durability, not the in-memory view."""
        async with store.engine.begin() as conn:
            await conn.run_sync(BridgeRecord.__table__.drop)

        assert await store._write("contact", "1", {"phone": "1", "name": "x"}) is False
        await store.upsert_contact("15551234567", "Alice")
        assert store.cache.contact_name("15551234567") == "Alice"


class TestConnect:
    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True

    @pytest.mark.asyncio
    async def test_unreachable_database_is_fatal(self, tmp_path):
        missing = tmp_path / "no" / "such" / "dir" / "bridge.db"
        broken = MappingStore(f"sqlite+aiosqlite:///{missing}")
        with pytest.raises(StoreUnavailableError):
            await broken.connect()
        await broken.close()
