"""
Mapping store: durable chat/user/contact associations.

One table (`bridge`) holds every record as a JSON document keyed by
(kind, key). The in-memory `MappingCache` is built from `load_all()` and is
updated before each durable write, so readers always see their own writes
even when the database is slow or briefly unavailable.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, delete, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .schemas import ChatMapping, ContactMapping, UserMapping

log = logging.getLogger("wa-tg-bridge.store")

# JSONB on PostgreSQL, plain JSON on SQLite
JSONVariant = JSON().with_variant(JSONB(), "postgresql")

KIND_CHAT = "chat"
KIND_USER = "user"
KIND_CONTACT = "contact"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map = {
        dict[str, Any]: JSONVariant,
    }


class BridgeRecord(Base):
    __tablename__ = "bridge"
    __table_args__ = (UniqueConstraint("kind", "key", name="uq_bridge_kind_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class StoreUnavailableError(RuntimeError):
    """The database could not be reached or initialised."""


@dataclass
class MappingCache:
    """Read-through view of the store, rebuildable from `load_all()`."""

    chats: Dict[str, ChatMapping] = field(default_factory=dict)
    users: Dict[str, UserMapping] = field(default_factory=dict)
    contacts: Dict[str, ContactMapping] = field(default_factory=dict)

    def contact_name(self, phone: str) -> Optional[str]:
        contact = self.contacts.get(phone)
        return contact.name if contact else None


_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class MappingStore:
    def __init__(self, database_url: str, engine: Optional[AsyncEngine] = None):
        self.database_url = database_url
        self.engine = engine
        self._sessions: Optional[async_sessionmaker] = None
        self.cache = MappingCache()

    async def connect(self) -> None:
        """
        Create the engine and schema, then ping.

        Raises StoreUnavailableError; the caller treats that as fatal.
        """
        try:
            if self.engine is None:
                self.engine = create_async_engine(self.database_url, future=True)
            if self.engine.dialect.name not in _INSERTS:
                raise StoreUnavailableError(
                    f"unsupported database dialect: {self.engine.dialect.name}"
                )
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"cannot open mapping store: {e}") from e

        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)
        if not await self.ping():
            raise StoreUnavailableError("mapping store did not answer ping")
        log.info("Mapping store ready (%s)", self.engine.dialect.name)

    async def ping(self) -> bool:
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            log.error("Store ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            log.info("Mapping store closed")

    # -- bulk load ----------------------------------------------------------------

    async def load_all(self) -> MappingCache:
        cache = MappingCache()
        async with self._sessions() as session:
            rows = (await session.execute(select(BridgeRecord))).scalars().all()

        for row in rows:
            try:
                if row.kind == KIND_CHAT:
                    cache.chats[row.key] = ChatMapping.model_validate(row.data)
                elif row.kind == KIND_USER:
                    cache.users[row.key] = UserMapping.model_validate(row.data)
                elif row.kind == KIND_CONTACT:
                    cache.contacts[row.key] = ContactMapping.model_validate(row.data)
                else:
                    log.warning("Ignoring record of unknown kind %r", row.kind)
            except ValueError as e:
                log.warning("Skipping malformed %s record %s: %s", row.kind, row.key, e)

        self.cache = cache
        log.info(
            "Loaded %d chats, %d users, %d contacts",
            len(cache.chats),
            len(cache.users),
            len(cache.contacts),
        )
        return cache

    # -- writes -------------------------------------------------------------------

    async def _write(self, kind: str, key: str, data: Dict[str, Any]) -> bool:
        insert = _INSERTS[self.engine.dialect.name]
        stmt = insert(BridgeRecord).values(kind=kind, key=key, data=data, updated_at=utc_now())
        stmt = stmt.on_conflict_do_update(
            index_elements=["kind", "key"],
            set_={"data": stmt.excluded.data, "updated_at": stmt.excluded.updated_at},
        )
        try:
            async with self._sessions() as session, session.begin():
                await session.execute(stmt)
            return True
        except SQLAlchemyError as e:
            # cache already holds the value; no retry
            log.error("Failed to persist %s %s: %s", kind, key, e)
            return False

    async def upsert_chat(self, jid: str, topic_id: int) -> ChatMapping:
        now = utc_now()
        current = self.cache.chats.get(jid)
        created_at = (
            current.created_at
            if current is not None and current.telegram_topic_id == topic_id
            else now
        )
        mapping = ChatMapping(
            whatsapp_jid=jid,
            telegram_topic_id=topic_id,
            created_at=created_at,
            last_activity=now,
        )
        self.cache.chats[jid] = mapping
        await self._write(KIND_CHAT, jid, mapping.model_dump(mode="json"))
        return mapping

    async def touch_chat(self, jid: str) -> None:
        current = self.cache.chats.get(jid)
        if current is None:
            return
        mapping = current.model_copy(update={"last_activity": utc_now()})
        self.cache.chats[jid] = mapping
        await self._write(KIND_CHAT, jid, mapping.model_dump(mode="json"))

    async def upsert_user(self, user: UserMapping) -> UserMapping:
        self.cache.users[user.whatsapp_id] = user
        await self._write(KIND_USER, user.whatsapp_id, user.model_dump(mode="json"))
        return user

    async def upsert_contact(self, phone: str, name: str) -> ContactMapping:
        contact = ContactMapping(phone=phone, name=name, updated_at=utc_now())
        self.cache.contacts[phone] = contact
        await self._write(KIND_CONTACT, phone, contact.model_dump(mode="json"))
        return contact

    async def delete_chat(self, jid: str) -> None:
        self.cache.chats.pop(jid, None)
        try:
            async with self._sessions() as session, session.begin():
                await session.execute(
                    delete(BridgeRecord).where(
                        BridgeRecord.kind == KIND_CHAT, BridgeRecord.key == jid
                    )
                )
        except SQLAlchemyError as e:
            log.error("Failed to delete chat mapping %s: %s", jid, e)

    def stats(self) -> Dict[str, int]:
        return {
            "chats": len(self.cache.chats),
            "users": len(self.cache.users),
            "contacts": len(self.cache.contacts),
        }
