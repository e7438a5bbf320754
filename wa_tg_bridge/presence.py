"""
Presence and read receipt coordinator.

- presence updates are throttled per chat; "composing" reverts to "paused"
  after a few quiet seconds
- read receipts are collected per chat and flushed in one call
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Set

import httpx

from .schemas import WaMessageKey
from .whatsapp_api import WhatsAppGateway, WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.presence")


class PresenceCoordinator:
    def __init__(
        self,
        settings,
        whatsapp: WhatsAppGateway,
        clock: Callable[[], float] = time.monotonic,
        throttle: float = 1.0,
        pause_after: float = 3.0,
        batch_window: float = 2.0,
        mark_read_delay: float = 1.0,
    ):
        self.settings = settings
        self.whatsapp = whatsapp
        self.clock = clock
        self.throttle = throttle
        self.pause_after = pause_after
        self.batch_window = batch_window
        self.mark_read_delay = mark_read_delay

        self._last_sent: Dict[str, float] = {}
        self._pause_tasks: Dict[str, asyncio.Task] = {}
        self._read_queue: Dict[str, List[WaMessageKey]] = {}
        self._flush_tasks: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- presence -----------------------------------------------------------------

    async def send_presence(self, jid: str, presence: str = "available") -> bool:
        if not self.settings.feature("presenceUpdates"):
            return False
        now = self.clock()
        last = self._last_sent.get(jid)
        if last is not None and now - last < self.throttle:
            return False
        self._last_sent[jid] = now
        try:
            await self.whatsapp.send_presence_update(presence, jid)
        except (WhatsAppGatewayError, httpx.HTTPError) as e:
            log.debug("Failed to send presence %s to %s: %s", presence, jid, e)
            return False
        log.debug("Sent presence %s to %s", presence, jid)
        return True

    async def typing(self, jid: str) -> None:
        """Show "composing" in `jid` and schedule the revert to "paused"."""
        if not self.settings.feature("presenceUpdates"):
            return
        await self.send_presence(jid, "composing")

        previous = self._pause_tasks.pop(jid, None)
        if previous is not None:
            previous.cancel()
        self._pause_tasks[jid] = self._spawn(self._pause_later(jid))

    async def _pause_later(self, jid: str) -> None:
        await asyncio.sleep(self.pause_after)
        self._pause_tasks.pop(jid, None)
        await self.send_presence(jid, "paused")

    # -- read receipts ------------------------------------------------------------

    def queue_read_receipt(self, jid: str, key: WaMessageKey) -> None:
        if not self.settings.feature("readReceipts"):
            return
        self._read_queue.setdefault(jid, []).append(key)
        if jid not in self._flush_tasks:
            self._flush_tasks[jid] = self._spawn(self._flush_later(jid))

    async def _flush_later(self, jid: str) -> None:
        await asyncio.sleep(self.batch_window)
        self._flush_tasks.pop(jid, None)
        await self.flush(jid)

    async def flush(self, jid: str) -> int:
        keys = self._read_queue.pop(jid, [])
        if not keys:
            return 0
        try:
            await self.whatsapp.read_messages(keys)
        except (WhatsAppGatewayError, httpx.HTTPError) as e:
            log.debug("Failed to send read receipts for %s: %s", jid, e)
            return 0
        log.debug("Marked %d messages as read in %s", len(keys), jid)
        return len(keys)

    def mark_read(self, jid: str, keys: List[WaMessageKey], delay: Optional[float] = None) -> None:
        """Mark messages we just sent as read, after a short delay."""
        if not keys or not self.settings.feature("readReceipts"):
            return
        self._spawn(self._mark_read_later(jid, list(keys), self.mark_read_delay if delay is None else delay))

    async def _mark_read_later(self, jid: str, keys: List[WaMessageKey], delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        try:
            await self.whatsapp.read_messages(keys)
        except (WhatsAppGatewayError, httpx.HTTPError) as e:
            log.debug("Failed to mark sent messages read in %s: %s", jid, e)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pause_tasks.clear()
        self._flush_tasks.clear()
        self._read_queue.clear()
