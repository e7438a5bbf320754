"""
Per-key in-flight leases.

A lease marks a key (a WhatsApp participant) as busy. While a lease is held,
`try_acquire` for the same key fails and the caller drops its event. Leases
expire on their own after `hold` seconds so a crashed handler can never wedge
a sender. With a nonzero `linger`, `release` keeps the key blocked a little
longer; the default frees it immediately.
"""

import time
from typing import Callable, Dict, Optional

Clock = Callable[[], float]


class LeaseGuard:
    def __init__(self, hold: float = 30.0, linger: float = 0.0, clock: Optional[Clock] = None):
        self.hold = hold
        self.linger = linger
        self.clock = clock or time.monotonic
        self._expiry: Dict[str, float] = {}

    def is_held(self, key: str) -> bool:
        expiry = self._expiry.get(key)
        if expiry is None:
            return False
        if expiry <= self.clock():
            del self._expiry[key]
            return False
        return True

    def try_acquire(self, key: str) -> bool:
        if self.is_held(key):
            return False
        self._expiry[key] = self.clock() + self.hold
        return True

    def release(self, key: str, linger: Optional[float] = None) -> None:
        """Shorten the lease to expire `linger` seconds from now."""
        if key not in self._expiry:
            return
        linger = self.linger if linger is None else linger
        if linger <= 0:
            del self._expiry[key]
        else:
            self._expiry[key] = self.clock() + linger

    def __len__(self) -> int:
        return len(self._expiry)
