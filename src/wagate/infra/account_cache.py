"""In-process cache of resolved accounts, keyed by provider phone_id.

Webhooks arrive per phone number in bursts, so resolving credentials from
Postgres on every delivery is avoided. There is no TTL: entries live until
an account mutation invalidates them.
"""

from __future__ import annotations

import threading
from typing import Protocol

from wagate.domain.models import Account


class AccountCache(Protocol):
    """Cache contract used by the account resolver.

    ``generation(phone_id)`` changes on every invalidation of that key. A
    populate carrying an older generation is dropped, so a store read that
    raced a credential rotation cannot re-insert the old credentials.
    """

    def get(self, phone_id: str) -> Account | None: ...

    def generation(self, phone_id: str) -> int: ...

    def set(self, phone_id: str, account: Account, generation: int | None = None) -> bool: ...

    def invalidate(self, *phone_ids: str) -> None: ...


class InMemoryAccountCache:
    """Dict-backed cache.

    Reads take no lock (a dict lookup is atomic under the GIL). Populates
    and invalidations are serialized.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Account] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, phone_id: str) -> Account | None:
        return self._entries.get(phone_id)

    def generation(self, phone_id: str) -> int:
        return self._generations.get(phone_id, 0)

    def set(self, phone_id: str, account: Account, generation: int | None = None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generations.get(phone_id, 0):
                return False
            self._entries[phone_id] = account
            return True

    def invalidate(self, *phone_ids: str) -> None:
        with self._lock:
            for phone_id in phone_ids:
                if not phone_id:
                    continue
                self._entries.pop(phone_id, None)
                self._generations[phone_id] = self._generations.get(phone_id, 0) + 1


class NullAccountCache:
    """Cache that never holds anything (every resolve hits the store)."""

    def get(self, phone_id: str) -> Account | None:
        return None

    def generation(self, phone_id: str) -> int:
        return 0

    def set(self, phone_id: str, account: Account, generation: int | None = None) -> bool:
        return False

    def invalidate(self, *phone_ids: str) -> None:
        pass
