"""
fleet_trust.authz.cache

Pluggable cache for resolved permission sets.

Responsibilities:
- Define the cache interface used by `PermissionResolver`.
- Provide a thread-safe in-process implementation.
"""

from __future__ import annotations

import threading
from typing import Protocol

from fleet_trust.authz.models import EffectivePermissionSet


class PermissionCache(Protocol):
    def get(self, principal_id: str) -> EffectivePermissionSet | None: ...

    def put(self, permissions: EffectivePermissionSet) -> None: ...

    def invalidate(self, principal_id: str | None = None) -> None: ...


class InMemoryPermissionCache:
    """
    Read-mostly map of principal id -> immutable permission set.

    Entries are swapped whole under a lock, so a reader sees either the previous or
    the new set. A put carrying an older assignments version than the stored entry is
    dropped, which keeps a slow recompute from clobbering a newer one.
    """

    def __init__(self, *, max_entries: int = 10_000) -> None:
        self._entries: dict[str, EffectivePermissionSet] = {}
        self._max_entries = max_entries
        self._lock = threading.Lock()

    def get(self, principal_id: str) -> EffectivePermissionSet | None:
        with self._lock:
            return self._entries.get(principal_id)

    def put(self, permissions: EffectivePermissionSet) -> None:
        with self._lock:
            current = self._entries.get(permissions.principal_id)
            if current is not None and current.version > permissions.version:
                return
            self._entries.pop(permissions.principal_id, None)
            self._entries[permissions.principal_id] = permissions
            while len(self._entries) > self._max_entries:
                # dicts keep insertion order; the first key is the least recently stored.
                self._entries.pop(next(iter(self._entries)))

    def invalidate(self, principal_id: str | None = None) -> None:
        with self._lock:
            if principal_id is None:
                self._entries.clear()
            else:
                self._entries.pop(principal_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# --- Module Notes -----------------------------------------------------------
# Caching is an optimization only. A shared cache (e.g. Redis) can implement the
# same three methods; correctness never depends on a hit.
