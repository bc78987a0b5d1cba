"""
xetpl Memory Cache
==================

In-process LRU backend for compiled templates.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from xetpl.cache.base import CacheBackend, CacheEntry


class MemoryCacheBackend(CacheBackend):
    """
    LRU cache of compiled templates.

    Example:
        cache = MemoryCacheBackend(max_size=200)
        cache.put("template:/app/tpl/list.html", source)
        cache.get("template:/app/tpl/list.html", min_freshness=mtime)
    """

    name = "memory"

    def __init__(self, max_size: int = 100) -> None:
        self.max_size = max_size
        self._entries: Dict[str, CacheEntry] = {}
        self._access_order: List[str] = []
        self._lock = threading.Lock()

    def supports(self) -> bool:
        return self.max_size > 0

    def get(self, key: str, min_freshness: float = 0.0) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_fresh(min_freshness):
                return None
            self._access_order.remove(key)
            self._access_order.append(key)
            return entry.payload

    def put(self, key: str, payload: str) -> None:
        with self._lock:
            if key in self._entries:
                self._access_order.remove(key)
            elif len(self._entries) >= self.max_size:
                # Evict least recently used
                oldest = self._access_order.pop(0)
                del self._entries[oldest]

            self._entries[key] = CacheEntry(key=key, payload=payload)
            self._access_order.append(key)

    def entry(self, key: str) -> Optional[CacheEntry]:
        """The stored entry, without touching its LRU position."""
        with self._lock:
            return self._entries.get(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._access_order.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
