"""
xetpl Cache Backends
====================

The contract the template handler stores compiled templates through.

A backend that reports ``supports() == False`` is skipped and the handler
falls back to compiled files on disk. Backend failures surface that way,
never as exceptions during a render.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CacheEntry:
    """
    A stored compiled template.

    Entries are replaced on recompilation, never mutated.

    Attributes:
        key: Cache key, ``template:<file>``
        payload: Compiled module source
        timestamp: When the entry was stored, in epoch seconds
    """
    key: str
    payload: str
    timestamp: float = field(default_factory=time.time)

    def is_fresh(self, min_freshness: float) -> bool:
        return min_freshness <= self.timestamp


class CacheBackend(ABC):
    """Key-value store for compiled templates."""

    name = "base"

    @abstractmethod
    def supports(self) -> bool:
        """Whether the backend is usable right now."""

    @abstractmethod
    def get(self, key: str, min_freshness: float = 0.0) -> Optional[str]:
        """
        Return the payload stored under ``key``.

        Args:
            key: Cache key
            min_freshness: Entries stored before this timestamp are stale

        Returns:
            The payload, or None if absent or stale
        """

    @abstractmethod
    def put(self, key: str, payload: str) -> None:
        """Store ``payload`` under ``key``, replacing any previous entry."""

    def clear(self) -> None:
        """Drop every entry."""


class NullCacheBackend(CacheBackend):
    """Backend that is never available, selecting the compiled-file fallback."""

    name = "file"

    def supports(self) -> bool:
        return False

    def get(self, key: str, min_freshness: float = 0.0) -> Optional[str]:
        return None

    def put(self, key: str, payload: str) -> None:
        return None
