"""
xetpl Cache
===========

Pluggable storage for compiled templates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from xetpl.cache.base import CacheBackend, CacheEntry, NullCacheBackend
from xetpl.cache.memory import MemoryCacheBackend

if TYPE_CHECKING:
    from xetpl.core.config import Config


def create_backend(config: Optional["Config"] = None) -> CacheBackend:
    """
    Build the backend named by ``cache.backend``.

    ``file`` (the default) selects compiled files on disk; ``memory`` an
    in-process LRU sized by ``cache.max_size``.
    """
    if config is None:
        return NullCacheBackend()

    backend = config.get("cache.backend", "file")
    if backend == "memory":
        return MemoryCacheBackend(max_size=config.get_int("cache.max_size", 100))
    if backend == "file":
        return NullCacheBackend()
    raise ValueError(f"Unknown cache backend: {backend!r}")


__all__ = [
    "CacheBackend",
    "CacheEntry",
    "MemoryCacheBackend",
    "NullCacheBackend",
    "create_backend",
]
