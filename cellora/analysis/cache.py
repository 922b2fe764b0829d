"""Extraction result cache.

Re-analysing the same page image with the same schema version and model
yields a cache hit.  The cache is injected into the extractor; there is no
module-level instance.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict

logger = logging.getLogger("cellora.analysis.cache")


def extraction_fingerprint(image_bytes: bytes, schema_version: str, model: str) -> str:
    """SHA-256 over the page bytes, schema version and model name."""
    digest = hashlib.sha256()
    digest.update(image_bytes)
    digest.update(b"\x00")
    digest.update(schema_version.encode())
    digest.update(b"\x00")
    digest.update(model.encode())
    return digest.hexdigest()


class ExtractionCache(ABC):
    """Stores validated raw extraction responses by fingerprint."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the cached response text, or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a response text."""


class InMemoryExtractionCache(ExtractionCache):
    """Bounded LRU cache for tests and single-process deployments."""

    def __init__(self, max_entries: int = 512) -> None:
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._max_entries = max_entries
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> str | None:
        value = self._entries.get(key)
        if value is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    async def set(self, key: str, value: str) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted extraction cache entry %s…", evicted[:12])

    def __len__(self) -> int:
        return len(self._entries)


class NullExtractionCache(ExtractionCache):
    """Cache that never stores anything."""

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str) -> None:
        return None
