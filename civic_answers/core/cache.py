"""
civic_answers/core/cache.py

Embedding cache keyed by normalized text.

* Key: case-folded, whitespace-trimmed input text.
* Bounded LRU (max_entries, 0 = unbounded) with optional TTL (ttl_sec, 0 = never expires).
* Safe for concurrent get/put from many in-flight requests. Racing writers of the
  same key store the same vector (embeddings are a deterministic function of the
  text), so last-writer-wins is harmless.
* get() hands out a copy; callers cannot mutate a stored vector.
"""

from __future__ import annotations
import threading
import time
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from civic_answers.core import config


def normalize_key(text: str) -> str:
    return (text or "").strip().casefold()


class EmbeddingCache:
    def __init__(self, max_entries: Optional[int] = None, ttl_sec: Optional[float] = None, clock=time.monotonic):
        self.max_entries = config.EMBED_CACHE_MAX_ENTRIES if max_entries is None else int(max_entries)
        self.ttl_sec = config.EMBED_CACHE_TTL_SEC if ttl_sec is None else float(ttl_sec)
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[List[float], float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, text: str) -> Optional[List[float]]:
        key = normalize_key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            vector, inserted_at = entry
            if self.ttl_sec > 0 and self._clock() - inserted_at >= self.ttl_sec:
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return list(vector)

    def put(self, text: str, vector: Sequence[float]) -> None:
        key = normalize_key(text)
        with self._lock:
            self._entries[key] = (list(vector), self._clock())
            self._entries.move_to_end(key)
            if self.max_entries > 0:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
                    self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return self.get(text) is not None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
