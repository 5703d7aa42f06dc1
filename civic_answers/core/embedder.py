"""
civic_answers/core/embedder.py

Text -> fixed-length embedding vector.

Primary:  external embedding provider (Bedrock Titan by default), bounded timeout.
Fallback: deterministic hash embedding of the same dimensionality.

Invariants:
* embed() never fails outward for provider problems: timeouts, errors and
  malformed payloads all produce the fallback vector.
* Provider-sourced and fallback vectors are cached the same way, so repeated
  failures for one text do not recompute.
* The fallback uses SHA-256 token hashes, so it is identical across processes.
* The only exception embed() raises is PipelineTimeout, when the request
  deadline is already gone.
"""

from __future__ import annotations
import hashlib
import math
import time
from typing import List, Optional

from civic_answers.core import config
from civic_answers.core.cache import EmbeddingCache
from civic_answers.core.deadline import Deadline, clip_timeout
from civic_answers.core.errors import ProviderUnavailable
from civic_answers.core.logs import make_jlog

jlog = make_jlog("core.embedder")


def token_hash(token: str) -> int:
    digest = hashlib.sha256(token.encode("utf-8", errors="ignore")).digest()
    return int.from_bytes(digest[:8], "big")


def fallback_embedding(text: str, dim: int) -> List[float]:
    """Bag-of-hashed-tokens vector, L2-normalized (all zeros when there are no tokens)."""
    values = [0.0] * dim
    for token in (text or "").casefold().split():
        values[token_hash(token) % dim] += 1.0
    norm = math.sqrt(sum(v * v for v in values))
    if norm > 0:
        values = [v / norm for v in values]
    return values


class Embedder:
    def __init__(self, provider, cache: Optional[EmbeddingCache] = None, dim: Optional[int] = None, timeout_sec: Optional[float] = None):
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache()
        self.dim = dim or config.EMBED_DIM
        self.timeout_sec = config.EMBED_TIMEOUT_SEC if timeout_sec is None else float(timeout_sec)

    def _valid(self, vec) -> bool:
        if not isinstance(vec, list) or len(vec) != self.dim:
            return False
        return all(isinstance(x, (int, float)) and math.isfinite(x) for x in vec)

    def embed(self, text: str, deadline: Optional[Deadline] = None) -> List[float]:
        cached = self.cache.get(text)
        if cached is not None:
            return cached

        timeout = clip_timeout(deadline, "embed", self.timeout_sec)
        t0 = time.time()
        vec: Optional[List[float]] = None
        if self.provider is not None:
            try:
                vec = self.provider.embed(text, timeout)
            except ProviderUnavailable as e:
                jlog({"level": "WARN", "event": "embed_provider_unavailable", "detail": str(e), "text_len": len(text or "")})
                vec = None
            if vec is not None and not self._valid(vec):
                jlog({"level": "WARN", "event": "embed_malformed", "received_len": len(vec) if isinstance(vec, list) else None, "expected": self.dim})
                vec = None

        if vec is None:
            vec = fallback_embedding(text, self.dim)
            jlog({"level": "WARN", "event": "embed_fallback", "text_len": len(text or ""), "dim": self.dim})
        else:
            jlog({"event": "embed_ok", "ms": int((time.time() - t0) * 1000), "dim": self.dim})

        self.cache.put(text, vec)
        return vec
