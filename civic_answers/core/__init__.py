"""
Core answering package for civic-answers.

This package contains the authoritative business logic for answering:
- query.py      : orchestration, deadline, result assembly, audit
- embedder.py   : embeddings (provider + deterministic fallback) and cache
- retriever.py  : cosine ranking over the indexed corpus (in-memory / Postgres)
- language.py   : detection and translation around the English pivot
- generator.py  : prompt, provider call, post-processing, canned fallbacks

Design invariants:
- No channel-specific logic lives here.
- All functions are callable locally and in AWS Lambda without modification.
- Imports are absolute from the civic_answers/ root.
"""

__all__ = [
    "query",
    "embedder",
    "retriever",
    "language",
    "generator",
]
