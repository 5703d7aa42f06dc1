"""
civic_answers/core/config.py

Environment knobs for the answering pipeline, read and validated once at import.

Assumptions & invariants (fail-fast at import):
* Numeric knobs must parse; a bad value logs CRITICAL `invalid_env` and exits.
* Nothing here is required at import. AWS_REGION is checked when the first
  Bedrock client is built; PG_HOST decides whether the default pipeline reads
  the corpus from Postgres.
* PG_PAGES_TABLE must match ^[A-Za-z0-9_]+$ (it is interpolated into SQL).

Components take these values as constructor defaults; explicit arguments win.
"""

from __future__ import annotations
import os
import re
from typing import Optional

from civic_answers.core.logs import make_jlog

jlog = make_jlog("core.config")


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if v is not None else default


def _env_int(key: str, default: str, minimum: int = 0) -> int:
    raw = _env(key, default)
    try:
        val = int(raw)
    except (TypeError, ValueError):
        jlog({"level": "CRITICAL", "event": "invalid_env", "key": key, "value": raw, "hint": f"{key} must be an integer"})
        raise SystemExit(11)
    if val < minimum:
        jlog({"level": "CRITICAL", "event": "invalid_env", "key": key, "value": raw, "hint": f"{key} must be >= {minimum}"})
        raise SystemExit(11)
    return val


def _env_float(key: str, default: str, minimum: float = 0.0) -> float:
    raw = _env(key, default)
    try:
        val = float(raw)
    except (TypeError, ValueError):
        jlog({"level": "CRITICAL", "event": "invalid_env", "key": key, "value": raw, "hint": f"{key} must be a number"})
        raise SystemExit(12)
    if val < minimum:
        jlog({"level": "CRITICAL", "event": "invalid_env", "key": key, "value": raw, "hint": f"{key} must be >= {minimum}"})
        raise SystemExit(12)
    return val


AWS_REGION = _env("AWS_REGION")

# Embeddings
EMBED_MODEL_ID = _env("EMBED_MODEL_ID", "amazon.titan-embed-text-v2:0")
EMBED_DIM = _env_int("EMBED_DIM", "1024", minimum=1)
EMBED_TIMEOUT_SEC = _env_float("EMBED_TIMEOUT_SEC", "10")
EMBED_CACHE_MAX_ENTRIES = _env_int("EMBED_CACHE_MAX_ENTRIES", "10000")
EMBED_CACHE_TTL_SEC = _env_float("EMBED_CACHE_TTL_SEC", "0")

# Generation / translation
TEXT_MODEL_ID = _env("TEXT_MODEL_ID", "amazon.titan-text-express-v1")
GEN_TIMEOUT_SEC = _env_float("GEN_TIMEOUT_SEC", "15")
GEN_MAX_TOKENS = _env_int("GEN_MAX_TOKENS", "150", minimum=1)
GEN_TEMPERATURE = _env_float("GEN_TEMPERATURE", "0.7")
GEN_TOP_P = _env_float("GEN_TOP_P", "0.9")
GEN_CONTEXT_TITLES = _env_int("GEN_CONTEXT_TITLES", "2")
TRANSLATE_TIMEOUT_SEC = _env_float("TRANSLATE_TIMEOUT_SEC", "10")
TRANSLATE_MAX_TOKENS = _env_int("TRANSLATE_MAX_TOKENS", "400", minimum=1)

# Orchestration
PIPELINE_DEADLINE_SEC = _env_float("PIPELINE_DEADLINE_SEC", "30")
PIPELINE_MAX_WORKERS = _env_int("PIPELINE_MAX_WORKERS", "8", minimum=1)
TOP_K = _env_int("TOP_K", "5", minimum=1)
PIVOT_LANGUAGE = (_env("PIVOT_LANGUAGE", "en") or "en").strip().lower()
SERVICE_DESK_PHONE = _env("SERVICE_DESK_PHONE", "311 at (901) 636-6500")

# Corpus (Postgres)
PG_HOST = _env("PG_HOST")
PG_PORT = _env_int("PG_PORT", "5432", minimum=1)
PG_USER = _env("PG_USER", "postgres")
PG_PASSWORD = _env("PG_PASSWORD")
PG_DB = _env("PG_DB", "postgres")
PG_PAGES_TABLE = _env("PG_PAGES_TABLE", "pages")

TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
if not TABLE_NAME_RE.match(PG_PAGES_TABLE):
    jlog({"level": "CRITICAL", "event": "invalid_table_name", "value": PG_PAGES_TABLE, "hint": "PG_PAGES_TABLE must match ^[A-Za-z0-9_]+$"})
    raise SystemExit(14)

# Audit sink (optional)
AUDIT_S3_BUCKET = _env("AUDIT_S3_BUCKET")
AUDIT_S3_PREFIX = _env("AUDIT_S3_PREFIX", "audits/")
AUDIT_S3_TIMEOUT_SEC = _env_float("AUDIT_S3_TIMEOUT_SEC", "5", minimum=1.0)
AUDIT_MAX_WORKERS = _env_int("AUDIT_MAX_WORKERS", "2", minimum=1)
