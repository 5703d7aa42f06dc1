"""
civic_answers/core/logs.py

Single-line JSON logging shared by every core module.

Each module binds its own helper:

    jlog = make_jlog("core.embedder")
    jlog({"event": "embed_fallback", "text_len": 42})

Every record is stamped with `ts` (UTC, seconds) and `svc`. Levels travel in a
`level` field (WARN / ERROR / CRITICAL); informational events omit it.
"""

from __future__ import annotations
import sys
import json
import logging
import datetime
from typing import Any, Callable, Dict

logging.basicConfig(stream=sys.stdout, level=logging.INFO, format="%(message)s")


def make_jlog(svc: str) -> Callable[[Dict[str, Any]], None]:
    log = logging.getLogger(svc)

    def jlog(obj: Dict[str, Any]) -> None:
        base = {
            "ts": datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "svc": svc,
        }
        base.update(obj)
        try:
            log.info(json.dumps(base, sort_keys=True, default=str, ensure_ascii=False))
        except (TypeError, ValueError):
            log.info(str(base))

    return jlog
