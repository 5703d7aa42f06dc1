"""
civic_answers/core/audit.py

Optional per-request audit records in S3.

Enabled when AUDIT_S3_BUCKET is set; one JSON object per request under
`{AUDIT_S3_PREFIX}/{YYYY-MM-DD}/{request_id}.json`. Audit is best-effort: any
failure is logged and swallowed so it can never change an answer. The client
makes one attempt bounded by AUDIT_S3_TIMEOUT_SEC.
"""

from __future__ import annotations
import datetime
import json
import threading
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from civic_answers.core import config
from civic_answers.core.logs import make_jlog

jlog = make_jlog("core.audit")

_s3_client = None
_s3_lock = threading.Lock()


def init_s3_client():
    global _s3_client
    with _s3_lock:
        if _s3_client is not None:
            return _s3_client
        secs = config.AUDIT_S3_TIMEOUT_SEC
        try:
            _s3_client = boto3.client(
                "s3",
                region_name=config.AWS_REGION,
                config=Config(
                    connect_timeout=secs,
                    read_timeout=secs,
                    retries={"total_max_attempts": 1},
                ),
            )
        except (BotoCoreError, ValueError) as e:
            jlog({"level": "WARN", "event": "s3_client_init_failed", "detail": str(e)})
            _s3_client = None
    return _s3_client


def audit_key(request_id: str, prefix: Optional[str] = None, now: Optional[datetime.datetime] = None) -> str:
    prefix = config.AUDIT_S3_PREFIX if prefix is None else prefix
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return f"{prefix.rstrip('/')}/{now.strftime('%Y-%m-%d')}/{request_id}.json"


def write_audit(record: Dict[str, Any], bucket: Optional[str] = None, client=None) -> bool:
    bucket = bucket or config.AUDIT_S3_BUCKET
    if not bucket:
        return False
    client = client or init_s3_client()
    if client is None:
        jlog({"event": "audit_skipped", "reason": "s3_client_unavailable"})
        return False
    key = audit_key(str(record.get("request_id")))
    try:
        body = json.dumps(record, default=str, ensure_ascii=False)
        client.put_object(Bucket=bucket, Key=key, Body=body.encode("utf-8"), ContentType="application/json")
    except (BotoCoreError, ClientError, TypeError, ValueError) as e:
        jlog({"level": "WARN", "event": "audit_write_failed", "detail": str(e), "request_id": record.get("request_id")})
        return False
    jlog({"event": "audit_written", "request_id": record.get("request_id"), "s3_key": key})
    return True
