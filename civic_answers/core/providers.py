"""
civic_answers/core/providers.py

Amazon Bedrock providers for embeddings and text generation.

External contracts:
* Embedding: invoke_model(modelId=EMBED_MODEL_ID, body={"inputText", "dimensions", "normalize"})
  -> {"embedding": [float] * EMBED_DIM}
* Text: invoke_model(modelId=TEXT_MODEL_ID, body={"inputText", "textGenerationConfig": {...}})
  -> generated text under one of several model-family keys (extracted tolerantly).

Invariants:
* Exactly one attempt per call: clients are built with retries={"total_max_attempts": 1}.
* Every call carries its own timeout; clients are cached per whole-second timeout
  so a deadline-clipped call gets a client whose read_timeout does not outlive it.
* Any transport error, non-success response, undecodable body or wrong shape is
  raised as ProviderUnavailable. Callers own the fallback.
"""

from __future__ import annotations
import json
import math
import threading
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from civic_answers.core import config
from civic_answers.core.errors import ProviderUnavailable
from civic_answers.core.logs import make_jlog

jlog = make_jlog("core.providers")

_clients: Dict[Tuple[str, str, int], Any] = {}
_clients_lock = threading.Lock()


def init_bedrock_client(timeout_sec: float, region: Optional[str] = None):
    """Initialize (and cache) a bedrock-runtime client for the given timeout."""
    region = region or config.AWS_REGION
    if not region:
        jlog({"level": "CRITICAL", "event": "aws_region_missing", "hint": "Set AWS_REGION"})
        raise ProviderUnavailable("bedrock", "aws_region_missing")
    secs = max(1, int(math.ceil(timeout_sec)))
    key = ("bedrock-runtime", region, secs)
    with _clients_lock:
        client = _clients.get(key)
        if client is not None:
            return client
        try:
            client = boto3.client(
                "bedrock-runtime",
                region_name=region,
                config=Config(
                    connect_timeout=min(secs, 5),
                    read_timeout=secs,
                    retries={"total_max_attempts": 1},
                ),
            )
        except (BotoCoreError, ValueError) as e:
            jlog({"level": "CRITICAL", "event": "bedrock_client_init_failed", "detail": str(e)})
            raise ProviderUnavailable("bedrock", f"client_init_failed: {e}") from e
        _clients[key] = client
    jlog({"event": "bedrock_client_init", "timeout_sec": secs})
    return client


def _invoke(client, model_id: str, payload: Dict[str, Any], provider: str) -> Dict[str, Any]:
    body = json.dumps(payload)
    try:
        resp = client.invoke_model(modelId=model_id, body=body, contentType="application/json", accept="application/json")
    except (BotoCoreError, ClientError) as e:
        jlog({"level": "ERROR", "event": "bedrock_invoke_failed", "provider": provider, "model": model_id, "detail": str(e)})
        raise ProviderUnavailable(provider, f"invoke_failed: {e}") from e

    # the streaming body is read under the same read_timeout as the call
    body_stream = resp.get("body")
    try:
        raw = body_stream.read() if hasattr(body_stream, "read") else body_stream
    except (BotoCoreError, ClientError) as e:
        jlog({"level": "ERROR", "event": "bedrock_read_failed", "provider": provider, "model": model_id, "detail": str(e)})
        raise ProviderUnavailable(provider, "read_failed") from e
    try:
        mr = json.loads(raw)
    except (TypeError, ValueError) as e:
        jlog({"level": "ERROR", "event": "bedrock_decode_failed", "provider": provider, "detail": str(e), "sample": str(raw)[:300]})
        raise ProviderUnavailable(provider, "decode_failed") from e
    if not isinstance(mr, dict):
        raise ProviderUnavailable(provider, "response_not_object")
    return mr


class BedrockEmbeddingProvider:
    name = "bedrock-embed"

    def __init__(self, model_id: Optional[str] = None, dim: Optional[int] = None, region: Optional[str] = None, client_factory=init_bedrock_client):
        self.model_id = model_id or config.EMBED_MODEL_ID
        self.dim = dim or config.EMBED_DIM
        self.region = region
        self._client_factory = client_factory

    def embed(self, text: str, timeout: float) -> List[float]:
        client = self._client_factory(timeout, self.region)
        mr = _invoke(client, self.model_id, {"inputText": text, "dimensions": self.dim, "normalize": True}, self.name)

        emb = mr.get("embedding") or mr.get("embeddings") or mr.get("vector")
        if not isinstance(emb, list):
            jlog({"level": "ERROR", "event": "bedrock_no_embedding", "keys": sorted(mr.keys())})
            raise ProviderUnavailable(self.name, "no_embedding")
        if len(emb) != self.dim:
            jlog({"level": "ERROR", "event": "bedrock_dim_mismatch", "expected": self.dim, "received": len(emb)})
            raise ProviderUnavailable(self.name, "embedding_dim_mismatch")
        try:
            return [float(x) for x in emb]
        except (TypeError, ValueError) as e:
            jlog({"level": "ERROR", "event": "bedrock_embedding_non_numeric", "sample": emb[:10]})
            raise ProviderUnavailable(self.name, "embedding_non_numeric") from e


def extract_generated_text(mr: Dict[str, Any]) -> str:
    """Pull the generated text out of whichever response shape the model family uses."""
    results = mr.get("results")
    if isinstance(results, list) and results and isinstance(results[0], dict):
        text = results[0].get("outputText")
        if isinstance(text, str):
            return text
    for key in ("outputText", "generatedText", "generation", "completion", "text", "response"):
        val = mr.get(key)
        if isinstance(val, str):
            return val
    content = mr.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [c.get("text", "") for c in content if isinstance(c, dict)]
        return "".join(parts)
    return ""


class BedrockTextProvider:
    name = "bedrock-text"

    def __init__(self, model_id: Optional[str] = None, region: Optional[str] = None, client_factory=init_bedrock_client):
        self.model_id = model_id or config.TEXT_MODEL_ID
        self.region = region
        self._client_factory = client_factory

    def complete(self, prompt: str, timeout: float, max_tokens: int, temperature: float = 0.7, top_p: float = 0.9) -> str:
        client = self._client_factory(timeout, self.region)
        payload = {
            "inputText": prompt,
            "textGenerationConfig": {
                "maxTokenCount": int(max_tokens),
                "temperature": float(temperature),
                "topP": float(top_p),
            },
        }
        mr = _invoke(client, self.model_id, payload, self.name)
        return extract_generated_text(mr)
