#!/usr/bin/env python3
"""
civic_answers/core/query.py

Core orchestration: detect -> embed -> rank -> translate-in -> generate -> translate-out -> assemble.

Assumptions & invariants:
* One AnswerPipeline is shared by all callers; each request runs on its own
  worker with no per-request locking. The embedding cache is the only shared
  mutable state.
* The whole request is bounded by one deadline (PIPELINE_DEADLINE_SEC). The
  same Deadline object is threaded through every stage as a cancellation token
  and clips every provider call to the remaining budget, so a request that
  timed out stops issuing provider calls.
* Provider failures never reach the caller: embeddings fall back to hash
  vectors, generation falls back to canned answers, translation passes the
  original text through (flagged as translationDegraded).
* A timeout is reported as resolution "timeout", distinct from "error", so
  callers can avoid hammering an already-saturated provider.

Caller-facing contract (AnswerResult.to_dict()):
  {
    "requestId": "...",
    "resolution": "answer" | "timeout" | "error" | "invalid_request",
    "answerText": "...",
    "detectedLanguageName": "English" | "Spanish" | "Arabic",
    "languageCode": "en" | "es" | "ar",
    "confidence": 0.0..1.0,                    # top-1 similarity, 0 with no matches
    "sources": [{"title", "url", "similarity"}],
    "translationDegraded": bool,
    "answerSource": "provider" | "fallback:<rule>" | null,
    "questionStyle": "urgent" | "greeting" | ... | "casual" | null,
    "isFollowUp": bool,
    "error": "..."                             # non-answer resolutions only
  }
"""

from __future__ import annotations
import json
import threading
import time
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Dict, List, Optional

from civic_answers.core import config
from civic_answers.core.audit import write_audit
from civic_answers.core.cache import EmbeddingCache
from civic_answers.core.deadline import Deadline
from civic_answers.core.embedder import Embedder
from civic_answers.core.errors import CorpusUnavailable, PipelineTimeout
from civic_answers.core.generator import AnswerGenerator
from civic_answers.core.language import LanguagePipeline, is_supported, language_name, localized
from civic_answers.core.logs import make_jlog
from civic_answers.core.models import (
    RESOLUTION_ANSWER,
    RESOLUTION_ERROR,
    RESOLUTION_INVALID,
    RESOLUTION_TIMEOUT,
    AnswerResult,
    Query,
    RankedMatch,
)
from civic_answers.core.providers import BedrockEmbeddingProvider, BedrockTextProvider
from civic_answers.core.retriever import InMemoryCorpus, PgCorpus, rank
from civic_answers.core.styles import classify_style

jlog = make_jlog("core.query")


def confidence_from(matches: List[RankedMatch]) -> float:
    if not matches:
        return 0.0
    return max(0.0, min(1.0, float(matches[0].similarity)))


def _new_request_id() -> str:
    return f"r-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class AnswerPipeline:
    def __init__(
        self,
        embedder: Embedder,
        corpus,
        language: LanguagePipeline,
        generator: AnswerGenerator,
        deadline_sec: Optional[float] = None,
        top_k: Optional[int] = None,
        executor: Optional[Executor] = None,
        audit_executor: Optional[Executor] = None,
        audit=write_audit,
    ):
        self.embedder = embedder
        self.corpus = corpus
        self.language = language
        self.generator = generator
        self.deadline_sec = config.PIPELINE_DEADLINE_SEC if deadline_sec is None else float(deadline_sec)
        self.top_k = top_k or config.TOP_K
        self._executor = executor or ThreadPoolExecutor(max_workers=config.PIPELINE_MAX_WORKERS, thread_name_prefix="answer-pipeline")
        self._audit = audit
        # audit writes never share workers with pipeline runs
        self._audit_executor = None
        if audit is not None:
            self._audit_executor = audit_executor or ThreadPoolExecutor(max_workers=config.AUDIT_MAX_WORKERS, thread_name_prefix="answer-audit")

    # ---- stages ----
    def _read_corpus(self, request_id: str):
        try:
            return self.corpus.items()
        except CorpusUnavailable as e:
            jlog({"level": "ERROR", "event": "corpus_unavailable", "request_id": request_id, "detail": str(e)})
            return []

    def _run(self, query: Query, out_code: str, deadline: Deadline, request_id: str) -> AnswerResult:
        vector = self.embedder.embed(query.raw_text, deadline)

        deadline.check("rank")
        t0 = time.time()
        matches = rank(vector, self._read_corpus(request_id), self.top_k)
        jlog({
            "event": "rank_complete",
            "request_id": request_id,
            "returned": len(matches),
            "top_similarity": matches[0].similarity if matches else 0.0,
            "ms": int((time.time() - t0) * 1000),
        })

        inbound = self.language.to_pivot(query.raw_text, query.language_code, deadline)
        query.pivot_text = inbound.text

        # markers are matched on the resident's own wording, before translation
        style = classify_style(query.raw_text)
        generated = self.generator.generate(query.pivot_text, matches, deadline, style)

        outbound = self.language.from_pivot(generated.text, out_code, deadline)

        deadline.check("assemble")
        return AnswerResult(
            answer_text=outbound.text,
            language_name=language_name(out_code),
            language_code=out_code,
            confidence=confidence_from(matches),
            matches=matches,
            resolution=RESOLUTION_ANSWER,
            translation_degraded=inbound.degraded or outbound.degraded,
            answer_source=generated.source,
            request_id=request_id,
            question_style=style.name,
            is_follow_up=style.is_follow_up,
        )

    # ---- non-answer results ----
    def _timeout_result(self, code: str, request_id: str) -> AnswerResult:
        return AnswerResult(
            answer_text=localized(code, "timeout"),
            language_name=language_name(code),
            language_code=code,
            resolution=RESOLUTION_TIMEOUT,
            request_id=request_id,
            error="timeout",
        )

    def _error_result(self, code: str, request_id: str) -> AnswerResult:
        return AnswerResult(
            answer_text=f"{localized(code, 'error')} {localized(code, 'service_reminder')}",
            language_name=language_name(code),
            language_code=code,
            resolution=RESOLUTION_ERROR,
            request_id=request_id,
            error="internal_error",
        )

    # ---- entrypoint ----
    def answer(self, question: str, preferred_language: Optional[str] = None, request_id: Optional[str] = None) -> AnswerResult:
        start = time.time()
        request_id = request_id or _new_request_id()
        raw = (question or "").strip()
        if not raw:
            jlog({"level": "ERROR", "event": "invalid_request", "request_id": request_id, "reason": "empty_question"})
            code = preferred_language if is_supported(preferred_language) else "en"
            return AnswerResult(
                answer_text="",
                language_name=language_name(code),
                language_code=code,
                resolution=RESOLUTION_INVALID,
                request_id=request_id,
                error="empty_question",
            )

        deadline = Deadline(self.deadline_sec)
        detected = self.language.detect(raw)
        out_code = preferred_language if is_supported(preferred_language) else detected
        query = Query(raw_text=raw, language_code=detected)
        jlog({"event": "request_start", "request_id": request_id, "language": detected, "out_language": out_code, "query_len": len(raw)})

        future = self._executor.submit(self._run, query, out_code, deadline, request_id)
        try:
            result = future.result(timeout=deadline.remaining())
        except (FuturesTimeout, PipelineTimeout) as e:
            deadline.cancel()
            jlog({"level": "WARN", "event": "pipeline_timeout", "request_id": request_id, "deadline_sec": self.deadline_sec, "stage": getattr(e, "stage", None)})
            result = self._timeout_result(out_code, request_id)
        except Exception as e:
            deadline.cancel()
            jlog({"level": "ERROR", "event": "pipeline_exception", "request_id": request_id, "detail": repr(e)})
            result = self._error_result(out_code, request_id)

        elapsed_ms = int((time.time() - start) * 1000)
        jlog({
            "event": "request_complete",
            "request_id": request_id,
            "resolution": result.resolution,
            "answer_source": result.answer_source,
            "confidence": result.confidence,
            "translation_degraded": result.translation_degraded,
            "ms": elapsed_ms,
        })
        self._submit_audit({
            "request_id": request_id,
            "language": detected,
            "out_language": out_code,
            "resolution": result.resolution,
            "answer_source": result.answer_source,
            "question_style": result.question_style,
            "source_urls": [m.item.source_url for m in result.matches],
            "confidence": result.confidence,
            "translation_degraded": result.translation_degraded,
            "timing_ms": elapsed_ms,
        })
        return result

    def _submit_audit(self, record: Dict[str, Any]) -> None:
        if self._audit is None or self._audit_executor is None:
            return
        try:
            self._audit_executor.submit(self._audit, record)
        except RuntimeError as e:
            # executor already shut down
            jlog({"level": "WARN", "event": "audit_submit_failed", "detail": str(e)})

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
        if self._audit_executor is not None:
            self._audit_executor.shutdown(wait=wait)


# ---- default wiring (Lambda / local) ----
_default_pipeline: Optional[AnswerPipeline] = None
_default_pipeline_lock = threading.Lock()


def build_default_pipeline() -> AnswerPipeline:
    text_provider = BedrockTextProvider()
    if config.PG_HOST:
        corpus = PgCorpus()
    else:
        jlog({"level": "WARN", "event": "corpus_not_configured", "hint": "Set PG_HOST to read indexed pages"})
        corpus = InMemoryCorpus()
    return AnswerPipeline(
        embedder=Embedder(BedrockEmbeddingProvider(), EmbeddingCache()),
        corpus=corpus,
        language=LanguagePipeline(text_provider),
        generator=AnswerGenerator(text_provider),
    )


def get_pipeline() -> AnswerPipeline:
    global _default_pipeline
    with _default_pipeline_lock:
        if _default_pipeline is None:
            _default_pipeline = build_default_pipeline()
        return _default_pipeline


def answer(question: str, preferred_language: Optional[str] = None) -> Dict[str, Any]:
    return get_pipeline().answer(question, preferred_language=preferred_language).to_dict()


# Lambda handler (adapter common entrypoint)
def handler(event: Dict[str, Any], context: Any, pipeline: Optional[AnswerPipeline] = None) -> Dict[str, Any]:
    ev = event if isinstance(event, dict) else {}
    request_id = ev.get("request_id") or _new_request_id()
    try:
        pipe = pipeline or get_pipeline()
        question = ev.get("question") or ev.get("query") or ""
        result = pipe.answer(question, preferred_language=ev.get("language"), request_id=request_id)
        return result.to_dict()
    except Exception as e:
        jlog({"level": "ERROR", "event": "handler_unexpected", "request_id": request_id, "detail": repr(e)})
        return {"requestId": request_id, "resolution": RESOLUTION_ERROR, "error": "handler_exception"}


# CLI parity for local tests
if __name__ == "__main__":
    sample = {"request_id": "local-req", "question": "How do I report a pothole?"}
    print(json.dumps(handler(sample, None), indent=2, default=str, ensure_ascii=False))
