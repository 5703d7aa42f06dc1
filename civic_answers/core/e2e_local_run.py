#!/usr/bin/env python3
"""
e2e_local_run.py — single-process end-to-end local runner for civic-answers.

Purpose
- Run the real pipeline (detect -> embed -> rank -> translate -> generate -> translate -> assemble)
  against a small demo corpus without a database.
- Two operation modes:
    - mock (default): embedding provider always unavailable (so the deterministic hash
      embedding is used, matching the demo corpus), scripted text provider
    - bedrock: Bedrock providers from config (needs AWS_REGION and credentials)

Usage
- python -m civic_answers.core.e2e_local_run --query "How do I report a pothole?"
- python -m civic_answers.core.e2e_local_run --query "¿Cómo reporto un bache?" --language es
- python -m civic_answers.core.e2e_local_run --self-test
"""
from __future__ import annotations

import argparse
import json
import re
from typing import Any, Dict, List, Optional

from civic_answers.core import config
from civic_answers.core.cache import EmbeddingCache
from civic_answers.core.embedder import Embedder, fallback_embedding
from civic_answers.core.errors import ProviderUnavailable
from civic_answers.core.generator import AnswerGenerator
from civic_answers.core.language import LanguagePipeline
from civic_answers.core.logs import make_jlog
from civic_answers.core.models import ContentItem
from civic_answers.core.providers import BedrockEmbeddingProvider, BedrockTextProvider
from civic_answers.core.query import AnswerPipeline
from civic_answers.core.retriever import InMemoryCorpus

jlog = make_jlog("e2e")

DEMO_PAGES = [
    {
        "url": "https://www.memphistn.gov/potholes",
        "title": "Pothole Reporting Guide",
        "content": "Report a pothole by calling 311 or submitting an online service request. "
        "Give the street address and nearest cross street.",
    },
    {
        "url": "https://www.memphistn.gov/solid-waste",
        "title": "Garbage and Recycling Collection",
        "content": "Trash and recycling carts go to the curb by 6 AM on your collection day. "
        "Bulk pickup is available once a month.",
    },
    {
        "url": "https://www.mlgw.com/billing",
        "title": "Water Bill Payment Options",
        "content": "Pay your water bill online, by phone or in person. Auto-pay avoids late fees.",
    },
    {
        "url": "https://www.memphistn.gov/parking",
        "title": "Residential Parking Permits",
        "content": "Apply for a residential parking permit with your ID and vehicle registration.",
    },
]


def build_demo_corpus(dim: Optional[int] = None) -> InMemoryCorpus:
    """Demo pages embedded with the deterministic fallback, keyed on title + content."""
    dim = dim or config.EMBED_DIM
    items = [
        ContentItem(
            id=i + 1,
            source_url=p["url"],
            title=p["title"],
            body_text=p["content"],
            embedding=fallback_embedding(f"{p['title']} {p['content']}", dim),
        )
        for i, p in enumerate(DEMO_PAGES)
    ]
    jlog({"event": "demo_corpus_built", "rows": len(items), "dim": dim})
    return InMemoryCorpus(items)


# ---------- mock providers ----------
class OfflineEmbeddingProvider:
    """Always unavailable, so every query takes the deterministic fallback path."""

    def embed(self, text: str, timeout: float) -> List[float]:
        raise ProviderUnavailable("offline-embed", "mock mode")


class ScriptedTextProvider:
    """
    Deterministic stand-in for the text model.
    - translation prompts: echo the text with a [lang] tag
    - answer prompts: one sentence naming the first relevant title
    """

    TRANSLATE_RE = re.compile(r"^Translate the following text from (\w+) to (\w+)\.\n.*?\n\n(.*)$", re.S)
    TITLES_RE = re.compile(r"^Relevant information: (.+)$", re.M)

    def __init__(self):
        self.calls: List[str] = []

    def complete(self, prompt: str, timeout: float, max_tokens: int, temperature: float = 0.7, top_p: float = 0.9) -> str:
        self.calls.append(prompt)
        m = self.TRANSLATE_RE.match(prompt)
        if m:
            return f"[{m.group(2)}] {m.group(3)}"
        t = self.TITLES_RE.search(prompt)
        if t:
            first = t.group(1).split(", ")[0]
            return f"Start with our {first} page, or call {config.SERVICE_DESK_PHONE} for help\n(extra line dropped)"
        return ""


def build_pipeline(mode: str = "mock", corpus: Optional[InMemoryCorpus] = None) -> AnswerPipeline:
    corpus = corpus if corpus is not None else build_demo_corpus()
    if mode == "bedrock":
        embed_provider: Any = BedrockEmbeddingProvider()
        text_provider: Any = BedrockTextProvider()
    else:
        embed_provider = OfflineEmbeddingProvider()
        text_provider = ScriptedTextProvider()
    return AnswerPipeline(
        embedder=Embedder(embed_provider, EmbeddingCache()),
        corpus=corpus,
        language=LanguagePipeline(text_provider),
        generator=AnswerGenerator(text_provider),
        audit=None,
    )


def pipeline_run(pipeline: AnswerPipeline, question: str, language: Optional[str] = None) -> Dict[str, Any]:
    return pipeline.answer(question, preferred_language=language).to_dict()


# ---------- CLI and self-tests ----------
def self_test(pipeline: AnswerPipeline) -> None:
    """Run a few deterministic assertions to ensure the pipeline is functioning."""
    jlog({"event": "self_test_start"})
    # 1) pothole question ranks the pothole guide first
    r1 = pipeline_run(pipeline, "How do I report a pothole?")
    assert r1["resolution"] == "answer", f"expected answer, got {r1}"
    assert r1["sources"] and r1["sources"][0]["title"] == "Pothole Reporting Guide", f"unexpected sources {r1['sources']}"
    assert r1["confidence"] > 0.0
    assert r1["answerText"].endswith((".", "!", "?"))
    # 2) blank question
    r2 = pipeline_run(pipeline, "   ")
    assert r2["resolution"] == "invalid_request", f"unexpected {r2}"
    # 3) Arabic question round-trips through translation
    r3 = pipeline_run(pipeline, "كيف أبلغ عن حفرة في الشارع؟")
    assert r3["languageCode"] == "ar" and r3["detectedLanguageName"] == "Arabic", f"unexpected {r3}"
    # 4) contract shape
    for key in ("requestId", "answerText", "confidence", "sources", "translationDegraded", "answerSource"):
        assert key in r1, f"missing {key}"
    jlog({"event": "self_test_ok"})
    print("self-test passed.")


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="E2E local runner for civic-answers")
    p.add_argument("--mode", choices=["mock", "bedrock"], default="mock", help="provider mode")
    p.add_argument("--query", type=str, help="one-off question")
    p.add_argument("--language", choices=["en", "es", "ar"], default=None, help="answer language (default: detected)")
    p.add_argument("--self-test", action="store_true", help="run self tests and exit")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    pipeline = build_pipeline(args.mode)
    try:
        if args.self_test:
            self_test(pipeline)
            return 0
        if args.query:
            out = pipeline_run(pipeline, args.query, language=args.language)
            print(json.dumps(out, indent=2, ensure_ascii=False))
            return 0
        print("No query provided. Use --query or --self-test. Exiting.")
        return 2
    finally:
        pipeline.shutdown(wait=True)


if __name__ == "__main__":
    raise SystemExit(main())
